"""Client address resolution behind reverse proxies."""

from __future__ import annotations

from collections.abc import Mapping


def client_ip_from(headers: Mapping[str, str], peer: str | None) -> str | None:
    """Best-effort client address: proxy headers first, then the socket peer.

    ``X-Forwarded-For`` contributes its first hop; ``X-Real-IP`` and
    ``X-Client-IP`` are consulted next.
    """

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "x-client-ip"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return peer


__all__ = ["client_ip_from"]
