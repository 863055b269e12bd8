"""Shared SlowAPI limiter keyed on the resolved client address."""

from __future__ import annotations

import os

from fastapi import Request
from slowapi import Limiter

from .net import client_ip_from

MESSAGE_RATE_LIMIT = os.getenv("MESSAGE_RATE_LIMIT", "30/minute")
SEARCH_RATE_LIMIT = os.getenv("SEARCH_RATE_LIMIT", "20/minute")


def get_client_ip(request: Request) -> str:
    """Limiter key: first proxy hop when present, otherwise the socket peer."""

    peer = request.client.host if request.client else None
    return client_ip_from(request.headers, peer) or "unknown"


limiter = Limiter(key_func=get_client_ip)


__all__ = ["MESSAGE_RATE_LIMIT", "SEARCH_RATE_LIMIT", "get_client_ip", "limiter"]
