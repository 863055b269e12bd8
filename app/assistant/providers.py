"""Generative provider adapters and credential resolution."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import OpenAI

from app.core.gate import CallGate

logger = logging.getLogger(__name__)


class ProviderUnavailableError(RuntimeError):
    """Raised when a provider has no usable credential."""


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str]


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        Explicit overrides (e.g. injected during testing) win over the
        environment variables listed in ``_DEFAULT_ENV_MAP``.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key") or None,
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        extras: dict[str, str] = {}
        base_url = os.getenv("OPENAI_BASE_URL") if key == "openai" else None
        if base_url:
            extras["base_url"] = base_url
        return ProviderCredentials(provider=provider, api_key=api_key or None, extras=extras)


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Completion:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class GenerativeProvider(Protocol):
    @property
    def available(self) -> bool: ...

    async def complete(
        self,
        *,
        model: str,
        temperature: float,
        messages: Sequence[dict[str, str]],
        tools: Sequence[dict[str, Any]],
        max_tokens: int,
    ) -> Completion: ...


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Tool call arguments are not valid JSON: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIChatProvider:
    """Chat completions through the OpenAI SDK, bounded by a :class:`CallGate`."""

    def __init__(self, credentials: ProviderCredentials, gate: CallGate) -> None:
        self._credentials = credentials
        self._gate = gate
        self._client: OpenAI | None = None

    @property
    def available(self) -> bool:
        return bool(self._credentials.api_key)

    def _get_client(self) -> OpenAI:
        if not self._credentials.api_key:
            raise ProviderUnavailableError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = OpenAI(
                api_key=self._credentials.api_key,
                base_url=self._credentials.extras.get("base_url"),
                timeout=self._gate.timeout,
            )
        return self._client

    async def complete(
        self,
        *,
        model: str,
        temperature: float,
        messages: Sequence[dict[str, str]],
        tools: Sequence[dict[str, Any]],
        max_tokens: int,
    ) -> Completion:
        client = self._get_client()

        def _call() -> Any:
            kwargs: dict[str, Any] = {
                "model": model,
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            if tools:
                kwargs["tools"] = list(tools)
                kwargs["tool_choice"] = "auto"
            return client.chat.completions.create(**kwargs)

        response = await self._gate.run(_call)
        message = response.choices[0].message
        calls = [
            ToolCall(name=call.function.name, arguments=_parse_arguments(call.function.arguments))
            for call in (message.tool_calls or [])
            if getattr(call, "function", None) is not None
        ]
        return Completion(text=(message.content or "").strip(), tool_calls=calls)


__all__ = [
    "Completion",
    "GenerativeProvider",
    "OpenAIChatProvider",
    "ProviderCredentials",
    "ProviderRegistry",
    "ProviderUnavailableError",
    "ToolCall",
]
