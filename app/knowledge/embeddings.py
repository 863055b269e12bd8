"""Embedding providers for knowledge search and rebuilds.

Two backends are supported: the OpenAI embeddings endpoint and a local
fastembed model. When no backend is usable the provider raises
:class:`EmbeddingUnavailableError` and callers treat search as unavailable;
placeholder vectors are never produced.
"""

from __future__ import annotations

import logging
from typing import Any, List, Protocol

from fastembed import TextEmbedding
from openai import OpenAI

from app.assistant.providers import ProviderRegistry
from app.config import Settings
from app.core.gate import CallGate

logger = logging.getLogger(__name__)

DEFAULT_FASTEMBED_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"


class EmbeddingUnavailableError(RuntimeError):
    """Raised when no embedding backend is configured."""


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class OpenAIEmbeddingProvider:
    def __init__(self, api_key: str | None, model: str, gate: CallGate) -> None:
        self._api_key = api_key
        self._model = model
        self._gate = gate
        self._client: OpenAI | None = None

    async def embed(self, text: str) -> List[float]:
        if not self._api_key:
            raise EmbeddingUnavailableError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key, timeout=self._gate.timeout)
        client = self._client

        def _call() -> Any:
            return client.embeddings.create(model=self._model, input=text)

        response = await self._gate.run(_call)
        return [float(v) for v in response.data[0].embedding]


class FastEmbedProvider:
    """Local sentence embeddings; the model is loaded on first use."""

    def __init__(self, model_name: str, gate: CallGate) -> None:
        self._model_name = model_name
        self._gate = gate
        self._model: TextEmbedding | None = None

    def _embed_sync(self, text: str) -> List[float]:
        if self._model is None:
            self._model = TextEmbedding(model_name=self._model_name)
        vector = list(self._model.embed([text]))[0]
        return [float(v) for v in vector]

    async def embed(self, text: str) -> List[float]:
        return await self._gate.run(self._embed_sync, text)


class UnavailableEmbeddingProvider:
    async def embed(self, text: str) -> List[float]:
        raise EmbeddingUnavailableError("No embedding provider configured")


def build_embedding_provider(
    settings: Settings, gate: CallGate, registry: ProviderRegistry | None = None
) -> EmbeddingProvider:
    """Select the backend named by ``EMBEDDING_PROVIDER``."""

    kind = settings.embedding_provider
    if kind == "openai":
        credentials = (registry or ProviderRegistry()).get_credentials("openai")
        if not credentials.api_key:
            logger.warning("OPENAI_API_KEY missing; knowledge search is unavailable")
            return UnavailableEmbeddingProvider()
        return OpenAIEmbeddingProvider(credentials.api_key, settings.embedding_model, gate)
    if kind == "fastembed":
        model = settings.embedding_model
        if model.startswith("text-embedding-"):
            model = DEFAULT_FASTEMBED_MODEL
        return FastEmbedProvider(model, gate)
    if kind in {"none", ""}:
        return UnavailableEmbeddingProvider()
    raise ValueError(f"Unknown embedding provider: {kind}")


__all__ = [
    "EmbeddingProvider",
    "EmbeddingUnavailableError",
    "FastEmbedProvider",
    "OpenAIEmbeddingProvider",
    "UnavailableEmbeddingProvider",
    "build_embedding_provider",
]
