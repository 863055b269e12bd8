"""Similarity search over knowledge entries."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from . import schemas
from .embeddings import EmbeddingProvider, EmbeddingUnavailableError
from .repository import KnowledgeRepository

logger = logging.getLogger(__name__)

MAX_LIMIT = 50


def source_label(entry: schemas.KnowledgeEntry) -> str:
    """Human-readable origin used when citing an entry in a prompt."""

    if entry.source_kind == schemas.SourceKind.FAQ:
        return "FAQ"
    if entry.source_kind == schemas.SourceKind.DOCUMENT:
        return entry.metadata.get("file_name") or "Document"
    return "Knowledge Base"


def _reported_similarity(similarity: float, threshold: float) -> float:
    rounded = round(similarity, 2)
    # Rounding must not push a kept result under the cut-off.
    return rounded if rounded >= threshold else similarity


class KnowledgeRetrievalEngine:
    """Embed a query and rank stored entries by cosine similarity."""

    def __init__(self, repository: KnowledgeRepository, embedder: EmbeddingProvider) -> None:
        self._repository = repository
        self._embedder = embedder

    async def search(
        self,
        query: str,
        *,
        bot_config_id: Optional[UUID] = None,
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[schemas.SearchResult]:
        """Return at most ``limit`` entries with similarity >= ``threshold``.

        Results are ordered by descending similarity with ties broken by id.
        Embedding or storage failures are logged and yield an empty list.
        """

        if not 1 <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        if not query.strip():
            return []

        try:
            embedding = await self._embedder.embed(query)
        except EmbeddingUnavailableError as exc:
            logger.info("Knowledge search unavailable: %s", exc)
            return []
        except Exception:
            logger.exception("Embedding the search query failed")
            return []

        try:
            candidates = self._repository.similar(
                embedding, bot_config_id=bot_config_id, threshold=threshold, limit=limit
            )
        except Exception:
            logger.exception("Knowledge search failed")
            return []

        kept = [(entry, score) for entry, score in candidates if score >= threshold]
        kept.sort(key=lambda pair: (-pair[1], str(pair[0].id)))
        results = []
        for entry, score in kept[:limit]:
            metadata = dict(entry.metadata)
            metadata["knowledge_entry_id"] = str(entry.id)
            metadata["bot_config_id"] = str(entry.bot_config_id)
            results.append(
                schemas.SearchResult(
                    id=entry.id,
                    text=entry.text,
                    similarity=_reported_similarity(score, threshold),
                    source_label=source_label(entry),
                    metadata=metadata,
                )
            )
        return results


__all__ = ["KnowledgeRetrievalEngine", "MAX_LIMIT", "source_label"]
