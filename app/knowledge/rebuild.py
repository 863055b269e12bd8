"""Regenerate a bot configuration's knowledge entries from its sources."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from app.bots.repository import BotConfigRepository, resolve_bot_config
from app.bots.schemas import BotConfig
from app.core.locks import KeyedLocks

from . import schemas
from .chunking import chunk_text
from .embeddings import EmbeddingProvider
from .repository import DocumentRepository, KnowledgeRepository

logger = logging.getLogger(__name__)


def faq_text(question: str, answer: str) -> str:
    return f"Q: {question}\nA: {answer}"


class KnowledgeRebuilder:
    """Delete and re-create every entry of a bot configuration.

    Each FAQ and each document chunk is an independent unit: a unit whose
    embedding or insert fails is skipped and counted, the rest still land.
    Running the rebuild twice over unchanged sources yields the same entries.
    Rebuilds of the same configuration are serialized within the process.
    """

    def __init__(
        self,
        bots: BotConfigRepository,
        documents: DocumentRepository,
        knowledge: KnowledgeRepository,
        embedder: EmbeddingProvider,
    ) -> None:
        self._bots = bots
        self._documents = documents
        self._knowledge = knowledge
        self._embedder = embedder
        self._locks = KeyedLocks()

    async def _store(
        self,
        bot_config_id: UUID,
        kind: schemas.SourceKind,
        text: str,
        metadata: Dict[str, Any],
        embedding: Optional[list[float]] = None,
    ) -> bool:
        try:
            vector = embedding if embedding else await self._embedder.embed(text)
            self._knowledge.add_entry(bot_config_id, kind, text, vector, metadata)
        except Exception as exc:
            logger.warning("Skipping %s entry for bot %s: %s", kind.value, bot_config_id, exc)
            return False
        return True

    async def rebuild(self, bot_config_id: UUID) -> schemas.RebuildSummary:
        config = resolve_bot_config(self._bots, bot_config_id)
        async with self._locks.hold(config.id):
            return await self._rebuild(config)

    async def _rebuild(self, config: BotConfig) -> schemas.RebuildSummary:
        removed = self._knowledge.delete_for_config(config.id)
        logger.info("Rebuilding knowledge for bot %s (removed %d entries)", config.id, removed)

        faq_entries = 0
        document_entries = 0
        failed = 0

        for faq in config.faqs:
            metadata = {
                "type": schemas.SourceKind.FAQ.value,
                "faq_id": str(faq.id),
                "question": faq.question,
            }
            if await self._store(config.id, schemas.SourceKind.FAQ, faq_text(faq.question, faq.answer), metadata):
                faq_entries += 1
            else:
                failed += 1

        documents = self._documents.list_documents(config.id)
        for document in documents:
            chunks = list(document.chunks)
            if not chunks and document.text:
                chunks = [schemas.DocumentChunk(content=piece) for piece in chunk_text(document.text)]
            for chunk in chunks:
                metadata = {
                    "type": schemas.SourceKind.DOCUMENT.value,
                    "document_id": str(document.id),
                    "file_name": document.file_name,
                    "page": chunk.page,
                }
                stored = await self._store(
                    config.id,
                    schemas.SourceKind.DOCUMENT,
                    chunk.content,
                    metadata,
                    embedding=chunk.embedding,
                )
                if stored:
                    document_entries += 1
                else:
                    failed += 1

        summary = schemas.RebuildSummary(
            bot_config_id=config.id,
            total_entries=faq_entries + document_entries,
            faq_entries=faq_entries,
            document_entries=document_entries,
            failed_entries=failed,
            faqs=len(config.faqs),
            documents=len(documents),
            rebuilt_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Knowledge rebuilt for bot %s: %d entries (%d failed)",
            config.id,
            summary.total_entries,
            failed,
        )
        return summary


__all__ = ["KnowledgeRebuilder", "faq_text"]
