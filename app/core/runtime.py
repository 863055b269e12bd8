"""Process-wide wiring of the chat core.

:func:`build_runtime` assembles repositories, providers and services either on
top of Postgres (when ``DATABASE_URL`` is set) or entirely in memory, which is
what tests and local demos use.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from app.assistant.orchestrator import ResponseOrchestrator
from app.assistant.providers import GenerativeProvider, OpenAIChatProvider, ProviderRegistry
from app.bots.repository import (
    BotConfigRepository,
    InMemoryBotConfigRepository,
    PostgresBotConfigRepository,
)
from app.config import Settings, get_settings
from app.conversations.pipeline import MessageIngestionPipeline
from app.conversations.repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)
from app.conversations.service import ConversationService
from app.escalation.directory import InMemoryStaffDirectory, SqlAlchemyStaffDirectory, StaffDirectory
from app.escalation.manager import EscalationManager
from app.escalation.policy import build_policy
from app.knowledge.embeddings import EmbeddingProvider, build_embedding_provider
from app.knowledge.rebuild import KnowledgeRebuilder
from app.knowledge.repository import (
    DocumentRepository,
    InMemoryDocumentRepository,
    InMemoryKnowledgeRepository,
    KnowledgeRepository,
    PostgresDocumentRepository,
    PostgresKnowledgeRepository,
)
from app.knowledge.retrieval import KnowledgeRetrievalEngine
from app.models.session import get_sessionmaker
from app.realtime.registry import ConnectionRegistry

from .db import connection_factory
from .gate import CallGate

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    settings: Settings
    registry: ConnectionRegistry
    bots: BotConfigRepository
    conversations: ConversationService
    knowledge: KnowledgeRepository
    documents: DocumentRepository
    retrieval: KnowledgeRetrievalEngine
    rebuilder: KnowledgeRebuilder
    orchestrator: ResponseOrchestrator
    escalation: EscalationManager
    pipeline: MessageIngestionPipeline
    staff_directory: StaffDirectory
    _liveness: Optional[asyncio.Task] = field(default=None, repr=False)

    async def start(self) -> None:
        if self._liveness is None:
            self._liveness = asyncio.create_task(
                self.registry.run_liveness(self.settings.heartbeat_interval_seconds)
            )
            logger.info(
                "Liveness sweep every %ss", self.settings.heartbeat_interval_seconds
            )

    async def stop(self) -> None:
        if self._liveness is not None:
            self._liveness.cancel()
            try:
                await self._liveness
            except asyncio.CancelledError:
                pass
            self._liveness = None
        await self.pipeline.shutdown()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    provider: Optional[GenerativeProvider] = None,
    embedder: Optional[EmbeddingProvider] = None,
    staff_directory: Optional[StaffDirectory] = None,
) -> ChatRuntime:
    settings = settings or get_settings()
    gate = CallGate(settings.provider_max_concurrency, settings.provider_timeout_seconds)
    credentials = ProviderRegistry()

    conversation_repo: ConversationRepository
    bots: BotConfigRepository
    knowledge: KnowledgeRepository
    documents: DocumentRepository
    if settings.in_memory:
        logger.info("DATABASE_URL not set; using in-memory stores")
        conversation_repo = InMemoryConversationRepository()
        bots = InMemoryBotConfigRepository()
        knowledge = InMemoryKnowledgeRepository()
        documents = InMemoryDocumentRepository()
        directory = staff_directory or InMemoryStaffDirectory()
    else:
        connect = connection_factory(settings.database_url)
        conversation_repo = PostgresConversationRepository(connect)
        bots = PostgresBotConfigRepository(connect)
        knowledge = PostgresKnowledgeRepository(connect)
        documents = PostgresDocumentRepository(connect)
        directory = staff_directory or SqlAlchemyStaffDirectory(get_sessionmaker(settings.database_url))

    registry = ConnectionRegistry()
    conversations = ConversationService(conversation_repo, bots, broadcaster=registry)
    embedder = embedder or build_embedding_provider(settings, gate, credentials)
    retrieval = KnowledgeRetrievalEngine(knowledge, embedder)
    provider = provider or OpenAIChatProvider(credentials.get_credentials("openai"), gate)
    orchestrator = ResponseOrchestrator(bots, retrieval, provider, settings)
    escalation = EscalationManager(conversations, build_policy(settings.assignment_policy, directory))
    pipeline = MessageIngestionPipeline(
        conversations,
        orchestrator,
        escalation,
        max_message_length=settings.chat_max_message_length,
        history_window=settings.history_window,
    )
    return ChatRuntime(
        settings=settings,
        registry=registry,
        bots=bots,
        conversations=conversations,
        knowledge=knowledge,
        documents=documents,
        retrieval=retrieval,
        rebuilder=KnowledgeRebuilder(bots, documents, knowledge, embedder),
        orchestrator=orchestrator,
        escalation=escalation,
        pipeline=pipeline,
        staff_directory=directory,
    )


def get_runtime(request: Request) -> ChatRuntime:
    """FastAPI dependency returning the application's runtime."""

    return request.app.state.runtime


__all__ = ["ChatRuntime", "build_runtime", "get_runtime"]
