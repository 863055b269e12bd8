"""Bootstrap the database with staff accounts, a default bot and its knowledge."""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

import psycopg
from alembic.migration import MigrationContext
from alembic.operations import Operations
from dotenv import load_dotenv
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from app.assistant.providers import ProviderRegistry
from app.assistant.tools import HUMAN_HANDOFF_TOOL, HumanHandoffTool
from app.bots.repository import PostgresBotConfigRepository
from app.bots.schemas import BotConfigCreate, FaqCreate, ToolDefinition
from app.config import get_settings
from app.core.db import connection_factory
from app.core.gate import CallGate
from app.knowledge.embeddings import build_embedding_provider
from app.knowledge.rebuild import KnowledgeRebuilder
from app.knowledge.repository import PostgresDocumentRepository, PostgresKnowledgeRepository
from app.models import StaffUser
from app.models.session import as_sqlalchemy_url, get_sessionmaker
from app.security import hash_password

logger = logging.getLogger("seed")

MIGRATION_FILE = Path(__file__).resolve().parent / "app" / "migrations" / "001_create_support_tables.py"

DEFAULT_INSTRUCTIONS = (
    "You are a helpful customer service assistant. Be polite, professional, and helpful. "
    "If you cannot answer a question, suggest that the customer speak with a human agent."
)

DEFAULT_FAQS = (
    FaqCreate(
        question="What are your business hours?",
        answer="Our business hours are Monday to Friday, 9 AM to 5 PM EST.",
    ),
    FaqCreate(
        question="How can I contact support?",
        answer=(
            "You can contact support through this chat, email us at support@example.com, "
            "or call us at 1-800-555-0100."
        ),
    ),
    FaqCreate(
        question="What is your refund policy?",
        answer=(
            "We offer a 30-day money-back guarantee on all purchases. "
            "Please contact support to initiate a refund."
        ),
    ),
)


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    admin_name: str
    admin_email: str
    admin_password: str
    agent_name: str
    agent_email: str
    agent_password: str
    bot_model: str


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        parsed = make_url(db_url)
    except Exception:  # pragma: no cover - malformed URL is logged verbatim
        return db_url
    if parsed.password is None:
        return db_url
    return parsed.set(password="***").render_as_string(hide_password=False)


def _load_config() -> SeedConfig:
    db_url = get_settings().database_url
    if not db_url:
        raise RuntimeError("DATABASE_URL is not configured.")
    return SeedConfig(
        db_url=db_url,
        admin_name=os.getenv("SEED_ADMIN_NAME", "Admin User").strip(),
        admin_email=os.getenv("SEED_ADMIN_EMAIL", "admin@example.com").strip().lower(),
        admin_password=os.getenv("SEED_ADMIN_PASSWORD", "ChangeMe123!"),
        agent_name=os.getenv("SEED_AGENT_NAME", "Agent User").strip(),
        agent_email=os.getenv("SEED_AGENT_EMAIL", "agent@example.com").strip().lower(),
        agent_password=os.getenv("SEED_AGENT_PASSWORD", "ChangeMe123!"),
        bot_model=os.getenv("SEED_BOT_MODEL", "gpt-4"),
    )


def wait_for_database(db_url: str, max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue
        logger.info("Database connection established after %d attempt(s): %s", attempt, _safe_url(db_url))
        return


def _run_schema_migrations(db_url: str) -> None:
    """Apply the schema migration unless its tables already exist."""

    engine = create_engine(as_sqlalchemy_url(db_url))
    try:
        with engine.begin() as connection:
            if inspect(connection).has_table("conversations"):
                logger.info("Schema already present; skipping migration.")
                return
            spec = importlib.util.spec_from_file_location("support_schema", MIGRATION_FILE)
            assert spec and spec.loader
            migration = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(migration)
            with Operations.context(MigrationContext.configure(connection)):
                migration.upgrade()
            logger.info("Applied migration %s", migration.revision)
    finally:
        engine.dispose()


def _ensure_staff(
    factory: sessionmaker[Session], *, email: str, name: str, password: str, role: str, status: str
) -> None:
    with factory() as session:
        existing = session.execute(select(StaffUser).where(StaffUser.email == email)).scalar_one_or_none()
        if existing is not None:
            logger.info("%s user %s already exists; reusing.", role.capitalize(), email)
            return
        session.add(
            StaffUser(
                email=email,
                name=name,
                password_hash=hash_password(password),
                role=role,
                status=status,
            )
        )
        session.commit()
        logger.info("Created %s user %s", role, email)
    if password == "ChangeMe123!":
        logger.warning("Default password in use for %s; change it for production deployments.", email)


def _default_bot(model: str) -> BotConfigCreate:
    handoff = HumanHandoffTool()
    return BotConfigCreate(
        name="Default support assistant",
        model=model,
        temperature=0.7,
        system_instructions=DEFAULT_INSTRUCTIONS,
        tools=[
            ToolDefinition(
                name=HUMAN_HANDOFF_TOOL,
                description=handoff.description,
                parameters=handoff.parameters,
            )
        ],
        faqs=list(DEFAULT_FAQS),
    )


async def _seed_bot(config: SeedConfig) -> None:
    settings = get_settings()
    connect = connection_factory(config.db_url)
    bots = PostgresBotConfigRepository(connect)
    bot = bots.get_latest()
    if bot is None:
        bot = bots.create_bot_config(_default_bot(config.bot_model))
        logger.info("Created default bot configuration %s", bot.id)
    else:
        logger.info("Bot configuration %s already exists; reusing.", bot.id)

    gate = CallGate(settings.provider_max_concurrency, settings.provider_timeout_seconds)
    embedder = build_embedding_provider(settings, gate, ProviderRegistry())
    rebuilder = KnowledgeRebuilder(
        bots, PostgresDocumentRepository(connect), PostgresKnowledgeRepository(connect), embedder
    )
    summary = await rebuilder.rebuild(bot.id)
    logger.info(
        "Knowledge rebuilt for %s: %d entries (%d failed)",
        bot.id,
        summary.total_entries,
        summary.failed_entries,
    )


async def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    config = _load_config()
    wait_for_database(config.db_url)
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    await asyncio.to_thread(_run_schema_migrations, config.db_url)

    factory = get_sessionmaker(config.db_url)
    await asyncio.to_thread(
        _ensure_staff,
        factory,
        email=config.admin_email,
        name=config.admin_name,
        password=config.admin_password,
        role="admin",
        status="offline",
    )
    await asyncio.to_thread(
        _ensure_staff,
        factory,
        email=config.agent_email,
        name=config.agent_name,
        password=config.agent_password,
        role="agent",
        status="available",
    )
    await _seed_bot(config)
    logger.info("Seed process completed.")


if __name__ == "__main__":
    asyncio.run(main())
