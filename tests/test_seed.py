"""Tests for the seed and query command-line helpers."""

from __future__ import annotations

import argparse
import logging

import pytest
from sqlalchemy import select

import query
from app.assistant.tools import HUMAN_HANDOFF_TOOL
from app.config import reset_settings_cache
from app.models import Base, StaffUser
from app.models.session import get_sessionmaker
from app.security import verify_password
from seed import DEFAULT_FAQS, _default_bot, _ensure_staff, _load_config, _safe_url


@pytest.fixture
def fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def factory(tmp_path):
    factory = get_sessionmaker(f"sqlite+pysqlite:///{tmp_path / 'seed.db'}")
    Base.metadata.create_all(factory.kw["bind"])
    return factory


def test_ensure_staff_is_idempotent(factory, caplog) -> None:
    caplog.set_level(logging.INFO, logger="seed")
    for _ in range(2):
        _ensure_staff(
            factory,
            email="agent@example.com",
            name="Agent User",
            password="ChangeMe123!",
            role="agent",
            status="available",
        )

    with factory() as session:
        users = session.execute(select(StaffUser)).scalars().all()
    assert len(users) == 1
    assert users[0].status == "available"
    assert verify_password("ChangeMe123!", users[0].password_hash)[0]
    assert "already exists" in caplog.text
    assert "Default password in use" in caplog.text


def test_default_bot_ships_handoff_tool_and_faqs() -> None:
    bot = _default_bot("gpt-4o-mini")

    assert bot.model == "gpt-4o-mini"
    assert [tool.name for tool in bot.tools] == [HUMAN_HANDOFF_TOOL]
    assert "user_reason" in bot.tools[0].parameters["properties"]
    assert [faq.question for faq in bot.faqs] == [faq.question for faq in DEFAULT_FAQS]


def test_safe_url_hides_password() -> None:
    masked = _safe_url("postgresql://app:hunter2@db:5432/app")
    assert "hunter2" not in masked
    assert masked.startswith("postgresql://app:")
    assert masked.endswith("@db:5432/app")
    assert _safe_url("postgresql://db/app") == "postgresql://db/app"


def test_load_config_requires_database(monkeypatch, fresh_settings) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        _load_config()


def test_load_config_normalises_emails(monkeypatch, fresh_settings) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/app")
    monkeypatch.setenv("SEED_ADMIN_EMAIL", "  Boss@Example.com ")

    config = _load_config()

    assert config.admin_email == "boss@example.com"
    assert config.bot_model == "gpt-4"


def _args(**overrides) -> argparse.Namespace:
    values = {
        "q": "refund money policy",
        "k": 5,
        "threshold": 0.3,
        "bot_config_id": None,
        "answer": False,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.mark.asyncio
async def test_query_prints_ranked_entries(runtime, bot, capsys) -> None:
    await runtime.rebuilder.rebuild(bot.id)

    code = await query._run(runtime, _args())

    out = capsys.readouterr().out
    assert code == 0
    assert "[1] FAQ" in out
    assert "refund" in out


@pytest.mark.asyncio
async def test_query_answer_and_empty_results(runtime, bot, provider, capsys) -> None:
    provider.reply("Refunds take 30 days.")
    code = await query._run(runtime, _args(q="shipping delivery", answer=True))

    out = capsys.readouterr().out
    assert code == 1
    assert "Assistant reply:" in out
    assert "Refunds take 30 days." in out
    assert "Top 0 knowledge entries" in out
