import uuid
from datetime import datetime, timedelta, timezone

import pytest

from conftest import ScriptedProvider

from app.assistant import prompts
from app.assistant.heuristics import reply_suggests_escalation, requests_escalation
from app.assistant.orchestrator import (
    EMPTY_REPLY,
    FAILURE_REPLY,
    NO_PROVIDER_REPLY,
    UNINTERPRETED_TOOL_REPLY,
    ResponseOrchestrator,
)
from app.assistant.providers import ProviderUnavailableError
from app.assistant.tools import HANDOFF_WITHOUT_REASON, PassthroughTool, resolve_tool
from app.bots.schemas import ToolDefinition
from app.conversations.models import MessageRole
from app.conversations.schemas import Message


def _orchestrator(runtime, provider) -> ResponseOrchestrator:
    return ResponseOrchestrator(runtime.bots, runtime.retrieval, provider, runtime.settings)


def _message(role: MessageRole, text: str, minutes: int) -> Message:
    return Message(
        id=uuid.uuid4(),
        conversation_id=uuid.uuid4(),
        text=text,
        role=role,
        author_user_id=None,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_unavailable_provider_asks_for_a_human(runtime, bot):
    reply = await _orchestrator(runtime, ScriptedProvider(available=False)).respond("hi", [], bot.id)
    assert reply.text == NO_PROVIDER_REPLY
    assert reply.escalate is True


@pytest.mark.asyncio
async def test_provider_errors_become_fallback_reply(runtime, bot):
    provider = ScriptedProvider().fail()
    reply = await _orchestrator(runtime, provider).respond("hi", [], bot.id)
    assert (reply.text, reply.escalate) == (FAILURE_REPLY, True)

    provider = ScriptedProvider().fail(ProviderUnavailableError("no key"))
    reply = await _orchestrator(runtime, provider).respond("hi", [], bot.id)
    assert reply.text == NO_PROVIDER_REPLY


@pytest.mark.asyncio
async def test_missing_bot_config_is_a_failure_reply(runtime):
    reply = await _orchestrator(runtime, ScriptedProvider()).respond("hi", [], uuid.uuid4())
    assert (reply.text, reply.escalate) == (FAILURE_REPLY, True)


@pytest.mark.asyncio
async def test_handoff_tool_without_reason(runtime, bot):
    provider = ScriptedProvider().call_tool()
    reply = await _orchestrator(runtime, provider).respond("help", [], bot.id)
    assert reply.text == HANDOFF_WITHOUT_REASON
    assert reply.escalate is True
    assert reply.reason is None
    tools = provider.calls[0]["tools"]
    assert tools[0]["function"]["name"] == "request_human_agent"
    assert "user_reason" in tools[0]["function"]["parameters"]["properties"]


@pytest.mark.asyncio
async def test_unknown_tool_call_is_uninterpreted(runtime, bot):
    provider = ScriptedProvider().call_tool("lookup_order", order="42")
    reply = await _orchestrator(runtime, provider).respond("where is my order", [], bot.id)
    assert (reply.text, reply.escalate) == (UNINTERPRETED_TOOL_REPLY, True)


@pytest.mark.asyncio
async def test_plain_replies_use_limitation_heuristic(runtime, bot):
    provider = ScriptedProvider().reply("Sorry, I cannot help with that.").reply("   ")
    orchestrator = _orchestrator(runtime, provider)

    limited = await orchestrator.respond("Can you fix my car?", [], bot.id)
    assert limited.escalate is True
    assert limited.text == "Sorry, I cannot help with that."

    empty = await orchestrator.respond("hello", [], bot.id)
    assert (empty.text, empty.escalate) == (EMPTY_REPLY, False)


@pytest.mark.asyncio
async def test_prompt_carries_knowledge_and_recent_history(runtime, bot, provider):
    await runtime.rebuilder.rebuild(bot.id)
    history = [_message(MessageRole.CUSTOMER, f"customer {i}", i) for i in range(12)]
    history.append(_message(MessageRole.AGENT, "agent says hi", 20))

    await _orchestrator(runtime, provider).respond("What is your refund policy?", history, bot.id)

    messages = provider.calls[0]["messages"]
    system = messages[0]["content"]
    assert system.startswith("You are a helpful customer service assistant.")
    assert "FAQ Context:\nQ: What are your business hours?" in system
    assert "Knowledge Base Context:\nFAQ: Q: What is your refund policy?" in system
    # ten most recent turns, then the new question
    assert len(messages) == 1 + 10 + 1
    assert messages[-2] == {"role": "assistant", "content": "agent says hi"}
    assert messages[-1] == {"role": "user", "content": "What is your refund policy?"}
    assert provider.calls[0]["temperature"] == 0.7


def test_prompt_sections_are_omitted_when_empty():
    assert prompts.system_prompt("Be nice.", "", "") == "Be nice."
    assert prompts.history_messages([], 10) == []


def test_keyword_heuristics():
    assert requests_escalation("Can I talk to a REAL PERSON please")
    assert not requests_escalation("What are your hours?")
    assert reply_suggests_escalation("I need human help", "Sure")
    assert reply_suggests_escalation("hours?", "Please contact support for that")
    assert not reply_suggests_escalation("hours?", "We open at nine")


def test_declared_tools_resolve_to_kinds():
    passthrough = resolve_tool(ToolDefinition(name="search_docs", description="Search"))
    assert isinstance(passthrough, PassthroughTool)
    assert passthrough.interpret({"q": "x"}) is None
    handoff = resolve_tool(ToolDefinition(name="request_human_agent"))
    outcome = handoff.interpret({"user_reason": "  refund  "})
    assert outcome.reason == "refund"
    assert outcome.text.endswith("refund")
