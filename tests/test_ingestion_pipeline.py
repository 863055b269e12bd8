import asyncio
import uuid

import pytest

from conftest import staff_context, watch, widget_context

from app.conversations.errors import ConversationNotFoundError, MessageValidationError
from app.conversations.models import ConversationStatus, IncomingMessage, MessageRole
from app.escalation.manager import (
    ASSISTANT_SUGGESTION_REASON,
    CUSTOMER_REQUEST_REASON,
    PENDING_RETRY_REASON,
)
from app.realtime import events


def _roles(runtime, conversation_id):
    page = runtime.conversations.list_messages(conversation_id, limit=100)
    return [m.role for m in page.messages]


@pytest.mark.asyncio
async def test_customer_message_receives_assistant_reply(runtime, bot, provider):
    provider.reply("We are open 9 AM to 5 PM.")
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    observer = await watch(runtime, conversation.id)

    message = await runtime.pipeline.ingest(
        IncomingMessage(conversation.id, "What are your business hours?"), widget_context()
    )
    await runtime.pipeline.drain()

    assert message.role == MessageRole.CUSTOMER
    assert message.author_user_id is None
    page = runtime.conversations.list_messages(conversation.id)
    assert [m.role for m in page.messages] == [MessageRole.CUSTOMER, MessageRole.ASSISTANT]
    assert page.messages[1].text == "We are open 9 AM to 5 PM."

    stored = runtime.conversations.require(conversation.id)
    assert stored.status == ConversationStatus.AUTOMATED
    assert stored.message_count == 2
    assert stored.customer_ip == "203.0.113.7"
    assert stored.last_message_at == page.messages[1].created_at

    assert observer.names() == [events.NEW_MESSAGE, events.NEW_MESSAGE]
    assert observer.events()[0]["conversationId"] == str(conversation.id)

    sent = provider.calls[0]
    assert sent["model"] == "gpt-4"
    assert sent["max_tokens"] == 500
    assert "FAQ Context:" in sent["messages"][0]["content"]
    user_turns = [m for m in sent["messages"] if m["role"] == "user"]
    assert user_turns == [{"role": "user", "content": "What are your business hours?"}]


@pytest.mark.asyncio
async def test_history_excludes_the_triggering_message(runtime, bot, provider):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Hello there"), widget_context())
    await runtime.pipeline.drain()
    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Second question"), widget_context())
    await runtime.pipeline.drain()

    second = provider.calls[1]["messages"]
    assert [m["role"] for m in second] == ["system", "user", "assistant", "user"]
    assert second[1]["content"] == "Hello there"
    assert second[-1]["content"] == "Second question"


@pytest.mark.asyncio
async def test_escalation_keyword_hands_over_without_assistant_reply(runtime, bot, provider, staff):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    observer = await watch(runtime, conversation.id)

    await runtime.pipeline.ingest(
        IncomingMessage(conversation.id, "I want to speak to someone right now"), widget_context()
    )
    await runtime.pipeline.drain()

    detail = runtime.conversations.get_conversation(conversation.id)
    assert detail.status == ConversationStatus.HUMAN
    assert detail.assigned_user_id == staff.agent.id
    assert [t.reason for t in detail.takeovers] == [CUSTOMER_REQUEST_REASON]
    assert provider.calls == []

    page = runtime.conversations.list_messages(conversation.id)
    assert [m.role for m in page.messages] == [MessageRole.CUSTOMER, MessageRole.AGENT]
    assert page.messages[1].text == "Human agent Sam Agent has joined the conversation."
    assert page.messages[1].author_user_id == staff.agent.id
    assert page.messages[1].created_at > page.messages[0].created_at

    status = observer.events(events.STATUS_CHANGED)
    assert status == [
        {
            "conversationId": str(conversation.id),
            "status": "human",
            "assignedAgent": {
                "id": str(staff.agent.id),
                "name": "Sam Agent",
                "email": "agent@example.com",
            },
        }
    ]


@pytest.mark.asyncio
async def test_handoff_tool_marks_pending_then_escalates(runtime, bot, provider, staff):
    provider.call_tool(user_reason="billing dispute")
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    observer = await watch(runtime, conversation.id)

    await runtime.pipeline.ingest(
        IncomingMessage(conversation.id, "My invoice is wrong"), widget_context()
    )
    await runtime.pipeline.drain()

    detail = runtime.conversations.get_conversation(conversation.id)
    assert detail.status == ConversationStatus.HUMAN
    assert detail.takeovers[0].reason == f"{ASSISTANT_SUGGESTION_REASON}: billing dispute"
    assert _roles(runtime, conversation.id) == [
        MessageRole.CUSTOMER,
        MessageRole.ASSISTANT,
        MessageRole.AGENT,
    ]
    statuses = [payload["status"] for payload in observer.events(events.STATUS_CHANGED)]
    assert statuses == ["pending", "human"]


@pytest.mark.asyncio
async def test_pending_conversation_retries_when_customer_writes_again(runtime, bot, provider, staff):
    staff.directory.set_status(staff.agent.id, "offline")
    provider.call_tool()
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)

    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Help me"), widget_context())
    await runtime.pipeline.drain()
    pending = runtime.conversations.get_conversation(conversation.id)
    assert pending.status == ConversationStatus.PENDING
    assert pending.takeovers == []

    staff.directory.set_status(staff.agent.id, "available")
    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Still there?"), widget_context())
    await runtime.pipeline.drain()

    detail = runtime.conversations.get_conversation(conversation.id)
    assert detail.status == ConversationStatus.HUMAN
    assert [t.reason for t in detail.takeovers] == [PENDING_RETRY_REASON]
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_human_conversation_gets_no_assistant_reply(runtime, bot, provider, staff):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    await runtime.escalation.take_over(conversation.id, staff.agent)

    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Thanks!"), widget_context())
    await runtime.pipeline.drain()

    assert provider.calls == []
    assert _roles(runtime, conversation.id) == [MessageRole.AGENT, MessageRole.CUSTOMER]


@pytest.mark.asyncio
async def test_reply_that_loses_the_race_to_a_takeover_is_dropped(runtime, bot, provider, staff):
    release = asyncio.Event()
    original = provider.complete

    async def slow_complete(**kwargs):
        await release.wait()
        return await original(**kwargs)

    provider.complete = slow_complete
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Question"), widget_context())
    assert runtime.pipeline.pending_tasks == 1

    await runtime.escalation.take_over(conversation.id, staff.agent)
    release.set()
    await runtime.pipeline.drain()

    assert _roles(runtime, conversation.id) == [MessageRole.CUSTOMER, MessageRole.AGENT]


@pytest.mark.asyncio
async def test_provider_failure_falls_back_and_escalates(runtime, bot, provider, staff):
    provider.fail()
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    await runtime.pipeline.ingest(IncomingMessage(conversation.id, "Question"), widget_context())
    await runtime.pipeline.drain()

    page = runtime.conversations.list_messages(conversation.id)
    assert page.messages[1].text.startswith("I'm experiencing technical difficulties")
    assert runtime.conversations.require(conversation.id).status == ConversationStatus.HUMAN


@pytest.mark.asyncio
async def test_agent_message_from_staff_does_not_trigger_follow_up(runtime, bot, provider, staff):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    message = await runtime.pipeline.ingest(
        IncomingMessage(conversation.id, "Hi, this is Sam", role=MessageRole.AGENT),
        staff_context(staff.agent),
    )
    assert message.author_user_id == staff.agent.id
    assert runtime.pipeline.pending_tasks == 0
    stored = runtime.conversations.require(conversation.id)
    assert stored.customer_ip is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("text", "role", "error"),
    [
        ("   ", MessageRole.CUSTOMER, "Message text is required"),
        ("x" * 5001, MessageRole.CUSTOMER, "Message too long"),
        ("hello", MessageRole.AGENT, "not allowed"),
        ("hello", MessageRole.ASSISTANT, "not allowed"),
        ("hello", "robot", "Unknown role"),
    ],
)
async def test_widget_validation(runtime, bot, text, role, error):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    with pytest.raises(MessageValidationError, match=error):
        await runtime.pipeline.ingest(IncomingMessage(conversation.id, text, role=role), widget_context())
    assert runtime.conversations.require(conversation.id).message_count == 0


@pytest.mark.asyncio
async def test_unknown_conversation_is_rejected(runtime):
    with pytest.raises(ConversationNotFoundError):
        await runtime.pipeline.ingest(IncomingMessage(uuid.uuid4(), "hello"), widget_context())


@pytest.mark.asyncio
async def test_concurrent_messages_keep_strict_order(runtime, bot, staff):
    conversation = runtime.conversations.find_or_create_for_widget("cust-1", bot.id)
    await runtime.escalation.take_over(conversation.id, staff.agent)

    await asyncio.gather(
        *(
            runtime.pipeline.ingest(IncomingMessage(conversation.id, f"message {i}"), widget_context())
            for i in range(20)
        )
    )
    page = runtime.conversations.list_messages(conversation.id, limit=100)
    stamps = [m.created_at for m in page.messages]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)
    assert runtime.conversations.require(conversation.id).message_count == 21
