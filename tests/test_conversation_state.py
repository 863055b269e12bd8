import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.conversations import schemas
from app.conversations.errors import InvalidTransitionError
from app.conversations.models import ConversationStatus as Status
from app.conversations.repository import InMemoryConversationRepository
from app.conversations.state import (
    ConversationLocks,
    ConversationStateMachine,
    can_transition,
    next_timestamp,
)
from app.core.locks import KeyedLocks


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (Status.AUTOMATED, Status.PENDING, True),
        (Status.AUTOMATED, Status.HUMAN, True),
        (Status.PENDING, Status.HUMAN, True),
        (Status.PENDING, Status.AUTOMATED, False),
        (Status.HUMAN, Status.PENDING, False),
        (Status.HUMAN, Status.AUTOMATED, False),
        (Status.AUTOMATED, Status.AUTOMATED, False),
    ],
)
def test_transition_graph(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_next_timestamp_is_strictly_later_when_clock_stalls():
    last = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert next_timestamp(last, now=last) == last + timedelta(microseconds=1)
    assert next_timestamp(last, now=last - timedelta(seconds=5)) > last
    later = last + timedelta(seconds=1)
    assert next_timestamp(last, now=later) == later
    assert next_timestamp(None, now=later) == later


def _conversation(repo: InMemoryConversationRepository) -> schemas.Conversation:
    return repo.create_conversation(
        "cust-1", uuid.uuid4(), created_at=datetime.now(timezone.utc)
    )


def test_state_machine_moves_forward_and_binds_agent():

    repo = InMemoryConversationRepository()
    machine = ConversationStateMachine(repo)
    conversation = _conversation(repo)
    assert conversation.status == Status.AUTOMATED
    assert conversation.assigned_user_id is None

    pending = machine.request_pending(conversation)
    assert pending.status == Status.PENDING
    assert machine.request_pending(pending) is pending

    agent_id = uuid.uuid4()
    human = machine.assign_human(pending, agent_id)
    assert human.status == Status.HUMAN
    assert human.assigned_user_id == agent_id
    assert human.updated_at > pending.updated_at

    with pytest.raises(InvalidTransitionError):
        machine.request_pending(human)
    with pytest.raises(InvalidTransitionError):
        machine.assign_human(human, uuid.uuid4())


def test_reset_releases_the_agent():

    repo = InMemoryConversationRepository()
    machine = ConversationStateMachine(repo)
    human = machine.assign_human(_conversation(repo), uuid.uuid4())
    reset = machine.reset_to_automated(human)
    assert reset.status == Status.AUTOMATED
    assert reset.assigned_user_id is None


@pytest.mark.asyncio
async def test_locks_serialize_and_are_discarded():

    locks = ConversationLocks()
    conversation_id = uuid.uuid4()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold(conversation_id):
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (
        ["a-start", "a-end", "b-start", "b-end"],
        ["b-start", "b-end", "a-start", "a-end"],
    )
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_locks_release_on_error():

    locks = ConversationLocks()
    conversation_id = uuid.uuid4()
    with pytest.raises(RuntimeError):
        async with locks.hold(conversation_id):
            raise RuntimeError("boom")
    assert len(locks) == 0
    async with locks.hold(conversation_id):
        assert len(locks) == 1


@pytest.mark.asyncio
async def test_locks_for_distinct_conversations_do_not_block():

    locks = ConversationLocks()
    assert isinstance(locks, KeyedLocks)
    first, second = uuid.uuid4(), uuid.uuid4()
    async with locks.hold(first):
        await asyncio.wait_for(_hold_briefly(locks, second), timeout=1)
        assert len(locks) == 1
    assert len(locks) == 0


async def _hold_briefly(locks: ConversationLocks, key: uuid.UUID) -> None:
    async with locks.hold(key):
        assert len(locks) == 2
