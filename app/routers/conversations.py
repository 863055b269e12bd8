"""Conversation management API routes for the agent dashboard."""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..bots.repository import BotConfigNotFoundError
from ..conversations import schemas as convo_schemas
from ..conversations.errors import (
    ConversationNotFoundError,
    InvalidTransitionError,
    MessageValidationError,
)
from ..conversations.models import ConnectionContext, IncomingMessage
from ..core.rate_limit import MESSAGE_RATE_LIMIT, get_client_ip, limiter
from ..core.runtime import ChatRuntime, get_runtime
from ..escalation.directory import StaffMember
from ..security.auth import require_role
from ..security.tokens import StaffIdentity

router = APIRouter(prefix="/api/conversations", tags=["conversations"])

AgentDep = Annotated[StaffMember, Depends(require_role("agent"))]
AdminDep = Annotated[StaffMember, Depends(require_role("admin"))]
RuntimeDep = Annotated[ChatRuntime, Depends(get_runtime)]


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except (ConversationNotFoundError, BotConfigNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


def _staff_context(staff: StaffMember, request: Request) -> ConnectionContext:
    identity = StaffIdentity(agent_id=staff.id, role=staff.role, email=staff.email)
    return ConnectionContext(identity=identity, client_ip=get_client_ip(request))


@router.post(
    "",
    response_model=convo_schemas.Conversation,
    status_code=status.HTTP_201_CREATED,
)
def create_conversation(
    payload: convo_schemas.ConversationCreate,
    runtime: RuntimeDep,
    staff: AgentDep,
) -> convo_schemas.Conversation:
    with _translate_errors():
        return runtime.conversations.create_conversation(payload)


@router.get("", response_model=convo_schemas.ConversationList)
def list_conversations(
    runtime: RuntimeDep,
    staff: AgentDep,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> convo_schemas.ConversationList:
    return runtime.conversations.list_conversations(limit=limit, offset=offset)


@router.get("/{conversation_id}", response_model=convo_schemas.ConversationDetail)
def get_conversation(
    conversation_id: UUID,
    runtime: RuntimeDep,
    staff: AgentDep,
) -> convo_schemas.ConversationDetail:
    with _translate_errors():
        return runtime.conversations.get_conversation(conversation_id)


@router.get("/{conversation_id}/messages", response_model=convo_schemas.MessagePage)
def list_messages(
    conversation_id: UUID,
    runtime: RuntimeDep,
    staff: AgentDep,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    after: UUID | None = None,
    before: UUID | None = None,
) -> convo_schemas.MessagePage:
    with _translate_errors():
        return runtime.conversations.list_messages(
            conversation_id, limit=limit, offset=offset, after=after, before=before
        )


@router.post(
    "/{conversation_id}/messages",
    response_model=convo_schemas.Message,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(MESSAGE_RATE_LIMIT)
async def post_message(
    request: Request,
    conversation_id: UUID,
    payload: convo_schemas.MessageCreate,
    runtime: RuntimeDep,
    staff: AgentDep,
) -> convo_schemas.Message:
    incoming = IncomingMessage(
        conversation_id=conversation_id,
        text=payload.text,
        role=payload.role,
        author_user_id=staff.id,
    )
    with _translate_errors():
        return await runtime.pipeline.ingest(incoming, _staff_context(staff, request))


@router.post("/{conversation_id}/human-takeover", response_model=convo_schemas.TakeoverResponse)
async def human_takeover(
    conversation_id: UUID,
    runtime: RuntimeDep,
    staff: AgentDep,
    payload: convo_schemas.TakeoverRequest | None = None,
) -> convo_schemas.TakeoverResponse:
    reason = payload.reason if payload else None
    with _translate_errors():
        record = await runtime.escalation.take_over(conversation_id, staff, reason)
        detail = runtime.conversations.get_conversation(conversation_id)
    return convo_schemas.TakeoverResponse(conversation=detail, takeover=record)


@router.post("/{conversation_id}/reset", response_model=convo_schemas.Conversation)
async def reset_conversation(
    conversation_id: UUID,
    runtime: RuntimeDep,
    staff: AdminDep,
) -> convo_schemas.Conversation:
    with _translate_errors():
        return await runtime.conversations.reset_to_automated(conversation_id)
