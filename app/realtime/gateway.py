"""WebSocket gateway for the widget and the agent dashboard.

Connections authenticate during the handshake: a ``token`` query parameter or
an ``Authorization: Bearer`` header marks a staff connection, no credential
marks an anonymous widget, and a credential that fails verification is
refused with close code 1008 before any frame is exchanged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from app.app_logging import log_event
from app.core.net import client_ip_from
from app.bots.repository import BotConfigNotFoundError
from app.conversations.errors import (
    ConversationNotFoundError,
    InvalidTransitionError,
    MessageValidationError,
)
from app.conversations.models import (
    ConnectionContext,
    IncomingMessage,
    MessageRole,
    WidgetIdentity,
)
from app.security.auth import extract_bearer_token
from app.security.tokens import (
    StaffIdentity,
    TokenConfigurationError,
    TokenValidationError,
    decode_access_token,
)

from . import events
from .registry import POLICY_VIOLATION, ConnectionEntry

if TYPE_CHECKING:  # pragma: no cover - typing only
    from app.core.runtime import ChatRuntime

logger = logging.getLogger(__name__)

router = APIRouter()

Handler = Callable[["WebSocketConnection", ConnectionEntry, dict[str, Any]], Awaitable[None]]


class WebSocketConnection:
    """Adapter exposing a Starlette WebSocket through the registry's protocol."""

    def __init__(self, websocket: WebSocket) -> None:
        self.id = uuid4().hex
        self._websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return (
            self._closed
            or self._websocket.client_state != WebSocketState.CONNECTED
            or self._websocket.application_state != WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, data: dict[str, Any]) -> None:
        await self._websocket.send_json(data)

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            return
        self._closed = True
        await self._websocket.close(code=code)


class ChatGateway:
    def __init__(self, runtime: "ChatRuntime") -> None:
        self._runtime = runtime
        self._registry = runtime.registry
        self._handlers: dict[str, tuple[Handler, str]] = {
            events.JOIN_CONVERSATION: (self._on_join, "join conversation"),
            events.SEND_MESSAGE: (self._on_send_message, "send message"),
            events.WIDGET_CONNECT: (self._on_widget_connect, "connect widget"),
            events.WIDGET_SEND_MESSAGE: (self._on_widget_send_message, "send message"),
            events.HEARTBEAT_RESPONSE: (self._on_heartbeat_response, "record heartbeat"),
        }

    # ------------------------------------------------------------------
    # Connection lifecycle

    def _authenticate(self, websocket: WebSocket) -> StaffIdentity | WidgetIdentity | None:
        token = websocket.query_params.get("token") or extract_bearer_token(websocket.headers)
        if not token:
            return WidgetIdentity()
        try:
            identity = decode_access_token(token)
        except (TokenValidationError, TokenConfigurationError) as exc:
            logger.info("Rejected WebSocket credential: %s", exc)
            return None
        staff = self._runtime.staff_directory.get(identity.agent_id)
        if staff is None or not staff.is_active:
            logger.info("Rejected WebSocket credential for unknown staff %s", identity.agent_id)
            return None
        return identity

    async def handle(self, websocket: WebSocket) -> None:
        identity = self._authenticate(websocket)
        if identity is None:
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        connection = WebSocketConnection(websocket)
        peer = websocket.client.host if websocket.client else None
        client_ip = client_ip_from(websocket.headers, peer)
        await self._registry.register(connection, identity, client_ip=client_ip)
        logger.info(
            "WebSocket %s connected (%s) from %s",
            connection.id,
            "staff" if isinstance(identity, StaffIdentity) else "widget",
            client_ip,
        )
        try:
            while True:
                raw = await websocket.receive_text()
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            connection.mark_closed()
            await self._registry.unregister(connection.id)
            logger.info("WebSocket %s disconnected", connection.id)

    # ------------------------------------------------------------------
    # Dispatch

    async def _error(self, connection: WebSocketConnection, message: str) -> None:
        await self._registry.send(connection.id, events.ERROR, events.error_payload(message))

    async def dispatch(self, connection: WebSocketConnection, raw: str) -> None:
        entry = self._registry.entry(connection.id)
        if entry is None:
            return
        try:
            envelope = events.Envelope.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            await self._error(connection, "Invalid payload")
            return

        log_event(logger, "received", envelope.event, envelope.data, connection_id=connection.id)
        registered = self._handlers.get(envelope.event)
        if registered is None:
            await self._error(connection, f"Unknown event: {envelope.event}")
            return
        handler, action = registered
        try:
            await handler(connection, entry, envelope.data)
        except ValidationError:
            await self._error(connection, "Invalid payload")
        except ConversationNotFoundError:
            await self._error(connection, "Conversation not found")
        except BotConfigNotFoundError:
            await self._error(connection, "Bot configuration not found")
        except (MessageValidationError, InvalidTransitionError) as exc:
            await self._error(connection, str(exc))
        except Exception:
            logger.exception("Failed to %s on connection %s", action, connection.id)
            await self._error(connection, f"Failed to {action}")

    def _context(self, entry: ConnectionEntry) -> ConnectionContext:
        return ConnectionContext(identity=entry.identity, client_ip=entry.client_ip)

    def _require_visible(self, entry: ConnectionEntry, conversation_id: UUID) -> None:
        """Widgets only see conversations of the customer they connected as."""

        conversation = self._runtime.conversations.require(conversation_id)
        if isinstance(entry.identity, WidgetIdentity) and conversation.customer_id != entry.identity.customer_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")

    # ------------------------------------------------------------------
    # Handlers

    async def _on_join(self, connection: WebSocketConnection, entry: ConnectionEntry, data: dict[str, Any]) -> None:
        request = events.JoinConversation.model_validate(data)
        self._require_visible(entry, request.conversation_id)
        await self._registry.join(connection.id, request.conversation_id)
        await self._registry.send(
            connection.id,
            events.JOINED_CONVERSATION,
            {"conversationId": str(request.conversation_id)},
        )

    async def _on_send_message(
        self, connection: WebSocketConnection, entry: ConnectionEntry, data: dict[str, Any]
    ) -> None:
        request = events.SendMessage.model_validate(data)
        self._require_visible(entry, request.conversation_id)
        await self._runtime.pipeline.ingest(
            IncomingMessage(
                conversation_id=request.conversation_id,
                text=request.text,
                role=request.role,
            ),
            self._context(entry),
        )

    async def _on_widget_connect(
        self, connection: WebSocketConnection, entry: ConnectionEntry, data: dict[str, Any]
    ) -> None:
        if not isinstance(entry.identity, WidgetIdentity):
            await self._error(connection, "Invalid connection type")
            return
        request = events.WidgetConnect.model_validate(data)
        entry.identity = WidgetIdentity(customer_id=request.customer_id)
        await self._registry.send(
            connection.id, events.WIDGET_CONNECTED, {"customerId": request.customer_id}
        )

    async def _on_widget_send_message(
        self, connection: WebSocketConnection, entry: ConnectionEntry, data: dict[str, Any]
    ) -> None:
        if not isinstance(entry.identity, WidgetIdentity):
            await self._error(connection, "Invalid connection type")
            return
        request = events.WidgetSendMessage.model_validate(data)
        conversations = self._runtime.conversations
        conversation = conversations.find_or_create_for_widget(
            request.customer_id,
            request.bot_config_id,
            conversation_id=request.conversation_id,
            customer_ip=entry.client_ip,
        )
        if conversation.customer_id != request.customer_id:
            raise ConversationNotFoundError(f"Conversation {conversation.id} not found")
        await self._registry.join(connection.id, conversation.id)
        message = await self._runtime.pipeline.ingest(
            IncomingMessage(conversation_id=conversation.id, text=request.text, role=MessageRole.CUSTOMER),
            self._context(entry),
        )
        await self._registry.send(
            connection.id,
            events.MESSAGE_SENT,
            {"conversationId": str(conversation.id), "messageId": str(message.id)},
        )

    async def _on_heartbeat_response(
        self, connection: WebSocketConnection, entry: ConnectionEntry, data: dict[str, Any]
    ) -> None:
        self._registry.acknowledge_heartbeat(connection.id)


@router.websocket("/chat")
async def chat_socket(websocket: WebSocket) -> None:
    await ChatGateway(websocket.app.state.runtime).handle(websocket)


__all__ = ["ChatGateway", "WebSocketConnection", "router"]
