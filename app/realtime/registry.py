"""Live connection registry and per-conversation rooms.

The registry is a table owned by the event loop and guarded by an
:class:`asyncio.Lock`. Entries leave it in two ways: eagerly when a socket
disconnects, and lazily when the periodic liveness sweep finds a connection
that is closed or never answered the previous heartbeat. Sends happen outside
the lock on a snapshot of the room so one slow socket cannot stall the table.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set
from uuid import UUID

from app.app_logging import log_event
from app.conversations.models import Identity

from . import events

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


class Connection(Protocol):
    """Transport used by the registry; WebSockets in production."""

    id: str

    @property
    def closed(self) -> bool: ...

    async def send_json(self, data: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class ConnectionEntry:
    connection: Connection
    identity: Identity
    client_ip: Optional[str] = None
    rooms: Set[UUID] = field(default_factory=set)
    awaiting_heartbeat: bool = False


class ConnectionRegistry:
    """Track live connections and fan events out to conversation rooms."""

    def __init__(self) -> None:
        self._entries: Dict[str, ConnectionEntry] = {}
        self._rooms: Dict[UUID, Set[str]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    # ------------------------------------------------------------------
    # Membership

    async def register(
        self, connection: Connection, identity: Identity, *, client_ip: Optional[str] = None
    ) -> ConnectionEntry:
        entry = ConnectionEntry(connection=connection, identity=identity, client_ip=client_ip)
        async with self._lock:
            self._entries[connection.id] = entry
        logger.debug("Registered connection %s", connection.id)
        return entry

    async def unregister(self, connection_id: str) -> None:
        async with self._lock:
            self._drop(connection_id)
        logger.debug("Unregistered connection %s", connection_id)

    async def join(self, connection_id: str, conversation_id: UUID) -> None:
        async with self._lock:
            entry = self._entries.get(connection_id)
            if entry is None:
                raise KeyError(f"Connection {connection_id} is not registered")
            entry.rooms.add(conversation_id)
            self._rooms.setdefault(conversation_id, set()).add(connection_id)

    def entry(self, connection_id: str) -> Optional[ConnectionEntry]:
        return self._entries.get(connection_id)

    def members(self, conversation_id: UUID) -> Set[str]:
        return set(self._rooms.get(conversation_id, ()))

    def room_count(self) -> int:
        return len(self._rooms)

    def _drop(self, connection_id: str) -> Optional[ConnectionEntry]:
        entry = self._entries.pop(connection_id, None)
        if entry is None:
            return None
        for room in entry.rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._rooms[room]
        return entry

    async def _prune(self, connection_ids: Iterable[str]) -> List[ConnectionEntry]:
        async with self._lock:
            dropped = [self._drop(cid) for cid in connection_ids]
        return [entry for entry in dropped if entry is not None]

    # ------------------------------------------------------------------
    # Delivery

    async def _deliver(self, entry: ConnectionEntry, event: str, payload: dict[str, Any]) -> bool:
        if entry.connection.closed:
            return False
        try:
            await entry.connection.send_json(events.envelope(event, payload))
        except Exception as exc:
            logger.warning("Send of %s to %s failed: %s", event, entry.connection.id, exc)
            return False
        log_event(logger, "sent", event, payload, connection_id=entry.connection.id)
        return True

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Send one event to a single connection; a failure prunes it."""

        entry = self._entries.get(connection_id)
        if entry is None:
            return False
        delivered = await self._deliver(entry, event, payload)
        if not delivered:
            await self._prune([connection_id])
        return delivered

    async def broadcast(self, conversation_id: UUID, event: str, payload: dict[str, Any]) -> int:
        """Send ``event`` to every member of the room; return the delivery count.

        A failing member is pruned without interrupting the others.
        """

        async with self._lock:
            targets = [
                self._entries[cid] for cid in self._rooms.get(conversation_id, ()) if cid in self._entries
            ]
        results = await asyncio.gather(*(self._deliver(entry, event, payload) for entry in targets))
        dead = [entry.connection.id for entry, ok in zip(targets, results) if not ok]
        if dead:
            await self._prune(dead)
        return sum(1 for ok in results if ok)

    # ------------------------------------------------------------------
    # Liveness

    def acknowledge_heartbeat(self, connection_id: str) -> None:
        entry = self._entries.get(connection_id)
        if entry is not None:
            entry.awaiting_heartbeat = False

    async def sweep(self) -> List[str]:
        """Prune unresponsive connections and ping the rest.

        Returns the ids of the connections removed by this sweep.
        """

        async with self._lock:
            snapshot = list(self._entries.values())
        stale = [e for e in snapshot if e.connection.closed or e.awaiting_heartbeat]
        live = [e for e in snapshot if not (e.connection.closed or e.awaiting_heartbeat)]

        payload = events.heartbeat_payload()
        results = await asyncio.gather(*(self._deliver(e, events.HEARTBEAT, payload) for e in live))
        for entry, ok in zip(live, results):
            if ok:
                entry.awaiting_heartbeat = True
            else:
                stale.append(entry)

        removed = await self._prune(e.connection.id for e in stale)
        for entry in removed:
            if not entry.connection.closed:
                try:
                    await entry.connection.close(code=1001)
                except Exception as exc:
                    logger.debug("Closing %s failed: %s", entry.connection.id, exc)
        if removed:
            logger.info("Liveness sweep pruned %d connection(s)", len(removed))
        return [entry.connection.id for entry in removed]

    async def run_liveness(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled."""

        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")


__all__ = ["Connection", "ConnectionEntry", "ConnectionRegistry", "POLICY_VIOLATION"]
