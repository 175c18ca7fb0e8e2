"""WebSocket connection manager for the encrypted chat relay.

This module owns the per-socket sessions, the authorized broadcast group and
the publish path (normalize → history → durable mirror → broadcast). It never
decodes message contents: ``cipherText`` and ``iv`` are relayed as given.

Key features:
    - One process-wide room with a bounded history
    - Access gate (open, shared secret or named join)
    - Authorized-only fan-out of messages and reaction updates
    - Concurrent message broadcasting with asyncio.gather()
    - Automatic dead connection cleanup
    - Delayed close after an authorization denial
    - History replay from the durable store with in-memory fallback

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.

Ordering:
    Append + broadcast of a publish run under one asyncio.Lock, so every
    client observes the same global order. History replay and the join to
    the authorized group take the same lock. Durable writes are detached tasks
    and carry no ordering guarantee.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from relay.config import AppConfig
from relay.store import DurableMirror, HistoryStore, StoreError

from .access import AccessGate, ChatSession
from .history import BoundedHistory
from .normalizer import InvalidPayload, normalize_message
from .reactions import parse_reaction_request, toggle_reaction
from .schemas import AnyRecord, EventType, ReactionUpdate, record_to_wire

logger = logging.getLogger(__name__)

# WebSocket close code for policy violations (bad credentials)
POLICY_VIOLATION = 1008


class BroadcastScope(str, Enum):
    """Which sockets receive a broadcast.

    Attributes:
        EVERYONE: Every connected socket, authorized or not.
        AUTHORIZED: Only sockets that passed the access gate.
    """
    EVERYONE = "everyone"
    AUTHORIZED = "authorized"


# =============================================================================
# Relay context
# =============================================================================


@dataclass
class RelayContext:
    """Process-wide state shared by every connection.

    Built once at startup and injected into the ConnectionManager instead of
    living in module globals.
    """
    config: AppConfig
    history: BoundedHistory
    gate: AccessGate
    mirror: Optional[DurableMirror] = None

    @classmethod
    def from_config(
        cls, config: AppConfig, store: Optional[HistoryStore] = None
    ) -> "RelayContext":
        capacity = config.chat.max_history
        return cls(
            config=config,
            history=BoundedHistory(capacity),
            gate=AccessGate(config.chat.access_mode, config.shared_secret),
            mirror=DurableMirror(store, capacity) if store is not None else None,
        )

    @property
    def allowed_emojis(self) -> List[str]:
        return self.config.chat.allowed_emojis


# =============================================================================
# Connection Manager
# =============================================================================


class ConnectionManager:
    """Manages chat sockets, the authorized group and the publish path.

    Security Model:
        - Author tags are assigned by the backend (never taken from payloads)
        - Only authorized sockets may publish or receive messages/reactions
        - Unauthorized publishes are dropped silently (logged server-side)
    """

    def __init__(self, context: RelayContext) -> None:
        self.context = context

        # websocket -> session, for every accepted connection
        self.sessions: Dict[WebSocket, ChatSession] = {}

        # the authorized broadcast group
        self.authorized: Set[WebSocket] = set()

        # websocket -> pending delayed-close task (after an auth denial)
        self._pending_closes: Dict[WebSocket, asyncio.Task] = {}

        # serializes append + broadcast so all clients see one order
        self._publish_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, websocket: WebSocket) -> ChatSession:
        """Accept a WebSocket connection and create its session."""
        await websocket.accept()
        session = ChatSession()
        self.sessions[websocket] = session
        logger.info(f"[Manager] Socket connected: {session.socket_id} ({session.autor})")
        return session

    def authorize(self, websocket: WebSocket) -> None:
        """Add an authorized session to the broadcast group (permanent).

        A close still pending from an earlier denial is cancelled.
        """
        session = self.sessions.get(websocket)
        if session is None or not session.authorized:
            return
        if self._cancel_pending_close(websocket):
            logger.info(f"[Manager] Pending close of {session.socket_id} cancelled after successful retry")
        self.authorized.add(websocket)
        logger.info(f"[Manager] Socket {session.socket_id} authorized as {session.autor}")

    def disconnect(self, websocket: WebSocket) -> Optional[ChatSession]:
        """Forget a socket and cancel any pending close for it."""
        self.authorized.discard(websocket)
        self._cancel_pending_close(websocket)
        session = self.sessions.pop(websocket, None)
        if session is not None:
            logger.info(f"[Manager] Socket disconnected: {session.socket_id} ({session.autor})")
        return session

    def schedule_close(self, websocket: WebSocket, delay_seconds: float) -> Optional[asyncio.Task]:
        """Close *websocket* after *delay_seconds*, letting a denial flush first.

        Only one close is scheduled per socket; later denials reuse it.
        """
        existing = self._pending_closes.get(websocket)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.ensure_future(self._close_later(websocket, delay_seconds))
        self._pending_closes[websocket] = task
        task.add_done_callback(self._on_close_done)
        return task

    def _cancel_pending_close(self, websocket: WebSocket) -> bool:
        """Cancel the delayed close of *websocket*. Returns True if one was pending."""
        pending = self._pending_closes.pop(websocket, None)
        if pending is None or pending.done():
            return False
        pending.cancel()
        return True

    def _on_close_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"[Manager] Delayed close failed: {exc!r}")

    async def _close_later(self, websocket: WebSocket, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        await self.close(websocket)

    async def close(self, websocket: WebSocket, code: int = POLICY_VIOLATION) -> None:
        """Close *websocket* now, ignoring sockets that are already gone."""
        try:
            await websocket.close(code=code)
        except RuntimeError as e:
            logger.debug(f"Close on finished connection ignored: {e}")

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def load_history(self) -> List[AnyRecord]:
        """Return the history to replay to a newly authorized socket.

        Reads the durable store when one is configured, falling back to the
        in-memory snapshot on any store error. The first successful read also
        hydrates an empty in-memory buffer.
        """
        history = self.context.history
        mirror = self.context.mirror
        if mirror is None:
            return history.snapshot()
        try:
            records = await mirror.load_recent()
        except StoreError as e:
            logger.error(f"[DB] Error reading history, using in-memory copy: {e}")
            return history.snapshot()
        history.hydrate(records)
        return records

    async def grant_access(self, websocket: WebSocket) -> List[AnyRecord]:
        """Send the history to a newly authorized socket, then join it to the group.

        Runs under the publish lock, so no message can be appended between
        the history read and the join: the socket sees every message either
        in its ``historial`` or as a later ``mensaje``, exactly once.
        """
        async with self._publish_lock:
            history = await self.load_history()
            await self.send(websocket, EventType.HISTORY, {
                "mensajes": [record_to_wire(record) for record in history]
            })
            self.authorize(websocket)
        return history

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish_message(self, websocket: WebSocket, data: Any) -> Optional[AnyRecord]:
        """Normalize, store and broadcast one ``mensaje`` from *websocket*.

        Returns:
            The stored record, or None if the publish was dropped.
        """
        session = self.sessions.get(websocket)
        if session is None or not session.authorized:
            logger.warning(
                f"[!] Unauthorized socket tried to send a message: "
                f"{session.socket_id if session else 'unknown'}"
            )
            return None

        # The id is always server-generated for client publishes
        if isinstance(data, dict):
            data = {key: value for key, value in data.items() if key not in ("id", "type")}
        try:
            record = normalize_message(data, session.autor, self.context.allowed_emojis)
        except InvalidPayload as e:
            logger.info(f"[WS] Invalid message from {session.autor} dropped: {e}")
            return None

        logger.info(f"[WS] {record.tipo} message {record.id} from {session.autor}")

        async with self._publish_lock:
            self.context.history.append(record)
            if self.context.mirror is not None:
                self.context.mirror.append(record)
            await self.broadcast(EventType.MESSAGE, record_to_wire(record), BroadcastScope.AUTHORIZED)
        return record

    async def react(self, websocket: WebSocket, data: Any) -> Optional[ReactionUpdate]:
        """Toggle the sender's reaction on a message and broadcast the new map.

        Silent no-op when the emoji is not allowed, an id is blank, the
        sender is unauthorized, or the message is not in the history.
        """
        session = self.sessions.get(websocket)
        if session is None or not session.authorized:
            logger.warning("[!] Unauthorized socket tried to react")
            return None
        if not isinstance(data, dict):
            return None
        request = parse_reaction_request(data, self.context.allowed_emojis)
        if request is None:
            logger.info(f"[WS] Invalid reaction from {session.autor} dropped")
            return None
        message_id, emoji = request

        async with self._publish_lock:
            record = self.context.history.find_by_id(message_id)
            if record is None:
                logger.info(f"[WS] Reaction for unknown message {message_id} dropped")
                return None
            reactions = toggle_reaction(record.reacciones, emoji, session.autor)
            self.context.history.replace_reactions(message_id, reactions)
            if self.context.mirror is not None:
                self.context.mirror.update_reactions(message_id, reactions)
            update = ReactionUpdate(mensajeId=message_id, reacciones=reactions)
            await self.broadcast(EventType.REACTION_UPDATED, update.model_dump(), BroadcastScope.AUTHORIZED)
        return update

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send(self, websocket: WebSocket, event: EventType, payload: Optional[dict] = None) -> bool:
        """Send one event to one socket. Returns False if the send failed."""
        return await self._safe_send(websocket, {"type": event.value, **(payload or {})})

    async def broadcast(
        self,
        event: EventType,
        payload: dict,
        scope: BroadcastScope = BroadcastScope.AUTHORIZED,
    ) -> None:
        """Broadcast an event to the sockets in *scope* concurrently.

        Delivery is best effort: sockets whose send fails are dropped from
        the broadcast targets.
        """
        if scope == BroadcastScope.EVERYONE:
            connections = list(self.sessions.keys())
        else:
            connections = list(self.authorized)
        if not connections:
            return

        message = {"type": event.value, **payload}
        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        self._cleanup_connections(failed_connections)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _cleanup_connections(self, failed_connections: List[WebSocket]) -> None:
        """Remove dead connections from the broadcast group."""
        for conn in failed_connections:
            if conn in self.authorized:
                self.authorized.discard(conn)
                logger.debug("Removed dead connection from authorized group")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_connection_count(self) -> int:
        return len(self.sessions)

    def get_authorized_count(self) -> int:
        return len(self.authorized)
