"""Realtime gateway.

Owns every live websocket. A connection starts unscoped, becomes scoped to one
session after a successful ``subscribe`` handshake, and only then receives
change events for that session.

Outbound frames go through a bounded per-connection queue drained by a writer
task, so ``broadcast`` never awaits a socket: a stalled client only backs up
its own queue, and frames reach each subscriber in the order they were queued.
"""
import asyncio
import json
import logging
import threading
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect

from tabletop.core.config import settings
from tabletop.core.security import verify_token as verify_access_token
from tabletop.services.events import (
    error_frame,
    parse_frame,
    session_id_for,
    subscribed_frame,
    welcome_frame,
)
from tabletop.services.membership import is_participant as check_participant

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Awaitable[Optional[Any]]]
ParticipantCheck = Callable[[str, str, Any], Awaitable[bool]]


class RealtimeConnection:
    def __init__(self, websocket: WebSocket, queue_size: int = 256):
        self.websocket = websocket
        self.session_id: Optional[str] = None
        self.user_id: Optional[Any] = None
        self.closed = False
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None

    @property
    def subscribed(self) -> bool:
        return self.session_id is not None

    def start(self) -> None:
        self._writer = self._loop.create_task(self._write_loop())

    async def stop(self) -> None:
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None

    def enqueue(self, message: str) -> bool:
        """Queue a serialized frame. Safe to call from any thread."""
        if self.closed:
            return False
        try:
            self._loop.call_soon_threadsafe(self._offer, message)
        except RuntimeError:
            # owning event loop already shut down
            return False
        return True

    def send_frame(self, frame: Dict[str, Any]) -> bool:
        return self.enqueue(json.dumps(frame, ensure_ascii=False))

    def _offer(self, message: str) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Realtime send queue full, dropping frame session=%s user=%s",
                self.session_id,
                self.user_id,
            )

    async def _write_loop(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.websocket.send_text(message)
            except Exception as exc:
                logger.info(
                    "Realtime send failed session=%s user=%s: %s",
                    self.session_id,
                    self.user_id,
                    exc,
                )
                self.closed = True
                return


class RealtimeGateway:
    def __init__(
        self,
        verify_token: TokenVerifier,
        is_participant: ParticipantCheck,
        send_queue_size: int = 256,
    ):
        self._verify_token = verify_token
        self._is_participant = is_participant
        self._send_queue_size = send_queue_size
        self._lock = threading.Lock()
        self._connections: Set[RealtimeConnection] = set()
        self._sessions: Dict[str, Set[RealtimeConnection]] = defaultdict(set)

    # Registry

    def register(self, connection: RealtimeConnection) -> None:
        with self._lock:
            self._connections.add(connection)

    def unregister(self, connection: RealtimeConnection) -> None:
        with self._lock:
            self._connections.discard(connection)
            session_id = connection.session_id
            if session_id is None:
                return
            bucket = self._sessions.get(session_id)
            if bucket is not None:
                bucket.discard(connection)
                if not bucket:
                    del self._sessions[session_id]

    def _scope(self, connection: RealtimeConnection, session_id: str, user_id: Any) -> bool:
        with self._lock:
            if connection not in self._connections:
                return False
            connection.session_id = session_id
            connection.user_id = user_id
            self._sessions[session_id].add(connection)
        return True

    def connection_count(self, session_id: Optional[str] = None) -> int:
        with self._lock:
            if session_id is None:
                return len(self._connections)
            return len(self._sessions.get(session_id, ()))

    def recipients(self, session_id: str) -> List[RealtimeConnection]:
        with self._lock:
            return list(self._sessions.get(session_id, ()))

    # Delivery

    def broadcast_to(
        self,
        session_id: str,
        payload: Dict[str, Any],
        audience: Optional[Iterable[Any]] = None,
        excluded: Optional[Iterable[Any]] = None,
    ) -> int:
        """Queue ``payload`` for every connection scoped to ``session_id``.

        ``audience`` restricts delivery to those user ids, ``excluded`` skips
        user ids. Returns the number of connections the frame was queued for.
        """
        if not session_id:
            return 0
        recipients = self.recipients(session_id)
        if not recipients:
            return 0
        audience_set = set(audience) if audience is not None else None
        excluded_set = set(excluded or ())
        message = json.dumps(payload, ensure_ascii=False, default=str)
        delivered = 0
        for connection in recipients:
            if audience_set is not None and connection.user_id not in audience_set:
                continue
            if connection.user_id in excluded_set:
                continue
            if connection.enqueue(message):
                delivered += 1
        return delivered

    def broadcast(self, payload: Dict[str, Any]) -> int:
        return self.broadcast_to(session_id_for(payload.get("table"), payload.get("record")), payload)

    # Protocol

    async def connect(self, websocket: WebSocket) -> RealtimeConnection:
        await websocket.accept()
        connection = RealtimeConnection(websocket, self._send_queue_size)
        self.register(connection)
        connection.start()
        connection.send_frame(welcome_frame())
        return connection

    async def disconnect(self, connection: RealtimeConnection) -> None:
        self.unregister(connection)
        await connection.stop()

    async def handle_message(self, connection: RealtimeConnection, raw: Any) -> None:
        message = parse_frame(raw)
        if message is None or message.get("type") != "subscribe":
            return
        await self._subscribe(connection, message)

    async def _subscribe(self, connection: RealtimeConnection, message: Dict[str, Any]) -> None:
        if connection.subscribed:
            connection.send_frame(error_frame("already subscribed"))
            return

        session_id = message.get("session_id")
        token = message.get("token")
        if not isinstance(session_id, str) or not session_id or not isinstance(token, str) or not token:
            connection.send_frame(error_frame("invalid payload"))
            return

        user = await self._verify_token(token)
        if user is None:
            connection.send_frame(error_frame("unauthorized"))
            return

        user_id = getattr(user, "id", None)
        allowed = await self._is_participant(token, session_id, user_id)
        if not allowed:
            connection.send_frame(error_frame("forbidden"))
            return

        if not self._scope(connection, session_id, user_id):
            return
        logger.info("Realtime subscribed session=%s user=%s", session_id, user_id)
        connection.send_frame(subscribed_frame(session_id))

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection until the client goes away."""
        client_host = websocket.client.host if websocket.client else "unknown"
        connection = await self.connect(websocket)
        logger.info("Realtime connect host=%s", client_host)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await self.handle_message(connection, raw)
        except WebSocketDisconnect as exc:
            logger.info(
                "Realtime disconnect host=%s session=%s code=%s",
                client_host,
                connection.session_id,
                exc.code,
            )
        except Exception:
            logger.exception("Realtime error host=%s session=%s", client_host, connection.session_id)
        finally:
            await self.disconnect(connection)


gateway = RealtimeGateway(
    verify_token=verify_access_token,
    is_participant=check_participant,
    send_queue_size=settings.REALTIME_SEND_QUEUE_SIZE,
)
