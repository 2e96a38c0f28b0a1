"""
WebSocket fan-out for presence, typing indicators and push events.

Every authenticated socket joins its user's room; sockets may also join
conversation rooms (participants only, checked by `authorize_join`).
Delivery is best-effort and at-most-once: a failed send drops the frame and
the client is expected to re-fetch over REST after reconnecting.

Outgoing frames are `{"event": <name>, "data": {...}}`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)

RELAYED_EVENTS = {"typing", "stop_typing"}


class ConnectionManager:
    def __init__(
        self,
        authorize_join: Optional[Callable[[str, str], bool]] = None,
        on_read: Optional[Callable[[str, str], Awaitable[Any]]] = None,
    ) -> None:
        self._authorize_join = authorize_join or (lambda user_id, conversation_id: False)
        # (user_id, conversation_id) -> persists the read receipt and notifies the other participants
        self._on_read = on_read
        self._user_sockets: Dict[str, Set[Any]] = {}
        self._rooms: Dict[str, Set[Any]] = {}
        self._socket_users: Dict[Any, str] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, user_id: str, websocket: Any) -> None:
        async with self._lock:
            first = not self._user_sockets.get(user_id)
            self._user_sockets.setdefault(user_id, set()).add(websocket)
            self._socket_users[websocket] = user_id
        logger.info("User %s connected (%d sockets)", user_id, len(self._user_sockets[user_id]))
        if first:
            await self.broadcast("user_online", {"user_id": user_id}, exclude_user=user_id)

    async def disconnect(self, websocket: Any) -> None:
        async with self._lock:
            user_id = self._socket_users.pop(websocket, None)
            if user_id is None:
                return
            sockets = self._user_sockets.get(user_id, set())
            sockets.discard(websocket)
            last = not sockets
            if last:
                self._user_sockets.pop(user_id, None)
            for members in self._rooms.values():
                members.discard(websocket)
            self._rooms = {cid: members for cid, members in self._rooms.items() if members}
        logger.info("User %s disconnected", user_id)
        if last:
            await self.broadcast("user_offline", {"user_id": user_id, "last_seen": utcnow().isoformat()})

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_sockets.get(user_id))

    def online_users(self) -> Set[str]:
        return {uid for uid, sockets in self._user_sockets.items() if sockets}

    def room_members(self, conversation_id: str) -> Set[str]:
        return {self._socket_users[s] for s in self._rooms.get(conversation_id, set()) if s in self._socket_users}

    # ------------------------------------------------------------------
    # Incoming client events
    # ------------------------------------------------------------------

    async def handle_event(self, websocket: Any, payload: Dict[str, Any]) -> None:
        user_id = self._socket_users.get(websocket)
        if user_id is None:
            return
        event_type = str(payload.get("type") or "")
        conversation_id = str(payload.get("conversation_id") or "")

        if event_type == "join_conversation":
            if conversation_id and self._authorize_join(user_id, conversation_id):
                self._rooms.setdefault(conversation_id, set()).add(websocket)
                await self._send(websocket, "joined_conversation", {"conversation_id": conversation_id})
            else:
                await self._send(websocket, "error", {"message": "Not a participant of this conversation"})
        elif event_type == "leave_conversation":
            self._rooms.get(conversation_id, set()).discard(websocket)
        elif event_type in RELAYED_EVENTS:
            if websocket in self._rooms.get(conversation_id, set()):
                await self.emit_to_conversation(
                    conversation_id,
                    event_type,
                    {"conversation_id": conversation_id, "user_id": user_id},
                    exclude_socket=websocket,
                )
        elif event_type == "read":
            if websocket not in self._rooms.get(conversation_id, set()):
                return
            if self._on_read is not None:
                try:
                    await self._on_read(user_id, conversation_id)
                except Exception as e:
                    logger.warning("Read receipt from %s in %s failed: %s", user_id, conversation_id, e)
                    await self._send(websocket, "error", {"message": "Could not mark messages as read"})
            else:
                await self.emit_to_conversation(
                    conversation_id,
                    "messages_read",
                    {"conversation_id": conversation_id, "user_id": user_id, "read_at": utcnow().isoformat()},
                    exclude_socket=websocket,
                )
        elif event_type == "ping":
            await self._send(websocket, "pong", {})
        else:
            await self._send(websocket, "error", {"message": f"Unknown event type '{event_type}'"})

    # ------------------------------------------------------------------
    # Outgoing events
    # ------------------------------------------------------------------

    async def _send(self, websocket: Any, event: str, data: Dict[str, Any]) -> bool:
        try:
            await websocket.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.debug("Dropping %s frame for closed socket: %s", event, e)
            return False

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> int:
        delivered = 0
        for ws in list(self._user_sockets.get(user_id, set())):
            delivered += await self._send(ws, event, data)
        return delivered

    async def emit_to_conversation(
        self,
        conversation_id: str,
        event: str,
        data: Dict[str, Any],
        exclude_socket: Any = None,
    ) -> int:
        delivered = 0
        for ws in list(self._rooms.get(conversation_id, set())):
            if ws is exclude_socket:
                continue
            delivered += await self._send(ws, event, data)
        return delivered

    async def broadcast(self, event: str, data: Dict[str, Any], exclude_user: Optional[str] = None) -> int:
        delivered = 0
        for user_id, sockets in list(self._user_sockets.items()):
            if user_id == exclude_user:
                continue
            for ws in list(sockets):
                delivered += await self._send(ws, event, data)
        return delivered
