"""Persisted notifications with best-effort push to connected sockets."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from talenthive.controllers.serializers import notification_to_dict
from talenthive.realtime.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db, manager: Optional[ConnectionManager] = None) -> None:
        self.db = db
        self.manager = manager
        self._pending: Set[asyncio.Task] = set()

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        priority: str = "normal",
    ) -> Dict[str, Any]:
        notification = self.db.create_notification(
            user_id=user_id, type=type, title=title, message=message, link=link, priority=priority
        )
        data = notification_to_dict(notification)
        self.push(user_id, "new_notification", data)
        return data

    def push(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        """Schedule a socket push on the running loop; no-op outside one."""
        if self.manager is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.manager.emit_to_user(user_id, event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled pushes; used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
