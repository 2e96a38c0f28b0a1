"""Controller for a user's persisted notifications."""
from typing import Any, Dict

from talenthive.controllers.serializers import notification_to_dict
from talenthive.error_handler import ForbiddenError, NotFoundError


class NotificationController:
    def __init__(self, db):
        self.db = db

    def _load_own(self, notification_id: str, user):
        n = self.db.get_notification(notification_id)
        if not n:
            raise NotFoundError("Notification not found")
        if n.user_id != user.id:
            raise ForbiddenError("Not your notification")
        return n

    def list(self, user, *, unread_only: bool = False, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        page, limit = max(int(page), 1), min(max(int(limit), 1), 100)
        items = self.db.list_notifications(user.id, unread_only=unread_only, limit=limit, offset=(page - 1) * limit)
        return {
            "notifications": [notification_to_dict(n) for n in items],
            "unread_count": self.db.count_unread_notifications(user.id),
            "page": page,
            "limit": limit,
        }

    def unread_count(self, user) -> Dict[str, int]:
        return {"count": self.db.count_unread_notifications(user.id)}

    def mark_read(self, notification_id: str, user) -> Dict[str, Any]:
        n = self._load_own(notification_id, user)
        if not n.is_read:
            n.is_read = True
            n = self.db.save_notification(n)
        return notification_to_dict(n)

    def mark_all_read(self, user) -> Dict[str, int]:
        return {"updated": self.db.mark_all_notifications_read(user.id)}

    def delete(self, notification_id: str, user) -> Dict[str, bool]:
        n = self._load_own(notification_id, user)
        return {"deleted": self.db.delete_notification(n.id)}
