"""Controller for conversations and direct messages."""
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.serializers import conversation_to_dict, message_to_dict
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError
from talenthive.realtime.connection_manager import ConnectionManager
from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


class MessagingController:
    def __init__(self, db, manager: Optional[ConnectionManager] = None):
        self.db = db
        self.manager = manager

    def is_participant(self, user_id: str, conversation_id: str) -> bool:
        """Join check used by the WebSocket layer for conversation rooms."""
        conv = self.db.get_conversation(conversation_id)
        return bool(conv and user_id in conv.participants)

    def _load_for(self, conversation_id: str, user):
        conv = self.db.get_conversation(conversation_id)
        if not conv:
            raise NotFoundError("Conversation not found")
        if user.id not in conv.participants:
            raise ForbiddenError("You are not a participant of this conversation")
        return conv

    def start_conversation(self, user, participant_id: str) -> Dict[str, Any]:
        """Find or create the one-to-one conversation between the caller and `participant_id`."""
        if not participant_id or participant_id == user.id:
            raise AppError("A conversation needs another participant", 400)
        if not self.db.get_user(participant_id):
            raise NotFoundError("User not found")
        members = [user.id, participant_id]
        conv = self.db.find_conversation(members) or self.db.create_conversation(members)
        return conversation_to_dict(conv, unread_count=self.db.count_unread_messages(conv.id, user.id))

    def list_conversations(self, user) -> List[Dict[str, Any]]:
        return [
            conversation_to_dict(c, unread_count=self.db.count_unread_messages(c.id, user.id))
            for c in self.db.list_conversations(user.id)
        ]

    def list_messages(self, conversation_id: str, user, limit: int = 50) -> List[Dict[str, Any]]:
        self._load_for(conversation_id, user)
        limit = min(max(int(limit), 1), 200)
        # Oldest first for display
        return [message_to_dict(m) for m in reversed(self.db.list_messages(conversation_id, limit=limit))]

    async def send_message(self, conversation_id: str, user, content: Any) -> Dict[str, Any]:
        text = str(content or "").strip()
        if not text:
            raise AppError("Message content is required", 400)
        if len(text) > MAX_MESSAGE_LENGTH:
            raise AppError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters", 400)
        conv = self._load_for(conversation_id, user)

        message = self.db.add_message(conv.id, user.id, text)
        data = message_to_dict(message)
        if self.manager is not None:
            # User rooms cover every socket of each recipient, joined to the conversation or not
            for uid in conv.participants:
                if uid != user.id:
                    await self.manager.emit_to_user(uid, "new_message", data)
        return data

    async def mark_read(self, conversation_id: str, user) -> Dict[str, Any]:
        conv = self._load_for(conversation_id, user)
        updated = self.db.mark_messages_read(conv.id, user.id)
        data = {"conversation_id": conv.id, "user_id": user.id, "read_at": utcnow().isoformat(), "updated": updated}
        if updated and self.manager is not None:
            for uid in conv.participants:
                if uid != user.id:
                    await self.manager.emit_to_user(uid, "messages_read", data)
        return data

    async def mark_read_by_user_id(self, user_id: str, conversation_id: str) -> Dict[str, Any]:
        """WebSocket `read` event: same receipt as the REST endpoint."""
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return await self.mark_read(conversation_id, user)
