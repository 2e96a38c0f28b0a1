"""Controller for help-desk tickets between users and platform admins."""
from typing import Any, Dict, List, Optional
import logging

from talenthive.controllers.serializers import support_ticket_to_dict
from talenthive.controllers.validation import add_error, raise_if_errors, require_str, validate_in
from talenthive.domain.state_machine import ticket_machine
from talenthive.domain.states import Priority, TicketCategory, TicketStatus, UserRole
from talenthive.error_handler import AppError, ForbiddenError, NotFoundError
from talenthive.utils.clock import utcnow

logger = logging.getLogger(__name__)

CATEGORIES = [c.value for c in TicketCategory]
PRIORITIES = [p.value for p in Priority]
MAX_TICKET_MESSAGE_LENGTH = 5000


def _is_admin(user) -> bool:
    return user.role == UserRole.ADMIN.value


class SupportTicketController:
    def __init__(self, db, notifications=None):
        self.db = db
        self.notifications = notifications

    def _load(self, ticket_id: str):
        ticket = self.db.get_support_ticket(ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    def _load_for(self, ticket_id: str, user):
        ticket = self._load(ticket_id)
        if not _is_admin(user) and ticket.user_id != user.id:
            raise ForbiddenError("You do not have access to this ticket")
        return ticket

    def _admin_ids(self) -> List[str]:
        return [a.id for a in self.db.list_users(role=UserRole.ADMIN.value)]

    def _notify(self, user_ids, title: str, message: str, ticket_id: str, priority: str = "normal") -> None:
        if self.notifications is None:
            return
        for uid in dict.fromkeys(u for u in user_ids if u):
            self.notifications.notify(uid, "support", title, message, link=f"/support/{ticket_id}", priority=priority)

    @staticmethod
    def _message_text(raw: Any, errors: Dict[str, str], field: str = "message") -> str:
        text = str(raw or "").strip()
        if not text:
            add_error(errors, field, "Message is required")
        elif len(text) > MAX_TICKET_MESSAGE_LENGTH:
            add_error(errors, field, f"Message must be at most {MAX_TICKET_MESSAGE_LENGTH} characters")
        return text

    @staticmethod
    def _entry(user, text: str, attachments: Optional[List[str]] = None) -> Dict[str, Any]:
        return {
            "sender_id": user.id,
            "message": text,
            "attachments": list(attachments or []),
            "is_admin_response": _is_admin(user),
            "is_read": False,
            "created_at": utcnow().isoformat(),
        }

    def create(self, user, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a ticket with its first message. Every admin is notified; the
        ticket number (`TKT-00001`, ...) is what users quote in follow-ups.
        """
        errors: Dict[str, str] = {}
        subject = require_str(payload, "subject", errors, label="Subject", max_length=200)
        text = self._message_text(payload.get("message"), errors)
        category = validate_in(payload.get("category") or TicketCategory.OTHER.value, CATEGORIES, errors, "category")
        priority = validate_in(payload.get("priority") or Priority.MEDIUM.value, PRIORITIES, errors, "priority")
        attachments = payload.get("attachments") or []
        if not isinstance(attachments, list) or not all(isinstance(a, str) for a in attachments):
            add_error(errors, "attachments", "Attachments must be a list of URLs")
        raise_if_errors(errors)

        ticket = self.db.create_support_ticket(
            user_id=user.id,
            subject=subject,
            category=category,
            priority=priority,
            messages=[self._entry(user, text, attachments)],
        )
        ticket.last_response_at = utcnow()
        ticket = self.db.save_support_ticket(ticket)
        logger.info("Support ticket %s opened by %s (%s/%s)", ticket.ticket_number, user.id, category, priority)

        self._notify(
            self._admin_ids(),
            "New support ticket",
            f"{ticket.ticket_number}: {subject}",
            ticket.id,
            priority="high" if priority in (Priority.HIGH.value, Priority.URGENT.value) else "normal",
        )
        return support_ticket_to_dict(ticket)

    def list(
        self,
        user,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        category: Optional[str] = None,
        assigned_to_me: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        if status:
            validate_in(status, [s.value for s in TicketStatus], errors, "status")
        if priority:
            validate_in(priority, PRIORITIES, errors, "priority")
        if category:
            validate_in(category, CATEGORIES, errors, "category")
        raise_if_errors(errors)

        filters: Dict[str, Any] = {"status": status, "priority": priority, "category": category}
        if not _is_admin(user):
            filters["user_id"] = user.id
        elif assigned_to_me:
            filters["assigned_admin_id"] = user.id
        items = self.db.list_support_tickets(**filters)

        page, limit = max(int(page), 1), min(max(int(limit), 1), 100)
        window = items[(page - 1) * limit : page * limit]
        return {
            "tickets": [support_ticket_to_dict(t) for t in window],
            "pagination": {"page": page, "limit": limit, "total": len(items), "pages": (len(items) + limit - 1) // limit},
        }

    def get(self, ticket_id: str, user) -> Dict[str, Any]:
        """Opening a ticket marks the other side's messages as read."""
        ticket = self._load_for(ticket_id, user)
        messages = [dict(m) for m in ticket.messages or []]
        changed = False
        for m in messages:
            if m.get("sender_id") != user.id and not m.get("is_read"):
                m["is_read"] = True
                changed = True
        if changed:
            ticket.messages = messages
            ticket = self.db.save_support_ticket(ticket)
        return support_ticket_to_dict(ticket)

    def add_message(self, ticket_id: str, user, message: Any, attachments: Optional[List[str]] = None) -> Dict[str, Any]:
        errors: Dict[str, str] = {}
        text = self._message_text(message, errors)
        raise_if_errors(errors)
        ticket = self._load_for(ticket_id, user)
        if ticket_machine.is_terminal(ticket.status):
            raise AppError("Ticket is closed", 409)

        ticket.messages = list(ticket.messages or []) + [self._entry(user, text, attachments)]
        ticket.last_response_at = utcnow()
        ticket = self.db.save_support_ticket(ticket)

        if _is_admin(user):
            recipients = [ticket.user_id]
            title = "Support replied to your ticket"
        else:
            # The assigned admin, or every admin while nobody has picked it up
            recipients = [ticket.assigned_admin_id] if ticket.assigned_admin_id else self._admin_ids()
            title = "New reply on support ticket"
        self._notify([r for r in recipients if r != user.id], title, f"{ticket.ticket_number}: {ticket.subject}", ticket.id)
        return support_ticket_to_dict(ticket)

    # ------------------------------------------------------------------ #
    # Admin triage
    # ------------------------------------------------------------------ #
    def update_status(self, ticket_id: str, admin, status: str) -> Dict[str, Any]:
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can change ticket status")
        ticket = self._load(ticket_id)
        target = ticket_machine.transition(ticket.status, status)
        ticket.status = target.value
        if target == TicketStatus.RESOLVED:
            ticket.resolved_at = utcnow()
        elif target == TicketStatus.CLOSED:
            ticket.closed_at = utcnow()
        elif target == TicketStatus.OPEN:
            ticket.resolved_at = None
        ticket = self.db.save_support_ticket(ticket)
        logger.info("Support ticket %s -> %s by %s", ticket.ticket_number, ticket.status, admin.id)
        self._notify(
            [ticket.user_id],
            "Ticket status updated",
            f"Your ticket \"{ticket.subject}\" status changed to: {ticket.status}",
            ticket.id,
        )
        return support_ticket_to_dict(ticket)

    def assign(self, ticket_id: str, admin, assignee_id: Optional[str] = None) -> Dict[str, Any]:
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can assign tickets")
        ticket = self._load(ticket_id)
        assignee = self.db.get_user(assignee_id) if assignee_id else admin
        if not assignee or assignee.role != UserRole.ADMIN.value:
            raise AppError("Tickets can only be assigned to admins", 400)
        ticket.assigned_admin_id = assignee.id
        if ticket.status == TicketStatus.OPEN.value:
            ticket.status = ticket_machine.transition(ticket.status, TicketStatus.IN_PROGRESS).value
        ticket = self.db.save_support_ticket(ticket)
        if assignee.id != admin.id:
            self._notify([assignee.id], "Ticket assigned to you", f"{ticket.ticket_number}: {ticket.subject}", ticket.id)
        return support_ticket_to_dict(ticket)

    def update_tags(self, ticket_id: str, admin, tags: Any) -> Dict[str, Any]:
        if not _is_admin(admin):
            raise ForbiddenError("Only admins can tag tickets")
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise AppError("Tags must be a list of strings", 400)
        ticket = self._load(ticket_id)
        ticket.tags = list(dict.fromkeys(t.strip().lower() for t in tags if t.strip()))
        ticket = self.db.save_support_ticket(ticket)
        return support_ticket_to_dict(ticket)

    def stats(self) -> Dict[str, Any]:
        tickets = self.db.list_support_tickets()
        by_status = {s.value: 0 for s in TicketStatus}
        by_category = {c.value: 0 for c in TicketCategory}
        for t in tickets:
            by_status[t.status] = by_status.get(t.status, 0) + 1
            by_category[t.category] = by_category.get(t.category, 0) + 1
        waiting = [t for t in tickets if t.status in (TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value)]
        return {
            "total": len(tickets),
            "by_status": by_status,
            "by_category": by_category,
            "urgent_open": sum(1 for t in waiting if t.priority == Priority.URGENT.value),
            "unassigned_open": sum(1 for t in waiting if not t.assigned_admin_id),
        }
