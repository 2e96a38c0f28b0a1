"""Record -> JSON-ready dict conversion shared by controllers."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from talenthive.domain.states import MilestoneStatus


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def contract_progress(milestones: Iterable[Any]) -> Dict[str, float]:
    """Percent of milestones approved or paid, amount paid, amount remaining."""
    items = list(milestones)
    done = sum(1 for m in items if m.status in (MilestoneStatus.APPROVED.value, MilestoneStatus.PAID.value))
    total_paid = round(sum(m.amount for m in items if m.status == MilestoneStatus.PAID.value), 2)
    total = round(sum(m.amount for m in items), 2)
    return {
        "progress": round(done * 100.0 / len(items), 2) if items else 0.0,
        "total_paid": total_paid,
        "remaining_amount": round(total - total_paid, 2),
    }


def user_to_dict(user) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "rating_average": user.rating_average,
        "rating_count": user.rating_count,
        "has_payout_account": bool(user.payout_account_id),
        "is_active": user.is_active,
        "created_at": _iso(user.created_at),
    }


def project_to_dict(project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "client_id": project.client_id,
        "title": project.title,
        "description": project.description,
        "budget": project.budget,
        "currency": project.currency,
        "category": project.category,
        "status": project.status,
        "created_at": _iso(project.created_at),
        "updated_at": _iso(project.updated_at),
    }


def proposal_to_dict(proposal) -> Dict[str, Any]:
    return {
        "id": proposal.id,
        "project_id": proposal.project_id,
        "freelancer_id": proposal.freelancer_id,
        "cover_letter": proposal.cover_letter,
        "bid_amount": proposal.bid_amount,
        "milestones": list(proposal.milestones or []),
        "status": proposal.status,
        "created_at": _iso(proposal.created_at),
    }


def milestone_to_dict(m) -> Dict[str, Any]:
    return {
        "id": m.id,
        "contract_id": m.contract_id,
        "title": m.title,
        "description": m.description,
        "amount": m.amount,
        "due_date": _iso(m.due_date),
        "status": m.status,
        "deliverables": list(m.deliverables or []),
        "submitted_at": _iso(m.submitted_at),
        "approved_at": _iso(m.approved_at),
        "rejected_at": _iso(m.rejected_at),
        "paid_at": _iso(m.paid_at),
        "client_feedback": m.client_feedback,
        "freelancer_notes": m.freelancer_notes,
    }


def contract_to_dict(contract) -> Dict[str, Any]:
    return {
        "id": contract.id,
        "project_id": contract.project_id,
        "proposal_id": contract.proposal_id,
        "client_id": contract.client_id,
        "freelancer_id": contract.freelancer_id,
        "title": contract.title,
        "description": contract.description,
        "total_amount": contract.total_amount,
        "currency": contract.currency,
        "start_date": _iso(contract.start_date),
        "end_date": _iso(contract.end_date),
        "status": contract.status,
        "milestones": [milestone_to_dict(m) for m in contract.milestones],
        "signatures": list(contract.signatures or []),
        **contract_progress(contract.milestones),
        "created_at": _iso(contract.created_at),
        "updated_at": _iso(contract.updated_at),
    }


def transaction_to_dict(tx) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "contract_id": tx.contract_id,
        "milestone_id": tx.milestone_id,
        "client_id": tx.client_id,
        "freelancer_id": tx.freelancer_id,
        "amount": tx.amount,
        "platform_commission": tx.platform_commission,
        "processing_fee": tx.processing_fee,
        "tax": tx.tax,
        "freelancer_amount": tx.freelancer_amount,
        "currency": tx.currency,
        "status": tx.status,
        "payment_intent_id": tx.payment_intent_id,
        "charge_id": tx.charge_id,
        "transfer_id": tx.transfer_id,
        "refund_id": tx.refund_id,
        "escrowed_at": _iso(tx.escrowed_at),
        "escrow_release_date": _iso(tx.escrow_release_date),
        "released_at": _iso(tx.released_at),
        "paid_out_at": _iso(tx.paid_out_at),
        "refunded_at": _iso(tx.refunded_at),
        "failure_reason": tx.failure_reason,
        "description": tx.description,
        "metadata": dict(tx.transaction_metadata or {}),
        "created_at": _iso(tx.created_at),
        "updated_at": _iso(tx.updated_at),
    }


def dispute_to_dict(d) -> Dict[str, Any]:
    return {
        "id": d.id,
        "title": d.title,
        "description": d.description,
        "type": d.type,
        "status": d.status,
        "priority": d.priority,
        "complainant_id": d.complainant_id,
        "respondent_id": d.respondent_id,
        "project_id": d.project_id,
        "contract_id": d.contract_id,
        "transaction_id": d.transaction_id,
        "evidence": list(d.evidence or []),
        "messages": list(d.messages or []),
        "assigned_admin_id": d.assigned_admin_id,
        "resolution": d.resolution,
        "resolved_at": _iso(d.resolved_at),
        "resolved_by": d.resolved_by,
        "created_at": _iso(d.created_at),
        "updated_at": _iso(d.updated_at),
    }


def support_ticket_to_dict(t) -> Dict[str, Any]:
    return {
        "id": t.id,
        "ticket_number": t.ticket_number,
        "user_id": t.user_id,
        "subject": t.subject,
        "category": t.category,
        "priority": t.priority,
        "status": t.status,
        "messages": list(t.messages or []),
        "tags": list(t.tags or []),
        "assigned_admin_id": t.assigned_admin_id,
        "last_response_at": _iso(t.last_response_at),
        "resolved_at": _iso(t.resolved_at),
        "closed_at": _iso(t.closed_at),
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
    }


def review_to_dict(r) -> Dict[str, Any]:
    return {
        "id": r.id,
        "contract_id": r.contract_id,
        "reviewer_id": r.reviewer_id,
        "reviewee_id": r.reviewee_id,
        "rating": r.rating,
        "feedback": r.feedback,
        "response": r.response,
        "responded_at": _iso(r.responded_at),
        "created_at": _iso(r.created_at),
    }


def conversation_to_dict(c, unread_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": c.id,
        "participants": list(c.participants or []),
        "last_message_at": _iso(c.last_message_at),
        "created_at": _iso(c.created_at),
    }
    if unread_count is not None:
        data["unread_count"] = unread_count
    return data


def message_to_dict(m) -> Dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender_id": m.sender_id,
        "content": m.content,
        "read_by": list(m.read_by or []),
        "created_at": _iso(m.created_at),
    }


def notification_to_dict(n) -> Dict[str, Any]:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "link": n.link,
        "priority": n.priority,
        "is_read": n.is_read,
        "created_at": _iso(n.created_at),
    }
