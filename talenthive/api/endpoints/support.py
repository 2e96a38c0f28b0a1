from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok, require_admin

router = APIRouter(prefix="/support/tickets", tags=["Support"])


class TicketCreateRequest(BaseModel):
    subject: str
    message: str
    category: Optional[str] = Field(default=None, description="technical, billing, account, project or other")
    priority: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)


class TicketMessageRequest(BaseModel):
    message: str
    attachments: List[str] = Field(default_factory=list)


class TicketStatusRequest(BaseModel):
    status: str


class TicketAssignRequest(BaseModel):
    admin_id: Optional[str] = None


class TicketTagsRequest(BaseModel):
    tags: List[str]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ticket(body: TicketCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.support.create(user, body.model_dump(exclude_none=True)))


@router.get("")
async def list_tickets(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    assigned_to_me: bool = Query(False, alias="assignedToMe"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Users see their own tickets; admins see all of them, or only their own queue with assignedToMe."""
    return ok(
        services.support.list(
            user,
            status=status_filter,
            priority=priority,
            category=category,
            assigned_to_me=assigned_to_me,
            page=page,
            limit=limit,
        )
    )


@router.get("/stats")
async def ticket_stats(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(services.support.stats())


@router.get("/{ticket_id}")
async def get_ticket(ticket_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.support.get(ticket_id, user))


@router.post("/{ticket_id}/messages")
async def add_ticket_message(
    ticket_id: str, body: TicketMessageRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.support.add_message(ticket_id, user, body.message, body.attachments))


@router.patch("/{ticket_id}/status")
async def update_ticket_status(
    ticket_id: str, body: TicketStatusRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(services.support.update_status(ticket_id, admin, body.status))


@router.post("/{ticket_id}/assign")
async def assign_ticket(
    ticket_id: str, body: TicketAssignRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(services.support.assign(ticket_id, admin, body.admin_id))


@router.put("/{ticket_id}/tags")
async def update_ticket_tags(
    ticket_id: str, body: TicketTagsRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(services.support.update_tags(ticket_id, admin, body.tags))
