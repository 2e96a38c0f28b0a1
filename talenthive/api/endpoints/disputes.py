from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok, require_admin

router = APIRouter(prefix="/disputes", tags=["Disputes"])


class DisputeCreateRequest(BaseModel):
    title: str
    description: str
    type: str = Field(..., description="project, contract, payment, user or other")
    priority: Optional[str] = None
    contract_id: Optional[str] = None
    transaction_id: Optional[str] = None
    project_id: Optional[str] = None
    respondent_id: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)


class DisputeMessageRequest(BaseModel):
    message: str


class DisputeAssignRequest(BaseModel):
    admin_id: Optional[str] = None


class DisputeStatusRequest(BaseModel):
    status: str
    resolution: Optional[str] = None


class DisputeResolveRequest(BaseModel):
    resolution: str
    contract_outcome: Optional[str] = Field(default=None, description="active, completed or cancelled")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_dispute(body: DisputeCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.disputes.create(user, body.model_dump(exclude_none=True)))


@router.get("")
async def list_disputes(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Admins see every dispute; other users see the ones they are party to."""
    return ok(services.disputes.list(user, status=status_filter, priority=priority, type=type, page=page, limit=limit))


@router.get("/stats")
async def dispute_stats(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(services.disputes.stats())


@router.get("/{dispute_id}")
async def get_dispute(dispute_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.disputes.get(dispute_id, user))


@router.post("/{dispute_id}/messages")
async def add_message(
    dispute_id: str, body: DisputeMessageRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.disputes.add_message(dispute_id, user, body.message))


@router.post("/{dispute_id}/assign")
async def assign_dispute(
    dispute_id: str, body: DisputeAssignRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(services.disputes.assign(dispute_id, admin, body.admin_id))


@router.patch("/{dispute_id}/status")
async def update_dispute_status(
    dispute_id: str, body: DisputeStatusRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(await services.disputes.update_status(dispute_id, admin, body.status, body.resolution))


@router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: str, body: DisputeResolveRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(await services.disputes.resolve(dispute_id, admin, body.resolution, body.contract_outcome))
