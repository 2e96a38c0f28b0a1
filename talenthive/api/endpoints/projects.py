from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok

router = APIRouter(tags=["Projects"])


class ProjectCreateRequest(BaseModel):
    title: str
    description: str
    budget: float
    currency: Optional[str] = None
    category: Optional[str] = None


class ProjectStatusRequest(BaseModel):
    status: str


class ProposalCreateRequest(BaseModel):
    cover_letter: str
    bid_amount: float
    milestones: List[Dict[str, Any]] = Field(default_factory=list, description="[{title, description, amount, due_date}]")


# ---------- Projects ----------
@router.post("/projects", status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.projects.create_project(user, body.model_dump(exclude_none=True)))


@router.get("/projects")
async def list_projects(
    status_filter: Optional[str] = Query(None, alias="status"),
    client_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    return ok(services.projects.list_projects(status=status_filter, client_id=client_id))


@router.get("/projects/{project_id}")
async def get_project(project_id: str, services: Services = Depends(get_services)):
    return ok(services.projects.get_project(project_id))


@router.patch("/projects/{project_id}/status")
async def update_project_status(
    project_id: str, body: ProjectStatusRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.projects.update_status(project_id, user, body.status))


# ---------- Proposals ----------
@router.post("/projects/{project_id}/proposals", status_code=status.HTTP_201_CREATED)
async def submit_proposal(
    project_id: str, body: ProposalCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.proposals.submit(user, project_id, body.model_dump()))


@router.get("/projects/{project_id}/proposals")
async def project_proposals(project_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.proposals.list_for_project(user, project_id))


@router.get("/proposals/mine")
async def my_proposals(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.proposals.list_mine(user))


@router.post("/proposals/{proposal_id}/accept")
async def accept_proposal(proposal_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    """Accepting creates the draft contract both parties then sign."""
    return ok(services.proposals.accept(user, proposal_id))


@router.post("/proposals/{proposal_id}/reject")
async def reject_proposal(proposal_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.proposals.reject(user, proposal_id))


@router.post("/proposals/{proposal_id}/withdraw")
async def withdraw_proposal(proposal_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.proposals.withdraw(user, proposal_id))
