from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, client_ip, get_current_user, get_services, ok

router = APIRouter(prefix="/contracts", tags=["Contracts"])


class MilestonePlanRequest(BaseModel):
    milestones: List[Dict[str, Any]]
    total_amount: Optional[float] = None


class SubmitMilestoneRequest(BaseModel):
    deliverables: List[Dict[str, Any]] = Field(default_factory=list, description="[{title, description, url}]")
    notes: Optional[str] = None


class ReviewMilestoneRequest(BaseModel):
    feedback: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


@router.get("")
async def list_contracts(
    status_filter: Optional[str] = Query(None, alias="status"),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.contracts.list_contracts(user, status=status_filter))


@router.get("/{contract_id}")
async def get_contract(contract_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.contracts.get_contract(contract_id, user))


@router.post("/{contract_id}/sign")
async def sign_contract(
    contract_id: str, request: Request, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.contracts.sign(contract_id, user, ip_address=client_ip(request)))


@router.put("/{contract_id}/milestones")
async def amend_milestones(
    contract_id: str, body: MilestonePlanRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.contracts.amend_milestones(contract_id, user, body.milestones, total_amount=body.total_amount))


@router.post("/{contract_id}/milestones/{milestone_id}/start")
async def start_milestone(
    contract_id: str, milestone_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.contracts.start_milestone(contract_id, milestone_id, user))


@router.post("/{contract_id}/milestones/{milestone_id}/submit")
async def submit_milestone(
    contract_id: str,
    milestone_id: str,
    body: SubmitMilestoneRequest,
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.contracts.submit_milestone(contract_id, milestone_id, user, body.deliverables, body.notes))


@router.post("/{contract_id}/milestones/{milestone_id}/approve")
async def approve_milestone(
    contract_id: str,
    milestone_id: str,
    body: ReviewMilestoneRequest,
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.contracts.approve_milestone(contract_id, milestone_id, user, body.feedback))


@router.post("/{contract_id}/milestones/{milestone_id}/reject")
async def reject_milestone(
    contract_id: str,
    milestone_id: str,
    body: ReviewMilestoneRequest,
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.contracts.reject_milestone(contract_id, milestone_id, user, body.feedback))


@router.post("/{contract_id}/cancel")
async def cancel_contract(
    contract_id: str, body: CancelRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(await services.contracts.cancel(contract_id, user, body.reason))
