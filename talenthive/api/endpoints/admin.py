from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from talenthive.api.dependencies import Services, get_services, ok, require_admin

router = APIRouter(prefix="/admin", tags=["Admin"])


class UserStatusRequest(BaseModel):
    is_active: bool


@router.get("/overview")
async def overview(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(services.analytics.overview())


@router.get("/users")
async def list_users(
    role: Optional[str] = Query(None),
    admin=Depends(require_admin),
    services: Services = Depends(get_services),
):
    return ok(services.users.list_users(role=role))


@router.patch("/users/{user_id}/status")
async def set_user_status(
    user_id: str, body: UserStatusRequest, admin=Depends(require_admin), services: Services = Depends(get_services)
):
    return ok(services.users.set_active(user_id, body.is_active))


@router.post("/ratings/recalculate")
async def recalculate_ratings(admin=Depends(require_admin), services: Services = Depends(get_services)):
    return ok(services.reviews.recalculate_all())
