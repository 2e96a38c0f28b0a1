from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok

router = APIRouter(prefix="/users", tags=["Users"])


class RegisterRequest(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str = Field(..., description="client or freelancer")


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payout_account_id: Optional[str] = Field(default=None, description="Connected payout account (freelancers only)")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, services: Services = Depends(get_services)):
    """Create an account; the response carries the bearer token for later calls."""
    return ok(services.users.register(body.model_dump()))


@router.get("/me")
async def me(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.users.get_profile(user.id))


@router.patch("/me")
async def update_me(body: ProfileUpdateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.users.update_profile(user, body.model_dump(exclude_unset=True)))


@router.get("/{user_id}")
async def get_user(user_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.users.get_profile(user_id))


@router.get("/{user_id}/reviews")
async def user_reviews(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return ok(services.reviews.list_for_user(user_id, page=page, limit=limit))
