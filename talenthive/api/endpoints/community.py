"""Reviews, conversations and notifications."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from talenthive.api.dependencies import Services, get_current_user, get_services, ok

router = APIRouter()


class ReviewCreateRequest(BaseModel):
    contract_id: str
    rating: int = Field(..., ge=1, le=5)
    feedback: str


class ReviewResponseRequest(BaseModel):
    response: str


class ConversationCreateRequest(BaseModel):
    participant_id: str


class MessageCreateRequest(BaseModel):
    content: str


# ---------- Reviews ----------
@router.post("/reviews", status_code=status.HTTP_201_CREATED, tags=["Reviews"])
async def create_review(body: ReviewCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.reviews.create(user, body.model_dump()))


@router.post("/reviews/{review_id}/response", tags=["Reviews"])
async def respond_to_review(
    review_id: str, body: ReviewResponseRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.reviews.respond(review_id, user, body.response))


# ---------- Conversations ----------
@router.post("/conversations", tags=["Messaging"])
async def start_conversation(
    body: ConversationCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(services.messaging.start_conversation(user, body.participant_id))


@router.get("/conversations", tags=["Messaging"])
async def list_conversations(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.messaging.list_conversations(user))


@router.get("/conversations/{conversation_id}/messages", tags=["Messaging"])
async def list_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.messaging.list_messages(conversation_id, user, limit=limit))


@router.post("/conversations/{conversation_id}/messages", status_code=status.HTTP_201_CREATED, tags=["Messaging"])
async def send_message(
    conversation_id: str, body: MessageCreateRequest, user=Depends(get_current_user), services: Services = Depends(get_services)
):
    return ok(await services.messaging.send_message(conversation_id, user, body.content))


@router.post("/conversations/{conversation_id}/read", tags=["Messaging"])
async def mark_conversation_read(conversation_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(await services.messaging.mark_read(conversation_id, user))


# ---------- Notifications ----------
@router.get("/notifications", tags=["Notifications"])
async def list_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return ok(services.notification_center.list(user, unread_only=unread_only, page=page, limit=limit))


@router.get("/notifications/unread-count", tags=["Notifications"])
async def unread_count(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.notification_center.unread_count(user))


@router.post("/notifications/read-all", tags=["Notifications"])
async def mark_all_read(user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.notification_center.mark_all_read(user))


@router.post("/notifications/{notification_id}/read", tags=["Notifications"])
async def mark_read(notification_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.notification_center.mark_read(notification_id, user))


@router.delete("/notifications/{notification_id}", tags=["Notifications"])
async def delete_notification(notification_id: str, user=Depends(get_current_user), services: Services = Depends(get_services)):
    return ok(services.notification_center.delete(notification_id, user))
