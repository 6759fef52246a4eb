from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from cardflow.container import Container
from cardflow.deps import command_response, get_container, get_current_user, get_idempotency_key
from cardflow.models.card_request import DEFAULT_PRODUCT_ID
from cardflow.models.user import User
from cardflow.services import cards as cards_service
from cardflow.whatsapp.notifications import dispatch_due_notifications

router = APIRouter()


class CardRequestBody(BaseModel):
    product_id: str = Field(default=DEFAULT_PRODUCT_ID, min_length=1, max_length=64)


class CancelCardBody(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


@router.post("/requests", status_code=201)
async def request_card(
    background_tasks: BackgroundTasks,
    body: CardRequestBody | None = None,
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    """Request a card. Auto-approved at score >= 500, otherwise queued for admin review."""
    product_id = body.product_id if body else DEFAULT_PRODUCT_ID
    result = await cards_service.request_card(container, user, idempotency_key, product_id=product_id)
    if result.response.get("status") == "pending" and not result.replayed:
        background_tasks.add_task(dispatch_due_notifications, container)
    return command_response(result)


@router.get("")
async def list_cards(user: User = Depends(get_current_user), container: Container = Depends(get_container)):
    return {"cards": await cards_service.list_cards(container.repos, user.user_id)}


@router.get("/{card_id}")
async def get_card(card_id: str, user: User = Depends(get_current_user), container: Container = Depends(get_container)):
    card = await cards_service.get_card(container.repos, user.user_id, card_id)
    return cards_service.card_view(card)


@router.post("/{card_id}/cancel")
async def cancel_card(
    card_id: str,
    body: CancelCardBody | None = None,
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    result = await cards_service.cancel_card(
        container, user, card_id, idempotency_key, reason=body.reason if body else None
    )
    return command_response(result)
