from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field

from cardflow.container import Container
from cardflow.core.pagination import page, paginate
from cardflow.deps import command_response, get_container, get_current_user, get_idempotency_key
from cardflow.models.user import User
from cardflow.services import transactions as transactions_service
from cardflow.whatsapp.notifications import dispatch_due_notifications

router = APIRouter()


class PurchaseBody(BaseModel):
    # amount is range-checked by the handler so rejected attempts are still recorded
    amount: float
    merchant: str = Field(min_length=1, max_length=200)


class PaymentBody(BaseModel):
    amount: float
    payment_date: datetime | None = None


@router.post("/{card_id}/purchases", status_code=201)
async def make_purchase(
    card_id: str,
    body: PurchaseBody,
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    result = await transactions_service.make_purchase(
        container, user, card_id, body.amount, body.merchant, idempotency_key
    )
    return command_response(result)


@router.post("/{card_id}/payments")
async def make_payment(
    card_id: str,
    body: PaymentBody,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    paid_at = body.payment_date
    if paid_at and paid_at.tzinfo:
        paid_at = paid_at.astimezone(timezone.utc).replace(tzinfo=None)
    result = await transactions_service.make_payment(
        container, user, card_id, body.amount, idempotency_key, paid_at=paid_at
    )
    if not result.replayed:
        background_tasks.add_task(dispatch_due_notifications, container)
    return command_response(result)


@router.get("/{card_id}/transactions")
async def list_transactions(
    card_id: str,
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Transactions for a card, newest first."""
    limit, offset = paginate(limit, offset)
    items = await transactions_service.list_transactions(container.repos, user.user_id, card_id, limit, offset)
    return page("transactions", items, limit, offset)
