from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cardflow.container import Container
from cardflow.core.audit import AdminActor
from cardflow.core.pagination import page, paginate
from cardflow.deps import command_response, get_admin_actor, get_container, get_idempotency_key
from cardflow.domain.scoring import MAX_SCORE, MIN_SCORE
from cardflow.services import admin as admin_service
from cardflow.services import approvals as approvals_service

router = APIRouter()


class ApproveBody(BaseModel):
    user_id: str = Field(min_length=1)
    limit: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=500)


class RejectBody(BaseModel):
    user_id: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=500)


class AdjustScoreBody(BaseModel):
    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    reason: str = Field(min_length=1, max_length=500)


class CleanupBody(BaseModel):
    confirmation_token: str = Field(min_length=1)


@router.get("/card-requests/pending")
async def pending_card_requests(
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """Admin: pending requests, oldest first."""
    limit, offset = paginate(limit, offset)
    items = await approvals_service.list_pending_requests(container.repos, limit=limit, offset=offset)
    return page("requests", items, limit, offset)


@router.post("/card-requests/{request_id}/approve")
async def approve_card_request(
    request_id: str,
    body: ApproveBody,
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    result = await approvals_service.admin_approve(
        container, actor, body.user_id, request_id, body.limit, idempotency_key, reason=body.reason
    )
    return command_response(result)


@router.post("/card-requests/{request_id}/reject")
async def reject_card_request(
    request_id: str,
    body: RejectBody,
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    result = await approvals_service.admin_reject(
        container, actor, body.user_id, request_id, idempotency_key, reason=body.reason
    )
    return command_response(result)


@router.get("/users/{user_id}/score")
async def user_score(
    user_id: str,
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
    limit: int = Query(50, ge=1, le=200),
):
    return await admin_service.get_user_score(container.repos, user_id, history_limit=limit)


@router.post("/users/{user_id}/score")
async def adjust_user_score(
    user_id: str,
    body: AdjustScoreBody,
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
    idempotency_key: str = Depends(get_idempotency_key),
):
    result = await admin_service.adjust_score(container, actor, user_id, body.score, body.reason, idempotency_key)
    return command_response(result)


@router.post("/cleanup/token")
async def cleanup_token(actor: AdminActor = Depends(get_admin_actor), container: Container = Depends(get_container)):
    """Admin: first step of system cleanup. The token is valid for a few minutes and used once."""
    return await admin_service.issue_cleanup_token(container, actor)


@router.post("/cleanup")
async def cleanup(
    body: CleanupBody,
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
):
    return await admin_service.run_system_cleanup(container, actor, body.confirmation_token)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    reason: str | None = Query(None, max_length=500),
    actor: AdminActor = Depends(get_admin_actor),
    container: Container = Depends(get_container),
):
    return await admin_service.delete_account(container, actor, user_id, reason=reason)
