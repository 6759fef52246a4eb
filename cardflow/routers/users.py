from fastapi import APIRouter, Depends, Query

from cardflow.container import Container
from cardflow.deps import get_container, get_current_user
from cardflow.models.user import User
from cardflow.services import users as users_service

router = APIRouter()


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    """Profile with score, tier and card summary."""
    return users_service.user_profile(user)


@router.get("/me/score")
async def my_score(
    user: User = Depends(get_current_user),
    container: Container = Depends(get_container),
    limit: int = Query(50, ge=1, le=200),
):
    history = await users_service.get_score_history(container.repos, user.user_id, limit=limit)
    return {"score": user.current_score, "tier": user.tier, "history": history}
