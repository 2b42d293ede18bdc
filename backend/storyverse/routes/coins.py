from __future__ import annotations
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.db import get_session
from storyverse.auth_deps import get_current_user
from storyverse.schemas.coins import CoinSummaryOut, CoinHistoryItem
from storyverse.services import coins

router = APIRouter(prefix="/api/coins", tags=["coins"])

@router.get("/summary", response_model=CoinSummaryOut)
async def my_summary(session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    return (await coins.summary(session, user.id)).as_dict()

@router.get("/history")
async def my_history(
    type: str | None = Query(default=None, description="earn | redeem | adjust"),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    items = await coins.history(session, user.id, type=(type or "").strip() or None)
    return {"items": [CoinHistoryItem(**i) for i in items]}
