from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.db import get_session
from storyverse.auth_deps import require_admin
from storyverse.models.coins import CoinTransaction
from storyverse.models.user import User
from storyverse.schemas.coins import (
    AdjustRequest, AdjustResponse, BalanceDriftOut, CoinSummaryOut, CoinTransactionPublic,
    RefundRequest, RefundResponse, UserBalance,
)
from storyverse.services import coins

router = APIRouter(prefix="/api/admin/coins", tags=["admin-coins"])

def tx_public(tx: CoinTransaction, email: str | None = None) -> CoinTransactionPublic:
    return CoinTransactionPublic(
        id=tx.id, user_id=tx.user_id, email=email, type=tx.type, coins=int(tx.coins),
        reason=tx.reason or "", rule_key=tx.rule_key, meta=tx.meta or {},
        refund_of_id=tx.refund_of_id, created_at=tx.created_at,
    )

def _balance(user: User) -> UserBalance:
    return UserBalance(id=user.id, email=user.email, coins=int(user.coins))

@router.get("/summary", response_model=CoinSummaryOut)
async def coin_summary(
    user_id: UUID | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    admin=Depends(require_admin),
):
    return (await coins.summary(session, user_id)).as_dict()

@router.get("/transactions")
async def list_transactions(
    q: str | None = Query(default=None, description="Email substring"),
    user_id: UUID | None = Query(default=None),
    type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=coins.MAX_PAGE),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    admin=Depends(require_admin),
):
    rows = await coins.list_transactions(session, q=q, user_id=user_id, type=type, limit=limit, offset=offset)
    return {"transactions": [tx_public(tx, email) for (tx, email) in rows]}

@router.post("/adjust", response_model=AdjustResponse)
async def adjust_coins(payload: AdjustRequest, session: AsyncSession = Depends(get_session), admin=Depends(require_admin)):
    tx = await coins.adjust(session, user_id=payload.user_id, delta=payload.delta, reason=payload.reason, admin_id=admin.id)
    user = await session.get(User, payload.user_id)
    await session.commit()
    return AdjustResponse(transaction=tx_public(tx, user.email), user=_balance(user))

@router.post("/refund", response_model=RefundResponse)
async def refund_transaction(payload: RefundRequest, session: AsyncSession = Depends(get_session), admin=Depends(require_admin)):
    tx = await coins.refund(session, transaction_id=payload.transaction_id, admin_id=admin.id)
    user = await session.get(User, tx.user_id)
    await session.commit()
    return RefundResponse(delta=int(tx.coins), transaction=tx_public(tx, user.email), user=_balance(user))

@router.get("/reconcile")
async def reconcile(session: AsyncSession = Depends(get_session), admin=Depends(require_admin)):
    drift = await coins.find_balance_drift(session)
    return {
        "ok": not drift,
        "drift": [BalanceDriftOut(user_id=d.user_id, email=d.email, cached=d.cached, ledger=d.ledger) for d in drift],
    }
