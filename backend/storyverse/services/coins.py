from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import datetime, timezone as dt_tz
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.config import settings
from storyverse.errors import (
    AlreadyRefunded,
    InsufficientBalance,
    InvalidAmount,
    TransactionNotFound,
    UserNotFound,
)
from storyverse.models.coins import CoinTransaction, TX_TYPES
from storyverse.models.user import User
from storyverse.services.rewards import get_enabled_rule
from storyverse.services.time_windows import day_window_utc

log = structlog.get_logger()

MAX_PAGE = 200


@dataclass
class CoinSummary:
    available: int
    used: int
    earned: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class BalanceDrift:
    user_id: UUID
    email: str
    cached: int
    ledger: int


def _utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(dt_tz.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=dt_tz.utc)
    return now.astimezone(dt_tz.utc)


async def lock_user(session: AsyncSession, user_id: UUID) -> User:
    """
    Row-lock the user for the rest of the transaction and re-read the cached
    balance. Every ledger mutation for a user goes through here first, so
    concurrent earn/adjust/refund/unlock calls for one user serialize.
    """
    user = await session.scalar(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if user is None:
        raise UserNotFound(f"user {user_id} not found")
    return user


async def _append(
    session: AsyncSession,
    user: User,
    *,
    type: str,
    coins: int,
    reason: str | None,
    rule_key: str | None = None,
    meta: dict[str, Any] | None = None,
    external_id: str | None = None,
    refund_of_id: UUID | None = None,
    created_at: datetime | None = None,
) -> CoinTransaction:
    """Write one ledger row and move the cached balance by the same amount. Caller holds the lock."""
    tx = CoinTransaction(
        user_id=user.id,
        type=type,
        coins=int(coins),
        reason=reason,
        rule_key=rule_key,
        meta=meta or {},
        external_id=external_id,
        refund_of_id=refund_of_id,
    )
    if created_at is not None:
        tx.created_at = created_at
    session.add(tx)
    user.coins = int(user.coins or 0) + int(coins)
    await session.flush()
    return tx


async def _external_id_exists(session: AsyncSession, external_id: str) -> bool:
    found = await session.scalar(select(CoinTransaction.id).where(CoinTransaction.external_id == external_id))
    return found is not None


async def granted_today(session: AsyncSession, user_id: UUID, rule_key: str, now: datetime) -> int:
    start, end = day_window_utc(now, settings.coin_day_timezone)
    total = await session.scalar(
        select(func.coalesce(func.sum(CoinTransaction.coins), 0)).where(
            CoinTransaction.user_id == user_id,
            CoinTransaction.type == "earn",
            CoinTransaction.rule_key == rule_key,
            CoinTransaction.created_at >= start,
            CoinTransaction.created_at < end,
        )
    )
    return int(total or 0)


async def earn(
    session: AsyncSession,
    *,
    user_id: UUID,
    rule_key: str,
    meta: dict[str, Any] | None = None,
    external_id: str | None = None,
    now: datetime | None = None,
) -> CoinTransaction | None:
    """
    Grant coins for `rule_key`. Raises RuleDisabledOrMissing.

    A capped rule is clamped to what is left of today's allowance rather
    than rejected. Returns None when nothing was granted: allowance used up,
    the rule pays 0, or `external_id` was already credited.
    """
    rule = await get_enabled_rule(session, rule_key)
    user = await lock_user(session, user_id)

    if external_id and await _external_id_exists(session, external_id):
        log.info("coins_earn_duplicate", user_id=str(user_id), rule_key=rule_key, external_id=external_id)
        return None

    now = _utc(now)
    grant = max(0, int(rule.coins or 0))
    if rule.daily_cap is not None:
        already = await granted_today(session, user.id, rule.key, now)
        remaining = max(0, int(rule.daily_cap) - already)
        if grant > remaining:
            log.info(
                "coins_earn_clamped",
                user_id=str(user_id), rule_key=rule_key,
                rule_coins=int(rule.coins), daily_cap=int(rule.daily_cap), granted_today=already, grant=remaining,
            )
            grant = remaining

    if grant <= 0:
        return None

    tx = await _append(
        session, user,
        type="earn", coins=grant, reason=rule.key, rule_key=rule.key,
        meta=meta, external_id=external_id, created_at=now,
    )
    log.info("coins_earned", user_id=str(user_id), rule_key=rule_key, coins=grant, balance=user.coins, tx_id=str(tx.id))
    return tx


async def adjust(
    session: AsyncSession,
    *,
    user_id: UUID,
    delta: int,
    reason: str | None = "admin_adjust",
    admin_id: UUID | None = None,
) -> CoinTransaction:
    """Admin balance change. Negative deltas may not take the balance below zero."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidAmount("delta must be a non-zero integer")

    user = await lock_user(session, user_id)
    if user.coins + delta < 0:
        raise InsufficientBalance(available=user.coins, required=-delta)

    tx = await _append(
        session, user,
        type="adjust", coins=delta, reason=(reason or "admin_adjust").strip() or "admin_adjust",
        meta={"by_admin": str(admin_id) if admin_id else None},
    )
    log.info("coins_adjusted", user_id=str(user_id), delta=delta, balance=user.coins, tx_id=str(tx.id))
    return tx


async def redeem(
    session: AsyncSession,
    *,
    user_id: UUID,
    coins: int,
    reason: str,
    meta: dict[str, Any] | None = None,
    external_id: str | None = None,
) -> CoinTransaction:
    """Spend `coins` (> 0). Raises InsufficientBalance."""
    if isinstance(coins, bool) or not isinstance(coins, int) or coins <= 0:
        raise InvalidAmount("coins must be a positive integer")

    user = await lock_user(session, user_id)
    if user.coins < coins:
        raise InsufficientBalance(available=user.coins, required=coins)

    tx = await _append(
        session, user,
        type="redeem", coins=-coins, reason=reason, meta=meta, external_id=external_id,
    )
    log.info("coins_redeemed", user_id=str(user_id), coins=coins, reason=reason, balance=user.coins, tx_id=str(tx.id))
    return tx


async def refund(session: AsyncSession, *, transaction_id: UUID, admin_id: UUID | None = None) -> CoinTransaction:
    """
    Reverse a transaction by appending its negation. History is kept.
    Rejected if already reversed, or if the reversal would overdraw the user.
    """
    original = await session.get(CoinTransaction, transaction_id)
    if original is None:
        raise TransactionNotFound(f"transaction {transaction_id} not found")
    if original.refund_of_id is not None:
        raise InvalidAmount("a refund cannot itself be refunded")

    user = await lock_user(session, original.user_id)

    prior = await session.scalar(select(CoinTransaction.id).where(CoinTransaction.refund_of_id == original.id))
    if prior is not None:
        raise AlreadyRefunded(original.id)

    delta = -int(original.coins)
    if user.coins + delta < 0:
        raise InsufficientBalance(available=user.coins, required=-delta)

    try:
        tx = await _append(
            session, user,
            type="adjust", coins=delta, reason="refund", refund_of_id=original.id,
            meta={
                "refunded_tx_id": str(original.id),
                "original_type": original.type,
                "original_reason": original.reason or "",
                "by_admin": str(admin_id) if admin_id else None,
            },
        )
    except IntegrityError:
        # uq on refund_of_id; a concurrent refund won
        raise AlreadyRefunded(original.id)

    log.info("coins_refunded", user_id=str(user.id), refunded_tx_id=str(original.id), delta=delta, balance=user.coins)
    return tx


async def summary(session: AsyncSession, user_id: UUID | None = None) -> CoinSummary:
    """
    Totals recomputed from the ledger. With no user_id the figures cover all users.
      available = Σ coins
      earned    = Σ coins of earn/adjust rows with coins > 0
      used      = Σ |coins| of redeem rows
    """
    def scoped(stmt):
        return stmt.where(CoinTransaction.user_id == user_id) if user_id is not None else stmt

    if user_id is not None:
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"user {user_id} not found")
        cached = int(user.coins or 0)
    else:
        cached = int(await session.scalar(select(func.coalesce(func.sum(User.coins), 0))) or 0)

    available = await session.scalar(scoped(select(func.coalesce(func.sum(CoinTransaction.coins), 0))))
    used = await session.scalar(
        scoped(select(func.coalesce(func.sum(func.abs(CoinTransaction.coins)), 0)).where(CoinTransaction.type == "redeem"))
    )
    earned = await session.scalar(
        scoped(
            select(func.coalesce(func.sum(CoinTransaction.coins), 0)).where(
                CoinTransaction.type.in_(("earn", "adjust")), CoinTransaction.coins > 0
            )
        )
    )

    available = int(available or 0)
    if available != cached:
        log.warning("coin_balance_drift", user_id=str(user_id) if user_id else None, cached=cached, ledger=available)

    return CoinSummary(available=available, used=int(used or 0), earned=int(earned or 0))


async def find_balance_drift(session: AsyncSession) -> list[BalanceDrift]:
    """Users whose cached users.coins differs from the sum of their ledger."""
    totals = (
        select(CoinTransaction.user_id, func.sum(CoinTransaction.coins).label("total"))
        .group_by(CoinTransaction.user_id)
        .subquery()
    )
    ledger_total = func.coalesce(totals.c.total, 0)
    rows = (await session.execute(
        select(User.id, User.email, User.coins, ledger_total)
        .outerjoin(totals, totals.c.user_id == User.id)
        .where(User.coins != ledger_total)
        .order_by(User.email.asc())
    )).all()

    drift = [BalanceDrift(user_id=uid, email=email, cached=int(cached), ledger=int(total)) for (uid, email, cached, total) in rows]
    for d in drift:
        log.warning("coin_balance_drift", user_id=str(d.user_id), cached=d.cached, ledger=d.ledger)
    return drift


async def list_transactions(
    session: AsyncSession,
    *,
    q: str | None = None,
    user_id: UUID | None = None,
    type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[tuple[CoinTransaction, str]]:
    """Admin ledger listing, newest first, as (transaction, user email) pairs."""
    stmt = select(CoinTransaction, User.email).join(User, User.id == CoinTransaction.user_id)
    q = (q or "").strip()
    if q:
        stmt = stmt.where(User.email.ilike(f"%{q}%"))
    if user_id is not None:
        stmt = stmt.where(CoinTransaction.user_id == user_id)
    if type:
        if type not in TX_TYPES:
            raise InvalidAmount(f"unknown transaction type {type!r}")
        stmt = stmt.where(CoinTransaction.type == type)

    limit = max(1, min(int(limit), MAX_PAGE))
    offset = max(0, int(offset))
    stmt = stmt.order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.asc()).limit(limit).offset(offset)
    return [(tx, email) for (tx, email) in (await session.execute(stmt)).all()]


async def history(session: AsyncSession, user_id: UUID, type: str | None = None, limit: int | None = None) -> list[dict[str, Any]]:
    """A user's own coin history; unknown `type` filters are ignored."""
    stmt = select(CoinTransaction).where(CoinTransaction.user_id == user_id)
    if type in TX_TYPES:
        stmt = stmt.where(CoinTransaction.type == type)
    stmt = stmt.order_by(CoinTransaction.created_at.desc()).limit(limit or settings.history_limit)

    items = []
    for tx in (await session.execute(stmt)).scalars().all():
        meta = tx.meta or {}
        items.append({
            "id": tx.id,
            "type": tx.type,
            "coins": int(tx.coins),
            "reason": tx.reason,
            "created_at": tx.created_at,
            "story_title": meta.get("story_title") or meta.get("storyTitle"),
            "chapter_number": meta.get("chapter_number") or meta.get("chapterNumber"),
            "note": meta.get("note"),
        })
    return items
