from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from storyverse.config import settings
from storyverse.errors import (
    AlreadyRefunded, InsufficientBalance, InvalidAmount, RuleDisabledOrMissing, TransactionNotFound,
)
from storyverse.models.coins import CoinTransaction
from storyverse.models.user import User
from storyverse.services import coins, rewards

NOON = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


async def ledger_sum(session, user_id) -> int:
    return int(await session.scalar(
        select(func.coalesce(func.sum(CoinTransaction.coins), 0)).where(CoinTransaction.user_id == user_id)
    ))


async def tx_count(session, user_id) -> int:
    return int(await session.scalar(select(func.count()).select_from(CoinTransaction).where(CoinTransaction.user_id == user_id)))


@pytest.mark.asyncio
async def test_balance_matches_ledger_after_mixed_operations(session, make_user):
    user = await make_user(session)
    await coins.earn(session, user_id=user.id, rule_key="chapter_complete", now=NOON)
    await coins.adjust(session, user_id=user.id, delta=25)
    await coins.redeem(session, user_id=user.id, coins=15, reason="chapter_unlock")
    await coins.adjust(session, user_id=user.id, delta=-5)
    await session.commit()

    assert user.coins == 10 + 25 - 15 - 5
    assert await ledger_sum(session, user.id) == user.coins
    assert await coins.find_balance_drift(session) == []


@pytest.mark.asyncio
async def test_daily_cap_stops_grants(session, make_user):
    await rewards.update_rule(session, "chapter_rate", {"coins": 2, "daily_cap": 2})
    user = await make_user(session)

    first = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="r1", now=NOON)
    second = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="r2", now=NOON)
    third = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="r3", now=NOON)

    assert first is not None and first.coins == 2
    assert second is None and third is None
    assert user.coins == 2
    # exhausted allowance writes nothing
    assert await tx_count(session, user.id) == 1


@pytest.mark.asyncio
async def test_grant_is_clamped_to_remaining_allowance(session, make_user):
    await rewards.update_rule(session, "chapter_rate", {"coins": 5, "daily_cap": 8})
    user = await make_user(session)

    grants = []
    for i in range(3):
        tx = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id=f"c{i}", now=NOON)
        grants.append(tx.coins if tx else 0)

    assert grants == [5, 3, 0]
    assert user.coins == 8
    assert await coins.granted_today(session, user.id, "chapter_rate", NOON) == 8


@pytest.mark.asyncio
async def test_cap_resets_on_next_day(session, make_user):
    await rewards.update_rule(session, "chapter_rate", {"coins": 2, "daily_cap": 2})
    user = await make_user(session)

    await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="d1", now=NOON)
    assert await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="d2", now=NOON) is None
    tomorrow = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="d3", now=NOON + timedelta(days=1))

    assert tomorrow is not None and tomorrow.coins == 2
    assert user.coins == 4


@pytest.mark.asyncio
async def test_cap_day_follows_configured_timezone(session, make_user, monkeypatch):
    monkeypatch.setattr(settings, "coin_day_timezone", "America/New_York")
    await rewards.update_rule(session, "chapter_rate", {"coins": 2, "daily_cap": 2})
    user = await make_user(session)

    # 03:00Z is Jan 9 in New York, 06:00Z is Jan 10
    late = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="tz1",
                            now=datetime(2025, 1, 10, 3, 0, tzinfo=timezone.utc))
    early = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="tz2",
                             now=datetime(2025, 1, 10, 6, 0, tzinfo=timezone.utc))

    assert late is not None and early is not None
    assert user.coins == 4


@pytest.mark.asyncio
async def test_uncapped_rule_grants_in_full(session, make_user):
    user = await make_user(session)
    for i in range(5):
        tx = await coins.earn(session, user_id=user.id, rule_key="chapter_complete", external_id=f"u{i}", now=NOON)
        assert tx.coins == 10
    assert user.coins == 50


@pytest.mark.asyncio
async def test_duplicate_external_id_is_not_paid_twice(session, make_user):
    user = await make_user(session)
    assert await coins.earn(session, user_id=user.id, rule_key="chapter_complete", external_id="same", now=NOON)
    assert await coins.earn(session, user_id=user.id, rule_key="chapter_complete", external_id="same", now=NOON) is None
    assert user.coins == 10


@pytest.mark.asyncio
async def test_disabled_or_missing_rule(session, make_user):
    user = await make_user(session)
    await rewards.update_rule(session, "chapter_rate", {"enabled": False})

    with pytest.raises(RuleDisabledOrMissing):
        await coins.earn(session, user_id=user.id, rule_key="chapter_rate")
    with pytest.raises(RuleDisabledOrMissing) as exc:
        await coins.earn(session, user_id=user.id, rule_key="no_such_rule")
    assert exc.value.payload()["rule_key"] == "no_such_rule"
    assert user.coins == 0


@pytest.mark.asyncio
async def test_adjust_cannot_overdraw(session, make_user):
    user = await make_user(session, balance=5)

    with pytest.raises(InsufficientBalance) as exc:
        await coins.adjust(session, user_id=user.id, delta=-10)
    assert exc.value.payload() == {"error": "INSUFFICIENT_BALANCE", "available": 5, "required": 10}
    assert user.coins == 5
    assert await tx_count(session, user.id) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("delta", [0, True, 1.5])
async def test_adjust_rejects_bad_delta(session, make_user, delta):
    user = await make_user(session)
    with pytest.raises(InvalidAmount):
        await coins.adjust(session, user_id=user.id, delta=delta)


@pytest.mark.asyncio
async def test_adjust_records_admin(session, make_user):
    admin = await make_user(session, is_admin=True)
    user = await make_user(session)
    tx = await coins.adjust(session, user_id=user.id, delta=7, reason="  ", admin_id=admin.id)
    assert tx.type == "adjust"
    assert tx.reason == "admin_adjust"
    assert tx.meta["by_admin"] == str(admin.id)


@pytest.mark.asyncio
async def test_refund_restores_spent_coins(session, make_user):
    user = await make_user(session, balance=30)
    spend = await coins.redeem(session, user_id=user.id, coins=10, reason="chapter_unlock")

    refund = await coins.refund(session, transaction_id=spend.id)

    assert refund.type == "adjust" and refund.reason == "refund"
    assert refund.coins == 10
    assert refund.refund_of_id == spend.id
    assert refund.meta["original_type"] == "redeem"
    assert user.coins == 30
    assert await ledger_sum(session, user.id) == 30


@pytest.mark.asyncio
async def test_second_refund_is_rejected(session, make_user):
    user = await make_user(session)
    grant = await coins.adjust(session, user_id=user.id, delta=30)
    await coins.refund(session, transaction_id=grant.id)
    assert user.coins == 0

    with pytest.raises(AlreadyRefunded):
        await coins.refund(session, transaction_id=grant.id)
    assert user.coins == 0
    assert await tx_count(session, user.id) == 2


@pytest.mark.asyncio
async def test_refund_of_spent_earnings_would_overdraw(session, make_user):
    await rewards.update_rule(session, "chapter_complete", {"coins": 20})
    user = await make_user(session)
    grant = await coins.earn(session, user_id=user.id, rule_key="chapter_complete", now=NOON)
    await coins.redeem(session, user_id=user.id, coins=10, reason="chapter_unlock")

    with pytest.raises(InsufficientBalance):
        await coins.refund(session, transaction_id=grant.id)
    assert user.coins == 10
    assert await ledger_sum(session, user.id) == 10


@pytest.mark.asyncio
async def test_refund_of_a_refund_is_rejected(session, make_user):
    user = await make_user(session, balance=10)
    grant = (await coins.list_transactions(session, user_id=user.id))[0][0]
    back = await coins.refund(session, transaction_id=grant.id)
    with pytest.raises(InvalidAmount):
        await coins.refund(session, transaction_id=back.id)


@pytest.mark.asyncio
async def test_refund_unknown_transaction(session):
    with pytest.raises(TransactionNotFound):
        await coins.refund(session, transaction_id=uuid.uuid4())


@pytest.mark.asyncio
async def test_redeem_insufficient(session, make_user):
    user = await make_user(session, balance=3)
    with pytest.raises(InsufficientBalance):
        await coins.redeem(session, user_id=user.id, coins=4, reason="chapter_unlock")
    assert user.coins == 3


@pytest.mark.asyncio
async def test_summary_per_user_and_global(session, make_user):
    a = await make_user(session, balance=40)
    b = await make_user(session)
    await coins.earn(session, user_id=b.id, rule_key="chapter_complete", now=NOON)
    await coins.redeem(session, user_id=a.id, coins=15, reason="chapter_unlock")
    await coins.adjust(session, user_id=a.id, delta=-5)
    await session.commit()

    mine = await coins.summary(session, a.id)
    assert mine.as_dict() == {"available": 20, "used": 15, "earned": 40}

    everyone = await coins.summary(session)
    assert everyone.available == 30
    assert everyone.earned == 50
    assert everyone.used == 15


@pytest.mark.asyncio
async def test_reconcile_reports_drift(session, make_user):
    user = await make_user(session, balance=12)
    await session.commit()
    # Simulate an out-of-band write to the cached column
    user.coins = 99
    await session.commit()

    drift = await coins.find_balance_drift(session)
    assert len(drift) == 1
    assert (drift[0].user_id, drift[0].cached, drift[0].ledger) == (user.id, 99, 12)
    # summary still reports the ledger figure
    assert (await coins.summary(session, user.id)).available == 12


@pytest.mark.asyncio
async def test_history_and_listing_filters(session, make_user):
    user = await make_user(session, balance=50)
    other = await make_user(session, balance=5)
    await coins.redeem(
        session, user_id=user.id, coins=20, reason="chapter_unlock",
        meta={"story_title": "The Lighthouse", "chapter_number": 3, "note": "Unlocked Chapter 3"},
    )
    await session.commit()

    items = await coins.history(session, user.id, type="redeem")
    assert len(items) == 1
    assert items[0]["coins"] == -20
    assert items[0]["story_title"] == "The Lighthouse"
    assert items[0]["chapter_number"] == 3

    assert len(await coins.history(session, user.id, type="bogus")) == 2

    rows = await coins.list_transactions(session, q=other.email[:10])
    assert [email for (_, email) in rows] == [other.email]
    with pytest.raises(InvalidAmount):
        await coins.list_transactions(session, type="bogus")


@pytest.mark.asyncio
async def test_lock_user_rereads_balance(session, session_factory, make_user):
    user = await make_user(session, balance=10)
    await session.commit()

    async with session_factory() as other:
        await coins.adjust(other, user_id=user.id, delta=5)
        await other.commit()

    # stale in-memory copy until the row is locked and re-read
    assert user.coins == 10
    locked = await coins.lock_user(session, user.id)
    assert locked is user
    assert user.coins == 15
    await session.rollback()


@pytest.mark.asyncio
async def test_user_row_balance_never_negative(session, make_user):
    user = await make_user(session, balance=1)
    with pytest.raises(InsufficientBalance):
        await coins.adjust(session, user_id=user.id, delta=-2)
    fresh = await session.get(User, user.id)
    assert fresh.coins == 1


@pytest.mark.asyncio
async def test_zero_grant_does_not_consume_dedup_key(session, make_user):
    await rewards.update_rule(session, "chapter_rate", {"coins": 2, "daily_cap": 2})
    user = await make_user(session)

    await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="chapter_rate:a", now=NOON)
    assert await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="chapter_rate:b", now=NOON) is None

    # nothing was recorded for "b", so the same event pays once the cap resets
    later = await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="chapter_rate:b",
                             now=NOON + timedelta(days=1))
    assert later is not None and later.external_id == "chapter_rate:b"
    assert await coins.earn(session, user_id=user.id, rule_key="chapter_rate", external_id="chapter_rate:b",
                            now=NOON + timedelta(days=2)) is None
    assert user.coins == 4
