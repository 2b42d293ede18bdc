from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, CheckConstraint, Index, Uuid, func
from storyverse.db import Base, JsonType
from storyverse.models.user import utcnow

TX_TYPES = ("earn", "redeem", "adjust")

class CoinTransaction(Base):
    """
    Append-only coin ledger, one row per movement.
    Sign convention:
      - earn    => +coins (reward rule grant)
      - redeem  => -coins (chapter unlock)
      - adjust  => +/- (admin fix, or a refund of another row)
    A refund is an `adjust` row whose refund_of_id points at the original.
    Rows are never updated or deleted.
    """
    __tablename__ = "coin_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    type: Mapped[str] = mapped_column(String(16), nullable=False)  # earn | redeem | adjust
    coins: Mapped[int] = mapped_column(Integer, nullable=False)    # signed, never zero
    reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rule_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    # Dedup key for event-driven grants, e.g. chapter_rate:<run>:<node>
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    # At most one reversal per original row
    refund_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("coin_transactions.id", ondelete="RESTRICT"), nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("coins <> 0", name="ck_coin_transactions_non_zero"),
        CheckConstraint("type IN ('earn', 'redeem', 'adjust')", name="ck_coin_transactions_type"),
        Index("ix_coin_transactions_user_rule_created", "user_id", "rule_key", "created_at"),
    )


class RewardRule(Base):
    """Admin-editable reward policy, looked up by key at runtime."""
    __tablename__ = "reward_rules"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    daily_cap: Mapped[int | None] = mapped_column(Integer, nullable=True)  # null = unlimited
    meta: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_reward_rules_coins_non_negative"),
        CheckConstraint("daily_cap IS NULL OR daily_cap >= 0", name="ck_reward_rules_daily_cap"),
    )
