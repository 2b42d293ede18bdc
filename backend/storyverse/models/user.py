from __future__ import annotations
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, CheckConstraint, Uuid, func
from storyverse.db import Base

PLANS = ("free", "premium", "creator")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def normalize_plan(plan: str | None) -> str:
    p = (plan or "").strip().lower()
    return p if p in PLANS else "free"

class User(Base):
    """
    `coins` is a cache of Σ(coin_transactions.coins) for this user.
    Only the ledger service writes it, always under a row lock.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="free")  # free | premium | creator
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_users_coins_non_negative"),
    )
