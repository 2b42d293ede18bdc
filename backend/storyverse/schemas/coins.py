from __future__ import annotations
from pydantic import BaseModel, Field, StrictInt
from uuid import UUID
from datetime import datetime
from typing import Any

class CoinTransactionPublic(BaseModel):
    id: UUID
    user_id: UUID
    email: str | None = None
    type: str
    coins: int
    reason: str = ""
    rule_key: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    refund_of_id: UUID | None = None
    created_at: datetime

class CoinHistoryItem(BaseModel):
    id: UUID
    type: str
    coins: int
    reason: str | None = None
    created_at: datetime
    story_title: str | None = None
    chapter_number: int | None = None
    note: str | None = None

class CoinSummaryOut(BaseModel):
    available: int
    used: int
    earned: int

class UserBalance(BaseModel):
    id: UUID
    email: str
    coins: int

class AdjustRequest(BaseModel):
    user_id: UUID
    delta: StrictInt = Field(description="Signed, non-zero")
    reason: str | None = Field(default="admin_adjust", max_length=64)

class AdjustResponse(BaseModel):
    ok: bool = True
    transaction: CoinTransactionPublic
    user: UserBalance

class RefundRequest(BaseModel):
    transaction_id: UUID

class RefundResponse(BaseModel):
    ok: bool = True
    delta: int
    transaction: CoinTransactionPublic
    user: UserBalance

class BalanceDriftOut(BaseModel):
    user_id: UUID
    email: str
    cached: int
    ledger: int

class RewardRulePublic(BaseModel):
    key: str
    label: str
    coins: int
    enabled: bool
    daily_cap: int | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None

class RewardRulePatch(BaseModel):
    """Partial update; send daily_cap=null to remove the cap."""
    label: str | None = Field(default=None, max_length=120)
    coins: StrictInt | None = Field(default=None, ge=0)
    enabled: bool | None = None
    daily_cap: StrictInt | None = Field(default=None, ge=0)
