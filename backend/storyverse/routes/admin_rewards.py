from __future__ import annotations
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.db import get_session
from storyverse.auth_deps import require_admin
from storyverse.models.coins import RewardRule
from storyverse.schemas.coins import RewardRulePatch, RewardRulePublic
from storyverse.services import rewards

router = APIRouter(prefix="/api/admin/reward-rules", tags=["admin-rewards"])

def rule_public(r: RewardRule) -> RewardRulePublic:
    return RewardRulePublic(
        key=r.key, label=r.label, coins=int(r.coins), enabled=bool(r.enabled),
        daily_cap=r.daily_cap, meta=r.meta or {}, updated_at=r.updated_at,
    )

@router.get("")
async def list_reward_rules(session: AsyncSession = Depends(get_session), admin=Depends(require_admin)):
    return {"rules": [rule_public(r) for r in await rewards.list_rules(session)]}

@router.get("/{key}")
async def get_reward_rule(key: str = Path(..., min_length=1), session: AsyncSession = Depends(get_session), admin=Depends(require_admin)):
    return {"rule": rule_public(await rewards.get_rule(session, key))}

@router.patch("/{key}")
async def patch_reward_rule(
    payload: RewardRulePatch,
    key: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
    admin=Depends(require_admin),
):
    rule = await rewards.update_rule(session, key.strip(), payload.model_dump(exclude_unset=True))
    await session.commit()
    return {"rule": rule_public(rule)}
