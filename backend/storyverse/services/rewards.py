from __future__ import annotations
from typing import Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from storyverse.errors import InvalidAmount, RuleDisabledOrMissing
from storyverse.models.coins import RewardRule

log = structlog.get_logger()

DEFAULT_RULES: tuple[dict[str, Any], ...] = (
    {"key": "chapter_rate", "label": "Rate a chapter", "coins": 2, "enabled": True, "daily_cap": 20},
    {"key": "chapter_complete", "label": "Finish a journey", "coins": 10, "enabled": True, "daily_cap": None},
)

_PATCHABLE = ("label", "coins", "enabled", "daily_cap")


async def list_rules(session: AsyncSession) -> list[RewardRule]:
    return (await session.execute(select(RewardRule).order_by(RewardRule.key.asc()))).scalars().all()


async def get_rule(session: AsyncSession, key: str) -> RewardRule:
    rule = await session.get(RewardRule, key)
    if rule is None:
        raise RuleDisabledOrMissing(key)
    return rule


async def get_enabled_rule(session: AsyncSession, key: str) -> RewardRule:
    rule = await session.get(RewardRule, key)
    if rule is None or not rule.enabled:
        raise RuleDisabledOrMissing(key)
    return rule


async def update_rule(session: AsyncSession, key: str, patch: dict[str, Any]) -> RewardRule:
    """
    Apply a partial update. Only keys present in `patch` are touched;
    daily_cap=None removes the cap. Last writer wins.
    """
    fields = {k: v for k, v in patch.items() if k in _PATCHABLE}
    if not fields:
        raise InvalidAmount("no fields to update")
    if "coins" in fields and (fields["coins"] is None or int(fields["coins"]) < 0):
        raise InvalidAmount("coins must be a non-negative integer")
    if "daily_cap" in fields and fields["daily_cap"] is not None and int(fields["daily_cap"]) < 0:
        raise InvalidAmount("daily_cap must be null or a non-negative integer")
    if "label" in fields and fields["label"] is None:
        raise InvalidAmount("label must be a string")
    if "enabled" in fields and fields["enabled"] is None:
        raise InvalidAmount("enabled must be a boolean")

    rule = await get_rule(session, key)
    for k, v in fields.items():
        setattr(rule, k, v)
    await session.flush()
    log.info("reward_rule_updated", rule_key=key, fields=sorted(fields))
    return rule


async def ensure_default_rules(session: AsyncSession) -> list[str]:
    """Insert any missing default rule; existing rows are left as admins set them."""
    created: list[str] = []
    for default in DEFAULT_RULES:
        if await session.get(RewardRule, default["key"]) is None:
            session.add(RewardRule(**default, meta={}))
            created.append(default["key"])
    await session.flush()
    return created
