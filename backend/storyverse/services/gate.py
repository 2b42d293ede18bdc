from __future__ import annotations
from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.config import settings
from storyverse.errors import AlreadyUnlocked, ChapterLocked, InsufficientCoins, InvalidChapter, RunNotFound
from storyverse.models.story import ChapterUnlock, Story, StoryRun
from storyverse.models.user import User, normalize_plan
from storyverse.services import coins

log = structlog.get_logger()


@dataclass
class UnlockResult:
    story_id: UUID
    chapter_number: int
    spent: int
    remaining_coins: int | None
    transaction_id: UUID | None = None

    def as_payload(self) -> dict:
        body = {"ok": True, "unlocked": True, "storyId": str(self.story_id), "chapterNumber": self.chapter_number, "spent": self.spent}
        if self.remaining_coins is not None:
            body["remainingCoins"] = self.remaining_coins
        return body


def is_paid_chapter(chapter_number: int) -> bool:
    return settings.free_chapters < chapter_number <= settings.total_steps


def required_coins_for_chapter(chapter_number: int) -> int:
    return settings.chapter_unlock_cost if is_paid_chapter(chapter_number) else 0


def is_gated(user: User, chapter_number: int) -> bool:
    """Free-plan readers pay for chapters past the free ones; premium and creator never do."""
    return normalize_plan(user.plan) == "free" and is_paid_chapter(chapter_number)


async def is_chapter_unlocked(session: AsyncSession, user_id: UUID, story_id: UUID, chapter_number: int) -> bool:
    found = await session.scalar(
        select(ChapterUnlock.id).where(
            ChapterUnlock.user_id == user_id,
            ChapterUnlock.story_id == story_id,
            ChapterUnlock.chapter_number == chapter_number,
        )
    )
    return found is not None


async def unlocked_chapters(session: AsyncSession, user_id: UUID, story_id: UUID) -> list[int]:
    rows = await session.scalars(
        select(ChapterUnlock.chapter_number)
        .where(ChapterUnlock.user_id == user_id, ChapterUnlock.story_id == story_id)
        .order_by(ChapterUnlock.chapter_number.asc())
    )
    return [int(n) for n in rows.all()]


async def check_access(session: AsyncSession, user: User, run: StoryRun, chapter_number: int) -> None:
    """Raise ChapterLocked (with the reader's balance) if the chapter needs an unlock they lack."""
    if not is_gated(user, chapter_number):
        return
    if await is_chapter_unlocked(session, user.id, run.story_id, chapter_number):
        return
    raise ChapterLocked(
        chapter_number=chapter_number,
        required_coins=required_coins_for_chapter(chapter_number),
        available=int(user.coins or 0),
        story_id=run.story_id,
        run_id=run.id,
    )


async def get_user_run(session: AsyncSession, user_id: UUID, run_id: UUID) -> StoryRun:
    run = await session.scalar(select(StoryRun).where(StoryRun.id == run_id, StoryRun.user_id == user_id))
    if run is None:
        raise RunNotFound("run not found")
    return run


async def unlock(session: AsyncSession, *, user: User, run_id: UUID, chapter_number: int) -> UnlockResult:
    """
    Buy a paid chapter for the run's story.

    Locked -> Unlocked happens inside the caller's transaction: the redeem
    row, the balance change and the chapter_unlocks row commit together or
    not at all. Raises InvalidChapter, RunNotFound, AlreadyUnlocked,
    InsufficientCoins.
    """
    if not is_paid_chapter(chapter_number):
        raise InvalidChapter(f"chapter {chapter_number} cannot be unlocked")

    run = await get_user_run(session, user.id, run_id)

    if normalize_plan(user.plan) != "free":
        return UnlockResult(story_id=run.story_id, chapter_number=chapter_number, spent=0, remaining_coins=None)

    # Serialize with every other ledger write for this user before reading state
    locked = await coins.lock_user(session, user.id)

    if await is_chapter_unlocked(session, locked.id, run.story_id, chapter_number):
        raise AlreadyUnlocked(run.story_id, chapter_number)

    cost = required_coins_for_chapter(chapter_number)
    if locked.coins < cost:
        raise InsufficientCoins(available=locked.coins, required=cost)

    story_title = await session.scalar(select(Story.title).where(Story.id == run.story_id))
    tx = await coins.redeem(
        session,
        user_id=locked.id,
        coins=cost,
        reason="chapter_unlock",
        meta={
            "story_id": str(run.story_id),
            "story_title": story_title,
            "run_id": str(run.id),
            "chapter_number": chapter_number,
            "note": f"Unlocked Chapter {chapter_number}",
        },
        external_id=f"chapter_unlock:{locked.id}:{run.story_id}:{chapter_number}",
    )
    session.add(ChapterUnlock(
        user_id=locked.id,
        story_id=run.story_id,
        run_id=run.id,
        chapter_number=chapter_number,
        transaction_id=tx.id,
    ))
    await session.flush()

    log.info("chapter_unlocked", user_id=str(locked.id), story_id=str(run.story_id), chapter=chapter_number, spent=cost, balance=locked.coins)
    return UnlockResult(
        story_id=run.story_id,
        chapter_number=chapter_number,
        spent=cost,
        remaining_coins=int(locked.coins),
        transaction_id=tx.id,
    )
