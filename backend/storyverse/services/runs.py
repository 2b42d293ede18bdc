from __future__ import annotations
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.config import settings
from storyverse.errors import InvalidChoice, NodeNotFound, RuleDisabledOrMissing
from storyverse.models.story import GenreRating, NodeChoice, RunChoice, RunFeedback, Story, StoryNode, StoryRun
from storyverse.models.user import User, utcnow
from storyverse.services import coins, gate
from storyverse.services.gate import get_user_run

log = structlog.get_logger()

FEEDBACK_MAX_CHARS = 2000


async def start_run(session: AsyncSession, user: User, story_id: UUID) -> StoryRun:
    start = await session.scalar(
        select(StoryNode).where(StoryNode.story_id == story_id, StoryNode.is_start.is_(True)).limit(1)
    )
    if start is None:
        raise NodeNotFound("story not found or has no start node")
    run = StoryRun(user_id=user.id, story_id=story_id, current_node_id=start.id, is_completed=False)
    session.add(run)
    await session.flush()
    log.info("run_started", user_id=str(user.id), story_id=str(story_id), run_id=str(run.id))
    return run


async def list_runs(session: AsyncSession, user: User) -> list[dict]:
    """One run per story: the in-progress one if any, else the latest completed."""
    rows = (await session.execute(
        select(StoryRun, Story.title)
        .join(Story, Story.id == StoryRun.story_id)
        .where(StoryRun.user_id == user.id)
        .order_by(StoryRun.is_completed.asc(), StoryRun.updated_at.desc())
    )).all()
    picked: dict[UUID, dict] = {}
    for run, title in rows:
        if run.story_id in picked:
            continue
        picked[run.story_id] = {
            "id": str(run.id),
            "storyId": str(run.story_id),
            "storyTitle": title,
            "isCompleted": run.is_completed,
            "startedAt": run.started_at,
            "updatedAt": run.updated_at,
        }
    return list(picked.values())


async def _node(session: AsyncSession, node_id: UUID) -> StoryNode:
    node = await session.get(StoryNode, node_id)
    if node is None:
        raise NodeNotFound("node not found")
    return node


async def build_node_payload(session: AsyncSession, run: StoryRun) -> dict:
    node = await _node(session, run.current_node_id)
    rating_submitted = await session.scalar(
        select(GenreRating.id).where(GenreRating.run_id == run.id, GenreRating.node_id == node.id)
    ) is not None

    avg = (
        select(GenreRating.node_id, func.avg(GenreRating.rating).label("avg"))
        .group_by(GenreRating.node_id)
        .subquery()
    )
    choices = (await session.execute(
        select(NodeChoice.genre_key, NodeChoice.to_node_id, avg.c.avg)
        .outerjoin(avg, avg.c.node_id == NodeChoice.to_node_id)
        .where(NodeChoice.from_node_id == node.id)
        .order_by(NodeChoice.genre_key.asc())
    )).all()

    return {
        "storyId": str(run.story_id),
        "node": {
            "id": str(node.id),
            "title": node.title,
            "content": node.content,
            "stepNo": node.step_no,
            "isStart": node.is_start,
        },
        "ratingSubmitted": rating_submitted,
        "choices": [
            {
                "genreKey": genre_key,
                "toNodeId": str(to_node_id),
                "avgRating": f"{float(a):.2f}" if a is not None else None,
            } for (genre_key, to_node_id, a) in choices
        ],
        "isCompleted": run.is_completed,
    }


async def current_node(session: AsyncSession, user: User, run_id: UUID) -> dict:
    run = await get_user_run(session, user.id, run_id)
    node = await _node(session, run.current_node_id)
    await gate.check_access(session, user, run, node.step_no)
    return await build_node_payload(session, run)


async def choose(session: AsyncSession, user: User, run_id: UUID, genre_key: str) -> dict:
    run = await get_user_run(session, user.id, run_id)
    if run.is_completed:
        raise InvalidChoice("run is already completed")

    current = await _node(session, run.current_node_id)
    taken = await session.scalar(
        select(RunChoice.id).where(RunChoice.run_id == run.id, RunChoice.step_no == current.step_no)
    )
    if taken is not None:
        raise InvalidChoice("choice already locked for this step")

    choice = await session.scalar(
        select(NodeChoice).where(NodeChoice.from_node_id == current.id, NodeChoice.genre_key == genre_key)
    )
    if choice is None:
        raise InvalidChoice("invalid genre choice")

    target = await _node(session, choice.to_node_id)
    await gate.check_access(session, user, run, target.step_no)

    session.add(RunChoice(
        run_id=run.id, step_no=current.step_no, from_node_id=current.id,
        genre_key=genre_key, to_node_id=target.id,
    ))
    # Reaching the last step does not complete the run; finish() does.
    run.current_node_id = target.id
    run.updated_at = utcnow()
    await session.flush()
    return await build_node_payload(session, run)


async def rate(session: AsyncSession, user: User, run_id: UUID, node_id: UUID, rating: int) -> int:
    """Record (or replace) the rating and pay the chapter_rate reward once per node. Returns coins awarded."""
    run = await get_user_run(session, user.id, run_id)

    genre_key = await session.scalar(
        select(RunChoice.genre_key).where(RunChoice.run_id == run.id, RunChoice.to_node_id == node_id)
    )
    if genre_key is None:
        start = await session.scalar(
            select(StoryNode.id).where(
                StoryNode.id == node_id, StoryNode.story_id == run.story_id, StoryNode.is_start.is_(True)
            )
        )
        if start is None:
            raise InvalidChoice("cannot rate this node")

    existing = await session.scalar(
        select(GenreRating).where(GenreRating.run_id == run.id, GenreRating.node_id == node_id)
    )
    if existing is not None:
        existing.rating = rating
    else:
        session.add(GenreRating(user_id=user.id, run_id=run.id, node_id=node_id, genre_key=genre_key, rating=rating))
    await session.flush()

    try:
        tx = await coins.earn(
            session,
            user_id=user.id,
            rule_key="chapter_rate",
            meta={"run_id": str(run.id), "node_id": str(node_id), "note": "Rated a chapter"},
            external_id=f"chapter_rate:{run.id}:{node_id}",
        )
    except RuleDisabledOrMissing:
        log.info("reward_rule_inactive", rule_key="chapter_rate", user_id=str(user.id))
        return 0
    return int(tx.coins) if tx else 0


async def finish(session: AsyncSession, user: User, run_id: UUID) -> int:
    """Complete the run on the last step once its chapter is rated. Idempotent. Returns coins awarded."""
    run = await get_user_run(session, user.id, run_id)
    if run.is_completed:
        return 0

    node = await _node(session, run.current_node_id)
    if node.step_no != settings.total_steps:
        raise InvalidChoice(f"you can only finish on step {settings.total_steps}")

    rated = await session.scalar(
        select(GenreRating.id).where(GenreRating.run_id == run.id, GenreRating.node_id == node.id)
    )
    if rated is None:
        raise InvalidChoice("please rate the final chapter before finishing")

    run.is_completed = True
    run.updated_at = utcnow()
    await session.flush()

    try:
        tx = await coins.earn(
            session,
            user_id=user.id,
            rule_key="chapter_complete",
            meta={"run_id": str(run.id), "story_id": str(run.story_id), "node_id": str(node.id), "note": "Finished a journey"},
            external_id=f"chapter_complete:{run.id}",
        )
    except RuleDisabledOrMissing:
        log.info("reward_rule_inactive", rule_key="chapter_complete", user_id=str(user.id))
        return 0
    return int(tx.coins) if tx else 0


async def journey(session: AsyncSession, user: User, run_id: UUID) -> dict:
    run = await get_user_run(session, user.id, run_id)
    node = await _node(session, run.current_node_id)
    picked = (await session.execute(
        select(RunChoice.step_no, RunChoice.genre_key)
        .where(RunChoice.run_id == run.id)
        .order_by(RunChoice.step_no.asc())
    )).all()
    return {
        "totalSteps": settings.total_steps,
        "currentStep": node.step_no,
        "picked": [{"stepNo": s, "genreKey": g} for (s, g) in picked],
        "isCompleted": run.is_completed,
    }


async def run_summary(session: AsyncSession, user: User, run_id: UUID) -> dict:
    """finalJourneyRating is the mean of every chapter rating in the run, or None before any."""
    run = await get_user_run(session, user.id, run_id)
    avg = await session.scalar(select(func.avg(GenreRating.rating)).where(GenreRating.run_id == run.id))
    return {
        "isCompleted": run.is_completed,
        "totalSteps": settings.total_steps,
        "finalJourneyRating": round(float(avg), 2) if avg is not None else None,
    }


async def submit_feedback(session: AsyncSession, user: User, run_id: UUID, rating: int | None, feedback: str | None) -> RunFeedback:
    run = await get_user_run(session, user.id, run_id)
    if not run.is_completed:
        raise InvalidChoice("run is not completed yet")

    text = (feedback or "")[:FEEDBACK_MAX_CHARS] or None
    row = await session.scalar(
        select(RunFeedback).where(RunFeedback.run_id == run.id, RunFeedback.user_id == user.id)
    )
    if row is None:
        row = RunFeedback(run_id=run.id, user_id=user.id, story_id=run.story_id, rating=rating, feedback=text)
        session.add(row)
    else:
        row.rating = rating
        row.feedback = text
    await session.flush()
    log.info("run_feedback_saved", user_id=str(user.id), run_id=str(run.id), rating=rating)
    return row
