"""
Local development seed: default reward rules, a demo story and two users.

    python -m storyverse.seed
"""
from __future__ import annotations
import asyncio

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.config import settings
from storyverse.db import SessionLocal
from storyverse.logging_setup import configure_logging
from storyverse.models.story import NodeChoice, Story, StoryNode
from storyverse.models.user import User
from storyverse.security import make_access_token
from storyverse.services.rewards import ensure_default_rules

log = structlog.get_logger()

DEMO_SLUG = "the-lighthouse"
GENRES = ("mystery", "romance", "horror")


async def seed_demo_story(session: AsyncSession) -> Story:
    """Step 1 is a single start node; each later step has one node per genre."""
    story = await session.scalar(select(Story).where(Story.slug == DEMO_SLUG))
    if story is not None:
        return story

    story = Story(slug=DEMO_SLUG, title="The Lighthouse", summary="A keeper, a storm, and a light that will not go out.")
    session.add(story)
    await session.flush()

    start = StoryNode(
        story_id=story.id, step_no=1, node_code="S1", is_start=True,
        title="Chapter 1: The Storm", content="The lamp gutters as the first wave hits the rocks.",
    )
    session.add(start)
    previous = [start]
    for step in range(2, settings.total_steps + 1):
        layer = [
            StoryNode(
                story_id=story.id, step_no=step, node_code=f"S{step}-{g}",
                title=f"Chapter {step}: {g.title()}", content=f"A {g} turn at step {step}.",
            )
            for g in GENRES
        ]
        session.add_all(layer)
        await session.flush()
        for src in previous:
            for g, dst in zip(GENRES, layer):
                session.add(NodeChoice(from_node_id=src.id, genre_key=g, to_node_id=dst.id))
        previous = layer
    await session.flush()
    return story


async def seed_user(session: AsyncSession, email: str, *, is_admin: bool = False) -> User:
    user = await session.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, username=email.split("@")[0], plan="free", is_admin=is_admin, coins=0)
        session.add(user)
        await session.flush()
    return user


async def main() -> None:
    configure_logging()
    async with SessionLocal() as session:
        created = await ensure_default_rules(session)
        story = await seed_demo_story(session)
        admin = await seed_user(session, "admin@storyverse.dev", is_admin=True)
        reader = await seed_user(session, "reader@storyverse.dev")
        await session.commit()

    log.info("seed_done", rules_created=created, story_id=str(story.id))
    # Long-lived tokens so the API can be poked with curl right away
    for user in (admin, reader):
        log.info("seed_token", email=user.email, token=make_access_token(str(user.id), ttl_min=24 * 60))


if __name__ == "__main__":
    asyncio.run(main())
