from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Text, CheckConstraint, UniqueConstraint, Uuid, func
from storyverse.db import Base
from storyverse.models.user import utcnow

class Story(Base):
    __tablename__ = "stories"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

class StoryNode(Base):
    """A chapter. step_no is its fixed position (1..5) in every run."""
    __tablename__ = "story_nodes"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    story_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), index=True, nullable=False)
    step_no: Mapped[int] = mapped_column(Integer, nullable=False)
    node_code: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    is_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("step_no BETWEEN 1 AND 5", name="ck_story_nodes_step_no"),
        UniqueConstraint("story_id", "node_code", name="uq_story_nodes_code"),
    )

class NodeChoice(Base):
    __tablename__ = "node_choices"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id", ondelete="CASCADE"), index=True, nullable=False)
    genre_key: Mapped[str] = mapped_column(String(32), nullable=False)
    to_node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("from_node_id", "genre_key", name="uq_node_choices_from_genre"),
    )

class StoryRun(Base):
    __tablename__ = "story_runs"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    story_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), index=True, nullable=False)
    current_node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id"), nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

class RunChoice(Base):
    __tablename__ = "run_choices"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_runs.id", ondelete="CASCADE"), index=True, nullable=False)
    step_no: Mapped[int] = mapped_column(Integer, nullable=False)
    from_node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id"), nullable=False)
    genre_key: Mapped[str] = mapped_column(String(32), nullable=False)
    to_node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "step_no", name="uq_run_choices_run_step"),
    )

class GenreRating(Base):
    __tablename__ = "genre_ratings"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_runs.id", ondelete="CASCADE"), nullable=False)
    node_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_nodes.id", ondelete="CASCADE"), index=True, nullable=False)
    genre_key: Mapped[str | None] = mapped_column(String(32), nullable=True)  # null for the start node
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_genre_ratings_rating"),
        UniqueConstraint("run_id", "node_id", name="uq_genre_ratings_run_node"),
    )

class ChapterUnlock(Base):
    """
    Permanent purchase of a paid chapter, per (user, story, chapter).
    Written in the same transaction as the redeem row it points to.
    """
    __tablename__ = "chapter_unlocks"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    story_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("story_runs.id", ondelete="SET NULL"), nullable=True)
    chapter_number: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("coin_transactions.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "story_id", "chapter_number", name="uq_chapter_unlocks_user_story_chapter"),
        CheckConstraint("chapter_number BETWEEN 1 AND 5", name="ck_chapter_unlocks_chapter"),
    )

class RunFeedback(Base):
    """End-of-journey review, one per (run, user); resubmitting replaces it."""
    __tablename__ = "run_feedback"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("story_runs.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    story_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), index=True, nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "user_id", name="uq_run_feedback_run_user"),
        CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 5", name="ck_run_feedback_rating"),
    )
