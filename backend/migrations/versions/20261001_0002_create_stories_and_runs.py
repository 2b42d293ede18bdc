from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261001_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)

def upgrade() -> None:
    op.create_table(
        "stories",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_stories_slug", "stories", ["slug"], unique=True)

    op.create_table(
        "story_nodes",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("story_id", UUID, sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_no", sa.Integer(), nullable=False),
        sa.Column("node_code", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_start", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("step_no BETWEEN 1 AND 5", name="ck_story_nodes_step_no"),
        sa.UniqueConstraint("story_id", "node_code", name="uq_story_nodes_code"),
    )
    op.create_index("ix_story_nodes_story_id", "story_nodes", ["story_id"])

    op.create_table(
        "node_choices",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("from_node_id", UUID, sa.ForeignKey("story_nodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("genre_key", sa.String(length=32), nullable=False),
        sa.Column("to_node_id", UUID, sa.ForeignKey("story_nodes.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("from_node_id", "genre_key", name="uq_node_choices_from_genre"),
    )
    op.create_index("ix_node_choices_from_node_id", "node_choices", ["from_node_id"])

    op.create_table(
        "story_runs",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("story_id", UUID, sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_node_id", UUID, sa.ForeignKey("story_nodes.id"), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_story_runs_user_id", "story_runs", ["user_id"])
    op.create_index("ix_story_runs_story_id", "story_runs", ["story_id"])

    op.create_table(
        "run_choices",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("run_id", UUID, sa.ForeignKey("story_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_no", sa.Integer(), nullable=False),
        sa.Column("from_node_id", UUID, sa.ForeignKey("story_nodes.id"), nullable=False),
        sa.Column("genre_key", sa.String(length=32), nullable=False),
        sa.Column("to_node_id", UUID, sa.ForeignKey("story_nodes.id"), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("run_id", "step_no", name="uq_run_choices_run_step"),
    )
    op.create_index("ix_run_choices_run_id", "run_choices", ["run_id"])

    op.create_table(
        "genre_ratings",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("run_id", UUID, sa.ForeignKey("story_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("node_id", UUID, sa.ForeignKey("story_nodes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("genre_key", sa.String(length=32), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_genre_ratings_rating"),
        sa.UniqueConstraint("run_id", "node_id", name="uq_genre_ratings_run_node"),
    )
    op.create_index("ix_genre_ratings_user_id", "genre_ratings", ["user_id"])
    op.create_index("ix_genre_ratings_node_id", "genre_ratings", ["node_id"])

def downgrade() -> None:
    op.drop_index("ix_genre_ratings_node_id", table_name="genre_ratings")
    op.drop_index("ix_genre_ratings_user_id", table_name="genre_ratings")
    op.drop_table("genre_ratings")
    op.drop_index("ix_run_choices_run_id", table_name="run_choices")
    op.drop_table("run_choices")
    op.drop_index("ix_story_runs_story_id", table_name="story_runs")
    op.drop_index("ix_story_runs_user_id", table_name="story_runs")
    op.drop_table("story_runs")
    op.drop_index("ix_node_choices_from_node_id", table_name="node_choices")
    op.drop_table("node_choices")
    op.drop_index("ix_story_nodes_story_id", table_name="story_nodes")
    op.drop_table("story_nodes")
    op.drop_index("ix_stories_slug", table_name="stories")
    op.drop_table("stories")
