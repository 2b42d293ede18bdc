from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261003_0004"
down_revision = "20261002_0003"
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)

def upgrade() -> None:
    op.create_table(
        "run_feedback",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("run_id", UUID, sa.ForeignKey("story_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("story_id", UUID, sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("run_id", "user_id", name="uq_run_feedback_run_user"),
        sa.CheckConstraint("rating IS NULL OR rating BETWEEN 1 AND 5", name="ck_run_feedback_rating"),
    )
    op.create_index("ix_run_feedback_user_id", "run_feedback", ["user_id"])
    op.create_index("ix_run_feedback_story_id", "run_feedback", ["story_id"])

def downgrade() -> None:
    op.drop_index("ix_run_feedback_story_id", table_name="run_feedback")
    op.drop_index("ix_run_feedback_user_id", table_name="run_feedback")
    op.drop_table("run_feedback")
