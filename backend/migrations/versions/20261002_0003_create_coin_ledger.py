from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261002_0003"
down_revision = "20261001_0002"
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)

def upgrade() -> None:
    reward_rules = op.create_table(
        "reward_rules",
        sa.Column("key", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("label", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("daily_cap", sa.Integer(), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("coins >= 0", name="ck_reward_rules_coins_non_negative"),
        sa.CheckConstraint("daily_cap IS NULL OR daily_cap >= 0", name="ck_reward_rules_daily_cap"),
    )
    op.bulk_insert(reward_rules, [
        {"key": "chapter_rate", "label": "Rate a chapter", "coins": 2, "enabled": True, "daily_cap": 20, "meta": {}},
        {"key": "chapter_complete", "label": "Finish a journey", "coins": 10, "enabled": True, "daily_cap": None, "meta": {}},
    ])

    op.create_table(
        "coin_transactions",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("coins", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=64), nullable=True),
        sa.Column("rule_key", sa.String(length=64), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column("refund_of_id", UUID, sa.ForeignKey("coin_transactions.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("coins <> 0", name="ck_coin_transactions_non_zero"),
        sa.CheckConstraint("type IN ('earn', 'redeem', 'adjust')", name="ck_coin_transactions_type"),
        sa.UniqueConstraint("external_id", name="uq_coin_transactions_external_id"),
        sa.UniqueConstraint("refund_of_id", name="uq_coin_transactions_refund_of_id"),
    )
    op.create_index("ix_coin_transactions_user_id", "coin_transactions", ["user_id"])
    op.create_index("ix_coin_transactions_user_rule_created", "coin_transactions", ["user_id", "rule_key", "created_at"])

    op.create_table(
        "chapter_unlocks",
        sa.Column("id", UUID, primary_key=True, nullable=False),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("story_id", UUID, sa.ForeignKey("stories.id", ondelete="CASCADE"), nullable=False),
        sa.Column("run_id", UUID, sa.ForeignKey("story_runs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("chapter_number", sa.Integer(), nullable=False),
        sa.Column("transaction_id", UUID, sa.ForeignKey("coin_transactions.id"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "story_id", "chapter_number", name="uq_chapter_unlocks_user_story_chapter"),
        sa.CheckConstraint("chapter_number BETWEEN 1 AND 5", name="ck_chapter_unlocks_chapter"),
    )
    op.create_index("ix_chapter_unlocks_user_id", "chapter_unlocks", ["user_id"])

def downgrade() -> None:
    op.drop_index("ix_chapter_unlocks_user_id", table_name="chapter_unlocks")
    op.drop_table("chapter_unlocks")
    op.drop_index("ix_coin_transactions_user_rule_created", table_name="coin_transactions")
    op.drop_index("ix_coin_transactions_user_id", table_name="coin_transactions")
    op.drop_table("coin_transactions")
    op.drop_table("reward_rules")
