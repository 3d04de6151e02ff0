"""baseline: users, attendances, user_streaks

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Users are keyed by Clerk user ID. Check-ins are append-only and indexed
by (user_id, occurred_at) for weekly window counts.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_baseline"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("is_admin", sa.Boolean(), default=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "attendances",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("gym_name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_attendances_user_occurred", "attendances", ["user_id", "occurred_at"]
    )

    op.create_table(
        "user_streaks",
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column(
            "current_streak", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("last_reconciled_week", sa.Date(), nullable=True),
        sa.Column("last_qualified_week", sa.Date(), nullable=True),
        sa.Column("last_reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint("current_streak >= 0", name="ck_user_streaks_nonnegative"),
        sa.CheckConstraint("version >= 1", name="ck_user_streaks_version"),
    )
    op.create_index(
        "ix_user_streaks_current_streak", "user_streaks", ["current_streak"]
    )


def downgrade() -> None:
    op.drop_index("ix_user_streaks_current_streak", table_name="user_streaks")
    op.drop_table("user_streaks")
    op.drop_index("ix_attendances_user_occurred", table_name="attendances")
    op.drop_table("attendances")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
