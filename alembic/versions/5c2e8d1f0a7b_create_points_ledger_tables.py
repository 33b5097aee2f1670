"""Create points ledger tables

Revision ID: 5c2e8d1f0a7b
Revises:
Create Date: 2026-10-17 09:12:41.518204

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8d1f0a7b'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create church config, balance, ledger and audit tables."""

    # --- church_points_config ---
    op.create_table(
        "church_points_config",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("church_id", sa.String(64), nullable=False, unique=True),
        sa.Column("attendance_points_present", sa.Integer, nullable=False, server_default="10"),
        sa.Column("attendance_points_late", sa.Integer, nullable=False, server_default="5"),
        sa.Column("attendance_points_excused", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attendance_points_absent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("trip_participation_points", sa.Integer, nullable=False, server_default="20"),
        sa.Column("max_teacher_adjustment", sa.Integer, nullable=False, server_default="50"),
        sa.Column("is_attendance_points_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_trip_points_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_teacher_adjustment_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "attendance_points_present >= 0 AND attendance_points_late >= 0 "
            "AND attendance_points_excused >= 0 AND attendance_points_absent >= 0",
            name="ck_points_config_attendance_non_negative",
        ),
        sa.CheckConstraint(
            "trip_participation_points >= 0", name="ck_points_config_trip_non_negative",
        ),
        sa.CheckConstraint(
            "max_teacher_adjustment >= 0", name="ck_points_config_max_adjustment_non_negative",
        ),
    )

    # --- student_points_balance ---
    op.create_table(
        "student_points_balance",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("available_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("suspended_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("used_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_deducted", sa.Integer, nullable=False, server_default="0"),
        sa.Column("deficit_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("available_points >= 0", name="ck_balance_available_non_negative"),
        sa.CheckConstraint("suspended_points >= 0", name="ck_balance_suspended_non_negative"),
        sa.CheckConstraint("used_points >= 0", name="ck_balance_used_non_negative"),
        sa.CheckConstraint("deficit_points >= 0", name="ck_balance_deficit_non_negative"),
    )
    op.create_index(
        "ix_points_balance_total_earned", "student_points_balance", ["total_earned"],
    )

    # --- points_transactions ---
    op.create_table(
        "points_transactions",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("transaction_type", sa.String(40), nullable=False),
        sa.Column("points", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("deficit_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("suspended_delta", sa.Integer, nullable=False, server_default="0"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("activity_id", sa.String(64), nullable=True),
        sa.Column("attendance_id", sa.String(64), nullable=True),
        sa.Column("trip_id", sa.String(64), nullable=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("church_id", sa.String(64), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(300), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_points_tx_idempotent",
        "points_transactions",
        ["idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )
    op.create_index("ix_points_tx_user_id", "points_transactions", ["user_id", "id"])
    op.create_index(
        "ix_points_tx_user_type", "points_transactions", ["user_id", "transaction_type"],
    )
    op.create_index("ix_points_tx_order", "points_transactions", ["order_id"])
    op.create_index("ix_points_tx_activity", "points_transactions", ["activity_id"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_table("admin_log")
    op.drop_index("ix_points_tx_activity", table_name="points_transactions")
    op.drop_index("ix_points_tx_order", table_name="points_transactions")
    op.drop_index("ix_points_tx_user_type", table_name="points_transactions")
    op.drop_index("ix_points_tx_user_id", table_name="points_transactions")
    op.drop_index("ix_points_tx_idempotent", table_name="points_transactions")
    op.drop_table("points_transactions")
    op.drop_index("ix_points_balance_total_earned", table_name="student_points_balance")
    op.drop_table("student_points_balance")
    op.drop_table("church_points_config")
