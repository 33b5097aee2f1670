"""
sundaypoints.database.models — SQLAlchemy 2.0 Data Models
==========================================================

Tables:
- church_points_config   — Per-church point values and feature flags
- student_points_balance — Per-user cached totals derived from the log
- points_transactions    — Append-only ledger with idempotent insert
- admin_log              — Append-only audit trail for config mutations

Users, churches, activities, attendance records, trips and store orders
live in the portal's own tables.  The ledger only keeps their ids as weak
references (no foreign keys, no cascades).
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all ledger ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TransactionType(enum.StrEnum):
    """Every kind of row the points ledger can hold."""
    ACTIVITY_COMPLETION = "activity_completion"
    ACTIVITY_REVOCATION = "activity_revocation"
    ATTENDANCE = "attendance"
    TRIP_PARTICIPATION = "trip_participation"
    TEACHER_ADJUSTMENT = "teacher_adjustment"
    STORE_ORDER_PENDING = "store_order_pending"
    STORE_ORDER_APPROVED = "store_order_approved"
    STORE_ORDER_CANCELLED = "store_order_cancelled"
    STORE_ORDER_REJECTED = "store_order_rejected"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class AttendanceStatus(enum.StrEnum):
    PRESENT = "present"
    LATE = "late"
    EXCUSED = "excused"
    ABSENT = "absent"


class OrderTransition(enum.StrEnum):
    """Store-order lifecycle steps that move points."""
    SUSPEND = "suspend"
    APPROVE = "approve"
    CANCEL = "cancel"
    REJECT = "reject"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    RECONCILE = "RECONCILE"


# ---------------------------------------------------------------------------
# ChurchPointsConfig — one row per tenant church
# ---------------------------------------------------------------------------
class ChurchPointsConfig(Base):
    """Point values and feature flags for one church.

    Created at onboarding and edited by church/diocese admins.  Never
    deleted; features are switched off through the ``is_*_enabled`` flags.
    """
    __tablename__ = "church_points_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    church_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Attendance points
    attendance_points_present: Mapped[int] = mapped_column(Integer, default=10)
    attendance_points_late: Mapped[int] = mapped_column(Integer, default=5)
    attendance_points_excused: Mapped[int] = mapped_column(Integer, default=0)
    attendance_points_absent: Mapped[int] = mapped_column(Integer, default=0)

    # Trip points
    trip_participation_points: Mapped[int] = mapped_column(Integer, default=20)

    # Teacher limits
    max_teacher_adjustment: Mapped[int] = mapped_column(Integer, default=50)

    # Feature flags
    is_attendance_points_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    is_trip_points_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    is_teacher_adjustment_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "attendance_points_present >= 0 AND attendance_points_late >= 0 "
            "AND attendance_points_excused >= 0 AND attendance_points_absent >= 0",
            name="ck_points_config_attendance_non_negative",
        ),
        CheckConstraint(
            "trip_participation_points >= 0",
            name="ck_points_config_trip_non_negative",
        ),
        CheckConstraint(
            "max_teacher_adjustment >= 0",
            name="ck_points_config_max_adjustment_non_negative",
        ),
    )

    def points_for_status(self, status: AttendanceStatus) -> int:
        """Configured attendance points for *status*."""
        return {
            AttendanceStatus.PRESENT: self.attendance_points_present,
            AttendanceStatus.LATE: self.attendance_points_late,
            AttendanceStatus.EXCUSED: self.attendance_points_excused,
            AttendanceStatus.ABSENT: self.attendance_points_absent,
        }[AttendanceStatus(status)]

    def __repr__(self) -> str:
        return f"<ChurchPointsConfig church={self.church_id!r}>"


# ---------------------------------------------------------------------------
# StudentPointsBalance — per-user cached aggregate
# ---------------------------------------------------------------------------
class StudentPointsBalance(Base):
    __tablename__ = "student_points_balance"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    available_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    suspended_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_deducted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Revoked points that could not be taken from available_points
    deficit_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("available_points >= 0", name="ck_balance_available_non_negative"),
        CheckConstraint("suspended_points >= 0", name="ck_balance_suspended_non_negative"),
        CheckConstraint("used_points >= 0", name="ck_balance_used_non_negative"),
        CheckConstraint("deficit_points >= 0", name="ck_balance_deficit_non_negative"),
        Index("ix_points_balance_total_earned", "total_earned"),
    )

    def __repr__(self) -> str:
        return (
            f"<StudentPointsBalance user={self.user_id!r} "
            f"available={self.available_points} suspended={self.suspended_points}>"
        )


# ---------------------------------------------------------------------------
# PointsTransaction — append-only ledger
# ---------------------------------------------------------------------------
class PointsTransaction(Base):
    """One immutable ledger row.

    ``points`` is the signed change to ``available_points``; ``balance_after``
    is ``available_points`` right after this row was applied, so the log can
    be replayed and audited row by row.
    """
    __tablename__ = "points_transactions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(40), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    deficit_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Signed change to suspended_points: order holds and revocations taken from them
    suspended_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Weak references to the originating portal entities
    activity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attendance_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trip_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    church_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_points_tx_idempotent",
            "idempotency_key",
            unique=True,
            postgresql_where=idempotency_key.isnot(None),
            sqlite_where=idempotency_key.isnot(None),
        ),
        Index("ix_points_tx_user_id", "user_id", "id"),
        Index("ix_points_tx_user_type", "user_id", "transaction_type"),
        Index("ix_points_tx_order", "order_id"),
        Index("ix_points_tx_activity", "activity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PointsTransaction id={self.id} user={self.user_id!r} "
            f"type={self.transaction_type} points={self.points}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
