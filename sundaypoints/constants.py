"""
sundaypoints.constants — Shared Constants
==========================================

Single source of truth for staff roles, onboarding defaults and the
summary buckets.  Import from here instead of duplicating in services and
routes.
"""

from __future__ import annotations

from sundaypoints.database.models import TransactionType

# ---------------------------------------------------------------------------
# Staff roles (JWT ``role`` claim)
# ---------------------------------------------------------------------------
ADMIN_ROLES: frozenset[str] = frozenset({"super_admin", "diocese_admin", "church_admin"})
STAFF_ROLES: frozenset[str] = ADMIN_ROLES | {"teacher"}


# ---------------------------------------------------------------------------
# Church onboarding defaults
# ---------------------------------------------------------------------------
DEFAULT_CHURCH_POINTS: dict[str, int | bool] = {
    "attendance_points_present": 10,
    "attendance_points_late": 5,
    "attendance_points_excused": 0,
    "attendance_points_absent": 0,
    "trip_participation_points": 20,
    "max_teacher_adjustment": 50,
    "is_attendance_points_enabled": True,
    "is_trip_points_enabled": True,
    "is_teacher_adjustment_enabled": True,
}


# ---------------------------------------------------------------------------
# Ledger rules
# ---------------------------------------------------------------------------
NOTE_REQUIRED_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.TEACHER_ADJUSTMENT,
    TransactionType.ADMIN_ADJUSTMENT,
})

# Only ever credit points; a negative amount is rejected
EARNING_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.ACTIVITY_COMPLETION,
    TransactionType.ATTENDANCE,
    TransactionType.TRIP_PARTICIPATION,
})

ORDER_TERMINAL_TYPES: frozenset[TransactionType] = frozenset({
    TransactionType.STORE_ORDER_APPROVED,
    TransactionType.STORE_ORDER_CANCELLED,
    TransactionType.STORE_ORDER_REJECTED,
})

ORDER_TYPES: frozenset[TransactionType] = ORDER_TERMINAL_TYPES | {
    TransactionType.STORE_ORDER_PENDING,
}


# ---------------------------------------------------------------------------
# Summary buckets (points_by_type on the student dashboard)
# ---------------------------------------------------------------------------
SUMMARY_BUCKETS: tuple[str, ...] = ("activity", "attendance", "trips", "adjustments", "store")

BUCKET_FOR_TYPE: dict[TransactionType, str] = {
    TransactionType.ACTIVITY_COMPLETION: "activity",
    TransactionType.ATTENDANCE: "attendance",
    TransactionType.TRIP_PARTICIPATION: "trips",
    TransactionType.TEACHER_ADJUSTMENT: "adjustments",
    TransactionType.ADMIN_ADJUSTMENT: "adjustments",
    TransactionType.STORE_ORDER_APPROVED: "store",
}
