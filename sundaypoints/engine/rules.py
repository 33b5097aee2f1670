"""
sundaypoints.engine.rules — Points Rule Evaluation
===================================================

Pure evaluation stage: no DB I/O.  Given a church's
:class:`~sundaypoints.database.models.ChurchPointsConfig` and a typed event,
decide whether points apply and the signed delta.

    PointsEvent + ChurchPointsConfig → RuleOutcome

A ``RuleOutcome`` with ``applies=False`` is a no-op: the feature is switched
off, or the configured value is zero.  Revocations and terminal store-order
transitions carry no amount of their own; the ledger derives it from the row
they reverse, so their outcome has ``points=0`` and ``derived=True``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sundaypoints.database.models import (
    AttendanceStatus,
    ChurchPointsConfig,
    OrderTransition,
    TransactionType,
)
from sundaypoints.engine.errors import (
    ConfigNotFoundError,
    FeatureDisabledError,
    LedgerValidationError,
    MissingNoteError,
    UnsupportedEventError,
)
from sundaypoints.engine.events import (
    ActivityCompletionEvent,
    ActivityRevocationEvent,
    AdminAdjustmentEvent,
    AttendanceEvent,
    PointsEvent,
    StoreOrderEvent,
    TeacherAdjustmentEvent,
    TripParticipationEvent,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RuleOutcome",
    "clamp_adjustment",
    "evaluate",
    "needs_config",
    "require_note",
    "validate",
]


# ---------------------------------------------------------------------------
# RuleOutcome — output of evaluation
# ---------------------------------------------------------------------------
@dataclass
class RuleOutcome:
    """What the ledger should write for one event."""

    transaction_type: TransactionType
    points: int = 0
    applies: bool = True
    derived: bool = False
    notes: str | None = None
    refs: dict[str, str] = field(default_factory=dict)
    clamped: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def require_note(notes: str | None, transaction_type: TransactionType) -> str:
    """Return the stripped note or raise :class:`MissingNoteError`."""
    if notes is None or not notes.strip():
        raise MissingNoteError(transaction_type.value)
    return notes.strip()


def clamp_adjustment(points: int, limit: int) -> int:
    """Clamp *points* into ``[-limit, +limit]``."""
    return max(-limit, min(limit, points))


def _require_config(
    config: ChurchPointsConfig | None, church_id: str | None
) -> ChurchPointsConfig:
    if config is None:
        raise ConfigNotFoundError(church_id or "<unknown>")
    return config


# ---------------------------------------------------------------------------
# Per-event rules
# ---------------------------------------------------------------------------
def _attendance(event: AttendanceEvent, config: ChurchPointsConfig) -> RuleOutcome:
    try:
        status = AttendanceStatus(event.status)
    except ValueError:
        raise UnsupportedEventError(f"Unknown attendance status {event.status!r}") from None

    refs = {"attendance_id": event.attendance_id} if event.attendance_id else {}
    outcome = RuleOutcome(
        TransactionType.ATTENDANCE,
        notes=f"Attendance: {status.value}",
        refs=refs,
    )
    if not config.is_attendance_points_enabled:
        outcome.applies = False
        return outcome

    outcome.points = config.points_for_status(status)
    outcome.applies = outcome.points != 0
    return outcome


def _trip(event: TripParticipationEvent, config: ChurchPointsConfig) -> RuleOutcome:
    outcome = RuleOutcome(
        TransactionType.TRIP_PARTICIPATION,
        notes=f"Trip participation: {event.trip_name or event.trip_id}",
        refs={"trip_id": event.trip_id},
    )
    if not config.is_trip_points_enabled:
        outcome.applies = False
        return outcome

    outcome.points = config.trip_participation_points
    outcome.applies = outcome.points != 0
    return outcome


def _teacher_adjustment(
    event: TeacherAdjustmentEvent, config: ChurchPointsConfig
) -> RuleOutcome:
    notes = require_note(event.notes, TransactionType.TEACHER_ADJUSTMENT)
    if not config.is_teacher_adjustment_enabled:
        raise FeatureDisabledError(
            f"Teacher point adjustments are disabled for church {config.church_id!r}"
        )

    points = clamp_adjustment(event.points, config.max_teacher_adjustment)
    if points != event.points:
        logger.info(
            "Teacher adjustment %d clamped to %d (church=%s, max=%d)",
            event.points, points, config.church_id, config.max_teacher_adjustment,
        )
    return RuleOutcome(
        TransactionType.TEACHER_ADJUSTMENT,
        points=points,
        notes=notes,
        clamped=points != event.points,
    )


def _store_order(event: StoreOrderEvent) -> RuleOutcome:
    try:
        transition = OrderTransition(event.transition)
    except ValueError:
        raise UnsupportedEventError(f"Unknown order transition {event.transition!r}") from None

    if transition is OrderTransition.SUSPEND:
        if event.points <= 0:
            raise LedgerValidationError("Order points to suspend must be positive")
        return RuleOutcome(
            TransactionType.STORE_ORDER_PENDING,
            points=-event.points,
            notes="Points suspended for order",
            refs={"order_id": event.order_id},
        )

    return RuleOutcome(
        event.transaction_type,
        derived=True,
        refs={"order_id": event.order_id},
    )


def needs_config(event: PointsEvent) -> bool:
    """True for events whose outcome depends on church settings."""
    return isinstance(event, AttendanceEvent | TripParticipationEvent | TeacherAdjustmentEvent)


# ---------------------------------------------------------------------------
# Input validation (no config, no store access)
# ---------------------------------------------------------------------------
def validate(event: PointsEvent) -> None:
    """Reject malformed events before the ledger touches the database."""
    if isinstance(event, TeacherAdjustmentEvent | AdminAdjustmentEvent):
        require_note(event.notes, event.transaction_type)
    elif isinstance(event, ActivityCompletionEvent):
        if event.points < 0:
            raise LedgerValidationError("Activity points must not be negative")
    elif isinstance(event, StoreOrderEvent):
        _store_order(event)
    elif not isinstance(
        event, AttendanceEvent | TripParticipationEvent | ActivityRevocationEvent
    ):
        raise UnsupportedEventError(f"Unsupported event type {type(event).__name__}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def evaluate(
    event: PointsEvent,
    config: ChurchPointsConfig | None,
    *,
    church_id: str | None = None,
) -> RuleOutcome:
    """Run *event* through the church's rules.

    *config* may be ``None`` for events that don't depend on church settings
    (activity completion/revocation, admin adjustments, store orders).
    Events that do need it raise :class:`ConfigNotFoundError`.

    Raises
    ------
    ConfigNotFoundError
        Attendance, trip or teacher event without a church config.
    UnsupportedEventError
        *event* is not one of the known event classes.
    MissingNoteError
        Adjustment without a justification note.
    FeatureDisabledError
        Teacher adjustments switched off for the church.
    """
    if isinstance(event, AttendanceEvent):
        return _attendance(event, _require_config(config, church_id))

    if isinstance(event, TripParticipationEvent):
        return _trip(event, _require_config(config, church_id))

    if isinstance(event, TeacherAdjustmentEvent):
        return _teacher_adjustment(event, _require_config(config, church_id))

    if isinstance(event, AdminAdjustmentEvent):
        return RuleOutcome(
            TransactionType.ADMIN_ADJUSTMENT,
            points=event.points,
            notes=require_note(event.notes, TransactionType.ADMIN_ADJUSTMENT),
        )

    if isinstance(event, ActivityCompletionEvent):
        if event.points < 0:
            raise LedgerValidationError("Activity points must not be negative")
        return RuleOutcome(
            TransactionType.ACTIVITY_COMPLETION,
            points=event.points,
            applies=event.points != 0,
            notes="Activity completed",
            refs={"activity_id": event.activity_id},
        )

    if isinstance(event, ActivityRevocationEvent):
        return RuleOutcome(
            TransactionType.ACTIVITY_REVOCATION,
            derived=True,
            notes=event.reason or "Activity points revoked",
            refs={"activity_id": event.activity_id},
        )

    if isinstance(event, StoreOrderEvent):
        return _store_order(event)

    raise UnsupportedEventError(f"Unsupported event type {type(event).__name__}")
