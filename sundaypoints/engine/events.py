"""
sundaypoints.engine.events — Typed Points Events
=================================================

One frozen dataclass per trigger the portal can send into the ledger.  Each
carries only the fields that make sense for it, so an attendance event can't
smuggle in an order id and a teacher adjustment can't forget its note field.

``PointsEvent`` is the closed union the rule engine accepts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from sundaypoints.database.models import AttendanceStatus, OrderTransition, TransactionType

__all__ = [
    "ActivityCompletionEvent",
    "ActivityRevocationEvent",
    "AdminAdjustmentEvent",
    "AttendanceEvent",
    "ORDER_TRANSITION_TYPES",
    "PointsEvent",
    "StoreOrderEvent",
    "TeacherAdjustmentEvent",
    "TripParticipationEvent",
]

ORDER_TRANSITION_TYPES: dict[OrderTransition, TransactionType] = {
    OrderTransition.SUSPEND: TransactionType.STORE_ORDER_PENDING,
    OrderTransition.APPROVE: TransactionType.STORE_ORDER_APPROVED,
    OrderTransition.CANCEL: TransactionType.STORE_ORDER_CANCELLED,
    OrderTransition.REJECT: TransactionType.STORE_ORDER_REJECTED,
}


@dataclass(frozen=True, slots=True)
class AttendanceEvent:
    """A student's attendance was marked."""

    status: AttendanceStatus
    attendance_id: str | None = None

    transaction_type: ClassVar[TransactionType] = TransactionType.ATTENDANCE


@dataclass(frozen=True, slots=True)
class TripParticipationEvent:
    """A student took part in a trip."""

    trip_id: str
    trip_name: str | None = None

    transaction_type: ClassVar[TransactionType] = TransactionType.TRIP_PARTICIPATION


@dataclass(frozen=True, slots=True)
class ActivityCompletionEvent:
    """An activity completion was approved with ``points`` awarded."""

    activity_id: str
    points: int

    transaction_type: ClassVar[TransactionType] = TransactionType.ACTIVITY_COMPLETION


@dataclass(frozen=True, slots=True)
class ActivityRevocationEvent:
    """Points from an earlier activity completion are taken back."""

    activity_id: str
    reason: str | None = None

    transaction_type: ClassVar[TransactionType] = TransactionType.ACTIVITY_REVOCATION


@dataclass(frozen=True, slots=True)
class TeacherAdjustmentEvent:
    """Manual correction by a teacher; bounded by the church's limit."""

    points: int
    notes: str

    transaction_type: ClassVar[TransactionType] = TransactionType.TEACHER_ADJUSTMENT


@dataclass(frozen=True, slots=True)
class AdminAdjustmentEvent:
    """Manual correction by a church/diocese admin; not bounded."""

    points: int
    notes: str

    transaction_type: ClassVar[TransactionType] = TransactionType.ADMIN_ADJUSTMENT


@dataclass(frozen=True, slots=True)
class StoreOrderEvent:
    """A store order moved through its lifecycle.

    ``points`` is only meaningful for :attr:`OrderTransition.SUSPEND`; the
    terminal transitions always move the amount held when the order went
    pending.
    """

    order_id: str
    transition: OrderTransition
    points: int = 0

    @property
    def transaction_type(self) -> TransactionType:
        return ORDER_TRANSITION_TYPES[OrderTransition(self.transition)]


PointsEvent = (
    AttendanceEvent
    | TripParticipationEvent
    | ActivityCompletionEvent
    | ActivityRevocationEvent
    | TeacherAdjustmentEvent
    | AdminAdjustmentEvent
    | StoreOrderEvent
)
