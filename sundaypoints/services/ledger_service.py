"""
sundaypoints.services.ledger_service — Atomic Points Application
=================================================================

The only code that writes ``student_points_balance`` and
``points_transactions``.  Every operation is one database transaction:

  1. Lock (or lazily create) the user's balance row — ``SELECT … FOR UPDATE``
  2. Idempotency check against the deterministic key
  3. Compute the new balance, rejecting negative ``available_points``
  4. Insert one immutable ledger row with ``balance_after``
  5. Commit — or roll back both writes on any error

Concurrent operations for the same user serialize on the balance row lock;
different users never contend.  The unique index on ``idempotency_key`` is
the store-level backstop: a racing duplicate insert raises
``IntegrityError`` and is resolved to the row that won.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sundaypoints.constants import EARNING_TYPES, NOTE_REQUIRED_TYPES, ORDER_TYPES
from sundaypoints.database.models import (
    AttendanceStatus,
    ChurchPointsConfig,
    OrderTransition,
    PointsTransaction,
    StudentPointsBalance,
    TransactionType,
)
from sundaypoints.engine import rules
from sundaypoints.engine.errors import (
    ConfigNotFoundError,
    InsufficientBalanceError,
    InvalidOrderTransitionError,
    InvalidTransitionError,
    LedgerValidationError,
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

REF_FIELDS: tuple[str, ...] = ("activity_id", "attendance_id", "trip_id", "order_id")

# Types with their own state rules; apply_delta refuses them.
STRUCTURED_TYPES: frozenset[TransactionType] = ORDER_TYPES | {
    TransactionType.ACTIVITY_REVOCATION,
}


@dataclass
class LedgerResult:
    """Outcome of one ledger operation.

    ``transaction`` and ``balance`` are detached snapshots.  When
    ``duplicate`` is true nothing was written and ``transaction`` is the row
    recorded by the earlier call.
    """

    transaction: PointsTransaction
    balance: StudentPointsBalance
    duplicate: bool = False


ApplyFn = Callable[[Session, StudentPointsBalance], tuple[PointsTransaction, bool]]


# ---------------------------------------------------------------------------
# Keys & lookups
# ---------------------------------------------------------------------------
def idempotency_key(
    transaction_type: TransactionType, ref_kind: str, ref_id: str, user_id: str
) -> str:
    """Deterministic key for an event tied to an originating entity."""
    return f"{TransactionType(transaction_type).value}:{ref_kind}:{ref_id}:{user_id}"


def _default_key(
    transaction_type: TransactionType, refs: dict[str, str], user_id: str
) -> str | None:
    for ref_kind in REF_FIELDS:
        ref_id = refs.get(ref_kind)
        if ref_id:
            return idempotency_key(transaction_type, ref_kind.removesuffix("_id"), ref_id, user_id)
    return None


def _find_by_key(session: Session, key: str) -> PointsTransaction | None:
    return session.scalar(
        select(PointsTransaction).where(PointsTransaction.idempotency_key == key)
    )


def lock_balance(session: Session, user_id: str) -> StudentPointsBalance:
    """Fetch the user's balance row with a row lock, creating it if absent."""
    stmt = (
        select(StudentPointsBalance)
        .where(StudentPointsBalance.user_id == user_id)
        .with_for_update()
    )
    balance = session.scalar(stmt)
    if balance is not None:
        return balance

    # Zero-initialized row; a concurrent creator wins silently and we lock theirs.
    session.execute(_insert_balance_if_absent(session, user_id))
    balance = session.scalar(stmt)
    logger.debug("Created points balance for user %s", user_id)
    return balance


def _insert_balance_if_absent(session: Session, user_id: str):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Unsupported database dialect: {dialect}")

    return (
        insert(StudentPointsBalance)
        .values(
            user_id=user_id,
            available_points=0,
            suspended_points=0,
            used_points=0,
            total_earned=0,
            total_deducted=0,
            deficit_points=0,
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )


def _new_row(
    balance: StudentPointsBalance,
    transaction_type: TransactionType,
    points: int,
    *,
    deficit_points: int = 0,
    suspended_delta: int = 0,
    notes: str | None = None,
    refs: dict[str, str] | None = None,
    actor_id: str | None = None,
    church_id: str | None = None,
    key: str | None = None,
) -> PointsTransaction:
    refs = refs or {}
    return PointsTransaction(
        user_id=balance.user_id,
        transaction_type=transaction_type.value,
        points=points,
        balance_after=balance.available_points,
        deficit_points=deficit_points,
        suspended_delta=suspended_delta,
        notes=notes,
        activity_id=refs.get("activity_id"),
        attendance_id=refs.get("attendance_id"),
        trip_id=refs.get("trip_id"),
        order_id=refs.get("order_id"),
        church_id=church_id,
        created_by=actor_id,
        idempotency_key=key,
    )


# ---------------------------------------------------------------------------
# Atomic unit
# ---------------------------------------------------------------------------
def _atomic(
    engine: Engine,
    user_id: str,
    apply: ApplyFn,
    *,
    key: str | None = None,
    check_key: bool = True,
) -> LedgerResult:
    """Run *apply* inside one transaction holding the user's balance lock.

    *apply* returns ``(row, duplicate)``; a new row must already be added to
    the session.  Any exception rolls back the balance and the row together.
    """
    try:
        with Session(engine, expire_on_commit=False) as session:
            balance = lock_balance(session, user_id)

            if key is not None and check_key:
                prior = _find_by_key(session, key)
                if prior is not None:
                    session.commit()
                    logger.info("Duplicate points event %s ignored", key)
                    return _detach(session, prior, balance, duplicate=True)

            row, duplicate = apply(session, balance)
            session.flush()
            session.commit()
            return _detach(session, row, balance, duplicate=duplicate)
    except IntegrityError:
        if key is None:
            raise
        # Lost a race on the unique key: report the row that won.
        with Session(engine, expire_on_commit=False) as session:
            prior = _find_by_key(session, key)
            if prior is None:
                raise
            balance = session.get(StudentPointsBalance, user_id)
            logger.info("Duplicate points event %s resolved after conflict", key)
            return _detach(session, prior, balance, duplicate=True)


def _detach(
    session: Session,
    row: PointsTransaction,
    balance: StudentPointsBalance,
    *,
    duplicate: bool,
) -> LedgerResult:
    session.refresh(row)
    session.refresh(balance)
    session.expunge(row)
    session.expunge(balance)
    return LedgerResult(transaction=row, balance=balance, duplicate=duplicate)


# ---------------------------------------------------------------------------
# Generic delta
# ---------------------------------------------------------------------------
def apply_delta(
    engine: Engine,
    user_id: str,
    transaction_type: TransactionType | str,
    delta: int,
    *,
    notes: str | None = None,
    refs: dict[str, str] | None = None,
    actor_id: str | None = None,
    church_id: str | None = None,
    key: str | None = None,
) -> LedgerResult:
    """Apply a signed *delta* to the user's available points.

    A zero delta is still recorded.  When *key* is omitted and *refs* names
    an originating entity, the key is derived from it, so retried events are
    applied once.  Store-order types and revocations have their own state
    rules and must go through :func:`award_event`.

    Raises
    ------
    UnsupportedEventError
        Unknown transaction type, or one that needs its dedicated operation.
    MissingNoteError
        Teacher/admin adjustment without a note.
    LedgerValidationError
        Negative delta for an earning type (activity, attendance, trip).
    InsufficientBalanceError
        ``available_points + delta`` would be negative.
    """
    try:
        tx_type = TransactionType(transaction_type)
    except ValueError:
        raise UnsupportedEventError(f"Unknown transaction type {transaction_type!r}") from None
    if tx_type in STRUCTURED_TYPES:
        raise UnsupportedEventError(
            f"{tx_type.value} has its own lifecycle; use award_event"
        )
    if tx_type in NOTE_REQUIRED_TYPES:
        notes = rules.require_note(notes, tx_type)
    if tx_type in EARNING_TYPES and delta < 0:
        raise LedgerValidationError(f"{tx_type.value} points must not be negative")

    refs = {k: v for k, v in (refs or {}).items() if v}
    unknown = set(refs) - set(REF_FIELDS)
    if unknown:
        raise LedgerValidationError(f"Unknown reference fields: {sorted(unknown)}")
    if key is None:
        key = _default_key(tx_type, refs, user_id)

    def _apply(session: Session, balance: StudentPointsBalance):
        new_available = balance.available_points + delta
        if new_available < 0:
            logger.warning(
                "Rejected %s of %d for user %s: available %d",
                tx_type.value, delta, user_id, balance.available_points,
            )
            raise InsufficientBalanceError(user_id, balance.available_points, -delta)

        balance.available_points = new_available
        if delta > 0:
            balance.total_earned += delta
        elif delta < 0:
            balance.total_deducted += -delta

        row = _new_row(
            balance, tx_type, delta,
            notes=notes, refs=refs, actor_id=actor_id, church_id=church_id, key=key,
        )
        session.add(row)
        return row, False

    result = _atomic(engine, user_id, _apply, key=key)
    if not result.duplicate:
        logger.info(
            "Applied %s %+d to user %s → available %d",
            tx_type.value, delta, user_id, result.balance.available_points,
        )
    return result


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------
def _revoke(
    engine: Engine,
    user_id: str,
    outcome: rules.RuleOutcome,
    *,
    actor_id: str | None,
    church_id: str | None,
) -> LedgerResult:
    activity_id = outcome.refs["activity_id"]
    key = idempotency_key(TransactionType.ACTIVITY_REVOCATION, "activity", activity_id, user_id)

    def _apply(session: Session, balance: StudentPointsBalance):
        completion = session.scalar(
            select(PointsTransaction).where(
                PointsTransaction.user_id == user_id,
                PointsTransaction.transaction_type == TransactionType.ACTIVITY_COMPLETION.value,
                PointsTransaction.activity_id == activity_id,
            )
        )
        if completion is None:
            raise InvalidTransitionError(
                f"No activity completion {activity_id!r} to revoke for user {user_id!r}"
            )

        owed = completion.points
        if owed <= 0:
            raise InvalidTransitionError(
                f"Activity completion {activity_id!r} for user {user_id!r} "
                f"carries no points to revoke"
            )
        removed = min(owed, balance.available_points)
        from_suspended = min(owed - removed, balance.suspended_points)
        deficit = owed - removed - from_suspended

        balance.available_points -= removed
        balance.suspended_points -= from_suspended
        balance.deficit_points += deficit
        balance.total_deducted += owed

        notes = outcome.notes
        if from_suspended:
            notes = f"{notes} ({from_suspended} points taken from suspended)"
            logger.warning(
                "Revocation of activity %s for user %s took %d suspended points",
                activity_id, user_id, from_suspended,
            )
        if deficit:
            notes = f"{notes} ({deficit} points recorded as deficit)"
            logger.warning(
                "Revocation of activity %s for user %s left a deficit of %d",
                activity_id, user_id, deficit,
            )

        row = _new_row(
            balance, TransactionType.ACTIVITY_REVOCATION, -removed,
            deficit_points=deficit, suspended_delta=-from_suspended,
            notes=notes, refs=outcome.refs,
            actor_id=actor_id, church_id=church_id or completion.church_id, key=key,
        )
        session.add(row)
        return row, False

    return _atomic(engine, user_id, _apply, key=key)


# ---------------------------------------------------------------------------
# Store orders
# ---------------------------------------------------------------------------
def _order_rows(
    session: Session, user_id: str, order_id: str
) -> tuple[PointsTransaction | None, PointsTransaction | None]:
    """Return ``(pending_row, terminal_row)`` for *order_id*."""
    rows = session.scalars(
        select(PointsTransaction)
        .where(
            PointsTransaction.order_id == order_id,
            PointsTransaction.transaction_type.in_([t.value for t in ORDER_TYPES]),
        )
        .order_by(PointsTransaction.id)
    ).all()

    pending = terminal = None
    for row in rows:
        if row.user_id != user_id:
            raise LedgerValidationError(
                f"Order {order_id!r} belongs to another user"
            )
        if row.transaction_type == TransactionType.STORE_ORDER_PENDING.value:
            pending = pending or row
        elif terminal is None:
            terminal = row
    return pending, terminal


def order_state(engine: Engine, user_id: str, order_id: str) -> str | None:
    """Current lifecycle state of an order's points, or ``None``."""
    with Session(engine) as session:
        pending, terminal = _order_rows(session, user_id, order_id)
        row = terminal or pending
        return row.transaction_type if row is not None else None


def _order_transition(
    engine: Engine,
    user_id: str,
    outcome: rules.RuleOutcome,
    *,
    actor_id: str | None,
    church_id: str | None,
) -> LedgerResult:
    order_id = outcome.refs["order_id"]
    tx_type = outcome.transaction_type
    key = idempotency_key(tx_type, "order", order_id, user_id)

    def _suspend(session: Session, balance: StudentPointsBalance):
        amount = -outcome.points
        pending, terminal = _order_rows(session, user_id, order_id)
        if terminal is not None:
            raise InvalidOrderTransitionError(order_id, terminal.transaction_type, tx_type.value)
        if pending is not None:
            if pending.points != outcome.points:
                logger.warning(
                    "Order %s already holds %d points; ignoring new amount %d",
                    order_id, -pending.points, amount,
                )
            return pending, True
        if balance.available_points < amount:
            logger.warning(
                "Rejected order %s for user %s: needs %d, available %d",
                order_id, user_id, amount, balance.available_points,
            )
            raise InsufficientBalanceError(user_id, balance.available_points, amount)

        balance.available_points -= amount
        balance.suspended_points += amount
        row = _new_row(
            balance, tx_type, -amount,
            suspended_delta=amount, notes=outcome.notes, refs=outcome.refs,
            actor_id=actor_id, church_id=church_id, key=key,
        )
        session.add(row)
        return row, False

    def _finish(session: Session, balance: StudentPointsBalance):
        pending, terminal = _order_rows(session, user_id, order_id)
        if terminal is not None:
            if terminal.transaction_type == tx_type.value:
                return terminal, True
            raise InvalidOrderTransitionError(order_id, terminal.transaction_type, tx_type.value)
        if pending is None:
            raise InvalidOrderTransitionError(order_id, None, tx_type.value)

        # A revocation may have taken part of the hold already.
        held = min(-pending.points, balance.suspended_points)
        if held < -pending.points:
            logger.warning(
                "Order %s holds %d of its original %d points after revocations",
                order_id, held, -pending.points,
            )
        balance.suspended_points -= held

        if tx_type is TransactionType.STORE_ORDER_APPROVED:
            balance.used_points += held
            row = _new_row(
                balance, tx_type, 0,
                suspended_delta=-held,
                notes=f"Order approved - {held} points deducted", refs=outcome.refs,
                actor_id=actor_id, church_id=church_id or pending.church_id, key=key,
            )
        else:
            reason = "cancelled" if tx_type is TransactionType.STORE_ORDER_CANCELLED else "rejected"
            settled = min(balance.deficit_points, held)
            balance.deficit_points -= settled
            balance.available_points += held - settled
            notes = f"Order {reason} - {held} points returned"
            if settled:
                notes = f"{notes} ({settled} applied to revocation deficit)"
            row = _new_row(
                balance, tx_type, held - settled,
                deficit_points=-settled, suspended_delta=-held,
                notes=notes, refs=outcome.refs,
                actor_id=actor_id, church_id=church_id or pending.church_id, key=key,
            )
        session.add(row)
        return row, False

    # State decides duplicates here: a pending key after a terminal state is
    # an invalid transition, not a replay.
    apply = _suspend if tx_type is TransactionType.STORE_ORDER_PENDING else _finish
    result = _atomic(engine, user_id, apply, key=key, check_key=False)
    if result.duplicate:
        logger.info("Order %s already %s; no change", order_id, tx_type.value)
    else:
        logger.info(
            "Order %s for user %s → %s (available %d, suspended %d, used %d)",
            order_id, user_id, tx_type.value, result.balance.available_points,
            result.balance.suspended_points, result.balance.used_points,
        )
    return result


# ---------------------------------------------------------------------------
# Event pipeline
# ---------------------------------------------------------------------------
def _load_config(engine: Engine, church_id: str) -> ChurchPointsConfig:
    with Session(engine) as session:
        config = session.scalar(
            select(ChurchPointsConfig).where(ChurchPointsConfig.church_id == church_id)
        )
        if config is None:
            raise ConfigNotFoundError(church_id)
        session.expunge(config)
        return config


def award_event(
    engine: Engine,
    user_id: str,
    event: PointsEvent,
    *,
    church_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult | None:
    """Run *event* through the church's rules and apply the outcome.

    1. Validate the event (no store access)
    2. Load the church config for attendance, trip and teacher events
    3. Evaluate rules → delta, no-op, or error
    4. Apply atomically

    Returns ``None`` when the rules produce a no-op (feature disabled or
    zero-point value).  For events that depend on church settings an
    unknown *church_id* raises :class:`ConfigNotFoundError`; other events
    only record *church_id* on the row.
    """
    rules.validate(event)
    config = None
    if church_id is not None and rules.needs_config(event):
        config = _load_config(engine, church_id)
    outcome = rules.evaluate(event, config, church_id=church_id)

    if not outcome.applies:
        logger.debug(
            "No points for %s (user=%s, church=%s)",
            outcome.transaction_type.value, user_id, church_id,
        )
        return None

    if outcome.transaction_type is TransactionType.ACTIVITY_REVOCATION:
        return _revoke(engine, user_id, outcome, actor_id=actor_id, church_id=church_id)

    if outcome.transaction_type in ORDER_TYPES:
        return _order_transition(
            engine, user_id, outcome, actor_id=actor_id, church_id=church_id,
        )

    return apply_delta(
        engine,
        user_id,
        outcome.transaction_type,
        outcome.points,
        notes=outcome.notes,
        refs=outcome.refs,
        actor_id=actor_id,
        church_id=church_id,
    )


# ---------------------------------------------------------------------------
# Trigger-specific entry points
# ---------------------------------------------------------------------------
def award_attendance(
    engine: Engine,
    *,
    user_id: str,
    church_id: str,
    status: AttendanceStatus | str,
    attendance_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult | None:
    """Award the church's points for an attendance status."""
    return award_event(
        engine, user_id,
        AttendanceEvent(status=status, attendance_id=attendance_id),
        church_id=church_id, actor_id=actor_id,
    )


def award_trip(
    engine: Engine,
    *,
    user_id: str,
    church_id: str,
    trip_id: str,
    trip_name: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult | None:
    """Award trip participation points."""
    return award_event(
        engine, user_id,
        TripParticipationEvent(trip_id=trip_id, trip_name=trip_name),
        church_id=church_id, actor_id=actor_id,
    )


def complete_activity(
    engine: Engine,
    *,
    user_id: str,
    activity_id: str,
    points: int,
    church_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult | None:
    """Credit points for an approved activity completion."""
    return award_event(
        engine, user_id,
        ActivityCompletionEvent(activity_id=activity_id, points=points),
        church_id=church_id, actor_id=actor_id,
    )


def revoke_activity(
    engine: Engine,
    *,
    user_id: str,
    activity_id: str,
    reason: str | None = None,
    church_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult:
    """Reverse a prior activity completion for the same activity."""
    return award_event(
        engine, user_id,
        ActivityRevocationEvent(activity_id=activity_id, reason=reason),
        church_id=church_id, actor_id=actor_id,
    )


def teacher_adjust(
    engine: Engine,
    *,
    user_id: str,
    church_id: str,
    points: int,
    notes: str,
    actor_id: str | None = None,
) -> LedgerResult:
    """Manual teacher adjustment, clamped to the church's limit."""
    return award_event(
        engine, user_id,
        TeacherAdjustmentEvent(points=points, notes=notes),
        church_id=church_id, actor_id=actor_id,
    )


def admin_adjust(
    engine: Engine,
    *,
    user_id: str,
    points: int,
    notes: str,
    church_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult:
    """Manual admin adjustment; no limit, note required."""
    return award_event(
        engine, user_id,
        AdminAdjustmentEvent(points=points, notes=notes),
        church_id=church_id, actor_id=actor_id,
    )


def suspend_order_points(
    engine: Engine,
    *,
    user_id: str,
    order_id: str,
    points: int,
    church_id: str | None = None,
    actor_id: str | None = None,
) -> LedgerResult:
    """Hold *points* against a pending store order."""
    return award_event(
        engine, user_id,
        StoreOrderEvent(order_id=order_id, transition=OrderTransition.SUSPEND, points=points),
        church_id=church_id, actor_id=actor_id,
    )


def approve_order(
    engine: Engine, *, user_id: str, order_id: str, actor_id: str | None = None,
) -> LedgerResult:
    """Turn the order's held points into spent points."""
    return award_event(
        engine, user_id,
        StoreOrderEvent(order_id=order_id, transition=OrderTransition.APPROVE),
        actor_id=actor_id,
    )


def cancel_order(
    engine: Engine, *, user_id: str, order_id: str, actor_id: str | None = None,
) -> LedgerResult:
    """Return the order's held points to the available balance."""
    return award_event(
        engine, user_id,
        StoreOrderEvent(order_id=order_id, transition=OrderTransition.CANCEL),
        actor_id=actor_id,
    )


def reject_order(
    engine: Engine, *, user_id: str, order_id: str, actor_id: str | None = None,
) -> LedgerResult:
    """Return the order's held points after an admin rejected it."""
    return award_event(
        engine, user_id,
        StoreOrderEvent(order_id=order_id, transition=OrderTransition.REJECT),
        actor_id=actor_id,
    )


ORDER_OPERATIONS: dict[OrderTransition, Callable[..., LedgerResult]] = {
    OrderTransition.APPROVE: approve_order,
    OrderTransition.CANCEL: cancel_order,
    OrderTransition.REJECT: reject_order,
}

__all__ = [
    "LedgerResult",
    "ORDER_OPERATIONS",
    "admin_adjust",
    "apply_delta",
    "approve_order",
    "award_attendance",
    "award_event",
    "award_trip",
    "cancel_order",
    "complete_activity",
    "idempotency_key",
    "lock_balance",
    "order_state",
    "reject_order",
    "revoke_activity",
    "suspend_order_points",
    "teacher_adjust",
]
