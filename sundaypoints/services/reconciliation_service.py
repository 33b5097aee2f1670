"""
sundaypoints.services.reconciliation_service — Balance Reconciliation
======================================================================

Periodic job that replays ``points_transactions`` and checks each cached
``student_points_balance`` row against it.

How it works:
    1. Load every ledger row for the user in ``id`` order.
    2. Replay it: the running sum of ``points`` must match each row's
       ``balance_after``, and the final sum must match ``available_points``.
    3. Rebuild ``suspended_points`` and ``deficit_points`` from the per-row
       changes, ``used_points`` from approved holds, and the lifetime totals.
    4. Compare against the stored row.  With ``fix=True`` the stored row is
       overwritten with the replayed values and an ``admin_log`` entry
       records the before/after snapshot.

The ledger is the source of truth; balances are only ever corrected toward
it, never the other way round.  ``balance_after`` mismatches cannot be
fixed (the log is append-only) and are only reported.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from sundaypoints.constants import ORDER_TYPES
from sundaypoints.database.models import (
    AdminActionType,
    PointsTransaction,
    StudentPointsBalance,
    TransactionType,
)
from sundaypoints.services.config_service import log_admin_action, row_to_dict

logger = logging.getLogger(__name__)

BALANCE_FIELDS: tuple[str, ...] = (
    "available_points",
    "suspended_points",
    "used_points",
    "total_earned",
    "total_deducted",
    "deficit_points",
)

_ORDER_VALUES = frozenset(t.value for t in ORDER_TYPES)


@dataclass
class UserReconciliation:
    user_id: str
    expected: dict[str, int]
    stored: dict[str, int]
    chain_breaks: list[int] = field(default_factory=list)
    corrected: bool = False

    @property
    def drift(self) -> dict[str, tuple[int, int]]:
        """``{field: (stored, expected)}`` for every mismatched field."""
        return {
            k: (self.stored.get(k, 0), v)
            for k, v in self.expected.items()
            if self.stored.get(k, 0) != v
        }

    @property
    def identity_holds(self) -> bool:
        s = self.stored
        return (
            s.get("total_earned", 0) - s.get("total_deducted", 0)
            == s.get("available_points", 0) + s.get("suspended_points", 0)
            + s.get("used_points", 0) - s.get("deficit_points", 0)
        )

    @property
    def ok(self) -> bool:
        return not self.drift and not self.chain_breaks and self.identity_holds

    def to_dict(self) -> dict:
        data = asdict(self)
        data["drift"] = {k: list(v) for k, v in self.drift.items()}
        data["identity_holds"] = self.identity_holds
        data["ok"] = self.ok
        return data


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------
def replay(rows: list[PointsTransaction]) -> tuple[dict[str, int], list[int]]:
    """Rebuild balance fields from *rows* (ascending ``id``).

    Returns ``(expected_fields, ids_with_wrong_balance_after)``.
    """
    expected = dict.fromkeys(BALANCE_FIELDS, 0)
    chain_breaks: list[int] = []

    running = 0
    for row in rows:
        running += row.points
        if row.balance_after != running:
            chain_breaks.append(row.id)
        expected["deficit_points"] += row.deficit_points
        expected["suspended_points"] += row.suspended_delta

        tx_type = row.transaction_type
        if tx_type in _ORDER_VALUES:
            if tx_type == TransactionType.STORE_ORDER_APPROVED.value:
                expected["used_points"] += -row.suspended_delta
            continue

        if tx_type == TransactionType.ACTIVITY_REVOCATION.value:
            # Taken from available, from suspended, and left as deficit
            expected["total_deducted"] += (
                -row.points - row.suspended_delta + row.deficit_points
            )
        elif row.points > 0:
            expected["total_earned"] += row.points
        else:
            expected["total_deducted"] += -row.points

    expected["available_points"] = running
    return expected, chain_breaks


def verify_user(session: Session, user_id: str) -> UserReconciliation:
    """Compare one user's stored balance with a replay of their ledger."""
    rows = session.scalars(
        select(PointsTransaction)
        .where(PointsTransaction.user_id == user_id)
        .order_by(PointsTransaction.id)
    ).all()
    expected, chain_breaks = replay(list(rows))

    balance = session.get(StudentPointsBalance, user_id)
    stored = (
        {k: getattr(balance, k) for k in BALANCE_FIELDS}
        if balance is not None
        else dict.fromkeys(BALANCE_FIELDS, 0)
    )
    return UserReconciliation(
        user_id=user_id, expected=expected, stored=stored, chain_breaks=chain_breaks,
    )


# ---------------------------------------------------------------------------
# Job entry point
# ---------------------------------------------------------------------------
def reconcile_balances(
    engine: Engine,
    *,
    fix: bool = False,
    user_ids: list[str] | None = None,
    actor_id: str = "system",
) -> dict:
    """Check every balance (or just *user_ids*) against the ledger.

    Returns ``{"checked": N, "mismatched": M, "corrected": K, "reports": [...]}``
    where ``reports`` lists only the users that failed a check.
    """
    reports: list[UserReconciliation] = []
    checked = 0

    with Session(engine) as session:
        if user_ids is None:
            ledger_users = set(session.scalars(select(PointsTransaction.user_id).distinct()))
            balance_users = set(session.scalars(select(StudentPointsBalance.user_id)))
            targets = sorted(ledger_users | balance_users)
        else:
            targets = list(user_ids)

        for user_id in targets:
            checked += 1
            report = verify_user(session, user_id)
            if report.ok:
                continue
            reports.append(report)
            if fix and report.drift:
                _apply_fix(session, report, actor_id)
        session.commit()

    corrected = sum(1 for r in reports if r.corrected)
    if reports:
        logger.warning(
            "Balance reconciliation: %d/%d users out of sync (%d corrected): %s",
            len(reports), checked, corrected,
            [(r.user_id, r.drift, r.chain_breaks) for r in reports[:20]],
        )
    else:
        logger.info("Balance reconciliation: all %d balances in sync", checked)

    return {
        "checked": checked,
        "mismatched": len(reports),
        "corrected": corrected,
        "reports": [r.to_dict() for r in reports],
    }


def _apply_fix(session: Session, report: UserReconciliation, actor_id: str) -> None:
    balance = session.scalar(
        select(StudentPointsBalance)
        .where(StudentPointsBalance.user_id == report.user_id)
        .with_for_update()
    )
    before = row_to_dict(balance)
    if balance is None:
        balance = StudentPointsBalance(user_id=report.user_id)
        session.add(balance)
    for key, value in report.expected.items():
        setattr(balance, key, value)
    session.flush()

    log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.RECONCILE,
        target_table=StudentPointsBalance.__tablename__,
        target_id=report.user_id,
        before=before,
        after=row_to_dict(balance),
        reason=f"Ledger replay drift: {sorted(report.drift)}",
    )
    report.corrected = True
    logger.info("Corrected balance for user %s: %s", report.user_id, report.drift)
