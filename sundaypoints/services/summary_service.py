"""
sundaypoints.services.summary_service — Read-Only Points Projections
=====================================================================

Dashboards, the student profile page and leaderboards read through here.
Nothing in this module writes.  A user without a balance row (nobody has
awarded them anything yet) reads as all zeros rather than an error.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from sundaypoints.constants import BUCKET_FOR_TYPE, SUMMARY_BUCKETS
from sundaypoints.database.models import PointsTransaction, StudentPointsBalance, TransactionType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# View objects
# ---------------------------------------------------------------------------
@dataclass
class BalanceView:
    user_id: str
    available_points: int = 0
    suspended_points: int = 0
    used_points: int = 0
    total_earned: int = 0
    total_deducted: int = 0
    deficit_points: int = 0

    @classmethod
    def from_row(cls, row: StudentPointsBalance) -> BalanceView:
        return cls(
            user_id=row.user_id,
            available_points=row.available_points,
            suspended_points=row.suspended_points,
            used_points=row.used_points,
            total_earned=row.total_earned,
            total_deducted=row.total_deducted,
            deficit_points=row.deficit_points,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PointsSummary:
    balance: BalanceView
    recent_transactions: list[dict] = field(default_factory=list)
    points_by_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "balance": self.balance.to_dict(),
            "recent_transactions": self.recent_transactions,
            "points_by_type": self.points_by_type,
        }


@dataclass
class LeaderboardEntry:
    user_id: str
    rank: int
    points: int
    available_points: int = 0


def transaction_to_dict(row: PointsTransaction) -> dict:
    """Serialize a ledger row for API responses."""
    return {
        "id": row.id,
        "user_id": row.user_id,
        "transaction_type": row.transaction_type,
        "points": row.points,
        "balance_after": row.balance_after,
        "deficit_points": row.deficit_points,
        "suspended_delta": row.suspended_delta,
        "notes": row.notes,
        "activity_id": row.activity_id,
        "attendance_id": row.attendance_id,
        "trip_id": row.trip_id,
        "order_id": row.order_id,
        "church_id": row.church_id,
        "created_by": row.created_by,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


# ---------------------------------------------------------------------------
# Per-user reads
# ---------------------------------------------------------------------------
def get_balance(engine: Engine, user_id: str) -> BalanceView:
    """Current balance; zeros when the user has no ledger activity yet."""
    with Session(engine) as session:
        row = session.get(StudentPointsBalance, user_id)
        if row is None:
            return BalanceView(user_id=user_id)
        return BalanceView.from_row(row)


def get_recent_transactions(
    engine: Engine, user_id: str, limit: int = 20
) -> list[dict]:
    """Most recent ledger rows, newest first."""
    limit = max(0, limit)
    with Session(engine) as session:
        rows = session.scalars(
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.id.desc())
            .limit(limit)
        ).all()
        return [transaction_to_dict(r) for r in rows]


def get_points_by_type(
    engine: Engine, user_id: str, since: datetime | None = None
) -> dict[str, int]:
    """Sum the log per summary bucket.

    activity / attendance / trips count points earned; adjustments keep
    their sign; store is what approved orders actually spent.  *since*
    bounds the window by transaction time.
    """
    totals = dict.fromkeys(SUMMARY_BUCKETS, 0)
    with Session(engine) as session:
        stmt = select(
            PointsTransaction.transaction_type,
            PointsTransaction.points,
            PointsTransaction.suspended_delta,
        ).where(PointsTransaction.user_id == user_id)
        if since is not None:
            stmt = stmt.where(PointsTransaction.created_at >= since)

        for tx_type, points, suspended_delta in session.execute(stmt).all():
            try:
                bucket = BUCKET_FOR_TYPE.get(TransactionType(tx_type))
            except ValueError:
                logger.warning("Unknown transaction type %r for user %s", tx_type, user_id)
                continue
            if bucket is None:
                continue
            if bucket == "adjustments":
                totals[bucket] += points
            elif bucket == "store":
                # Approval moves the hold from suspended to used
                totals[bucket] += -suspended_delta
            else:
                totals[bucket] += max(points, 0)
    return totals


def get_summary(engine: Engine, user_id: str, limit: int = 20) -> PointsSummary:
    """Balance + recent history + per-type totals for one student."""
    return PointsSummary(
        balance=get_balance(engine, user_id),
        recent_transactions=get_recent_transactions(engine, user_id, limit),
        points_by_type=get_points_by_type(engine, user_id),
    )


# ---------------------------------------------------------------------------
# Group reads
# ---------------------------------------------------------------------------
def get_leaderboard(
    engine: Engine,
    *,
    user_ids: Sequence[str] | None = None,
    limit: int = 50,
    viewer_id: str | None = None,
) -> dict:
    """Rank users by lifetime ``total_earned``.

    *user_ids* scopes the board (a class, church or diocese roster resolved
    by the caller); ``None`` means everyone.  When *viewer_id* is outside
    the top *limit*, their own rank is computed separately.
    """
    if user_ids is not None and not user_ids:
        return {"entries": [], "viewer_rank": None, "total_participants": 0}

    with Session(engine) as session:
        scope = []
        if user_ids is not None:
            scope.append(StudentPointsBalance.user_id.in_(list(user_ids)))

        rows = session.scalars(
            select(StudentPointsBalance)
            .where(*scope)
            .order_by(
                StudentPointsBalance.total_earned.desc(),
                StudentPointsBalance.user_id,
            )
            .limit(limit)
        ).all()
        entries = [
            LeaderboardEntry(
                user_id=r.user_id,
                rank=i + 1,
                points=r.total_earned,
                available_points=r.available_points,
            )
            for i, r in enumerate(rows)
        ]
        total = session.scalar(
            select(func.count()).select_from(StudentPointsBalance).where(*scope)
        )

        viewer = None
        if viewer_id is not None:
            viewer = next((e for e in entries if e.user_id == viewer_id), None)
            if viewer is None:
                mine = session.get(StudentPointsBalance, viewer_id)
                if mine is not None and (user_ids is None or viewer_id in user_ids):
                    ahead = session.scalar(
                        select(func.count()).select_from(StudentPointsBalance).where(
                            *scope,
                            StudentPointsBalance.total_earned > mine.total_earned,
                        )
                    )
                    viewer = LeaderboardEntry(
                        user_id=viewer_id,
                        rank=(ahead or 0) + 1,
                        points=mine.total_earned,
                        available_points=mine.available_points,
                    )

    return {
        "entries": [asdict(e) for e in entries],
        "viewer_rank": asdict(viewer) if viewer else None,
        "total_participants": total or 0,
    }


def get_class_overview(engine: Engine, user_ids: Sequence[str]) -> list[dict]:
    """Available and earned points for each student of a class roster."""
    if not user_ids:
        return []
    with Session(engine) as session:
        rows = session.scalars(
            select(StudentPointsBalance).where(
                StudentPointsBalance.user_id.in_(list(user_ids))
            )
        ).all()
        by_user = {r.user_id: r for r in rows}

    overview = []
    for uid in user_ids:
        row = by_user.get(uid)
        overview.append({
            "user_id": uid,
            "available_points": row.available_points if row else 0,
            "total_earned": row.total_earned if row else 0,
        })
    return overview
