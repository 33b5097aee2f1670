"""
sundaypoints.api.routes.points — Points triggers and reads (JWT‑protected)
===========================================================================

Portal backends call these when attendance is marked, a trip is confirmed,
an activity is approved or an order changes state.  Every mutation answers
with the ledger row and the resulting balance; retried calls come back
with ``"duplicate": true`` instead of applying twice.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from sundaypoints.api.deps import get_config, get_current_admin, get_current_staff, get_engine
from sundaypoints.config import PointsConfig
from sundaypoints.database.models import AttendanceStatus, OrderTransition
from sundaypoints.services import ledger_service, summary_service
from sundaypoints.services.ledger_service import LedgerResult

router = APIRouter(prefix="/points", tags=["points"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AttendanceAward(BaseModel):
    user_id: str
    church_id: str
    status: AttendanceStatus
    attendance_id: str | None = None


class TripAward(BaseModel):
    user_id: str
    church_id: str
    trip_id: str
    trip_name: str | None = None


class ActivityCompletion(BaseModel):
    user_id: str
    activity_id: str
    points: int = Field(ge=0)
    church_id: str | None = None


class ActivityRevocation(BaseModel):
    user_id: str
    activity_id: str
    reason: str | None = None
    church_id: str | None = None


class TeacherAdjustment(BaseModel):
    user_id: str
    church_id: str
    points: int
    notes: str = ""


class AdminAdjustment(BaseModel):
    user_id: str
    points: int
    notes: str = ""
    church_id: str | None = None


class OrderSuspend(BaseModel):
    user_id: str
    points: int = Field(gt=0)
    church_id: str | None = None


class OrderUpdate(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _result_dict(engine, user_id: str, result: LedgerResult | None) -> dict:
    """Serialize a ledger outcome; ``None`` means the rules awarded nothing."""
    if result is None:
        return {
            "applied": False,
            "duplicate": False,
            "transaction": None,
            "balance": summary_service.get_balance(engine, user_id).to_dict(),
        }
    return {
        "applied": not result.duplicate,
        "duplicate": result.duplicate,
        "transaction": summary_service.transaction_to_dict(result.transaction),
        "balance": summary_service.BalanceView.from_row(result.balance).to_dict(),
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/balance")
def get_balance(
    user_id: str,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    return summary_service.get_balance(engine, user_id).to_dict()


@router.get("/users/{user_id}/transactions")
def list_transactions(
    user_id: str,
    limit: int = Query(20, ge=1, le=200),
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    return {
        "user_id": user_id,
        "transactions": summary_service.get_recent_transactions(engine, user_id, limit),
    }


@router.get("/users/{user_id}/summary")
def get_summary(
    user_id: str,
    limit: int = Query(20, ge=1, le=200),
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    return summary_service.get_summary(engine, user_id, limit).to_dict()


@router.get("/leaderboard")
def leaderboard(
    limit: int | None = Query(None, ge=1, le=500),
    user_ids: list[str] | None = Query(None),
    viewer_id: str | None = None,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
    cfg: PointsConfig = Depends(get_config),
):
    return summary_service.get_leaderboard(
        engine,
        user_ids=user_ids,
        limit=limit or cfg.leaderboard_limit,
        viewer_id=viewer_id,
    )


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------
@router.post("/attendance")
def award_attendance(
    body: AttendanceAward,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.award_attendance(
        engine,
        user_id=body.user_id,
        church_id=body.church_id,
        status=body.status,
        attendance_id=body.attendance_id,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/trips")
def award_trip(
    body: TripAward,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.award_trip(
        engine,
        user_id=body.user_id,
        church_id=body.church_id,
        trip_id=body.trip_id,
        trip_name=body.trip_name,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/activities/complete")
def complete_activity(
    body: ActivityCompletion,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.complete_activity(
        engine,
        user_id=body.user_id,
        activity_id=body.activity_id,
        points=body.points,
        church_id=body.church_id,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/activities/revoke")
def revoke_activity(
    body: ActivityRevocation,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.revoke_activity(
        engine,
        user_id=body.user_id,
        activity_id=body.activity_id,
        reason=body.reason,
        church_id=body.church_id,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/adjustments/teacher")
def teacher_adjustment(
    body: TeacherAdjustment,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.teacher_adjust(
        engine,
        user_id=body.user_id,
        church_id=body.church_id,
        points=body.points,
        notes=body.notes,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/adjustments/admin")
def admin_adjustment(
    body: AdminAdjustment,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    result = ledger_service.admin_adjust(
        engine,
        user_id=body.user_id,
        points=body.points,
        notes=body.notes,
        church_id=body.church_id,
        actor_id=admin["sub"],
    )
    return _result_dict(engine, body.user_id, result)


# ---------------------------------------------------------------------------
# Store orders
# ---------------------------------------------------------------------------
@router.post("/orders/{order_id}/suspend")
def suspend_order(
    order_id: str,
    body: OrderSuspend,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    result = ledger_service.suspend_order_points(
        engine,
        user_id=body.user_id,
        order_id=order_id,
        points=body.points,
        church_id=body.church_id,
        actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)


@router.post("/orders/{order_id}/{transition}")
def finish_order(
    order_id: str,
    transition: OrderTransition,
    body: OrderUpdate,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    operation = ledger_service.ORDER_OPERATIONS.get(transition)
    if operation is None:
        # "suspend" needs an amount and has its own route above
        raise HTTPException(422, "Use the suspend route to hold points")
    result = operation(
        engine, user_id=body.user_id, order_id=order_id, actor_id=staff["sub"],
    )
    return _result_dict(engine, body.user_id, result)
