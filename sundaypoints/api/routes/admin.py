"""
sundaypoints.api.routes.admin — Church config & maintenance endpoints (JWT‑protected)
======================================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from sundaypoints.api.deps import get_current_admin, get_current_staff, get_engine, get_session
from sundaypoints.database.models import AdminLog
from sundaypoints.services import config_service, reconciliation_service
from sundaypoints.services.config_service import row_to_dict

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PointsConfigUpdate(BaseModel):
    attendance_points_present: int | None = Field(None, ge=0)
    attendance_points_late: int | None = Field(None, ge=0)
    attendance_points_excused: int | None = Field(None, ge=0)
    attendance_points_absent: int | None = Field(None, ge=0)
    trip_participation_points: int | None = Field(None, ge=0)
    max_teacher_adjustment: int | None = Field(None, ge=0)
    is_attendance_points_enabled: bool | None = None
    is_trip_points_enabled: bool | None = None
    is_teacher_adjustment_enabled: bool | None = None
    reason: str | None = None


class ReconcileRequest(BaseModel):
    fix: bool = False
    user_ids: list[str] | None = None


# ---------------------------------------------------------------------------
# Church points config
# ---------------------------------------------------------------------------
@router.get("/churches/{church_id}/points-config")
def get_points_config(
    church_id: str,
    staff: dict = Depends(get_current_staff),
    engine=Depends(get_engine),
):
    config = config_service.require_config(engine, church_id)
    return row_to_dict(config)


@router.put("/churches/{church_id}/points-config")
def put_points_config(
    church_id: str,
    body: PointsConfigUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    values = body.model_dump(exclude_none=True, exclude={"reason"})
    config = config_service.upsert_config(
        engine, church_id, actor_id=admin["sub"], reason=body.reason, **values,
    )
    return row_to_dict(config)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@router.post("/reconcile")
def reconcile(
    body: ReconcileRequest,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return reconciliation_service.reconcile_balances(
        engine, fix=body.fix, user_ids=body.user_ids, actor_id=admin["sub"],
    )


@router.get("/audit")
def audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    rows = session.scalars(
        select(AdminLog)
        .order_by(AdminLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    if page > 1 and not rows:
        raise HTTPException(404, "Page out of range")
    return {"entries": [row_to_dict(r) for r in rows], "page": page}
