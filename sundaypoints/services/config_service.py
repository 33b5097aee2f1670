"""
sundaypoints.services.config_service — Church Points Configuration
===================================================================

Read and audited write access to ``church_points_config``.
Every write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit

Configs are never deleted; admins switch features off through the flags.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from sundaypoints.constants import DEFAULT_CHURCH_POINTS
from sundaypoints.database.models import AdminActionType, AdminLog, ChurchPointsConfig
from sundaypoints.engine.errors import ConfigNotFoundError, LedgerValidationError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS: frozenset[str] = frozenset(DEFAULT_CHURCH_POINTS)
_POINT_FIELDS: frozenset[str] = frozenset(
    k for k, v in DEFAULT_CHURCH_POINTS.items() if not isinstance(v, bool)
)


# ---------------------------------------------------------------------------
# Audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _validate(values: dict[str, Any]) -> None:
    unknown = set(values) - EDITABLE_FIELDS
    if unknown:
        raise LedgerValidationError(f"Unknown config fields: {sorted(unknown)}")
    for key in _POINT_FIELDS & set(values):
        value = values[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise LedgerValidationError(f"{key} must be a non-negative integer")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _select(church_id: str):
    return select(ChurchPointsConfig).where(ChurchPointsConfig.church_id == church_id)


def get_config(engine: Engine, church_id: str) -> ChurchPointsConfig | None:
    """Fetch a church's config (detached), or ``None``."""
    with Session(engine) as session:
        config = session.scalar(_select(church_id))
        if config is not None:
            session.expunge(config)
        return config


def require_config(engine: Engine, church_id: str) -> ChurchPointsConfig:
    """Like :func:`get_config` but raises :class:`ConfigNotFoundError`."""
    config = get_config(engine, church_id)
    if config is None:
        raise ConfigNotFoundError(church_id)
    return config


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_config(
    engine: Engine,
    church_id: str,
    *,
    actor_id: str,
    reason: str | None = None,
    **values: Any,
) -> ChurchPointsConfig:
    """Create or update a church's points config.  Audit-logged.

    Fields not given keep their current value (or the onboarding default
    on create).  Point values must be non-negative integers.
    """
    _validate(values)

    with Session(engine, expire_on_commit=False) as session:
        config = session.scalar(_select(church_id))
        if config is None:
            before = None
            config = ChurchPointsConfig(church_id=church_id, **{**DEFAULT_CHURCH_POINTS, **values})
            session.add(config)
            action = AdminActionType.CREATE
        else:
            before = row_to_dict(config)
            for key, value in values.items():
                setattr(config, key, value)
            action = AdminActionType.UPDATE
        session.flush()

        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action,
            target_table=ChurchPointsConfig.__tablename__,
            target_id=church_id,
            before=before,
            after=row_to_dict(config),
            reason=reason,
        )
        session.commit()
        session.refresh(config)
        session.expunge(config)

    logger.info("Church %s points config %s by %s", church_id, action.value.lower(), actor_id)
    return config


def ensure_default_config(
    engine: Engine, church_id: str, *, actor_id: str = "system"
) -> ChurchPointsConfig:
    """Onboard *church_id* with default values if it has no config yet."""
    existing = get_config(engine, church_id)
    if existing is not None:
        return existing
    return upsert_config(engine, church_id, actor_id=actor_id, reason="church onboarding")
