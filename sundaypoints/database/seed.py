"""
sundaypoints.database.seed — Default Church Config Seeder
==========================================================

Gives newly onboarded churches a points configuration so attendance and
trip points work before an admin ever opens the settings form.

Idempotent — only inserts rows for churches that don't have one.  Configs
edited by admins are never overwritten.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from sundaypoints.constants import DEFAULT_CHURCH_POINTS
from sundaypoints.database.models import ChurchPointsConfig

logger = logging.getLogger(__name__)


def seed_church_configs(engine: Engine, church_ids: Iterable[str]) -> int:
    """Insert a default :class:`ChurchPointsConfig` for each missing church.

    Returns the number of rows inserted.
    """
    session = Session(engine)
    inserted = 0
    try:
        for church_id in church_ids:
            existing = session.scalar(
                select(ChurchPointsConfig).where(ChurchPointsConfig.church_id == church_id)
            )
            if existing is None:
                session.add(ChurchPointsConfig(church_id=church_id, **DEFAULT_CHURCH_POINTS))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default church points configs.", inserted)
    return inserted
