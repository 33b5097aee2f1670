"""
sundaypoints.config — YAML Configuration Loader
================================================

Reads ``config.yaml`` for **infrastructure-only** settings (portal name,
API port, page sizes, churches to onboard at startup).  All point values
and feature flags live per church in the ``church_points_config`` table,
editable from the admin settings form.

Usage::

    from sundaypoints.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.portal_name)       # "St. Mark Sunday School"
    print(cfg.recent_transactions_limit)   # 20
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Point values live in the DB ``church_points_config`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PointsConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    portal_name: str

    # API
    api_port: int

    # Reporting defaults
    recent_transactions_limit: int = 20
    leaderboard_limit: int = 50

    # Churches that get a default points config on startup
    onboard_church_ids: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PointsConfig:
    """Read *path* and return a :class:`PointsConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return PointsConfig(
        portal_name=raw["portal_name"],
        api_port=int(raw["api_port"]),
        recent_transactions_limit=int(raw.get("recent_transactions_limit", 20)),
        leaderboard_limit=int(raw.get("leaderboard_limit", 50)),
        onboard_church_ids=tuple(str(c) for c in raw.get("onboard_church_ids") or ()),
    )
