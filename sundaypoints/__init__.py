"""
Sunday Points — Points Ledger for a Multi-Tenant Sunday-School Portal
======================================================================
Keeps the points economy of every student: earning through attendance,
trips, activities and staff adjustments; spending through the church store;
and read-only summaries for dashboards and leaderboards.  Each church
(tenant) configures its own point values and feature flags.

Package layout::

    sundaypoints/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Roles, onboarding defaults, summary buckets
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (config, balance, transactions, audit)
    │   └── seed.py        # Default church config seeder
    ├── engine/
    │   ├── events.py      # Typed domain events (one class per trigger)
    │   ├── errors.py      # LedgerError hierarchy
    │   └── rules.py       # Pure rule evaluation against ChurchPointsConfig
    ├── services/
    │   ├── ledger_service.py          # Atomic award / adjust / order transitions
    │   ├── config_service.py          # Audited church config CRUD
    │   ├── summary_service.py         # Balances, history, leaderboards
    │   └── reconciliation_service.py  # Log replay vs cached balances
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT staff auth + DB dependencies
        └── routes/        # Points and admin REST endpoints
"""

__version__ = "0.1.0"
