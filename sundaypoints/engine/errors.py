"""
sundaypoints.engine.errors — Ledger Error Taxonomy
===================================================

Every failure the ledger reports is a :class:`LedgerError`.  The API layer
maps each subclass to an HTTP status through ``http_status``.  A retried
event is *not* an error: it comes back as a successful result flagged
``duplicate``.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all points-ledger failures."""

    http_status = 400


class ConfigNotFoundError(LedgerError):
    """The church has no points configuration."""

    http_status = 404

    def __init__(self, church_id: str):
        super().__init__(f"No points configuration for church {church_id!r}")
        self.church_id = church_id


class UnsupportedEventError(LedgerError):
    """The event or transaction type is not one the ledger knows."""

    http_status = 400


class LedgerValidationError(LedgerError):
    """Input rejected before any store access."""

    http_status = 422


class MissingNoteError(LedgerValidationError):
    """Teacher/admin adjustments must carry a justification note."""

    def __init__(self, transaction_type: str):
        super().__init__(f"A note is required for {transaction_type}")
        self.transaction_type = transaction_type


class FeatureDisabledError(LedgerError):
    """The church switched off the feature this event relies on."""

    http_status = 403


class InsufficientBalanceError(LedgerError):
    """Applying the delta would drive ``available_points`` below zero."""

    http_status = 409

    def __init__(self, user_id: str, available: int, requested: int):
        super().__init__(
            f"Insufficient points for user {user_id!r}. "
            f"Available: {available}, Required: {requested}"
        )
        self.user_id = user_id
        self.available = available
        self.requested = requested


class InvalidTransitionError(LedgerError):
    """The referenced entity is not in a state that allows this event."""

    http_status = 409


class InvalidOrderTransitionError(InvalidTransitionError):
    """Store-order points moved out of lifecycle order."""

    def __init__(self, order_id: str, current: str | None, requested: str):
        super().__init__(
            f"Order {order_id!r} cannot go from {current or 'none'} to {requested}"
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested
