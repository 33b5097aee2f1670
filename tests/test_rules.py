"""
tests/test_rules.py — Unit Tests for Points Rule Evaluation
============================================================

Tests the pure evaluation stage (no I/O, no database).
"""

from __future__ import annotations

import pytest

from sundaypoints.constants import DEFAULT_CHURCH_POINTS
from sundaypoints.database.models import (
    AttendanceStatus,
    ChurchPointsConfig,
    OrderTransition,
    TransactionType,
)
from sundaypoints.engine.errors import (
    ConfigNotFoundError,
    FeatureDisabledError,
    LedgerValidationError,
    MissingNoteError,
    UnsupportedEventError,
)
from sundaypoints.engine.events import (
    ActivityCompletionEvent,
    ActivityRevocationEvent,
    AdminAdjustmentEvent,
    AttendanceEvent,
    StoreOrderEvent,
    TeacherAdjustmentEvent,
    TripParticipationEvent,
)
from sundaypoints.engine.rules import (
    clamp_adjustment,
    evaluate,
    needs_config,
    require_note,
    validate,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
def _config(**overrides) -> ChurchPointsConfig:
    return ChurchPointsConfig(church_id="st-mark", **{**DEFAULT_CHURCH_POINTS, **overrides})


@pytest.fixture
def config() -> ChurchPointsConfig:
    return _config()


# ===========================================================================
# Attendance
# ===========================================================================
class TestAttendance:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [("present", 10), ("late", 5)],
    )
    def test_configured_values(self, config, status, expected):
        outcome = evaluate(AttendanceEvent(status=status), config)
        assert outcome.applies
        assert outcome.points == expected
        assert outcome.transaction_type is TransactionType.ATTENDANCE

    def test_zero_value_is_noop(self, config):
        """Excused defaults to 0 points, which awards nothing."""
        outcome = evaluate(AttendanceEvent(status=AttendanceStatus.EXCUSED), config)
        assert not outcome.applies

    def test_absent_uses_config(self):
        outcome = evaluate(
            AttendanceEvent(status="absent"), _config(attendance_points_absent=1)
        )
        assert outcome.applies and outcome.points == 1

    def test_disabled_is_noop_not_error(self):
        outcome = evaluate(
            AttendanceEvent(status="present"), _config(is_attendance_points_enabled=False)
        )
        assert not outcome.applies
        assert outcome.points == 0

    def test_unknown_status_unsupported(self, config):
        with pytest.raises(UnsupportedEventError):
            evaluate(AttendanceEvent(status="sleeping"), config)

    def test_attendance_id_becomes_ref(self, config):
        outcome = evaluate(AttendanceEvent(status="present", attendance_id="att-9"), config)
        assert outcome.refs == {"attendance_id": "att-9"}

    def test_missing_config(self):
        with pytest.raises(ConfigNotFoundError):
            evaluate(AttendanceEvent(status="present"), None, church_id="nowhere")


# ===========================================================================
# Trips
# ===========================================================================
class TestTrip:
    def test_awards_trip_points(self, config):
        outcome = evaluate(TripParticipationEvent(trip_id="t1", trip_name="Zoo"), config)
        assert outcome.points == 20
        assert "Zoo" in outcome.notes

    def test_disabled(self):
        outcome = evaluate(
            TripParticipationEvent(trip_id="t1"), _config(is_trip_points_enabled=False)
        )
        assert not outcome.applies


# ===========================================================================
# Adjustments
# ===========================================================================
class TestTeacherAdjustment:
    def test_clamped_to_limit(self, config):
        outcome = evaluate(TeacherAdjustmentEvent(points=80, notes="great week"), config)
        assert outcome.points == 50
        assert outcome.clamped

    def test_negative_clamped(self, config):
        outcome = evaluate(TeacherAdjustmentEvent(points=-80, notes="rude"), config)
        assert outcome.points == -50

    def test_within_limit_untouched(self, config):
        outcome = evaluate(TeacherAdjustmentEvent(points=-10, notes="late homework"), config)
        assert outcome.points == -10
        assert not outcome.clamped

    def test_missing_note(self, config):
        with pytest.raises(MissingNoteError):
            evaluate(TeacherAdjustmentEvent(points=5, notes="   "), config)

    def test_disabled_raises(self):
        with pytest.raises(FeatureDisabledError):
            evaluate(
                TeacherAdjustmentEvent(points=5, notes="ok"),
                _config(is_teacher_adjustment_enabled=False),
            )


class TestAdminAdjustment:
    def test_not_clamped_and_no_config_needed(self):
        outcome = evaluate(AdminAdjustmentEvent(points=500, notes="camp prize"), None)
        assert outcome.points == 500

    def test_note_required(self):
        with pytest.raises(MissingNoteError):
            evaluate(AdminAdjustmentEvent(points=1, notes=""), None)


# ===========================================================================
# Activities & orders
# ===========================================================================
class TestActivityAndOrders:
    def test_activity_completion(self):
        outcome = evaluate(ActivityCompletionEvent(activity_id="a1", points=15), None)
        assert outcome.points == 15
        assert outcome.refs == {"activity_id": "a1"}

    def test_zero_point_activity_noop(self):
        assert not evaluate(ActivityCompletionEvent(activity_id="a1", points=0), None).applies

    def test_negative_activity_rejected(self):
        with pytest.raises(LedgerValidationError):
            validate(ActivityCompletionEvent(activity_id="a1", points=-1))

    @pytest.mark.parametrize("points", [0, 15])
    def test_valid_activity_passes_validation(self, points):
        validate(ActivityCompletionEvent(activity_id="a1", points=points))

    def test_revocation_is_derived(self):
        outcome = evaluate(ActivityRevocationEvent(activity_id="a1"), None)
        assert outcome.derived
        assert outcome.transaction_type is TransactionType.ACTIVITY_REVOCATION

    def test_suspend_holds_negative_delta(self):
        outcome = evaluate(
            StoreOrderEvent(order_id="o1", transition=OrderTransition.SUSPEND, points=30), None
        )
        assert outcome.points == -30
        assert outcome.transaction_type is TransactionType.STORE_ORDER_PENDING

    def test_suspend_requires_positive_amount(self):
        with pytest.raises(LedgerValidationError):
            validate(StoreOrderEvent(order_id="o1", transition="suspend", points=0))

    @pytest.mark.parametrize(
        ("transition", "tx_type"),
        [
            ("approve", TransactionType.STORE_ORDER_APPROVED),
            ("cancel", TransactionType.STORE_ORDER_CANCELLED),
            ("reject", TransactionType.STORE_ORDER_REJECTED),
        ],
    )
    def test_terminal_transitions_derived(self, transition, tx_type):
        outcome = evaluate(StoreOrderEvent(order_id="o1", transition=transition), None)
        assert outcome.derived
        assert outcome.transaction_type is tx_type

    def test_unknown_event_type(self):
        with pytest.raises(UnsupportedEventError):
            validate(object())


class TestHelpers:
    def test_clamp(self):
        assert clamp_adjustment(7, 5) == 5
        assert clamp_adjustment(-7, 5) == -5
        assert clamp_adjustment(3, 5) == 3

    def test_require_note_strips(self):
        assert require_note("  hi  ", TransactionType.ADMIN_ADJUSTMENT) == "hi"

    def test_needs_config(self):
        assert needs_config(AttendanceEvent(status="present"))
        assert needs_config(TeacherAdjustmentEvent(points=1, notes="x"))
        assert not needs_config(AdminAdjustmentEvent(points=1, notes="x"))
        assert not needs_config(ActivityCompletionEvent(activity_id="a1", points=1))
