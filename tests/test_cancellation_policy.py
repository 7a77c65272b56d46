from datetime import datetime, timedelta, timezone

import pytest

from studio_reservations.core.errors import ErrorCode
from studio_reservations.db.models.booking import CancellationType
from studio_reservations.services import cancellation_policy
from studio_reservations.services.cancellation_policy import (
    CancellationPolicyError,
    classify_cancellation,
)

CLASS_START = datetime(2026, 5, 4, 18, 0, tzinfo=timezone.utc)


def test_cancel_more_than_window_ahead_is_on_time():
    decision = classify_cancellation(CLASS_START, CLASS_START - timedelta(hours=25), 24)
    assert decision.classification == CancellationType.on_time
    assert decision.refund is True
    assert decision.hours_until_class == pytest.approx(25)


def test_cancel_inside_window_is_late():
    decision = classify_cancellation(
        CLASS_START, CLASS_START - timedelta(hours=23), 24, late_cancel_penalty="lose_credit"
    )
    assert decision.classification == CancellationType.late
    assert decision.refund is False
    assert decision.penalty == "lose_credit"


def test_exactly_at_window_boundary_is_late():
    decision = classify_cancellation(CLASS_START, CLASS_START - timedelta(hours=24), 24)
    assert decision.classification == CancellationType.late


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=5)])
def test_cancel_after_start_is_rejected(offset):
    with pytest.raises(CancellationPolicyError) as excinfo:
        classify_cancellation(CLASS_START, CLASS_START + offset, 24)
    assert excinfo.value.code == ErrorCode.invalid_state_transition


def test_naive_datetimes_are_treated_as_utc():
    naive_start = CLASS_START.replace(tzinfo=None)
    decision = classify_cancellation(naive_start, CLASS_START - timedelta(hours=30))
    assert decision.classification == CancellationType.on_time


def test_zero_window_only_rejects_started_classes():
    decision = classify_cancellation(CLASS_START, CLASS_START - timedelta(minutes=1), 0)
    assert decision.classification == CancellationType.on_time


def test_policy_defaults_come_from_settings(db_session):
    policy = cancellation_policy.get_cancellation_policy(db_session)
    assert policy.window_hours == 24
    assert policy.late_cancel_penalty == "lose_credit"
    assert policy.no_show_penalty == "lose_credit"


def test_policy_update_is_persisted(db_session):
    updated = cancellation_policy.update_cancellation_policy(
        db_session, window_hours=12, no_show_penalty="charge_fee"
    )
    assert updated.window_hours == 12
    assert updated.no_show_penalty == "charge_fee"
    assert updated.late_cancel_penalty == "lose_credit"
    assert cancellation_policy.get_cancellation_policy(db_session).window_hours == 12
