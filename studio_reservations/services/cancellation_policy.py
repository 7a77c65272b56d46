"""Classification of member cancellations against the studio window.

The evaluator is pure: callers pass the class start, the cancellation
instant and the configured window, and get a :class:`CancellationDecision`
back. Reading the window from studio settings lives in
:func:`get_cancellation_policy`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import get_settings
from ..core.clock import ensure_aware
from ..core.constants import (
    SETTING_CANCELLATION_WINDOW_HOURS,
    SETTING_LATE_CANCEL_PENALTY,
    SETTING_NO_SHOW_PENALTY,
)
from ..core.errors import ErrorCode, StudioError
from ..db import models
from ..db.models.booking import CancellationType


class CancellationPolicyError(StudioError):
    pass


@dataclass(frozen=True, slots=True)
class CancellationPolicy:
    window_hours: int
    late_cancel_penalty: str
    no_show_penalty: str


@dataclass(frozen=True, slots=True)
class CancellationDecision:
    classification: CancellationType
    refund: bool
    hours_until_class: float
    window_hours: int
    penalty: str | None = None


def classify_cancellation(
    class_starts_at: datetime,
    cancelled_at: datetime,
    window_hours: int = 24,
    *,
    late_cancel_penalty: str | None = None,
) -> CancellationDecision:
    """Classify a member cancellation.

    Raises:
        CancellationPolicyError: if ``cancelled_at`` is at or after the class
            start. Those bookings are settled as attended or no-show instead.
    """
    if window_hours < 0:
        raise ValueError("window_hours must not be negative")
    starts_at = ensure_aware(class_starts_at)
    cancelled_at = ensure_aware(cancelled_at)
    if cancelled_at >= starts_at:
        raise CancellationPolicyError(
            ErrorCode.invalid_state_transition,
            "Class has already started; settle the booking instead",
        )
    hours_until_class = (starts_at - cancelled_at) / timedelta(hours=1)
    if cancelled_at < starts_at - timedelta(hours=window_hours):
        return CancellationDecision(
            classification=CancellationType.on_time,
            refund=True,
            hours_until_class=hours_until_class,
            window_hours=window_hours,
        )
    return CancellationDecision(
        classification=CancellationType.late,
        refund=False,
        hours_until_class=hours_until_class,
        window_hours=window_hours,
        penalty=late_cancel_penalty,
    )


def _setting_value(db: Session, key: str) -> str | None:
    setting = db.get(models.Setting, key)
    if setting is None or setting.value is None or not setting.value.strip():
        return None
    return setting.value.strip()


def get_cancellation_policy(db: Session) -> CancellationPolicy:
    settings = get_settings()
    window_value = _setting_value(db, SETTING_CANCELLATION_WINDOW_HOURS)
    window_hours = int(window_value) if window_value is not None else settings.cancellation_window_hours
    return CancellationPolicy(
        window_hours=window_hours,
        late_cancel_penalty=_setting_value(db, SETTING_LATE_CANCEL_PENALTY)
        or settings.late_cancel_penalty,
        no_show_penalty=_setting_value(db, SETTING_NO_SHOW_PENALTY) or settings.no_show_penalty,
    )


def update_cancellation_policy(
    db: Session,
    *,
    window_hours: int | None = None,
    late_cancel_penalty: str | None = None,
    no_show_penalty: str | None = None,
) -> CancellationPolicy:
    updates = {
        SETTING_CANCELLATION_WINDOW_HOURS: None if window_hours is None else str(window_hours),
        SETTING_LATE_CANCEL_PENALTY: late_cancel_penalty,
        SETTING_NO_SHOW_PENALTY: no_show_penalty,
    }
    for key, value in updates.items():
        if value is None:
            continue
        setting = db.get(models.Setting, key)
        if not setting:
            setting = models.Setting(key=key)
            db.add(setting)
        setting.value = value
    db.commit()
    return get_cancellation_policy(db)


__all__ = [
    "CancellationPolicyError",
    "CancellationPolicy",
    "CancellationDecision",
    "classify_cancellation",
    "get_cancellation_policy",
    "update_cancellation_policy",
]
