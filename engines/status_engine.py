"""Pass/fail rule applied to a daily check-in."""

from __future__ import annotations

from enum import Enum

from schemas import DailyLogStatus

QUIZ_SCORE_THRESHOLD = 7
FOCUS_MINUTES_THRESHOLD = 60


class CheckInOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def evaluate(quiz_score: float, focus_minutes: float) -> CheckInOutcome:
    """A check-in passes only when both measurements are strictly above threshold."""
    if quiz_score > QUIZ_SCORE_THRESHOLD and focus_minutes > FOCUS_MINUTES_THRESHOLD:
        return CheckInOutcome.SUCCESS
    return CheckInOutcome.FAILURE


def daily_log_status(outcome: CheckInOutcome) -> DailyLogStatus:
    if outcome is CheckInOutcome.SUCCESS:
        return DailyLogStatus.SUCCESS
    return DailyLogStatus.FAILED
