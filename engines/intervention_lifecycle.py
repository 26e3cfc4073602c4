"""Student status state machine and the lifecycle of mentor interventions.

A student is ``On Track`` until a check-in fails, which moves them to
``Needs Intervention`` and opens (or reuses) their single active
intervention. A mentor assigning a task moves them to ``Remedial``;
completing it returns them to ``On Track``.

Each operation runs in one store transaction scoped to the student, so the
status change and the intervention change commit together, and concurrent
failing check-ins for one student share a single intervention.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from engines.status_engine import CheckInOutcome, daily_log_status, evaluate
from errors import InterventionStateError, NotFoundError
from notifier import Notifier
from schemas import (
    CHECKIN_REVIEW_STATUS,
    INT64_MAX,
    INT64_MIN,
    Intervention,
    InterventionStatus,
    NotificationEvent,
    StudentStatus,
    StudentStatusResponse,
)
from store import RecordStore, StoreSession, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    outcome: CheckInOutcome
    student_status: StudentStatus
    intervention: Optional[Intervention] = None
    intervention_created: bool = False

    @property
    def reported_status(self) -> str:
        """Status string returned to the caller of the check-in."""
        if self.student_status is StudentStatus.NEEDS_INTERVENTION:
            return CHECKIN_REVIEW_STATUS
        return self.student_status.value


def _parse_intervention_id(value: Union[int, str]) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip()
        if not (text.isascii() and text.isdigit()):
            return None
        parsed = int(text)
    # Ids outside the store's integer range cannot match any row.
    return parsed if INT64_MIN <= parsed <= INT64_MAX else None


class InterventionLifecycleManager:
    def __init__(self, store: RecordStore, notifier: Optional[Notifier] = None):
        self.store = store
        self.notifier = notifier or Notifier()

    def ensure_student(self, student_id: str) -> None:
        with self.store.transaction(student_id) as session:
            session.ensure_student(student_id)

    def get_status(self, student_id: str) -> StudentStatusResponse:
        with self.store.transaction(student_id, write=False) as session:
            student = session.get_student(student_id)
            if student is None:
                raise NotFoundError(f"unknown student {student_id}", public_message="Student not found")
            active = session.find_active_intervention(student_id)
        return StudentStatusResponse(
            student_id=student_id,
            status=student.status,
            task=active.task if active else None,
        )

    def get_or_create_active_intervention(self, student_id: str) -> Intervention:
        with self.store.transaction(student_id) as session:
            session.ensure_student(student_id)
            intervention, created = session.create_pending_intervention_if_none_active(student_id)
        if created:
            logger.info("Opened intervention %s for student %s", intervention.id, student_id)
        return intervention

    def record_check_in(
        self, student_id: str, quiz_score: float, focus_minutes: float
    ) -> CheckInResult:
        outcome = evaluate(quiz_score, focus_minutes)
        with self.store.transaction(student_id) as session:
            session.ensure_student(student_id)
            session.append_daily_log(student_id, quiz_score, focus_minutes, daily_log_status(outcome))

            if outcome is CheckInOutcome.SUCCESS:
                # An intervention that is still open stays open; only the
                # mentor's completion closes it.
                session.update_student_status(student_id, StudentStatus.ON_TRACK)
                result = CheckInResult(outcome=outcome, student_status=StudentStatus.ON_TRACK)
            else:
                session.update_student_status(student_id, StudentStatus.NEEDS_INTERVENTION)
                intervention, created = session.create_pending_intervention_if_none_active(student_id)
                result = CheckInResult(
                    outcome=outcome,
                    student_status=StudentStatus.NEEDS_INTERVENTION,
                    intervention=intervention,
                    intervention_created=created,
                )

        if result.intervention is not None:
            logger.info(
                "Check-in failed for student %s (quiz=%s, focus=%s); intervention %s %s",
                student_id,
                quiz_score,
                focus_minutes,
                result.intervention.id,
                "opened" if result.intervention_created else "reused",
            )
            self.notifier.notify(
                NotificationEvent(
                    student_id=student_id,
                    quiz_score=quiz_score,
                    focus_minutes=focus_minutes,
                    intervention_id=result.intervention.id,
                )
            )
        else:
            logger.debug("Check-in passed for student %s", student_id)
        return result

    def _owned_intervention(
        self, session: StoreSession, student_id: str, intervention_id: Union[int, str]
    ) -> Intervention:
        parsed = _parse_intervention_id(intervention_id)
        intervention = session.get_intervention(parsed) if parsed is not None else None
        if intervention is None or intervention.student_id != student_id:
            raise NotFoundError(
                f"intervention {intervention_id!r} not found for student {student_id}",
                public_message="Intervention not found",
            )
        return intervention

    def assign(
        self,
        student_id: str,
        task: str,
        intervention_id: Optional[Union[int, str]] = None,
    ) -> Intervention:
        """Attach ``task`` to an intervention and move the student to Remedial.

        Without ``intervention_id`` the student's active intervention is used,
        opening one if needed. A named intervention must belong to the student
        and must not be completed; otherwise nothing is written.
        """
        with self.store.transaction(student_id) as session:
            session.ensure_student(student_id)
            if intervention_id is not None:
                target = self._owned_intervention(session, student_id, intervention_id)
                if target.status is InterventionStatus.COMPLETED:
                    raise InterventionStateError(
                        f"intervention {target.id} is already completed",
                        public_message="Intervention already completed",
                    )
            else:
                target, _ = session.create_pending_intervention_if_none_active(student_id)
            updated = session.update_intervention(
                target.id, task=task, status=InterventionStatus.ASSIGNED
            )
            session.update_student_status(student_id, StudentStatus.REMEDIAL)

        logger.info("Assigned intervention %s to student %s", updated.id, student_id)
        return updated

    def complete(self, student_id: str) -> Optional[Intervention]:
        """Close the active intervention, if any, and unlock the student."""
        with self.store.transaction(student_id) as session:
            session.ensure_student(student_id)
            active = session.find_active_intervention(student_id)
            completed = None
            if active is not None:
                completed = session.update_intervention(
                    active.id, status=InterventionStatus.COMPLETED, completed_at=utc_now()
                )
            session.update_student_status(student_id, StudentStatus.ON_TRACK)

        if completed is not None:
            logger.info("Completed intervention %s for student %s", completed.id, student_id)
        else:
            logger.info("No active intervention for student %s; status reset to On Track", student_id)
        return completed
