"""Record store contract and the in-process backend.

Two backends implement :class:`RecordStore`: :class:`MemoryRecordStore` below,
used when no ``DATABASE_URL`` is configured, and ``db.SqliteRecordStore``.
Every read and write happens inside :meth:`RecordStore.transaction`, which
yields a :class:`StoreSession`; the session's writes become visible together
or not at all.
"""

from __future__ import annotations

import itertools
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, ContextManager, Dict, Iterator, List, Optional, Tuple

from errors import ConstraintViolation
from schemas import (
    DailyLog,
    DailyLogStatus,
    Intervention,
    InterventionStatus,
    Student,
    StudentStatus,
)

LOGGER = logging.getLogger("mentorgate.store")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoreSession:
    """Operations available inside one store transaction."""

    def ensure_student(self, student_id: str) -> Student:
        """Create ``student_id`` with status On Track unless it already exists."""
        raise NotImplementedError

    def get_student(self, student_id: str) -> Optional[Student]:
        raise NotImplementedError

    def update_student_status(self, student_id: str, status: StudentStatus) -> None:
        raise NotImplementedError

    def append_daily_log(
        self,
        student_id: str,
        quiz_score: float,
        focus_minutes: float,
        status: DailyLogStatus,
    ) -> DailyLog:
        raise NotImplementedError

    def find_active_intervention(self, student_id: str) -> Optional[Intervention]:
        """Return the most recently created pending/assigned intervention."""
        raise NotImplementedError

    def create_pending_intervention_if_none_active(
        self, student_id: str
    ) -> Tuple[Intervention, bool]:
        """Return ``(intervention, created)``; reuses the active one if present."""
        raise NotImplementedError

    def get_intervention(self, intervention_id: int) -> Optional[Intervention]:
        raise NotImplementedError

    def update_intervention(
        self,
        intervention_id: int,
        *,
        task: Optional[str] = None,
        status: Optional[InterventionStatus] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Intervention]:
        """Apply the given fields; ``None`` leaves a field unchanged.

        Returns the updated row, or ``None`` when no row matched.
        """
        raise NotImplementedError

    def list_interventions(
        self, student_id: Optional[str] = None, limit: int = 100
    ) -> List[Intervention]:
        raise NotImplementedError

    def list_daily_logs(self, student_id: Optional[str] = None, limit: int = 100) -> List[DailyLog]:
        raise NotImplementedError


class RecordStore:
    backend = "abstract"

    def transaction(
        self, student_id: Optional[str] = None, *, write: bool = True
    ) -> ContextManager[StoreSession]:
        """Open a unit of work, serialized against other transactions for ``student_id``."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    # One-shot reads
    def get_student(self, student_id: str) -> Optional[Student]:
        with self.transaction(student_id, write=False) as session:
            return session.get_student(student_id)

    def find_active_intervention(self, student_id: str) -> Optional[Intervention]:
        with self.transaction(student_id, write=False) as session:
            return session.find_active_intervention(student_id)

    def get_intervention(self, intervention_id: int) -> Optional[Intervention]:
        with self.transaction(write=False) as session:
            return session.get_intervention(intervention_id)

    def list_interventions(
        self, student_id: Optional[str] = None, limit: int = 100
    ) -> List[Intervention]:
        with self.transaction(student_id, write=False) as session:
            return session.list_interventions(student_id, limit)

    def list_daily_logs(self, student_id: Optional[str] = None, limit: int = 100) -> List[DailyLog]:
        with self.transaction(student_id, write=False) as session:
            return session.list_daily_logs(student_id, limit)


# ---------- in-process backend ----------
class _MemorySession(StoreSession):
    def __init__(self, store: "MemoryRecordStore"):
        self._store = store
        self._undo: List[Callable[[], None]] = []

    def rollback(self) -> None:
        with self._store._data_lock:
            for undo in reversed(self._undo):
                undo()
        self._undo.clear()

    def ensure_student(self, student_id: str) -> Student:
        store = self._store
        with store._data_lock:
            existing = store._students.get(student_id)
            if existing is not None:
                return existing.model_copy()
            now = utc_now()
            student = Student(id=student_id, status=StudentStatus.ON_TRACK, created_at=now, updated_at=now)
            store._students[student_id] = student
        self._undo.append(lambda: store._students.pop(student_id, None))
        return student.model_copy()

    def get_student(self, student_id: str) -> Optional[Student]:
        student = self._store._students.get(student_id)
        return student.model_copy() if student else None

    def update_student_status(self, student_id: str, status: StudentStatus) -> None:
        store = self._store
        with store._data_lock:
            current = store._students.get(student_id)
            if current is None:
                return
            store._students[student_id] = current.model_copy(
                update={"status": status, "updated_at": utc_now()}
            )
        self._undo.append(lambda: store._students.__setitem__(student_id, current))

    def append_daily_log(
        self,
        student_id: str,
        quiz_score: float,
        focus_minutes: float,
        status: DailyLogStatus,
    ) -> DailyLog:
        store = self._store
        with store._data_lock:
            entry = DailyLog(
                id=next(store._log_ids),
                student_id=student_id,
                quiz_score=quiz_score,
                focus_minutes=focus_minutes,
                status=status,
                created_at=utc_now(),
            )
            store._daily_logs.append(entry)
        self._undo.append(lambda: store._daily_logs.remove(entry))
        return entry.model_copy()

    def _active_for(self, student_id: str) -> List[Intervention]:
        active = [
            item
            for item in self._store._interventions.values()
            if item.student_id == student_id and item.is_active
        ]
        active.sort(key=lambda item: (item.created_at, item.id), reverse=True)
        return active

    def find_active_intervention(self, student_id: str) -> Optional[Intervention]:
        with self._store._data_lock:
            active = self._active_for(student_id)
        return active[0].model_copy() if active else None

    def create_pending_intervention_if_none_active(
        self, student_id: str
    ) -> Tuple[Intervention, bool]:
        store = self._store
        with store._data_lock:
            active = self._active_for(student_id)
            if active:
                return active[0].model_copy(), False
            intervention = Intervention(
                id=next(store._intervention_ids),
                student_id=student_id,
                task=None,
                status=InterventionStatus.PENDING,
                created_at=utc_now(),
            )
            store._interventions[intervention.id] = intervention
        self._undo.append(lambda: store._interventions.pop(intervention.id, None))
        return intervention.model_copy(), True

    def get_intervention(self, intervention_id: int) -> Optional[Intervention]:
        intervention = self._store._interventions.get(intervention_id)
        return intervention.model_copy() if intervention else None

    def update_intervention(
        self,
        intervention_id: int,
        *,
        task: Optional[str] = None,
        status: Optional[InterventionStatus] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Intervention]:
        store = self._store
        changes: Dict[str, object] = {}
        if task is not None:
            changes["task"] = task
        if status is not None:
            changes["status"] = status
        if completed_at is not None:
            changes["completed_at"] = completed_at
        with store._data_lock:
            current = store._interventions.get(intervention_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            if updated.is_active and not current.is_active:
                others = [i for i in self._active_for(current.student_id) if i.id != intervention_id]
                if others:
                    raise ConstraintViolation(
                        f"student {current.student_id} already has active intervention {others[0].id}"
                    )
            store._interventions[intervention_id] = updated
        self._undo.append(lambda: store._interventions.__setitem__(intervention_id, current))
        return updated.model_copy()

    def list_interventions(
        self, student_id: Optional[str] = None, limit: int = 100
    ) -> List[Intervention]:
        with self._store._data_lock:
            rows = [
                item.model_copy()
                for item in self._store._interventions.values()
                if student_id is None or item.student_id == student_id
            ]
        rows.sort(key=lambda item: (item.created_at, item.id), reverse=True)
        return rows[: int(limit)]

    def list_daily_logs(self, student_id: Optional[str] = None, limit: int = 100) -> List[DailyLog]:
        with self._store._data_lock:
            rows = [
                entry.model_copy()
                for entry in self._store._daily_logs
                if student_id is None or entry.student_id == student_id
            ]
        rows.reverse()
        return rows[: int(limit)]


class MemoryRecordStore(RecordStore):
    """Process-local store with the same semantics as the SQLite backend.

    Transactions for the same student are serialized by a per-student lock, so
    the check-then-create of an active intervention is atomic. Transactions for
    different students only share the short ``_data_lock`` that guards the
    containers and id counters. A failing transaction undoes its own writes.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._students: Dict[str, Student] = {}
        self._interventions: Dict[int, Intervention] = {}
        self._daily_logs: List[DailyLog] = []
        self._intervention_ids = itertools.count(1)
        self._log_ids = itertools.count(1)
        self._data_lock = threading.RLock()
        # Entries disappear once no transaction holds the lock.
        self._student_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    def _lock_for(self, student_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._student_locks.get(student_id)
            if lock is None:
                lock = self._student_locks[student_id] = threading.Lock()
            return lock

    @contextmanager
    def transaction(
        self, student_id: Optional[str] = None, *, write: bool = True
    ) -> Iterator[StoreSession]:
        # Reads take the student lock too so they never see an uncommitted write.
        lock = self._lock_for(student_id) if student_id is not None else None
        if lock is not None:
            lock.acquire()
        session = _MemorySession(self)
        try:
            yield session
        except BaseException:
            session.rollback()
            LOGGER.debug("Rolled back in-memory transaction for %s", student_id)
            raise
        finally:
            if lock is not None:
                lock.release()


def build_store(database_url: Optional[str]) -> RecordStore:
    """Pick the backend for ``database_url``; no URL means the in-process store."""
    if not database_url:
        LOGGER.info("DATABASE_URL not set; using in-process record store")
        return MemoryRecordStore()

    from db import SqliteRecordStore, sqlite_path_from_url

    path = sqlite_path_from_url(database_url)
    LOGGER.info("Using SQLite record store at %s", path)
    return SqliteRecordStore(path)
