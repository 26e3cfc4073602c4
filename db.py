import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from db_pool import SQLiteConnectionPool
from errors import ConstraintViolation, StorageError
from schemas import (
    DailyLog,
    DailyLogStatus,
    Intervention,
    InterventionStatus,
    Student,
    StudentStatus,
)
from store import RecordStore, StoreSession, utc_now

logger = logging.getLogger("mentorgate.store")

_ACTIVE_STATUSES = tuple(status.value for status in InterventionStatus.active())
_ACTIVE_SQL = "status IN ({})".format(", ".join(f"'{status}'" for status in _ACTIVE_STATUSES))

_SCHEMA = f"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS students (
  id          TEXT PRIMARY KEY,
  status      TEXT NOT NULL DEFAULT 'On Track'
              CHECK (status IN ('On Track', 'Needs Intervention', 'Remedial')),
  created_at  TEXT NOT NULL,
  updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS interventions (
  id            INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id    TEXT NOT NULL,
  task          TEXT,
  status        TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'assigned', 'completed')),
  created_at    TEXT NOT NULL,
  completed_at  TEXT,
  FOREIGN KEY(student_id) REFERENCES students(id)
);

CREATE INDEX IF NOT EXISTS idx_interventions_student
  ON interventions(student_id, created_at DESC);

-- At most one pending/assigned intervention per student.
CREATE UNIQUE INDEX IF NOT EXISTS idx_interventions_one_active
  ON interventions(student_id) WHERE {_ACTIVE_SQL};

CREATE TABLE IF NOT EXISTS daily_logs (
  id             INTEGER PRIMARY KEY AUTOINCREMENT,
  student_id     TEXT NOT NULL,
  quiz_score     REAL NOT NULL,
  focus_minutes  REAL NOT NULL,
  status         TEXT NOT NULL CHECK (status IN ('success', 'failed')),
  created_at     TEXT NOT NULL,
  FOREIGN KEY(student_id) REFERENCES students(id)
);

CREATE INDEX IF NOT EXISTS idx_daily_logs_student ON daily_logs(student_id, id DESC);
"""


def sqlite_path_from_url(database_url: str) -> str:
    """Accept ``sqlite:///relative.db``, ``sqlite:////abs/path.db`` or a bare path."""
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        if not path:
            raise ValueError("sqlite URL must include a database path")
        return path
    if "://" in database_url:
        raise ValueError(f"Unsupported database URL: {database_url}")
    return database_url


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _student(row: sqlite3.Row) -> Student:
    return Student(**dict(row))


def _intervention(row: sqlite3.Row) -> Intervention:
    return Intervention(**dict(row))


def _daily_log(row: sqlite3.Row) -> DailyLog:
    return DailyLog(**dict(row))


class SqliteSession(StoreSession):
    def __init__(self, con: sqlite3.Connection):
        self._con = con

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        return self._con.execute(sql, tuple(params)).fetchall()

    def ensure_student(self, student_id: str) -> Student:
        now = _iso(utc_now())
        self._con.execute(
            """
            INSERT INTO students (id, status, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (student_id, StudentStatus.ON_TRACK.value, now, now),
        )
        return self.get_student(student_id)

    def get_student(self, student_id: str) -> Optional[Student]:
        rows = self._query(
            "SELECT id, status, created_at, updated_at FROM students WHERE id = ?",
            (student_id,),
        )
        return _student(rows[0]) if rows else None

    def update_student_status(self, student_id: str, status: StudentStatus) -> None:
        self._con.execute(
            "UPDATE students SET status = ?, updated_at = ? WHERE id = ?",
            (StudentStatus(status).value, _iso(utc_now()), student_id),
        )

    def append_daily_log(
        self,
        student_id: str,
        quiz_score: float,
        focus_minutes: float,
        status: DailyLogStatus,
    ) -> DailyLog:
        cur = self._con.execute(
            """
            INSERT INTO daily_logs (student_id, quiz_score, focus_minutes, status, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (student_id, quiz_score, focus_minutes, DailyLogStatus(status).value, _iso(utc_now())),
        )
        rows = self._query("SELECT * FROM daily_logs WHERE id = ?", (cur.lastrowid,))
        return _daily_log(rows[0])

    def find_active_intervention(self, student_id: str) -> Optional[Intervention]:
        rows = self._query(
            f"""
            SELECT * FROM interventions
            WHERE student_id = ? AND {_ACTIVE_SQL}
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (student_id,),
        )
        return _intervention(rows[0]) if rows else None

    def create_pending_intervention_if_none_active(
        self, student_id: str
    ) -> Tuple[Intervention, bool]:
        existing = self.find_active_intervention(student_id)
        if existing is not None:
            return existing, False
        try:
            cur = self._con.execute(
                """
                INSERT INTO interventions (student_id, task, status, created_at)
                VALUES (?, NULL, ?, ?)
                """,
                (student_id, InterventionStatus.PENDING.value, _iso(utc_now())),
            )
        except sqlite3.IntegrityError:
            # Lost the race to a writer that committed first; the unique
            # index rejected the duplicate, so return the winner.
            existing = self.find_active_intervention(student_id)
            if existing is None:
                raise
            return existing, False
        return self.get_intervention(cur.lastrowid), True

    def get_intervention(self, intervention_id: int) -> Optional[Intervention]:
        rows = self._query("SELECT * FROM interventions WHERE id = ?", (int(intervention_id),))
        return _intervention(rows[0]) if rows else None

    def update_intervention(
        self,
        intervention_id: int,
        *,
        task: Optional[str] = None,
        status: Optional[InterventionStatus] = None,
        completed_at: Optional[datetime] = None,
    ) -> Optional[Intervention]:
        assignments: list[str] = []
        params: list[object] = []
        if task is not None:
            assignments.append("task = ?")
            params.append(task)
        if status is not None:
            assignments.append("status = ?")
            params.append(InterventionStatus(status).value)
        if completed_at is not None:
            assignments.append("completed_at = ?")
            params.append(_iso(completed_at))
        if assignments:
            params.append(int(intervention_id))
            self._con.execute(
                f"UPDATE interventions SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
        return self.get_intervention(intervention_id)

    def list_interventions(
        self, student_id: Optional[str] = None, limit: int = 100
    ) -> List[Intervention]:
        if student_id:
            rows = self._query(
                "SELECT * FROM interventions WHERE student_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (student_id, int(limit)),
            )
        else:
            rows = self._query(
                "SELECT * FROM interventions ORDER BY created_at DESC, id DESC LIMIT ?",
                (int(limit),),
            )
        return [_intervention(row) for row in rows]

    def list_daily_logs(self, student_id: Optional[str] = None, limit: int = 100) -> List[DailyLog]:
        if student_id:
            rows = self._query(
                "SELECT * FROM daily_logs WHERE student_id = ? ORDER BY id DESC LIMIT ?",
                (student_id, int(limit)),
            )
        else:
            rows = self._query(
                "SELECT * FROM daily_logs ORDER BY id DESC LIMIT ?",
                (int(limit),),
            )
        return [_daily_log(row) for row in rows]


class SqliteRecordStore(RecordStore):
    """SQLite-backed store.

    Write transactions start with ``BEGIN IMMEDIATE`` and the partial unique
    index ``idx_interventions_one_active`` rejects a second active
    intervention for a student, so the invariant holds for writers in other
    processes too.
    """

    backend = "sqlite"

    def __init__(self, path: str, max_connections: int = 10):
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._pool = SQLiteConnectionPool(path, max_connections=max_connections)
        self.init()

    def init(self) -> None:
        try:
            with self._pool.get_connection() as con:
                con.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            logger.exception("Failed to initialise SQLite schema at %s", self.path)
            raise StorageError(f"schema init failed: {exc}") from exc

    @contextmanager
    def transaction(
        self, student_id: Optional[str] = None, *, write: bool = True
    ) -> Iterator[StoreSession]:
        try:
            with self._pool.transaction(immediate=write) as con:
                yield SqliteSession(con)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def close(self) -> None:
        self._pool.close_all()
