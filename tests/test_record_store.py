"""Test cases for the record store backends."""

import gc
import sqlite3
import threading

import pytest

from db import sqlite_path_from_url
from errors import ConstraintViolation
from schemas import DailyLogStatus, InterventionStatus, StudentStatus
from store import MemoryRecordStore, build_store


def test_ensure_student_creates_on_track_once(store):
    with store.transaction("s1") as session:
        created = session.ensure_student("s1")
        session.update_student_status("s1", StudentStatus.REMEDIAL)
        again = session.ensure_student("s1")

    assert created.status is StudentStatus.ON_TRACK
    assert again.status is StudentStatus.REMEDIAL
    assert store.get_student("s1").status is StudentStatus.REMEDIAL


def test_get_student_unknown_returns_none(store):
    assert store.get_student("ghost") is None


def test_create_pending_reuses_active(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")
        first, created_first = session.create_pending_intervention_if_none_active("s1")
        second, created_second = session.create_pending_intervention_if_none_active("s1")

    assert created_first is True
    assert created_second is False
    assert first.id == second.id
    assert first.status is InterventionStatus.PENDING
    assert first.task is None
    assert len(store.list_interventions("s1")) == 1


def test_completed_intervention_is_not_reused(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")
        first, _ = session.create_pending_intervention_if_none_active("s1")
        session.update_intervention(first.id, status=InterventionStatus.COMPLETED)
        second, created = session.create_pending_intervention_if_none_active("s1")

    assert created is True
    assert second.id != first.id
    assert store.find_active_intervention("s1").id == second.id


def test_update_intervention_only_touches_given_fields(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")
        pending, _ = session.create_pending_intervention_if_none_active("s1")
        assigned = session.update_intervention(
            pending.id, task="Read ch.3", status=InterventionStatus.ASSIGNED
        )
        renamed = session.update_intervention(pending.id, task="Read ch.4")

    assert assigned.task == "Read ch.3"
    assert renamed.task == "Read ch.4"
    assert renamed.status is InterventionStatus.ASSIGNED
    assert renamed.completed_at is None
    assert renamed.created_at == pending.created_at


def test_update_unknown_intervention_returns_none(store):
    with store.transaction("s1") as session:
        assert session.update_intervention(999, task="nothing") is None


def test_reopening_second_active_intervention_is_rejected(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")
        old, _ = session.create_pending_intervention_if_none_active("s1")
        session.update_intervention(old.id, status=InterventionStatus.COMPLETED)
        session.create_pending_intervention_if_none_active("s1")

    with pytest.raises(ConstraintViolation):
        with store.transaction("s1") as session:
            session.update_intervention(old.id, status=InterventionStatus.PENDING)

    active = [i for i in store.list_interventions("s1") if i.is_active]
    assert len(active) == 1


def test_failed_transaction_leaves_no_partial_writes(store):
    with pytest.raises(RuntimeError):
        with store.transaction("s1") as session:
            session.ensure_student("s1")
            session.append_daily_log("s1", 5, 30, DailyLogStatus.FAILED)
            session.create_pending_intervention_if_none_active("s1")
            raise RuntimeError("boom")

    assert store.get_student("s1") is None
    assert store.list_daily_logs("s1") == []
    assert store.list_interventions("s1") == []


def test_failed_transaction_restores_previous_status(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")

    with pytest.raises(RuntimeError):
        with store.transaction("s1") as session:
            session.update_student_status("s1", StudentStatus.REMEDIAL)
            raise RuntimeError("boom")

    assert store.get_student("s1").status is StudentStatus.ON_TRACK


def test_reader_waits_for_uncommitted_write(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")

    seen = []
    reader = threading.Thread(target=lambda: seen.append(store.get_student("s1").status))

    with pytest.raises(RuntimeError):
        with store.transaction("s1") as session:
            session.update_student_status("s1", StudentStatus.REMEDIAL)
            reader.start()
            reader.join(0.2)
            raise RuntimeError("boom")
    reader.join(5)

    assert seen == [StudentStatus.ON_TRACK]


def test_memory_store_drops_idle_student_locks(memory_store):
    for student_id in ("s1", "s2", "s3"):
        with memory_store.transaction(student_id) as session:
            session.ensure_student(student_id)
        memory_store.get_student(student_id)

    gc.collect()

    assert len(memory_store._student_locks) == 0
    assert memory_store.get_student("s2") is not None


def test_daily_logs_are_listed_newest_first(store):
    with store.transaction("s1") as session:
        session.ensure_student("s1")
        session.append_daily_log("s1", 5, 30, DailyLogStatus.FAILED)
        session.append_daily_log("s1", 9, 90, DailyLogStatus.SUCCESS)
    with store.transaction("s2") as session:
        session.ensure_student("s2")
        session.append_daily_log("s2", 8.5, 75.5, DailyLogStatus.SUCCESS)

    logs = store.list_daily_logs("s1")
    assert [log.status for log in logs] == [DailyLogStatus.SUCCESS, DailyLogStatus.FAILED]
    assert logs[0].quiz_score == 9
    assert len(store.list_daily_logs()) == 3
    assert len(store.list_daily_logs(limit=1)) == 1


def test_sqlite_unique_index_rejects_second_active_row(sqlite_store):
    with sqlite_store.transaction("s1") as session:
        session.ensure_student("s1")
        session.create_pending_intervention_if_none_active("s1")

    with sqlite_store._pool.get_connection() as con:
        with pytest.raises(sqlite3.IntegrityError):
            con.execute(
                "INSERT INTO interventions (student_id, status, created_at) VALUES (?, 'assigned', ?)",
                ("s1", "2024-01-01T00:00:00+00:00"),
            )


def test_sqlite_store_persists_across_instances(tmp_path):
    from db import SqliteRecordStore

    path = str(tmp_path / "nested" / "mentor.db")
    first = SqliteRecordStore(path)
    with first.transaction("s1") as session:
        session.ensure_student("s1")
        session.create_pending_intervention_if_none_active("s1")
    first.close()

    second = SqliteRecordStore(path)
    try:
        assert second.get_student("s1") is not None
        assert second.find_active_intervention("s1") is not None
    finally:
        second.close()


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite:///data.db", "data.db"),
        ("sqlite:////var/lib/mentor.db", "/var/lib/mentor.db"),
        ("mentor.db", "mentor.db"),
    ],
)
def test_sqlite_path_from_url(url, expected):
    assert sqlite_path_from_url(url) == expected


def test_sqlite_path_from_url_rejects_other_schemes():
    with pytest.raises(ValueError):
        sqlite_path_from_url("postgres://localhost/db")


def test_build_store_selects_backend(tmp_path):
    assert isinstance(build_store(None), MemoryRecordStore)
    sqlite_backed = build_store(f"sqlite:///{tmp_path / 'x.db'}")
    try:
        assert sqlite_backed.backend == "sqlite"
    finally:
        sqlite_backed.close()
