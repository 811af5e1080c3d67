"""Tests für den In-Process-Speicher und die JSON-Persistenz."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from engine.errors import BatchNotFound, Unavailable, VersionConflict
from engine.schedule import ScheduleGenerator
from models.batch import Batch, ScheduleSlot
from models.course import Course
from models.enrollment import Enrollment
from storage.repository import InstituteStore


def _make_batch() -> Batch:
    return Batch(
        id="b1", name="Web 1", course_id="web", instructor_id="dozent-1",
        schedule=[ScheduleSlot(day_of_week=1, start_time=time(18), end_time=time(19))],
        start_date=date(2025, 3, 3), end_date=date(2025, 3, 31), max_students=4,
    )


class TestStore:
    def test_reads_are_copies(self):
        store = InstituteStore()
        store.put_batch(_make_batch())
        batch = store.get_batch("b1")
        batch.max_students = 99
        assert store.get_batch("b1").max_students == 4

    def test_version_increments(self):
        store = InstituteStore()
        assert store.put_batch(_make_batch()).version == 1
        batch = store.get_batch("b1")
        assert store.put_batch(batch).version == 2

    def test_stale_batch_write(self):
        store = InstituteStore()
        store.put_batch(_make_batch())
        a = store.get_batch("b1")
        b = store.get_batch("b1")
        store.put_batch(a)
        with pytest.raises(VersionConflict):
            store.put_batch(b)

    def test_transaction_discarded_on_error(self):
        store = InstituteStore()
        store.put_batch(_make_batch())
        with pytest.raises(RuntimeError):
            with store.batch_transaction("b1") as batch:
                batch.max_students = 1
                raise RuntimeError("abbrechen")
        assert store.get_batch("b1").max_students == 4

    def test_unknown_batch(self):
        with pytest.raises(BatchNotFound):
            InstituteStore().get_batch("nope")

    def test_unavailable(self):
        store = InstituteStore()
        store.set_available(False)
        with pytest.raises(Unavailable):
            store.list_courses()
        store.set_available(True)
        assert store.list_courses() == []

    def test_find_enrollments_oldest_first(self):
        store = InstituteStore()
        for i, day in enumerate((5, 1, 3)):
            store.put_enrollment(Enrollment(
                id=f"e{i}", student_id="s1", course_id="web",
                enrolled_at=datetime(2025, 3, day, tzinfo=timezone.utc),
                amount_owed=Decimal("10"),
            ))
        assert [e.id for e in store.find_enrollments(student_id="s1")] == ["e1", "e2", "e0"]


class TestPersistence:
    def test_json_snapshot(self, tmp_path):
        store = InstituteStore()
        store.put_course(Course(id="web", name="Webentwicklung", fee=Decimal("1200.50")))
        batch = _make_batch()
        ScheduleGenerator().materialize_sessions(batch)
        store.put_batch(batch)
        store.put_enrollment(Enrollment(
            id="e1", student_id="s1", course_id="web", batch_id="b1",
            enrolled_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
            amount_owed=Decimal("1200.50"), completed_subjects={"html"},
        ))

        path = tmp_path / "data.json"
        store.save_json(path)
        loaded = InstituteStore.load_json(path)

        assert loaded.get_course("web").fee == Decimal("1200.50")
        assert len(loaded.get_batch("b1").sessions) == 5
        assert loaded.get_enrollment("e1").completed_subjects == {"html"}
        assert loaded.snapshot().created_at is not None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            InstituteStore.load_json(tmp_path / "fehlt.json")
