"""Tests für den Einschreibungs-Manager: Kapazität, Übergänge, Nebenläufigkeit."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from config.schema import EnrollmentConfig, Role
from engine.clock import FixedClock
from engine.enrollment import EnrollmentManager
from engine.errors import (
    AlreadyEnrolled,
    BatchInactive,
    CapacityExceeded,
    InvalidTransition,
    PermissionDenied,
    StudentNotInBatch,
    Unavailable,
    VersionConflict,
)
from engine.pricing import PricingEngine
from engine.schedule import ScheduleGenerator
from models.actor import Actor
from models.batch import Batch, EnrolledStudent, ScheduleSlot, SeatStatus
from models.course import Course, Discount
from models.enrollment import EnrollmentStatus
from models.session import AttendanceStatus
from storage.repository import InstituteStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
ADMIN = Actor(id="admin", role=Role.ADMIN)
INSTRUCTOR = Actor(id="dozent-1", role=Role.INSTRUCTOR)
STUDENT = Actor(id="s1", role=Role.STUDENT)


def _make_store(max_students=2, is_active=True, discount=None) -> InstituteStore:
    store = InstituteStore()
    store.put_course(Course(id="web", name="Webentwicklung", fee=Decimal("1000"),
                            discount=discount, subject_ids=["html", "css"]))
    store.put_batch(Batch(
        id="b1", name="Web 1", course_id="web", instructor_id="dozent-1",
        schedule=[ScheduleSlot(day_of_week=1, start_time=time(18), end_time=time(19))],
        start_date=date(2025, 3, 3), end_date=date(2025, 3, 31),
        max_students=max_students, is_active=is_active,
    ))
    return store


def _make_manager(store: InstituteStore, retry_limit=1) -> EnrollmentManager:
    clock = FixedClock(NOW)
    return EnrollmentManager(store, PricingEngine(clock=clock),
                             EnrollmentConfig(version_retry_limit=retry_limit), clock)


# ─── KAPAZITÄT ────────────────────────────────────────────────────────────────

class TestCapacity:
    def test_third_student_rejected(self):
        """Kapazität 2: A und B kommen rein, C bekommt CapacityExceeded."""
        store = _make_store(max_students=2)
        manager = _make_manager(store)
        manager.enroll("A", "b1")
        manager.enroll("B", "b1")
        with pytest.raises(CapacityExceeded):
            manager.enroll("C", "b1")
        batch = store.get_batch("b1")
        assert batch.active_count == 2
        assert batch.seat_of("C") is None

    def test_withdraw_frees_seat(self):
        store = _make_store(max_students=2)
        manager = _make_manager(store)
        manager.enroll("A", "b1")
        manager.enroll("B", "b1")
        manager.withdraw("A", "b1")
        manager.enroll("C", "b1")
        assert sorted(store.get_batch("b1").active_student_ids()) == ["B", "C"]

    def test_concurrent_enrollments_respect_capacity(self):
        """N parallele Einschreibungen bei Kapazität K → genau K Erfolge."""
        capacity, attempts = 5, 40
        store = _make_store(max_students=capacity)
        manager = _make_manager(store)

        def _try(i: int) -> bool:
            try:
                manager.enroll(f"s{i:02d}", "b1")
                return True
            except CapacityExceeded:
                return False

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(_try, range(attempts)))

        assert results.count(True) == capacity
        assert results.count(False) == attempts - capacity
        assert store.get_batch("b1").active_count == capacity
        assert len(store.find_enrollments(course_id="web")) == capacity


# ─── EINSCHREIBEN ─────────────────────────────────────────────────────────────

class TestEnroll:
    def test_creates_enrollment_with_price(self):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        assert enrollment.status == EnrollmentStatus.ACTIVE
        assert enrollment.course_id == "web"
        assert enrollment.batch_id == "b1"
        assert enrollment.amount_owed == Decimal("1000.00")
        assert enrollment.enrolled_at == NOW
        assert enrollment.status_history == []

    def test_amount_owed_uses_discount_at_enrollment(self):
        discount = Discount(percentage=Decimal(25), start_at=NOW - timedelta(days=1),
                            end_at=NOW + timedelta(days=1))
        manager = _make_manager(_make_store(discount=discount))
        assert manager.enroll("A", "b1").amount_owed == Decimal("750.00")

    def test_already_enrolled(self):
        manager = _make_manager(_make_store())
        manager.enroll("A", "b1")
        with pytest.raises(AlreadyEnrolled):
            manager.enroll("A", "b1")

    def test_inactive_batch(self):
        manager = _make_manager(_make_store(is_active=False))
        with pytest.raises(BatchInactive):
            manager.enroll("A", "b1")

    def test_rejoin_after_withdraw_reuses_open_enrollment(self):
        store = _make_store()
        manager = _make_manager(store)
        first = manager.enroll("A", "b1")
        manager.withdraw("A", "b1")
        second = manager.enroll("A", "b1")
        assert second.id == first.id
        assert len(store.find_enrollments(student_id="A")) == 1

    def test_reenroll_after_drop_creates_new_enrollment(self):
        store = _make_store()
        manager = _make_manager(store)
        first = manager.enroll("A", "b1")
        manager.change_status(first.id, "dropped", ADMIN)
        second = manager.enroll("A", "b1")
        assert second.id != first.id
        assert store.get_enrollment(first.id).status == EnrollmentStatus.DROPPED
        assert manager.find_enrollment("A", "web").id == second.id

    def test_withdraw_unknown_student(self):
        manager = _make_manager(_make_store())
        with pytest.raises(StudentNotInBatch):
            manager.withdraw("X", "b1")

    def test_store_unavailable(self):
        store = _make_store()
        manager = _make_manager(store)
        store.set_available(False)
        with pytest.raises(Unavailable):
            manager.enroll("A", "b1")


class TestEnrollMany:
    def test_all_or_nothing(self):
        store = _make_store(max_students=3)
        manager = _make_manager(store)
        manager.enroll("A", "b1")
        with pytest.raises(CapacityExceeded):
            manager.enroll_many(["B", "C", "D"], "b1")
        assert store.get_batch("b1").active_student_ids() == ["A"]
        assert store.find_enrollments(student_id="B") == []

    def test_skips_active_and_duplicates(self):
        store = _make_store(max_students=3)
        manager = _make_manager(store)
        manager.enroll("A", "b1")
        added = manager.enroll_many(["A", "B", "B", "C"], "b1")
        assert [e.student_id for e in added] == ["B", "C"]
        assert store.get_batch("b1").active_count == 3


def _add_second_batch(store: InstituteStore, max_students=2) -> None:
    store.put_batch(Batch(
        id="b2", name="Web 2", course_id="web", instructor_id="dozent-2",
        schedule=[ScheduleSlot(day_of_week=3, start_time=time(18), end_time=time(19))],
        start_date=date(2025, 3, 3), end_date=date(2025, 3, 31),
        max_students=max_students,
    ))


class TestGroupSwitch:
    def test_active_seat_in_other_batch_blocks(self):
        store = _make_store(max_students=1)
        _add_second_batch(store)
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1")
        with pytest.raises(AlreadyEnrolled):
            manager.enroll("A", "b2")
        assert store.get_batch("b2").active_count == 0
        assert store.get_enrollment(enrollment.id).batch_id == "b1"

    def test_enroll_many_blocked_by_other_batch(self):
        store = _make_store()
        _add_second_batch(store)
        manager = _make_manager(store)
        manager.enroll("A", "b1")
        with pytest.raises(AlreadyEnrolled):
            manager.enroll_many(["A", "B"], "b2")
        assert store.get_batch("b2").active_count == 0
        assert store.find_enrollments(student_id="B") == []

    def test_switch_after_withdraw_and_drop_frees_all_seats(self):
        """b1 → Austritt → b2 → dropped: in keiner Gruppe bleibt ein aktiver Platz."""
        store = _make_store(max_students=1)
        _add_second_batch(store)
        manager = _make_manager(store)
        first = manager.enroll("A", "b1")
        manager.withdraw("A", "b1")
        switched = manager.enroll("A", "b2")
        assert switched.id == first.id
        assert switched.batch_id == "b2"

        manager.change_status(switched.id, "dropped", ADMIN)
        for batch_id in ("b1", "b2"):
            seats = store.get_batch(batch_id).enrolled_students
            assert [s.status for s in seats] == [SeatStatus.INACTIVE]
        manager.enroll("B", "b1")


class TestNaiveTimestamps:
    def test_enroll_stores_aware_timestamps(self):
        store = _make_store()
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1", at=datetime(2025, 3, 1, 12, 0))
        seat = store.get_batch("b1").seat_of("A")
        assert seat.enrolled_at.tzinfo is not None
        assert enrollment.enrolled_at.tzinfo is not None
        assert seat.enrolled_at == datetime(2025, 3, 1, 11, 0, tzinfo=timezone.utc)

    def test_sweep_after_naive_enrollment(self):
        store = _make_store()
        ScheduleGenerator(store).materialize("b1")
        _make_manager(store).enroll("A", "b1", at=datetime(2025, 3, 1, 12, 0))
        assert ScheduleGenerator(store).sweep(datetime(2025, 4, 1, tzinfo=timezone.utc)) == 5
        sessions = store.get_batch("b1").sessions
        assert all(s.record_for("A").status == AttendanceStatus.ABSENT for s in sessions)

    def test_sweep_tolerates_stored_naive_seat(self):
        store = _make_store()
        ScheduleGenerator(store).materialize("b1")
        with store.batch_transaction("b1") as batch:
            batch.enrolled_students.append(
                EnrolledStudent(student_id="alt", enrolled_at=datetime(2025, 3, 1)))
        assert ScheduleGenerator(store).sweep(datetime(2025, 4, 1, tzinfo=timezone.utc)) == 5

    def test_change_status_with_naive_instant(self):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        result = manager.change_status(enrollment.id, "completed", ADMIN,
                                       at=datetime(2025, 5, 1, 9, 0))
        assert result.completed_at.tzinfo is not None
        assert result.status_history[-1].changed_at.tzinfo is not None


# ─── STATUSÜBERGÄNGE ──────────────────────────────────────────────────────────

class TestStatusTransitions:
    def test_suspend_resume_drop(self):
        """active → suspended → active → dropped: erlaubt, 3 Historien-Einträge."""
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        manager.change_status(enrollment.id, "suspended", ADMIN, reason="Krank")
        manager.change_status(enrollment.id, "active", ADMIN)
        result = manager.change_status(enrollment.id, "dropped", INSTRUCTOR)
        assert result.status == EnrollmentStatus.DROPPED
        assert [h.status for h in result.status_history] == [
            EnrollmentStatus.SUSPENDED, EnrollmentStatus.ACTIVE, EnrollmentStatus.DROPPED,
        ]
        assert result.status_history[0].reason == "Krank"
        assert result.status_history[-1].changed_by == "dozent-1"

    def test_dropped_is_terminal(self):
        """active → dropped → active: zweiter Schritt scheitert, Historie unverändert."""
        store = _make_store()
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1")
        manager.change_status(enrollment.id, "dropped", ADMIN)
        with pytest.raises(InvalidTransition):
            manager.change_status(enrollment.id, "active", ADMIN)
        stored = store.get_enrollment(enrollment.id)
        assert stored.status == EnrollmentStatus.DROPPED
        assert len(stored.status_history) == 1

    @pytest.mark.parametrize("start,target", [
        ("suspended", "completed"),
        ("suspended", "suspended"),
    ])
    def test_illegal_from_suspended(self, start, target):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        manager.change_status(enrollment.id, start, ADMIN)
        with pytest.raises(InvalidTransition):
            manager.change_status(enrollment.id, target, ADMIN)

    def test_unknown_status(self):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        with pytest.raises(InvalidTransition):
            manager.change_status(enrollment.id, "graduated", ADMIN)

    def test_student_may_not_change_status(self):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")
        with pytest.raises(PermissionDenied):
            manager.change_status(enrollment.id, "dropped", STUDENT)

    def test_completed_sets_timestamp_and_releases_seat(self):
        store = _make_store()
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1")
        result = manager.change_status(enrollment.id, "completed", ADMIN)
        assert result.completed_at == NOW
        assert store.get_batch("b1").seat_of("A").status == SeatStatus.COMPLETED
        assert store.get_batch("b1").active_count == 0

    def test_dropped_releases_seat(self):
        store = _make_store()
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1")
        manager.change_status(enrollment.id, "dropped", ADMIN)
        assert store.get_batch("b1").seat_of("A").status == SeatStatus.INACTIVE

    def test_update_may_not_touch_status(self):
        manager = _make_manager(_make_store())
        enrollment = manager.enroll("A", "b1")

        def _sneaky(e):
            e.status = EnrollmentStatus.COMPLETED

        with pytest.raises(InvalidTransition):
            manager.update(enrollment.id, _sneaky)


# ─── VERSIONSKONFLIKTE ────────────────────────────────────────────────────────

class TestVersionRetry:
    def _flaky_store(self, failures: int) -> InstituteStore:
        store = _make_store()
        original = store.put_enrollment
        state = {"left": failures}

        def _put(enrollment):
            if enrollment.version > 0 and state["left"] > 0:
                state["left"] -= 1
                raise VersionConflict("simuliert")
            return original(enrollment)

        store.put_enrollment = _put
        return store

    def test_single_conflict_retried(self):
        store = self._flaky_store(failures=1)
        manager = _make_manager(store, retry_limit=1)
        enrollment = manager.enroll("A", "b1")
        result = manager.change_status(enrollment.id, "suspended", ADMIN)
        assert result.status == EnrollmentStatus.SUSPENDED
        assert len(result.status_history) == 1

    def test_conflict_without_retry_propagates(self):
        store = self._flaky_store(failures=1)
        manager = _make_manager(store, retry_limit=0)
        enrollment = manager.enroll("A", "b1")
        with pytest.raises(VersionConflict):
            manager.change_status(enrollment.id, "suspended", ADMIN)
        assert store.get_enrollment(enrollment.id).status == EnrollmentStatus.ACTIVE

    def test_stale_write_rejected_by_store(self):
        store = _make_store()
        manager = _make_manager(store)
        enrollment = manager.enroll("A", "b1")
        stale = store.get_enrollment(enrollment.id)
        manager.change_status(enrollment.id, "suspended", ADMIN)
        with pytest.raises(VersionConflict):
            store.put_enrollment(stale)
