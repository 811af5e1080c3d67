"""Tests für Gruppen-Kennzahlen, Konsistenzprüfung und Demo-Daten."""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from analysis.batch_stats import batch_statistics, institute_statistics
from analysis.invariant_checker import InvariantChecker
from config.schema import InstituteConfig
from data.demo_data import DemoDataGenerator
from models.batch import Batch, EnrolledStudent, SeatStatus
from models.course import Course
from models.enrollment import Enrollment, EnrollmentStatus, StatusChange
from models.institute_data import InstituteData
from models.session import AttendanceRecord, AttendanceStatus, ClassSession, SessionStatus

T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _seat(sid: str, status=SeatStatus.ACTIVE) -> EnrolledStudent:
    return EnrolledStudent(student_id=sid, enrolled_at=T0, status=status)


def _session(day: int, status=SessionStatus.SCHEDULED, records=()) -> ClassSession:
    return ClassSession(id=f"b1/2025-03-{day:02d}/1-1800-1900", slot_key="1-1800-1900",
                        date=date(2025, 3, day), start_time=time(18), end_time=time(19),
                        status=status, attendance=list(records))


def _make_batch(**kwargs) -> Batch:
    params = dict(id="b1", name="Web 1", course_id="web", instructor_id="dozent-1",
                  start_date=date(2025, 3, 1), end_date=date(2025, 3, 31), max_students=4)
    params.update(kwargs)
    return Batch(**params)


def _make_data(**kwargs) -> InstituteData:
    return InstituteData(
        courses=[Course(id="web", name="Webentwicklung", fee=Decimal("100"))],
        **kwargs,
    )


# ─── KENNZAHLEN ───────────────────────────────────────────────────────────────

class TestBatchStatistics:
    def test_statistics(self):
        present = AttendanceRecord(student_id="a", status=AttendanceStatus.PRESENT)
        absent = AttendanceRecord(student_id="b", status=AttendanceStatus.ABSENT)
        batch = _make_batch(
            enrolled_students=[_seat("a"), _seat("b"), _seat("c", SeatStatus.COMPLETED),
                               _seat("d", SeatStatus.INACTIVE)],
            sessions=[
                _session(3, SessionStatus.COMPLETED, [present, absent]),
                _session(10, SessionStatus.COMPLETED, [present]),
                _session(17, SessionStatus.CANCELLED),
                _session(24),
            ],
        )
        stats = batch_statistics(batch)
        assert stats.total_students == 4
        assert stats.active_students == 2
        assert stats.completed_students == 1
        assert stats.dropout_rate == pytest.approx(25.0)
        assert stats.total_sessions == 3
        assert stats.completed_sessions == 2
        assert stats.cancelled_sessions == 1
        assert stats.progress_percentage == pytest.approx(200 / 3)
        assert stats.avg_attendance == 75.0
        assert stats.free_seats == 2

    def test_empty_batch(self):
        stats = batch_statistics(_make_batch())
        assert stats.dropout_rate == 0.0
        assert stats.progress_percentage == 0.0
        assert stats.avg_attendance == 0.0


class TestInstituteStatistics:
    def test_totals_across_batches(self):
        present = AttendanceRecord(student_id="a", status=AttendanceStatus.PRESENT)
        absent = AttendanceRecord(student_id="b", status=AttendanceStatus.ABSENT)
        b1 = _make_batch(
            enrolled_students=[_seat("a"), _seat("b"), _seat("c", SeatStatus.COMPLETED)],
            sessions=[_session(3, SessionStatus.COMPLETED, [present, absent]), _session(24)],
        )
        b2 = _make_batch(
            id="b2", is_active=False, enrolled_students=[_seat("a")],
            sessions=[_session(10, SessionStatus.COMPLETED, [present]), _session(31)],
        )
        stats = institute_statistics([b1, b2], now=datetime(2025, 3, 20, tzinfo=timezone.utc))
        assert stats.total_batches == 2
        assert stats.active_batches == 1
        assert stats.inactive_batches == 1
        assert stats.students_in_batches == 3
        assert stats.upcoming_sessions == 2
        assert stats.avg_attendance == 75.0

    def test_no_batches(self):
        stats = institute_statistics([], now=T0)
        assert stats.total_batches == 0
        assert stats.avg_attendance == 0.0


# ─── KONSISTENZPRÜFUNG ────────────────────────────────────────────────────────

class TestInvariantChecker:
    def test_clean_data_valid(self):
        data = _make_data(batches=[_make_batch(enrolled_students=[_seat("a")],
                                               sessions=[_session(3), _session(10)])])
        report = InvariantChecker().check(data)
        assert report.is_valid
        assert report.violations == []

    def test_over_capacity(self):
        seats = [_seat(s) for s in "abc"]
        data = _make_data(batches=[_make_batch(max_students=2, enrolled_students=seats)])
        report = InvariantChecker().check(data)
        assert not report.is_valid
        assert any(v.constraint == "capacity" for v in report.violations)

    def test_duplicate_seat_and_session(self):
        data = _make_data(batches=[_make_batch(
            enrolled_students=[_seat("a"), _seat("a")],
            sessions=[_session(3), _session(3)],
        )])
        constraints = {v.constraint for v in InvariantChecker().check(data).violations}
        assert {"duplicate_seat", "duplicate_session"} <= constraints

    def test_unsorted_sessions_warning(self):
        data = _make_data(batches=[_make_batch(sessions=[_session(10), _session(3)])])
        report = InvariantChecker().check(data)
        assert report.is_valid
        assert [v.constraint for v in report.violations] == ["session_order"]

    def test_attendance_interval(self):
        bad = AttendanceRecord(student_id="a", status=AttendanceStatus.PRESENT,
                               join_at=datetime(2025, 3, 3, 18, 30, tzinfo=timezone.utc),
                               leave_at=datetime(2025, 3, 3, 18, 0, tzinfo=timezone.utc))
        data = _make_data(batches=[_make_batch(sessions=[_session(3, records=[bad])])])
        report = InvariantChecker().check(data)
        assert any(v.constraint == "attendance_interval" for v in report.violations)

    def test_history_mismatch(self):
        enrollment = Enrollment(
            id="e1", student_id="a", course_id="web", enrolled_at=T0,
            amount_owed=Decimal("100"), status=EnrollmentStatus.ACTIVE,
            status_history=[StatusChange(status=EnrollmentStatus.DROPPED,
                                         changed_at=T0, changed_by="admin")],
        )
        report = InvariantChecker().check(_make_data(enrollments=[enrollment]))
        assert any(v.constraint == "status_history" for v in report.violations)

    def test_illegal_transition_in_history(self):
        history = [StatusChange(status=s, changed_at=T0, changed_by="admin")
                   for s in (EnrollmentStatus.DROPPED, EnrollmentStatus.ACTIVE)]
        enrollment = Enrollment(id="e1", student_id="a", course_id="web", enrolled_at=T0,
                                amount_owed=Decimal("100"), status_history=history)
        report = InvariantChecker().check(_make_data(enrollments=[enrollment]))
        assert any(v.constraint == "status_transition" for v in report.violations)


# ─── DEMO-DATEN ───────────────────────────────────────────────────────────────

class TestDemoData:
    @pytest.fixture(scope="class")
    def demo_store(self):
        return DemoDataGenerator(InstituteConfig(), seed=7, today=date(2025, 5, 14)).generate()

    def test_generated_data_consistent(self, demo_store):
        report = InvariantChecker().check(demo_store.snapshot())
        assert report.is_valid, [v.description for v in report.violations]

    def test_first_batch_full(self, demo_store):
        full = [b for b in demo_store.list_batches() if b.id.endswith("-1")]
        assert full
        for b in full:
            # ein Abbrecher gibt seinen Platz frei
            assert b.active_count >= b.max_students - 1

    def test_sessions_progressed(self, demo_store):
        done = [s for b in demo_store.list_batches() for s in b.sessions
                if s.status == SessionStatus.COMPLETED]
        assert done
        assert all(s.attendance for s in done)

    def test_deterministic(self):
        config = InstituteConfig()
        a = DemoDataGenerator(config, seed=3, today=date(2025, 5, 14)).generate().snapshot()
        b = DemoDataGenerator(config, seed=3, today=date(2025, 5, 14)).generate().snapshot()
        assert [x.active_student_ids() for x in a.batches] == \
               [x.active_student_ids() for x in b.batches]
