"""Tests für die Katalogpflege (Kurse, Rabatte, Gruppen) und Schreibzeit-Validierung."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

from config.schema import EnrollmentConfig, InstituteConfig, Role, ScheduleConfig
from engine.catalog import CatalogService
from engine.enrollment import EnrollmentManager
from engine.errors import (
    BatchInactive,
    BatchNotFound,
    CourseNotFound,
    InvalidCapacity,
    InvalidDiscount,
    InvalidInput,
    InvalidRange,
    PermissionDenied,
    StateConflict,
)
from engine.pricing import PricingEngine
from models.actor import Actor
from models.batch import ScheduleSlot
from models.course import Discount
from models.enrollment import EnrollmentStatus
from storage.repository import InstituteStore

ADMIN = Actor(id="admin", role=Role.ADMIN)
STUDENT = Actor(id="s1", role=Role.STUDENT)
T0 = datetime(2025, 3, 1, tzinfo=timezone.utc)
SLOTS = [ScheduleSlot(day_of_week=1, start_time=time(18), end_time=time(19, 30))]


def _make_catalog(config=None):
    store = InstituteStore()
    catalog = CatalogService(store, config or InstituteConfig())
    catalog.add_course(ADMIN, "Webentwicklung", Decimal("1200"), ["html", "css"],
                       course_id="web")
    return store, catalog


def _create_batch(catalog, **kwargs):
    params = dict(course_id="web", name="Web 1", instructor_id="dozent-1",
                  start_date=date(2025, 3, 3), end_date=date(2025, 3, 31),
                  slots=SLOTS, batch_id="b1")
    params.update(kwargs)
    return catalog.create_batch(ADMIN, **params)


class TestCourses:
    def test_add_course(self):
        store, _ = _make_catalog()
        course = store.get_course("web")
        assert course.fee == Decimal("1200")
        assert course.subject_count == 2

    def test_fee_must_be_positive(self):
        _, catalog = _make_catalog()
        with pytest.raises(InvalidInput):
            catalog.add_course(ADMIN, "Gratis", Decimal("0"))

    def test_student_may_not_add_course(self):
        _, catalog = _make_catalog()
        with pytest.raises(PermissionDenied):
            catalog.add_course(STUDENT, "Hack", Decimal("10"))

    def test_set_and_remove_discount(self):
        store, catalog = _make_catalog()
        discount = Discount(percentage=Decimal(10), start_at=T0, end_at=T0 + timedelta(days=5))
        assert catalog.set_discount(ADMIN, "web", discount).discount.percentage == Decimal(10)
        assert catalog.set_discount(ADMIN, "web", None).discount is None

    def test_invalid_discount_not_stored(self):
        store, catalog = _make_catalog()
        bad = Discount(percentage=Decimal(110), start_at=T0, end_at=T0 + timedelta(days=5))
        with pytest.raises(InvalidDiscount):
            catalog.set_discount(ADMIN, "web", bad)
        assert store.get_course("web").discount is None

    def test_naive_discount_not_stored(self):
        """Rabatt ohne Zeitzone wird beim Schreiben abgelehnt; der Preis bleibt abrufbar."""
        store, catalog = _make_catalog()
        naive = Discount(percentage=Decimal(20), start_at=datetime(2025, 1, 1),
                         end_at=datetime(2025, 1, 8))
        with pytest.raises(InvalidDiscount):
            catalog.add_course(ADMIN, "Design", Decimal("900"), discount=naive)
        with pytest.raises(InvalidDiscount):
            catalog.set_discount(ADMIN, "web", naive)
        course = store.get_course("web")
        assert course.discount is None
        assert PricingEngine().effective_price(course) == Decimal("1200.00")

    def test_discount_on_unknown_course(self):
        _, catalog = _make_catalog()
        with pytest.raises(CourseNotFound):
            catalog.set_discount(ADMIN, "nope", None)


class TestBatches:
    def test_create_batch_default_capacity_and_sessions(self):
        config = InstituteConfig(enrollment=EnrollmentConfig(default_max_students=12))
        store, catalog = _make_catalog(config)
        batch = _create_batch(catalog)
        assert batch.max_students == 12
        assert len(batch.sessions) == 5

    def test_create_batch_lazy_sessions(self):
        config = InstituteConfig(schedule=ScheduleConfig(materialize_on_create=False))
        store, catalog = _make_catalog(config)
        assert _create_batch(catalog).sessions == []

    def test_invalid_range(self):
        _, catalog = _make_catalog()
        with pytest.raises(InvalidRange):
            _create_batch(catalog, start_date=date(2025, 4, 1), end_date=date(2025, 3, 1))

    def test_invalid_slot_times(self):
        _, catalog = _make_catalog()
        bad = [ScheduleSlot(day_of_week=2, start_time=time(19), end_time=time(18))]
        with pytest.raises(InvalidRange):
            _create_batch(catalog, slots=bad)

    def test_zero_capacity(self):
        _, catalog = _make_catalog()
        with pytest.raises(InvalidCapacity):
            _create_batch(catalog, max_students=0)

    def test_unknown_course(self):
        _, catalog = _make_catalog()
        with pytest.raises(CourseNotFound):
            _create_batch(catalog, course_id="nope")

    def test_capacity_not_below_active(self):
        store, catalog = _make_catalog()
        _create_batch(catalog, max_students=3)
        EnrollmentManager(store).enroll_many(["A", "B"], "b1")
        with pytest.raises(InvalidCapacity):
            catalog.update_capacity(ADMIN, "b1", 1)
        assert catalog.update_capacity(ADMIN, "b1", 2).max_students == 2

    def test_deactivate_blocks_enrollment(self):
        store, catalog = _make_catalog()
        _create_batch(catalog)
        catalog.deactivate_batch(ADMIN, "b1")
        with pytest.raises(BatchInactive):
            EnrollmentManager(store).enroll("A", "b1")

    def test_delete_refused_with_active_students(self):
        store, catalog = _make_catalog()
        _create_batch(catalog)
        manager = EnrollmentManager(store)
        manager.enroll("A", "b1")
        with pytest.raises(StateConflict):
            catalog.delete_batch(ADMIN, "b1")
        manager.withdraw("A", "b1")
        catalog.delete_batch(ADMIN, "b1")
        with pytest.raises(BatchNotFound):
            store.get_batch("b1")

    def test_status_change_after_batch_deleted(self):
        """Austritt, Gruppe gelöscht, dann Abbruch: gelingt ohne BatchNotFound."""
        store, catalog = _make_catalog()
        _create_batch(catalog)
        manager = EnrollmentManager(store)
        enrollment = manager.enroll("A", "b1")
        manager.withdraw("A", "b1")
        catalog.delete_batch(ADMIN, "b1")
        result = manager.change_status(enrollment.id, "dropped", ADMIN)
        assert result.status == EnrollmentStatus.DROPPED
        stored = store.get_enrollment(enrollment.id)
        assert stored.status == EnrollmentStatus.DROPPED
        assert len(stored.status_history) == 1
