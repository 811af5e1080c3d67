"""Katalogpflege: Kurse, Rabatte und Gruppen anlegen bzw. ändern.

Alle Schreibzugriffe laufen über die Validierung in engine.validation;
nur Admins und Dozenten dürfen schreiben.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from config.schema import InstituteConfig
from engine.access import require_staff
from engine.errors import StateConflict
from engine.schedule import ScheduleGenerator
from engine.validation import (
    validate_batch,
    validate_capacity,
    validate_course,
    validate_discount,
)
from models.actor import Actor
from models.batch import Batch, ScheduleSlot
from models.course import Course, Discount
from storage.repository import InstituteStore

logger = logging.getLogger(__name__)


class CatalogService:
    """Schreibende Katalog-Operationen.

    Verwendung:
        catalog = CatalogService(store, config)
        course = catalog.add_course(actor, "Webentwicklung", Decimal("1200"))
        batch = catalog.create_batch(actor, course.id, "WEB-1", "dozent-1",
                                     date(2025, 3, 3), date(2025, 6, 27), slots)
    """

    def __init__(self, store: InstituteStore,
                 config: Optional[InstituteConfig] = None,
                 schedule: Optional[ScheduleGenerator] = None) -> None:
        self.store = store
        self.config = config or InstituteConfig()
        self.schedule = schedule or ScheduleGenerator(store, self.config.schedule)

    # ─── Kurse ────────────────────────────────────────────────────────────────

    def add_course(
        self,
        actor: Actor,
        name: str,
        fee: Decimal,
        subject_ids: Optional[list[str]] = None,
        discount: Optional[Discount] = None,
        course_id: Optional[str] = None,
    ) -> Course:
        require_staff(actor, "Kurs anlegen")
        course = Course(
            id=course_id or self.store.new_id("crs"),
            name=name,
            fee=Decimal(fee),
            discount=discount,
            subject_ids=list(subject_ids or []),
        )
        validate_course(course)
        saved = self.store.put_course(course)
        logger.info(f"Kurs {saved.id} ({name}) angelegt, Gebühr {saved.fee}")
        return saved

    def set_discount(self, actor: Actor, course_id: str,
                     discount: Optional[Discount]) -> Course:
        """Rabatt setzen oder mit None entfernen."""
        require_staff(actor, "Rabatt setzen")
        validate_discount(discount)
        course = self.store.get_course(course_id)
        course.discount = discount
        saved = self.store.put_course(course)
        if discount is None:
            logger.info(f"Kurs {course_id}: Rabatt entfernt")
        else:
            logger.info(f"Kurs {course_id}: Rabatt {discount.percentage}% "
                        f"{discount.start_at:%d.%m.%Y} – {discount.end_at:%d.%m.%Y}")
        return saved

    # ─── Gruppen ──────────────────────────────────────────────────────────────

    def create_batch(
        self,
        actor: Actor,
        course_id: str,
        name: str,
        instructor_id: str,
        start_date: date,
        end_date: date,
        slots: list[ScheduleSlot],
        max_students: Optional[int] = None,
        batch_id: Optional[str] = None,
    ) -> Batch:
        """Gruppe anlegen. Kapazität ohne Angabe aus der Konfiguration.

        Mit schedule.materialize_on_create werden die Termine sofort erzeugt,
        sonst beim ersten Abruf.
        """
        require_staff(actor, "Gruppe anlegen")
        self.store.get_course(course_id)
        batch = Batch(
            id=batch_id or self.store.new_id("grp"),
            name=name,
            course_id=course_id,
            instructor_id=instructor_id,
            schedule=list(slots),
            start_date=start_date,
            end_date=end_date,
            max_students=(max_students if max_students is not None
                          else self.config.enrollment.default_max_students),
        )
        validate_batch(batch)
        if self.config.schedule.materialize_on_create:
            self.schedule.materialize_sessions(batch)
        saved = self.store.put_batch(batch)
        logger.info(f"Gruppe {saved.id} ({name}) für Kurs {course_id} angelegt, "
                    f"{saved.max_students} Plätze, {len(saved.sessions)} Termine")
        return saved

    def update_capacity(self, actor: Actor, batch_id: str, max_students: int) -> Batch:
        require_staff(actor, "Kapazität ändern")
        with self.store.batch_transaction(batch_id) as batch:
            validate_capacity(max_students, batch.active_count)
            batch.max_students = max_students
        logger.info(f"Gruppe {batch_id}: Kapazität → {max_students}")
        return self.store.get_batch(batch_id)

    def deactivate_batch(self, actor: Actor, batch_id: str) -> Batch:
        """Weiches Löschen: keine neuen Einschreibungen, Daten bleiben erhalten."""
        require_staff(actor, "Gruppe deaktivieren")
        with self.store.batch_transaction(batch_id) as batch:
            batch.is_active = False
        logger.info(f"Gruppe {batch_id} deaktiviert")
        return self.store.get_batch(batch_id)

    def delete_batch(self, actor: Actor, batch_id: str) -> None:
        """Hartes Löschen, nur ohne aktive Teilnehmer."""
        require_staff(actor, "Gruppe löschen")
        batch = self.store.get_batch(batch_id)
        if batch.active_count:
            raise StateConflict(
                f"Gruppe {batch_id} hat noch {batch.active_count} aktive "
                f"Teilnehmer",
                batch_id=batch_id,
            )
        self.store.delete_batch(batch_id, expected_version=batch.version)
        logger.info(f"Gruppe {batch_id} gelöscht")
