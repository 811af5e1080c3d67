"""Einschreibungs-Manager: Kapazität, Statusübergänge und Historie.

Nebenläufigkeit:
  - enroll/enroll_many/withdraw laufen in einer batch_transaction, d.h. unter
    der Sperre der Gruppe. Prüfen und Anhängen sind damit ein atomarer Schritt.
  - Statusänderungen an einer Einschreibung nutzen optimistische Versionierung;
    ein Versionskonflikt wird mit frischem Lesestand wiederholt
    (EnrollmentConfig.version_retry_limit, Standard: einmal).
"""

import logging
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Callable, Optional, Union

from config.defaults import ENROLLMENT_TRANSITIONS
from config.schema import EnrollmentConfig, ScheduleConfig
from engine.access import require_staff
from engine.clock import Clock, as_aware, utc_now
from engine.errors import (
    AlreadyEnrolled,
    BatchInactive,
    BatchNotFound,
    CapacityExceeded,
    InvalidTransition,
    StudentNotInBatch,
    VersionConflict,
)
from engine.pricing import PricingEngine
from models.actor import Actor
from models.batch import Batch, EnrolledStudent, SeatStatus
from models.enrollment import Enrollment, EnrollmentStatus, StatusChange
from storage.repository import InstituteStore

logger = logging.getLogger(__name__)


class EnrollmentManager:
    """Schreibt Plätze in Gruppen und kursbezogene Einschreibungen."""

    def __init__(
        self,
        store: InstituteStore,
        pricing: Optional[PricingEngine] = None,
        config: Optional[EnrollmentConfig] = None,
        clock: Clock = utc_now,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.store = store
        self.tz = tz or ScheduleConfig().tzinfo
        self.pricing = pricing or PricingEngine(clock=clock, tz=self.tz)
        self.config = config or EnrollmentConfig()
        self.clock = clock

    def _instant(self, at: Optional[datetime]) -> datetime:
        return as_aware(at or self.clock(), self.tz)

    # ─── Einschreiben ─────────────────────────────────────────────────────────

    def enroll(self, student_id: str, batch_id: str,
               at: Optional[datetime] = None) -> Enrollment:
        """Platz in der Gruppe belegen und Kurs-Einschreibung anlegen/aktualisieren.

        Fehler: BatchInactive, AlreadyEnrolled, CapacityExceeded.
        """
        at = self._instant(at)
        with self.store.batch_transaction(batch_id) as batch:
            self._check_joinable(batch, student_id)
            self._check_no_other_seat(batch, student_id)
            if batch.active_count >= batch.max_students:
                logger.warning(f"Gruppe {batch_id} voll: {student_id} abgewiesen")
                raise CapacityExceeded(
                    f"Gruppe {batch_id} ist voll ({batch.max_students} Plätze)",
                    batch_id=batch_id, student_id=student_id,
                )
            course = self.store.get_course(batch.course_id)
            price = self.pricing.effective_price(course, at)
            batch.enrolled_students.append(
                EnrolledStudent(student_id=student_id, enrolled_at=at))
            enrollment = self._upsert_course_enrollment(student_id, batch, price, at)

        logger.info(f"{student_id} in Gruppe {batch_id} eingeschrieben "
                    f"(Preis {price}, Einschreibung {enrollment.id})")
        return enrollment

    def enroll_many(self, student_ids: list[str], batch_id: str,
                    at: Optional[datetime] = None) -> list[Enrollment]:
        """Mehrere Teilnehmer auf einmal hinzufügen – alles oder nichts.

        Teilnehmer mit aktivem Platz werden übersprungen.
        """
        at = self._instant(at)
        with self.store.batch_transaction(batch_id) as batch:
            if not batch.is_active:
                raise BatchInactive(f"Gruppe {batch_id} ist nicht aktiv",
                                    batch_id=batch_id)
            new_ids = [
                sid for sid in dict.fromkeys(student_ids)
                if not batch.has_active_seat(sid)
            ]
            for sid in new_ids:
                self._check_no_other_seat(batch, sid)
            free = batch.max_students - batch.active_count
            if len(new_ids) > free:
                raise CapacityExceeded(
                    f"Kapazität überschritten: nur noch {max(free, 0)} Plätze frei "
                    f"({len(new_ids)} angefragt)",
                    batch_id=batch_id,
                )
            course = self.store.get_course(batch.course_id)
            price = self.pricing.effective_price(course, at)
            enrollments = []
            for sid in new_ids:
                batch.enrolled_students.append(
                    EnrolledStudent(student_id=sid, enrolled_at=at))
                enrollments.append(self._upsert_course_enrollment(sid, batch, price, at))

        logger.info(f"Gruppe {batch_id}: {len(enrollments)} Teilnehmer hinzugefügt")
        return enrollments

    def _check_joinable(self, batch: Batch, student_id: str) -> None:
        if not batch.is_active:
            raise BatchInactive(f"Gruppe {batch.id} ist nicht aktiv",
                                batch_id=batch.id)
        if batch.has_active_seat(student_id):
            raise AlreadyEnrolled(
                f"{student_id} ist bereits aktiv in Gruppe {batch.id}",
                batch_id=batch.id, student_id=student_id,
            )

    def _check_no_other_seat(self, batch: Batch, student_id: str) -> None:
        """Ein Kurs, ein aktiver Platz: Wechsel nur nach Austritt aus der alten Gruppe."""
        current = self.find_enrollment(student_id, batch.course_id)
        if current is None or current.is_terminal or current.batch_id in (None, batch.id):
            return
        try:
            previous = self.store.get_batch(current.batch_id)
        except BatchNotFound:
            return
        if previous.has_active_seat(student_id):
            raise AlreadyEnrolled(
                f"{student_id} ist bereits aktiv in Gruppe {previous.id} desselben "
                f"Kurses; zuerst dort austreten",
                batch_id=batch.id, student_id=student_id,
            )

    def _upsert_course_enrollment(self, student_id: str, batch: Batch,
                                  price: Decimal, at: datetime) -> Enrollment:
        """Offene Einschreibung (active/suspended) weiterführen, sonst neu anlegen.

        Abgeschlossene oder abgebrochene Einschreibungen werden nie reaktiviert.
        """
        current = self.find_enrollment(student_id, batch.course_id)
        if current is not None and not current.is_terminal:
            def _rebind(e: Enrollment) -> None:
                e.batch_id = batch.id
                e.amount_owed = price
            return self._update(current.id, _rebind)

        enrollment = Enrollment(
            id=self.store.new_id("enr"),
            student_id=student_id,
            course_id=batch.course_id,
            batch_id=batch.id,
            enrolled_at=at,
            amount_owed=price,
        )
        return self.store.put_enrollment(enrollment)

    # ─── Austreten ────────────────────────────────────────────────────────────

    def withdraw(self, student_id: str, batch_id: str) -> EnrolledStudent:
        """Platz freigeben. Die Kurs-Einschreibung bleibt unverändert."""
        with self.store.batch_transaction(batch_id) as batch:
            seat = next(
                (e for e in batch.enrolled_students
                 if e.student_id == student_id and e.status == SeatStatus.ACTIVE),
                None,
            )
            if seat is None:
                raise StudentNotInBatch(
                    f"{student_id} hat keinen aktiven Platz in Gruppe {batch_id}",
                    batch_id=batch_id, student_id=student_id,
                )
            seat.status = SeatStatus.INACTIVE
        logger.info(f"{student_id} aus Gruppe {batch_id} ausgetreten")
        return seat

    # ─── Statusänderung ───────────────────────────────────────────────────────

    def change_status(
        self,
        enrollment_id: str,
        new_status: Union[EnrollmentStatus, str],
        actor: Actor,
        reason: str = "",
        at: Optional[datetime] = None,
    ) -> Enrollment:
        """Einziger Schreiber des Status. Hängt immer einen Historien-Eintrag an.

        Fehler: InvalidTransition (Historie bleibt unverändert), PermissionDenied.
        """
        require_staff(actor, "Status ändern")
        at = self._instant(at)
        try:
            target = EnrollmentStatus(new_status)
        except ValueError as e:
            raise InvalidTransition(f"Unbekannter Status: {new_status}") from e

        def _transition(e: Enrollment) -> None:
            allowed = ENROLLMENT_TRANSITIONS[e.status.value]
            if target.value not in allowed:
                raise InvalidTransition(
                    f"Übergang {e.status.value} → {target.value} nicht erlaubt",
                    enrollment_id=e.id,
                )
            e.status = target
            if target == EnrollmentStatus.COMPLETED:
                e.completed_at = at
            e.status_history.append(StatusChange(
                status=target, changed_at=at, changed_by=actor.id, reason=reason,
            ))

        try:
            enrollment = self._update(enrollment_id, _transition)
        except InvalidTransition:
            logger.warning(f"Einschreibung {enrollment_id}: Übergang nach "
                           f"{target.value} abgelehnt")
            raise

        logger.info(f"Einschreibung {enrollment_id}: Status → {target.value} "
                    f"durch {actor}")
        self._release_seat(enrollment)
        return enrollment

    def _release_seat(self, enrollment: Enrollment) -> None:
        """Bei completed/dropped den aktiven Platz der zuletzt belegten Gruppe räumen."""
        if not enrollment.is_terminal or enrollment.batch_id is None:
            return
        seat_status = (SeatStatus.COMPLETED
                       if enrollment.status == EnrollmentStatus.COMPLETED
                       else SeatStatus.INACTIVE)
        try:
            with self.store.batch_transaction(enrollment.batch_id) as batch:
                for seat in batch.enrolled_students:
                    if (seat.student_id == enrollment.student_id
                            and seat.status == SeatStatus.ACTIVE):
                        seat.status = seat_status
        except BatchNotFound:
            # Gruppe wurde nach dem Austritt gelöscht: kein Platz mehr zu räumen
            logger.info(f"Einschreibung {enrollment.id}: Gruppe "
                        f"{enrollment.batch_id} existiert nicht mehr")

    # ─── Versionierte Updates ─────────────────────────────────────────────────

    def _update(self, enrollment_id: str,
                mutate: Callable[[Enrollment], None]) -> Enrollment:
        """Lesen → ändern → bedingt schreiben; bei Versionskonflikt neu lesen."""
        attempts = self.config.version_retry_limit + 1
        for attempt in range(1, attempts + 1):
            enrollment = self.store.get_enrollment(enrollment_id)
            mutate(enrollment)
            try:
                return self.store.put_enrollment(enrollment)
            except VersionConflict:
                if attempt == attempts:
                    raise
                logger.warning(f"Einschreibung {enrollment_id}: Versionskonflikt, "
                               f"Versuch {attempt + 1}/{attempts}")

    def update(self, enrollment_id: str,
               mutate: Callable[[Enrollment], None]) -> Enrollment:
        """Öffentlicher Zugang für andere Engines (Fortschritt, Fächer).

        Der Status darf hier nicht verändert werden.
        """
        def _guarded(e: Enrollment) -> None:
            before = e.status
            mutate(e)
            if e.status != before:
                raise InvalidTransition("Status nur über change_status änderbar")
        return self._update(enrollment_id, _guarded)

    # ─── Abfragen ─────────────────────────────────────────────────────────────

    def find_enrollment(self, student_id: str, course_id: str) -> Optional[Enrollment]:
        """Jüngste Einschreibung eines Teilnehmers in einem Kurs."""
        found = self.store.find_enrollments(student_id=student_id, course_id=course_id)
        return found[-1] if found else None

    def enrollments_for_student(self, student_id: str) -> list[Enrollment]:
        return self.store.find_enrollments(student_id=student_id)
