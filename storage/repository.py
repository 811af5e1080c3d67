"""In-Process-Speicher mit bedingten Schreibzugriffen.

Ein Datensatz pro Kurs, Gruppe (inkl. Slots, Terminen, Anwesenheiten) und
Einschreibung (inkl. Historie). Lesezugriffe liefern tiefe Kopien, Schreibzugriffe
gelingen nur, wenn die Version des Datensatzes unverändert ist.

Gruppen haben zusätzlich eine eigene Sperre: batch_transaction() bildet ein
atomares Lesen-Ändern-Schreiben, das die Kapazitätsprüfung unter
Nebenläufigkeit absichert.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from engine.errors import (
    BatchNotFound,
    CourseNotFound,
    EnrollmentNotFound,
    Unavailable,
    VersionConflict,
)
from models.batch import Batch
from models.course import Course
from models.enrollment import Enrollment
from models.institute_data import InstituteData

logger = logging.getLogger(__name__)


class InstituteStore:
    """Transaktionaler Speicher für Kurse, Gruppen und Einschreibungen.

    Verwendung:
        store = InstituteStore()
        with store.batch_transaction("b1") as batch:
            batch.enrolled_students.append(...)
    """

    def __init__(self, data: Optional[InstituteData] = None) -> None:
        self._courses: dict[str, Course] = {}
        self._batches: dict[str, Batch] = {}
        self._enrollments: dict[str, Enrollment] = {}
        self._guard = threading.RLock()
        self._batch_locks: dict[str, threading.RLock] = {}
        self._available = True
        self._created_at = data.created_at if data is not None else None

        if data is not None:
            for c in data.courses:
                self._courses[c.id] = c.model_copy(deep=True)
            for b in data.batches:
                self._batches[b.id] = b.model_copy(deep=True)
            for e in data.enrollments:
                self._enrollments[e.id] = e.model_copy(deep=True)

    # ─── Verfügbarkeit ────────────────────────────────────────────────────────

    def set_available(self, available: bool) -> None:
        """Schaltet den Speicher (z.B. in Tests) offline bzw. wieder online."""
        self._available = available

    def _ensure_available(self) -> None:
        if not self._available:
            raise Unavailable("Speicher vorübergehend nicht erreichbar")

    @staticmethod
    def new_id(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"

    # ─── Kurse ────────────────────────────────────────────────────────────────

    def get_course(self, course_id: str) -> Course:
        self._ensure_available()
        with self._guard:
            course = self._courses.get(course_id)
            if course is None:
                raise CourseNotFound(f"Kurs nicht gefunden: {course_id}",
                                     course_id=course_id)
            return course.model_copy(deep=True)

    def list_courses(self) -> list[Course]:
        self._ensure_available()
        with self._guard:
            return [c.model_copy(deep=True) for c in self._courses.values()]

    def put_course(self, course: Course) -> Course:
        self._ensure_available()
        with self._guard:
            stored = self._courses.get(course.id)
            self._check_version("Kurs", course.id, stored, course.version)
            saved = course.model_copy(update={"version": course.version + 1}, deep=True)
            self._courses[course.id] = saved
            return saved.model_copy(deep=True)

    # ─── Gruppen ──────────────────────────────────────────────────────────────

    def _lock_for(self, batch_id: str) -> threading.RLock:
        with self._guard:
            lock = self._batch_locks.get(batch_id)
            if lock is None:
                lock = threading.RLock()
                self._batch_locks[batch_id] = lock
            return lock

    def get_batch(self, batch_id: str) -> Batch:
        self._ensure_available()
        with self._guard:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise BatchNotFound(f"Gruppe nicht gefunden: {batch_id}",
                                    batch_id=batch_id)
            return batch.model_copy(deep=True)

    def list_batches(self, course_id: Optional[str] = None) -> list[Batch]:
        self._ensure_available()
        with self._guard:
            return [
                b.model_copy(deep=True) for b in self._batches.values()
                if course_id is None or b.course_id == course_id
            ]

    def put_batch(self, batch: Batch) -> Batch:
        """Bedingtes Schreiben: gelingt nur bei unveränderter Version."""
        self._ensure_available()
        with self._lock_for(batch.id), self._guard:
            stored = self._batches.get(batch.id)
            self._check_version("Gruppe", batch.id, stored, batch.version)
            saved = batch.model_copy(update={"version": batch.version + 1}, deep=True)
            self._batches[batch.id] = saved
            return saved.model_copy(deep=True)

    def delete_batch(self, batch_id: str, expected_version: Optional[int] = None) -> None:
        """Gruppe entfernen; mit expected_version nur bei unveränderter Version."""
        self._ensure_available()
        with self._lock_for(batch_id), self._guard:
            stored = self._batches.get(batch_id)
            if stored is None:
                raise BatchNotFound(f"Gruppe nicht gefunden: {batch_id}",
                                    batch_id=batch_id)
            if expected_version is not None:
                self._check_version("Gruppe", batch_id, stored, expected_version)
            del self._batches[batch_id]

    @contextmanager
    def batch_transaction(self, batch_id: str) -> Iterator[Batch]:
        """Atomares Lesen-Ändern-Schreiben einer Gruppe.

        Die Sperre der Gruppe wird für die gesamte Dauer gehalten. Wirft der
        Block eine Ausnahme, wird nichts geschrieben.
        """
        with self._lock_for(batch_id):
            batch = self.get_batch(batch_id)
            yield batch
            self.put_batch(batch)

    # ─── Einschreibungen ──────────────────────────────────────────────────────

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        self._ensure_available()
        with self._guard:
            enrollment = self._enrollments.get(enrollment_id)
            if enrollment is None:
                raise EnrollmentNotFound(
                    f"Einschreibung nicht gefunden: {enrollment_id}",
                    enrollment_id=enrollment_id,
                )
            return enrollment.model_copy(deep=True)

    def find_enrollments(
        self,
        student_id: Optional[str] = None,
        course_id: Optional[str] = None,
    ) -> list[Enrollment]:
        """Einschreibungen nach Teilnehmer und/oder Kurs, älteste zuerst."""
        self._ensure_available()
        with self._guard:
            found = [
                e.model_copy(deep=True) for e in self._enrollments.values()
                if (student_id is None or e.student_id == student_id)
                and (course_id is None or e.course_id == course_id)
            ]
        return sorted(found, key=lambda e: e.enrolled_at)

    def put_enrollment(self, enrollment: Enrollment) -> Enrollment:
        """Bedingtes Schreiben (optimistische Versionierung)."""
        self._ensure_available()
        with self._guard:
            stored = self._enrollments.get(enrollment.id)
            self._check_version("Einschreibung", enrollment.id, stored,
                                enrollment.version)
            saved = enrollment.model_copy(
                update={"version": enrollment.version + 1}, deep=True)
            self._enrollments[enrollment.id] = saved
            return saved.model_copy(deep=True)

    def delete_enrollment(self, enrollment_id: str) -> None:
        self._ensure_available()
        with self._guard:
            self._enrollments.pop(enrollment_id, None)

    # ─── Hilfsfunktionen ──────────────────────────────────────────────────────

    @staticmethod
    def _check_version(kind: str, record_id: str, stored, version: int) -> None:
        expected = stored.version if stored is not None else 0
        if version != expected:
            logger.warning(
                f"Versionskonflikt {kind} {record_id}: "
                f"erwartet {expected}, erhalten {version}"
            )
            raise VersionConflict(
                f"{kind} {record_id} wurde zwischenzeitlich geändert",
                record_id=record_id,
            )

    # ─── Persistenz ───────────────────────────────────────────────────────────

    def snapshot(self) -> InstituteData:
        self._ensure_available()
        with self._guard:
            return InstituteData(
                courses=[c.model_copy(deep=True) for c in self._courses.values()],
                batches=[b.model_copy(deep=True) for b in self._batches.values()],
                enrollments=[e.model_copy(deep=True) for e in self._enrollments.values()],
                created_at=self._created_at,
            )

    def save_json(self, path: Path) -> None:
        self.snapshot().save_json(path)

    @classmethod
    def load_json(cls, path: Path) -> "InstituteStore":
        return cls(InstituteData.load_json(path))
