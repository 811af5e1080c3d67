"""Fortschritt einer Einschreibung.

compute_progress() ist rein und schreibt nichts. Persistiert wird nur über
refresh_progress(), damit Lesen und Schreiben getrennt bleiben.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from config.schema import ProgressConfig
from engine.attendance import AttendanceTracker
from engine.enrollment import EnrollmentManager
from models.actor import SYSTEM_ACTOR
from models.batch import Batch
from models.enrollment import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)


def compute_progress(enrollment: Enrollment, course_subject_count: int,
                     attendance_pct: float = 0.0) -> float:
    """Anteil abgeschlossener Fächer in Prozent, begrenzt auf [0, 100].

    Kurse ohne Fächer fallen auf die Anwesenheitsquote zurück.
    """
    if course_subject_count > 0:
        pct = len(enrollment.completed_subjects) / course_subject_count * 100
    else:
        pct = attendance_pct
    return max(0.0, min(100.0, pct))


class ProgressAggregator:
    """Fächer abhaken und Fortschritt über den EnrollmentManager speichern."""

    def __init__(
        self,
        enrollments: EnrollmentManager,
        attendance: Optional[AttendanceTracker] = None,
        config: Optional[ProgressConfig] = None,
    ) -> None:
        self.enrollments = enrollments
        self.attendance = attendance or AttendanceTracker(enrollments.store)
        self.config = config or ProgressConfig()

    def compute_progress(self, enrollment: Enrollment, course_subject_count: int,
                         attendance_pct: float = 0.0) -> float:
        return compute_progress(enrollment, course_subject_count, attendance_pct)

    def mark_subject_completed(self, enrollment_id: str, subject_id: str) -> Enrollment:
        def _add(e: Enrollment) -> None:
            e.completed_subjects.add(subject_id)
        enrollment = self.enrollments.update(enrollment_id, _add)
        logger.info(f"Einschreibung {enrollment_id}: Fach {subject_id} abgeschlossen")
        return enrollment

    def refresh_progress(
        self,
        enrollment_id: str,
        course_subject_count: Optional[int] = None,
        batches: Optional[Iterable[Batch]] = None,
    ) -> Enrollment:
        """Fortschritt berechnen und speichern.

        Ohne Angaben werden Fächerzahl und Gruppen aus dem Speicher gelesen.
        Mit progress.auto_complete wird eine aktive Einschreibung bei 100 %
        über change_status abgeschlossen.
        """
        store = self.enrollments.store
        enrollment = store.get_enrollment(enrollment_id)
        if course_subject_count is None:
            course_subject_count = store.get_course(enrollment.course_id).subject_count
        if batches is None:
            batches = store.list_batches(course_id=enrollment.course_id)

        attendance_pct = self.attendance.attendance_percentage(
            enrollment.student_id, list(batches))
        progress = compute_progress(enrollment, course_subject_count, attendance_pct)

        def _set(e: Enrollment) -> None:
            e.progress = progress
        enrollment = self.enrollments.update(enrollment_id, _set)

        if (self.config.auto_complete and progress >= 100.0
                and enrollment.status == EnrollmentStatus.ACTIVE):
            logger.info(f"Einschreibung {enrollment_id}: 100 % erreicht, wird abgeschlossen")
            enrollment = self.enrollments.change_status(
                enrollment_id, EnrollmentStatus.COMPLETED, SYSTEM_ACTOR,
                reason="Fortschritt 100 %",
            )
        return enrollment
