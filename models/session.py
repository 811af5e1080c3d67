"""Datenmodell für einzelne Termine und Anwesenheiten (Pydantic v2)."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


# Slot-Schlüssel-Präfix für Einzeltermine außerhalb des Wochenplans
EXTRA_SLOT_PREFIX = "extra"

# Status, aus denen ein Termin nicht mehr herauskommt
FINAL_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})


class AttendanceRecord(BaseModel):
    """Anwesenheit eines Teilnehmers bei genau einem Termin."""

    student_id: str
    status: AttendanceStatus = AttendanceStatus.ABSENT
    join_at: Optional[datetime] = None    # nur bei Online-Terminen sinnvoll
    leave_at: Optional[datetime] = None
    recorded_by: Optional[str] = None


class ClassSession(BaseModel):
    """Ein konkreter, datierter Termin aus einem wöchentlichen Slot.

    Statusverlauf: scheduled → ongoing → completed, oder → cancelled.
    Aus completed/cancelled gibt es keinen Weg zurück.
    """

    id: str                          # "<batch_id>/<datum>/<slot_key>"
    slot_key: str                    # Herkunfts-Slot, Teil der Eindeutigkeit
    date: date
    start_time: time
    end_time: time
    subject_id: Optional[str] = None
    status: SessionStatus = SessionStatus.SCHEDULED
    meeting_link: Optional[str] = None
    recording_url: Optional[str] = None
    attendance: list[AttendanceRecord] = []

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_SESSION_STATUSES

    @property
    def is_extra(self) -> bool:
        """Einzeltermin, nicht aus einem Wochen-Slot erzeugt."""
        return self.slot_key.startswith(EXTRA_SLOT_PREFIX)

    @property
    def has_attendance(self) -> bool:
        return bool(self.attendance)

    def record_for(self, student_id: str) -> Optional[AttendanceRecord]:
        """Anwesenheitseintrag eines Teilnehmers oder None."""
        return next((r for r in self.attendance if r.student_id == student_id), None)
