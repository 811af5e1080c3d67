"""Datenmodell für eine Kursgruppe mit Wochenplan (Pydantic v2)."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.session import ClassSession


class SeatStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class ScheduleSlot(BaseModel):
    """Ein wöchentlich wiederkehrender Slot."""

    day_of_week: int = Field(ge=0, le=6)   # 0=So, 1=Mo .. 6=Sa
    start_time: time
    end_time: time
    subject_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Stabiler Bezeichner, z.B. "0-1800-1930" oder "2-0900-1030-sub1"."""
        base = f"{self.day_of_week}-{self.start_time:%H%M}-{self.end_time:%H%M}"
        return f"{base}-{self.subject_id}" if self.subject_id else base


class EnrolledStudent(BaseModel):
    """Platz eines Teilnehmers in der Gruppe."""

    student_id: str
    enrolled_at: datetime
    status: SeatStatus = SeatStatus.ACTIVE


class Batch(BaseModel):
    """Kursgruppe: besitzt ihre Slots und ihre materialisierten Termine.

    WICHTIG: Anzahl der Plätze mit status=active ≤ max_students, zu jedem Zeitpunkt.
    Die Prüfung passiert atomar im Speicher (siehe storage.repository).
    """

    id: str
    name: str
    course_id: str
    instructor_id: str
    schedule: list[ScheduleSlot] = []
    start_date: date
    end_date: date
    max_students: int
    enrolled_students: list[EnrolledStudent] = []
    sessions: list[ClassSession] = []
    is_active: bool = True
    version: int = 0

    # ─── Abfragen ───

    @property
    def active_count(self) -> int:
        return sum(1 for e in self.enrolled_students if e.status == SeatStatus.ACTIVE)

    @property
    def free_seats(self) -> int:
        return max(0, self.max_students - self.active_count)

    def seat_of(self, student_id: str) -> Optional[EnrolledStudent]:
        """Jüngster Platz-Eintrag eines Teilnehmers oder None."""
        for entry in reversed(self.enrolled_students):
            if entry.student_id == student_id:
                return entry
        return None

    def has_active_seat(self, student_id: str) -> bool:
        return any(
            e.student_id == student_id and e.status == SeatStatus.ACTIVE
            for e in self.enrolled_students
        )

    def active_student_ids(self) -> list[str]:
        return [e.student_id for e in self.enrolled_students
                if e.status == SeatStatus.ACTIVE]

    def get_session(self, session_id: str) -> Optional[ClassSession]:
        return next((s for s in self.sessions if s.id == session_id), None)
