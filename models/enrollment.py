"""Datenmodell für die kursbezogene Einschreibung (Pydantic v2)."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    DROPPED = "dropped"


class StatusChange(BaseModel):
    """Ein Eintrag der Statushistorie (nur anhängen, nie ändern)."""

    status: EnrollmentStatus
    changed_at: datetime
    changed_by: str
    reason: str = ""


class Enrollment(BaseModel):
    """Teilnahme eines Teilnehmers an einem Kurs.

    Status wird ausschließlich über EnrollmentManager.change_status geändert.
    """

    id: str
    student_id: str
    course_id: str
    batch_id: Optional[str] = None       # zuletzt belegte Gruppe
    enrolled_at: datetime
    amount_owed: Decimal                 # effektiver Preis zum Einschreibezeitpunkt
    progress: float = 0.0                # 0–100
    completed_subjects: set[str] = set()
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    completed_at: Optional[datetime] = None
    status_history: list[StatusChange] = []
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (EnrollmentStatus.COMPLETED, EnrollmentStatus.DROPPED)
