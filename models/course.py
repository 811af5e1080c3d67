"""Datenmodell für einen Kurs mit zeitlich begrenztem Rabatt (Pydantic v2)."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class Discount(BaseModel):
    """Rabatt-Fenster eines Kurses.

    Gültig NUR wenn is_active=True UND der Zeitpunkt in [start_at, end_at] liegt
    (beide Grenzen inklusive). Wohlgeformtheit (0 ≤ percentage ≤ 100,
    start_at ≤ end_at) wird beim Schreiben geprüft, nicht hier.
    """

    percentage: Decimal   # 0–100
    is_active: bool = True
    start_at: datetime
    end_at: datetime

    def covers(self, at: datetime) -> bool:
        """True wenn der Rabatt zum Zeitpunkt `at` gilt."""
        return self.is_active and self.start_at <= at <= self.end_at


class Course(BaseModel):
    """Kurs aus dem Katalog. Wird von Gruppen und Einschreibungen nur referenziert."""

    id: str
    name: str
    fee: Decimal                       # Grundgebühr, > 0
    discount: Optional[Discount] = None
    subject_ids: list[str] = []        # Fächer des Kurses
    is_active: bool = True
    version: int = 0

    @property
    def subject_count(self) -> int:
        return len(self.subject_ids)
