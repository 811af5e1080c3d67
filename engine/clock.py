"""Austauschbare Uhr: alle Engines fragen die Zeit hier ab, nie direkt."""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(instant: datetime, tz: tzinfo) -> datetime:
    """Naive Zeitpunkte gelten in `tz`; zeitzonenbehaftete bleiben unverändert.

    Alle Engines normalisieren Zeitpunkte beim Eintritt hiermit, gespeichert
    werden nur zeitzonenbehaftete Werte.
    """
    return instant if instant.tzinfo is not None else instant.replace(tzinfo=tz)


class FixedClock:
    """Uhr mit fest eingestellter Zeit, z.B. für Tests und Sweeps im Nachhinein."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        """Stellt die Uhr vor, z.B. clock.advance(days=3)."""
        self.now = self.now + timedelta(**delta)
