"""Fehlerhierarchie der Kursverwaltung.

Drei Familien, die Aufrufer unterschiedlich behandeln:
  - InvalidInput:    Validierungsfehler beim Schreiben (nie in den Engines)
  - StateConflict:   Verletzte Geschäftsregel, wird NIE automatisch wiederholt
  - VersionConflict: Optimistische Sperre verloren, einmal wiederholbar
Dazu Unavailable für vorübergehende Speicherausfälle.
"""


class InstituteError(Exception):
    """Basisklasse aller fachlichen Fehler."""

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


# ─── Validierung ──────────────────────────────────────────────────────────────

class InvalidInput(InstituteError):
    """Eingabe verletzt eine Schreib-Vorbedingung."""


class InvalidDiscount(InvalidInput):
    """Rabatt-Prozentsatz außerhalb [0, 100] oder Ende vor Beginn."""


class InvalidRange(InvalidInput):
    """Startdatum liegt nach dem Enddatum."""


class InvalidCapacity(InvalidInput):
    """Kapazität < 1 oder kleiner als die aktuelle Belegung."""


class InvalidInterval(InvalidInput):
    """Verlassen-Zeitpunkt liegt vor dem Beitritts-Zeitpunkt."""


# ─── Zustandskonflikte ────────────────────────────────────────────────────────

class StateConflict(InstituteError):
    """Geschäftsregel verletzt."""


class CapacityExceeded(StateConflict):
    pass


class AlreadyEnrolled(StateConflict):
    pass


class BatchInactive(StateConflict):
    pass


class InvalidTransition(StateConflict):
    pass


class SessionLocked(StateConflict):
    pass


class SessionExists(StateConflict):
    """Am gewählten Datum gibt es bereits einen Termin."""


# ─── Nicht gefunden ───────────────────────────────────────────────────────────

class NotFound(InstituteError):
    """Referenziertes Objekt existiert nicht."""


class CourseNotFound(NotFound):
    pass


class BatchNotFound(NotFound):
    pass


class SessionNotFound(NotFound):
    pass


class EnrollmentNotFound(NotFound):
    pass


class StudentNotInBatch(NotFound):
    pass


# ─── Sonstige ─────────────────────────────────────────────────────────────────

class PermissionDenied(InstituteError):
    """Rolle des Akteurs reicht für die Operation nicht aus."""


class VersionConflict(InstituteError):
    """Datensatz wurde zwischen Lesen und Schreiben verändert."""


class Unavailable(InstituteError):
    """Speicher vorübergehend nicht erreichbar – Aufrufer soll mit Backoff wiederholen."""
