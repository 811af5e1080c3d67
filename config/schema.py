from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"


# ─── PREISE ───

class PricingConfig(BaseModel):
    """Währung und Rundung für Kursgebühren."""
    # ISO-Währungscode, nur für Anzeige
    currency: str = Field("EUR", min_length=3, max_length=3,
        description="Währungscode (ISO 4217)")
    # Nachkommastellen der kleinsten Währungseinheit (EUR: 2, JPY: 0)
    minor_unit_digits: int = Field(2, ge=0, le=4,
        description="Nachkommastellen der kleinsten Einheit")


# ─── EINSCHREIBUNG ───

class EnrollmentConfig(BaseModel):
    """Kapazitäts-Defaults und Wiederholungsverhalten."""
    # Kapazität neuer Gruppen, wenn beim Anlegen keine angegeben wird
    default_max_students: int = Field(30, ge=1,
        description="Standard-Kapazität einer Gruppe")
    # Automatische Wiederholungen nach einem Versionskonflikt
    version_retry_limit: int = Field(1, ge=0, le=3,
        description="Wiederholungen bei Versionskonflikt")


# ─── STUNDENPLAN ───

class ScheduleConfig(BaseModel):
    """Zeitzone und Materialisierung der Termine."""
    # Zeitzone, in der Slot-Uhrzeiten gelten
    timezone: str = Field("Europe/Berlin",
        description="IANA-Zeitzone der Slot-Uhrzeiten")
    # Termine direkt beim Anlegen der Gruppe erzeugen (sonst bei erster Abfrage)
    materialize_on_create: bool = Field(True,
        description="Termine beim Anlegen erzeugen")
    # Namen der Wochentage, 0 = Sonntag
    day_names: list[str] = Field(
        default=["So", "Mo", "Di", "Mi", "Do", "Fr", "Sa"],
        description="Namen der Wochentage")

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unbekannte Zeitzone: {v}") from e
        return v

    @field_validator("day_names")
    @classmethod
    def _seven_days(cls, v: list[str]) -> list[str]:
        if len(v) != 7:
            raise ValueError("day_names muss genau 7 Einträge haben")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# ─── ANWESENHEIT ───

class AttendanceConfig(BaseModel):
    """Anwesenheitsregeln."""
    # Status, die als "anwesend" zählen
    counted_statuses: list[str] = Field(
        default=["present", "late"],
        description="Status, die als anwesend zählen")
    # Rollen, die abgeschlossene Termine korrigieren dürfen
    correction_roles: list[Role] = Field(
        default=[Role.ADMIN, Role.INSTRUCTOR],
        description="Rollen mit Korrekturrecht")


# ─── FORTSCHRITT ───

class ProgressConfig(BaseModel):
    # Bei 100 % Fortschritt automatisch auf "completed" setzen
    auto_complete: bool = Field(True,
        description="Einschreibung bei 100 % abschließen")


# ─── LOGGING ───

class LoggingConfig(BaseModel):
    level: str = Field("INFO", description="Log-Level der CLI")

    @field_validator("level")
    @classmethod
    def _upper(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Ungültiges Log-Level: {v}")
        return v


# ─── GESAMT-CONFIG ───

class InstituteConfig(BaseModel):
    """Gesamtkonfiguration des Instituts."""
    # Name des Instituts
    institute_name: str = Field("Muster-Institut",
        description="Name des Instituts")
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    enrollment: EnrollmentConfig = Field(default_factory=EnrollmentConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    attendance: AttendanceConfig = Field(default_factory=AttendanceConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
