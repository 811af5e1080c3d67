from config.schema import (
    AttendanceConfig,
    EnrollmentConfig,
    InstituteConfig,
    LoggingConfig,
    PricingConfig,
    ProgressConfig,
    ScheduleConfig,
)


def default_institute_config() -> InstituteConfig:
    """Komplette Default-Konfiguration eines Instituts.

    Preise in EUR mit 2 Nachkommastellen, Gruppen mit 30 Plätzen,
    Slot-Uhrzeiten in Europe/Berlin, Termine werden beim Anlegen erzeugt.
    """
    return InstituteConfig(
        institute_name="Muster-Institut",
        pricing=PricingConfig(currency="EUR", minor_unit_digits=2),
        enrollment=EnrollmentConfig(default_max_students=30,
                                    version_retry_limit=1),
        schedule=ScheduleConfig(timezone="Europe/Berlin",
                                materialize_on_create=True),
        attendance=AttendanceConfig(),
        progress=ProgressConfig(auto_complete=True),
        logging=LoggingConfig(level="INFO"),
    )


# ─── ÜBERGANGSTABELLE ───
# Aktueller Status → erlaubte Folgestatus.
# completed und dropped sind terminal.

ENROLLMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "active":    frozenset({"completed", "suspended", "dropped"}),
    "suspended": frozenset({"active", "dropped"}),
    "completed": frozenset(),
    "dropped":   frozenset(),
}


# Demo-Kurse für `main.py generate`: Name → (Gebühr, Anzahl Fächer)
DEMO_COURSES: dict[str, tuple[str, int]] = {
    "Webentwicklung":        ("1200.00", 6),
    "Datenanalyse":          ("950.00",  5),
    "UI/UX-Design":          ("800.00",  4),
    "Mobile Apps":           ("1100.00", 5),
    "Cloud-Grundlagen":      ("650.00",  3),
}
