"""Konsistenzprüfung eines Datenbestands.

Prüft einen Schnappschuss unabhängig von den Engines als Sicherheitsnetz,
z.B. nach einem JSON-Import oder einer manuellen Korrektur.
"""

from collections import Counter
from typing import Literal

from pydantic import BaseModel

from config.defaults import ENROLLMENT_TRANSITIONS
from models.enrollment import EnrollmentStatus
from models.institute_data import InstituteData


class ValidationViolation(BaseModel):
    """Eine einzelne Regelverletzung."""

    severity: Literal["error", "warning"]
    constraint: str      # z.B. "capacity"
    description: str
    entity: str          # batch_id / enrollment_id


class ValidationReport(BaseModel):
    """Ergebnis der Konsistenzprüfung."""

    violations: list[ValidationViolation]
    is_valid: bool       # True wenn keine Errors (Warnings ok)

    def print_rich(self) -> None:
        """Gibt den Report formatiert über Rich aus."""
        from rich.console import Console
        from rich.panel import Panel
        from rich.table import Table
        from rich import box

        console = Console()
        errors = [v for v in self.violations if v.severity == "error"]
        warnings = [v for v in self.violations if v.severity == "warning"]

        status = (
            "[bold green]✓ KONSISTENT[/bold green]"
            if self.is_valid
            else "[bold red]✗ VERLETZUNGEN GEFUNDEN[/bold red]"
        )
        lines = [status, f"Fehler: {len(errors)} | Warnungen: {len(warnings)}"]
        console.print(Panel("\n".join(lines), title="Datenprüfung", border_style="cyan"))

        if not self.violations:
            console.print("[dim]Keine Verletzungen gefunden.[/dim]")
            return

        table = Table(box=box.ROUNDED, show_lines=True)
        table.add_column("Typ", width=8)
        table.add_column("Regel", width=22)
        table.add_column("Entität", width=20)
        table.add_column("Beschreibung")

        for v in self.violations:
            color = "red" if v.severity == "error" else "yellow"
            table.add_row(
                f"[{color}]{v.severity.upper()}[/{color}]",
                v.constraint,
                v.entity,
                v.description,
            )
        console.print(table)


class InvariantChecker:
    """Prüft InstituteData auf verletzte Regeln."""

    def check(self, data: InstituteData) -> ValidationReport:
        violations: list[ValidationViolation] = []

        violations.extend(self._check_capacity(data))
        violations.extend(self._check_sessions(data))
        violations.extend(self._check_attendance(data))
        violations.extend(self._check_history(data))
        violations.extend(self._check_references(data))

        has_errors = any(v.severity == "error" for v in violations)
        return ValidationReport(violations=violations, is_valid=not has_errors)

    # ── Einzelne Prüfungen ────────────────────────────────────────────────────

    def _check_capacity(self, data: InstituteData) -> list[ValidationViolation]:
        """Aktive Plätze ≤ max_students; höchstens ein aktiver Platz je Teilnehmer."""
        violations: list[ValidationViolation] = []
        for b in data.batches:
            if b.active_count > b.max_students:
                violations.append(ValidationViolation(
                    severity="error",
                    constraint="capacity",
                    entity=b.id,
                    description=f"{b.active_count} aktive Plätze bei Kapazität "
                                f"{b.max_students}.",
                ))
            doubles = [sid for sid, n in Counter(b.active_student_ids()).items() if n > 1]
            for sid in doubles:
                violations.append(ValidationViolation(
                    severity="error",
                    constraint="duplicate_seat",
                    entity=b.id,
                    description=f"{sid} hat mehrere aktive Plätze.",
                ))
        return violations

    def _check_sessions(self, data: InstituteData) -> list[ValidationViolation]:
        """Eindeutige Termine, sortiert nach Datum/Beginn, innerhalb der Laufzeit."""
        violations: list[ValidationViolation] = []
        for b in data.batches:
            for sid, n in Counter(s.id for s in b.sessions).items():
                if n > 1:
                    violations.append(ValidationViolation(
                        severity="error",
                        constraint="duplicate_session",
                        entity=b.id,
                        description=f"Termin {sid} ist {n}× vorhanden.",
                    ))
            keys = [(s.date, s.start_time) for s in b.sessions]
            if keys != sorted(keys):
                violations.append(ValidationViolation(
                    severity="warning",
                    constraint="session_order",
                    entity=b.id,
                    description="Termine sind nicht nach Datum und Beginn sortiert.",
                ))
            outside = [s for s in b.sessions
                       if not (b.start_date <= s.date <= b.end_date)]
            if outside:
                violations.append(ValidationViolation(
                    severity="warning",
                    constraint="session_range",
                    entity=b.id,
                    description=f"{len(outside)} Termine liegen außerhalb der Laufzeit "
                                f"(z.B. durch Stundenplan-Änderung erhalten).",
                ))
        return violations

    def _check_attendance(self, data: InstituteData) -> list[ValidationViolation]:
        violations: list[ValidationViolation] = []
        for b in data.batches:
            for s in b.sessions:
                for sid, n in Counter(r.student_id for r in s.attendance).items():
                    if n > 1:
                        violations.append(ValidationViolation(
                            severity="error",
                            constraint="duplicate_attendance",
                            entity=b.id,
                            description=f"{s.id}: {n} Einträge für {sid}.",
                        ))
                for r in s.attendance:
                    if r.join_at and r.leave_at and r.leave_at < r.join_at:
                        violations.append(ValidationViolation(
                            severity="error",
                            constraint="attendance_interval",
                            entity=b.id,
                            description=f"{s.id}/{r.student_id}: Verlassen vor Beitritt.",
                        ))
        return violations

    def _check_history(self, data: InstituteData) -> list[ValidationViolation]:
        """Historie folgt der Übergangstabelle und endet beim aktuellen Status."""
        violations: list[ValidationViolation] = []
        for e in data.enrollments:
            current = EnrollmentStatus.ACTIVE
            for change in e.status_history:
                if change.status.value not in ENROLLMENT_TRANSITIONS[current.value]:
                    violations.append(ValidationViolation(
                        severity="error",
                        constraint="status_transition",
                        entity=e.id,
                        description=f"Unerlaubter Übergang {current.value} → "
                                    f"{change.status.value}.",
                    ))
                current = change.status
            if current != e.status:
                violations.append(ValidationViolation(
                    severity="error",
                    constraint="status_history",
                    entity=e.id,
                    description=f"Status {e.status.value}, Historie endet bei "
                                f"{current.value}.",
                ))
            if not (0.0 <= e.progress <= 100.0):
                violations.append(ValidationViolation(
                    severity="error",
                    constraint="progress_range",
                    entity=e.id,
                    description=f"Fortschritt {e.progress} außerhalb 0–100.",
                ))
        return violations

    def _check_references(self, data: InstituteData) -> list[ValidationViolation]:
        violations: list[ValidationViolation] = []
        course_ids = {c.id for c in data.courses}
        batch_ids = {b.id for b in data.batches}
        for b in data.batches:
            if b.course_id not in course_ids:
                violations.append(ValidationViolation(
                    severity="warning",
                    constraint="unknown_course",
                    entity=b.id,
                    description=f"Kurs {b.course_id} existiert nicht.",
                ))
        for e in data.enrollments:
            if e.batch_id is not None and e.batch_id not in batch_ids:
                violations.append(ValidationViolation(
                    severity="warning",
                    constraint="unknown_batch",
                    entity=e.id,
                    description=f"Gruppe {e.batch_id} existiert nicht (gelöscht?).",
                ))
        return violations
