"""Kennzahlen einer Kursgruppe und aller Gruppen für die Admin-Übersicht."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from engine.attendance import AttendanceTracker
from engine.schedule import ScheduleGenerator
from models.batch import Batch, SeatStatus
from models.session import SessionStatus


class BatchStatistics(BaseModel):
    """Belegung, Abbruchquote, Terminfortschritt und mittlere Anwesenheit."""

    batch_id: str
    name: str
    max_students: int
    total_students: int          # alle Platz-Einträge, auch inaktive
    active_students: int
    completed_students: int
    dropout_rate: float          # Anteil weder aktiv noch abgeschlossen, in %
    total_sessions: int          # ohne abgesagte Termine
    completed_sessions: int
    cancelled_sessions: int
    progress_percentage: float   # abgeschlossene / geplante Termine, in %
    avg_attendance: float        # Mittel der Termin-Quoten, 2 Nachkommastellen

    @property
    def free_seats(self) -> int:
        return max(0, self.max_students - self.active_students)

    def print_rich(self) -> None:
        """Gibt die Kennzahlen als Rich-Tabelle aus."""
        from rich.console import Console
        from rich.table import Table
        from rich import box

        console = Console()
        table = Table(title=f"Gruppe {self.name} ({self.batch_id})", box=box.ROUNDED)
        table.add_column("Kennzahl", style="bold cyan")
        table.add_column("Wert", justify="right")

        seat_color = "red" if self.free_seats == 0 else "green"
        table.add_row("Plätze belegt",
                      f"[{seat_color}]{self.active_students}/{self.max_students}[/{seat_color}]")
        table.add_row("Teilnehmer gesamt", str(self.total_students))
        table.add_row("Abgeschlossen", str(self.completed_students))
        table.add_row("Abbruchquote", f"{self.dropout_rate:.1f} %")
        table.add_row("Termine", f"{self.completed_sessions}/{self.total_sessions} "
                                 f"({self.cancelled_sessions} abgesagt)")
        table.add_row("Fortschritt", f"{self.progress_percentage:.1f} %")
        table.add_row("Ø Anwesenheit", f"{self.avg_attendance:.2f} %")
        console.print(table)


def batch_statistics(batch: Batch,
                     tracker: Optional[AttendanceTracker] = None) -> BatchStatistics:
    """Berechnet die Kennzahlen einer Gruppe. Reine Funktion."""
    tracker = tracker or AttendanceTracker()
    seats = batch.enrolled_students
    active = sum(1 for s in seats if s.status == SeatStatus.ACTIVE)
    completed = sum(1 for s in seats if s.status == SeatStatus.COMPLETED)
    dropout = (len(seats) - active - completed) / len(seats) * 100 if seats else 0.0

    cancelled = sum(1 for s in batch.sessions if s.status == SessionStatus.CANCELLED)
    total = len(batch.sessions) - cancelled
    done = sum(1 for s in batch.sessions if s.status == SessionStatus.COMPLETED)

    rates = [r for r in (tracker.session_attendance_rate(s) for s in batch.sessions)
             if r is not None]
    avg = sum(rates) / len(rates) if rates else 0.0

    return BatchStatistics(
        batch_id=batch.id,
        name=batch.name,
        max_students=batch.max_students,
        total_students=len(seats),
        active_students=active,
        completed_students=completed,
        dropout_rate=dropout,
        total_sessions=total,
        completed_sessions=done,
        cancelled_sessions=cancelled,
        progress_percentage=done / total * 100 if total else 0.0,
        avg_attendance=round(avg, 2),
    )


# ─── Institutsweite Übersicht ─────────────────────────────────────────────────

class InstituteStatistics(BaseModel):
    """Summen über alle Gruppen für die Admin-Startseite."""

    total_batches: int
    active_batches: int
    students_in_batches: int     # aktive Plätze über alle Gruppen
    upcoming_sessions: int       # geplante Termine ab dem Stichzeitpunkt
    avg_attendance: float        # Mittel der Termin-Quoten, 2 Nachkommastellen

    @property
    def inactive_batches(self) -> int:
        return self.total_batches - self.active_batches

    def print_rich(self) -> None:
        from rich.console import Console
        from rich.table import Table
        from rich import box

        console = Console()
        table = Table(title="Alle Gruppen", box=box.ROUNDED)
        table.add_column("Kennzahl", style="bold cyan")
        table.add_column("Wert", justify="right")
        table.add_row("Gruppen", f"{self.active_batches} aktiv / "
                                 f"{self.inactive_batches} inaktiv")
        table.add_row("Teilnehmer in Gruppen", str(self.students_in_batches))
        table.add_row("Anstehende Termine", str(self.upcoming_sessions))
        table.add_row("Ø Anwesenheit", f"{self.avg_attendance:.2f} %")
        console.print(table)


def institute_statistics(
    batches: list[Batch],
    schedule: Optional[ScheduleGenerator] = None,
    tracker: Optional[AttendanceTracker] = None,
    now: Optional[datetime] = None,
) -> InstituteStatistics:
    """Kennzahlen über alle Gruppen; anstehend heißt geplant mit Beginn ≥ `now`."""
    schedule = schedule or ScheduleGenerator()
    tracker = tracker or AttendanceTracker()
    rates = [r for r in (tracker.session_attendance_rate(s)
                         for b in batches for s in b.sessions)
             if r is not None]
    return InstituteStatistics(
        total_batches=len(batches),
        active_batches=sum(1 for b in batches if b.is_active),
        students_in_batches=sum(b.active_count for b in batches),
        upcoming_sessions=sum(schedule.upcoming_count(b, now) for b in batches),
        avg_attendance=round(sum(rates) / len(rates), 2) if rates else 0.0,
    )
