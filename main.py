"""Kursverwaltung — Haupt-CLI.

Verwendung:
  python main.py setup                          Konfiguration anlegen
  python main.py config show                    Konfiguration anzeigen
  python main.py generate                       Demo-Daten erzeugen und speichern
  python main.py price <kurs>                   Effektiven Preis anzeigen
  python main.py sessions <gruppe>              Termine einer Gruppe
  python main.py enroll <teilnehmer> <gruppe>   Einschreiben
  python main.py withdraw <teilnehmer> <gruppe> Platz freigeben
  python main.py status <einschreibung> <neu>   Status ändern
  python main.py attend <gruppe> <termin> <teilnehmer> <status>
  python main.py roster <gruppe> <termin> <teilnehmer>=<status> ...
  python main.py progress <einschreibung>       Fortschritt neu berechnen
  python main.py sweep                          Terminstatus fortschreiben
  python main.py extra-session <gruppe> <datum> <von> <bis>
  python main.py stats [gruppe]                 Kennzahlen einer Gruppe oder aller
  python main.py validate                       Konsistenz-Check
"""

import functools
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich import box

console = Console()

# Standard-Pfad für den gespeicherten Datenbestand
DEFAULT_DATA_JSON = Path("output/institute_data.json")

_DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M"]


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config_or_abort():
    """Lädt die Konfiguration oder bricht mit Fehlermeldung ab."""
    from config.manager import ConfigManager
    mgr = ConfigManager()
    if mgr.first_run_check():
        console.print(
            "[red]Keine Konfiguration gefunden.[/red]\n"
            "Führen Sie zunächst [bold]python main.py setup[/bold] aus."
        )
        sys.exit(1)
    try:
        config = mgr.load()
    except ValueError as e:
        console.print(f"[red bold]{e}[/red bold]")
        sys.exit(1)
    _setup_logging(config.logging.level)
    return mgr, config


def _load_store_or_abort(json_path: str):
    from storage.repository import InstituteStore
    p = Path(json_path)
    if not p.exists():
        console.print(
            f"[red]Keine Datendatei gefunden: {p}[/red]\n"
            "Verwenden Sie [bold]python main.py generate[/bold]."
        )
        sys.exit(1)
    return InstituteStore.load_json(p)


def _actor(actor_id: str, role: str):
    from config.schema import Role
    from models.actor import Actor
    return Actor(id=actor_id, role=Role(role))


def handle_errors(func):
    """Fachliche Fehler rot ausgeben und mit Exit-Code 1 beenden."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from engine.errors import InstituteError
        try:
            return func(*args, **kwargs)
        except InstituteError as e:
            console.print(f"[red bold]{type(e).__name__}:[/red bold] {e.message}")
            sys.exit(1)
    return wrapper


_json_option = click.option("--json-path", default=str(DEFAULT_DATA_JSON),
                            help="Pfad zur gespeicherten JSON-Datei.")
_actor_options = [
    click.option("--actor-id", default="admin", help="ID des ausführenden Akteurs."),
    click.option("--role", type=click.Choice(["admin", "instructor", "student"]),
                 default="admin", help="Rolle des ausführenden Akteurs."),
]


def _with_actor(func):
    for option in reversed(_actor_options):
        func = option(func)
    return func


# ─── SETUP ────────────────────────────────────────────────────────────────────

@click.command("setup")
@click.option("--name", default=None, help="Name des Instituts.")
def cmd_setup(name: Optional[str]):
    """Ersteinrichtung: Default-Konfiguration anlegen."""
    from config.defaults import default_institute_config
    from config.manager import ConfigManager

    mgr = ConfigManager()
    if not mgr.first_run_check():
        console.print("[yellow]Eine Konfiguration existiert bereits.[/yellow]")
        if not click.confirm("Trotzdem neu einrichten?", default=False):
            return

    config = default_institute_config()
    config.institute_name = name or click.prompt("Name des Instituts",
                                                 default=config.institute_name)
    mgr.save(config)
    console.print("[bold green]Einrichtung abgeschlossen![/bold green]")
    console.print("Führen Sie jetzt [bold]python main.py generate[/bold] aus.")


# ─── CONFIG ───────────────────────────────────────────────────────────────────

@click.group("config")
def cmd_config():
    """Konfiguration anzeigen."""


@cmd_config.command("show")
def config_show():
    """Zeigt die aktuelle Konfiguration an."""
    mgr, config = _load_config_or_abort()

    console.print(Panel(
        f"[bold]{config.institute_name}[/bold]  |  "
        f"{config.pricing.currency}  |  {config.schedule.timezone}",
        title="Institutskonfiguration",
        border_style="cyan",
    ))

    table = Table(box=box.ROUNDED)
    table.add_column("Bereich", style="bold")
    table.add_column("Einstellung")
    table.add_column("Wert")
    table.add_row("Preise", "Nachkommastellen", str(config.pricing.minor_unit_digits))
    table.add_row("Einschreibung", "Standard-Kapazität",
                  str(config.enrollment.default_max_students))
    table.add_row("", "Wiederholungen bei Konflikt",
                  str(config.enrollment.version_retry_limit))
    table.add_row("Stundenplan", "Termine beim Anlegen",
                  "ja" if config.schedule.materialize_on_create else "nein")
    table.add_row("Anwesenheit", "Zählt als anwesend",
                  ", ".join(config.attendance.counted_statuses))
    table.add_row("", "Korrekturrecht",
                  ", ".join(r.value for r in config.attendance.correction_roles))
    table.add_row("Fortschritt", "Auto-Abschluss",
                  "ja" if config.progress.auto_complete else "nein")
    table.add_row("Logging", "Level", config.logging.level)
    console.print(table)


# ─── GENERATE ─────────────────────────────────────────────────────────────────

@click.command("generate")
@click.option("--seed", default=42, help="Zufalls-Seed für reproduzierbare Daten.")
@_json_option
@click.option("--validate", "run_validate", is_flag=True, default=True,
              help="Konsistenz-Check nach Generierung.")
@handle_errors
def cmd_generate(seed: int, json_path: str, run_validate: bool):
    """Erzeugt Demo-Daten (Kurse, Gruppen, Termine, Einschreibungen)."""
    mgr, config = _load_config_or_abort()
    from data.demo_data import DemoDataGenerator

    console.print("[bold]Demo-Daten werden generiert...[/bold]")
    gen = DemoDataGenerator(config, seed=seed)
    store = gen.generate()
    gen.print_summary(store)

    data = store.snapshot()
    console.print(f"\n[dim]{data.summary()}[/dim]")

    if run_validate:
        from analysis.invariant_checker import InvariantChecker
        InvariantChecker().check(data).print_rich()

    out_path = Path(json_path)
    store.save_json(out_path)
    console.print(f"[green]✓[/green] JSON gespeichert: {out_path}")


# ─── PRICE ────────────────────────────────────────────────────────────────────

@click.command("price")
@click.argument("course_id")
@click.option("--at", type=click.DateTime(formats=_DATETIME_FORMATS), default=None,
              help="Zeitpunkt der Preisabfrage (Default: jetzt).")
@_json_option
@handle_errors
def cmd_price(course_id: str, at: Optional[datetime], json_path: str):
    """Zeigt Grundgebühr, Rabatt und effektiven Preis eines Kurses."""
    mgr, config = _load_config_or_abort()
    from engine.pricing import PricingEngine

    store = _load_store_or_abort(json_path)
    # naive Zeitangaben gelten in der Instituts-Zeitzone
    quote = PricingEngine(config.pricing, tz=config.schedule.tzinfo).quote(
        store.get_course(course_id), at)
    discount = (f"{quote.discount_percentage}% "
                + ("[green](gültig)[/green]" if quote.is_discount_valid
                   else "[dim](nicht gültig)[/dim]")
                if quote.discount_percentage is not None else "—")
    console.print(Panel(
        f"Grundgebühr: {quote.fee} {quote.currency}\n"
        f"Rabatt: {discount}\n"
        f"[bold]Effektiver Preis: {quote.effective_price} {quote.currency}[/bold]",
        title=f"Kurs {course_id}",
        border_style="cyan",
    ))


# ─── SESSIONS ─────────────────────────────────────────────────────────────────

@click.command("sessions")
@click.argument("batch_id")
@click.option("--upcoming", is_flag=True, default=False,
              help="Nur geplante Termine ab jetzt.")
@_json_option
@handle_errors
def cmd_sessions(batch_id: str, upcoming: bool, json_path: str):
    """Listet die Termine einer Gruppe."""
    mgr, config = _load_config_or_abort()
    from engine.clock import utc_now
    from engine.schedule import ScheduleGenerator
    from models.session import SessionStatus

    store = _load_store_or_abort(json_path)
    gen = ScheduleGenerator(store, config.schedule)
    sessions = gen.sessions(batch_id)
    if upcoming:
        now = utc_now()
        sessions = [s for s in sessions if s.status == SessionStatus.SCHEDULED
                    and gen.session_start(s) >= now]

    table = Table(title=f"Termine {batch_id}", box=box.ROUNDED)
    table.add_column("Tag")
    table.add_column("Datum")
    table.add_column("Zeit")
    table.add_column("Fach")
    table.add_column("Status")
    table.add_column("Anwesenheit", justify="right")
    day_names = config.schedule.day_names
    for s in sessions:
        present = sum(1 for r in s.attendance if r.status.value in
                      config.attendance.counted_statuses)
        table.add_row(
            day_names[(s.date.weekday() + 1) % 7],
            s.date.strftime("%d.%m.%Y"),
            f"{s.start_time:%H:%M}–{s.end_time:%H:%M}",
            s.subject_id or "",
            s.status.value,
            f"{present}/{len(s.attendance)}" if s.attendance else "",
        )
    console.print(table)
    store.save_json(Path(json_path))


# ─── ENROLL / WITHDRAW ────────────────────────────────────────────────────────

@click.command("enroll")
@click.argument("student_id")
@click.argument("batch_id")
@_json_option
@handle_errors
def cmd_enroll(student_id: str, batch_id: str, json_path: str):
    """Schreibt einen Teilnehmer in eine Gruppe ein."""
    mgr, config = _load_config_or_abort()
    from engine.enrollment import EnrollmentManager
    from engine.pricing import PricingEngine

    store = _load_store_or_abort(json_path)
    tz = config.schedule.tzinfo
    manager = EnrollmentManager(store, PricingEngine(config.pricing, tz=tz),
                                config.enrollment, tz=tz)
    enrollment = manager.enroll(student_id, batch_id)
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] {student_id} eingeschrieben "
                  f"(Einschreibung {enrollment.id}, Betrag {enrollment.amount_owed} "
                  f"{config.pricing.currency})")


@click.command("withdraw")
@click.argument("student_id")
@click.argument("batch_id")
@_json_option
@handle_errors
def cmd_withdraw(student_id: str, batch_id: str, json_path: str):
    """Gibt den Platz eines Teilnehmers frei."""
    mgr, config = _load_config_or_abort()
    from engine.enrollment import EnrollmentManager

    store = _load_store_or_abort(json_path)
    EnrollmentManager(store, config=config.enrollment).withdraw(student_id, batch_id)
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] Platz von {student_id} in {batch_id} freigegeben")


# ─── STATUS ───────────────────────────────────────────────────────────────────

@click.command("status")
@click.argument("enrollment_id")
@click.argument("new_status", type=click.Choice(["active", "completed", "suspended", "dropped"]))
@click.option("--reason", default="", help="Begründung für die Historie.")
@_with_actor
@_json_option
@handle_errors
def cmd_status(enrollment_id: str, new_status: str, reason: str,
               actor_id: str, role: str, json_path: str):
    """Ändert den Status einer Einschreibung und zeigt die Historie."""
    mgr, config = _load_config_or_abort()
    from engine.enrollment import EnrollmentManager

    store = _load_store_or_abort(json_path)
    manager = EnrollmentManager(store, config=config.enrollment,
                                tz=config.schedule.tzinfo)
    enrollment = manager.change_status(enrollment_id, new_status,
                                       _actor(actor_id, role), reason=reason)
    store.save_json(Path(json_path))

    table = Table(title=f"Historie {enrollment_id}", box=box.ROUNDED)
    table.add_column("Zeitpunkt")
    table.add_column("Status")
    table.add_column("Durch")
    table.add_column("Begründung")
    for h in enrollment.status_history:
        table.add_row(h.changed_at.strftime("%d.%m.%Y %H:%M"), h.status.value,
                      h.changed_by, h.reason)
    console.print(table)


# ─── ATTEND ───────────────────────────────────────────────────────────────────

@click.command("attend")
@click.argument("batch_id")
@click.argument("session_id")
@click.argument("student_id")
@click.argument("status", type=click.Choice(["present", "absent", "late"]))
@click.option("--join", "join_at", type=click.DateTime(formats=_DATETIME_FORMATS),
              default=None, help="Beitritt (Online-Termine).")
@click.option("--leave", "leave_at", type=click.DateTime(formats=_DATETIME_FORMATS),
              default=None, help="Verlassen (Online-Termine).")
@_with_actor
@_json_option
@handle_errors
def cmd_attend(batch_id: str, session_id: str, student_id: str, status: str,
               join_at: Optional[datetime], leave_at: Optional[datetime],
               actor_id: str, role: str, json_path: str):
    """Erfasst die Anwesenheit eines Teilnehmers."""
    mgr, config = _load_config_or_abort()
    from engine.attendance import AttendanceTracker

    store = _load_store_or_abort(json_path)
    tracker = AttendanceTracker(store, config.attendance, config.schedule.tzinfo)
    tracker.record_attendance(batch_id, session_id, student_id, status, join_at, leave_at,
                              actor=_actor(actor_id, role))
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] {student_id}: {status} ({session_id})")


@click.command("roster")
@click.argument("batch_id")
@click.argument("session_id")
@click.argument("entries", nargs=-1, required=True)
@_with_actor
@_json_option
@handle_errors
def cmd_roster(batch_id: str, session_id: str, entries: tuple[str, ...],
               actor_id: str, role: str, json_path: str):
    """Erfasst mehrere Anwesenheiten eines Termins, z.B. anna=present bernd=late."""
    mgr, config = _load_config_or_abort()
    from engine.attendance import AttendanceTracker

    updates = []
    for entry in entries:
        student_id, sep, status = entry.partition("=")
        if not sep or not student_id or status not in ("present", "absent", "late"):
            raise click.BadParameter(f"Erwartet TEILNEHMER=STATUS, erhalten: {entry}")
        updates.append({"student_id": student_id, "status": status})

    store = _load_store_or_abort(json_path)
    tracker = AttendanceTracker(store, config.attendance, config.schedule.tzinfo)
    records = tracker.record_attendance_bulk(batch_id, session_id, updates,
                                             actor=_actor(actor_id, role))
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] {len(records)} Anwesenheiten erfasst ({session_id})")


# ─── PROGRESS ─────────────────────────────────────────────────────────────────

@click.command("progress")
@click.argument("enrollment_id")
@click.option("--subject", "subjects", multiple=True,
              help="Fach als abgeschlossen markieren (mehrfach möglich).")
@_json_option
@handle_errors
def cmd_progress(enrollment_id: str, subjects: tuple[str, ...], json_path: str):
    """Berechnet den Fortschritt einer Einschreibung neu."""
    mgr, config = _load_config_or_abort()
    from engine.attendance import AttendanceTracker
    from engine.enrollment import EnrollmentManager
    from engine.progress import ProgressAggregator

    store = _load_store_or_abort(json_path)
    aggregator = ProgressAggregator(
        EnrollmentManager(store, config=config.enrollment, tz=config.schedule.tzinfo),
        AttendanceTracker(store, config.attendance, config.schedule.tzinfo),
        config.progress,
    )
    for subject_id in subjects:
        aggregator.mark_subject_completed(enrollment_id, subject_id)
    enrollment = aggregator.refresh_progress(enrollment_id)
    attendance = aggregator.attendance.course_attendance_percentage(
        enrollment.student_id, enrollment.course_id)
    store.save_json(Path(json_path))
    console.print(
        f"[bold]{enrollment.student_id}[/bold] in {enrollment.course_id}: "
        f"Fortschritt {enrollment.progress:.1f} % | Anwesenheit {attendance:.1f} % | "
        f"Status {enrollment.status.value}"
    )


# ─── SWEEP ────────────────────────────────────────────────────────────────────

@click.command("sweep")
@click.option("--at", type=click.DateTime(formats=_DATETIME_FORMATS), default=None,
              help="Stichzeitpunkt (Default: jetzt).")
@_json_option
@handle_errors
def cmd_sweep(at: Optional[datetime], json_path: str):
    """Schreibt den Status aller Termine anhand der Uhrzeit fort."""
    mgr, config = _load_config_or_abort()
    from engine.schedule import ScheduleGenerator

    store = _load_store_or_abort(json_path)
    changed = ScheduleGenerator(store, config.schedule).sweep(at)
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] {changed} Termine fortgeschrieben")


@click.command("extra-session")
@click.argument("batch_id")
@click.argument("day", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.argument("start", type=click.DateTime(formats=["%H:%M"]))
@click.argument("end", type=click.DateTime(formats=["%H:%M"]))
@click.option("--subject", default=None, help="Fach des Termins.")
@click.option("--link", "meeting_link", default=None, help="Meeting-Link.")
@_with_actor
@_json_option
@handle_errors
def cmd_extra_session(batch_id: str, day: datetime, start: datetime, end: datetime,
                      subject: Optional[str], meeting_link: Optional[str],
                      actor_id: str, role: str, json_path: str):
    """Legt einen Einzeltermin außerhalb des Wochenplans an."""
    mgr, config = _load_config_or_abort()
    from engine.schedule import ScheduleGenerator

    store = _load_store_or_abort(json_path)
    session = ScheduleGenerator(store, config.schedule).schedule_extra_session(
        batch_id, _actor(actor_id, role), day.date(), start.time(), end.time(),
        subject_id=subject, meeting_link=meeting_link,
    )
    store.save_json(Path(json_path))
    console.print(f"[green]✓[/green] Einzeltermin {session.id} angelegt "
                  f"({len(session.attendance)} Teilnehmer vorbelegt)")


# ─── STATS ────────────────────────────────────────────────────────────────────

@click.command("stats")
@click.argument("batch_id", required=False)
@_json_option
@handle_errors
def cmd_stats(batch_id: Optional[str], json_path: str):
    """Zeigt die Kennzahlen einer Gruppe, ohne Angabe die Summen aller Gruppen."""
    mgr, config = _load_config_or_abort()
    from analysis.batch_stats import batch_statistics, institute_statistics
    from engine.attendance import AttendanceTracker
    from engine.schedule import ScheduleGenerator

    store = _load_store_or_abort(json_path)
    tracker = AttendanceTracker(config=config.attendance)
    if batch_id is None:
        stats = institute_statistics(store.list_batches(),
                                     ScheduleGenerator(config=config.schedule), tracker)
    else:
        stats = batch_statistics(store.get_batch(batch_id), tracker)
    stats.print_rich()


# ─── VALIDATE ─────────────────────────────────────────────────────────────────

@click.command("validate")
@_json_option
def cmd_validate(json_path: str):
    """Prüft den gespeicherten Datenbestand auf Konsistenz."""
    from analysis.invariant_checker import InvariantChecker

    store = _load_store_or_abort(json_path)
    data = store.snapshot()
    console.print(f"\n{data.summary()}\n")
    report = InvariantChecker().check(data)
    report.print_rich()

    sys.exit(0 if report.is_valid else 1)


# ─── HAUPT-CLI ────────────────────────────────────────────────────────────────

@click.group()
def cli():
    """Kursverwaltung: Gruppen, Termine, Einschreibungen und Preise.

    Starten Sie mit: python main.py setup
    """


def main():
    """Einstiegspunkt. Startet automatisch setup beim ersten Aufruf."""
    from config.manager import ConfigManager
    mgr = ConfigManager()

    if len(sys.argv) == 1 and mgr.first_run_check():
        console.print(Panel(
            "[bold]Willkommen bei der Kursverwaltung![/bold]\n\n"
            "Keine Konfiguration gefunden.\n"
            "Die Einrichtung wird jetzt gestartet...",
            border_style="cyan",
        ))
        sys.argv.append("setup")

    cli()


# Befehle registrieren
cli.add_command(cmd_setup)
cli.add_command(cmd_config)
cli.add_command(cmd_generate)
cli.add_command(cmd_price)
cli.add_command(cmd_sessions)
cli.add_command(cmd_enroll)
cli.add_command(cmd_withdraw)
cli.add_command(cmd_status)
cli.add_command(cmd_attend)
cli.add_command(cmd_roster)
cli.add_command(cmd_progress)
cli.add_command(cmd_sweep)
cli.add_command(cmd_extra_session)
cli.add_command(cmd_stats)
cli.add_command(cmd_validate)


if __name__ == "__main__":
    main()
