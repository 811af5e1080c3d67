"""Demo-Daten-Generator für die Kursverwaltung.

Erzeugt einen realistischen Datenbestand über die echten Engines (Katalog,
Einschreibung, Sweep, Anwesenheit), damit alle Regeln auch für Demo-Daten
gelten.

Absichtliche Sonderfälle:
  1. Volle Gruppe: die erste Gruppe jedes Kurses wird bis auf den letzten Platz belegt
  2. Laufender Rabatt: jeder zweite Kurs hat einen Rabatt, der heute gilt
  3. Abgelaufener Rabatt: ein Kurs hat einen Rabatt, der bereits vorbei ist
  4. Abbrecher: pro Gruppe wird ein Teilnehmer auf dropped gesetzt
"""

import random
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from config.defaults import DEMO_COURSES
from config.schema import InstituteConfig, Role
from engine.attendance import AttendanceTracker
from engine.catalog import CatalogService
from engine.clock import FixedClock
from engine.enrollment import EnrollmentManager
from engine.pricing import PricingEngine
from engine.progress import ProgressAggregator
from engine.schedule import ScheduleGenerator
from models.actor import Actor
from models.batch import ScheduleSlot
from models.course import Discount
from models.enrollment import EnrollmentStatus
from models.session import AttendanceStatus, SessionStatus
from storage.repository import InstituteStore

# ─── Namens-Listen ────────────────────────────────────────────────────────────

_FIRST_NAMES = [
    "Andreas", "Anna", "Bernd", "Birgit", "Christian", "Christine", "Eva",
    "Jürgen", "Kathrin", "Klaus", "Lena", "Maria", "Markus", "Michael",
    "Sandra", "Stefan", "Tanja", "Thomas", "Ulrike", "Yusuf", "Zoe",
]

_LAST_NAMES = [
    "Müller", "Schmidt", "Schneider", "Fischer", "Weber", "Meyer",
    "Wagner", "Becker", "Schulz", "Hoffmann", "Schäfer", "Koch",
    "Bauer", "Richter", "Klein", "Wolf", "Schröder", "Neumann",
]

# Typische Abendkurs-Zeiten: (Beginn, Ende)
_SLOT_TIMES = [(time(9, 0), time(10, 30)), (time(14, 0), time(15, 30)),
               (time(18, 0), time(19, 30))]

# Anwesenheits-Verteilung für vergangene Termine
_ATTENDANCE_WEIGHTS = [
    (AttendanceStatus.PRESENT, 75),
    (AttendanceStatus.LATE, 10),
    (AttendanceStatus.ABSENT, 15),
]


def _slug(text: str) -> str:
    return (
        text.lower()
        .replace("ä", "ae").replace("ö", "oe").replace("ü", "ue")
        .replace("ß", "ss").replace("/", "-").replace(" ", "-")
    )


class DemoDataGenerator:
    """Befüllt einen InstituteStore mit Kursen, Gruppen und Einschreibungen."""

    def __init__(self, config: InstituteConfig, seed: Optional[int] = None,
                 today: Optional[date] = None) -> None:
        self.config = config
        self.rng = random.Random(seed)
        self.today = today or date.today()
        self.tz = config.schedule.tzinfo
        self.clock = FixedClock(datetime.combine(self.today, time(12, 0), tzinfo=self.tz))
        self.admin = Actor(id="admin", role=Role.ADMIN)

    def _students(self, count: int, taken: frozenset[str] = frozenset()) -> list[str]:
        """`count` Teilnehmer-IDs, die nicht in `taken` vorkommen."""
        names = set()
        while len(names) < count:
            name = _slug(f"{self.rng.choice(_FIRST_NAMES)}-{self.rng.choice(_LAST_NAMES)}")
            if name not in taken:
                names.add(name)
        return sorted(names)

    def _slots(self, subject_ids: list[str]) -> list[ScheduleSlot]:
        """Zwei Wochentage (Mo–Fr) zur selben Uhrzeit."""
        days = sorted(self.rng.sample(range(1, 6), 2))
        start, end = self.rng.choice(_SLOT_TIMES)
        return [
            ScheduleSlot(day_of_week=d, start_time=start, end_time=end,
                         subject_id=subject_ids[i % len(subject_ids)] if subject_ids else None)
            for i, d in enumerate(days)
        ]

    def _discount(self, index: int) -> Optional[Discount]:
        now = self.clock()
        if index == 2:
            return Discount(percentage=Decimal(15), start_at=now - timedelta(days=60),
                            end_at=now - timedelta(days=30))
        if index % 2 == 0:
            pct = Decimal(self.rng.choice([10, 20, 25]))
            return Discount(percentage=pct, start_at=now - timedelta(days=7),
                            end_at=now + timedelta(days=14))
        return None

    # ─── Vollständiger Datensatz ──────────────────────────────────────────────

    def generate(self, store: Optional[InstituteStore] = None) -> InstituteStore:
        """Erzeugt den Datenbestand; Gruppen starten einige Wochen vor `today`."""
        store = store or InstituteStore()
        schedule = ScheduleGenerator(store, self.config.schedule, self.clock)
        catalog = CatalogService(store, self.config, schedule)
        pricing = PricingEngine(self.config.pricing, self.clock, self.tz)
        enrollments = EnrollmentManager(store, pricing, self.config.enrollment,
                                        self.clock, self.tz)
        attendance = AttendanceTracker(store, self.config.attendance, self.tz)
        progress = ProgressAggregator(enrollments, attendance, self.config.progress)

        for index, (name, (fee, subject_count)) in enumerate(DEMO_COURSES.items()):
            course_id = _slug(name)
            subject_ids = [f"{course_id}-{n}" for n in range(1, subject_count + 1)]
            catalog.add_course(self.admin, name, Decimal(fee), subject_ids,
                               discount=self._discount(index), course_id=course_id)

            # pro Kurs sitzt ein Teilnehmer nur in einer Gruppe
            taken: frozenset[str] = frozenset()
            for number in (1, 2):
                start = self.today - timedelta(weeks=self.rng.randint(2, 6))
                capacity = self.rng.choice([8, 10, 12])
                batch = catalog.create_batch(
                    self.admin, course_id, f"{name} {number}",
                    instructor_id=f"dozent-{self.rng.randint(1, 5)}",
                    start_date=start,
                    end_date=start + timedelta(weeks=12),
                    slots=self._slots(subject_ids),
                    max_students=capacity,
                    batch_id=f"{course_id}-{number}",
                )
                seats = capacity if number == 1 else self.rng.randint(3, capacity - 1)
                joined_at = datetime.combine(start - timedelta(days=3), time(10, 0),
                                             tzinfo=self.tz)
                students = self._students(seats, taken)
                taken = taken | set(students)
                enrolled = enrollments.enroll_many(students, batch.id, at=joined_at)

                schedule.sweep(self.clock())
                self._record_attendance(store, attendance, batch.id)

                refreshed = []
                for enrollment in enrolled:
                    for subject_id in subject_ids[:self.rng.randint(0, len(subject_ids) - 1)]:
                        progress.mark_subject_completed(enrollment.id, subject_id)
                    refreshed.append(progress.refresh_progress(enrollment.id, subject_count))

                active = [e for e in refreshed if e.status == EnrollmentStatus.ACTIVE]
                if active:
                    dropout = self.rng.choice(active)
                    enrollments.change_status(dropout.id, EnrollmentStatus.DROPPED,
                                              self.admin, reason="Demo: Abbruch")
        return store

    def _record_attendance(self, store: InstituteStore, attendance: AttendanceTracker,
                           batch_id: str) -> None:
        batch = store.get_batch(batch_id)
        statuses = [s for s, _ in _ATTENDANCE_WEIGHTS]
        weights = [w for _, w in _ATTENDANCE_WEIGHTS]
        for session in batch.sessions:
            if session.status != SessionStatus.COMPLETED:
                continue
            for student_id in batch.active_student_ids():
                status = self.rng.choices(statuses, weights=weights)[0]
                attendance.record_attendance(batch_id, session.id, student_id,
                                             status, actor=self.admin)

    # ─── Ausgabe ──────────────────────────────────────────────────────────────

    def print_summary(self, store: InstituteStore) -> None:
        """Gibt eine Rich-Tabelle mit Übersicht der erzeugten Daten aus."""
        from rich.console import Console
        from rich.table import Table
        from rich import box

        data = store.snapshot()
        console = Console()
        table = Table(title="Erzeugte Demo-Daten", box=box.ROUNDED)
        table.add_column("Kategorie", style="bold cyan")
        table.add_column("Anzahl", justify="right")
        table.add_column("Details")

        discounted = sum(1 for c in data.courses if c.discount is not None)
        full = sum(1 for b in data.batches if b.free_seats == 0)
        sessions = sum(len(b.sessions) for b in data.batches)
        done = sum(1 for b in data.batches for s in b.sessions
                   if s.status == SessionStatus.COMPLETED)
        table.add_row("Kurse", str(len(data.courses)), f"{discounted} mit Rabatt")
        table.add_row("Gruppen", str(len(data.batches)), f"{full} voll belegt")
        table.add_row("Termine", str(sessions), f"{done} abgeschlossen")
        table.add_row("Einschreibungen", str(len(data.enrollments)),
                      f"{len(data.active_enrollments())} aktiv")

        console.print(table)
