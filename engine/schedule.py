"""Termin-Generator: wöchentliche Slots → konkrete, datierte Termine.

Architektur:
  - materialize_sessions() arbeitet direkt auf einem Batch-Objekt und ist
    idempotent: ein Termin ist eindeutig über (Gruppe, Datum, Slot).
  - Die Store-Varianten (materialize, reschedule, sweep, cancel_session)
    kapseln dasselbe in einer batch_transaction.
  - Termine mit Anwesenheit, mit Status ≠ scheduled und Einzeltermine
    (schedule_extra_session) werden bei Stundenplan-Änderungen NIE verworfen.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from config.schema import ScheduleConfig
from engine.access import require_staff
from engine.clock import Clock, as_aware, utc_now
from engine.errors import InvalidRange, SessionExists, SessionLocked, SessionNotFound
from engine.validation import validate_batch, validate_slot_times
from models.actor import Actor
from models.batch import Batch, ScheduleSlot, SeatStatus
from models.session import (
    EXTRA_SLOT_PREFIX,
    AttendanceRecord,
    AttendanceStatus,
    ClassSession,
    SessionStatus,
)
from storage.repository import InstituteStore

logger = logging.getLogger(__name__)


def session_id_for(batch_id: str, day: date, slot: ScheduleSlot) -> str:
    return f"{batch_id}/{day.isoformat()}/{slot.key}"


def dates_for_slot(slot: ScheduleSlot, start: date, end: date) -> list[date]:
    """Alle Daten in [start, end], deren Wochentag zum Slot passt.

    day_of_week: 0=So .. 6=Sa; date.weekday(): 0=Mo .. 6=So.
    """
    if end < start:
        return []
    start_dow = (start.weekday() + 1) % 7
    first = start + timedelta(days=(slot.day_of_week - start_dow) % 7)
    days = []
    current = first
    while current <= end:
        days.append(current)
        current += timedelta(days=7)
    return days


class ScheduleGenerator:
    """Erzeugt und pflegt die Termine einer Gruppe.

    Verwendung:
        gen = ScheduleGenerator(store, config.schedule)
        sessions = gen.materialize_sessions(batch)
    """

    def __init__(
        self,
        store: Optional[InstituteStore] = None,
        config: Optional[ScheduleConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.config = config or ScheduleConfig()
        self.clock = clock
        self.tz = self.config.tzinfo

    # ─── Zeitpunkte ───────────────────────────────────────────────────────────

    def session_start(self, session: ClassSession) -> datetime:
        return datetime.combine(session.date, session.start_time, tzinfo=self.tz)

    def session_end(self, session: ClassSession) -> datetime:
        return datetime.combine(session.date, session.end_time, tzinfo=self.tz)

    def _aware(self, instant: datetime) -> datetime:
        return as_aware(instant, self.tz)

    # ─── Materialisierung ─────────────────────────────────────────────────────

    def materialize_sessions(self, batch: Batch) -> list[ClassSession]:
        """Ergänzt fehlende Termine im Batch und gibt alle Termine sortiert zurück.

        Bestehende Termine bleiben unverändert, auch wenn ihr Slot nicht mehr
        existiert. Reihenfolge: Datum aufsteigend, bei Gleichstand Startzeit.
        """
        existing = {s.id for s in batch.sessions}
        created = 0
        for slot in batch.schedule:
            for day in dates_for_slot(slot, batch.start_date, batch.end_date):
                sid = session_id_for(batch.id, day, slot)
                if sid in existing:
                    continue
                batch.sessions.append(ClassSession(
                    id=sid,
                    slot_key=slot.key,
                    date=day,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    subject_id=slot.subject_id,
                ))
                existing.add(sid)
                created += 1

        batch.sessions.sort(key=lambda s: (s.date, s.start_time, s.slot_key))
        if created:
            logger.info(f"Gruppe {batch.id}: {created} Termine erzeugt "
                        f"({len(batch.sessions)} gesamt)")
        return list(batch.sessions)

    def upcoming_count(self, batch: Batch, from_instant: Optional[datetime] = None) -> int:
        """Anzahl geplanter Termine, die ab `from_instant` beginnen."""
        from_instant = self._aware(from_instant or self.clock())
        return sum(
            1 for s in batch.sessions
            if s.status == SessionStatus.SCHEDULED
            and self.session_start(s) >= from_instant
        )

    def next_session(self, batch: Batch,
                     from_instant: Optional[datetime] = None) -> Optional[ClassSession]:
        from_instant = self._aware(from_instant or self.clock())
        upcoming = [s for s in batch.sessions
                    if s.status == SessionStatus.SCHEDULED
                    and self.session_start(s) >= from_instant]
        return upcoming[0] if upcoming else None

    # ─── Stundenplan-Änderung ─────────────────────────────────────────────────

    def apply_schedule_change(
        self,
        batch: Batch,
        start_date: date,
        end_date: date,
        slots: list[ScheduleSlot],
    ) -> list[ClassSession]:
        """Neue Slots/Zeitspanne übernehmen und nur den unberührten Rest neu berechnen.

        Verworfen werden ausschließlich Slot-Termine, die noch geplant sind, keine
        Anwesenheit haben und vom neuen Plan nicht mehr abgedeckt werden.
        """
        batch.start_date = start_date
        batch.end_date = end_date
        batch.schedule = list(slots)
        validate_batch(batch)

        covered = {
            session_id_for(batch.id, day, slot)
            for slot in batch.schedule
            for day in dates_for_slot(slot, start_date, end_date)
        }
        kept = []
        dropped = 0
        for s in batch.sessions:
            pristine = (s.status == SessionStatus.SCHEDULED and not s.has_attendance
                        and not s.is_extra)
            if pristine and s.id not in covered:
                dropped += 1
                continue
            kept.append(s)
        batch.sessions = kept
        if dropped:
            logger.info(f"Gruppe {batch.id}: {dropped} unberührte Termine entfernt")
        return self.materialize_sessions(batch)

    # ─── Statusfortschritt ────────────────────────────────────────────────────

    def advance_statuses(self, batch: Batch, now: Optional[datetime] = None) -> int:
        """scheduled → ongoing → completed anhand der Uhrzeit. Idempotent.

        Beim Abschluss bekommt jeder aktive Teilnehmer ohne Eintrag
        einen 'absent'-Eintrag. Gibt die Anzahl geänderter Termine zurück.
        """
        now = self._aware(now or self.clock())
        changed = 0
        for s in batch.sessions:
            if s.is_final:
                continue
            start, end = self.session_start(s), self.session_end(s)
            if now >= end:
                s.status = SessionStatus.COMPLETED
                self._fill_absent(batch, s, end)
                changed += 1
            elif now >= start and s.status == SessionStatus.SCHEDULED:
                s.status = SessionStatus.ONGOING
                changed += 1
        return changed

    def _fill_absent(self, batch: Batch, session: ClassSession, closed_at: datetime) -> None:
        for seat in batch.enrolled_students:
            if seat.status != SeatStatus.ACTIVE or self._aware(seat.enrolled_at) > closed_at:
                continue
            if session.record_for(seat.student_id) is None:
                session.attendance.append(AttendanceRecord(
                    student_id=seat.student_id,
                    status=AttendanceStatus.ABSENT,
                    recorded_by="system",
                ))

    # ─── Store-Operationen ────────────────────────────────────────────────────

    def materialize(self, batch_id: str) -> list[ClassSession]:
        with self.store.batch_transaction(batch_id) as batch:
            return self.materialize_sessions(batch)

    def sessions(self, batch_id: str) -> list[ClassSession]:
        """Termine einer Gruppe; beim ersten Abruf werden sie materialisiert."""
        batch = self.store.get_batch(batch_id)
        if batch.sessions or not batch.schedule:
            return batch.sessions
        return self.materialize(batch_id)

    def reschedule(
        self,
        batch_id: str,
        actor: Actor,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        slots: Optional[list[ScheduleSlot]] = None,
    ) -> list[ClassSession]:
        """Stundenplan einer Gruppe ändern (nur Admins/Dozenten)."""
        require_staff(actor, "Stundenplan ändern")
        with self.store.batch_transaction(batch_id) as batch:
            return self.apply_schedule_change(
                batch,
                start_date or batch.start_date,
                end_date or batch.end_date,
                slots if slots is not None else batch.schedule,
            )

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Statusfortschritt über alle aktiven Gruppen (periodischer Lauf)."""
        now = self._aware(now or self.clock())
        total = 0
        for batch in self.store.list_batches():
            if not batch.is_active:
                continue
            with self.store.batch_transaction(batch.id) as locked:
                total += self.advance_statuses(locked, now)
        if total:
            logger.info(f"Sweep: {total} Termine fortgeschrieben")
        return total

    def schedule_extra_session(
        self,
        batch_id: str,
        actor: Actor,
        day: date,
        start_time: time,
        end_time: time,
        subject_id: Optional[str] = None,
        meeting_link: Optional[str] = None,
    ) -> ClassSession:
        """Einzeltermin außerhalb des Wochenplans anlegen (nur Admins/Dozenten).

        Pro Datum höchstens ein Termin; das Datum muss in der Laufzeit der
        Gruppe liegen. Alle aktiven Teilnehmer werden als 'absent' vorbelegt.
        Einzeltermine überstehen jede Stundenplan-Änderung.

        Fehler: SessionExists, InvalidRange, PermissionDenied.
        """
        require_staff(actor, "Einzeltermin anlegen")
        validate_slot_times(start_time, end_time, f"Einzeltermin {day.isoformat()}")
        with self.store.batch_transaction(batch_id) as batch:
            if not (batch.start_date <= day <= batch.end_date):
                raise InvalidRange(
                    f"{day:%d.%m.%Y} liegt außerhalb der Laufzeit von Gruppe {batch_id}",
                    batch_id=batch_id,
                )
            if any(s.date == day for s in batch.sessions):
                raise SessionExists(
                    f"Gruppe {batch_id} hat am {day:%d.%m.%Y} bereits einen Termin",
                    batch_id=batch_id,
                )
            slot_key = f"{EXTRA_SLOT_PREFIX}-{start_time:%H%M}-{end_time:%H%M}"
            if subject_id:
                slot_key = f"{slot_key}-{subject_id}"
            session = ClassSession(
                id=f"{batch_id}/{day.isoformat()}/{slot_key}",
                slot_key=slot_key,
                date=day,
                start_time=start_time,
                end_time=end_time,
                subject_id=subject_id,
                meeting_link=meeting_link,
                attendance=[
                    AttendanceRecord(student_id=sid, status=AttendanceStatus.ABSENT,
                                     recorded_by="system")
                    for sid in batch.active_student_ids()
                ],
            )
            batch.sessions.append(session)
            batch.sessions.sort(key=lambda s: (s.date, s.start_time, s.slot_key))
        logger.info(f"Gruppe {batch_id}: Einzeltermin {session.id} angelegt von {actor}")
        return session

    def cancel_session(self, batch_id: str, session_id: str, actor: Actor) -> ClassSession:
        """Termin absagen. Abgeschlossene/abgesagte Termine sind gesperrt."""
        require_staff(actor, "Termin absagen")
        with self.store.batch_transaction(batch_id) as batch:
            session = batch.get_session(session_id)
            if session is None:
                raise SessionNotFound(f"Termin nicht gefunden: {session_id}",
                                      session_id=session_id)
            if session.is_final:
                raise SessionLocked(
                    f"Termin {session_id} ist bereits {session.status.value}",
                    session_id=session_id,
                )
            session.status = SessionStatus.CANCELLED
            logger.info(f"Termin {session_id} abgesagt von {actor}")
            return session

    def attach_meeting(
        self,
        batch_id: str,
        session_id: str,
        actor: Actor,
        meeting_link: Optional[str] = None,
        recording_url: Optional[str] = None,
    ) -> ClassSession:
        require_staff(actor, "Meeting-Link setzen")
        with self.store.batch_transaction(batch_id) as batch:
            session = batch.get_session(session_id)
            if session is None:
                raise SessionNotFound(f"Termin nicht gefunden: {session_id}",
                                      session_id=session_id)
            if meeting_link is not None:
                session.meeting_link = meeting_link
            if recording_url is not None:
                session.recording_url = recording_url
            return session
