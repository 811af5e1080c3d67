"""Anwesenheits-Erfassung und -Quote.

Anwesenheiten liegen im Termin (Batch → ClassSession → AttendanceRecord);
jede Erfassung ist ein Lesen-Ändern-Schreiben auf genau einer Gruppe.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, tzinfo
from typing import Optional, Union

from pydantic import BaseModel

from config.schema import AttendanceConfig, ScheduleConfig
from engine.clock import as_aware
from engine.errors import (
    InvalidInterval,
    SessionLocked,
    SessionNotFound,
    StudentNotInBatch,
)
from models.actor import Actor
from models.batch import Batch
from models.session import (
    AttendanceRecord,
    AttendanceStatus,
    ClassSession,
    SessionStatus,
)
from storage.repository import InstituteStore

logger = logging.getLogger(__name__)


class AttendanceUpdate(BaseModel):
    """Eine Zeile einer Sammel-Erfassung für einen Termin."""

    student_id: str
    status: AttendanceStatus
    join_at: Optional[datetime] = None
    leave_at: Optional[datetime] = None


class AttendanceTracker:
    """Schreibt Anwesenheiten und berechnet Anwesenheitsquoten.

    Naive join_at/leave_at gelten in `tz` (Default: Instituts-Zeitzone).
    """

    def __init__(self, store: Optional[InstituteStore] = None,
                 config: Optional[AttendanceConfig] = None,
                 tz: Optional[tzinfo] = None) -> None:
        self.store = store
        self.config = config or AttendanceConfig()
        self.tz = tz or ScheduleConfig().tzinfo
        self._counted = {AttendanceStatus(s) for s in self.config.counted_statuses}

    def can_correct(self, actor: Actor) -> bool:
        return actor.role in self.config.correction_roles

    # ─── Erfassen ─────────────────────────────────────────────────────────────

    def record_attendance(
        self,
        batch_id: str,
        session_id: str,
        student_id: str,
        status: Union[AttendanceStatus, str],
        join_at: Optional[datetime] = None,
        leave_at: Optional[datetime] = None,
        *,
        actor: Actor,
    ) -> AttendanceRecord:
        """Anwesenheit eines Teilnehmers setzen (anlegen oder überschreiben).

        Fehler: SessionNotFound, SessionLocked, InvalidInterval, StudentNotInBatch.
        """
        update = self._normalize(AttendanceUpdate(
            student_id=student_id, status=status, join_at=join_at, leave_at=leave_at,
        ), session_id)
        with self.store.batch_transaction(batch_id) as batch:
            session = self._writable_session(batch, session_id, actor)
            return self._apply(batch, session, update, actor).model_copy()

    def record_attendance_bulk(
        self,
        batch_id: str,
        session_id: str,
        updates: Iterable[Union[AttendanceUpdate, dict]],
        *,
        actor: Actor,
    ) -> list[AttendanceRecord]:
        """Mehrere Anwesenheiten eines Termins in einem Schritt – alles oder nichts.

        Dieselben Regeln und Fehler wie record_attendance; schlägt eine Zeile
        fehl, bleibt der Termin unverändert.
        """
        rows = [self._normalize(u if isinstance(u, AttendanceUpdate)
                                else AttendanceUpdate(**u), session_id)
                for u in updates]
        with self.store.batch_transaction(batch_id) as batch:
            session = self._writable_session(batch, session_id, actor)
            records = [self._apply(batch, session, row, actor).model_copy()
                       for row in rows]
        logger.info(f"Termin {session_id}: {len(records)} Anwesenheiten erfasst "
                    f"durch {actor}")
        return records

    def _normalize(self, update: AttendanceUpdate, session_id: str) -> AttendanceUpdate:
        if update.join_at is not None:
            update.join_at = as_aware(update.join_at, self.tz)
        if update.leave_at is not None:
            update.leave_at = as_aware(update.leave_at, self.tz)
        if (update.join_at is not None and update.leave_at is not None
                and update.leave_at < update.join_at):
            raise InvalidInterval(
                f"Verlassen ({update.leave_at.isoformat()}) liegt vor Beitritt "
                f"({update.join_at.isoformat()})",
                session_id=session_id, student_id=update.student_id,
            )
        return update

    def _writable_session(self, batch: Batch, session_id: str,
                          actor: Actor) -> ClassSession:
        session = batch.get_session(session_id)
        if session is None:
            raise SessionNotFound(f"Termin nicht gefunden: {session_id}",
                                  session_id=session_id)
        self._check_writable(session, actor)
        return session

    def _apply(self, batch: Batch, session: ClassSession, update: AttendanceUpdate,
               actor: Actor) -> AttendanceRecord:
        student_id = update.student_id
        if batch.seat_of(student_id) is None:
            raise StudentNotInBatch(
                f"{student_id} gehört nicht zur Gruppe {batch.id}",
                batch_id=batch.id, student_id=student_id,
            )

        record = session.record_for(student_id)
        if record is None:
            record = AttendanceRecord(student_id=student_id)
            session.attendance.append(record)
        elif session.status == SessionStatus.COMPLETED:
            logger.info(f"Korrektur {session.id}/{student_id}: "
                        f"{record.status.value} → {update.status.value} durch {actor}")
        record.status = update.status
        record.join_at = update.join_at if update.join_at is not None else record.join_at
        record.leave_at = update.leave_at if update.leave_at is not None else record.leave_at
        if (record.join_at is not None and record.leave_at is not None
                and record.leave_at < record.join_at):
            raise InvalidInterval(
                f"Verlassen liegt vor Beitritt ({session.id}/{student_id})",
                session_id=session.id, student_id=student_id,
            )
        record.recorded_by = actor.id
        return record

    def _check_writable(self, session: ClassSession, actor: Actor) -> None:
        if session.status == SessionStatus.CANCELLED:
            raise SessionLocked(f"Termin {session.id} wurde abgesagt",
                                session_id=session.id)
        if session.status == SessionStatus.COMPLETED and not self.can_correct(actor):
            raise SessionLocked(
                f"Termin {session.id} ist abgeschlossen; Korrektur nur durch "
                f"{', '.join(r.value for r in self.config.correction_roles)}",
                session_id=session.id,
            )

    # ─── Auswertung ───────────────────────────────────────────────────────────

    def attendance_percentage(self, student_id: str,
                              batches: Union[Batch, Iterable[Batch]]) -> float:
        """Anteil anwesender Termine in Prozent, nur über abgeschlossene Termine.

        Nenner: abgeschlossene Termine mit Eintrag für den Teilnehmer.
        Zähler: davon present oder late. Ohne Einträge: 0.
        """
        if isinstance(batches, Batch):
            batches = [batches]
        recorded = 0
        attended = 0
        for batch in batches:
            for session in batch.sessions:
                if session.status != SessionStatus.COMPLETED:
                    continue
                record = session.record_for(student_id)
                if record is None:
                    continue
                recorded += 1
                if record.status in self._counted:
                    attended += 1
        if recorded == 0:
            return 0.0
        return attended / recorded * 100

    def course_attendance_percentage(self, student_id: str, course_id: str) -> float:
        """Quote über alle Gruppen eines Kurses."""
        return self.attendance_percentage(student_id,
                                          self.store.list_batches(course_id=course_id))

    def session_attendance_rate(self, session: ClassSession) -> Optional[float]:
        """Anwesenheitsanteil eines Termins in Prozent; None ohne Einträge."""
        if not session.attendance:
            return None
        present = sum(1 for r in session.attendance if r.status in self._counted)
        return present / len(session.attendance) * 100
