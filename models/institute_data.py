"""InstituteData: Vollständiger Datenbestand als Schnappschuss (Pydantic v2)."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from models.course import Course
from models.batch import Batch
from models.enrollment import Enrollment, EnrollmentStatus


class InstituteData(BaseModel):
    """Kurse, Gruppen (inkl. Terminen) und Einschreibungen in einem Dokument."""

    courses: list[Course] = []
    batches: list[Batch] = []
    enrollments: list[Enrollment] = []
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    data_version: str = "1.0"

    # ─── Übersicht ───

    def summary(self) -> str:
        """Kurze Übersicht über den Datenbestand."""
        active_batches = sum(1 for b in self.batches if b.is_active)
        seats = sum(b.max_students for b in self.batches if b.is_active)
        taken = sum(b.active_count for b in self.batches if b.is_active)
        sessions = sum(len(b.sessions) for b in self.batches)
        by_status: dict[str, int] = {}
        for e in self.enrollments:
            by_status[e.status.value] = by_status.get(e.status.value, 0) + 1
        lines = [
            f"Kurse: {len(self.courses)}",
            f"Gruppen: {len(self.batches)} ({active_batches} aktiv)",
            f"Plätze: {taken}/{seats} belegt" if seats else "",
            f"Termine: {sessions}",
            f"Einschreibungen: {len(self.enrollments)} "
            + ", ".join(f"{k}={v}" for k, v in sorted(by_status.items())),
        ]
        return "\n".join(l for l in lines if l)

    def active_enrollments(self) -> list[Enrollment]:
        return [e for e in self.enrollments if e.status == EnrollmentStatus.ACTIVE]

    # ─── Persistenz ────────────────────────────────────────────────────────

    def save_json(self, path: Path) -> None:
        """Speichert den kompletten Datenbestand als JSON-Datei."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        updated = self.model_copy(update={
            "modified_at": now,
            "created_at": self.created_at or now,
        })
        with open(path, "w", encoding="utf-8") as f:
            f.write(updated.model_dump_json(indent=2))

    @classmethod
    def load_json(cls, path: Path) -> "InstituteData":
        """Lädt einen Datenbestand aus einer JSON-Datei."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"JSON-Datei nicht gefunden: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return cls.model_validate_json(f.read())
