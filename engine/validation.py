"""Schreibzeit-Validierung für Kurse und Gruppen.

Alles, was hier abgelehnt wird, erreicht die Engines nie. Die Preis-Engine
darf deshalb wohlgeformte Rabatte voraussetzen.
"""

from datetime import date, time
from typing import Optional

from engine.errors import InvalidCapacity, InvalidDiscount, InvalidInput, InvalidRange
from models.batch import Batch
from models.course import Course, Discount


def validate_discount(discount: Optional[Discount]) -> None:
    """Prozentsatz in [0, 100], zeitzonenbehaftete Grenzen und start_at ≤ end_at."""
    if discount is None:
        return
    if not (0 <= discount.percentage <= 100):
        raise InvalidDiscount(
            f"Rabatt {discount.percentage}% liegt außerhalb von 0–100 %",
            percentage=discount.percentage,
        )
    # Die Preis-Engine vergleicht mit zeitzonenbehafteten Zeitpunkten
    for label, bound in (("Beginn", discount.start_at), ("Ende", discount.end_at)):
        if bound.tzinfo is None:
            raise InvalidDiscount(
                f"Rabatt-{label} {bound.isoformat()} hat keine Zeitzone",
            )
    if discount.end_at < discount.start_at:
        raise InvalidDiscount(
            f"Rabatt-Ende {discount.end_at.isoformat()} liegt vor dem Beginn "
            f"{discount.start_at.isoformat()}",
        )


def validate_course(course: Course) -> None:
    if course.fee <= 0:
        raise InvalidInput(f"Kursgebühr muss positiv sein (ist {course.fee})",
                           course_id=course.id)
    validate_discount(course.discount)


def validate_date_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise InvalidRange(
            f"Startdatum {start_date.isoformat()} liegt nach dem Enddatum "
            f"{end_date.isoformat()}",
        )


def validate_capacity(max_students: int, active_count: int = 0) -> None:
    if max_students < 1:
        raise InvalidCapacity(f"Kapazität muss ≥ 1 sein (ist {max_students})")
    if max_students < active_count:
        raise InvalidCapacity(
            f"Kapazität {max_students} ist kleiner als die aktuelle "
            f"Belegung ({active_count})",
        )


def validate_slot_times(start_time: time, end_time: time, label: str) -> None:
    if end_time <= start_time:
        raise InvalidRange(
            f"{label}: Ende {end_time:%H:%M} liegt nicht nach Beginn {start_time:%H:%M}",
        )


def validate_batch(batch: Batch) -> None:
    """Prüft eine neue oder geänderte Gruppe vor dem Speichern."""
    validate_date_range(batch.start_date, batch.end_date)
    validate_capacity(batch.max_students, batch.active_count)
    for slot in batch.schedule:
        validate_slot_times(slot.start_time, slot.end_time, f"Slot {slot.key}")
