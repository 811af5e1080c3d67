"""Preis-Engine: effektiver Kurspreis zu einem Zeitpunkt.

Regel:
  - Rabatt vorhanden, aktiv und Zeitpunkt ∈ [start_at, end_at] (inklusive)
      → fee × (1 − pct/100), half-even gerundet auf die kleinste Einheit
  - sonst → fee

Die Engine setzt wohlgeformte Rabatte voraus (geprüft in engine.validation).
"""

from datetime import datetime, tzinfo
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional

from pydantic import BaseModel

from config.schema import PricingConfig, ScheduleConfig
from engine.clock import Clock, as_aware, utc_now
from models.course import Course

_HUNDRED = Decimal(100)


class PriceQuote(BaseModel):
    """Preisauskunft für UI/API: Grundgebühr, Rabatt und effektiver Preis."""

    course_id: str
    currency: str
    fee: Decimal
    effective_price: Decimal
    discount_percentage: Optional[Decimal] = None
    is_discount_valid: bool = False
    quoted_at: datetime

    @property
    def discount_amount(self) -> Decimal:
        return self.fee - self.effective_price


class PricingEngine:
    """Berechnet Preise; Zeitpunkt ist injizierbar für deterministische Tests.

    Naive Zeitpunkte gelten in `tz` (Default: Instituts-Zeitzone).
    """

    def __init__(self, config: Optional[PricingConfig] = None,
                 clock: Clock = utc_now, tz: Optional[tzinfo] = None) -> None:
        self.config = config or PricingConfig()
        self.clock = clock
        self.tz = tz or ScheduleConfig().tzinfo
        self._quantum = Decimal(1).scaleb(-self.config.minor_unit_digits)

    def _instant(self, at: Optional[datetime]) -> datetime:
        return as_aware(at or self.clock(), self.tz)

    def is_discount_valid(self, course: Course, at: Optional[datetime] = None) -> bool:
        at = self._instant(at)
        return course.discount is not None and course.discount.covers(at)

    def effective_price(self, course: Course, at: Optional[datetime] = None) -> Decimal:
        """Effektiver Preis zum Zeitpunkt `at` (Default: jetzt laut Uhr)."""
        at = self._instant(at)
        fee = Decimal(course.fee)
        if not self.is_discount_valid(course, at):
            return fee.quantize(self._quantum, rounding=ROUND_HALF_EVEN)
        factor = 1 - Decimal(course.discount.percentage) / _HUNDRED
        return (fee * factor).quantize(self._quantum, rounding=ROUND_HALF_EVEN)

    def discount_amount(self, course: Course, at: Optional[datetime] = None) -> Decimal:
        at = self._instant(at)
        fee = Decimal(course.fee).quantize(self._quantum, rounding=ROUND_HALF_EVEN)
        return fee - self.effective_price(course, at)

    def quote(self, course: Course, at: Optional[datetime] = None) -> PriceQuote:
        at = self._instant(at)
        valid = self.is_discount_valid(course, at)
        return PriceQuote(
            course_id=course.id,
            currency=self.config.currency,
            fee=Decimal(course.fee).quantize(self._quantum, rounding=ROUND_HALF_EVEN),
            effective_price=self.effective_price(course, at),
            discount_percentage=course.discount.percentage if course.discount else None,
            is_discount_valid=valid,
            quoted_at=at,
        )


def effective_price(course: Course, at: Optional[datetime] = None,
                    minor_unit_digits: int = 2) -> Decimal:
    """Kurzform ohne Engine-Instanz."""
    return PricingEngine(PricingConfig(minor_unit_digits=minor_unit_digits)).effective_price(
        course, at)
