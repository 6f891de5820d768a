"""
FX Rate Resolver

Finds the exchange rate in force for a currency pair on a date and records
manually supplied rates.

Resolution rule: among active rows for the pair with ``rate_date <= as_of``,
take the latest date; rows sharing that date are ordered by insertion
sequence and the newest wins. A missing rate is a normal outcome (``None``),
never an exception, so one unknown currency cannot abort a whole report.
"""

from decimal import Decimal
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple, Union
import logging

from .audit import AuditEventType, AuditTrail
from .currency import Currency, FXRate, decimal_from_string, quantize_rate, to_decimal


logger = logging.getLogger("fx_ledger.rates")


class ManualRatePolicy(Enum):
    """What happens to earlier rows when a manual rate is entered for a pair and date"""
    APPEND = "append"        # Earlier rows stay active; the newest wins on ties
    SUPERSEDE = "supersede"  # Earlier active rows for the same pair and date are deactivated


class RateSource(Protocol):
    def list_rates(self, from_currency: Currency, to_currency: Currency) -> List[FXRate]:
        ...


def parse_rate(rate: Union[Decimal, str, int]) -> Decimal:
    """Parse a manually entered rate; raises ValueError unless it is a positive number"""
    value = decimal_from_string(rate) if isinstance(rate, str) else to_decimal(rate)
    if not value.is_finite() or value <= Decimal('0'):
        raise ValueError(f"Manual rate must be positive, got {value}")
    return quantize_rate(value)


def select_rate(rows: List[FXRate], as_of_date: date) -> Optional[FXRate]:
    """Pick the effective row: active, latest date on or before as-of, newest insert on ties"""
    candidates = [r for r in rows if r.active and r.rate_date <= as_of_date]
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.rate_date, r.sequence))


class FXRateResolver:
    """
    Request-scoped resolver. Lookups are memoised per (pair, date); entering a
    manual rate clears the memo so the next lookup sees the new row.
    """

    def __init__(
        self,
        source: RateSource,
        policy: ManualRatePolicy = ManualRatePolicy.APPEND,
        manual_source: str = "manual",
        audit_trail: Optional[AuditTrail] = None
    ):
        self.source = source
        self.policy = policy
        self.manual_source = manual_source
        self.audit_trail = audit_trail
        self._cache: Dict[Tuple[Currency, Currency, date], Optional[FXRate]] = {}

    def find_rate(self, from_currency: Currency, to_currency: Currency,
                  as_of_date: date) -> Optional[FXRate]:
        """Return the effective rate row, or None when the pair has none"""
        key = (from_currency, to_currency, as_of_date)
        if key not in self._cache:
            rows = self.source.list_rates(from_currency, to_currency)
            self._cache[key] = select_rate(rows, as_of_date)
            if self._cache[key] is None:
                logger.debug("No active %s/%s rate on or before %s",
                             from_currency.code, to_currency.code, as_of_date)
        return self._cache[key]

    def resolve(self, from_currency: Currency, to_currency: Currency,
                as_of_date: date) -> Optional[Decimal]:
        """
        Rate converting one unit of from_currency into to_currency.

        Returns:
            The rate, Decimal('1') for identical currencies, or None if not found
        """
        if from_currency == to_currency:
            return Decimal('1')
        row = self.find_rate(from_currency, to_currency, as_of_date)
        return row.rate if row is not None else None

    def apply_manual_rate(
        self,
        currency: Currency,
        to_currency: Currency,
        rate: Union[Decimal, str, int],
        rate_date: date,
        notes: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> FXRate:
        """
        Record a manually supplied rate as a new active row.

        Args:
            currency: Currency being priced
            to_currency: Currency the rate converts into
            rate: Rate as Decimal or as typed text ("112.50")
            rate_date: Date the rate is effective from
            notes: Free text kept with the row
            user_id: Who entered the rate, for the audit trail

        Returns:
            The inserted FXRate row

        Raises:
            ValueError: If the rate is not a positive number, both currencies
                are the same, or the rate source is read-only
        """
        if not hasattr(self.source, "insert_manual_rate"):
            raise ValueError("Rate source is read-only; manual rates need the ledger repository")

        value = parse_rate(rate)

        if currency == to_currency:
            raise ValueError(f"Cannot enter a {currency.code}/{to_currency.code} rate")

        with self.source.atomic():
            if self.policy == ManualRatePolicy.SUPERSEDE:
                self._deactivate_same_day(currency, to_currency, rate_date, user_id)

            fx_rate = self.source.insert_manual_rate(
                currency, to_currency, value, rate_date, source=self.manual_source, notes=notes
            )
        self._cache.clear()

        logger.info("Manual rate %s/%s = %s effective %s",
                    currency.code, to_currency.code, value, rate_date)
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.FX_RATE_CREATED,
                entity_type="fx_rate",
                entity_id=fx_rate.id,
                user_id=user_id,
                metadata={
                    "from_currency": currency.code,
                    "to_currency": to_currency.code,
                    "rate": value,
                    "rate_date": rate_date,
                    "source": self.manual_source,
                    "policy": self.policy,
                    "notes": notes,
                }
            )
        return fx_rate

    def _deactivate_same_day(self, currency: Currency, to_currency: Currency,
                             rate_date: date, user_id: Optional[str]) -> None:
        for row in self.source.list_rates(currency, to_currency):
            if row.active and row.rate_date == rate_date:
                self.source.deactivate_rate(row.id)
                if self.audit_trail:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.FX_RATE_DEACTIVATED,
                        entity_type="fx_rate",
                        entity_id=row.id,
                        user_id=user_id,
                        metadata={"superseded_rate": row.rate, "rate_date": rate_date}
                    )
