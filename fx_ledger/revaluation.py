"""
Unrealized FX Revaluation

Values open foreign-currency positions (unpaid parts of foreign-customer
invoices, foreign-currency bank balances) at their historical rate and at the
current rate, and derives the unrealized gain or loss in the reporting
currency:

    gain_loss = remaining_amount * (current_rate - historical_rate)

A positive result is a gain. Positions whose current rate cannot be resolved
stay in the result with ``current_rate = None`` so the caller can ask for a
manual rate; they contribute nothing to totals.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set
import logging

from .currency import Currency, Money
from .diagnostics import ReportWarning, WarningType, emit
from .rates import FXRateResolver


logger = logging.getLogger("fx_ledger.revaluation")


class SourceType(Enum):
    INVOICE = "invoice"
    BANK_ACCOUNT = "bank_account"


class RateBasis(Enum):
    """Where a position's historical rate came from"""
    BOOKING = "booking"                              # Invoice booking-date rate
    REFERENCE = "reference"                          # Last recorded valuation rate
    CURRENT_APPROXIMATION = "current_approximation"  # No history; current rate stands in


@dataclass(frozen=True)
class OpenItem:
    """An open foreign-currency amount awaiting valuation"""
    source_type: SourceType
    source_id: str
    source_reference: str
    currency: Currency
    remaining_amount: Decimal
    account_code: str
    account_name: str
    rate_basis: RateBasis
    historical_rate: Optional[Decimal] = None
    booking_date: Optional[date] = None


@dataclass(frozen=True)
class ForeignPosition:
    """A valued open position; values are in the reporting currency"""
    source_type: SourceType
    source_id: str
    source_reference: str
    account_code: str
    account_name: str
    currency: Currency
    remaining_amount: Decimal
    historical_rate: Optional[Decimal]
    current_rate: Optional[Decimal]
    rate_basis: RateBasis
    as_of_date: date
    reporting_currency: Currency = Currency.BDT

    @property
    def is_resolved(self) -> bool:
        return self.current_rate is not None and self.historical_rate is not None

    @property
    def is_approximation(self) -> bool:
        return self.rate_basis == RateBasis.CURRENT_APPROXIMATION

    @property
    def historical_value(self) -> Optional[Money]:
        if self.historical_rate is None:
            return None
        return Money(self.remaining_amount * self.historical_rate, self.reporting_currency)

    @property
    def current_value(self) -> Optional[Money]:
        if self.current_rate is None:
            return None
        return Money(self.remaining_amount * self.current_rate, self.reporting_currency)

    @property
    def gain_loss(self) -> Optional[Money]:
        """Unrealized gain (positive) or loss (negative); None when a rate is unknown"""
        if not self.is_resolved:
            return None
        return Money(
            self.remaining_amount * (self.current_rate - self.historical_rate),
            self.reporting_currency
        )


@dataclass(frozen=True)
class MissingRate:
    """Positions held up by one currency's missing rate"""
    currency: str
    positions_count: int
    total_amount: Decimal


@dataclass
class PositionSet:
    positions: List[ForeignPosition]
    missing_currencies: Set[str]
    reporting_currency: Currency = Currency.BDT
    warnings: List[ReportWarning] = field(default_factory=list)

    @property
    def resolved_positions(self) -> List[ForeignPosition]:
        return [p for p in self.positions if p.is_resolved]

    @property
    def missing_rates(self) -> List[MissingRate]:
        summary: Dict[str, List[ForeignPosition]] = {}
        for position in self.positions:
            if position.current_rate is None:
                summary.setdefault(position.currency.code, []).append(position)
        return [
            MissingRate(
                currency=code,
                positions_count=len(items),
                total_amount=sum((p.remaining_amount for p in items), Decimal('0')),
            )
            for code, items in sorted(summary.items())
        ]

    @property
    def total_gain_loss(self) -> Money:
        total = Money.zero(self.reporting_currency)
        for position in self.resolved_positions:
            total = total + position.gain_loss
        return total

    @property
    def total_gain(self) -> Money:
        total = Money.zero(self.reporting_currency)
        for position in self.resolved_positions:
            if position.gain_loss.is_positive():
                total = total + position.gain_loss
        return total

    @property
    def total_loss(self) -> Money:
        """Sum of losses as a positive amount"""
        total = Money.zero(self.reporting_currency)
        for position in self.resolved_positions:
            if position.gain_loss.is_negative():
                total = total + abs(position.gain_loss)
        return total


class UnrealizedFXCalculator:
    """Values open items against the resolver's rates"""

    def __init__(self, resolver: FXRateResolver, reporting_currency: Currency = Currency.BDT):
        self.resolver = resolver
        self.reporting_currency = reporting_currency

    def compute_positions(self, open_items: Iterable[OpenItem], as_of_date: date) -> PositionSet:
        """
        Value every open item as of a date.

        Args:
            open_items: Open foreign-currency items
            as_of_date: Valuation date for current rates

        Returns:
            PositionSet with every item, the currencies lacking a current
            rate, and warnings for rates that could not be found
        """
        positions: List[ForeignPosition] = []
        missing: Set[str] = set()
        warnings: List[ReportWarning] = []

        for item in open_items:
            current_rate = self.resolver.resolve(item.currency, self.reporting_currency, as_of_date)
            if current_rate is None:
                missing.add(item.currency.code)

            historical_rate = self._historical_rate(item, current_rate, warnings)

            positions.append(ForeignPosition(
                source_type=item.source_type,
                source_id=item.source_id,
                source_reference=item.source_reference,
                account_code=item.account_code,
                account_name=item.account_name,
                currency=item.currency,
                remaining_amount=item.remaining_amount,
                historical_rate=historical_rate,
                current_rate=current_rate,
                rate_basis=item.rate_basis,
                as_of_date=as_of_date,
                reporting_currency=self.reporting_currency,
            ))

        result = PositionSet(
            positions=positions,
            missing_currencies=missing,
            reporting_currency=self.reporting_currency,
            warnings=warnings,
        )
        for missing_rate in result.missing_rates:
            emit(ReportWarning(
                warning_type=WarningType.MISSING_RATE,
                entity_type="currency",
                entity_id=missing_rate.currency,
                message=(
                    f"No active {missing_rate.currency}/{self.reporting_currency.code} "
                    f"rate on or before {as_of_date}"
                ),
                details={
                    "positions_count": missing_rate.positions_count,
                    "total_amount": missing_rate.total_amount,
                },
            ), warnings)

        logger.info(
            "Valued %d foreign positions as of %s (%d unresolved currencies)",
            len(positions), as_of_date, len(missing)
        )
        return result

    def _historical_rate(self, item: OpenItem, current_rate: Optional[Decimal],
                         warnings: List[ReportWarning]) -> Optional[Decimal]:
        if item.rate_basis == RateBasis.CURRENT_APPROXIMATION:
            return current_rate

        if item.historical_rate is not None:
            return item.historical_rate

        if item.rate_basis == RateBasis.BOOKING and item.booking_date is not None:
            booked = self.resolver.resolve(item.currency, self.reporting_currency, item.booking_date)
            if booked is not None:
                return booked

        emit(ReportWarning(
            warning_type=WarningType.MISSING_HISTORICAL_RATE,
            entity_type=item.source_type.value,
            entity_id=item.source_id,
            message=f"No historical {item.currency.code} rate for {item.source_reference}",
            details={"booking_date": item.booking_date},
        ), warnings)
        return None


def open_items_from_snapshot(snapshot, config) -> List[OpenItem]:
    """
    Collect open foreign-currency items from a ledger snapshot.

    Invoices: issued to foreign customers in a non-reporting currency, with
    more than the threshold left after allocations. Bank accounts: active,
    non-reporting currency, balance above the threshold.
    """
    threshold = config.threshold
    items: List[OpenItem] = []

    def account_name(code: str, fallback: str) -> str:
        account = snapshot.find_account(code)
        return account.name if account else fallback

    for invoice in snapshot.list_open_foreign_invoices():
        remaining = snapshot.remaining_amount(invoice)
        if remaining <= threshold:
            continue
        code = invoice.ar_account_code or config.foreign_ar_account_code
        items.append(OpenItem(
            source_type=SourceType.INVOICE,
            source_id=invoice.id,
            source_reference=invoice.invoice_number,
            currency=invoice.currency,
            remaining_amount=remaining,
            account_code=code,
            account_name=account_name(code, config.foreign_ar_account_name),
            rate_basis=RateBasis.BOOKING,
            historical_rate=invoice.exchange_rate,
            booking_date=invoice.invoice_date,
        ))

    for bank_account in snapshot.list_foreign_bank_accounts():
        if bank_account.balance <= threshold:
            continue
        code = bank_account.gl_account_code or config.foreign_bank_account_code
        has_reference = bank_account.reference_rate is not None
        items.append(OpenItem(
            source_type=SourceType.BANK_ACCOUNT,
            source_id=bank_account.id,
            source_reference=bank_account.name,
            currency=bank_account.currency,
            remaining_amount=bank_account.balance,
            account_code=code,
            account_name=account_name(code, config.foreign_bank_account_name),
            rate_basis=RateBasis.REFERENCE if has_reference else RateBasis.CURRENT_APPROXIMATION,
            historical_rate=bank_account.reference_rate,
        ))

    return items
