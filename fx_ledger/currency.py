"""
Multi-Currency Support Module

Handles ISO 4217 currency codes, time-dated exchange rate records, and proper
Decimal precision for ledger and revaluation math. NEVER uses float for
monetary values or rates.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional
from enum import Enum
import re

from .storage import StorageRecord

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations

# Rates are kept to six places, matching how rate tables are maintained
RATE_PRECISION = 6


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    BDT = ("BDT", 2)  # Bangladeshi Taka, reporting currency by default
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar
    CHF = ("CHF", 2)  # Swiss Franc
    AUD = ("AUD", 2)  # Australian Dollar
    SGD = ("SGD", 2)  # Singapore Dollar
    INR = ("INR", 2)  # Indian Rupee
    CNY = ("CNY", 2)  # Chinese Yuan
    AED = ("AED", 2)  # UAE Dirham
    SAR = ("SAR", 2)  # Saudi Riyal

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code (case-insensitive)"""
        if isinstance(code, Currency):
            return code
        try:
            return cls[str(code).strip().upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency code: {code!r}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency.code} and {other.currency.code}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract {other.currency.code} from {self.currency.code}")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount < other.amount

    def __gt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount > other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def convert(self, rate: Decimal, to_currency: Currency) -> 'Money':
        """Convert at an explicit rate (units of to_currency per unit of self)"""
        if self.currency == to_currency:
            return self
        return Money(self.amount * rate, to_currency)

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


@dataclass
class FXRate(StorageRecord):
    """
    Time-dated exchange rate row.

    Several rows may exist for the same pair and date (manual overrides).
    ``sequence`` is assigned by the repository on insert and orders rows that
    share a date, newest last.
    """
    from_currency: Currency
    to_currency: Currency
    rate_date: date
    rate: Decimal
    source: str = "feed"
    active: bool = True
    sequence: int = 0
    notes: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.rate, Decimal):
            self.rate = Decimal(str(self.rate))
        if self.rate <= Decimal('0'):
            raise ValueError(f"Exchange rate must be positive, got {self.rate}")
        if self.from_currency == self.to_currency:
            raise ValueError("Exchange rate currencies must differ")

    @property
    def pair(self) -> tuple:
        return (self.from_currency, self.to_currency)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['from_currency'] = self.from_currency.code
        result['to_currency'] = self.to_currency.code
        result['rate_date'] = self.rate_date.isoformat()
        result['rate'] = str(self.rate)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FXRate':
        data = dict(data)
        data['from_currency'] = Currency.from_code(data['from_currency'])
        data['to_currency'] = Currency.from_code(data['to_currency'])
        data['rate_date'] = date.fromisoformat(data['rate_date'])
        data['rate'] = Decimal(data['rate'])
        for key in ('created_at', 'updated_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return cls(**data)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number (e.g. a manually typed rate)

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Handle comma as decimal separator (European format)
    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 3:  # Likely decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Likely thousands separator
            clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, strings and Decimals to Decimal without going through float"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        return decimal_from_string(value)
    return Decimal(value)


def quantize_rate(rate: Decimal) -> Decimal:
    """Round an exchange rate to the stored rate precision"""
    return rate.quantize(Decimal('0.1') ** RATE_PRECISION, rounding=ROUND_HALF_UP)
