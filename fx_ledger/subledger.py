"""
Sub-ledger Documents

Customer invoices, payment allocations and bank accounts. These rows are
owned by the invoicing and treasury collaborators; the engine reads them to
find open foreign-currency positions and to build the receivables breakdown.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .currency import Currency
from .storage import StorageRecord


class InvoiceStatus(Enum):
    """Invoice lifecycle as kept by the invoicing collaborator"""
    DRAFT = "draft"
    SENT = "sent"          # Issued and awaiting payment
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"

    @property
    def is_open(self) -> bool:
        """Issued and not settled or cancelled; the receivable still stands"""
        return self not in (InvoiceStatus.DRAFT, InvoiceStatus.PAID, InvoiceStatus.VOID)


class CustomerType(Enum):
    LOCAL = "local"
    FOREIGN = "foreign"


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class Invoice(StorageRecord):
    """Customer invoice; ``exchange_rate`` is the booking-date rate to the reporting currency"""
    invoice_number: str
    customer_name: str
    currency: Currency
    total_amount: Decimal
    invoice_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.SENT
    customer_type: CustomerType = CustomerType.LOCAL
    exchange_rate: Optional[Decimal] = None
    ar_account_code: Optional[str] = None

    def __post_init__(self):
        self.total_amount = _as_decimal(self.total_amount)
        self.exchange_rate = _as_decimal(self.exchange_rate)
        if self.total_amount < Decimal('0'):
            raise ValueError(f"Invoice {self.invoice_number} total must be non-negative")
        if self.exchange_rate is not None and self.exchange_rate <= Decimal('0'):
            raise ValueError(f"Invoice {self.invoice_number} exchange rate must be positive")

    @property
    def is_foreign_customer(self) -> bool:
        return self.customer_type == CustomerType.FOREIGN

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        result['status'] = self.status.value
        result['customer_type'] = self.customer_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Invoice':
        data = dict(data)
        data['currency'] = Currency.from_code(data['currency'])
        data['status'] = InvoiceStatus(data['status'])
        data['customer_type'] = CustomerType(data['customer_type'])
        data['invoice_date'] = date.fromisoformat(data['invoice_date'])
        data['due_date'] = date.fromisoformat(data['due_date'])
        data['total_amount'] = Decimal(data['total_amount'])
        if data.get('exchange_rate') is not None:
            data['exchange_rate'] = Decimal(data['exchange_rate'])
        return super().from_dict(data)


@dataclass
class PaymentAllocation(StorageRecord):
    """Portion of a payment applied to an invoice, in the invoice currency"""
    invoice_id: str
    allocated_amount: Decimal
    allocation_date: Optional[date] = None
    payment_reference: Optional[str] = None

    def __post_init__(self):
        self.allocated_amount = _as_decimal(self.allocated_amount)
        if self.allocated_amount < Decimal('0'):
            raise ValueError("Allocated amount must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentAllocation':
        data = dict(data)
        data['allocated_amount'] = Decimal(data['allocated_amount'])
        if data.get('allocation_date'):
            data['allocation_date'] = date.fromisoformat(data['allocation_date'])
        return super().from_dict(data)


@dataclass
class BankAccount(StorageRecord):
    """
    Bank account balance held in ``currency``.

    ``reference_rate`` is the rate of the last valuation, when treasury keeps
    one; without it no historical rate exists for the cash balance.
    """
    name: str
    currency: Currency
    balance: Decimal
    gl_account_code: Optional[str] = None
    reference_rate: Optional[Decimal] = None
    active: bool = True

    def __post_init__(self):
        self.balance = _as_decimal(self.balance)
        self.reference_rate = _as_decimal(self.reference_rate)
        if self.reference_rate is not None and self.reference_rate <= Decimal('0'):
            raise ValueError(f"Bank account {self.name} reference rate must be positive")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BankAccount':
        data = dict(data)
        data['currency'] = Currency.from_code(data['currency'])
        data['balance'] = Decimal(data['balance'])
        if data.get('reference_rate') is not None:
            data['reference_rate'] = Decimal(data['reference_rate'])
        return super().from_dict(data)
