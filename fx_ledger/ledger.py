"""
Double-Entry Ledger Records

Chart-of-accounts rows, journal entries and journal lines as read from the
ledger repository. Every line carries its amount twice: in the transaction
currency and converted into the reporting currency. Balances are always
derived from posted lines, never stored.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple
from enum import Enum

from .currency import Money, Currency
from .storage import StorageRecord


class JournalEntryStatus(Enum):
    """States of a journal entry"""
    DRAFT = "draft"      # Still editable, ignored by balances
    POSTED = "posted"    # Finalized, participates in balances


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountType.ASSET, AccountType.EXPENSE)


BALANCE_SHEET_TYPES = (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY)


def net_balance(account_type: AccountType, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Net balance under the account type's normal side.

    Assets and expenses: debit - credit.
    Liabilities, equity and revenue: credit - debit.
    """
    if account_type.is_debit_normal:
        return debit - credit
    return credit - debit


@dataclass
class Account(StorageRecord):
    """Chart-of-accounts row (read-only to the engine)"""
    code: str
    name: str
    account_type: AccountType
    parent_id: Optional[str] = None  # Weak reference to another Account.id
    level: int = 1
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = dict(data)
        data['account_type'] = AccountType(data['account_type'])
        return super().from_dict(data)


@dataclass
class JournalLine:
    """
    Individual line of a journal entry.

    ``debit_amount``/``credit_amount`` are in the transaction currency;
    ``reporting_debit``/``reporting_credit`` are the same amounts in the
    reporting currency. When omitted they are copied (same currency) or
    converted at ``fx_rate``.
    """
    account_code: str
    debit_amount: Money
    credit_amount: Money
    description: str = ""
    reporting_debit: Optional[Money] = None
    reporting_credit: Optional[Money] = None
    fx_rate: Decimal = Decimal('1')
    reporting_currency: Currency = Currency.BDT
    entry_id: Optional[str] = None
    entry_number: Optional[str] = None
    entry_date: Optional[date] = None

    def __post_init__(self):
        if self.debit_amount.currency != self.credit_amount.currency:
            raise ValueError("Debit and credit amounts must use same currency")

        if self.debit_amount.is_negative() or self.credit_amount.is_negative():
            raise ValueError(f"Journal line amounts must be non-negative (account {self.account_code})")

        if not isinstance(self.fx_rate, Decimal):
            self.fx_rate = Decimal(str(self.fx_rate))
        if self.fx_rate <= Decimal('0'):
            raise ValueError(f"Journal line fx_rate must be positive, got {self.fx_rate}")

        if self.reporting_debit is None:
            self.reporting_debit = self.debit_amount.convert(self.fx_rate, self.reporting_currency)
        if self.reporting_credit is None:
            self.reporting_credit = self.credit_amount.convert(self.fx_rate, self.reporting_currency)

        for amount in (self.reporting_debit, self.reporting_credit):
            if amount.currency != self.reporting_currency:
                raise ValueError(
                    f"Reporting amounts must be in {self.reporting_currency.code}, got {amount.currency.code}"
                )
            if amount.is_negative():
                raise ValueError(f"Journal line amounts must be non-negative (account {self.account_code})")

    @property
    def currency(self) -> Currency:
        """Transaction (original) currency of this line"""
        return self.debit_amount.currency

    original_currency = currency

    @property
    def is_debit(self) -> bool:
        return not self.debit_amount.is_zero()

    @property
    def is_credit(self) -> bool:
        return not self.credit_amount.is_zero()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_code': self.account_code,
            'description': self.description,
            'currency': self.currency.code,
            'debit_amount': str(self.debit_amount.amount),
            'credit_amount': str(self.credit_amount.amount),
            'reporting_currency': self.reporting_currency.code,
            'reporting_debit': str(self.reporting_debit.amount),
            'reporting_credit': str(self.reporting_credit.amount),
            'fx_rate': str(self.fx_rate),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalLine':
        currency = Currency.from_code(data['currency'])
        reporting_currency = Currency.from_code(data.get('reporting_currency', 'BDT'))
        reporting_debit = None
        reporting_credit = None
        if data.get('reporting_debit') is not None:
            reporting_debit = Money(Decimal(data['reporting_debit']), reporting_currency)
        if data.get('reporting_credit') is not None:
            reporting_credit = Money(Decimal(data['reporting_credit']), reporting_currency)
        return cls(
            account_code=data['account_code'],
            description=data.get('description', ''),
            debit_amount=Money(Decimal(data['debit_amount']), currency),
            credit_amount=Money(Decimal(data['credit_amount']), currency),
            reporting_debit=reporting_debit,
            reporting_credit=reporting_credit,
            fx_rate=Decimal(data.get('fx_rate', '1')),
            reporting_currency=reporting_currency,
        )


@dataclass
class JournalEntry(StorageRecord):
    """
    Journal entry with lines. Unlike a posting engine, a reader must accept
    whatever the ledger holds, so imbalance is measured rather than raised.
    """
    entry_number: str
    entry_date: date
    description: str
    lines: List[JournalLine]
    status: JournalEntryStatus = JournalEntryStatus.DRAFT
    reference: Optional[str] = None

    def __post_init__(self):
        # Lines know their owning entry so they can be aggregated on their own
        for line in self.lines:
            line.entry_id = self.id
            line.entry_number = self.entry_number
            line.entry_date = self.entry_date

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    def get_affected_accounts(self) -> Set[str]:
        """Get set of account codes affected by this entry"""
        return {line.account_code for line in self.lines}

    def get_currencies(self) -> Set[Currency]:
        """Get all transaction currencies used in this journal entry"""
        return {line.currency for line in self.lines}

    def imbalance(self) -> Tuple[Optional[Decimal], Decimal]:
        """
        Debit minus credit, as (transaction, reporting).

        The transaction-currency figure is only meaningful when every line
        shares one currency; for mixed-currency entries it is None.
        """
        reporting = sum(
            (line.reporting_debit.amount - line.reporting_credit.amount for line in self.lines),
            Decimal('0')
        )
        currencies = self.get_currencies()
        if len(currencies) != 1:
            return None, reporting
        transaction = sum(
            (line.debit_amount.amount - line.credit_amount.amount for line in self.lines),
            Decimal('0')
        )
        return transaction, reporting

    def is_balanced(self, tolerance: Decimal = Decimal('0.01')) -> bool:
        transaction, reporting = self.imbalance()
        if abs(reporting) >= tolerance:
            return False
        return transaction is None or abs(transaction) < tolerance

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_number': self.entry_number,
            'entry_date': self.entry_date.isoformat(),
            'description': self.description,
            'reference': self.reference,
            'status': self.status.value,
            'lines': [line.to_dict() for line in self.lines],
        }
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntry':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_number=data['entry_number'],
            entry_date=date.fromisoformat(data['entry_date']),
            description=data.get('description', ''),
            lines=[JournalLine.from_dict(line) for line in data.get('lines', [])],
            status=JournalEntryStatus(data['status']),
            reference=data.get('reference'),
        )
