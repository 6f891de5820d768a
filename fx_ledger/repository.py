"""
Ledger Repository

Read access to posted journal lines, the chart of accounts, exchange rates
and the receivable/treasury sub-ledgers, plus the append-only write path for
exchange rates.

Reports never query the repository table by table. They take a
LedgerSnapshot: every table read once inside a single storage read
transaction, with the as-of date pinned, so all sub-queries of one report see
the same state of the ledger.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence
import logging
import uuid

from .currency import Currency, FXRate
from .diagnostics import RepositoryUnavailableError
from .ledger import Account, AccountType, JournalEntry, JournalEntryStatus, JournalLine
from .storage import StorageError, StorageInterface, StorageManager
from .subledger import BankAccount, CustomerType, Invoice, InvoiceStatus, PaymentAllocation


logger = logging.getLogger("fx_ledger.repository")

ACCOUNTS_TABLE = "accounts"
JOURNAL_ENTRIES_TABLE = "journal_entries"
FX_RATES_TABLE = "fx_rates"
INVOICES_TABLE = "invoices"
ALLOCATIONS_TABLE = "payment_allocations"
BANK_ACCOUNTS_TABLE = "bank_accounts"


def _stamp() -> Dict[str, object]:
    now = datetime.now(timezone.utc)
    return {'id': str(uuid.uuid4()), 'created_at': now, 'updated_at': now}


@dataclass
class LedgerSnapshot:
    """
    Immutable, as-of-bounded view of the ledger for one report request.
    All list_* methods are pure over the captured rows.
    """
    as_of_date: date
    reporting_currency: Currency
    accounts: List[Account] = field(default_factory=list)
    entries: List[JournalEntry] = field(default_factory=list)
    rates: List[FXRate] = field(default_factory=list)
    invoices: List[Invoice] = field(default_factory=list)
    allocations: List[PaymentAllocation] = field(default_factory=list)
    bank_accounts: List[BankAccount] = field(default_factory=list)

    def __post_init__(self):
        self._allocations_by_invoice: Dict[str, List[PaymentAllocation]] = {}
        for allocation in self.allocations:
            if allocation.allocation_date is not None and allocation.allocation_date > self.as_of_date:
                continue
            self._allocations_by_invoice.setdefault(allocation.invoice_id, []).append(allocation)

    # Journal

    def list_posted_entries(self) -> List[JournalEntry]:
        """Posted entries dated on or before the as-of date, in date order"""
        entries = [
            e for e in self.entries
            if e.status == JournalEntryStatus.POSTED and e.entry_date <= self.as_of_date
        ]
        entries.sort(key=lambda e: (e.entry_date, e.entry_number))
        return entries

    def list_posted_lines(self) -> List[JournalLine]:
        return [line for entry in self.list_posted_entries() for line in entry.lines]

    # Chart of accounts

    def list_accounts(self) -> List[Account]:
        return sorted(self.accounts, key=lambda a: a.code)

    def list_active_accounts(self, types: Optional[Iterable[AccountType]] = None) -> List[Account]:
        wanted = set(types) if types is not None else None
        return [
            a for a in self.list_accounts()
            if a.active and (wanted is None or a.account_type in wanted)
        ]

    def find_account(self, code: str) -> Optional[Account]:
        for account in self.accounts:
            if account.code == code:
                return account
        return None

    # Exchange rates

    def list_rates(self, from_currency: Currency, to_currency: Currency) -> List[FXRate]:
        """Rate rows for the pair that were effective on or before the as-of date"""
        return [
            r for r in self.rates
            if r.from_currency == from_currency and r.to_currency == to_currency
            and r.rate_date <= self.as_of_date
        ]

    # Receivables

    def list_open_invoices(self) -> List[Invoice]:
        """Issued, unsettled invoices dated on or before the as-of date"""
        invoices = [
            i for i in self.invoices
            if i.status.is_open and i.invoice_date <= self.as_of_date
        ]
        invoices.sort(key=lambda i: (i.invoice_date, i.invoice_number))
        return invoices

    def list_open_foreign_invoices(self) -> List[Invoice]:
        return [
            i for i in self.list_open_invoices()
            if i.currency != self.reporting_currency and i.is_foreign_customer
        ]

    def list_allocations(self, invoice_id: str) -> List[Decimal]:
        """Allocated amounts applied to the invoice up to the as-of date"""
        return [a.allocated_amount for a in self._allocations_by_invoice.get(invoice_id, [])]

    def allocated_amount(self, invoice: Invoice) -> Decimal:
        return sum(self.list_allocations(invoice.id), Decimal('0'))

    def remaining_amount(self, invoice: Invoice) -> Decimal:
        return invoice.total_amount - self.allocated_amount(invoice)

    # Treasury

    def list_foreign_bank_accounts(self) -> List[BankAccount]:
        return [
            b for b in self.bank_accounts
            if b.active and b.currency != self.reporting_currency
        ]


class LedgerRepository:
    """
    Repository over a storage backend. Rows are owned by the CRUD
    collaborators; the ``add_*`` methods exist for them and for seeding.
    """

    def __init__(self, storage: StorageInterface, reporting_currency: Currency = Currency.BDT):
        self.storage = storage
        self.records = StorageManager(storage)
        self.reporting_currency = reporting_currency

    # Snapshot reads

    def snapshot(self, as_of_date: date) -> LedgerSnapshot:
        """
        Read every table inside one storage read transaction.

        Raises:
            RepositoryUnavailableError: If the storage backend cannot be read
        """
        try:
            with self.storage.read_snapshot():
                snapshot = LedgerSnapshot(
                    as_of_date=as_of_date,
                    reporting_currency=self.reporting_currency,
                    accounts=self.records.load_all_records(Account, ACCOUNTS_TABLE),
                    entries=self.records.load_all_records(JournalEntry, JOURNAL_ENTRIES_TABLE),
                    rates=self.records.load_all_records(FXRate, FX_RATES_TABLE),
                    invoices=self.records.load_all_records(Invoice, INVOICES_TABLE),
                    allocations=self.records.load_all_records(PaymentAllocation, ALLOCATIONS_TABLE),
                    bank_accounts=self.records.load_all_records(BankAccount, BANK_ACCOUNTS_TABLE),
                )
        except StorageError as exc:
            logger.error("Ledger repository unavailable: %s", exc)
            raise RepositoryUnavailableError(f"Cannot read ledger as of {as_of_date}: {exc}", exc) from exc

        logger.debug(
            "Snapshot as of %s: %d accounts, %d entries, %d rates",
            as_of_date, len(snapshot.accounts), len(snapshot.entries), len(snapshot.rates)
        )
        return snapshot

    def list_rates(self, from_currency: Currency, to_currency: Currency) -> List[FXRate]:
        """Live read of every rate row for the pair"""
        try:
            rows = self.records.find_records(FXRate, FX_RATES_TABLE, {
                'from_currency': from_currency.code,
                'to_currency': to_currency.code,
            })
        except StorageError as exc:
            raise RepositoryUnavailableError(f"Cannot read exchange rates: {exc}", exc) from exc
        return rows

    # Writes

    def atomic(self):
        """Group several writes into one storage transaction"""
        return self.storage.atomic()

    def add_account(self, code: str, name: str, account_type: AccountType,
                    parent_id: Optional[str] = None, level: int = 1,
                    active: bool = True, account_id: Optional[str] = None) -> Account:
        stamp = _stamp()
        if account_id:
            stamp['id'] = account_id
        account = Account(
            code=code, name=name, account_type=account_type,
            parent_id=parent_id, level=level, active=active, **stamp
        )
        self.records.save_record(account, ACCOUNTS_TABLE)
        return account

    def add_journal_entry(self, entry_number: str, entry_date: date, description: str,
                          lines: Sequence[JournalLine],
                          status: JournalEntryStatus = JournalEntryStatus.POSTED,
                          reference: Optional[str] = None) -> JournalEntry:
        entry = JournalEntry(
            entry_number=entry_number, entry_date=entry_date, description=description,
            lines=list(lines), status=status, reference=reference, **_stamp()
        )
        self.records.save_record(entry, JOURNAL_ENTRIES_TABLE)
        return entry

    def add_rate(self, from_currency: Currency, to_currency: Currency, rate_date: date,
                 rate: Decimal, source: str = "feed", active: bool = True,
                 notes: Optional[str] = None) -> FXRate:
        """Append a rate row; the sequence orders rows inserted for the same date"""
        with self.storage.atomic():
            existing = self.storage.load_all(FX_RATES_TABLE)
            sequence = max((row.get('sequence', 0) for row in existing), default=0) + 1
            fx_rate = FXRate(
                from_currency=from_currency, to_currency=to_currency, rate_date=rate_date,
                rate=rate, source=source, active=active, sequence=sequence, notes=notes,
                **_stamp()
            )
            self.records.save_record(fx_rate, FX_RATES_TABLE)
        return fx_rate

    def insert_manual_rate(self, currency: Currency, to_currency: Currency, rate: Decimal,
                           rate_date: date, source: str = "manual",
                           notes: Optional[str] = None) -> FXRate:
        return self.add_rate(currency, to_currency, rate_date, rate, source=source, notes=notes)

    def deactivate_rate(self, rate_id: str) -> FXRate:
        fx_rate = self.records.load_record(FXRate, FX_RATES_TABLE, rate_id)
        if fx_rate is None:
            raise ValueError(f"Exchange rate {rate_id} not found")
        fx_rate.active = False
        fx_rate.updated_at = datetime.now(timezone.utc)
        self.records.save_record(fx_rate, FX_RATES_TABLE)
        return fx_rate

    def add_invoice(self, invoice_number: str, customer_name: str, currency: Currency,
                    total_amount: Decimal, invoice_date: date, due_date: date,
                    customer_type: CustomerType = CustomerType.LOCAL,
                    exchange_rate: Optional[Decimal] = None,
                    status: InvoiceStatus = InvoiceStatus.SENT,
                    ar_account_code: Optional[str] = None) -> Invoice:
        invoice = Invoice(
            invoice_number=invoice_number, customer_name=customer_name, currency=currency,
            total_amount=total_amount, invoice_date=invoice_date, due_date=due_date,
            status=status, customer_type=customer_type, exchange_rate=exchange_rate,
            ar_account_code=ar_account_code, **_stamp()
        )
        self.records.save_record(invoice, INVOICES_TABLE)
        return invoice

    def add_allocation(self, invoice_id: str, allocated_amount: Decimal,
                       allocation_date: Optional[date] = None,
                       payment_reference: Optional[str] = None) -> PaymentAllocation:
        allocation = PaymentAllocation(
            invoice_id=invoice_id, allocated_amount=allocated_amount,
            allocation_date=allocation_date, payment_reference=payment_reference,
            **_stamp()
        )
        self.records.save_record(allocation, ALLOCATIONS_TABLE)
        return allocation

    def add_bank_account(self, name: str, currency: Currency, balance: Decimal,
                         gl_account_code: Optional[str] = None,
                         reference_rate: Optional[Decimal] = None,
                         active: bool = True) -> BankAccount:
        bank_account = BankAccount(
            name=name, currency=currency, balance=balance, gl_account_code=gl_account_code,
            reference_rate=reference_rate, active=active, **_stamp()
        )
        self.records.save_record(bank_account, BANK_ACCOUNTS_TABLE)
        return bank_account
