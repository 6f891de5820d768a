"""
Reporting Engine Module

Trial balance, balance sheet, accounts-receivable breakdown and FX analysis.

Every ``build_*`` function is a pure function of a LedgerSnapshot and the
configuration: no storage access, no clock reads that affect content. The
ReportingEngine pins one snapshot per request and hands it to the builders,
so running the same report twice over unchanged data yields equal reports
(``generated_at`` is informational and excluded from equality).
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Union
from enum import Enum
import logging

from .aggregation import AccountBalance, BalanceAggregator, LedgerRow
from .audit import AuditTrail
from .config import LedgerConfig, get_config
from .currency import Currency, FXRate, Money
from .diagnostics import ReportWarning, WarningType, emit
from .hierarchy import AccountHierarchyBuilder, AccountTree
from .ledger import AccountType, BALANCE_SHEET_TYPES
from .logging_config import log_action
from .rates import FXRateResolver, ManualRatePolicy, parse_rate
from .repository import LedgerRepository, LedgerSnapshot
from .revaluation import MissingRate, PositionSet, ForeignPosition, UnrealizedFXCalculator, open_items_from_snapshot
from .storage import create_storage
from .virtual_journal import VirtualJournalEntry, VirtualJournalGenerator


logger = logging.getLogger("fx_ledger.reporting")

ZERO = Decimal('0')


class ReportType(Enum):
    """Types of available reports"""
    TRIAL_BALANCE = "trial_balance"
    BALANCE_SHEET = "balance_sheet"
    AR_BREAKDOWN = "ar_breakdown"
    FX_ANALYSIS = "fx_analysis"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unreported_balances(snapshot: LedgerSnapshot,
                         balances: Mapping[str, AccountBalance]) -> List[ReportWarning]:
    """One UNKNOWN_ACCOUNT warning per account code whose posted lines no report row can show"""
    warnings: List[ReportWarning] = []
    for code in sorted(balances):
        account = snapshot.find_account(code)
        if account is not None and account.active:
            continue
        balance = balances[code]
        reason = "not in the chart of accounts" if account is None else "inactive"
        emit(ReportWarning(
            warning_type=WarningType.UNKNOWN_ACCOUNT,
            entity_type="account",
            entity_id=code,
            message=f"Account {code} has posted lines but is {reason}",
            details={
                "reporting_debit": balance.reporting_debit,
                "reporting_credit": balance.reporting_credit,
                "line_count": balance.line_count,
            },
        ), warnings)
    return warnings


# Trial balance

@dataclass(frozen=True)
class TrialBalanceRow:
    """Flattened trial balance line (reporting currency)"""
    account_code: str
    account_name: str
    account_type: AccountType
    depth: int
    debit: Decimal
    credit: Decimal
    net: Decimal
    rolled_up_net: Decimal

    @property
    def is_zero(self) -> bool:
        return self.debit == ZERO and self.credit == ZERO and self.rolled_up_net == ZERO


@dataclass
class TrialBalance:
    as_of_date: date
    reporting_currency: Currency
    tree: AccountTree
    total_debits: Decimal
    total_credits: Decimal
    tolerance: Decimal = Decimal('0.01')
    warnings: List[ReportWarning] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_now, compare=False)

    @property
    def difference(self) -> Decimal:
        return self.total_debits - self.total_credits

    @property
    def is_balanced(self) -> bool:
        return abs(self.difference) < self.tolerance

    def rows(self, account_type: Optional[AccountType] = None,
             include_zero: bool = False) -> List[TrialBalanceRow]:
        """
        Flatten the tree in display order.

        Args:
            account_type: Only rows of this type
            include_zero: Keep accounts with no activity in their subtree
        """
        result = []
        for node, depth in self.tree.walk():
            row = TrialBalanceRow(
                account_code=node.code,
                account_name=node.name,
                account_type=node.account_type,
                depth=depth,
                debit=node.debit,
                credit=node.credit,
                net=node.net,
                rolled_up_net=node.rolled_up_net(),
            )
            if account_type is not None and row.account_type != account_type:
                continue
            if not include_zero and row.is_zero:
                continue
            result.append(row)
        return result


def build_trial_balance(snapshot: LedgerSnapshot, config: LedgerConfig) -> TrialBalance:
    """Trial balance over all active accounts as of the snapshot date"""
    aggregator = BalanceAggregator()
    entries = snapshot.list_posted_entries()
    balances = aggregator.aggregate(line for entry in entries for line in entry.lines)

    warnings = aggregator.check_entries(entries, config.tolerance)
    tree = AccountHierarchyBuilder().build_tree(snapshot.list_active_accounts(), balances)
    warnings.extend(tree.warnings)
    warnings.extend(_unreported_balances(snapshot, balances))

    total_debits = ZERO
    total_credits = ZERO
    for node, _ in tree.walk():
        total_debits += node.debit
        total_credits += node.credit

    return TrialBalance(
        as_of_date=snapshot.as_of_date,
        reporting_currency=snapshot.reporting_currency,
        tree=tree,
        total_debits=total_debits,
        total_credits=total_credits,
        tolerance=config.tolerance,
        warnings=warnings,
    )


# FX analysis

@dataclass
class FXAnalysis:
    as_of_date: date
    reporting_currency: Currency
    position_set: PositionSet
    virtual_journal: VirtualJournalEntry
    warnings: List[ReportWarning] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_now, compare=False)

    @property
    def positions(self) -> List[ForeignPosition]:
        return self.position_set.positions

    @property
    def missing_currencies(self) -> Set[str]:
        return self.position_set.missing_currencies

    @property
    def missing_rates(self) -> List[MissingRate]:
        return self.position_set.missing_rates

    @property
    def total_gain_loss(self) -> Money:
        return self.position_set.total_gain_loss


def build_fx_analysis(snapshot: LedgerSnapshot, config: LedgerConfig,
                      resolver: Optional[FXRateResolver] = None) -> FXAnalysis:
    """Open foreign positions valued as of the snapshot date, with the preview journal"""
    resolver = resolver or FXRateResolver(snapshot)
    calculator = UnrealizedFXCalculator(resolver, snapshot.reporting_currency)

    position_set = calculator.compute_positions(
        open_items_from_snapshot(snapshot, config), snapshot.as_of_date
    )
    journal = VirtualJournalGenerator(config).generate(position_set.positions, snapshot.as_of_date)

    return FXAnalysis(
        as_of_date=snapshot.as_of_date,
        reporting_currency=snapshot.reporting_currency,
        position_set=position_set,
        virtual_journal=journal,
        warnings=list(position_set.warnings),
    )


# Balance sheet

@dataclass(frozen=True)
class BalanceSheetLine:
    account_code: str
    account_name: str
    account_type: AccountType
    balance: Optional[Decimal]  # Transaction currency; None when the account mixes currencies
    currency: Optional[str]
    reporting_balance: Decimal


@dataclass
class BalanceSheet:
    as_of_date: date
    reporting_currency: Currency
    assets: List[BalanceSheetLine]
    liabilities: List[BalanceSheetLine]
    equity: List[BalanceSheetLine]
    current_earnings: Decimal
    fx: FXAnalysis
    tolerance: Decimal = Decimal('0.01')
    warnings: List[ReportWarning] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_now, compare=False)

    @property
    def total_assets(self) -> Decimal:
        return sum((line.reporting_balance for line in self.assets), ZERO)

    @property
    def total_liabilities(self) -> Decimal:
        return sum((line.reporting_balance for line in self.liabilities), ZERO)

    @property
    def total_equity(self) -> Decimal:
        """Equity accounts plus current-period earnings"""
        return sum((line.reporting_balance for line in self.equity), ZERO) + self.current_earnings

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_assets - self.total_liabilities - self.total_equity) < self.tolerance

    @property
    def positions(self) -> List[ForeignPosition]:
        return self.fx.positions

    @property
    def missing_currencies(self) -> Set[str]:
        return self.fx.missing_currencies

    @property
    def virtual_journal(self) -> VirtualJournalEntry:
        return self.fx.virtual_journal

    @property
    def total_unrealized_fx(self) -> Money:
        return self.fx.total_gain_loss


def build_balance_sheet(snapshot: LedgerSnapshot, config: LedgerConfig,
                        resolver: Optional[FXRateResolver] = None) -> BalanceSheet:
    """Asset, liability and equity buckets with the unrealized FX overlay"""
    aggregator = BalanceAggregator()
    entries = snapshot.list_posted_entries()
    balances = aggregator.aggregate(line for entry in entries for line in entry.lines)
    warnings = aggregator.check_entries(entries, config.tolerance)
    warnings.extend(_unreported_balances(snapshot, balances))

    buckets: Dict[AccountType, List[BalanceSheetLine]] = {t: [] for t in BALANCE_SHEET_TYPES}
    for account in snapshot.list_active_accounts(BALANCE_SHEET_TYPES):
        balance = balances.get(account.code)
        if balance is None:
            line = BalanceSheetLine(account.code, account.name, account.account_type,
                                    ZERO, None, ZERO)
        else:
            single = balance.is_single_currency
            line = BalanceSheetLine(
                account_code=account.code,
                account_name=account.name,
                account_type=account.account_type,
                balance=balance.net(account.account_type) if single else None,
                currency=next(iter(balance.currencies)) if single and balance.currencies else None,
                reporting_balance=balance.reporting_net(account.account_type),
            )
        buckets[account.account_type].append(line)

    current_earnings = ZERO
    for account in snapshot.list_active_accounts((AccountType.REVENUE, AccountType.EXPENSE)):
        balance = balances.get(account.code)
        if balance is None:
            continue
        if account.account_type == AccountType.REVENUE:
            current_earnings += balance.reporting_net(account.account_type)
        else:
            current_earnings -= balance.reporting_net(account.account_type)

    fx = build_fx_analysis(snapshot, config, resolver)
    warnings.extend(fx.warnings)

    return BalanceSheet(
        as_of_date=snapshot.as_of_date,
        reporting_currency=snapshot.reporting_currency,
        assets=buckets[AccountType.ASSET],
        liabilities=buckets[AccountType.LIABILITY],
        equity=buckets[AccountType.EQUITY],
        current_earnings=current_earnings,
        fx=fx,
        tolerance=config.tolerance,
        warnings=warnings,
    )


# Accounts receivable

class ARStatus(Enum):
    OPEN = "Open"
    OVERDUE = "Overdue"
    PARTIALLY_PAID = "Partially Paid"


@dataclass(frozen=True)
class ARItem:
    invoice_id: str
    invoice_number: str
    customer_name: str
    currency: Currency
    original_amount: Decimal
    allocated_amount: Decimal
    remaining_amount: Decimal
    reporting_amount: Optional[Decimal]  # None when no rate could be found
    rate_used: Optional[Decimal]
    due_date: date
    status: ARStatus
    days_overdue: int


def ar_status(allocated: Decimal, as_of_date: date, due_date: date) -> ARStatus:
    """Partially Paid beats Overdue; Overdue once the as-of date is past due"""
    if allocated > ZERO:
        return ARStatus.PARTIALLY_PAID
    if as_of_date > due_date:
        return ARStatus.OVERDUE
    return ARStatus.OPEN


def days_overdue(as_of_date: date, due_date: date) -> int:
    return max(0, (as_of_date - due_date).days)


@dataclass
class ARBreakdown:
    as_of_date: date
    reporting_currency: Currency
    items: List[ARItem]
    missing_currencies: Set[str] = field(default_factory=set)
    warnings: List[ReportWarning] = field(default_factory=list)
    generated_at: datetime = field(default_factory=_now, compare=False)

    @property
    def total_reporting(self) -> Decimal:
        return sum((i.reporting_amount for i in self.items if i.reporting_amount is not None), ZERO)

    def totals_by_status(self) -> Dict[ARStatus, Decimal]:
        totals = {status: ZERO for status in ARStatus}
        for item in self.items:
            if item.reporting_amount is not None:
                totals[item.status] += item.reporting_amount
        return totals

    def filter(self, customer: Optional[str] = None, currency: Optional[Currency] = None,
               status: Optional[ARStatus] = None) -> List[ARItem]:
        """Items matching all given criteria; customer matches case-insensitive substrings"""
        result = []
        for item in self.items:
            if customer and customer.lower() not in item.customer_name.lower():
                continue
            if currency is not None and item.currency != currency:
                continue
            if status is not None and item.status != status:
                continue
            result.append(item)
        return result


def build_ar_breakdown(snapshot: LedgerSnapshot, config: LedgerConfig,
                       resolver: Optional[FXRateResolver] = None) -> ARBreakdown:
    """Unpaid issued invoices with status, age and reporting-currency amount"""
    resolver = resolver or FXRateResolver(snapshot)
    reporting = snapshot.reporting_currency
    as_of = snapshot.as_of_date

    items: List[ARItem] = []
    missing: Dict[str, List[Decimal]] = {}

    for invoice in snapshot.list_open_invoices():
        allocated = snapshot.allocated_amount(invoice)
        remaining = invoice.total_amount - allocated
        if remaining <= config.threshold:
            continue

        if invoice.currency == reporting:
            rate = Decimal('1')
        elif invoice.exchange_rate is not None:
            rate = invoice.exchange_rate
        else:
            rate = resolver.resolve(invoice.currency, reporting, as_of)

        if rate is None:
            missing.setdefault(invoice.currency.code, []).append(remaining)
            amount = None
        else:
            amount = Money(remaining * rate, reporting).amount

        items.append(ARItem(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            customer_name=invoice.customer_name,
            currency=invoice.currency,
            original_amount=invoice.total_amount,
            allocated_amount=allocated,
            remaining_amount=remaining,
            reporting_amount=amount,
            rate_used=rate,
            due_date=invoice.due_date,
            status=ar_status(allocated, as_of, invoice.due_date),
            days_overdue=days_overdue(as_of, invoice.due_date),
        ))

    warnings: List[ReportWarning] = []
    for code in sorted(missing):
        emit(ReportWarning(
            warning_type=WarningType.MISSING_RATE,
            entity_type="currency",
            entity_id=code,
            message=f"No active {code}/{reporting.code} rate on or before {as_of}",
            details={"positions_count": len(missing[code]), "total_amount": sum(missing[code], ZERO)},
        ), warnings)

    return ARBreakdown(
        as_of_date=as_of,
        reporting_currency=reporting,
        items=items,
        missing_currencies=set(missing),
        warnings=warnings,
    )


class ReportingEngine:
    """
    Request-scoped entry point for report consumers. Each call pins its own
    snapshot; nothing is retained between calls.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        config: LedgerConfig = None,
        audit_trail: AuditTrail = None
    ):
        self.repository = repository
        self.config = config or get_config()
        self.audit_trail = audit_trail

    @classmethod
    def from_config(cls, config: LedgerConfig = None) -> "ReportingEngine":
        """Open the configured database and wire a repository and audit trail over it"""
        config = config or get_config()
        storage = create_storage(config.database_url)
        repository = LedgerRepository(storage, reporting_currency=config.reporting)
        logger.info("Reporting engine opened on %s", config.database_url)
        return cls(repository, config, AuditTrail(storage))

    def _run(self, report_type: ReportType, as_of_date: date, builder, user_id: Optional[str] = None):
        start_time = _now()
        snapshot = self.repository.snapshot(as_of_date)
        report = builder(snapshot, self.config)
        elapsed_ms = int((_now() - start_time).total_seconds() * 1000)

        log_action(
            logger, "info", f"Generated {report_type.value} report",
            user_id=user_id, action="generate_report", resource=report_type.value,
            as_of_date=as_of_date.isoformat(),
            extra={
                "warnings": len(getattr(report, "warnings", [])),
                "generation_time_ms": elapsed_ms,
            }
        )
        return report

    def trial_balance(self, as_of_date: date, user_id: Optional[str] = None) -> TrialBalance:
        return self._run(ReportType.TRIAL_BALANCE, as_of_date, build_trial_balance, user_id)

    def balance_sheet(self, as_of_date: date, user_id: Optional[str] = None) -> BalanceSheet:
        return self._run(ReportType.BALANCE_SHEET, as_of_date, build_balance_sheet, user_id)

    def ar_breakdown(self, as_of_date: date, user_id: Optional[str] = None) -> ARBreakdown:
        return self._run(ReportType.AR_BREAKDOWN, as_of_date, build_ar_breakdown, user_id)

    def fx_analysis(self, as_of_date: date, user_id: Optional[str] = None) -> FXAnalysis:
        return self._run(ReportType.FX_ANALYSIS, as_of_date, build_fx_analysis, user_id)

    def account_ledger(self, account_code: str, as_of_date: date) -> List[LedgerRow]:
        """
        Running ledger of one account up to the as-of date.

        Raises:
            ValueError: If the account code is not in the chart of accounts
        """
        snapshot = self.repository.snapshot(as_of_date)
        account = snapshot.find_account(account_code)
        if account is None:
            raise ValueError(f"Account {account_code} not found")
        return BalanceAggregator().account_ledger(account, snapshot.list_posted_lines())

    def apply_manual_rates(
        self,
        rates: Mapping[Union[Currency, str], Union[Decimal, str, int]],
        rate_date: date,
        to_currency: Optional[Currency] = None,
        user_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> List[FXRate]:
        """
        Record manually entered rates, typically for the currencies an FX
        analysis reported as missing.

        Every rate is parsed before any is written, so one bad value leaves
        the rate table untouched.

        Args:
            rates: Currency (or ISO code) -> rate
            rate_date: Date the rates take effect
            to_currency: Target currency (defaults to the reporting currency)
            user_id: Who entered the rates
            notes: Free text stored with each row

        Returns:
            The inserted FXRate rows

        Raises:
            ValueError: On an unknown currency, a non-positive rate or a rate
                from the target currency into itself
        """
        target = to_currency or self.config.reporting
        parsed = [(Currency.from_code(code), parse_rate(value)) for code, value in rates.items()]
        for currency, _ in parsed:
            if currency == target:
                raise ValueError(f"Cannot enter a {currency.code}/{target.code} rate")

        resolver = FXRateResolver(
            self.repository,
            policy=ManualRatePolicy(self.config.manual_rate_policy),
            manual_source=self.config.manual_rate_source,
            audit_trail=self.audit_trail if self.config.enable_audit_logging else None,
        )
        with self.repository.atomic():
            inserted = [
                resolver.apply_manual_rate(currency, target, value, rate_date, notes=notes, user_id=user_id)
                for currency, value in parsed
            ]

        log_action(
            logger, "info", f"Applied {len(inserted)} manual exchange rates",
            user_id=user_id, action="apply_manual_rates", resource="fx_rates",
            as_of_date=rate_date.isoformat(),
            extra={"currencies": [currency.code for currency, _ in parsed]}
        )
        return inserted
