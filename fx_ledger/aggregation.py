"""
Balance Aggregation

Folds posted journal lines into per-account debit and credit totals, in the
transaction currency and in the reporting currency. The fold is order
independent and keeps accounts whose totals net to zero; hiding them is a
presentation decision.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
import logging

from .diagnostics import ReportWarning, WarningType, emit
from .ledger import Account, AccountType, JournalEntry, JournalLine, net_balance


logger = logging.getLogger("fx_ledger.aggregation")

ZERO = Decimal('0')


@dataclass
class AccountBalance:
    """Debit/credit totals for one account"""
    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    reporting_debit: Decimal = ZERO
    reporting_credit: Decimal = ZERO
    currencies: Set[str] = field(default_factory=set)
    line_count: int = 0

    def add_line(self, line: JournalLine) -> None:
        self.debit += line.debit_amount.amount
        self.credit += line.credit_amount.amount
        self.reporting_debit += line.reporting_debit.amount
        self.reporting_credit += line.reporting_credit.amount
        self.currencies.add(line.currency.code)
        self.line_count += 1

    def merge(self, other: 'AccountBalance') -> 'AccountBalance':
        if other.account_code != self.account_code:
            raise ValueError(f"Cannot merge {other.account_code} into {self.account_code}")
        return AccountBalance(
            account_code=self.account_code,
            debit=self.debit + other.debit,
            credit=self.credit + other.credit,
            reporting_debit=self.reporting_debit + other.reporting_debit,
            reporting_credit=self.reporting_credit + other.reporting_credit,
            currencies=self.currencies | other.currencies,
            line_count=self.line_count + other.line_count,
        )

    @property
    def is_single_currency(self) -> bool:
        """Transaction-currency totals are only comparable within one currency"""
        return len(self.currencies) <= 1

    def net(self, account_type: AccountType) -> Decimal:
        """Net transaction-currency balance under the account's normal side"""
        return net_balance(account_type, self.debit, self.credit)

    def reporting_net(self, account_type: AccountType) -> Decimal:
        """Net reporting-currency balance under the account's normal side"""
        return net_balance(account_type, self.reporting_debit, self.reporting_credit)


@dataclass(frozen=True)
class LedgerRow:
    """One line of an account ledger with its running balance (reporting currency)"""
    entry_id: Optional[str]
    entry_number: Optional[str]
    entry_date: Optional[date]
    description: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


class BalanceAggregator:
    """Pure functions over journal lines; holds no state between calls"""

    def aggregate(self, lines: Iterable[JournalLine]) -> Dict[str, AccountBalance]:
        """
        Fold journal lines into balances keyed by account code.

        Args:
            lines: Posted journal lines (any order)

        Returns:
            Dictionary of account_code -> AccountBalance
        """
        balances: Dict[str, AccountBalance] = {}
        count = 0
        for line in lines:
            balance = balances.get(line.account_code)
            if balance is None:
                balance = balances[line.account_code] = AccountBalance(line.account_code)
            balance.add_line(line)
            count += 1
        logger.debug("Aggregated %d lines into %d accounts", count, len(balances))
        return balances

    @staticmethod
    def merge(left: Dict[str, AccountBalance],
              right: Dict[str, AccountBalance]) -> Dict[str, AccountBalance]:
        """Combine two partial aggregations, e.g. of two batches of lines"""
        merged = dict(left)
        for code, balance in right.items():
            merged[code] = merged[code].merge(balance) if code in merged else balance
        return merged

    def check_entries(self, entries: Iterable[JournalEntry],
                      tolerance: Decimal = Decimal('0.01')) -> List[ReportWarning]:
        """
        Flag posted entries whose debits and credits diverge.

        Unbalanced entries still count toward balances; the warning tells the
        reader which entry makes the totals untrustworthy.
        """
        warnings: List[ReportWarning] = []
        for entry in entries:
            if not entry.is_posted or entry.is_balanced(tolerance):
                continue
            transaction, reporting = entry.imbalance()
            emit(ReportWarning(
                warning_type=WarningType.UNBALANCED_ENTRY,
                entity_type="journal_entry",
                entity_id=entry.id,
                message=f"Posted entry {entry.entry_number} does not balance",
                details={
                    "entry_number": entry.entry_number,
                    "transaction_difference": transaction,
                    "reporting_difference": reporting,
                },
            ), warnings)
        return warnings

    def account_ledger(self, account: Account, lines: Iterable[JournalLine]) -> List[LedgerRow]:
        """
        Chronological ledger for one account with a running balance.

        The running balance follows the same normal-side rule as the account
        balance, so the last row always equals the account's reporting net.
        """
        own_lines = [line for line in lines if line.account_code == account.code]
        own_lines.sort(key=lambda l: (l.entry_date or date.min, l.entry_number or ""))

        rows: List[LedgerRow] = []
        running = ZERO
        for line in own_lines:
            debit = line.reporting_debit.amount
            credit = line.reporting_credit.amount
            running += net_balance(account.account_type, debit, credit)
            rows.append(LedgerRow(
                entry_id=line.entry_id,
                entry_number=line.entry_number,
                entry_date=line.entry_date,
                description=line.description,
                debit=debit,
                credit=credit,
                running_balance=running,
            ))
        return rows
