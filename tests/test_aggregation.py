"""
Test suite for balance aggregation

Tests the per-account fold, order independence, entry integrity warnings and
the running account ledger.
"""

import random
import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from fx_ledger.aggregation import AccountBalance, BalanceAggregator
from fx_ledger.currency import Money, Currency
from fx_ledger.diagnostics import WarningType
from fx_ledger.ledger import Account, AccountType, JournalEntry, JournalEntryStatus, JournalLine


def bdt(amount) -> Money:
    return Money(Decimal(amount), Currency.BDT)


def usd(amount) -> Money:
    return Money(Decimal(amount), Currency.USD)


def line(code, debit="0", credit="0", currency=Currency.BDT, fx_rate="1") -> JournalLine:
    return JournalLine(
        account_code=code,
        debit_amount=Money(Decimal(debit), currency),
        credit_amount=Money(Decimal(credit), currency),
        fx_rate=Decimal(fx_rate),
    )


def entry(number, entry_date, lines, status=JournalEntryStatus.POSTED) -> JournalEntry:
    now = datetime.now(timezone.utc)
    return JournalEntry(
        id=f"ID-{number}", created_at=now, updated_at=now, entry_number=number,
        entry_date=entry_date, description=f"Entry {number}", lines=lines, status=status
    )


def account(code, account_type) -> Account:
    now = datetime.now(timezone.utc)
    return Account(id=f"A{code}", created_at=now, updated_at=now, code=code,
                   name=f"Account {code}", account_type=account_type)


@pytest.fixture
def aggregator():
    return BalanceAggregator()


@pytest.fixture
def scenario_lines():
    """Asset 1000: Dr 5,000 / Cr 2,000. Liability 2000: Dr 500 / Cr 4,000."""
    return [
        line("1000", debit="5000"),
        line("2000", credit="4000"),
        line("1000", credit="2000"),
        line("2000", debit="500"),
        line("3000", credit="1000"),
        line("3000", debit="1000"),
    ]


class TestAggregate:
    """Fold of journal lines into balances"""

    def test_scenario_net_balances(self, aggregator, scenario_lines):
        balances = aggregator.aggregate(scenario_lines)

        assert balances["1000"].net(AccountType.ASSET) == Decimal('3000')
        assert balances["2000"].net(AccountType.LIABILITY) == Decimal('3500')
        assert balances["1000"].debit == Decimal('5000')
        assert balances["1000"].credit == Decimal('2000')
        assert balances["1000"].line_count == 2

    def test_zero_balance_accounts_retained(self, aggregator, scenario_lines):
        balances = aggregator.aggregate(scenario_lines)
        assert "3000" in balances
        assert balances["3000"].net(AccountType.EQUITY) == Decimal('0')

    def test_order_independent(self, aggregator, scenario_lines):
        expected = aggregator.aggregate(scenario_lines)
        shuffled = list(scenario_lines)
        random.Random(7).shuffle(shuffled)
        assert aggregator.aggregate(shuffled) == expected
        assert aggregator.aggregate(reversed(scenario_lines)) == expected

    def test_merge_of_partial_folds(self, aggregator, scenario_lines):
        whole = aggregator.aggregate(scenario_lines)
        left = aggregator.aggregate(scenario_lines[:3])
        right = aggregator.aggregate(scenario_lines[3:])
        assert BalanceAggregator.merge(left, right) == whole

    def test_reporting_and_transaction_totals(self, aggregator):
        balances = aggregator.aggregate([
            line("1400", debit="1000", currency=Currency.USD, fx_rate="110"),
            line("1400", credit="300", currency=Currency.USD, fx_rate="112"),
        ])
        receivable = balances["1400"]
        assert receivable.net(AccountType.ASSET) == Decimal('700')
        assert receivable.reporting_net(AccountType.ASSET) == Decimal('76400')
        assert receivable.currencies == {"USD"}
        assert receivable.is_single_currency

    def test_mixed_currencies_flagged(self, aggregator):
        balances = aggregator.aggregate([
            line("1200", debit="100"),
            line("1200", debit="10", currency=Currency.USD, fx_rate="110"),
        ])
        assert not balances["1200"].is_single_currency
        assert balances["1200"].reporting_debit == Decimal('1200')

    def test_empty(self, aggregator):
        assert aggregator.aggregate([]) == {}


class TestAccountBalance:
    def test_merge_rejects_other_account(self):
        with pytest.raises(ValueError, match="Cannot merge"):
            AccountBalance("1000").merge(AccountBalance("2000"))


class TestCheckEntries:
    """Posted entry integrity"""

    def test_balanced_entries_produce_no_warnings(self, aggregator):
        entries = [entry("JE1", date(2024, 1, 1), [line("1000", debit="100"), line("4000", credit="100")])]
        assert aggregator.check_entries(entries) == []

    def test_unbalanced_entry_reported(self, aggregator):
        entries = [
            entry("JE1", date(2024, 1, 1), [line("1000", debit="100"), line("4000", credit="100")]),
            entry("JE2", date(2024, 1, 2), [line("1000", debit="100"), line("4000", credit="99")]),
        ]
        warnings = aggregator.check_entries(entries)

        assert len(warnings) == 1
        assert warnings[0].warning_type == WarningType.UNBALANCED_ENTRY
        assert warnings[0].entity_id == "ID-JE2"
        assert warnings[0].details["entry_number"] == "JE2"
        assert warnings[0].details["reporting_difference"] == Decimal('1')

    def test_drafts_ignored(self, aggregator):
        draft = entry("JE3", date(2024, 1, 1), [line("1000", debit="100")], status=JournalEntryStatus.DRAFT)
        assert aggregator.check_entries([draft]) == []

    def test_unbalanced_entry_still_counts(self, aggregator):
        bad = entry("JE2", date(2024, 1, 2), [line("1000", debit="100"), line("4000", credit="99")])
        balances = aggregator.aggregate(bad.lines)
        assert balances["1000"].debit == Decimal('100')


class TestAccountLedger:
    """Running balance for one account"""

    def test_running_balance_follows_sign_convention(self, aggregator):
        entries = [
            entry("JE2", date(2024, 1, 10), [line("2000", debit="500"), line("1000", credit="500")]),
            entry("JE1", date(2024, 1, 5), [line("1000", debit="4000"), line("2000", credit="4000")]),
        ]
        lines = [l for e in entries for l in e.lines]

        rows = aggregator.account_ledger(account("2000", AccountType.LIABILITY), lines)

        assert [r.entry_number for r in rows] == ["JE1", "JE2"]
        assert [r.running_balance for r in rows] == [Decimal('4000'), Decimal('3500')]

        asset_rows = aggregator.account_ledger(account("1000", AccountType.ASSET), lines)
        assert asset_rows[-1].running_balance == Decimal('3500')

    def test_last_row_matches_balance(self, aggregator, scenario_lines):
        tagged = entry("JE1", date(2024, 1, 1), scenario_lines)
        rows = aggregator.account_ledger(account("1000", AccountType.ASSET), tagged.lines)
        balances = aggregator.aggregate(tagged.lines)
        assert rows[-1].running_balance == balances["1000"].reporting_net(AccountType.ASSET)

    def test_uses_reporting_amounts(self, aggregator):
        lines = entry("JE1", date(2024, 1, 1), [
            line("1400", debit="1000", currency=Currency.USD, fx_rate="110"),
        ]).lines
        rows = aggregator.account_ledger(account("1400", AccountType.ASSET), lines)
        assert rows[0].debit == Decimal('110000')
        assert rows[0].running_balance == Decimal('110000')
