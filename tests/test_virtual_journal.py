"""
Test suite for the virtual journal generator
"""

import pytest
from decimal import Decimal
from datetime import date

from fx_ledger.config import LedgerConfig
from fx_ledger.currency import Currency, Money
from fx_ledger.revaluation import ForeignPosition, RateBasis, SourceType
from fx_ledger.virtual_journal import VirtualJournalGenerator


AS_OF = date(2024, 3, 31)


def bdt(amount) -> Money:
    return Money(Decimal(amount), Currency.BDT)


def position(reference, remaining, historical, current, account_code="1400",
             currency=Currency.USD) -> ForeignPosition:
    return ForeignPosition(
        source_type=SourceType.INVOICE,
        source_id=f"id-{reference}",
        source_reference=reference,
        account_code=account_code,
        account_name="AR - Foreign Customers",
        currency=currency,
        remaining_amount=Decimal(remaining),
        historical_rate=Decimal(historical) if historical is not None else None,
        current_rate=Decimal(current) if current is not None else None,
        rate_basis=RateBasis.BOOKING,
        as_of_date=AS_OF,
    )


@pytest.fixture
def generator():
    return VirtualJournalGenerator(LedgerConfig(database_url="memory://"))


class TestGenerate:
    """Line generation and balance"""

    def test_scenario_a_single_gain(self, generator):
        """Gain of 2,500: Dr AR 2,500 / Cr Unrealized FX Gain 2,500"""
        entry = generator.generate([position("INV-001", "1000", "110.0", "112.5")], AS_OF)

        assert len(entry.lines) == 2
        ar_line, gain_line = entry.lines
        assert ar_line.account_code == "1400"
        assert ar_line.debit == bdt('2500')
        assert ar_line.credit == bdt('0')
        assert ar_line.currency == Currency.USD
        assert ar_line.fx_impact == bdt('2500')
        assert ar_line.description == "Unrealized FX gain on INV-001"

        assert gain_line.account_code == "4300"
        assert gain_line.account_name == "Unrealized FX Gain"
        assert gain_line.credit == bdt('2500')
        assert gain_line.debit == bdt('0')
        assert gain_line.currency is None

        assert entry.is_balanced
        assert entry.entry_date == AS_OF

    def test_single_loss(self, generator):
        entry = generator.generate([position("INV-002", "1000", "114", "112.5")], AS_OF)

        ar_line, loss_line = entry.lines
        assert ar_line.credit == bdt('1500')
        assert ar_line.debit == bdt('0')
        assert ar_line.fx_impact == bdt('-1500')
        assert loss_line.account_code == "5700"
        assert loss_line.account_name == "Unrealized FX Loss"
        assert loss_line.debit == bdt('1500')
        assert entry.is_balanced

    def test_gains_and_losses_offset_separately(self, generator):
        entry = generator.generate([
            position("INV-1", "1000", "110", "112.5"),
            position("INV-2", "200", "120", "118", currency=Currency.EUR),
            position("INV-3", "100", "110", "112.5"),
        ], AS_OF)

        codes = [line.account_code for line in entry.lines]
        assert codes == ["1400", "1400", "1400", "4300", "5700"]
        assert entry.lines[3].credit == bdt('2750')
        assert entry.lines[4].debit == bdt('400')
        assert entry.total_debits == bdt('3150')
        assert entry.total_credits == bdt('3150')
        assert entry.is_balanced

    def test_threshold_and_unresolved_positions_skipped(self, generator):
        entry = generator.generate([
            position("TINY", "1", "110", "110.01"),        # 0.01 gain, at threshold
            position("FLAT", "1000", "112.5", "112.5"),     # no movement
            position("EUR", "500", "118", None, currency=Currency.EUR),
        ], AS_OF)

        assert entry.lines == []
        assert entry.is_empty
        assert entry.is_balanced
        assert entry.total_debits == bdt('0')

    def test_just_above_threshold(self, generator):
        entry = generator.generate([position("SMALL", "1", "110", "110.02")], AS_OF)
        assert entry.lines[0].debit == bdt('0.02')
        assert entry.is_balanced

    def test_configured_accounts(self):
        config = LedgerConfig(
            database_url="memory://",
            fx_gain_account_code="7100", fx_gain_account_name="FX Revaluation Gain",
        )
        entry = VirtualJournalGenerator(config).generate(
            [position("INV-1", "10", "1", "2")], AS_OF
        )
        assert entry.lines[-1].account_code == "7100"
        assert entry.lines[-1].account_name == "FX Revaluation Gain"

    def test_to_dict(self, generator):
        data = generator.generate([position("INV-1", "1000", "110.0", "112.5")], AS_OF).to_dict()
        assert data['entry_date'] == "2024-03-31"
        assert data['total_debits'] == data['total_credits'] == "2500.00"
        assert data['lines'][0]['currency'] == "USD"
        assert data['lines'][1]['currency'] is None
