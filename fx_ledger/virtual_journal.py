"""
Virtual Journal Generator

Turns valued foreign positions into a balanced preview journal entry showing
the revaluation impact. The entry is never posted: no id, no storage, no
audit event.

    gain:  Dr position account    / Cr Unrealized FX Gain
    loss:  Dr Unrealized FX Loss  / Cr position account
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging

from .currency import Currency, Money
from .revaluation import ForeignPosition


logger = logging.getLogger("fx_ledger.virtual_journal")


@dataclass(frozen=True)
class VirtualJournalLine:
    account_code: str
    account_name: str
    debit: Money
    credit: Money
    description: str
    currency: Optional[Currency] = None  # Position currency; None on offset lines
    fx_impact: Optional[Money] = None    # Signed gain/loss behind the line

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_code': self.account_code,
            'account_name': self.account_name,
            'debit': str(self.debit.amount),
            'credit': str(self.credit.amount),
            'description': self.description,
            'currency': self.currency.code if self.currency else None,
            'fx_impact': str(self.fx_impact.amount) if self.fx_impact else None,
        }


@dataclass(frozen=True)
class VirtualJournalEntry:
    """Preview of the revaluation entry; empty when nothing moved"""
    entry_date: date
    description: str
    reporting_currency: Currency
    lines: List[VirtualJournalLine] = field(default_factory=list)

    @property
    def total_debits(self) -> Money:
        total = Money.zero(self.reporting_currency)
        for line in self.lines:
            total = total + line.debit
        return total

    @property
    def total_credits(self) -> Money:
        total = Money.zero(self.reporting_currency)
        for line in self.lines:
            total = total + line.credit
        return total

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entry_date': self.entry_date.isoformat(),
            'description': self.description,
            'reporting_currency': self.reporting_currency.code,
            'lines': [line.to_dict() for line in self.lines],
            'total_debits': str(self.total_debits.amount),
            'total_credits': str(self.total_credits.amount),
        }


class VirtualJournalGenerator:
    """Builds the preview entry using the configured gain and loss accounts"""

    def __init__(self, config):
        self.config = config

    def generate(self, positions: Iterable[ForeignPosition], as_of_date: date) -> VirtualJournalEntry:
        """
        Generate the revaluation preview.

        Positions without a gain/loss (unresolved rates) and positions whose
        gain/loss is within the threshold produce no line.
        """
        reporting = self.config.reporting
        threshold = self.config.threshold
        zero = Money.zero(reporting)

        lines: List[VirtualJournalLine] = []
        total_gain = zero
        total_loss = zero

        for position in positions:
            gain_loss = position.gain_loss
            if gain_loss is None or abs(gain_loss.amount) <= threshold:
                continue

            if gain_loss.is_positive():
                total_gain = total_gain + gain_loss
                lines.append(VirtualJournalLine(
                    account_code=position.account_code,
                    account_name=position.account_name,
                    debit=gain_loss,
                    credit=zero,
                    description=f"Unrealized FX gain on {position.source_reference}",
                    currency=position.currency,
                    fx_impact=gain_loss,
                ))
            else:
                total_loss = total_loss + abs(gain_loss)
                lines.append(VirtualJournalLine(
                    account_code=position.account_code,
                    account_name=position.account_name,
                    debit=zero,
                    credit=abs(gain_loss),
                    description=f"Unrealized FX loss on {position.source_reference}",
                    currency=position.currency,
                    fx_impact=gain_loss,
                ))

        if total_gain.is_positive():
            lines.append(VirtualJournalLine(
                account_code=self.config.fx_gain_account_code,
                account_name=self.config.fx_gain_account_name,
                debit=zero,
                credit=total_gain,
                description="Unrealized foreign exchange gains",
            ))

        if total_loss.is_positive():
            lines.append(VirtualJournalLine(
                account_code=self.config.fx_loss_account_code,
                account_name=self.config.fx_loss_account_name,
                debit=total_loss,
                credit=zero,
                description="Unrealized foreign exchange losses",
            ))

        entry = VirtualJournalEntry(
            entry_date=as_of_date,
            description=f"Unrealized FX revaluation as of {as_of_date.isoformat()}",
            reporting_currency=reporting,
            lines=lines,
        )
        logger.debug(
            "Virtual journal as of %s: %d lines, gains %s, losses %s",
            as_of_date, len(lines), total_gain.amount, total_loss.amount
        )
        return entry
