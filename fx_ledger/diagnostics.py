"""
Report Diagnostics

Non-fatal conditions found while building a report are collected as
ReportWarning objects and travel with the report. Only a ledger that cannot
be read at all aborts report generation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging


logger = logging.getLogger("fx_ledger.diagnostics")


class WarningType(Enum):
    """Recoverable conditions surfaced to report consumers"""
    MISSING_RATE = "missing_rate"                        # No current rate at as-of date
    MISSING_HISTORICAL_RATE = "missing_historical_rate"  # No booking rate for an invoice
    UNBALANCED_ENTRY = "unbalanced_entry"                # Posted entry with debits != credits
    ORPHAN_ACCOUNT = "orphan_account"                    # Parent id does not resolve
    CYCLIC_PARENT = "cyclic_parent"                      # Parent chain loops back
    UNKNOWN_ACCOUNT = "unknown_account"                  # Posted lines on an inactive or missing account


@dataclass(frozen=True)
class ReportWarning:
    """A data-integrity or completeness warning attached to a report"""
    warning_type: WarningType
    entity_type: str
    entity_id: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'warning_type': self.warning_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'message': self.message,
            'details': {k: str(v) for k, v in self.details.items()},
        }


class ReportGenerationError(Exception):
    """Fatal failure: the report could not be produced at all"""


class RepositoryUnavailableError(ReportGenerationError):
    """The ledger repository could not be read"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


def emit(warning: ReportWarning, sink: Optional[List[ReportWarning]] = None) -> ReportWarning:
    """Log a warning and append it to the sink when one is given"""
    logger.warning(
        "%s on %s %s: %s",
        warning.warning_type.value, warning.entity_type, warning.entity_id, warning.message
    )
    if sink is not None:
        sink.append(warning)
    return warning


def warnings_of_type(warnings: Iterable[ReportWarning], warning_type: WarningType) -> List[ReportWarning]:
    return [w for w in warnings if w.warning_type == warning_type]
