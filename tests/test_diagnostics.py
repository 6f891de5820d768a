"""
Test suite for report warnings and errors
"""

import logging
from decimal import Decimal

from fx_ledger.diagnostics import (
    ReportGenerationError, ReportWarning, RepositoryUnavailableError, WarningType, emit, warnings_of_type
)


def missing_rate(code="EUR", count=1) -> ReportWarning:
    return ReportWarning(
        warning_type=WarningType.MISSING_RATE,
        entity_type="currency",
        entity_id=code,
        message=f"No active {code}/BDT rate",
        details={"positions_count": count, "total_amount": Decimal('500')},
    )


class TestReportWarning:
    def test_details_excluded_from_equality(self):
        assert missing_rate(count=1) == missing_rate(count=2)
        assert missing_rate("EUR") != missing_rate("GBP")

    def test_to_dict(self):
        data = missing_rate().to_dict()
        assert data["warning_type"] == "missing_rate"
        assert data["entity_id"] == "EUR"
        assert data["details"] == {"positions_count": "1", "total_amount": "500"}


class TestEmit:
    def test_appends_and_logs(self, caplog):
        sink = []
        with caplog.at_level(logging.WARNING, logger="fx_ledger.diagnostics"):
            warning = emit(missing_rate(), sink)

        assert sink == [warning]
        assert "missing_rate on currency EUR" in caplog.text

    def test_without_sink(self):
        assert emit(missing_rate()).entity_id == "EUR"

    def test_warnings_of_type(self):
        cyclic = ReportWarning(WarningType.CYCLIC_PARENT, "account", "a1", "Parent chain loops back")
        warnings = [missing_rate(), cyclic, missing_rate("GBP")]
        assert [w.entity_id for w in warnings_of_type(warnings, WarningType.MISSING_RATE)] == ["EUR", "GBP"]


class TestErrors:
    def test_repository_unavailable_keeps_cause(self):
        cause = OSError("disk gone")
        error = RepositoryUnavailableError("Cannot read ledger", cause)
        assert isinstance(error, ReportGenerationError)
        assert error.cause is cause
        assert str(error) == "Cannot read ledger"
