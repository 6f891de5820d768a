"""
Test suite for audit module

Tests the hash-chained audit trail that records manual exchange-rate
maintenance, tamper detection and integrity verification.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from fx_ledger.storage import InMemoryStorage, SQLiteStorage
from fx_ledger.audit import AuditTrail, AuditEvent, AuditEventType
from fx_ledger.rates import ManualRatePolicy


def rate_event(event_id="AUDIT001", previous_hash="", metadata=None) -> AuditEvent:
    now = datetime.now(timezone.utc)
    return AuditEvent(
        id=event_id,
        created_at=now,
        updated_at=now,
        event_type=AuditEventType.FX_RATE_CREATED,
        entity_type="fx_rate",
        entity_id="RATE001",
        previous_hash=previous_hash,
        current_hash="",
        user_id="analyst",
        metadata=metadata if metadata is not None else {"from_currency": "EUR", "rate": "120"}
    )


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_metadata_serialization(self):
        """Decimals, dates and enums are stored as plain JSON values"""
        event = rate_event(metadata={
            "rate": Decimal('120.5'),
            "rate_date": date(2024, 3, 31),
            "policy": ManualRatePolicy.SUPERSEDE,
            "nested": {"superseded": [Decimal('118'), Decimal('119')]},
        })

        assert event.metadata["rate"] == "120.5"
        assert event.metadata["rate_date"] == "2024-03-31"
        assert event.metadata["policy"] == "supersede"
        assert event.metadata["nested"]["superseded"] == ["118", "119"]

    def test_hash_calculation(self):
        """Test hash calculation for audit event"""
        event = rate_event()

        expected_hash = event.calculate_hash()
        assert len(expected_hash) == 64  # SHA-256 hex digest
        assert expected_hash == event.calculate_hash()

    def test_hash_verification(self):
        event = rate_event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.current_hash = "tampered_hash"
        assert not event.verify_hash()

    def test_hash_covers_metadata_and_chain(self):
        event = rate_event()
        original = event.calculate_hash()

        event.metadata = {"from_currency": "EUR", "rate": "121"}
        assert event.calculate_hash() != original

        event.metadata = {"from_currency": "EUR", "rate": "120"}
        event.previous_hash = "other"
        assert event.calculate_hash() != original

    def test_round_trip_keeps_hash_valid(self):
        event = rate_event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.FX_RATE_CREATED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail chain behaviour"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def log_rate(self, entity_id="RATE001", event_type=AuditEventType.FX_RATE_CREATED, **metadata):
        return self.audit_trail.log_event(
            event_type=event_type,
            entity_type="fx_rate",
            entity_id=entity_id,
            metadata=metadata,
            user_id="analyst"
        )

    def test_log_first_event(self):
        event = self.log_rate(rate="120")

        assert event.previous_hash == ""
        assert event.verify_hash()
        assert self.audit_trail.get_latest_hash() == event.current_hash

    def test_log_multiple_events_chain(self):
        first = self.log_rate("RATE001")
        second = self.log_rate("RATE002")
        third = self.log_rate("RATE001", event_type=AuditEventType.FX_RATE_DEACTIVATED)

        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash

    def test_get_events_for_entity(self):
        self.log_rate("RATE001")
        self.log_rate("RATE002")
        self.log_rate("RATE001", event_type=AuditEventType.FX_RATE_DEACTIVATED)

        events = self.audit_trail.get_events_for_entity("fx_rate", "RATE001")
        assert [e.event_type for e in events] == [
            AuditEventType.FX_RATE_CREATED, AuditEventType.FX_RATE_DEACTIVATED
        ]

    def test_get_events_by_type(self):
        self.log_rate("RATE001")
        self.log_rate("RATE001", event_type=AuditEventType.FX_RATE_DEACTIVATED)

        deactivated = self.audit_trail.get_events_by_type(AuditEventType.FX_RATE_DEACTIVATED)
        assert len(deactivated) == 1
        assert deactivated[0].user_id == "analyst"

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.log_rate(f"RATE00{i}", rate=Decimal('110') + i)

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_hash_tampering(self):
        event = self.log_rate(rate="120")
        self.log_rate("RATE002")

        data = self.storage.load(self.audit_trail.table_name, event.id)
        data["metadata"]["rate"] = "999"
        self.storage.save(self.audit_trail.table_name, event.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [event.id]

    def test_verify_integrity_detects_chain_break(self):
        first = self.log_rate("RATE001")
        second = self.log_rate("RATE002")

        data = self.storage.load(self.audit_trail.table_name, second.id)
        data["previous_hash"] = "broken_chain_hash"
        self.storage.save(self.audit_trail.table_name, second.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        chain_break = result["chain_breaks"][0]
        assert chain_break["event_id"] == second.id
        assert chain_break["expected_previous_hash"] == first.current_hash
        assert chain_break["actual_previous_hash"] == "broken_chain_hash"

    def test_verify_integrity_empty_trail(self):
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 0

    def test_count_events(self):
        for i in range(3):
            self.log_rate(f"RATE00{i}")
        assert self.audit_trail.count_events() == 3

    def test_chain_continues_across_instances(self):
        """A new trail over the same storage picks up the last hash"""
        first = self.log_rate("RATE001")

        reopened = AuditTrail(self.storage)
        assert reopened.get_latest_hash() == first.current_hash
        second = reopened.log_event(AuditEventType.FX_RATE_CREATED, "fx_rate", "RATE002")
        assert second.previous_hash == first.current_hash
        assert reopened.verify_integrity()["valid"]


class TestAuditTrailSQLite:
    def test_persisted_chain_verifies(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "audit.db")
        trail = AuditTrail(storage)
        trail.log_event(AuditEventType.FX_RATE_CREATED, "fx_rate", "RATE001", {"rate": Decimal('120')})
        trail.log_event(AuditEventType.FX_RATE_DEACTIVATED, "fx_rate", "RATE001")
        storage.close()

        reopened = SQLiteStorage(tmp_path / "audit.db")
        result = AuditTrail(reopened).verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 2
        reopened.close()
