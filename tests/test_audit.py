"""
Unit tests for the AuditLogger and audit trail serialisation.
"""

from __future__ import annotations

import json

import pytest

from financial_inference.audit import AuditLogger, audit_trail_from_text, audit_trail_to_text
from financial_inference.schema import AuditEventType


@pytest.fixture
def audit() -> AuditLogger:
    log = AuditLogger()
    log.add_entry(AuditEventType.FILE_INGESTED, "Ingested file: ledger.csv (CSV)",
                  {"filename": "ledger.csv", "row_count": 3})
    log.add_entry(AuditEventType.SCHEMA_INFERRED, "Inferred schema for 1 sheet(s)",
                  {"sheets": {"default": "transactions"}, "flagged_columns": []})
    log.add_entry(AuditEventType.ERROR_OCCURRED, "Calculation failed", {},
                  "division by zero")
    return log


class TestAuditLogger:
    def test_entries_in_order(self, audit: AuditLogger) -> None:
        assert [e.event_type for e in audit.entries] == [
            AuditEventType.FILE_INGESTED,
            AuditEventType.SCHEMA_INFERRED,
            AuditEventType.ERROR_OCCURRED,
        ]
        assert len(audit) == 3

    def test_of_type(self, audit: AuditLogger) -> None:
        (entry,) = audit.of_type(AuditEventType.ERROR_OCCURRED)
        assert entry.error_message == "division by zero"

    def test_has_errors(self, audit: AuditLogger) -> None:
        assert audit.has_errors
        assert not AuditLogger().has_errors

    def test_details_copied(self) -> None:
        details = {"count": 1}
        entry = AuditLogger().add_entry(AuditEventType.CALCULATIONS_RUN, "run", details)
        details["count"] = 2
        assert entry.details == {"count": 1}


class TestSerialisation:
    def test_round_trip(self, audit: AuditLogger) -> None:
        restored = audit_trail_from_text(audit.to_text())

        assert [(e.event_type, e.description) for e in restored] == [
            (e.event_type, e.description) for e in audit.entries
        ]
        assert restored[0].details == {"filename": "ledger.csv", "row_count": 3}
        assert restored[1].details["sheets"] == {"default": "transactions"}
        assert restored[2].error_message == "division by zero"
        assert restored[0].timestamp == audit.entries[0].timestamp

    def test_document_shape(self, audit: AuditLogger) -> None:
        data = json.loads(audit_trail_to_text(audit.entries))
        first = data["audit_trail"][0]
        assert first["event_type"] == "file_ingested"
        assert "error_message" not in first
        assert data["audit_trail"][2]["error_message"] == "division by zero"

    def test_bare_list_accepted(self, audit: AuditLogger) -> None:
        text = json.dumps([e.to_dict() for e in audit.entries])
        assert len(audit_trail_from_text(text)) == 3

    def test_wrong_document_rejected(self) -> None:
        with pytest.raises(ValueError, match="audit_trail"):
            audit_trail_from_text('{"entries": []}')
