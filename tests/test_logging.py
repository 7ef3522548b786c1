"""
Tests for logging helpers and redaction.
"""

import json
import logging
from uuid import uuid4

from liquidation_engine.audit import AuditEntry, AuditLedger
from liquidation_engine.logging import (
    LiquidationFormatter,
    clear_request_id,
    current_request_id,
    mask_address,
    redact_sensitive,
    set_request_id,
)


class TestRedaction:
    """Tests for sensitive field redaction."""

    def test_redact_destination_fields(self) -> None:
        """Should redact addresses and account numbers."""
        data = {"destination_address": "GB29NWBK60161331926819", "asset": "BTC"}
        redacted = redact_sensitive(data)

        assert redacted["destination_address"] == "[REDACTED]"
        assert redacted["asset"] == "BTC"

    def test_redact_nested(self) -> None:
        data = {"source": {"api_key": "k", "name": "feed"}, "items": [{"iban": "x"}]}
        redacted = redact_sensitive(data)

        assert redacted["source"] == {"api_key": "[REDACTED]", "name": "feed"}
        assert redacted["items"] == [{"iban": "[REDACTED]"}]

    def test_redact_case_insensitive(self) -> None:
        assert redact_sensitive({"X-API-KEY": "k"}) == {"X-API-KEY": "[REDACTED]"}

    def test_mask_address(self) -> None:
        assert mask_address("GB29NWBK60161331926819") == "****6819"
        assert mask_address("abc") == "****"
        assert mask_address(None) == ""

    def test_audit_metadata_redacted(self) -> None:
        ledger = AuditLedger()
        ledger._append_entry(
            AuditEntry(entry_type="error", metadata={"destination_address": "bc1qxyz", "attempt": 1})
        )
        assert ledger.get_entries()[0].metadata == {"destination_address": "[REDACTED]", "attempt": 1}


class TestRequestId:
    """Tests for request id tracking."""

    def test_set_and_clear(self) -> None:
        request_id = str(uuid4())
        set_request_id(request_id)
        assert current_request_id.get() == request_id

        clear_request_id()
        assert current_request_id.get() is None


class TestFormatter:
    """Tests for LiquidationFormatter."""

    def make_record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            "liquidation_engine.test", logging.WARNING, __file__, 1, "Held %s", ("BTC",), None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_text_includes_request_id(self) -> None:
        set_request_id("req-1")
        try:
            line = LiquidationFormatter().format(self.make_record())
        finally:
            clear_request_id()

        assert "[req-1] Held BTC" in line
        assert "WARNING" in line

    def test_json_redacts_context(self) -> None:
        record = self.make_record(context={"headers": {"X-API-KEY": "k"}, "base_url": "https://p"})
        payload = json.loads(LiquidationFormatter(json_output=True).format(record))

        assert payload["message"] == "Held BTC"
        assert payload["request_id"] is None
        assert payload["context"] == {"headers": {"X-API-KEY": "[REDACTED]"}, "base_url": "https://p"}
