"""
Tests for the logging utilities.
"""

import json
import logging

from decimal import Decimal

from stampmint.models.ledger import DistributionKind
from stampmint.utils.logger import JSONFormatter, add_log_context


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("stampmint.test", logging.WARNING, __file__, 10, "Mint %s", ("failed",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_serializes_domain_values(self):
        output = JSONFormatter().format(
            make_record(amount=Decimal("360.00"), kind=DistributionKind.MINT_REWARD, serial_number="FRANCE-000001")
        )

        payload = json.loads(output)
        assert payload["message"] == "Mint failed"
        assert payload["level"] == "WARNING"
        assert payload["extra"]["amount"] == "360.00"
        assert payload["extra"]["kind"] == "mint_reward"
        assert payload["extra"]["serial_number"] == "FRANCE-000001"

    def test_extra_fields_can_be_excluded(self):
        payload = json.loads(JSONFormatter(include_extra_fields=False).format(make_record(amount=Decimal("1"))))
        assert "extra" not in payload


class TestLogContext:
    """Tests for add_log_context."""

    def test_context_merged_without_overriding_explicit_extra(self, caplog):
        ctx_logger = add_log_context(logging.getLogger("stampmint.test"), catalog_item_id="stamp-001", provider="a")

        with caplog.at_level(logging.INFO, logger="stampmint.test"):
            ctx_logger.info("pinned", extra={"provider": "b"})

        record = caplog.records[-1]
        assert record.catalog_item_id == "stamp-001"
        assert record.provider == "b"
