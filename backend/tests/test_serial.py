"""
Tests for serial number allocation.

Verifies formatting, scope normalization, uniqueness and density under
concurrency, and the contention retry policy.
"""

import asyncio

import pytest

from stampmint.core.exceptions import ContentionError
from stampmint.services.serial_service import SerialService, format_serial


class TestFormatSerial:
    """Tests for format_serial."""

    def test_zero_padded(self):
        assert format_serial("FRANCE", 42) == "FRANCE-000042"

    def test_wide_sequence_printed_in_full(self):
        assert format_serial("INTL", 1234567) == "INTL-1234567"


class TestNormalizeScope:
    """Tests for SerialService.normalize_scope."""

    @pytest.mark.parametrize(
        ("scope", "expected"),
        [
            ("France", "FRANCE"),
            ("united kingdom", "UNITED_KINGDOM"),
            ("Côte d'Ivoire", "CTE_DIVOIRE"),
            (None, "INTL"),
            ("", "INTL"),
            ("   ", "INTL"),
        ],
    )
    def test_normalize(self, serial_service, scope, expected):
        assert serial_service.normalize_scope(scope) == expected


class TestAllocate:
    """Tests for SerialService.allocate."""

    @pytest.mark.asyncio
    async def test_sequences_start_at_one_per_scope(self, serial_service):
        assert await serial_service.allocate("France") == "FRANCE-000001"
        assert await serial_service.allocate("France") == "FRANCE-000002"
        assert await serial_service.allocate("Japan") == "JAPAN-000001"
        assert await serial_service.allocate(None) == "INTL-000001"

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_distinct_and_dense(self, serial_service, store):
        serials = await asyncio.gather(*(serial_service.allocate("France") for _ in range(1000)))

        assert len(set(serials)) == 1000
        sequences = sorted(int(serial.rsplit("-", 1)[1]) for serial in serials)
        assert sequences == list(range(1, 1001))
        assert await serial_service.peek("France") == 1000

    @pytest.mark.asyncio
    async def test_contention_is_retried(self, serial_service, store):
        store.fail_serial_increments = 2

        serial = await serial_service.allocate("France")

        assert serial == "FRANCE-000001"
        assert store.fail_serial_increments == 0

    @pytest.mark.asyncio
    async def test_contention_past_budget_raises(self, store, settings_factory):
        service = SerialService(store, settings_factory(serial_max_attempts=3))
        store.fail_serial_increments = 3

        with pytest.raises(ContentionError) as exc_info:
            await service.allocate("France")

        assert exc_info.value.retryable is True
        assert exc_info.value.context["scope"] == "FRANCE"
        # Failed attempts reserve nothing
        assert await service.peek("France") == 0
        assert await service.allocate("France") == "FRANCE-000001"

    @pytest.mark.asyncio
    async def test_peek_unknown_scope(self, serial_service):
        assert await serial_service.peek("Narnia") == 0
