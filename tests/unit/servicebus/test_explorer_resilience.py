"""
Unit Tests for Explorer Resilience Utilities

Tests for bounded waits.

Author: SBExplorer Contributors
Date: 2026-01-22
"""

import asyncio

import pytest

from sbexplorer.servicebus.exceptions import OperationTimeoutError
from sbexplorer.servicebus.resilience import bounded, with_timeout


class TestBounded:
    """Tests for the bounded helper."""

    @pytest.mark.asyncio
    async def test_returns_result_within_deadline(self):
        async def quick():
            await asyncio.sleep(0.01)
            return "done"

        assert await bounded(quick(), 1.0, "quick") == "done"

    @pytest.mark.asyncio
    async def test_raises_timeout(self):
        with pytest.raises(OperationTimeoutError) as exc_info:
            await bounded(asyncio.sleep(5), 0.05, "receive_messages")

        error = exc_info.value
        assert error.is_transient
        assert error.details == {"operation": "receive_messages", "timeout_seconds": 0.05}

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        async def failing():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await bounded(failing(), 1.0, "failing")


class TestWithTimeout:
    """Tests for the with_timeout decorator."""

    @pytest.mark.asyncio
    async def test_successful_operation(self):
        @with_timeout(1.0)
        async def operation(value):
            return value * 2

        assert await operation(21) == 42

    @pytest.mark.asyncio
    async def test_operation_name_in_error(self):
        @with_timeout(0.05)
        async def list_queues():
            await asyncio.sleep(5)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await list_queues()
        assert exc_info.value.details["operation"] == "list_queues"
