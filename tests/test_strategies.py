"""
Unit tests for strategy chains.
"""

import pytest

from redbook.automation.strategies import first_result, run_best_effort


def _returning(value, calls):
    async def strategy():
        calls.append(value)
        return value
    return strategy


def _raising(calls):
    async def strategy():
        calls.append("raised")
        raise RuntimeError("selector drift")
    return strategy


class TestFirstResult:
    """Tests for first_result."""

    @pytest.mark.asyncio
    async def test_stops_at_first_value(self):
        calls = []
        result = await first_result(
            [("a", _returning(None, calls)), ("b", _returning("hit", calls)), ("c", _returning("late", calls))]
        )
        assert result == "hit"
        assert calls == [None, "hit"]

    @pytest.mark.asyncio
    async def test_failure_moves_on(self):
        calls = []
        result = await first_result([("a", _raising(calls)), ("b", _returning([1], calls))])
        assert result == [1]
        assert calls == ["raised", [1]]

    @pytest.mark.asyncio
    async def test_exhausted_chain(self):
        calls = []
        assert await first_result([("a", _raising(calls)), ("b", _returning(None, calls))]) is None

    @pytest.mark.asyncio
    async def test_falsy_values_count(self):
        """Test only None means 'nothing found'."""
        assert await first_result([("a", _returning(False, []))]) is False


class TestRunBestEffort:
    @pytest.mark.asyncio
    async def test_swallows_errors(self):
        assert await run_best_effort(_raising([]), "capture") is None

    @pytest.mark.asyncio
    async def test_returns_value(self):
        assert await run_best_effort(_returning("ok", []), "capture") == "ok"
