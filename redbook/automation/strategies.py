"""
Redbook Automator - Strategy Chains

Runs ordered fallback strategies. Each strategy returns a value or None;
a strategy that raises counts as None so the chain moves on.
"""

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = tuple[str, Callable[[], Awaitable[T | None]]]


async def first_result(strategies: Sequence[Strategy], label: str = "chain") -> T | None:
    """
    Run strategies in order and return the first non-None result.

    Args:
        strategies: (name, zero-argument coroutine function) pairs.
        label: Name used in log messages.

    Returns:
        The first non-None value, or None when every strategy came up empty.
    """
    for name, strategy in strategies:
        try:
            result = await strategy()
        except Exception as e:
            logger.warning(f"{label}: strategy '{name}' failed: {e}")
            continue
        if result is not None:
            logger.debug(f"{label}: strategy '{name}' succeeded")
            return result
        logger.debug(f"{label}: strategy '{name}' found nothing")
    return None


async def run_best_effort(step: Callable[[], Awaitable[T]], label: str) -> T | None:
    """Run a side step whose failure must not affect the caller."""
    try:
        return await step()
    except Exception as e:
        logger.debug(f"{label} skipped: {e}")
        return None
