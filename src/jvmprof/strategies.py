"""Ordered fallback chains with a uniform outcome type."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StrategyOutcome:
    """Result of one attempt in a fallback chain."""

    succeeded: bool
    artifacts: tuple[Path, ...] = ()
    detail: str = ""
    strategy: str = ""

    @classmethod
    def success(cls, *artifacts: Path, detail: str = "") -> "StrategyOutcome":
        """Build a successful outcome."""
        return cls(True, tuple(artifacts), detail)

    @classmethod
    def failure(cls, detail: str) -> "StrategyOutcome":
        """Build a failed outcome."""
        return cls(False, (), detail)


@dataclass(slots=True, frozen=True)
class Strategy:
    """A named way of producing a result."""

    name: str
    attempt: Callable[[], StrategyOutcome]


def run_strategies(
    strategies: Sequence[Strategy],
    on_failure: Callable[[Strategy, StrategyOutcome], None] | None = None,
) -> StrategyOutcome:
    """
    Try strategies in order and stop at the first success.

    Args:
        strategies: Attempts in order of preference.
        on_failure: Called after each failed attempt.

    Returns:
        The first successful outcome, or the last failure.
    """
    outcome = StrategyOutcome.failure("no strategies to try")
    for strategy in strategies:
        result = strategy.attempt()
        outcome = StrategyOutcome(result.succeeded, result.artifacts, result.detail, strategy.name)
        if outcome.succeeded:
            logger.debug("Strategy %s succeeded", strategy.name)
            return outcome
        logger.info("Strategy %s failed: %s", strategy.name, outcome.detail)
        if on_failure is not None:
            on_failure(strategy, outcome)
    return outcome
