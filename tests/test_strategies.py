"""Tests for fallback chains."""

from pathlib import Path

from jvmprof.strategies import Strategy, StrategyOutcome, run_strategies


def test_first_success_wins():
    """Later strategies are not attempted after a success."""
    attempted = []

    def attempt(name, outcome):
        def run():
            attempted.append(name)
            return outcome

        return Strategy(name, run)

    outcome = run_strategies(
        [
            attempt("jcmd", StrategyOutcome.failure("jcmd not found")),
            attempt("jstat", StrategyOutcome.success(Path("gc.log"))),
            attempt("never", StrategyOutcome.success()),
        ]
    )

    assert outcome.succeeded
    assert outcome.strategy == "jstat"
    assert outcome.artifacts == (Path("gc.log"),)
    assert attempted == ["jcmd", "jstat"]


def test_failures_are_reported_in_order():
    """on_failure sees each failed attempt."""
    failures = []

    outcome = run_strategies(
        [
            Strategy("a", lambda: StrategyOutcome.failure("first")),
            Strategy("b", lambda: StrategyOutcome.failure("second")),
        ],
        on_failure=lambda strategy, result: failures.append((strategy.name, result.detail)),
    )

    assert not outcome.succeeded
    assert outcome.detail == "second"
    assert failures == [("a", "first"), ("b", "second")]


def test_empty_chain_fails():
    assert not run_strategies([]).succeeded
