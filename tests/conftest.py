"""
Pytest fixtures for the settle-up core test suite.

Provides:
- Structured logging configured once per session, plus log capture
- A DeterministicClock for TTL tests
- Record builders shared by engine and service tests
"""

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO

import pytest

from settleup_kernel.domain.clock import DeterministicClock
from settleup_kernel.domain.records import (
    ExpenseRecord,
    SettlementRecord,
    SettlementStatus,
    SplitPolicy,
)
from settleup_kernel.domain.values import Money
from settleup_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from settleup_services.result_cache import ResultCache

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture settleup logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            compute_split(...)
            logs = captured_logs()
            assert any(r["message"] == "split_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("settleup")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(T0)


@pytest.fixture
def cache(deterministic_clock):
    return ResultCache(clock=deterministic_clock, ttl_seconds=300)


# =============================================================================
# Record builders
# =============================================================================


def usd(amount: str) -> Money:
    return Money.of(amount, "USD")


def make_expense(
    expense_id: str,
    payer: str,
    amount: str,
    split: dict[str, str],
    group_id: str | None = "g1",
    policy: SplitPolicy = SplitPolicy.EXACT,
    is_deleted: bool = False,
) -> ExpenseRecord:
    return ExpenseRecord(
        expense_id=expense_id,
        payer=payer,
        amount=usd(amount),
        split={member: usd(share) for member, share in split.items()},
        policy=policy,
        group_id=group_id,
        is_deleted=is_deleted,
    )


def make_settlement(
    settlement_id: str,
    from_member: str,
    to_member: str,
    amount: str,
    status: SettlementStatus = SettlementStatus.COMPLETED,
    group_id: str | None = "g1",
    related_expense_id: str | None = None,
) -> SettlementRecord:
    return SettlementRecord(
        settlement_id=settlement_id,
        from_member=from_member,
        to_member=to_member,
        amount=usd(amount),
        status=status,
        group_id=group_id,
        related_expense_id=related_expense_id,
    )


def amounts(mapping) -> dict[str, Decimal]:
    """Member -> Decimal view of a Money mapping."""
    return {member: value.amount for member, value in mapping.items()}
