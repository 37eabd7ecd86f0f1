"""
Pure domain layer.

Money, currency, record and balance types with NO dependencies on:
- Storage or subscriptions
- The system clock (except SystemClock)
- I/O

All domain objects are immutable and deterministic.
"""

from settleup_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settleup_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from settleup_kernel.domain.parsing import parse_expense, parse_settlement
from settleup_kernel.domain.records import (
    Balance,
    ExpenseRecord,
    SettlementRecord,
    SettlementStatus,
    SettlementTransaction,
    SplitPolicy,
)
from settleup_kernel.domain.values import Currency, Money, sum_money, to_minor_units

__all__ = [
    # Value objects
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Money",
    "sum_money",
    "to_minor_units",
    # Records
    "Balance",
    "ExpenseRecord",
    "SettlementRecord",
    "SettlementStatus",
    "SettlementTransaction",
    "SplitPolicy",
    "parse_expense",
    "parse_settlement",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
