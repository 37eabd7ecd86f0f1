"""
Module: settleup_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines. This is the import surface for settleup_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import settleup_kernel (and sibling engine modules).
    MUST NOT import settleup_services or settleup_config.

Invariants enforced:
    - Purity: engines never read the clock or any store. Records and
      configuration values are passed in by the caller.
    - Integer arithmetic: every amount is handled in minor units.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``settleup_engines.tracer``), emitting SETTLEUP_ENGINE_TRACE records.

Usage:
    from settleup_engines import aggregate_balances, compute_split, minimize_settlements
"""

from settleup_kernel.logging_config import get_logger

logger = get_logger("engines")

from settleup_engines.balances import (
    BalanceAggregator,
    aggregate_balances,
    expenses_involving,
    member_balance,
    total_expense_amount,
)
from settleup_engines.settlement import (
    SettlementMinimizer,
    apply_transactions,
    cancel_settlements_for_expense,
    minimize_settlements,
    pending_settlement_total,
    validate_settlement_amount,
)
from settleup_engines.split import (
    AdjustmentSplit,
    EqualSplit,
    ExactSplit,
    PercentageSplit,
    SharesSplit,
    SplitCalculator,
    SplitRequest,
    SplitResult,
    WeightedRounding,
    adjust_to_total,
    build_request,
    compute_split,
    distribute_largest_remainder,
)
from settleup_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Split
    "AdjustmentSplit",
    "EqualSplit",
    "ExactSplit",
    "PercentageSplit",
    "SharesSplit",
    "SplitCalculator",
    "SplitRequest",
    "SplitResult",
    "WeightedRounding",
    "adjust_to_total",
    "build_request",
    "compute_split",
    "distribute_largest_remainder",
    # Balances
    "BalanceAggregator",
    "aggregate_balances",
    "expenses_involving",
    "member_balance",
    "total_expense_amount",
    # Settlement
    "SettlementMinimizer",
    "apply_transactions",
    "cancel_settlements_for_expense",
    "minimize_settlements",
    "pending_settlement_total",
    "validate_settlement_amount",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
