"""
Services layer: stateful orchestration over the engines.

- ResultCache: TTL + event-invalidated memoization by scope key.
- ChangeFeed wiring: store notifications drive cache invalidation.
- CalculationService: cached group/user summaries, background computation.
"""

from settleup_services.calculation_service import (
    CalculationService,
    GroupSettlementSummary,
    RecordSource,
    UserSummary,
    build_split_calculator,
)
from settleup_services.change_feed import (
    ChangeEvent,
    ChangeFeed,
    InMemoryChangeFeed,
    cache_invalidator,
    connect_cache,
)
from settleup_services.memory_source import InMemoryRecordSource
from settleup_services.result_cache import (
    CacheEntry,
    EventKind,
    OptimisticInsert,
    ResultCache,
    ScopeKey,
    ScopeKind,
)

__all__ = [
    "CacheEntry",
    "CalculationService",
    "ChangeEvent",
    "ChangeFeed",
    "EventKind",
    "GroupSettlementSummary",
    "InMemoryChangeFeed",
    "InMemoryRecordSource",
    "OptimisticInsert",
    "RecordSource",
    "ResultCache",
    "ScopeKey",
    "ScopeKind",
    "UserSummary",
    "build_split_calculator",
    "cache_invalidator",
    "connect_cache",
]
