"""
settleup_services.calculation_service -- Cached balance and settlement plans.

Responsibility:
    Read expense/settlement records from the external store, run the
    BalanceAggregator and SettlementMinimizer over them and memoize the
    result in the ResultCache. Heavy recomputation can be pushed to a
    worker pool so the caller keeps processing change notifications.

Architecture position:
    Services -- orchestration over engines + kernel.
    Receives a RecordSource, a ResultCache and a CoreConfig by injection.

Invariants enforced:
    - Full recomputation: a summary is always rebuilt from the complete
      record set of its scope, never patched.
    - Staleness: the scope generation is read before the records are
      fetched. If an event invalidates the scope while the computation
      runs, its result is returned to the caller but not cached.
    - Writes: a record is shown optimistically only in a list that is
      already cached; calculation scopes are dropped before the write and
      the record's event scopes after it, even without a change feed.

Failure modes:
    - Errors raised by the RecordSource propagate (or are set on the
      returned Future). Malformed records never fail a summary; they show
      up in ``balance.issues``.
    - InvalidSettlementAmountError from ``record_settlement``.

Usage:
    cache = ResultCache(clock=SystemClock(), ttl_seconds=config.cache.ttl_seconds)
    service = CalculationService(source, cache, config=config)

    summary = service.group_summary("g1")
    [t.as_dict() for t in summary.transactions]

    future = service.submit_group_summary("g1")   # runs on the worker pool
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol

from settleup_config.schema import CoreConfig
from settleup_engines.balances import BalanceAggregator
from settleup_engines.settlement import (
    SettlementMinimizer,
    pending_settlement_total,
    validate_settlement_amount,
)
from settleup_engines.split import (
    SplitCalculator,
    SplitResult,
    WeightedRounding,
    compute_split,
)
from settleup_kernel.domain.clock import Clock, SystemClock
from settleup_kernel.domain.parsing import parse_settlement
from settleup_kernel.domain.records import (
    Balance,
    ExpenseRecord,
    SettlementRecord,
    SettlementTransaction,
    SplitPolicy,
)
from settleup_kernel.domain.values import Currency, Money
from settleup_kernel.exceptions import RecordParseError
from settleup_kernel.logging_config import LogContext, get_logger
from settleup_services.result_cache import EventKind, ResultCache, ScopeKey

logger = get_logger("services.calculation")

GROUP_SUMMARY = "group_summary"
USER_SUMMARY = "user_summary"


def build_split_calculator(config: CoreConfig) -> SplitCalculator:
    """SplitCalculator with the configured rounding rule and exact tolerance."""
    return SplitCalculator(
        weighted_rounding=WeightedRounding(config.split.weighted_rounding),
        exact_tolerance_per_member=config.split.exact_tolerance_per_member,
    )


class RecordSource(Protocol):
    """
    Query side of the external store.

    Each method returns ExpenseRecord/SettlementRecord instances or the raw
    store documents (mappings); both are accepted downstream.
    """

    def expenses_for_group(self, group_id: str) -> Iterable[Any]: ...

    def settlements_for_group(self, group_id: str) -> Iterable[Any]: ...

    def expenses_for_user(self, user_id: str) -> Iterable[Any]: ...

    def settlements_for_user(self, user_id: str) -> Iterable[Any]: ...


@dataclass(frozen=True)
class GroupSettlementSummary:
    """Balances of one group and the transfers that would close them."""

    group_id: str
    balance: Balance
    transactions: tuple[SettlementTransaction, ...]
    computed_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "currency": self.balance.currency.code,
            "balances": {m: str(v) for m, v in self.balance.as_amounts().items()},
            "transactions": [t.as_dict() for t in self.transactions],
            "issues": [str(issue) for issue in self.balance.issues],
        }


@dataclass(frozen=True)
class UserSummary:
    """One user's position across every group and non-group expense."""

    user_id: str
    net: Money
    pending: Money
    balance: Balance
    transactions: tuple[SettlementTransaction, ...]
    computed_at: datetime

    @property
    def owes(self) -> tuple[SettlementTransaction, ...]:
        return tuple(t for t in self.transactions if t.from_member == self.user_id)

    @property
    def owed(self) -> tuple[SettlementTransaction, ...]:
        return tuple(t for t in self.transactions if t.to_member == self.user_id)


class CalculationService:
    """
    Balance and settlement plans for groups and users, memoized per scope.

    Contract:
        The cache and the record source are injected; the service owns the
        worker pool only when it created it (see ``shutdown``).
    Guarantees:
        - Identical record sets produce identical summaries.
        - A summary computed across an invalidation is never cached.
    Non-goals:
        - Does not write to the store; ``record_expense`` and
          ``record_settlement`` call the caller's write function.
    """

    def __init__(
        self,
        source: RecordSource,
        cache: ResultCache,
        *,
        config: CoreConfig | None = None,
        executor: Executor | None = None,
        clock: Clock | None = None,
    ):
        self._source = source
        self._cache = cache
        self._config = config or CoreConfig()
        self._clock = clock or SystemClock()
        self._currency = Currency(self._config.currency)
        self._aggregator = BalanceAggregator(currency=self._currency)
        self._minimizer = SettlementMinimizer(
            epsilon_minor_units=self._config.settlement.epsilon_minor_units
        )
        self._splitter = build_split_calculator(self._config)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.workers.max_workers,
            thread_name_prefix="settleup-calc",
        )

    @classmethod
    def from_config(
        cls,
        source: RecordSource,
        config: CoreConfig,
        clock: Clock | None = None,
    ) -> CalculationService:
        """Build the service together with a cache sized from ``config``."""
        clock = clock or SystemClock()
        cache = ResultCache(
            clock=clock,
            ttl_seconds=config.cache.ttl_seconds,
            sweep_interval_seconds=config.cache.sweep_interval_seconds,
        )
        return cls(source, cache, config=config, clock=clock)

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def currency(self) -> Currency:
        return self._currency

    # -- record scopes -------------------------------------------------------

    def _memoized(self, key: ScopeKey, compute: Callable[[], Any]) -> Any:
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        generation = self._cache.generation(key)
        try:
            value = compute()
        except Exception:
            self._cache.release(key)
            raise
        self._cache.put(key, value, generation=generation)
        return value

    def _cached_records(
        self, key: ScopeKey, fetch: Callable[[], Iterable[Any]]
    ) -> tuple[Any, ...]:
        return tuple(self._memoized(key, lambda: tuple(fetch())))

    def group_expenses(self, group_id: str) -> tuple[Any, ...]:
        return self._cached_records(
            ScopeKey.group_expenses(group_id),
            lambda: self._source.expenses_for_group(group_id),
        )

    def group_settlements(self, group_id: str) -> tuple[Any, ...]:
        return self._cached_records(
            ScopeKey.group_settlements(group_id),
            lambda: self._source.settlements_for_group(group_id),
        )

    def user_settlements(self, user_id: str) -> tuple[Any, ...]:
        return self._cached_records(
            ScopeKey.user_settlements(user_id),
            lambda: self._source.settlements_for_user(user_id),
        )

    # -- group summaries -------------------------------------------------------

    def _compute_group(self, group_id: str) -> GroupSettlementSummary:
        with LogContext.bind(group_id=group_id):
            balance = self._aggregator.aggregate(
                expenses=self.group_expenses(group_id),
                settlements=self.group_settlements(group_id),
            )
            transactions = self._minimizer.minimize(balance=balance)
            logger.info("group_summary_computed", extra={
                "member_count": len(balance),
                "transaction_count": len(transactions),
                "issue_count": len(balance.issues),
            })
        return GroupSettlementSummary(
            group_id=group_id,
            balance=balance,
            transactions=tuple(transactions),
            computed_at=self._clock.now(),
        )

    def group_summary(self, group_id: str) -> GroupSettlementSummary:
        """Balances and suggested transfers for ``group_id``, from cache when fresh."""
        return self._memoized(
            ScopeKey.calculation(GROUP_SUMMARY, group_id=group_id),
            lambda: self._compute_group(group_id),
        )

    def submit_group_summary(self, group_id: str) -> Future[GroupSettlementSummary]:
        """
        Compute the group summary on the worker pool.

        A fresh cached summary comes back as an already-completed Future.
        Otherwise the result is cached when the worker finishes, unless the
        group was invalidated in the meantime.
        """
        key = ScopeKey.calculation(GROUP_SUMMARY, group_id=group_id)
        cached = self._cache.get(key)
        if cached is not None:
            done: Future[GroupSettlementSummary] = Future()
            done.set_result(cached)
            return done

        generation = self._cache.generation(key)
        future = self._executor.submit(self._compute_group, group_id)

        def store(finished: Future[GroupSettlementSummary]) -> None:
            if finished.cancelled() or finished.exception() is not None:
                self._cache.release(key)
                return
            if not self._cache.put(key, finished.result(), generation=generation):
                logger.info("group_summary_superseded", extra={"group_id": group_id})

        future.add_done_callback(store)
        return future

    # -- user summaries --------------------------------------------------------

    def _typed_settlements(self, settlements: Iterable[Any]) -> list[SettlementRecord]:
        typed: list[SettlementRecord] = []
        for raw in settlements:
            if isinstance(raw, SettlementRecord):
                typed.append(raw)
                continue
            try:
                typed.append(parse_settlement(raw, self._currency))
            except RecordParseError:
                # Already reported on the balance by the aggregator
                continue
        return typed

    def user_summary(self, user_id: str) -> UserSummary:
        """Net position of ``user_id`` across all of their expenses."""
        return self._memoized(
            ScopeKey.calculation(USER_SUMMARY, user_id=user_id),
            lambda: self._compute_user(user_id),
        )

    def _compute_user(self, user_id: str) -> UserSummary:
        with LogContext.bind(user_id=user_id):
            settlements = self.user_settlements(user_id)
            balance = self._aggregator.aggregate(
                expenses=tuple(self._source.expenses_for_user(user_id)),
                settlements=settlements,
            )
            transactions = tuple(
                t for t in self._minimizer.minimize(balance=balance)
                if t.from_member == user_id or t.to_member == user_id
            )
            pending = pending_settlement_total(
                user_id,
                self._typed_settlements(settlements),
                self._currency,
            )
            summary = UserSummary(
                user_id=user_id,
                net=balance.of(user_id),
                pending=pending,
                balance=balance,
                transactions=transactions,
                computed_at=self._clock.now(),
            )
            logger.info("user_summary_computed", extra={
                "net": str(summary.net.amount),
                "transaction_count": len(transactions),
            })
        return summary

    # -- writes ----------------------------------------------------------------

    def split_expense(
        self,
        amount: Money | Decimal | str | int,
        policy: SplitPolicy | str,
        member_weights: Mapping[str, Any] | Iterable[str],
    ) -> SplitResult:
        """Split with the configured rounding rule and currency."""
        return compute_split(
            amount,
            policy,
            member_weights,
            currency=self._currency,
            calculator=self._splitter,
        )

    def _write(
        self,
        record: Any,
        record_id: str,
        list_key: ScopeKey | None,
        event: EventKind,
        user_id: str,
        write: Callable[[Any], Any],
    ) -> Any:
        group_id = list_key.group_id if list_key is not None else None
        handle = (
            self._cache.insert_optimistic(list_key, record, record_id)
            if list_key is not None
            else None
        )
        # Summaries must not disagree with the optimistic list
        self._cache.invalidate_calculations(group_id)
        try:
            result = write(record)
        except Exception:
            if handle is not None:
                handle.rollback()
            self._cache.invalidate_calculations(group_id)
            raise
        self._cache.invalidate_by_event(event, group_id=group_id, user_id=user_id)
        return result

    def record_expense(
        self, expense: ExpenseRecord, write: Callable[[ExpenseRecord], Any]
    ) -> Any:
        """
        Show ``expense`` in its group's cached list, then call ``write``.

        Cached summaries are dropped before the write so none disagrees with
        the optimistic list. If ``write`` raises, the insert is rolled back
        and the error propagates. Once ``write`` returns, the expense's
        scopes are invalidated as for an ``expense_added`` event, so the
        next read comes from the store.
        """
        key = ScopeKey.group_expenses(expense.group_id) if expense.group_id else None
        return self._write(
            expense, expense.expense_id, key, EventKind.EXPENSE_ADDED, expense.payer, write
        )

    def record_settlement(
        self, settlement: SettlementRecord, write: Callable[[SettlementRecord], Any]
    ) -> Any:
        """Validate the amount, then write the settlement like ``record_expense``."""
        validate_settlement_amount(
            settlement.amount,
            Money.of(self._config.settlement.max_amount, settlement.amount.currency),
        )
        key = ScopeKey.group_settlements(settlement.group_id) if settlement.group_id else None
        return self._write(
            settlement,
            settlement.settlement_id,
            key,
            EventKind.SETTLEMENT_ADDED,
            settlement.from_member,
            write,
        )

    # -- lifecycle ---------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> CalculationService:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
