"""
Tests for CalculationService.

Covers:
- Group summaries are memoized and refreshed by store events
- A summary computed across an invalidation is returned but not cached
- Background computation on the worker pool
- User summaries with pending settlements
- Optimistic writes with rollback
"""

from concurrent.futures import Executor, Future
from decimal import Decimal

import pytest

from settleup_config.schema import CoreConfig, SettlementConfig, SplitConfig
from settleup_kernel.domain.records import SettlementStatus
from settleup_kernel.exceptions import InvalidSettlementAmountError
from settleup_services.calculation_service import (
    GROUP_SUMMARY,
    CalculationService,
    GroupSettlementSummary,
)
from settleup_services.change_feed import InMemoryChangeFeed, connect_cache
from settleup_services.memory_source import InMemoryRecordSource
from settleup_services.result_cache import EventKind, ScopeKey
from tests.conftest import make_expense, make_settlement, usd


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def _dinner():
    return make_expense(
        "e1", "A", "90.00", {"A": "30.00", "B": "30.00", "C": "30.00"}, group_id="g1"
    )


def _cabin():
    return make_expense("e2", "X", "40.00", {"X": "20.00", "Y": "20.00"}, group_id="g2")


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def source(feed):
    return InMemoryRecordSource(expenses=[_dinner(), _cabin()], feed=feed)


@pytest.fixture
def service(source, cache, feed, deterministic_clock):
    connect_cache(feed, cache)
    svc = CalculationService(
        source, cache, executor=InlineExecutor(), clock=deterministic_clock
    )
    yield svc
    svc.shutdown()


class TestGroupSummary:
    def test_balances_and_transfers(self, service):
        summary = service.group_summary("g1")

        assert isinstance(summary, GroupSettlementSummary)
        assert summary.balance.of("A") == usd("60.00")
        assert [t.as_dict() for t in summary.transactions] == [
            {"from": "B", "to": "A", "amount": "30.00"},
            {"from": "C", "to": "A", "amount": "30.00"},
        ]

    def test_memoized(self, service):
        assert service.group_summary("g1") is service.group_summary("g1")

    def test_refreshed_by_store_event(self, service, source):
        first = service.group_summary("g1")
        source.add_settlement(make_settlement("s1", "B", "A", "30.00"))

        second = service.group_summary("g1")

        assert second is not first
        assert second.balance.of("B").is_zero
        assert len(second.transactions) == 1

    def test_other_group_survives_event(self, service, source):
        g2 = service.group_summary("g2")
        source.add_expense(
            make_expense("e3", "B", "10.00", {"C": "10.00"}, group_id="g1")
        )
        assert service.group_summary("g2") is g2

    def test_expires_after_ttl(self, service, deterministic_clock):
        first = service.group_summary("g1")
        deterministic_clock.advance(301)
        assert service.group_summary("g1") is not first

    def test_superseded_result_not_cached(self, cache, deterministic_clock, captured_logs):
        class RacingSource(InMemoryRecordSource):
            def expenses_for_group(self, group_id):
                # A store mutation lands while the summary is being computed
                cache.invalidate_by_event(EventKind.EXPENSE_ADDED, group_id=group_id)
                return super().expenses_for_group(group_id)

        service = CalculationService(
            RacingSource(expenses=[_dinner()]),
            cache,
            executor=InlineExecutor(),
            clock=deterministic_clock,
        )
        summary = service.group_summary("g1")

        assert summary.balance.of("A") == usd("60.00")
        assert ScopeKey.calculation(GROUP_SUMMARY, group_id="g1") not in cache

        future = service.submit_group_summary("g1")
        assert future.result().balance == summary.balance
        assert ScopeKey.calculation(GROUP_SUMMARY, group_id="g1") not in cache
        assert any(r["message"] == "group_summary_superseded" for r in captured_logs())
        assert cache.stats()["in_flight"] == 0

    def test_malformed_record_reported_not_raised(self, cache, deterministic_clock):
        source = InMemoryRecordSource(
            expenses=[_dinner(), {"id": "bad", "groupId": "g1", "payer": "A"}]
        )
        service = CalculationService(
            source, cache, executor=InlineExecutor(), clock=deterministic_clock
        )
        summary = service.group_summary("g1")
        assert summary.as_dict()["issues"]
        assert summary.balance.of("A") == usd("60.00")

    def test_as_dict(self, service):
        payload = service.group_summary("g2").as_dict()
        assert payload["group_id"] == "g2"
        assert payload["currency"] == "USD"
        assert payload["balances"] == {"X": "20.00", "Y": "-20.00"}
        assert payload["transactions"] == [{"from": "Y", "to": "X", "amount": "20.00"}]


class TestSubmitGroupSummary:
    def test_result_is_cached(self, service):
        future = service.submit_group_summary("g1")
        summary = future.result()
        assert service.group_summary("g1") is summary

    def test_cached_summary_returns_completed_future(self, service):
        summary = service.group_summary("g1")
        future = service.submit_group_summary("g1")
        assert future.done()
        assert future.result() is summary

    def test_worker_pool(self, source, cache, deterministic_clock):
        with CalculationService(source, cache, clock=deterministic_clock) as service:
            future = service.submit_group_summary("g1")
            summary = future.result(timeout=10)
        assert summary.balance.of("C") == usd("-30.00")

    def test_source_error_set_on_future(self, cache, deterministic_clock):
        class BrokenSource(InMemoryRecordSource):
            def expenses_for_group(self, group_id):
                raise ConnectionError("store unavailable")

        service = CalculationService(
            BrokenSource(), cache, executor=InlineExecutor(), clock=deterministic_clock
        )
        future = service.submit_group_summary("g1")
        with pytest.raises(ConnectionError):
            future.result()
        assert len(cache) == 0
        assert cache.stats()["in_flight"] == 0


class TestUserSummary:
    def test_net_pending_and_transfers(self, service, source):
        source.add_settlement(
            make_settlement("s1", "B", "A", "10.00", SettlementStatus.PENDING)
        )

        summary = service.user_summary("B")

        assert summary.net == usd("-30.00")
        assert summary.pending == usd("10.00")
        assert [t.as_dict() for t in summary.owes] == [
            {"from": "B", "to": "A", "amount": "30.00"}
        ]
        assert summary.owed == ()

    def test_creditor_view(self, service):
        summary = service.user_summary("A")
        assert summary.net == usd("60.00")
        assert len(summary.owed) == 2
        assert summary.owes == ()

    def test_refreshed_by_settlement_event(self, service, source):
        first = service.user_summary("B")
        source.add_settlement(make_settlement("s1", "B", "A", "30.00"))

        second = service.user_summary("B")

        assert second is not first
        assert second.net.is_zero

    def test_raw_settlement_documents(self, cache, deterministic_clock):
        source = InMemoryRecordSource(
            expenses=[_dinner()],
            settlements=[
                {"id": "s1", "fromUser": "B", "toUser": "A", "amount": 5, "status": "pending"},
                {"id": "s2", "fromUser": "B", "amount": 5},
            ],
        )
        service = CalculationService(
            source, cache, executor=InlineExecutor(), clock=deterministic_clock
        )
        summary = service.user_summary("B")
        assert summary.pending == usd("5.00")


class TestWrites:
    def test_record_expense_shows_in_cached_list_during_write(self, service, source):
        service.group_expenses("g1")
        expense = make_expense("e9", "B", "12.00", {"A": "12.00"}, group_id="g1")
        seen = []

        def write(record):
            seen.append([e.expense_id for e in service.group_expenses("g1")])
            source.add_expense(record)

        service.record_expense(expense, write)

        assert seen == [["e9", "e1"]]
        assert [e.expense_id for e in service.group_expenses("g1")] == ["e1", "e9"]

    def test_reader_during_write_never_sees_partial_group(self, cache, deterministic_clock):
        # No change feed: the service alone keeps the cache consistent
        source = InMemoryRecordSource(expenses=[_dinner()])
        service = CalculationService(
            source, cache, executor=InlineExecutor(), clock=deterministic_clock
        )
        expense = make_expense("e9", "B", "24.00", {"A": "12.00", "B": "12.00"}, group_id="g1")
        during = {}

        def write(record):
            during["expenses"] = [e.expense_id for e in service.group_expenses("g1")]
            during["A"] = service.group_summary("g1").balance.of("A")
            source.add_expense(record)

        service.record_expense(expense, write)

        assert during == {"expenses": ["e1"], "A": usd("60.00")}
        after = service.group_summary("g1")
        assert after.balance.of("A") == usd("48.00")
        assert after.balance.of("B") == usd("-18.00")

    def test_record_expense_drops_cached_summary(self, cache, deterministic_clock):
        source = InMemoryRecordSource(expenses=[_dinner()])
        service = CalculationService(
            source, cache, executor=InlineExecutor(), clock=deterministic_clock
        )
        service.group_expenses("g1")
        assert service.group_summary("g1").balance.of("A") == usd("60.00")
        expense = make_expense("e9", "B", "24.00", {"A": "12.00", "B": "12.00"}, group_id="g1")
        during = []

        def write(record):
            during.append(ScopeKey.calculation(GROUP_SUMMARY, group_id="g1") in cache)
            source.add_expense(record)

        service.record_expense(expense, write)

        assert during == [False]
        assert service.group_summary("g1").balance.of("A") == usd("48.00")

    def test_record_expense_rolls_back_on_failure(self, service):
        before = service.group_expenses("g1")
        expense = make_expense("e9", "B", "12.00", {"A": "12.00"}, group_id="g1")

        def failing_write(record):
            raise ConnectionError("store unavailable")

        with pytest.raises(ConnectionError):
            service.record_expense(expense, failing_write)

        assert service.group_expenses("g1") == before

    def test_ungrouped_expense_written_directly(self, service, cache):
        expense = make_expense("e9", "B", "12.00", {"A": "12.00"}, group_id=None)
        assert service.record_expense(expense, lambda e: "ok") == "ok"
        assert len(cache) == 0

    def test_record_settlement_validates_amount(self, service):
        written = []
        too_big = make_settlement("s1", "B", "A", "1000000.00")

        with pytest.raises(InvalidSettlementAmountError):
            service.record_settlement(too_big, written.append)
        assert written == []

    def test_configured_maximum(self, source, cache, deterministic_clock):
        config = CoreConfig(settlement=SettlementConfig(max_amount=Decimal("50.00")))
        service = CalculationService(
            source, cache, config=config, executor=InlineExecutor(), clock=deterministic_clock
        )
        with pytest.raises(InvalidSettlementAmountError) as exc_info:
            service.record_settlement(make_settlement("s1", "B", "A", "50.01"), print)
        assert exc_info.value.max_amount == "50.00"

    def test_record_settlement_optimistic(self, service, source):
        service.group_settlements("g1")
        settlement = make_settlement("s1", "B", "A", "30.00")
        seen = []

        def write(record):
            seen.append(service.group_settlements("g1"))
            source.add_settlement(record)

        service.record_settlement(settlement, write)

        assert seen == [(settlement,)]
        assert service.group_summary("g1").balance.of("B") == usd("0.00")

    def test_record_settlement_without_cached_list(self, service, cache):
        settlement = make_settlement("s1", "B", "A", "30.00")
        service.record_settlement(settlement, lambda s: None)

        assert ScopeKey.group_settlements("g1") not in cache
        assert service.group_settlements("g1") == ()


class TestConfiguration:
    def test_split_uses_configured_rounding(self, source, cache):
        config = CoreConfig(split=SplitConfig(weighted_rounding="largest_remainder"))
        service = CalculationService(source, cache, config=config, executor=InlineExecutor())

        result = service.split_expense("100.00", "shares", {"A": 1, "B": 1, "C": 1})

        assert result.shares["A"] == usd("33.34")

    def test_default_split_rounding(self, service):
        result = service.split_expense("100.00", "shares", {"A": 1, "B": 1, "C": 1})
        assert result.shares["C"] == usd("33.34")

    def test_from_config_sizes_cache(self, source, deterministic_clock):
        config = CoreConfig()
        with CalculationService.from_config(source, config, clock=deterministic_clock) as service:
            assert service.cache.ttl_seconds == 300
            assert service.currency.code == "USD"
