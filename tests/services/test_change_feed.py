"""Tests for store change notifications and cache wiring."""

import pytest

from settleup_services.change_feed import (
    ChangeEvent,
    InMemoryChangeFeed,
    cache_invalidator,
    connect_cache,
)
from settleup_services.result_cache import EventKind, ScopeKey
from tests.conftest import make_expense, make_settlement


class TestChangeEvent:
    def test_kind_coerced(self):
        event = ChangeEvent("expense_added", group_id="g1")
        assert event.kind is EventKind.EXPENSE_ADDED

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ChangeEvent("nothing_happened")

    def test_for_expense_uses_payer(self):
        expense = make_expense("e1", "alice", "10.00", {"bob": "10.00"})
        event = ChangeEvent.for_expense(EventKind.EXPENSE_ADDED, expense)
        assert event == ChangeEvent(EventKind.EXPENSE_ADDED, "g1", "alice", "e1")

    def test_for_settlement_uses_paying_member(self):
        settlement = make_settlement("s1", "bob", "alice", "5.00")
        event = ChangeEvent.for_settlement("settlement_updated", settlement)
        assert event.user_id == "bob"
        assert event.record_id == "s1"
        assert event.kind is EventKind.SETTLEMENT_UPDATED


class TestInMemoryChangeFeed:
    def test_listeners_receive_in_order(self):
        feed = InMemoryChangeFeed()
        seen = []
        feed.subscribe(lambda e: seen.append(("first", e.record_id)))
        feed.subscribe(lambda e: seen.append(("second", e.record_id)))

        delivered = feed.publish(ChangeEvent(EventKind.EXPENSE_ADDED, record_id="e1"))

        assert delivered == 2
        assert seen == [("first", "e1"), ("second", "e1")]

    def test_unsubscribe(self):
        feed = InMemoryChangeFeed()
        seen = []
        unsubscribe = feed.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        assert feed.publish(ChangeEvent(EventKind.GROUP_UPDATED)) == 0
        assert seen == []
        assert feed.listener_count == 0

    def test_failing_listener_does_not_block_others(self, captured_logs):
        feed = InMemoryChangeFeed()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        feed.subscribe(broken)
        feed.subscribe(seen.append)

        delivered = feed.publish(ChangeEvent(EventKind.EXPENSE_DELETED, record_id="e9"))

        assert delivered == 1
        assert len(seen) == 1
        failure = [r for r in captured_logs() if r["message"] == "change_listener_failed"][0]
        assert failure["exc_type"] == "RuntimeError"
        assert failure["record_id"] == "e9"


class TestCacheWiring:
    def test_connect_cache_invalidates(self, cache):
        feed = InMemoryChangeFeed()
        connect_cache(feed, cache)
        cache.put(ScopeKey.group_expenses("g1"), ())
        cache.put(ScopeKey.group_expenses("g2"), ())

        feed.publish(ChangeEvent(EventKind.EXPENSE_ADDED, group_id="g1", user_id="alice"))

        assert ScopeKey.group_expenses("g1") not in cache
        assert ScopeKey.group_expenses("g2") in cache

    def test_disconnect(self, cache):
        feed = InMemoryChangeFeed()
        disconnect = connect_cache(feed, cache)
        disconnect()
        cache.put(ScopeKey.group_expenses("g1"), ())

        feed.publish(ChangeEvent(EventKind.EXPENSE_ADDED, group_id="g1"))

        assert ScopeKey.group_expenses("g1") in cache

    def test_invalidator_passes_user(self, cache):
        cache.put(ScopeKey.user_settlements("bob"), ())
        cache_invalidator(cache)(ChangeEvent(EventKind.SETTLEMENT_ADDED, user_id="bob"))
        assert ScopeKey.user_settlements("bob") not in cache
