"""
In-memory RecordSource.

Holds expense and settlement records (typed, or raw store documents) and
answers the group/user queries of ``RecordSource``. When a feed is given,
every write publishes the matching ChangeEvent, the way the external store
notifies its subscribers. Used by the CLI and by tests.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from settleup_kernel.domain.records import ExpenseRecord, SettlementRecord
from settleup_services.change_feed import ChangeEvent, InMemoryChangeFeed
from settleup_services.result_cache import EventKind


def _field(record: Any, attr: str, *keys: str) -> Any:
    if isinstance(record, Mapping):
        for key in keys:
            if record.get(key) is not None:
                return record[key]
        return None
    return getattr(record, attr, None)


def _group_of(record: Any) -> str | None:
    return _field(record, "group_id", "groupId", "group_id")


def _expense_involves(record: Any, user_id: str) -> bool:
    if isinstance(record, ExpenseRecord):
        return record.involves(user_id)
    split = _field(record, "split", "split")
    return _field(record, "payer", "payer") == user_id or (
        isinstance(split, Mapping) and user_id in split
    )


def _settlement_involves(record: Any, user_id: str) -> bool:
    if isinstance(record, SettlementRecord):
        return record.involves(user_id)
    return user_id in (
        _field(record, "from_member", "fromUser", "from_member"),
        _field(record, "to_member", "toUser", "to_member"),
    )


class InMemoryRecordSource:
    """A RecordSource over lists held in memory."""

    def __init__(
        self,
        expenses: Iterable[Any] = (),
        settlements: Iterable[Any] = (),
        feed: InMemoryChangeFeed | None = None,
    ):
        self._expenses = list(expenses)
        self._settlements = list(settlements)
        self._feed = feed
        self._lock = threading.Lock()

    # -- RecordSource --------------------------------------------------------

    def expenses_for_group(self, group_id: str) -> list[Any]:
        with self._lock:
            return [e for e in self._expenses if _group_of(e) == group_id]

    def settlements_for_group(self, group_id: str) -> list[Any]:
        with self._lock:
            return [s for s in self._settlements if _group_of(s) == group_id]

    def expenses_for_user(self, user_id: str) -> list[Any]:
        with self._lock:
            return [e for e in self._expenses if _expense_involves(e, user_id)]

    def settlements_for_user(self, user_id: str) -> list[Any]:
        with self._lock:
            return [s for s in self._settlements if _settlement_involves(s, user_id)]

    def all_expenses(self) -> list[Any]:
        with self._lock:
            return list(self._expenses)

    def all_settlements(self) -> list[Any]:
        with self._lock:
            return list(self._settlements)

    def group_ids(self) -> list[str]:
        with self._lock:
            found = {_group_of(r) for r in (*self._expenses, *self._settlements)}
        return sorted(g for g in found if g is not None)

    # -- writes ----------------------------------------------------------------

    def add_expense(self, expense: ExpenseRecord) -> None:
        with self._lock:
            self._expenses.append(expense)
        self._publish(ChangeEvent.for_expense(EventKind.EXPENSE_ADDED, expense))

    def update_expense(self, expense: ExpenseRecord) -> None:
        with self._lock:
            previous = [e for e in self._expenses if _expense_id(e) == expense.expense_id]
            self._expenses = [
                expense if _expense_id(e) == expense.expense_id else e for e in self._expenses
            ]
        event = ChangeEvent.for_expense(EventKind.EXPENSE_UPDATED, expense)
        self._publish(event, *_earlier_scopes(event, previous, "payer", "payer"))

    def delete_expense(self, expense: ExpenseRecord) -> None:
        with self._lock:
            removed = [e for e in self._expenses if _expense_id(e) == expense.expense_id]
            self._expenses = [
                e for e in self._expenses if _expense_id(e) != expense.expense_id
            ]
        event = ChangeEvent.for_expense(EventKind.EXPENSE_DELETED, expense)
        self._publish(event, *_earlier_scopes(event, removed, "payer", "payer"))

    def add_settlement(self, settlement: SettlementRecord) -> None:
        with self._lock:
            self._settlements.append(settlement)
        self._publish(ChangeEvent.for_settlement(EventKind.SETTLEMENT_ADDED, settlement))

    def update_settlement(self, settlement: SettlementRecord) -> None:
        with self._lock:
            previous = [
                s for s in self._settlements if _settlement_id(s) == settlement.settlement_id
            ]
            self._settlements = [
                settlement if _settlement_id(s) == settlement.settlement_id else s
                for s in self._settlements
            ]
        event = ChangeEvent.for_settlement(EventKind.SETTLEMENT_UPDATED, settlement)
        self._publish(event, *_earlier_scopes(event, previous, "from_member", "fromUser"))

    def _publish(self, *events: ChangeEvent) -> None:
        if self._feed is None:
            return
        for event in events:
            self._feed.publish(event)


def _expense_id(record: Any) -> Any:
    return _field(record, "expense_id", "id", "expense_id")


def _settlement_id(record: Any) -> Any:
    return _field(record, "settlement_id", "id", "settlement_id")


def _earlier_scopes(
    event: ChangeEvent, stored: Iterable[Any], user_attr: str, user_key: str
) -> list[ChangeEvent]:
    """Events for the group and user a stored record had before this write."""
    extra: list[ChangeEvent] = []
    seen = {(event.group_id, event.user_id)}
    for record in stored:
        scope = (_group_of(record), _field(record, user_attr, user_key, user_attr))
        if scope in seen:
            continue
        seen.add(scope)
        extra.append(
            ChangeEvent(
                kind=event.kind,
                group_id=scope[0],
                user_id=scope[1],
                record_id=event.record_id,
            )
        )
    return extra
