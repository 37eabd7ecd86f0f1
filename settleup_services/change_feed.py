"""
settleup_services.change_feed -- Store change notifications.

The external store pushes a ChangeEvent whenever an expense, settlement,
group or membership changes. Consumers subscribe a callback and get back
an unsubscribe function. ``connect_cache`` wires a feed to a ResultCache
so that every event invalidates the scopes it makes stale.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from settleup_kernel.domain.records import ExpenseRecord, SettlementRecord
from settleup_kernel.logging_config import get_logger
from settleup_services.result_cache import EventKind, ResultCache

logger = get_logger("services.change_feed")


@dataclass(frozen=True)
class ChangeEvent:
    """One mutation reported by the store."""

    kind: EventKind
    group_id: str | None = None
    user_id: str | None = None
    record_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))

    @classmethod
    def for_expense(cls, kind: EventKind | str, expense: ExpenseRecord) -> ChangeEvent:
        return cls(
            kind=EventKind(kind),
            group_id=expense.group_id,
            user_id=expense.payer,
            record_id=expense.expense_id,
        )

    @classmethod
    def for_settlement(
        cls, kind: EventKind | str, settlement: SettlementRecord
    ) -> ChangeEvent:
        return cls(
            kind=EventKind(kind),
            group_id=settlement.group_id,
            user_id=settlement.from_member,
            record_id=settlement.settlement_id,
        )


ChangeListener = Callable[[ChangeEvent], None]


class ChangeFeed(Protocol):
    """Subscription side of the external store."""

    def subscribe(self, callback: ChangeListener) -> Callable[[], None]: ...


class InMemoryChangeFeed:
    """
    Synchronous in-process feed.

    Listeners run in subscription order on the publishing thread. A
    listener that raises is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ChangeListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event``; returns the number of listeners that succeeded."""
        with self._lock:
            listeners = list(self._listeners)
        delivered = 0
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("change_listener_failed", extra={
                    "event_kind": event.kind.value,
                    "record_id": event.record_id,
                })
                continue
            delivered += 1
        return delivered

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


def cache_invalidator(cache: ResultCache) -> ChangeListener:
    """Listener that maps each event onto ``cache.invalidate_by_event``."""

    def on_change(event: ChangeEvent) -> None:
        cache.invalidate_by_event(event.kind, group_id=event.group_id, user_id=event.user_id)

    return on_change


def connect_cache(feed: ChangeFeed, cache: ResultCache) -> Callable[[], None]:
    """Subscribe ``cache`` to ``feed``; returns the unsubscribe function."""
    return feed.subscribe(cache_invalidator(cache))
