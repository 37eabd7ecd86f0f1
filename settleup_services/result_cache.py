"""
settleup_services.result_cache -- TTL and event-invalidated memoization.

Responsibility:
    Hold computed results (record lists, balances, settlement plans) under
    semantic scope keys, expire them after a fixed TTL and drop them when
    the external store reports a mutation that makes them stale.

Architecture position:
    Services -- in-memory state owned by one application instance and
    injected into its consumers. There is no module-level cache.

Invariants enforced:
    - TTL is measured from insertion with the injected Clock; an entry
      whose age is strictly greater than the TTL is absent.
    - ``generation(key)`` hands out the current value of one monotonic
      counter and marks the key in flight. Invalidating an in-flight key
      stamps it with a newer counter value, and ``put`` with a generation
      older than the stamp is refused, so the result of a superseded
      computation is never cached. Stamps and in-flight marks are dropped
      once the last computation for the key has put or released, so
      bookkeeping is bounded by live entries plus running computations.
    - An optimistic insert only touches a list that is already cached. A
      scope with nothing cached is left empty so readers fetch the durable
      records instead of a partial list.
    - Event invalidation follows the table below. A calculation scope
      bound to another group survives an event for group G; calculation
      scopes for G and ungrouped ones are dropped; an event without a
      group drops every calculation scope.

        expense added/updated/deleted -> all_expenses, group_expenses(G),
                                         user_groups(payer), calculations
        settlement added/updated      -> all_expenses, group_settlements(G),
                                         user_settlements(from), calculations
        group updated/deleted         -> user_groups(U), group_expenses(G),
                                         group_settlements(G)
        member added/removed          -> group_expenses(G), group_settlements(G)

Failure modes:
    - None. Misses and expiry return None; callers recompute.
    - ``insert_optimistic`` raises TypeError when the cached value is not
      a list or tuple (a caller bug, not a cache failure).

Usage:
    cache = ResultCache(clock=SystemClock(), ttl_seconds=300)
    key = ScopeKey.calculation("group_summary", group_id="g1")
    generation = cache.generation(key)
    value = compute()
    cache.put(key, value, generation=generation)   # refused if stale
    cache.invalidate_by_event(EventKind.EXPENSE_ADDED, group_id="g1")
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from settleup_kernel.domain.clock import Clock, SystemClock
from settleup_kernel.logging_config import get_logger

logger = get_logger("services.result_cache")

DEFAULT_TTL_SECONDS = 300


class ScopeKind(str, Enum):
    """Family of a scope key; event invalidation works per family."""

    ALL_EXPENSES = "all_expenses"
    GROUP_EXPENSES = "group_expenses"
    GROUP_SETTLEMENTS = "group_settlements"
    USER_GROUPS = "user_groups"
    USER_SETTLEMENTS = "user_settlements"
    CALCULATION = "calculation"


class EventKind(str, Enum):
    """Mutation reported by the external store."""

    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    SETTLEMENT_ADDED = "settlement_added"
    SETTLEMENT_UPDATED = "settlement_updated"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"


_EXPENSE_EVENTS = frozenset(
    {EventKind.EXPENSE_ADDED, EventKind.EXPENSE_UPDATED, EventKind.EXPENSE_DELETED}
)
_SETTLEMENT_EVENTS = frozenset({EventKind.SETTLEMENT_ADDED, EventKind.SETTLEMENT_UPDATED})
_GROUP_EVENTS = frozenset({EventKind.GROUP_UPDATED, EventKind.GROUP_DELETED})
_MEMBER_EVENTS = frozenset({EventKind.MEMBER_ADDED, EventKind.MEMBER_REMOVED})


@dataclass(frozen=True)
class ScopeKey:
    """
    Logical identifier of a cached result.

    Build keys with the classmethods; two keys are equal when they name
    the same scope.
    """

    kind: ScopeKind
    name: str | None = None
    group_id: str | None = None
    user_id: str | None = None

    @classmethod
    def all_expenses(cls) -> ScopeKey:
        return cls(ScopeKind.ALL_EXPENSES)

    @classmethod
    def group_expenses(cls, group_id: str) -> ScopeKey:
        return cls(ScopeKind.GROUP_EXPENSES, group_id=group_id)

    @classmethod
    def group_settlements(cls, group_id: str) -> ScopeKey:
        return cls(ScopeKind.GROUP_SETTLEMENTS, group_id=group_id)

    @classmethod
    def user_groups(cls, user_id: str) -> ScopeKey:
        return cls(ScopeKind.USER_GROUPS, user_id=user_id)

    @classmethod
    def user_settlements(cls, user_id: str) -> ScopeKey:
        return cls(ScopeKind.USER_SETTLEMENTS, user_id=user_id)

    @classmethod
    def calculation(
        cls, name: str, group_id: str | None = None, user_id: str | None = None
    ) -> ScopeKey:
        """A computed aggregate, bound to a group, a user, both or neither."""
        return cls(ScopeKind.CALCULATION, name=name, group_id=group_id, user_id=user_id)

    @property
    def is_calculation(self) -> bool:
        return self.kind is ScopeKind.CALCULATION

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.name:
            parts.append(self.name)
        if self.group_id:
            parts.append(f"group={self.group_id}")
        if self.user_id:
            parts.append(f"user={self.user_id}")
        return ":".join(parts)


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the moment it was stored."""

    scope_key: ScopeKey
    value: Any
    created_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


def _record_id(record: Any) -> Any:
    if isinstance(record, Mapping):
        return record.get("id")
    for attr in ("expense_id", "settlement_id", "id"):
        value = getattr(record, attr, None)
        if value is not None:
            return value
    return None


class OptimisticInsert:
    """Handle for a record shown before its durable write completed."""

    def __init__(self, cache: ResultCache, key: ScopeKey, record_id: Any, applied: bool):
        self.cache = cache
        self.key = key
        self.record_id = record_id
        self.applied = applied
        self.rolled_back = False

    def rollback(self) -> None:
        """Remove the record from the cached list again."""
        if self.rolled_back:
            return
        self.rolled_back = True
        if self.applied:
            self.cache._rollback(self)


class ResultCache:
    """
    In-memory keyed store with TTL expiry and event invalidation.

    Contract:
        Constructed once per application and passed to its consumers.
        All methods are safe to call from worker threads.
    Guarantees:
        - ``get`` never returns an expired or invalidated value.
        - A refused ``put`` leaves the cache unchanged.
    Non-goals:
        - Persists nothing and never evicts by size.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: int | None = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._sweep_interval = (
            timedelta(seconds=sweep_interval_seconds) if sweep_interval_seconds else None
        )
        self._last_sweep = self._clock.now()
        self._entries: dict[ScopeKey, CacheEntry] = {}
        self._tick = 0
        self._in_flight: dict[ScopeKey, int] = {}
        self._stamps: dict[ScopeKey, int] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._invalidations = 0

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    # -- read / write -------------------------------------------------------

    def get(self, key: ScopeKey, default: Any = None) -> Any:
        """Cached value for ``key``, or ``default`` when absent or expired."""
        with self._lock:
            self._maybe_sweep()
            entry = self._live_entry(key)
            if entry is None:
                self._misses += 1
                logger.debug("cache_miss", extra={"scope_key": str(key)})
                return default
            self._hits += 1
            logger.debug("cache_hit", extra={"scope_key": str(key)})
            return entry.value

    def put(self, key: ScopeKey, value: Any, generation: int | None = None) -> bool:
        """
        Store ``value`` under ``key``.

        Returns False, storing nothing, when ``generation`` is given and the
        key has been invalidated since that generation was read.
        """
        with self._lock:
            if generation is not None:
                stamp = self._stamps.get(key, 0)
                self._finish(key)
                if stamp > generation:
                    logger.info("cache_put_stale", extra={
                        "scope_key": str(key),
                        "generation": generation,
                        "invalidated_at": stamp,
                    })
                    return False
            self._entries[key] = CacheEntry(
                scope_key=key, value=value, created_at=self._clock.now()
            )
            logger.debug("cache_put", extra={"scope_key": str(key)})
            return True

    def generation(self, key: ScopeKey) -> int:
        """
        Snapshot to pass to ``put`` once the value for ``key`` is computed.

        Every call marks one computation in flight for ``key``. It ends with
        ``put(..., generation=...)``, or with ``release(key)`` when the
        computation fails.
        """
        with self._lock:
            self._in_flight[key] = self._in_flight.get(key, 0) + 1
            return self._tick

    def release(self, key: ScopeKey) -> None:
        """End a computation started with ``generation`` without storing anything."""
        with self._lock:
            self._finish(key)

    def _finish(self, key: ScopeKey) -> None:
        remaining = self._in_flight.get(key, 0) - 1
        if remaining > 0:
            self._in_flight[key] = remaining
        else:
            self._in_flight.pop(key, None)
            self._stamps.pop(key, None)

    def _live_entry(self, key: ScopeKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock.now(), self._ttl):
            del self._entries[key]
            self._expirations += 1
            logger.debug("cache_expired", extra={"scope_key": str(key)})
            return None
        return entry

    # -- invalidation ------------------------------------------------------

    def _drop(self, key: ScopeKey) -> bool:
        if key in self._in_flight:
            self._tick += 1
            self._stamps[key] = self._tick
        existed = self._entries.pop(key, None) is not None
        if existed:
            self._invalidations += 1
        return existed

    def invalidate(self, key: ScopeKey) -> bool:
        """Drop ``key``; True if a value was cached."""
        with self._lock:
            existed = self._drop(key)
        logger.debug("cache_invalidated", extra={"scope_key": str(key), "existed": existed})
        return existed

    def invalidate_by_event(
        self,
        kind: EventKind | str,
        group_id: str | None = None,
        user_id: str | None = None,
    ) -> list[ScopeKey]:
        """
        Drop every scope the mutation makes stale.

        ``user_id`` is the payer for expense events and the paying member
        for settlement events. Returns the keys whose cached values were
        dropped.
        """
        kind = EventKind(kind)
        with self._lock:
            targets = self._event_targets(kind, group_id, user_id)
            dropped = [key for key in targets if self._drop(key)]
        logger.info("cache_event_invalidation", extra={
            "event_kind": kind.value,
            "group_id": group_id,
            "user_id": user_id,
            "dropped_count": len(dropped),
        })
        return dropped

    def invalidate_calculations(self, group_id: str | None = None) -> list[ScopeKey]:
        """
        Drop the calculation scopes an event for ``group_id`` would drop.

        Record-list scopes are left alone. Used around an optimistic write,
        where the cached lists already show the new record.
        """
        with self._lock:
            dropped = [key for key in self._calculation_keys(group_id) if self._drop(key)]
        logger.debug("cache_calculations_invalidated", extra={
            "group_id": group_id,
            "dropped_count": len(dropped),
        })
        return dropped

    def _event_targets(
        self, kind: EventKind, group_id: str | None, user_id: str | None
    ) -> list[ScopeKey]:
        targets: list[ScopeKey] = []
        if kind in _EXPENSE_EVENTS:
            targets.append(ScopeKey.all_expenses())
            if group_id is not None:
                targets.append(ScopeKey.group_expenses(group_id))
            if user_id is not None:
                targets.append(ScopeKey.user_groups(user_id))
            targets.extend(self._calculation_keys(group_id))
        elif kind in _SETTLEMENT_EVENTS:
            targets.append(ScopeKey.all_expenses())
            if group_id is not None:
                targets.append(ScopeKey.group_settlements(group_id))
            if user_id is not None:
                targets.append(ScopeKey.user_settlements(user_id))
            targets.extend(self._calculation_keys(group_id))
        elif kind in _GROUP_EVENTS:
            if user_id is not None:
                targets.append(ScopeKey.user_groups(user_id))
            if group_id is not None:
                targets.append(ScopeKey.group_expenses(group_id))
                targets.append(ScopeKey.group_settlements(group_id))
        elif kind in _MEMBER_EVENTS:
            if group_id is not None:
                targets.append(ScopeKey.group_expenses(group_id))
                targets.append(ScopeKey.group_settlements(group_id))
        return targets

    def _calculation_keys(self, group_id: str | None) -> list[ScopeKey]:
        known = set(self._entries) | set(self._in_flight)
        return sorted(
            (
                key
                for key in known
                if key.is_calculation
                and (group_id is None or key.group_id is None or key.group_id == group_id)
            ),
            key=str,
        )

    def invalidate_all(self) -> int:
        """Drop everything; returns the number of cached values dropped."""
        with self._lock:
            keys = set(self._entries) | set(self._in_flight)
            dropped = sum(1 for key in keys if self._drop(key))
        logger.info("cache_cleared", extra={"dropped_count": dropped})
        return dropped

    # -- expiry ------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Purge every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock.now()
            self._last_sweep = now
            expired = [
                key for key, entry in self._entries.items() if entry.is_expired(now, self._ttl)
            ]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            logger.debug("cache_swept", extra={"expired_count": len(expired)})
        return len(expired)

    def _maybe_sweep(self) -> None:
        if self._sweep_interval is None:
            return
        if self._clock.now() - self._last_sweep >= self._sweep_interval:
            self.sweep_expired()

    # -- optimistic updates --------------------------------------------------

    def insert_optimistic(self, key: ScopeKey, record: Any, record_id: Any) -> OptimisticInsert:
        """
        Prepend a not-yet-persisted record to the list cached under ``key``.

        When no list is cached the cache is left as it is and the returned
        handle is inert: readers keep fetching the durable records rather
        than a list holding only the new one. ``rollback()`` on the handle
        removes the record again.
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is not None:
                current = entry.value
                if not isinstance(current, (list, tuple)):
                    raise TypeError(
                        f"cannot insert into {type(current).__name__} cached at {key}"
                    )
                updated = (record, *current)
                self._entries[key] = CacheEntry(
                    scope_key=key,
                    value=list(updated) if isinstance(current, list) else updated,
                    created_at=entry.created_at,
                )
        applied = entry is not None
        logger.debug("cache_optimistic_insert", extra={
            "scope_key": str(key),
            "record_id": str(record_id),
            "applied": applied,
        })
        return OptimisticInsert(self, key, record_id, applied)

    def _rollback(self, handle: OptimisticInsert) -> None:
        with self._lock:
            entry = self._entries.get(handle.key)
            if entry is not None and isinstance(entry.value, (list, tuple)):
                remaining = [
                    item for item in entry.value if _record_id(item) != handle.record_id
                ]
                value = remaining if isinstance(entry.value, list) else tuple(remaining)
                self._entries[handle.key] = CacheEntry(
                    scope_key=handle.key, value=value, created_at=entry.created_at
                )
        logger.info("cache_optimistic_rollback", extra={
            "scope_key": str(handle.key),
            "record_id": str(handle.record_id),
        })

    @contextmanager
    def optimistic(self, key: ScopeKey, record: Any, record_id: Any) -> Iterator[OptimisticInsert]:
        """Insert optimistically; roll back if the block (the durable write) raises."""
        handle = self.insert_optimistic(key, record, record_id)
        try:
            yield handle
        except Exception:
            handle.rollback()
            raise

    # -- introspection -------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Sizes per scope kind plus hit/miss counters."""
        with self._lock:
            by_kind = {kind.value: 0 for kind in ScopeKind}
            for key in self._entries:
                by_kind[key.kind.value] += 1
            return {
                "entries": len(self._entries),
                "by_kind": by_kind,
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "invalidations": self._invalidations,
                "in_flight": len(self._in_flight),
                "superseded_in_flight": len(self._stamps),
                "ttl_seconds": self.ttl_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return isinstance(key, ScopeKey) and self._live_entry(key) is not None
