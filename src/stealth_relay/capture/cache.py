"""Bounded, insertion-ordered key/record store with age-based expiry."""

from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, Iterator, Optional, Protocol, TypeVar

from stealth_relay.capture.retention import is_expired


class TimedRecord(Protocol):
    @property
    def recorded_at_ms(self) -> int: ...


R = TypeVar("R", bound=TimedRecord)

# Called with (record, reason) where reason is "evicted" or "expired".
DiscardHook = Callable[[R, str], None]


class TemporalCache(Generic[R]):
    """Per-account cache keyed by protocol message id.

    Insertion order is tracked independently of age: when ``max_entries`` is
    set, ``put`` on a full cache evicts the single oldest inserted entry
    first. ``sweep`` removes everything older than its policy age. Records
    dropped by eviction or sweep are passed to ``on_discard``; ``delete``
    never calls it.
    """

    def __init__(
        self,
        name: str,
        max_entries: Optional[int] = None,
        on_discard: Optional[DiscardHook] = None,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.name = name
        self._max_entries = max_entries
        self._on_discard = on_discard
        self._entries: OrderedDict[str, R] = OrderedDict()

    @property
    def max_entries(self) -> Optional[int]:
        return self._max_entries

    def put(self, key: str, record: R) -> Optional[R]:
        """Insert or overwrite. Returns the evicted record, if any."""
        if key in self._entries:
            self._entries[key] = record
            return None

        evicted: Optional[R] = None
        if self._max_entries is not None and len(self._entries) >= self._max_entries:
            _, evicted = self._entries.popitem(last=False)
            if self._on_discard is not None:
                self._on_discard(evicted, "evicted")

        self._entries[key] = record
        return evicted

    def get(self, key: str) -> Optional[R]:
        return self._entries.get(key)

    def delete(self, key: str) -> Optional[R]:
        return self._entries.pop(key, None)

    def sweep(self, now_ms: int, age_fn: Callable[[R], int]) -> int:
        expired = [
            key
            for key, record in self._entries.items()
            if is_expired(record.recorded_at_ms, age_fn(record), now_ms)
        ]
        for key in expired:
            record = self._entries.pop(key)
            if self._on_discard is not None:
                self._on_discard(record, "expired")
        return len(expired)

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def values(self) -> list[R]:
        return list(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
