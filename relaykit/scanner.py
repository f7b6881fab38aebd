"""Time-ordered scanning over index trees.

A :class:`Scanner` walks one cursor and turns matching entries into
time-based keys, honouring ``since``/``until`` limits by re-seeking the
cursor. A :class:`Group` merges several scanners in time order, either as
a union (optionally de-duplicating equal keys) or as an intersection.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

from .store import Excluded, Included, Iter

U64_MAX = 2**64 - 1


class TimeKey(abc.ABC):
    """A key that carries a timestamp and can be ordered by it."""

    @abc.abstractmethod
    def time(self) -> int:
        """Return the key's timestamp."""

    def compare(self, other: "TimeKey") -> int:
        """Return -1, 0 or 1 comparing this key with ``other``."""
        a, b = self.time(), other.time()
        return (a > b) - (a < b)

    @abc.abstractmethod
    def change_time(self, key: bytes, time: int) -> bytes:
        """Return the raw ``key`` rewritten to point at ``time``."""


class SortedKeyList:
    """``(item, key)`` pairs kept so that :meth:`pop` yields the next key in scan order.

    Forward lists pop the smallest key first; reversed lists pop the biggest.
    """

    def __init__(self, reverse: bool = False):
        self.reverse = reverse
        self._entries: list[tuple[Any, TimeKey]] = []

    def _cmp(self, k1: TimeKey, k2: TimeKey) -> int:
        return k1.compare(k2) if self.reverse else k2.compare(k1)

    def add(self, item: Any, key: TimeKey) -> None:
        lo, hi = 0, len(self._entries)
        while lo < hi:
            mid = (lo + hi) // 2
            if self._cmp(self._entries[mid][1], key) < 0:
                lo = mid + 1
            else:
                hi = mid
        self._entries.insert(lo, (item, key))

    def pop(self) -> tuple[Any, TimeKey]:
        """Remove and return the next pair; raise IndexError when empty."""
        return self._entries.pop()

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> tuple[Any, TimeKey]:
        return self._entries[index]

    def __iter__(self) -> Iterator[tuple[Any, TimeKey]]:
        return iter(self._entries)


class MatchResult(enum.Enum):
    """Non-key outcomes of a scanner matcher."""

    CONTINUE = enum.auto()
    STOP = enum.auto()


@dataclass(frozen=True)
class Found:
    """Matcher outcome carrying the key that was found."""

    key: TimeKey


Matcher = Callable[["Scanner", bytes, bytes], Union[MatchResult, Found]]
Watcher = Callable[[int], None]


class Scanner:
    """Iterator of time keys produced from a cursor by a matcher.

    The matcher is called as ``matcher(scanner, key, value)`` and returns
    :class:`Found`, ``MatchResult.CONTINUE`` or ``MatchResult.STOP``.
    """

    def __init__(
        self,
        inner: Iter,
        key: bytes,
        prefix: bytes,
        reverse: bool,
        since: Optional[int],
        until: Optional[int],
        matcher: Matcher,
    ):
        self.inner = inner
        self.key = key
        self.prefix = prefix
        self.reverse = reverse
        self.since = since
        self.until = until
        self.matcher = matcher
        self.times = 0
        self.cur_times = 0

    def set_watcher(self, watcher: Watcher) -> None:
        """Scanners are watched by their group; nothing to do here."""

    def __iter__(self) -> "Scanner":
        return self

    def __next__(self) -> TimeKey:
        self.cur_times = 0
        while True:
            self.times += 1
            self.cur_times += 1
            item_key, value = next(self.inner)
            result = self.matcher(self, item_key, value)
            if result is MatchResult.CONTINUE:
                continue
            if result is MatchResult.STOP:
                raise StopIteration
            key = result.key
            t = key.time()
            if self.reverse:
                if self.until is not None and t > self.until:
                    self.inner.seek(Included(key.change_time(item_key, self.until)), True)
                    continue
                if self.since is not None and t < self.since:
                    self.inner.seek(Excluded(key.change_time(item_key, 0)), True)
                    continue
            else:
                if self.since is not None and t < self.since:
                    self.inner.seek(Included(key.change_time(item_key, self.since)), False)
                    continue
                if self.until is not None and t > self.until:
                    self.inner.seek(Excluded(key.change_time(item_key, U64_MAX)), False)
                    continue
            return key


class Group:
    """Merge of scanners (or nested groups) in time order.

    With ``and_`` only keys present in every member are produced; otherwise
    the union is produced, equal keys collapsed into one when ``dup``.
    A watcher is called with the running scan count and may raise to stop.
    """

    def __init__(self, reverse: bool = False, and_: bool = False, dup: bool = False):
        self._onlyone: Optional[Any] = None
        self._items: list[Any] = []
        self._founds = SortedKeyList(reverse)
        self.scan_times = 0
        self.cur_times = 0
        self._and = and_
        self._done = False
        self._dup = dup
        self._watcher: Optional[Watcher] = None

    def _watch(self, add_count: int) -> None:
        self.scan_times += add_count
        self.cur_times += add_count
        if self._watcher is not None:
            self._watcher(self.scan_times)

    def set_watcher(self, watcher: Watcher) -> None:
        self._watcher = watcher
        if self._onlyone is not None:
            self._onlyone.set_watcher(watcher)
        for item in self._items:
            item.set_watcher(watcher)

    def add(self, scanner: Any) -> None:
        if self._done:
            return
        if not self._items and self._onlyone is None:
            self._onlyone = scanner
            return
        if self._onlyone is not None:
            first, self._onlyone = self._onlyone, None
            self._add_to_list(first)
        self._add_to_list(scanner)

    def _add_to_list(self, scanner: Any) -> None:
        if self._done:
            return
        index = len(self._items)
        item = next(scanner, None)
        self.scan_times += scanner.cur_times
        self.cur_times += scanner.cur_times
        if item is not None:
            self._founds.add(index, item)
        elif self._and:
            self._done = True
            self._founds.clear()
            return
        self._items.append(scanner)

    def _advance(self, index: int) -> Optional[TimeKey]:
        scanner = self._items[index]
        item = next(scanner, None)
        self._watch(scanner.cur_times)
        return item

    def _next_and(self) -> Optional[TimeKey]:
        while True:
            index, key = self._founds.pop()
            mismatch = any(other.compare(key) != 0 for _, other in reversed(self._founds))
            item = self._advance(index)
            if item is None:
                # one scanner ran dry: the intersection is complete
                self._founds.clear()
                return None if mismatch else key
            self._founds.add(index, item)
            if not mismatch:
                return key

    def _next_or(self) -> TimeKey:
        if self._dup:
            curs = [self._founds.pop()]
            while self._founds and self._founds[-1][1].compare(curs[0][1]) == 0:
                curs.append(self._founds.pop())
            index, key = curs.pop()
            for other_index, _ in curs:
                item = self._advance(other_index)
                if item is not None:
                    self._founds.add(other_index, item)
        else:
            index, key = self._founds.pop()
        item = self._advance(index)
        if item is not None:
            self._founds.add(index, item)
        return key

    def __iter__(self) -> "Group":
        return self

    def __next__(self) -> TimeKey:
        self.cur_times = 0
        if self._onlyone is not None:
            item = next(self._onlyone, None)
            self._watch(self._onlyone.cur_times)
            if item is None:
                raise StopIteration
            return item
        if not self._founds or self._done:
            raise StopIteration
        key = self._next_and() if self._and else self._next_or()
        if key is None:
            raise StopIteration
        return key