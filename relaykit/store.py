"""Transactional key-value storage on top of LMDB.

Trees are named sub-databases inside one environment. Reads and writes go
through :class:`Reader` and :class:`Writer` transactions; ordered traversal
in either direction is provided by :class:`Iter`.
"""

from __future__ import annotations

import contextlib
import enum
import os
import threading
from dataclasses import dataclass
from typing import Iterator, Optional, Union

import lmdb

# Tree (sub-database) flags, same bit values as the LMDB C library.
REVERSEKEY = 0x02
DUPSORT = 0x04
INTEGERKEY = 0x08
DUPFIXED = 0x10
INTEGERDUP = 0x20
REVERSEDUP = 0x40

# Environment flags, same bit values as the LMDB C library.
NOSUBDIR = 0x4000
NOSYNC = 0x10000
RDONLY = 0x20000
NOMETASYNC = 0x40000
WRITEMAP = 0x80000
MAPASYNC = 0x100000
NOTLS = 0x200000
NOLOCK = 0x400000
NORDAHEAD = 0x800000
NOMEMINIT = 0x1000000

_TREE_OPTIONS = {
    REVERSEKEY: "reverse_key",
    DUPSORT: "dupsort",
    INTEGERKEY: "integerkey",
    DUPFIXED: "dupfixed",
    INTEGERDUP: "integerdup",
}

_ENV_OPTIONS = {
    NOSUBDIR: ("subdir", False),
    NOSYNC: ("sync", False),
    RDONLY: ("readonly", True),
    NOMETASYNC: ("metasync", False),
    WRITEMAP: ("writemap", True),
    MAPASYNC: ("map_async", True),
    NOLOCK: ("lock", False),
    NORDAHEAD: ("readahead", False),
    NOMEMINIT: ("meminit", False),
}

Bytes = Union[bytes, bytearray, memoryview, str]


class Error(Exception):
    """Base error of the storage layer."""


class LmdbError(Error):
    """An error reported by the LMDB engine."""


@contextlib.contextmanager
def _translate() -> Iterator[None]:
    try:
        yield
    except lmdb.Error as exc:
        raise LmdbError(str(exc)) from exc


def _as_bytes(value: Bytes) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"expected bytes or str, got {type(value).__name__}")


def _encode_name(name: str) -> bytes:
    if "\0" in name:
        raise Error(f"nul byte found in provided data: {name!r}")
    return name.encode("utf-8")


@dataclass(frozen=True)
class Included:
    """Start bound that includes the key itself."""

    key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_bytes(self.key))


@dataclass(frozen=True)
class Excluded:
    """Start bound that skips the key itself."""

    key: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_bytes(self.key))


Bound = Optional[Union[Included, Excluded]]


@dataclass(frozen=True, eq=False)
class Tree:
    """Handle of an opened sub-database."""

    handle: object
    flags: int = 0

    @property
    def dup(self) -> bool:
        return bool(self.flags & DUPSORT)


class _Op(enum.Enum):
    FIRST = enum.auto()
    LAST = enum.auto()
    NEXT = enum.auto()
    PREV = enum.auto()
    NEXT_NODUP = enum.auto()
    PREV_NODUP = enum.auto()
    GET_CURRENT = enum.auto()


class Iter:
    """Cursor iterator yielding ``(key, value)`` pairs in key order."""

    def __init__(self, txn: "Transaction", tree: Tree, start: Bound = None, rev: bool = False):
        with _translate():
            self._cursor = txn._require()._txn.cursor(db=tree.handle)
        self._dup = tree.dup
        self._positioned = False
        self._done = False
        self._rev = rev
        self._op = _Op.FIRST
        self._next_op = _Op.NEXT
        cursor = self._cursor
        self._moves = {
            _Op.FIRST: cursor.first,
            _Op.LAST: cursor.last,
            _Op.NEXT: cursor.next,
            _Op.PREV: cursor.prev,
            _Op.NEXT_NODUP: cursor.next_nodup,
            _Op.PREV_NODUP: cursor.prev_nodup,
            _Op.GET_CURRENT: lambda: self._positioned,
        }
        self.seek(start, rev)

    def seek(self, start: Bound, rev: bool) -> None:
        """Reposition at ``start`` (``None`` for the very first or last entry)."""
        self._rev = rev
        self._done = False
        with _translate():
            if rev:
                self._seek_back(start)
            else:
                self._seek_forward(start)

    def _seek_back(self, start: Bound) -> None:
        self._next_op = _Op.PREV
        if start is None:
            self._op = _Op.LAST
            return
        self._op = _Op.GET_CURRENT
        self._positioned = self._cursor.set_range(start.key)
        if not self._positioned:
            # bigger than all keys
            self._op = _Op.LAST
            return
        key = self._cursor.key()
        if isinstance(start, Included):
            if key > start.key:
                self._op = _Op.PREV
            elif key == start.key and self._dup:
                self._positioned = self._cursor.last_dup()
        elif key >= start.key:
            self._op = _Op.PREV_NODUP if self._dup else _Op.PREV

    def _seek_forward(self, start: Bound) -> None:
        self._next_op = _Op.NEXT
        if start is None:
            self._op = _Op.FIRST
            return
        self._op = _Op.GET_CURRENT
        self._positioned = self._cursor.set_range(start.key)
        if (
            isinstance(start, Excluded)
            and self._positioned
            and self._cursor.key() == start.key
        ):
            self._op = _Op.NEXT_NODUP if self._dup else _Op.NEXT

    def __iter__(self) -> "Iter":
        return self

    def __next__(self) -> tuple[bytes, bytes]:
        if self._done:
            raise StopIteration
        op, self._op = self._op, self._next_op
        with _translate():
            found = bool(self._moves[op]())
            self._positioned = found
            if found:
                return self._cursor.key(), self._cursor.value()
        self._done = True
        raise StopIteration


class Transaction:
    """A transaction; closed by :meth:`commit` or :meth:`abort`."""

    _write = False

    def __init__(self, env: lmdb.Environment):
        with _translate():
            self._txn = env.begin(write=self._write)
        self._open = True

    def _require(self) -> "Transaction":
        if not self._open:
            raise Error("transaction is closed")
        return self

    def get(self, tree: Tree, key: Bytes) -> Optional[bytes]:
        """Return the value stored under ``key``, or ``None``."""
        self._require()
        with _translate():
            return self._txn.get(_as_bytes(key), db=tree.handle)

    def iter_from(self, tree: Tree, start: Bound, rev: bool) -> Iter:
        """Iterate from ``start`` forwards, or backwards when ``rev``."""
        return Iter(self, tree, start, rev)

    def iter(self, tree: Tree) -> Iter:
        """Iterate over the whole tree in ascending key order."""
        return self.iter_from(tree, None, False)

    def commit(self) -> None:
        self._require()
        self._open = False
        with _translate():
            self._txn.commit()

    def abort(self) -> None:
        if self._open:
            self._open = False
            self._txn.abort()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.abort()


class Reader(Transaction):
    """Read-only transaction."""

    _write = False


class Writer(Transaction):
    """Read-write transaction; changes persist only after :meth:`commit`."""

    _write = True

    def put(self, tree: Tree, key: Bytes, value: Bytes) -> None:
        self._require()
        with _translate():
            self._txn.put(_as_bytes(key), _as_bytes(value), db=tree.handle)

    def delete(self, tree: Tree, key: Bytes, value: Optional[Bytes] = None) -> None:
        """Delete ``key`` (or one duplicate ``value`` of it); missing keys are ignored."""
        self._require()
        with _translate():
            if value is None:
                self._txn.delete(_as_bytes(key), db=tree.handle)
            else:
                self._txn.delete(_as_bytes(key), _as_bytes(value), db=tree.handle)


def _tree_options(flags: int) -> dict:
    unknown = flags & ~sum(_TREE_OPTIONS)
    if unknown:
        raise Error(f"unsupported tree flags: {unknown:#x}")
    return {name: bool(flags & bit) for bit, name in _TREE_OPTIONS.items()}


def _env_options(flags: int) -> dict:
    unknown = flags & ~(sum(_ENV_OPTIONS) | NOTLS)
    if unknown:
        raise Error(f"unsupported environment flags: {unknown:#x}")
    return {
        name: value if flags & bit else not value
        for bit, (name, value) in _ENV_OPTIONS.items()
    }


class Db:
    """An LMDB environment holding any number of trees."""

    def __init__(self, env: lmdb.Environment):
        self._env = env
        self._trees: dict[Optional[str], object] = {}
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path) -> "Db":
        return cls.open_with(path, 20, 100, 1_000_000_000_000, 0)

    @classmethod
    def open_with(cls, path, maxdbs=None, maxreaders=None, mapsize=None, flags=0) -> "Db":
        path = os.fspath(path)
        if "\0" in str(path):
            raise Error(f"nul byte found in provided data: {path!r}")
        options = _env_options(flags)
        directory = path if options["subdir"] else os.path.dirname(path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise Error(f"Failed to create LMDB directory: `{exc!r}`.") from exc
        with _translate():
            env = lmdb.open(
                path,
                max_dbs=0 if maxdbs is None else maxdbs,
                max_readers=126 if maxreaders is None else maxreaders,
                map_size=10_485_760 if mapsize is None else mapsize,
                mode=0o644,
                **options,
            )
        return cls(env)

    def open_tree(self, name: Optional[str] = None, flags: int = 0) -> Tree:
        """Open, creating if needed, the tree ``name`` (``None`` is the main tree)."""
        with self._lock:
            handle = self._trees.get(name)
            if handle is None:
                options = _tree_options(flags)
                key = None if name is None else _encode_name(name)
                with _translate():
                    handle = self._env.open_db(key, create=True, **options)
                self._trees[name] = handle
        return Tree(handle, flags)

    def drop_tree(self, name: Optional[str]) -> bool:
        """Delete an opened tree; return whether it was open."""
        with self._lock:
            handle = self._trees.pop(name, None)
        if handle is None:
            return False
        with Writer(self._env) as writer, _translate():
            writer._txn.drop(handle, delete=True)
            writer.commit()
        return True

    def writer(self) -> Writer:
        return Writer(self._env)

    def reader(self) -> Reader:
        return Reader(self._env)

    def flush(self) -> None:
        with _translate():
            self._env.sync(True)

    def close(self) -> None:
        with self._lock:
            self._trees.clear()
        self._env.close()

    def __enter__(self) -> "Db":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()