# relaykit

Building blocks for an event relay:

- `relaykit.store` is a small transactional layer over LMDB. It has named
  trees, sorted duplicate values, and cursors that start from an included or
  excluded bound and run forwards or backwards.
- `relaykit.scanner` scans indexes in time order. A `Scanner` walks one
  cursor and narrows it by `since`/`until`. A `Group` merges several
  scanners, either as a union or as an intersection. A watcher callback can
  stop long queries.
- `relaykit.auth` holds IP and public-key allow/deny lists and the NIP-42
  challenge state.
- `relaykit.rate_limiter` applies per-IP event quotas using GCRA, with kind
  ranges and IP whitelists.
- `relaykit.bench` has helpers that generate random test data and format
  throughput.

## Install

```
pip install .
```

## Store

```python
from relaykit.store import Db, Included

db = Db.open("/tmp/relaykit-data")
tree = db.open_tree("events", 0)

writer = db.writer()
writer.put(tree, b"k1", b"v1")
writer.put(tree, b"k2", b"v2")
writer.commit()

reader = db.reader()
assert reader.get(tree, b"k1") == b"v1"
for key, value in reader.iter_from(tree, Included(b"k2"), True):
    print(key, value)        # k2, then k1
reader.abort()
db.close()
```

- `Db.open(path)` opens the store with 20 trees, 100 readers and a
  1 TB map. `Db.open_with(path, maxdbs, maxreaders, mapsize, flags)` lets you
  choose these values.
- Tree flags are module constants such as `DUPSORT`, `DUPFIXED`,
  `INTEGERKEY` and `INTEGERDUP`. A flag that is not supported raises
  `relaykit.store.Error`.
- `Db.drop_tree(name)` deletes an opened tree and returns whether it was
  open.
- Keys and values may be given as `bytes` or `str`. A `str` is encoded as
  UTF-8.
- Start bounds are `Included(key)`, `Excluded(key)` or `None` (the first
  entry, or the last entry in reverse). `Iter.seek(start, rev)` moves an
  existing iterator.
- `Writer.delete(tree, key, value=None)` removes a whole key, or only one
  duplicate value when `value` is given. Deleting a key that is missing is
  not an error.
- Transactions work as context managers. Leaving the `with` block without
  calling `commit()` aborts the transaction.
- Errors from the engine are raised as `relaykit.store.LmdbError`, which is
  a subclass of `relaykit.store.Error`.

## Scanning

Subclass `TimeKey`. Implement `time()` and
`change_time(raw_key, time) -> bytes`. You can also override `compare()`
to break ties. Build one `Scanner` for each key range:

```python
from relaykit.scanner import Found, Group, MatchResult, Scanner
from relaykit.store import Included

def matcher(scanner, key, value):
    if key.startswith(scanner.prefix):
        return Found(MyKey(key, value))
    return MatchResult.STOP

group = Group(reverse=False, and_=False, dup=True)
for prefix in prefixes:
    it = reader.iter_from(tree, Included(prefix), False)
    group.add(Scanner(it, prefix, prefix, False, None, None, matcher))
for key in group:
    ...
```

A matcher returns one of three things: `Found(key)`, `MatchResult.CONTINUE`
to skip the entry, or `MatchResult.STOP` to end the scanner.

- With `and_=True` the group yields only keys that every member has.
- With `dup=True` equal keys from different members are merged into one.
- `Group.set_watcher(fn)` calls `fn(scan_times)` as the scan goes on. An
  exception raised by `fn` stops the scan and reaches the caller.
- `SortedKeyList` is the ordered buffer the group uses. You can also use it
  on its own.

## Access control

```python
from relaykit.auth import AuthSetting, Permission, PermissionDenied, verify_permission

perm = Permission.from_dict({"ip_whitelist": ["127.0.0.1"]})
try:
    verify_permission(perm, None, None, "127.0.0.2")
except PermissionDenied as err:
    print(f"restricted: {err.reason}")   # ip not in whitelist
```

- `AuthSetting.from_dict` reads `enabled`, `req` and `event`.
- `AuthState.challenge()` creates a random challenge.
- `AuthState.authenticated(pubkey)` records a pubkey that passed
  authentication.

## Rate limiting

```python
from relaykit.rate_limiter import Ratelimiter

limiter = Ratelimiter()
limiter.configure({
    "enabled": True,
    "event": [{"period": 1, "limit": 2, "kinds": [1, 2, [100, 200]]}],
})
exceeded = limiter.check_event(1, "127.0.0.1")   # None, or the EventQuota hit
```

- A kind range is either a single kind `n` or a pair `[start, end]`. The end
  is excluded.
- Per-IP state that has fully recovered is dropped every `clear_interval`
  seconds. The default is 60.
- `Ratelimiter(clock=...)` takes a monotonic nanosecond clock, which is
  useful in tests.

## Bench helpers

`gen_pairs`, `gen_byte`, `gen_str` and `gen_num_pair` produce random data.
`chunk_vec` splits a sequence into chunks. `fmt_num` and `fmt_per_sec`
format rates:

```python
from relaykit.bench import fmt_per_sec
fmt_per_sec(1100, 1.0)   # "1.1K/s"
```

## What this package does not do

relaykit provides library pieces only. It has no relay server, no websocket
or HTTP handling, and no command-line program. It does not parse or validate
events, and it does not check signatures. It does not export metrics. The
caller decides how to pass an event's kind, a client's IP and the pubkeys
into `auth` and `rate_limiter`, and what to send back to the client.

## Tests

```
pip install .[test]
pytest
```