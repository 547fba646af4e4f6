# slatecache

`slatecache` holds building blocks for storage code that sits on top of an
object store:

- an object store interface and a store kept in memory,
- an evictor that keeps a local cache folder under a size limit,
- a write batch type for key-value stores,
- a small benchmarker for mixed put/get workloads.

It uses only the standard library and needs Python 3.10 or later.

## Installing

```
pip install slatecache
```

## Object stores: `slatecache.object_store`

`ObjectStore` is the abstract interface. A store implements `get_opts`,
`put`, `delete`, `list` and `copy`; `get`, `head` and `rename` have default
implementations built on those.

`InMemoryObjectStore` keeps objects in a dictionary. Locations are
slash-separated and empty segments are dropped, so `/a//b/` and `a/b` name
the same object. Payloads come back in chunks of `chunk_size` bytes
(64 KiB by default).

```python
from slatecache.object_store import (
    BoundedRange,
    GetOptions,
    InMemoryObjectStore,
    OffsetRange,
    SuffixRange,
)

store = InMemoryObjectStore()
meta = store.put("data/file1", b"x" * 5000, {"Content-Type": "text/plain"})

whole = store.get("data/file1").bytes()
part = store.get_opts("data/file1", GetOptions(range=BoundedRange(1000, 2048))).bytes()
tail = store.get_opts("data/file1", GetOptions(range=SuffixRange(10))).bytes()
meta = store.head("data/file1")
names = [m.location for m in store.list("data")]
```

`put` returns an `ObjectMeta` (location, last-modified time, size, e-tag,
version). `get_opts` returns a `GetResult` whose payload can be read once,
with `bytes()` or chunk by chunk with `chunks()`. `GetOptions(head=True)`
returns the metadata and attributes with an empty payload.

Ranges:

- `BoundedRange(start, end)` is cut to the object's size. It is an error if
  `start >= end`, or if `start` is at or past the end of the object.
- `OffsetRange(offset)` reads from `offset` to the end; it is an error if
  `offset` is at or past the end.
- `SuffixRange(n)` reads the last `n` bytes, or the whole object if it is
  shorter.

Errors derive from `ObjectStoreError`: a missing object raises
`NotFoundError`, a bad range raises `InvalidGetRangeError`. Deleting a
missing object is not an error.

`ReadOnlyBlob(store, location)` reads one object: `size()`,
`read_range(start, end)` and `read()`.

`CacheStats` is a plain set of counters (`part_access`, `part_hits`,
`cache_keys`, `cache_bytes`, `evicted_bytes`, `evicted_keys`); the evictor
updates the last four.

## Keeping a cache folder small: `slatecache.evictor`

`EvictorCore(root_folder, max_cache_size_bytes, stats=None, batch_factor=10)`
tracks files with their size and last access time.

- `scan_entries(evict)` walks the folder and tracks every file, using its
  access time from the file system.
- `track_entry_accessed(path, size, accessed_time=None, evict=False)`
  records an access. A file's size is added to the total only the first time
  it is seen. If `evict` is true and the total is over the limit, up to
  `batch_factor` files are removed and the number of bytes removed is
  returned.
- `pick_evict_target()` picks two tracked files at random and returns the
  one accessed longer ago, with its size, or `None` when fewer than two are
  tracked.

`FsCacheEvictor(root_folder, max_cache_size_bytes, scan_interval=None,
stats=None)` runs this in background threads. `start()` scans the folder
once (and again every `scan_interval` seconds, if given) and starts a worker
that applies queued accesses; starting twice raises `RuntimeError`.
`track_entry_accessed(path, size, evict)` queues an access and is ignored
until the evictor has started. `stop()` lets queued work finish and then
stops the threads.

## Write batches: `slatecache.batch`

```python
from slatecache.batch import WriteBatch

batch = WriteBatch()
batch.put(b"key1", b"value1")
batch.put(b"key2", b"value2")
batch.delete(b"key3")
assert len(batch) == 3
```

A batch is an ordered list of `PutOp` and `DeleteOp`; iterating it yields
them in the order added. Where a key appears more than once, the last
operation for it is meant to win. An empty key raises `ValueError`. A batch
has no size limit. `put` takes an optional `options` value that is stored
with the operation as it is.

## Benchmarking: `slatecache.bench`

`DbBench(key_gen_supplier, val_len, concurrency, num_rows, duration,
put_percentage, db, write_options=None)` runs `concurrency` worker threads
against any object with `put(key, value, **options)` and `get(key)`. Each
worker takes a key from its own key generator and, `put_percentage` times
out of 100, writes a random value of `val_len` bytes with `write_options`;
otherwise it reads the key. Workers stop once `num_rows` puts have been
recorded in all, or after `duration` seconds. `run()` returns the
`StatsRecorder` it used.

`StatsRecorder` keeps total puts and gets and per-window counts in windows
of ten seconds, newest first, at most 180 of them. `operations_since(lookback)`
sums the completed windows that start within `lookback` seconds of the
active window; the active window is left out, but its start is the end of
the returned span. While running, the benchmarker logs put and get rates
over the last minute every ten seconds through the `logging` module.

`RandomKeyGenerator(key_len)` makes a new random key each time.
`FixedSetKeyGenerator(key_len, key_count)` makes `key_count` random keys up
front and then picks among them at random.

## What this package does not do

- It has no store that reads through a local disk cache: nothing here saves
  object parts to disk or serves reads from them. The evictor only tracks
  and removes files that something else writes into the cache folder.
- It has no key-value database; `WriteBatch` only collects operations, and
  `DbBench` needs a database object to be passed in.
- It has no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```