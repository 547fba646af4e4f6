"""Object store abstractions, an in-memory store and read-only blobs."""

from __future__ import annotations

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator, Mapping, Optional, Union


class ObjectStoreError(Exception):
    """Base error raised by object stores."""


class NotFoundError(ObjectStoreError):
    """The requested object does not exist."""


class InvalidGetRangeError(ObjectStoreError):
    """A requested byte range cannot be served for an object."""


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata describing a stored object."""

    location: str
    last_modified: datetime
    size: int
    e_tag: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class BoundedRange:
    """Bytes from ``start`` (inclusive) to ``end`` (exclusive)."""

    start: int
    end: int


@dataclass(frozen=True)
class OffsetRange:
    """Bytes from ``offset`` to the end of the object."""

    offset: int


@dataclass(frozen=True)
class SuffixRange:
    """The last ``suffix`` bytes of the object."""

    suffix: int


GetRange = Union[BoundedRange, OffsetRange, SuffixRange]


@dataclass(frozen=True)
class GetOptions:
    """Options for a GET request."""

    range: Optional[GetRange] = None
    head: bool = False


@dataclass
class GetResult:
    """The outcome of a GET request; the payload can be consumed once."""

    meta: ObjectMeta
    range: range
    attributes: dict[str, str] = field(default_factory=dict)
    payload: Iterable[bytes] = ()

    def chunks(self) -> Iterator[bytes]:
        """Yield the payload chunk by chunk."""
        yield from self.payload

    def bytes(self) -> bytes:
        """Collect the whole payload into one bytes object."""
        return b"".join(self.chunks())


def _normalize_location(location: str) -> str:
    """Drop empty segments, so ``/a//b/`` and ``a/b`` name the same object."""
    return "/".join(part for part in str(location).split("/") if part)


def _resolve_range(get_range: Optional[GetRange], size: int) -> range:
    if get_range is None:
        return range(0, size)
    if isinstance(get_range, BoundedRange):
        if get_range.start >= get_range.end:
            raise InvalidGetRangeError(
                f"Range started at {get_range.start} and ended at {get_range.end}"
            )
        if get_range.start >= size:
            raise InvalidGetRangeError(
                f"Range start too large, requested: {get_range.start}, length: {size}"
            )
        return range(get_range.start, min(get_range.end, size))
    if isinstance(get_range, OffsetRange):
        if get_range.offset >= size:
            raise InvalidGetRangeError(
                f"Range start too large, requested: {get_range.offset}, length: {size}"
            )
        return range(get_range.offset, size)
    if isinstance(get_range, SuffixRange):
        return range(max(size - get_range.suffix, 0), size)
    raise TypeError(f"unsupported range: {get_range!r}")


class ObjectStore(ABC):
    """A flat store of byte objects addressed by slash-separated locations."""

    @abstractmethod
    def get_opts(self, location: str, options: Optional[GetOptions] = None) -> GetResult:
        """Fetch an object, or part of it."""

    def get(self, location: str) -> GetResult:
        """Fetch a whole object."""
        return self.get_opts(location, GetOptions())

    def head(self, location: str) -> ObjectMeta:
        """Return an object's metadata without its payload."""
        return self.get_opts(location, GetOptions(head=True)).meta

    @abstractmethod
    def put(
        self,
        location: str,
        payload: bytes,
        attributes: Optional[Mapping[str, str]] = None,
    ) -> ObjectMeta:
        """Store an object, replacing any existing one."""

    @abstractmethod
    def delete(self, location: str) -> None:
        """Remove an object; removing a missing object is not an error."""

    @abstractmethod
    def list(self, prefix: Optional[str] = None) -> Iterator[ObjectMeta]:
        """Yield the metadata of objects under ``prefix``."""

    @abstractmethod
    def copy(self, source: str, destination: str) -> None:
        """Copy an object to a new location."""

    def rename(self, source: str, destination: str) -> None:
        """Move an object to a new location."""
        self.copy(source, destination)
        self.delete(source)


@dataclass
class _StoredObject:
    data: bytes
    meta: ObjectMeta
    attributes: dict[str, str]


class InMemoryObjectStore(ObjectStore):
    """An object store kept entirely in memory."""

    def __init__(self, chunk_size: int = 64 * 1024) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size
        self._objects: dict[str, _StoredObject] = {}
        self._lock = threading.Lock()
        self._etags = itertools.count()

    def __str__(self) -> str:
        return "InMemory"

    def _lookup(self, location: str) -> _StoredObject:
        key = _normalize_location(location)
        with self._lock:
            stored = self._objects.get(key)
        if stored is None:
            raise NotFoundError(f"Object at location {key} not found")
        return stored

    def _chunked(self, data: bytes) -> Iterator[bytes]:
        for offset in range(0, len(data), self._chunk_size):
            yield data[offset : offset + self._chunk_size]

    def get_opts(self, location: str, options: Optional[GetOptions] = None) -> GetResult:
        options = options or GetOptions()
        stored = self._lookup(location)
        if options.head:
            return GetResult(stored.meta, range(0, 0), dict(stored.attributes), ())
        span = _resolve_range(options.range, stored.meta.size)
        return GetResult(
            meta=stored.meta,
            range=span,
            attributes=dict(stored.attributes),
            payload=self._chunked(stored.data[span.start : span.stop]),
        )

    def head(self, location: str) -> ObjectMeta:
        return self._lookup(location).meta

    def put(
        self,
        location: str,
        payload: bytes,
        attributes: Optional[Mapping[str, str]] = None,
    ) -> ObjectMeta:
        key = _normalize_location(location)
        data = bytes(payload)
        with self._lock:
            meta = ObjectMeta(
                location=key,
                last_modified=datetime.now(timezone.utc),
                size=len(data),
                e_tag=str(next(self._etags)),
            )
            self._objects[key] = _StoredObject(data, meta, dict(attributes or {}))
        return meta

    def delete(self, location: str) -> None:
        with self._lock:
            self._objects.pop(_normalize_location(location), None)

    def list(self, prefix: Optional[str] = None) -> Iterator[ObjectMeta]:
        base = _normalize_location(prefix) if prefix is not None else ""
        with self._lock:
            metas = [stored.meta for stored in self._objects.values()]
        for meta in sorted(metas, key=lambda m: m.location):
            if not base or meta.location == base or meta.location.startswith(base + "/"):
                yield meta

    def copy(self, source: str, destination: str) -> None:
        stored = self._lookup(source)
        self.put(destination, stored.data, stored.attributes)

    def rename(self, source: str, destination: str) -> None:
        self.copy(source, destination)
        self.delete(source)


class ReadOnlyBlob:
    """Read access to a single object in a store."""

    def __init__(self, store: ObjectStore, location: str) -> None:
        self.store = store
        self.location = location

    def size(self) -> int:
        """Return the object's length in bytes."""
        return self.store.head(self.location).size

    def read_range(self, start: int, end: int) -> bytes:
        """Return the bytes from ``start`` up to ``end``."""
        return self.store.get_opts(
            self.location, GetOptions(range=BoundedRange(start, end))
        ).bytes()

    def read(self) -> bytes:
        """Return the whole object."""
        return self.store.get(self.location).bytes()


@dataclass
class CacheStats:
    """Counters and gauges kept by the object store cache."""

    part_access: int = 0
    part_hits: int = 0
    cache_keys: int = 0
    cache_bytes: int = 0
    evicted_bytes: int = 0
    evicted_keys: int = 0