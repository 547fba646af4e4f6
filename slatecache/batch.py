"""Batches of write operations applied to a database as one unit."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Union


@dataclass(frozen=True)
class PutOp:
    """Store ``value`` under ``key``."""

    key: bytes
    value: bytes
    options: Any = None


@dataclass(frozen=True)
class DeleteOp:
    """Remove ``key``."""

    key: bytes


WriteOp = Union[PutOp, DeleteOp]


def _checked_key(key: bytes) -> bytes:
    key = bytes(key)
    if not key:
        raise ValueError("key cannot be empty")
    return key


@dataclass
class WriteBatch:
    """Puts and deletes applied atomically; for a repeated key the last one wins.

    The batch has no size limit.
    """

    ops: list[WriteOp] = field(default_factory=list)

    def put(self, key: bytes, value: bytes, options: Any = None) -> None:
        """Add a put of ``value`` under a non-empty ``key``."""
        self.ops.append(PutOp(_checked_key(key), bytes(value), options))

    def delete(self, key: bytes) -> None:
        """Add a delete of a non-empty ``key``."""
        self.ops.append(DeleteOp(_checked_key(key)))

    def __len__(self) -> int:
        return len(self.ops)

    def __iter__(self) -> Iterator[WriteOp]:
        return iter(self.ops)