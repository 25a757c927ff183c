"""Fixed-capacity circular history buffer."""

from __future__ import annotations

from typing import Generic, Iterator, TypeVar

from .errors import InvalidCapacity

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Drop-oldest ring buffer with O(1) push.

    Items are kept in a preallocated list addressed by a head index (oldest
    item) and a tail index (next write slot).  Once the buffer is full every
    push overwrites the oldest item.

    The buffer has a single writer.  Readers get copies from :meth:`all`
    and :meth:`recent`, so later pushes never show through a result that
    was already returned.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise InvalidCapacity(capacity)
        self._capacity = int(capacity)
        self._items: list[T | None] = [None] * self._capacity
        self._head = 0
        self._tail = 0
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[T]:
        return iter(self.all())

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    @property
    def is_full(self) -> bool:
        return self._size == self._capacity

    @property
    def utilization(self) -> float:
        """Fill level as a percentage (0-100)."""
        return self._size / self._capacity * 100.0

    def push(self, item: T) -> None:
        """Append *item*, evicting the oldest one when full."""
        self._items[self._tail] = item
        self._tail = (self._tail + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1
        else:
            self._head = (self._head + 1) % self._capacity

    def latest(self) -> T | None:
        """Return the most recent item, or ``None`` when empty."""
        if self._size == 0:
            return None
        return self._items[(self._tail - 1) % self._capacity]

    def all(self) -> list[T]:
        """Return every item, oldest first."""
        return self._slice(self._size)

    def recent(self, count: int) -> list[T]:
        """Return the last ``min(count, size)`` items, oldest first."""
        if count <= 0:
            return []
        return self._slice(min(count, self._size))

    def _slice(self, count: int) -> list[T]:
        start = (self._head + self._size - count) % self._capacity
        out: list[T] = []
        for i in range(count):
            out.append(self._items[(start + i) % self._capacity])  # type: ignore[arg-type]
        return out

    def clear(self) -> None:
        """Empty the buffer; the backing list is kept for reuse."""
        self._head = 0
        self._tail = 0
        self._size = 0

    def resize(self, new_capacity: int) -> None:
        """Change capacity, keeping the newest items that still fit."""
        if new_capacity <= 0:
            raise InvalidCapacity(new_capacity)
        if new_capacity == self._capacity:
            return

        current = self.all()
        self._capacity = int(new_capacity)
        self._items = [None] * self._capacity
        self.clear()
        for item in current[-self._capacity:]:
            self.push(item)

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, size={self._size})"
