"""Array-backed max-heap whose elements keep a stable handle.

Handles are plain integers returned by ``add``. They stay valid while the
element is in the heap, so a caller can raise or lower the priority of an
element it inserted earlier without searching for it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

T = TypeVar("T")

# Marks a handle whose element has left the heap
_REMOVED = -1


class BinaryHeap(Generic[T]):
    """Max-heap ordered by ``key(item)`` (the item itself by default)."""

    def __init__(self, key: Callable[[T], Any] | None = None) -> None:
        self._key = key or (lambda item: item)
        self._items: list[T] = []
        self._handles: list[int] = []  # heap position -> handle
        self._positions: list[int] = []  # handle -> heap position

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __contains__(self, handle: int) -> bool:
        return 0 <= handle < len(self._positions) and self._positions[handle] != _REMOVED

    def __getitem__(self, handle: int) -> T:
        return self._items[self._position(handle)]

    def __iter__(self) -> Iterator[T]:
        """Iterate in heap-array order, not priority order."""
        return iter(self._items)

    def add(self, item: T) -> int:
        handle = len(self._positions)
        self._positions.append(len(self._items))
        self._handles.append(handle)
        self._items.append(item)
        self._bubble_up(len(self._items) - 1)
        return handle

    def peek(self) -> T:
        if not self._items:
            raise IndexError("peek from an empty heap")
        return self._items[0]

    def remove(self) -> T:
        """Pop the element with the largest key."""
        if not self._items:
            raise IndexError("remove from an empty heap")
        top = self._items[0]
        self._positions[self._handles[0]] = _REMOVED
        last_item = self._items.pop()
        last_handle = self._handles.pop()
        if self._items:
            self._items[0] = last_item
            self._handles[0] = last_handle
            self._positions[last_handle] = 0
            self._trickle_down(0)
        return top

    def increase(self, handle: int, item: T) -> None:
        """Replace the element behind ``handle`` with one of equal or larger key."""
        pos = self._position(handle)
        if self._key(item) < self._key(self._items[pos]):
            raise ValueError("increase() requires a key that is not smaller")
        self._items[pos] = item
        self._bubble_up(pos)

    def decrease(self, handle: int, item: T) -> None:
        """Replace the element behind ``handle`` with one of equal or smaller key."""
        pos = self._position(handle)
        if self._key(self._items[pos]) < self._key(item):
            raise ValueError("decrease() requires a key that is not larger")
        self._items[pos] = item
        self._trickle_down(pos)

    def clear(self) -> None:
        self._items.clear()
        self._handles.clear()
        self._positions.clear()

    # ------------------------------------------------------------------

    def _position(self, handle: int) -> int:
        if handle not in self:
            raise KeyError(f"Unknown or removed heap handle: {handle}")
        return self._positions[handle]

    def _swap(self, i: int, j: int) -> None:
        items, handles = self._items, self._handles
        items[i], items[j] = items[j], items[i]
        handles[i], handles[j] = handles[j], handles[i]
        self._positions[handles[i]] = i
        self._positions[handles[j]] = j

    def _bubble_up(self, pos: int) -> None:
        key = self._key
        while pos > 0:
            parent = (pos - 1) // 2
            if not key(self._items[parent]) < key(self._items[pos]):
                break
            self._swap(pos, parent)
            pos = parent

    def _trickle_down(self, pos: int) -> None:
        key = self._key
        n = len(self._items)
        while True:
            left = 2 * pos + 1
            right = left + 1
            largest = pos
            if left < n and key(self._items[largest]) < key(self._items[left]):
                largest = left
            if right < n and key(self._items[largest]) < key(self._items[right]):
                largest = right
            if largest == pos:
                return
            self._swap(pos, largest)
            pos = largest
