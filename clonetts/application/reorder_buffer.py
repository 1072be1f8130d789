from __future__ import annotations

from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")

_PENDING = object()


class ReorderBuffer(Generic[T]):
    """Releases out-of-order completions strictly in submission order.

    Slot ``k`` of the deque holds the entry for index ``next_expected + k``, so
    lookup is by offset from the cursor and delivered entries are popped off
    the left. The cursor only moves across a contiguous run of completed
    entries.
    """

    def __init__(self) -> None:
        self._slots: deque[object] = deque()
        self._next_index = 0
        self._next_expected = 0

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def next_expected(self) -> int:
        return self._next_expected

    @property
    def pending_count(self) -> int:
        """Entries allocated but not yet delivered (in flight or waiting on a gap)."""
        return len(self._slots)

    def allocate(self) -> int:
        index = self._next_index
        self._next_index += 1
        self._slots.append(_PENDING)
        return index

    def is_pending(self, index: int) -> bool:
        offset = index - self._next_expected
        return 0 <= offset < len(self._slots) and self._slots[offset] is _PENDING

    def record(self, index: int, value: T) -> None:
        offset = index - self._next_expected
        if offset < 0 or offset >= len(self._slots):
            raise ValueError(f"index {index} is not awaiting a result")
        if self._slots[offset] is not _PENDING:
            raise ValueError(f"index {index} was already recorded")
        self._slots[offset] = value

    def drain(self) -> list[tuple[int, T]]:
        released: list[tuple[int, T]] = []
        while self._slots and self._slots[0] is not _PENDING:
            value = self._slots.popleft()
            released.append((self._next_expected, value))  # type: ignore[arg-type]
            self._next_expected += 1
        return released

    def clear(self) -> None:
        """Drop every entry; indices already handed out are never reused."""

        self._slots.clear()
        self._next_expected = self._next_index
