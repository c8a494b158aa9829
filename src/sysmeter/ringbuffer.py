# src/sysmeter/ringbuffer.py
"""Fixed-capacity history rings for graphing.

Every tracked entity (core, disk, interface, GPU) keeps its last N derived
values in a HistoryRing. The slot to write next is held by a TickCursor.
Rings that must stay time-aligned (all CPU cores, RX/TX of one interface,
usage/VRAM of one GPU) share a single cursor; the collector that owns the
cursor advances it once per tick after writing every ring.
"""

from collections.abc import Iterator
from dataclasses import dataclass

DEFAULT_CAPACITY = 60


@dataclass(frozen=True)
class BufferContents:
    """Immutable snapshot of a ring, oldest value first."""

    values: tuple[float, ...]
    write_index: int


class TickCursor:
    """Next-slot index shared by one or more rings."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._index = 0
        self._ticks = 0

    @property
    def capacity(self) -> int:
        """Number of slots in every ring using this cursor."""
        return self._capacity

    @property
    def index(self) -> int:
        """Slot the next write goes to."""
        return self._index

    @property
    def ticks(self) -> int:
        """Total number of advances since construction."""
        return self._ticks

    def advance(self) -> None:
        """Move to the next slot, wrapping at capacity."""
        self._index = (self._index + 1) % self._capacity
        self._ticks += 1


class HistoryRing:
    """Circular buffer of the last N derived values.

    Slots start at 0.0. A ring constructed without a cursor owns one and
    advances it on every push. A ring constructed on a shared cursor only
    writes its slot; the cursor owner advances.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, cursor: TickCursor | None = None) -> None:
        self._owns_cursor = cursor is None
        self._cursor = cursor if cursor is not None else TickCursor(capacity)
        self._values: list[float] = [0.0] * self._cursor.capacity
        self._latest = 0.0

    def __len__(self) -> int:
        """Return ring capacity (rings are always full of slots)."""
        return len(self._values)

    @property
    def capacity(self) -> int:
        """Return maximum number of values the ring holds."""
        return len(self._values)

    @property
    def cursor(self) -> TickCursor:
        """The cursor this ring writes through."""
        return self._cursor

    @property
    def write_index(self) -> int:
        """Slot the next push writes; after a completed tick, the oldest value."""
        return self._cursor.index

    @property
    def latest(self) -> float:
        """Most recently pushed value, 0.0 before the first push."""
        return self._latest

    @property
    def values(self) -> list[float]:
        """Raw slot contents in storage order (returns a copy)."""
        return list(self._values)

    def push(self, value: float) -> None:
        """Write a value into the current slot."""
        self._values[self._cursor.index] = float(value)
        self._latest = float(value)
        if self._owns_cursor:
            self._cursor.advance()

    def read_chronological(self) -> Iterator[float]:
        """Yield all N values oldest to newest.

        Each call returns a fresh generator over the ring's current state.
        """
        start = self._cursor.index
        n = len(self._values)
        return (self._values[(start + i) % n] for i in range(n))

    def freeze(self) -> BufferContents:
        """Return immutable copy of ring contents in chronological order."""
        return BufferContents(
            values=tuple(self.read_chronological()),
            write_index=self._cursor.index,
        )
