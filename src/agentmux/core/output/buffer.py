"""
Bounded per-session output buffer.

An append-only sequence of byte chunks with a running size. When an append
pushes the total above the high-water mark, whole chunks are discarded from
the oldest end until the total is at or below the low-water mark. Trimming
to a lower mark (rather than just under the ceiling) means sustained output
trims once per ``high - low`` bytes instead of on every append.
"""

from __future__ import annotations

from collections import deque

from agentmux.core.constants import BUFFER_HIGH_WATER_BYTES, BUFFER_LOW_WATER_BYTES


class OutputBuffer:
    """Append-only output store with high/low watermark trimming."""

    def __init__(
        self,
        high_water: int = BUFFER_HIGH_WATER_BYTES,
        low_water: int = BUFFER_LOW_WATER_BYTES,
    ) -> None:
        if not (0 < low_water < high_water):
            raise ValueError("OutputBuffer requires 0 < low_water < high_water")
        self._high = high_water
        self._low = low_water
        self._chunks: deque[bytes] = deque()
        self._size = 0

    @property
    def size(self) -> int:
        """Total bytes currently held."""
        return self._size

    @property
    def high_water(self) -> int:
        return self._high

    @property
    def low_water(self) -> int:
        return self._low

    def __len__(self) -> int:
        return len(self._chunks)

    def append(self, chunk: bytes) -> int:
        """
        Append *chunk*; return the number of bytes trimmed (0 if none).

        A single chunk larger than the low-water mark replaces the whole
        buffer with its own trailing ``low_water`` bytes.
        """
        if not chunk:
            return 0
        if len(chunk) > self._low:
            trimmed = self._size + len(chunk) - self._low
            self._chunks.clear()
            self._chunks.append(chunk[-self._low :])
            self._size = self._low
            return trimmed

        self._chunks.append(chunk)
        self._size += len(chunk)
        if self._size <= self._high:
            return 0

        before = self._size
        while self._size > self._low and self._chunks:
            self._size -= len(self._chunks.popleft())
        return before - self._size

    def read(self) -> bytes:
        """Return the full concatenation of held chunks."""
        return b"".join(self._chunks)

    def clear(self) -> None:
        self._chunks.clear()
        self._size = 0
