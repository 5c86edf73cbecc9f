"""Fixed-size frame assembly for inbound audio.

Twilio delivers audio in small fragments whose size is not under our
control. The speech agent wants fixed-size frames, so fragments are
queued here and cut into frames of exactly ``size`` bytes.
"""

from __future__ import annotations

from collections import deque
from typing import Iterator


class FrameBuffer:
    """Ordered queue of byte fragments that yields fixed-size frames.

    Usage:
        buffer = FrameBuffer()
        buffer.append(fragment)
        for frame in buffer.drain(3200):
            ...

    Only one task may mutate a buffer; it does no locking.
    """

    def __init__(self) -> None:
        self._fragments: deque[bytes] = deque()
        self._size = 0

    def append(self, fragment: bytes) -> None:
        """Queue a fragment in arrival order."""
        if not fragment:
            return
        self._fragments.append(bytes(fragment))
        self._size += len(fragment)

    def extract_frame(self, size: int) -> bytes | None:
        """Remove and return exactly ``size`` bytes, or None if not enough is buffered.

        Fragments are joined in order until the running length first reaches
        ``size``. Any excess is pushed back to the front as one fragment so the
        next extraction continues at the right byte.
        """
        if size <= 0:
            raise ValueError(f"Frame size must be positive, got {size}")
        if self._size < size:
            return None

        parts: list[bytes] = []
        taken = 0
        while taken < size:
            fragment = self._fragments.popleft()
            parts.append(fragment)
            taken += len(fragment)

        joined = b"".join(parts)
        if taken > size:
            self._fragments.appendleft(joined[size:])
            joined = joined[:size]

        self._size -= size
        return joined

    def drain(self, size: int) -> Iterator[bytes]:
        """Yield frames until fewer than ``size`` bytes remain."""
        while True:
            frame = self.extract_frame(size)
            if frame is None:
                return
            yield frame

    def reset(self) -> None:
        """Drop everything buffered (stream stopped)."""
        self._fragments.clear()
        self._size = 0

    @property
    def buffered_bytes(self) -> int:
        return self._size

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    def __len__(self) -> int:
        return self._size
