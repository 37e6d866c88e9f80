"""Per-connection outbound frame queue with partial-write support."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from .constants import MAX_OUTBOUND_BYTES


class OutboundOverflow(RuntimeError):
    """Raised when a slow reader's pending output would exceed the cap."""


@dataclass
class PendingFrame:
    """An encoded frame plus how much of it has already been sent."""

    data: bytes
    offset: int = 0

    def remaining(self) -> memoryview:
        return memoryview(self.data)[self.offset :]

    @property
    def remaining_len(self) -> int:
        return len(self.data) - self.offset


class OutputQueue:
    """
    Ordered, not-yet-sent frames for one connection.

    Frames leave in enqueue order. A short write only advances the head
    frame's cursor, so the unsent tail is resumed on the next writable
    event without copying.
    """

    def __init__(self, max_pending_bytes: int = MAX_OUTBOUND_BYTES) -> None:
        self.max_pending_bytes = int(max_pending_bytes)
        self.frames: deque[PendingFrame] = deque()
        self._pending = 0

    def __len__(self) -> int:
        return len(self.frames)

    def __bool__(self) -> bool:
        return bool(self.frames)

    @property
    def pending_bytes(self) -> int:
        return self._pending

    def enqueue(self, frame: bytes) -> None:
        limit = self.max_pending_bytes
        if limit and self._pending + len(frame) > limit:
            raise OutboundOverflow(
                f"pending output would reach {self._pending + len(frame)} bytes (max {limit})"
            )
        self.frames.append(PendingFrame(bytes(frame)))
        self._pending += len(frame)

    def flush(self, send: Callable[[memoryview], int]) -> bool:
        """
        Write as much as the socket accepts right now.

        `send` is a non-blocking socket send. Returns True once the queue is
        empty. OSErrors other than would-block propagate to the caller.
        """
        while self.frames:
            head = self.frames[0]
            try:
                sent = send(head.remaining())
            except (BlockingIOError, InterruptedError):
                return False

            head.offset += sent
            self._pending -= sent
            if head.remaining_len > 0:
                # Short write: wait for the next writable event.
                return False
            self.frames.popleft()

        return True

    def clear(self) -> None:
        self.frames.clear()
        self._pending = 0
