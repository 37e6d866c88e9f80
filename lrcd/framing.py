"""Newline frame reassembly for inbound connection data."""

from __future__ import annotations

from collections.abc import Iterator

from .constants import LINE_END, MAX_LINE_BYTES


class LineTooLong(ValueError):
    """Raised when a peer sends a line longer than the configured maximum."""


class FrameAssembler:
    """
    Accumulates raw bytes from one connection and yields complete lines.

    Reads may split a line anywhere (including inside a multi-byte UTF-8
    sequence) or carry several lines at once, so bytes are buffered until a
    newline arrives and decoding is left to the caller.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self.max_line_bytes = int(max_line_bytes)
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> None:
        self._buf.extend(data)

    def extract_line(self) -> bytes | None:
        """
        Remove and return the first complete line, without its newline.

        Returns None (leaving the buffer untouched) when no newline has been
        received yet. A trailing carriage return is kept; callers strip it.
        """
        idx = self._buf.find(LINE_END)
        limit = self.max_line_bytes
        if idx < 0:
            if limit and len(self._buf) > limit:
                raise LineTooLong(f"unterminated line exceeds {limit} bytes")
            return None

        if limit and idx > limit:
            raise LineTooLong(f"line of {idx} bytes exceeds {limit} bytes")

        line = bytes(self._buf[:idx])
        del self._buf[: idx + 1]
        return line

    def lines(self) -> Iterator[bytes]:
        """Yield every complete line currently buffered."""
        while True:
            line = self.extract_line()
            if line is None:
                return
            yield line

    def clear(self) -> None:
        self._buf.clear()
