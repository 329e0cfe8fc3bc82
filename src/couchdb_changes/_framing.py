"""
Line framing for ``continuous`` and ``eventsource`` feeds.

Both modes deliver one change per line. Readers here turn arbitrary byte
chunks into complete, trimmed, non-blank lines:
- ``continuous``: newline-delimited JSON; blank lines are heartbeats
- ``eventsource``: SSE; ``event:`` lines are dropped and the ``data:``
  prefix is removed before the payload is handed on
"""

import codecs

from couchdb_changes._types import FeedMode


class LineReader:
    """
    Incremental line reader.

    Uses incremental UTF-8 decoding so that multi-byte characters split
    across chunk boundaries are reassembled, and buffers any partial line
    until its newline arrives.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")

    def feed(self, chunk: bytes) -> list[str]:
        """
        Feed a raw chunk and return the complete lines it finished.

        Args:
            chunk: Bytes as received from the network

        Returns:
            Trimmed, non-blank payload lines in wire order
        """
        self._buffer += self._decoder.decode(chunk)
        return self._drain()

    def finish(self) -> list[str]:
        """
        Flush at end of stream.

        Returns any lines completed by the decoder flush, plus a trailing
        line that was never newline-terminated.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        lines = self._drain()
        rest, self._buffer = self._buffer, ""
        payload = self._payload(rest.strip())
        if payload:
            lines.append(payload)
        return lines

    @property
    def buffered(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer

    def _drain(self) -> list[str]:
        lines: list[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            payload = self._payload(line.strip())
            if payload:
                lines.append(payload)
        return lines

    def _payload(self, line: str) -> str | None:
        """Map a trimmed line to its JSON payload, or None to skip it."""
        return line or None


class EventSourceLineReader(LineReader):
    """Line reader for ``feed=eventsource`` responses."""

    def _payload(self, line: str) -> str | None:
        if line.startswith("data:"):
            return line[5:].strip() or None
        # event names, ids, retry hints and comments carry no change data
        if line.startswith(("event:", "id:", "retry:", ":")):
            return None
        return line or None


def reader_for(mode: FeedMode) -> LineReader:
    """Create the line reader for a streaming feed mode."""
    if mode == "eventsource":
        return EventSourceLineReader()
    return LineReader()
