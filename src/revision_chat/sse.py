"""Incremental re-framing of a newline-delimited byte stream as SSE events."""
from __future__ import annotations

import codecs
from typing import List

CLOSE_EVENT = b"event: close\ndata: [DONE]\n\n"


def format_event(data: str) -> bytes:
    return f"data: {data}\n\n".encode("utf-8")


class SSEFramer:
    """Accumulate-decode-split-flush parser, independent of any I/O model.

    Feed raw upstream chunks with :meth:`feed`; each call returns the SSE
    events for every line completed so far. Call :meth:`close` once the
    upstream ends to flush the remainder and the closing event.

    Multi-byte characters split across chunks are decoded correctly; invalid
    UTF-8 raises :class:`UnicodeDecodeError`.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)()
        self._buffer = ""
        self.closed = False

    def feed(self, chunk: bytes) -> List[bytes]:
        if self.closed:
            raise RuntimeError("feed() called after close()")
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [format_event(line.strip()) for line in lines if line.strip()]

    def close(self) -> List[bytes]:
        self._buffer += self._decoder.decode(b"", final=True)
        self.closed = True
        events = []
        rest = self._buffer.strip()
        if rest:
            events.append(format_event(rest))
        self._buffer = ""
        events.append(CLOSE_EVENT)
        return events
