import codecs
import logging

from typing import List, NamedTuple

LOG = logging.getLogger("pod_link.framing")

MAX_LINE_LENGTH = 1024


class RawLine(NamedTuple):
    text: str
    overflow: bool = False


class FrameAssembler:
    """Turn arbitrarily chunked bytes into newline-terminated text lines.

    A line is emitted as soon as its newline has arrived. When more than
    ``max_line_length`` characters pile up with no newline among them, the
    first ``max_line_length`` characters are force-flushed as a line with
    ``overflow`` set, so the buffer never grows without bound. Flush points
    only depend on the text seen so far, so the emitted lines are the same
    whatever the chunking.
    """

    def __init__(self, max_line_length: int = MAX_LINE_LENGTH, encoding: str = "utf-8"):
        if not isinstance(max_line_length, int) or max_line_length <= 0:
            raise ValueError("max_line_length must be a positive integer")
        self.max_line_length = max_line_length
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.overflows = 0

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> List[RawLine]:
        self._buffer += self._decoder.decode(chunk)
        return self._extract()

    def close(self) -> List[RawLine]:
        """Flush everything left over at end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        lines = self._extract()
        if self._buffer:
            lines.append(RawLine(self._buffer))
            self._buffer = ""
        self._decoder.reset()
        return lines

    def reset(self) -> None:
        self._buffer = ""
        self._decoder.reset()

    def _extract(self) -> List[RawLine]:
        lines: List[RawLine] = []
        limit = self.max_line_length
        while True:
            # A newline up to position ``limit`` closes a line of at most ``limit`` chars
            idx = self._buffer.find("\n", 0, limit + 1)
            if idx != -1:
                lines.append(RawLine(self._buffer[:idx + 1]))
                self._buffer = self._buffer[idx + 1:]
                continue
            if len(self._buffer) > limit:
                self.overflows += 1
                LOG.warning("No newline within %d characters; flushing partial line", limit)
                lines.append(RawLine(self._buffer[:limit], overflow=True))
                self._buffer = self._buffer[limit:]
                continue
            return lines
