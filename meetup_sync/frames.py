"""Incremental decoder for ``text/event-stream`` framing."""

from __future__ import annotations

import codecs
from collections.abc import Iterable, Iterator
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class StreamFrame:
    """One logical message read from the push stream."""

    event_type: str | None
    data: str
    event_id: str | None = None


class FrameParser:
    """Turn raw stream chunks into :class:`StreamFrame` records.

    Parser state survives chunk boundaries, so a record split across two reads
    is assembled before it is emitted. Records are emitted in arrival order.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event_type: str | None = None
        self._data: list[str] = []
        self._event_id: str | None = None
        self.last_event_id: str | None = None
        self.retry_ms: int | None = None
        self.comments = 0

    def feed(self, chunk: bytes | str) -> list[StreamFrame]:
        """Consume *chunk* and return every record it completes."""

        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer += text
        return list(self._drain())

    def flush(self) -> list[StreamFrame]:
        """Emit a trailing record that was not followed by a blank line."""

        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.endswith("\r"):
            self._buffer += "\n"
        frames = list(self._drain())
        if self._buffer:
            self._process_line(self._buffer)
            self._buffer = ""
        frame = self._dispatch()
        if frame is not None:
            frames.append(frame)
        return frames

    def reset(self) -> None:
        """Drop partial state, keeping ``last_event_id`` for the next connection."""

        self._decoder.reset()
        self._buffer = ""
        self._event_type = None
        self._data = []
        self._event_id = None

    # ------------------------------------------------------------------
    def _drain(self) -> Iterator[StreamFrame]:
        while True:
            index = self._line_end()
            if index is None:
                return
            end, skip = index
            line = self._buffer[:end]
            self._buffer = self._buffer[end + skip :]
            if line == "":
                frame = self._dispatch()
                if frame is not None:
                    yield frame
                continue
            self._process_line(line)

    def _line_end(self) -> tuple[int, int] | None:
        cr = self._buffer.find("\r")
        lf = self._buffer.find("\n")
        if cr == -1 and lf == -1:
            return None
        if cr == -1 or (lf != -1 and lf < cr):
            return lf, 1
        if cr == len(self._buffer) - 1:
            # a lone CR may be the first half of CRLF
            return None
        if self._buffer[cr + 1] == "\n":
            return cr, 2
        return cr, 1

    def _process_line(self, line: str) -> None:
        if line.startswith(":"):
            self.comments += 1
            return
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event_type = value or None
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._event_id = value or None
        elif name == "retry":
            if value.isdigit():
                self.retry_ms = int(value)

    def _dispatch(self) -> StreamFrame | None:
        event_type, data, event_id = self._event_type, self._data, self._event_id
        self._event_type = None
        self._data = []
        self._event_id = None
        if event_id is not None:
            self.last_event_id = event_id
        if not data:
            return None
        return StreamFrame(event_type=event_type, data="\n".join(data), event_id=event_id or self.last_event_id)


def parse_frames(chunks: Iterable[bytes | str]) -> list[StreamFrame]:
    """Parse a complete, finite sequence of chunks."""

    parser = FrameParser()
    frames: list[StreamFrame] = []
    for chunk in chunks:
        frames.extend(parser.feed(chunk))
    frames.extend(parser.flush())
    return frames
