from __future__ import annotations

import codecs
from typing import BinaryIO, Callable, Iterator, List, Optional, Union

DEFAULT_CHUNK_SIZE = 4096

LineCallback = Callable[[str], None]


class StreamLineParser:
    """Reassemble streamed chunks into complete lines.

    The parser never reads from a stream itself, so the owner stays in control
    of how data is consumed. Register a callback with ``on_line``, call
    ``on_data`` for every chunk, and ``on_end`` once the stream is exhausted.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._buffer = ""
        self._callback: Optional[LineCallback] = None
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    def on_line(self, callback: LineCallback) -> None:
        self._callback = callback

    def on_data(self, chunk: Union[bytes, str]) -> None:
        if isinstance(chunk, str):
            self._buffer += chunk
        else:
            self._buffer += self._decoder.decode(chunk)
        self._emit_complete_lines()

    def on_end(self) -> None:
        self._buffer += self._decoder.decode(b"", final=True)
        self._emit_complete_lines()
        if self._buffer and self._callback is not None:
            line, self._buffer = self._buffer, ""
            self._callback(line)

    def _emit_complete_lines(self) -> None:
        while self._callback is not None:
            index = self._buffer.find("\n")
            if index < 0:
                break
            line = self._buffer[:index]
            self._buffer = self._buffer[index + 1 :]
            self._callback(line)


def iter_stream_lines(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """Yield lines from a binary stream, read ``chunk_size`` bytes at a time."""
    parser = StreamLineParser()
    pending: List[str] = []
    parser.on_line(pending.append)
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        parser.on_data(chunk)
        yield from pending
        pending.clear()
    parser.on_end()
    yield from pending
