"""Text decoding for monitor output.

``TextStreamReader`` turns the port's byte chunks into text chunks;
``LineBufferedDecoder`` turns text chunks into complete lines.
"""

from __future__ import annotations

import asyncio
import codecs
import re
from typing import Protocol

from fanlink.exceptions import FanlinkError, PortUnreadable, StreamDecodingUnsupported
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_EOF = object()


class LineBufferedDecoder:
    """Accumulate text and hand back complete lines.

    Lines end at CR, LF or CRLF. A CRLF whose halves arrive in different
    chunks still counts as one terminator. Text after the last terminator is
    held until the next ``feed`` or ``flush``.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._pending_cr = False

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> list[str]:
        if not chunk:
            return []
        if self._pending_cr and chunk.startswith("\n"):
            chunk = chunk[1:]
        text = self._buffer + chunk
        self._pending_cr = text.endswith("\r")
        lines = _LINE_BREAK.split(text)
        self._buffer = lines.pop()
        return lines

    def flush(self) -> str | None:
        """Return the held fragment, if any, and forget it."""
        self._pending_cr = False
        if not self._buffer:
            return None
        fragment, self._buffer = self._buffer, ""
        return fragment


class ByteSource(Protocol):
    async def read(self) -> bytes | None:
        ...

    def cancel(self) -> None:
        ...


class TextStreamReader:
    """Decode a byte reader into text chunks.

    A pump task moves decoded text into a queue; ``read`` takes from that
    queue. ``wait_closed`` resolves once the pump has finished, and never
    raises: a read failure is delivered to the next ``read`` call instead.
    """

    def __init__(self, source: ByteSource, encoding: str = "utf-8") -> None:
        try:
            decoder_cls = codecs.getincrementaldecoder(encoding)
        except LookupError as exc:
            raise StreamDecodingUnsupported(f"Text encoding {encoding!r} is not supported") from exc
        self._decoder = decoder_cls(errors="replace")
        self._source = source
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._released = False

    def start(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        try:
            while True:
                chunk = await self._source.read()
                if chunk is None:
                    break
                text = self._decoder.decode(chunk)
                if text:
                    self._queue.put_nowait(text)
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._queue.put_nowait(tail)
        except FanlinkError as exc:
            logger.debug("text_stream_pump_failed", error=str(exc))
            self._queue.put_nowait(exc)
        except Exception as exc:
            logger.warning("text_stream_pump_crashed", error=str(exc), kind=type(exc).__name__)
            error = PortUnreadable(f"Serial read failed: {exc}")
            error.__cause__ = exc
            self._queue.put_nowait(error)
        finally:
            self._queue.put_nowait(_EOF)

    async def read(self) -> str | None:
        """Return the next text chunk, or None at end of stream."""
        if self._released:
            return None
        item = await self._queue.get()
        if item is _EOF:
            self._queue.put_nowait(_EOF)
            return None
        if isinstance(item, BaseException):
            raise item
        return item

    def cancel(self) -> None:
        """Stop the pump and wake any pending ``read`` with end of stream."""
        self._source.cancel()
        self._queue.put_nowait(_EOF)

    def release(self) -> None:
        self._released = True
        self.cancel()

    async def wait_closed(self) -> None:
        if self._pump_task is not None:
            await self._pump_task
