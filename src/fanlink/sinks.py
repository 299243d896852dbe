"""User-facing status output.

Both sessions report progress through a ``LogSink``. It is the console a
person watches, not the diagnostic log (see ``fanlink.utils.logging``).
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

import click


@runtime_checkable
class LogSink(Protocol):
    """Line-oriented status output."""

    def append_line(self, text: str, *, emphasis: bool = False) -> None:
        """Append ``text`` as a complete line."""
        ...

    def append_raw(self, text: str) -> None:
        """Append ``text`` with no implicit newline."""
        ...


class ConsoleLogSink:
    """LogSink writing to the terminal with click.

    The stream is bound at construction, so output still reaches the terminal
    while esptool has ``sys.stdout`` redirected into this sink.
    """

    def __init__(self, err: bool = False) -> None:
        self._stream = click.get_text_stream("stderr" if err else "stdout")
        self._lock = threading.Lock()
        self._mid_line = False

    def append_line(self, text: str, *, emphasis: bool = False) -> None:
        if emphasis:
            text = click.style(text, fg="yellow", bold=True)
        with self._lock:
            if self._mid_line:
                click.echo(file=self._stream)
                self._mid_line = False
            click.echo(text, file=self._stream)

    def append_raw(self, text: str) -> None:
        with self._lock:
            click.echo(text, nl=False, file=self._stream)
            self._mid_line = not text.endswith("\n")


class BufferLogSink:
    """LogSink keeping every line in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._partial = ""
        self.emphasized: list[str] = []

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def append_line(self, text: str, *, emphasis: bool = False) -> None:
        with self._lock:
            if self._partial:
                self._lines.append(self._partial)
                self._partial = ""
            self._lines.append(text)
            if emphasis:
                self.emphasized.append(text)

    def append_raw(self, text: str) -> None:
        with self._lock:
            self._partial += text
            *complete, self._partial = self._partial.split("\n")
            self._lines.extend(complete)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self._partial = ""
            self.emphasized.clear()
