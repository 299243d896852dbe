"""Keystroke to serial payload mapping."""

from __future__ import annotations

from dataclasses import dataclass

SPECIAL_KEYS: dict[str, str] = {
    "Enter": "\r",
    "Backspace": "\x08",
    "Tab": "\t",
    "Escape": "\x1b",
}


@dataclass(frozen=True)
class KeyEvent:
    """A key press forwarded by the presentation layer.

    ``key`` uses DOM-style names: a single character for printable keys,
    otherwise a name such as ``Enter`` or ``ArrowUp``.
    """
    key: str
    ctrl: bool = False
    alt: bool = False
    meta: bool = False
    target_editable: bool = False

    @property
    def has_modifier(self) -> bool:
        return self.ctrl or self.alt or self.meta


def map_key(event: KeyEvent) -> str | None:
    """Return the text to send for ``event``, or None to ignore it."""
    if event.target_editable or event.has_modifier:
        return None
    if event.key in SPECIAL_KEYS:
        return SPECIAL_KEYS[event.key]
    if len(event.key) == 1:
        return event.key
    return None
