"""Unit tests for fanlink.monitor.keys."""

from __future__ import annotations

import pytest

from fanlink.monitor.keys import KeyEvent, map_key


class TestMapKey:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("Enter", "\r"),
            ("Backspace", "\x08"),
            ("Tab", "\t"),
            ("Escape", "\x1b"),
            ("a", "a"),
            ("Z", "Z"),
            (" ", " "),
        ],
    )
    def test_mapped_keys(self, key, expected):
        assert map_key(KeyEvent(key)) == expected

    @pytest.mark.parametrize("key", ["ArrowUp", "F5", "Shift", ""])
    def test_unmapped_keys(self, key):
        assert map_key(KeyEvent(key)) is None

    @pytest.mark.parametrize("modifier", ["ctrl", "alt", "meta"])
    def test_chords_are_ignored(self, modifier):
        assert map_key(KeyEvent("c", **{modifier: True})) is None

    def test_editable_target_is_ignored(self):
        assert map_key(KeyEvent("Enter", target_editable=True)) is None
