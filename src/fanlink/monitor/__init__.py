"""Interactive serial monitor."""

from fanlink.monitor.decoder import LineBufferedDecoder, TextStreamReader
from fanlink.monitor.keys import KeyEvent, map_key
from fanlink.monitor.session import MonitorSession, MonitorState, StopCause

__all__ = [
    "KeyEvent",
    "LineBufferedDecoder",
    "MonitorSession",
    "MonitorState",
    "StopCause",
    "TextStreamReader",
    "map_key",
]
