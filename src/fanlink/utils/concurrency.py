"""Async coordination helpers."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable


class SingleFlight:
    """Run-once guard for an async operation.

    The first caller starts the operation; every caller that arrives while it
    is still running awaits that same execution and receives its result.
    Once it completes, the next call starts a fresh execution.

    The shared execution is shielded, so cancelling one waiting caller does
    not abort the work the others are waiting on.
    """

    def __init__(self, func: Callable[[], Awaitable[Any]]) -> None:
        self._func = func
        self._task: asyncio.Future | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def __call__(self) -> Any:
        # No await between the check and the assignment: the event loop cannot
        # interleave another caller here.
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._task)

    async def _run(self) -> Any:
        try:
            return await self._func()
        finally:
            self._task = None
