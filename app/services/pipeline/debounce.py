"""
Per-key trailing-edge debouncer on the asyncio event loop.

Each ``schedule`` call for a key cancels the key's pending timer and starts
a new one; only the last call inside the window runs. Timers are loop
callbacks, not sleeping tasks. Entries are removed when a timer fires or is
superseded, so the map only holds keys with a pending run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[..., TimerHandle]


class DebounceScheduler:
    """Trailing-edge debounce keyed by e.g. thread id."""

    def __init__(self, window_seconds: float = 3.0, call_later: CallLater | None = None):
        self.window_seconds = window_seconds
        self._call_later = call_later
        self._pending: dict[Hashable, TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def schedule(self, key: Hashable, run: Callable[[], Awaitable[Any]]) -> None:
        """Run ``run()`` after the window unless ``key`` is scheduled again first."""
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous.cancel()
            logger.debug(f"[debounce] Superseded pending run for {key}")

        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._pending[key] = call_later(self.window_seconds, self._fire, key, run)

    def _fire(self, key: Hashable, run: Callable[[], Awaitable[Any]]) -> None:
        self._pending.pop(key, None)
        task = asyncio.ensure_future(run())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[debounce] Debounced run failed", exc_info=task.exception())

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def running_count(self) -> int:
        return len(self._tasks)

    def cancel(self, key: Hashable) -> bool:
        """Cancel a pending (not yet started) run. Returns True if one was pending."""
        handle = self._pending.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending timer (shutdown). Started runs are left to finish."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    async def wait_idle(self) -> None:
        """Wait for every started run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
