"""Unit tests for the per-key debouncer.

Timers are captured by a fake ``call_later`` and fired by hand, so no test
depends on wall-clock sleeps except the single real-loop smoke test.
"""

from __future__ import annotations

import asyncio

import pytest

from app.services.pipeline.debounce import DebounceScheduler


class _FakeTimer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        assert not self.cancelled, "cancelled timer fired"
        self.callback(*self.args)


class _FakeLoop:
    def __init__(self):
        self.timers: list[_FakeTimer] = []

    def call_later(self, delay, callback, *args):
        timer = _FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer


class TestDebounceScheduler:
    def setup_method(self):
        self.loop = _FakeLoop()
        self.debouncer = DebounceScheduler(window_seconds=3.0, call_later=self.loop.call_later)
        self.calls: list[str] = []

    def _run(self, label: str):
        async def run():
            self.calls.append(label)

        return run

    @pytest.mark.asyncio
    async def test_only_last_call_in_window_runs(self):
        self.debouncer.schedule("thread-1", self._run("first"))
        self.debouncer.schedule("thread-1", self._run("second"))
        self.debouncer.schedule("thread-1", self._run("third"))

        assert [t.cancelled for t in self.loop.timers] == [True, True, False]
        assert self.debouncer.pending_count == 1

        self.loop.timers[-1].fire()
        await self.debouncer.wait_idle()

        assert self.calls == ["third"]
        assert self.debouncer.pending_count == 0

    @pytest.mark.asyncio
    async def test_uses_configured_window(self):
        self.debouncer.schedule("k", self._run("x"))
        assert self.loop.timers[0].delay == 3.0

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        self.debouncer.schedule("thread-1", self._run("a"))
        self.debouncer.schedule("thread-2", self._run("b"))

        assert self.debouncer.is_pending("thread-1")
        assert self.debouncer.is_pending("thread-2")

        for timer in self.loop.timers:
            timer.fire()
        await self.debouncer.wait_idle()

        assert sorted(self.calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_fired_key_is_removed_before_run_starts(self):
        seen_pending: list[bool] = []

        async def run():
            seen_pending.append(self.debouncer.is_pending("k"))

        self.debouncer.schedule("k", run)
        self.loop.timers[0].fire()
        await self.debouncer.wait_idle()

        assert seen_pending == [False]

    @pytest.mark.asyncio
    async def test_cancel_pending_run(self):
        self.debouncer.schedule("k", self._run("x"))

        assert self.debouncer.cancel("k") is True
        assert self.loop.timers[0].cancelled
        assert self.debouncer.cancel("k") is False

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        self.debouncer.schedule("a", self._run("a"))
        self.debouncer.schedule("b", self._run("b"))

        self.debouncer.cancel_all()

        assert self.debouncer.pending_count == 0
        assert all(t.cancelled for t in self.loop.timers)

    @pytest.mark.asyncio
    async def test_failed_run_is_logged_and_discarded(self, caplog):
        async def boom():
            raise RuntimeError("pipeline exploded")

        self.debouncer.schedule("k", boom)
        self.loop.timers[0].fire()
        await self.debouncer.wait_idle()

        assert self.debouncer.running_count == 0
        assert "Debounced run failed" in caplog.text


@pytest.mark.asyncio
async def test_real_event_loop_timer_fires():
    debouncer = DebounceScheduler(window_seconds=0.01)
    done = asyncio.Event()

    async def run():
        done.set()

    debouncer.schedule("k", run)
    await asyncio.wait_for(done.wait(), timeout=1.0)
    await debouncer.wait_idle()

    assert not debouncer.is_pending("k")
