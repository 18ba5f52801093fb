"""Background event loop for sync passes and the debounced auto-sync trigger."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, Optional

from .engine import EngineState, SyncEngine, SyncOutcome

logger = logging.getLogger("cardcraft.sync.scheduler")

AUTO_SYNC_FLAG = "sync-enabled"


class SyncRuntime:
    """Owns an asyncio loop running in a daemon thread.

    The REPL thread submits coroutines with ``call``/``submit``; the engine and
    every remote store call live on this loop.
    """

    def __init__(self, name: str = "cardcraft-sync"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("Sync runtime not started")
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run_in_thread, daemon=True, name=self.name)
        self._thread.start()
        if not self._ready.wait(timeout=5.0):
            raise RuntimeError("Sync runtime failed to start")

    def _run_in_thread(self) -> None:
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.call_soon(self._ready.set)
            self._loop.run_forever()
        except Exception as e:
            logger.exception("Sync runtime thread error: %s", e)
        finally:
            if self._loop:
                self._loop.close()
            self._loop = None

    def submit(self, coro: Awaitable[Any]) -> "Future[Any]":
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Run ``coro`` on the runtime loop and wait for its result."""
        return self.submit(coro).result(timeout)

    def stop(self) -> None:
        if not self.running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=5.0)
        self._thread = None


class AutoSyncScheduler:
    """Collapses bursts of local edits into one silent sync pass.

    Each ``notify`` restarts a ``delay``-second timer on the runtime loop. When
    it fires, a pass runs only if ``should_run()`` holds and the engine is idle.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        engine: SyncEngine,
        delay: float,
        should_run: Callable[[], bool],
        on_outcome: Optional[Callable[[SyncOutcome], None]] = None,
    ):
        self.loop = loop
        self.engine = engine
        self.delay = delay
        self.should_run = should_run
        self.on_outcome = on_outcome
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional["asyncio.Task[Any]"] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def notify(self, *_: Any) -> None:
        """Record a local mutation; safe to call from any thread."""
        self.loop.call_soon_threadsafe(self._reschedule)

    def cancel(self) -> None:
        self.loop.call_soon_threadsafe(self._cancel_timer)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _reschedule(self) -> None:
        self._cancel_timer()
        self._handle = self.loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self.engine.state is not EngineState.IDLE:
            logger.debug("Auto-sync skipped: engine is %s", self.engine.state.value)
            return
        if not self.should_run():
            logger.debug("Auto-sync skipped: not enabled or not signed in")
            return
        self._task = self.loop.create_task(self._run())

    async def _run(self) -> None:
        outcome = await self.engine.run(silent=True)
        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception:
                logger.exception("Auto-sync outcome handler failed")


__all__ = ["AUTO_SYNC_FLAG", "AutoSyncScheduler", "SyncRuntime"]
