"""
Periodic flushing and shutdown hooks.

The scheduler never binds to OS signals itself. It registers callbacks with a
``Lifecycle``; ``ProcessLifecycle`` is the implementation that forwards real
atexit/SIGINT/SIGTERM notifications, while the base class can be driven by
hand (tests, hosts with their own supervision).
"""

from __future__ import annotations

import asyncio
import atexit
import signal
import sys
from typing import Awaitable, Callable, Literal, Optional

from loguru import logger

from .batcher import TelemetryBatchProcessor
from .buffer import RecordBuffer

LifecycleEvent = Literal["exit", "SIGINT", "SIGTERM"]
LifecycleCallback = Callable[[LifecycleEvent], Awaitable[None]]

SHUTDOWN_EVENTS: tuple[LifecycleEvent, ...] = ("exit", "SIGINT", "SIGTERM")


class Lifecycle:
    """Registry of shutdown callbacks.

    ``emit`` awaits callbacks in registration order. A failing callback is
    logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[LifecycleCallback]] = {e: [] for e in SHUTDOWN_EVENTS}
        self.exit_code: Optional[int] = None

    def on(self, event: LifecycleEvent, callback: LifecycleCallback) -> None:
        subs = self._callbacks[event]
        if callback not in subs:
            subs.append(callback)
            logger.debug(f"Lifecycle callback added for {event} (total: {len(subs)})")

    def off(self, event: LifecycleEvent, callback: LifecycleCallback) -> None:
        try:
            self._callbacks[event].remove(callback)
        except ValueError:
            pass

    def listeners(self, event: LifecycleEvent) -> int:
        return len(self._callbacks[event])

    async def emit(self, event: LifecycleEvent) -> None:
        for callback in list(self._callbacks[event]):
            try:
                await callback(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Lifecycle callback for {event} failed: {type(exc).__name__}: {exc}")

    def exit(self, code: int = 0) -> None:
        """Let the process terminate. The base class only records the request."""
        self.exit_code = code


class ProcessLifecycle(Lifecycle):
    """Lifecycle wired to the real interpreter: atexit plus SIGINT/SIGTERM.

    Call ``install()`` from inside the running event loop.
    """

    def __init__(self) -> None:
        super().__init__()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed = False
        self._signals: list[signal.Signals] = []

    def install(self) -> None:
        if self._installed:
            return
        self._loop = asyncio.get_running_loop()
        atexit.register(self._on_exit)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig.name)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows / non-main thread: fall back to atexit only
                logger.debug(f"Signal handlers unavailable for {sig.name}")
        self._installed = True

    def uninstall(self) -> None:
        """Remove the atexit and signal handlers added by ``install``."""
        if not self._installed:
            return
        atexit.unregister(self._on_exit)
        if self._loop is not None and not self._loop.is_closed():
            for sig in self._signals:
                self._loop.remove_signal_handler(sig)
        self._signals.clear()
        self._loop = None
        self._installed = False

    def exit(self, code: int = 0) -> None:
        super().exit(code)
        sys.exit(code)

    def _on_signal(self, name: str) -> None:
        if self._loop is None:
            return
        self._loop.create_task(self.emit(name))  # type: ignore[arg-type]

    def _on_exit(self) -> None:
        try:
            asyncio.run(self.emit("exit"))
        except Exception as exc:
            logger.error(f"Exit-time flush failed: {type(exc).__name__}: {exc}")


class FlushScheduler:
    """
    Drives a TelemetryBatchProcessor from a timer and from shutdown hooks.

    Every ``flush_interval_sec`` the scheduler drains the RecordBuffer (if
    any) and flushes it. On ``exit`` it flushes once more; on ``SIGINT`` and
    ``SIGTERM`` it flushes and then calls ``lifecycle.exit(0)``.

    ``stop()`` only prevents future ticks: a flush already running is awaited,
    never cancelled.
    """

    def __init__(
        self,
        processor: TelemetryBatchProcessor,
        buffer: Optional[RecordBuffer] = None,
        *,
        lifecycle: Optional[Lifecycle] = None,
        flush_interval: Optional[float] = None,
    ):
        self._processor = processor
        self._buffer = buffer
        self._lifecycle = lifecycle if lifecycle is not None else ProcessLifecycle()
        self._interval = flush_interval or processor.settings.flush_interval_sec
        self._task: Optional[asyncio.Task] = None
        self._stop_evt = asyncio.Event()
        self._hooks_registered = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def lifecycle(self) -> Lifecycle:
        return self._lifecycle

    def start(self) -> None:
        """Schedule the timer and register shutdown hooks. No-op when telemetry is inactive."""
        try:
            if not self._processor.is_active():
                logger.debug("Telemetry inactive; scheduler not started")
                return
            if self.running:
                return
            loop = asyncio.get_running_loop()
            self._stop_evt = asyncio.Event()
            self._task = loop.create_task(self._run())
            self._register_hooks()
            logger.info(f"Telemetry flush scheduler started (interval={self._interval}s)")
        except Exception:
            logger.exception("Failed to start telemetry scheduler")

    async def stop(self) -> None:
        """Cancel future ticks; wait for an in-flight flush to finish."""
        try:
            self._unregister_hooks()
            if self._task is None:
                return
            self._stop_evt.set()
            task, self._task = self._task, None
            await task
            logger.info("Telemetry flush scheduler stopped")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to stop telemetry scheduler")

    async def flush_pending(self) -> None:
        """Drain the buffer (if any) and flush it, along with any dead letters."""
        if self._buffer is None:
            await self._processor.flush()
            return
        pending = self._buffer.drain()
        await self._processor.flush(pending.events, pending.snapshots, pending.mutations)

    # --------------- internals

    async def _run(self) -> None:
        while not self._stop_evt.is_set():
            try:
                await asyncio.wait_for(self._stop_evt.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                logger.debug("Scheduled telemetry flush")
                await self.flush_pending()

    def _register_hooks(self) -> None:
        if self._hooks_registered:
            return
        for event in SHUTDOWN_EVENTS:
            self._lifecycle.on(event, self._on_shutdown)
        if isinstance(self._lifecycle, ProcessLifecycle):
            self._lifecycle.install()
        self._hooks_registered = True

    def _unregister_hooks(self) -> None:
        if not self._hooks_registered:
            return
        for event in SHUTDOWN_EVENTS:
            self._lifecycle.off(event, self._on_shutdown)
        if isinstance(self._lifecycle, ProcessLifecycle):
            self._lifecycle.uninstall()
        self._hooks_registered = False

    async def _on_shutdown(self, event: LifecycleEvent) -> None:
        logger.debug(f"Shutdown hook {event}: flushing telemetry")
        await self.flush_pending()
        if event != "exit":
            self._lifecycle.exit(0)
