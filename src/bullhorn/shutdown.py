"""Signal handling and shutdown coordination for the watcher.

Usage:
    ```python
    async def main():
        async with GracefulShutdown() as shutdown:
            pipeline = Pipeline(settings, on_fatal=shutdown.request_shutdown)
            await pipeline.start()
            await shutdown.wait()
            await pipeline.stop()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class GracefulShutdown:
    """Traps SIGTERM and SIGINT and exposes them as an awaitable event.

    The first signal asks the application to stop; a second one exits the
    process immediately. Cleanup callbacks, sync or async, run on exit from
    the context manager in registration order.
    """

    def __init__(self) -> None:
        self._shutdown_event: asyncio.Event | None = None
        self._shutdown_requested = False
        self._force_exit_requested = False
        self._signal_received: signal.Signals | None = None
        self._original_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[Callable[[], Any]] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    @property
    def is_force_exit_requested(self) -> bool:
        """Check if a second signal was received."""
        return self._force_exit_requested

    @property
    def signal_received(self) -> signal.Signals | None:
        """The signal that started shutdown, if any."""
        return self._signal_received

    def register_cleanup(self, callback: Callable[[], Any]) -> None:
        """Register a callable (sync or async) to run during shutdown."""
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request shutdown from application code."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested")
            if self._shutdown_event:
                self._shutdown_event.set()

    async def wait(self) -> None:
        """Block until a signal arrives or request_shutdown() is called."""
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        if self._shutdown_requested:
            self._shutdown_event.set()

        await self._shutdown_event.wait()

    def install_signal_handlers(self) -> None:
        """Install handlers for SIGTERM and SIGINT.

        Uses the event loop where it supports signal handlers and falls back
        to ``signal.signal`` where it does not (Windows).
        """
        self._loop = asyncio.get_running_loop()
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()

        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                self._original_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
            except (ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)
                continue
            logger.debug("Installed handler for %s", sig.name)

    def remove_signal_handlers(self) -> None:
        """Remove installed signal handlers and restore originals."""
        if self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                if sig not in self._original_handlers:
                    with suppress(ValueError, OSError, NotImplementedError):
                        self._loop.remove_signal_handler(sig)

        for sig, original in self._original_handlers.items():
            with suppress(ValueError, OSError):
                signal.signal(sig, original)
        self._original_handlers.clear()
        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            self._force_exit_requested = True
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)

        self._shutdown_requested = True
        self._signal_received = sig
        logger.info("Received %s - initiating graceful shutdown...", sig.name)
        if self._shutdown_event:
            self._shutdown_event.set()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def run_cleanup_callbacks(self) -> None:
        """Run all registered cleanup callbacks, logging any that fail."""
        for callback in self._cleanup_callbacks:
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
