"""Relay pool merging several relay subscriptions into one event stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from pynostr.filters import FiltersList

from bullhorn.relay.connection import ConnectionState, EventCallback, RelayConnection, StateCallback
from bullhorn.relay.models import RawEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 300

_DOWN_STATES = frozenset({ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING})

ConnectionFactory = Callable[..., RelayConnection]


class RelayPool:
    """Runs one RelayConnection task per relay and exposes their events.

    Every connection pushes into a shared bounded queue; ``events()`` drains
    it. The same event usually arrives once per relay, so consumers must
    de-duplicate.

    Example:
        ```python
        pool = RelayPool(["wss://nos.lol", "wss://relay.damus.io"], filters)
        await pool.start()
        async for event in pool.events():
            ...
        ```
    """

    def __init__(
        self,
        urls: Sequence[str],
        filters: FiltersList,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        connection_factory: ConnectionFactory = RelayConnection,
        **connection_options: Any,
    ) -> None:
        """Initialize the pool.

        Args:
            urls: Relay URLs, one connection each.
            filters: Filters for every subscription.
            queue_size: Capacity of the shared event queue.
            connection_factory: Callable building a RelayConnection.
            **connection_options: Extra keyword arguments for each connection.
        """
        if not urls:
            raise ValueError("At least one relay URL is required")

        self._queue: asyncio.Queue[RawEvent | None] = asyncio.Queue(maxsize=queue_size)
        self._states: dict[str, ConnectionState] = {}
        self._connections: list[RelayConnection] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._all_down = False

        on_event: EventCallback = self._enqueue
        on_state_change: StateCallback = self._on_state_change
        for url in dict.fromkeys(urls):
            self._states[url] = ConnectionState.DISCONNECTED
            self._connections.append(
                connection_factory(
                    url,
                    filters,
                    on_event,
                    on_state_change=on_state_change,
                    **connection_options,
                )
            )

    @property
    def connections(self) -> list[RelayConnection]:
        """Connections managed by this pool."""
        return list(self._connections)

    @property
    def states(self) -> dict[str, ConnectionState]:
        """Last known state per relay URL."""
        return dict(self._states)

    @property
    def connected_count(self) -> int:
        """Number of relays currently connected."""
        return sum(1 for s in self._states.values() if s == ConnectionState.CONNECTED)

    @property
    def all_down(self) -> bool:
        """True while every relay is failing."""
        return self._all_down

    async def _enqueue(self, event: RawEvent) -> None:
        await self._queue.put(event)

    async def _on_state_change(self, url: str, state: ConnectionState) -> None:
        self._states[url] = state

        if state == ConnectionState.CONNECTED:
            if self._all_down:
                logger.info("Relay connectivity restored via %s", url)
            self._all_down = False
            return

        if (
            self._running
            and not self._all_down
            and all(s in _DOWN_STATES for s in self._states.values())
        ):
            self._all_down = True
            logger.warning(
                "All %d relays are unreachable; still retrying", len(self._states)
            )

    async def start(self) -> None:
        """Start one task per relay. Returns immediately."""
        if self._running:
            logger.warning("Relay pool already running")
            return

        self._running = True
        for conn in self._connections:
            self._tasks.append(asyncio.create_task(conn.start(), name=f"relay:{conn.url}"))
        logger.info("Relay pool started with %d relays", len(self._connections))

    async def stop(self) -> None:
        """Stop every connection and end the event stream."""
        if not self._running:
            return

        self._running = False
        await asyncio.gather(*(conn.stop() for conn in self._connections), return_exceptions=True)

        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        # Unconsumed events were never marked seen, so dropping them is safe.
        while True:
            try:
                self._queue.put_nowait(None)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()
        logger.info("Relay pool stopped")

    async def events(self) -> AsyncIterator[RawEvent]:
        """Yield events from every relay until the pool is stopped."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
