"""WebSocket client for a single Nostr relay subscription."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from pynostr.filters import FiltersList
from websockets.asyncio.client import ClientConnection

from bullhorn.relay.models import (
    InvalidEventError,
    RawEvent,
    build_close_message,
    build_req_message,
)

logger = logging.getLogger(__name__)

# Constants
DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_OPEN_TIMEOUT = 10  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 300  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
DEFAULT_STABLE_CONNECTION_SECONDS = 60


class ConnectionState(Enum):
    """Relay connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class ConnectionStats:
    """Statistics about a relay subscription."""

    events_received: int = 0
    invalid_events: int = 0
    reconnect_count: int = 0
    stored_events_done: bool = False
    last_event_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class RelayError(Exception):
    """Base exception for relay errors."""


class RelayConnectionError(RelayError):
    """Raised when connecting to a relay fails."""


EventCallback = Callable[[RawEvent], Awaitable[None]]
StateCallback = Callable[[str, ConnectionState], Awaitable[None]]


class RelayConnection:
    """Maintains one subscription on one relay.

    The connection sends a ``REQ`` with the configured filters every time it
    (re)connects, so a relay may replay events it already delivered. Failures
    are never fatal: the connection retries with exponential backoff until
    ``stop()`` is called.

    Example:
        >>> async def on_event(event: RawEvent):
        ...     print(event.id)
        ...
        >>> conn = RelayConnection("wss://nos.lol", filters, on_event)
        >>> await conn.start()  # Blocks until stop() is called
    """

    def __init__(
        self,
        url: str,
        filters: FiltersList,
        on_event: EventCallback,
        *,
        on_state_change: StateCallback | None = None,
        subscription_id: str | None = None,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        max_reconnect_delay: float = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: float = DEFAULT_INITIAL_RECONNECT_DELAY,
        verify_event_ids: bool = True,
        stable_connection_seconds: float = DEFAULT_STABLE_CONNECTION_SECONDS,
    ) -> None:
        """Initialize the relay connection.

        Args:
            url: Relay websocket URL.
            filters: Filters sent with every REQ.
            on_event: Async callback invoked for each accepted event.
            on_state_change: Optional callback for connection state changes.
            subscription_id: Subscription id, random if not given.
            ping_interval: Seconds between heartbeat pings.
            open_timeout: Seconds to wait for the websocket handshake.
            max_reconnect_delay: Upper bound for the reconnection backoff.
            initial_reconnect_delay: First reconnection delay.
            verify_event_ids: Drop events whose id does not match their content.
            stable_connection_seconds: Uptime after which a dropped connection
                reconnects from the initial delay again.
        """
        self._url = url
        self._filters = FiltersList(filters)
        self._on_event = on_event
        self._on_state_change = on_state_change
        self._subscription_id = subscription_id or f"bullhorn-{uuid.uuid4().hex[:12]}"
        self._ping_interval = ping_interval
        self._open_timeout = open_timeout
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay
        self._verify_event_ids = verify_event_ids
        self._stable_connection_seconds = stable_connection_seconds
        self._reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = ConnectionStats()
        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def url(self) -> str:
        """Relay URL."""
        return self._url

    @property
    def subscription_id(self) -> str:
        """Id of the REQ subscription."""
        return self._subscription_id

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def stats(self) -> ConnectionStats:
        """Subscription statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Whether start() is active."""
        return self._running

    async def _set_state(self, new_state: ConnectionState) -> None:
        """Update state and notify callback."""
        if self._state != new_state:
            old_state = self._state
            self._state = new_state
            logger.debug("%s: %s -> %s", self._url, old_state.value, new_state.value)

            if self._on_state_change:
                try:
                    await self._on_state_change(self._url, new_state)
                except Exception as e:
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        """Open the websocket and send the subscription."""
        await self._set_state(ConnectionState.CONNECTING)

        try:
            ws = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
                open_timeout=self._open_timeout,
            )
            await ws.send(build_req_message(self._subscription_id, self._filters))
        except Exception as e:
            self._stats.last_error = str(e)
            raise RelayConnectionError(f"Failed to connect to {self._url}: {e}") from e

        logger.info("Connected to %s (subscription %s)", self._url, self._subscription_id)
        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        return ws

    async def _handle_message(self, message: str) -> None:
        """Parse and process an incoming relay frame."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.warning("%s: invalid JSON frame: %s", self._url, e)
            return

        if not isinstance(data, list) or not data:
            logger.warning("%s: unexpected frame: %.200s", self._url, message)
            return

        msg_type = data[0]
        if msg_type == "EVENT":
            await self._handle_event(data)
        elif msg_type == "EOSE":
            self._stats.stored_events_done = True
            logger.debug("%s: end of stored events", self._url)
        elif msg_type == "NOTICE":
            logger.warning("%s: notice: %s", self._url, data[1] if len(data) > 1 else "")
        elif msg_type == "CLOSED":
            reason = data[2] if len(data) > 2 else ""
            logger.warning("%s: subscription closed by relay: %s", self._url, reason)
            if self._ws is not None:
                await self._ws.close()
        else:
            logger.debug("%s: ignoring %s frame", self._url, msg_type)

    async def _handle_event(self, data: list[Any]) -> None:
        if len(data) < 3 or not isinstance(data[2], dict):
            logger.warning("%s: malformed EVENT frame", self._url)
            return
        if data[1] != self._subscription_id:
            logger.debug("%s: event for unknown subscription %s", self._url, data[1])
            return

        try:
            event = RawEvent.from_dict(data[2])
        except InvalidEventError as e:
            self._stats.invalid_events += 1
            logger.warning("%s: %s", self._url, e)
            return

        if self._verify_event_ids and not event.has_valid_id():
            self._stats.invalid_events += 1
            logger.warning("%s: dropping event with mismatched id %s", self._url, event.id)
            return

        self._stats.events_received += 1
        self._stats.last_event_time = time.time()
        logger.debug("%s: event %s kind=%d", self._url, event.id, event.kind)

        try:
            await self._on_event(event)
        except Exception as e:
            logger.error("Error in event callback: %s", e)

    async def _listen(self, ws: ClientConnection) -> None:
        """Listen for frames on the websocket."""
        async for message in ws:
            if not self._running:
                break

            if isinstance(message, str):
                await self._handle_message(message)
            else:
                logger.debug("Received binary message (%d bytes)", len(message))

    async def _sleep(self, delay: float) -> bool:
        """Sleep unless stopped first. Returns False if stopped."""
        if self._stop_event is None:
            return False
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        return self._running

    def _was_stable(self) -> bool:
        """Whether the last connection stayed up long enough to reset backoff."""
        connected_since = self._stats.connected_since
        if connected_since is None:
            return False
        return time.time() - connected_since >= self._stable_connection_seconds

    async def _reconnect_loop(self, *, first_attempt: bool = False) -> ClientConnection | None:
        """Connect with exponential backoff.

        The delay carries over between calls, so a relay that accepts the
        connection and drops it straight away is not retried at the initial
        rate forever.

        Returns:
            The open connection, or None if stopped first.
        """
        if first_attempt:
            try:
                return await self._connect()
            except RelayConnectionError as e:
                logger.warning("%s", e)

        while self._running:
            delay = self._reconnect_delay
            await self._set_state(ConnectionState.RECONNECTING)
            logger.info("Reconnecting to %s in %.1f seconds...", self._url, delay)
            if not await self._sleep(delay):
                return None
            self._reconnect_delay = min(delay * 2, self._max_reconnect_delay)

            try:
                ws = await self._connect()
            except RelayConnectionError as e:
                logger.warning("%s", e)
                continue

            self._stats.reconnect_count += 1
            return ws

        return None

    async def start(self) -> None:
        """Connect and stream events until stop() is called.

        Never raises for connection failures; they are retried forever.
        """
        if self._running:
            logger.warning("Connection to %s already running", self._url)
            return

        self._running = True
        self._stop_event = asyncio.Event()
        first_attempt = True

        try:
            while self._running:
                self._ws = await self._reconnect_loop(first_attempt=first_attempt)
                first_attempt = False
                if self._ws is None:
                    break

                try:
                    await self._listen(self._ws)
                except Exception as e:
                    if not self._running:
                        break
                    self._stats.last_error = str(e)
                    logger.warning("Connection to %s lost: %s", self._url, e)
                else:
                    if not self._running:
                        break
                    logger.warning("Connection to %s closed", self._url)

                if self._was_stable():
                    self._reconnect_delay = self._initial_reconnect_delay

                await self._close_ws()
                await self._set_state(ConnectionState.DISCONNECTED)
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Close the subscription and the websocket."""
        if not self._running:
            return

        logger.info("Stopping relay connection %s", self._url)
        self._running = False

        if self._stop_event:
            self._stop_event.set()

        if self._ws is not None and self._state == ConnectionState.CONNECTED:
            with contextlib.suppress(Exception):
                await self._ws.send(build_close_message(self._subscription_id))

        await self._cleanup()

    async def _close_ws(self) -> None:
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug("Error closing WebSocket: %s", e)
            finally:
                self._ws = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        await self._close_ws()
        await self._set_state(ConnectionState.DISCONNECTED)

    async def __aenter__(self) -> RelayConnection:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
