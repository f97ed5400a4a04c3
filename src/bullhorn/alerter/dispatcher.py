"""Notification dispatcher for multi-channel delivery.

Delivery is at-most-once: a notification that still fails after the retry
ceiling is logged and dropped. The source event stays marked seen, so a
relay replaying it does not bring the notification back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bullhorn.alerter.models import Notification

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds


class NotificationChannel(Protocol):
    """Protocol for notification delivery channels."""

    name: str

    async def send(self, notification: Notification) -> bool:
        """Deliver once. Returns True on success."""
        ...


@dataclass
class CircuitBreakerState:
    """State for circuit breaker pattern.

    Tracks failures and manages open/closed state for a channel.
    """

    failure_count: int = 0
    last_failure_time: datetime | None = None
    is_open: bool = False
    half_open_attempts: int = 0


@dataclass
class DispatchResult:
    """Result of dispatching a notification to all channels."""

    notification_id: str
    success_count: int
    failure_count: int
    channel_results: dict[str, bool] = field(default_factory=dict)
    attempts: dict[str, int] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def all_succeeded(self) -> bool:
        """Return True if all channels succeeded."""
        return self.failure_count == 0 and self.success_count > 0

    @property
    def delivered(self) -> bool:
        """Return True if at least one channel succeeded."""
        return self.success_count > 0


class NotificationDispatcher:
    """Dispatcher for sending notifications to multiple channels.

    Each channel is tried up to ``max_attempts`` times with exponential
    backoff. A circuit breaker stops hammering a channel that keeps failing.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        failure_threshold: int = 5,
        recovery_timeout_seconds: int = 60,
        half_open_max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            channels: List of channels to dispatch to.
            max_attempts: Delivery attempts per channel per notification.
            retry_delay: Delay before the first retry.
            max_retry_delay: Upper bound for the retry delay.
            failure_threshold: Failed notifications before opening circuit.
            recovery_timeout_seconds: Time to wait before half-opening circuit.
            half_open_max_attempts: Number of test attempts in half-open state.
            sleep: Coroutine used to wait between retries.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.channels = channels
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.half_open_max_attempts = half_open_max_attempts
        self._sleep = sleep

        # Circuit breaker state per channel
        self._circuit_state: dict[str, CircuitBreakerState] = {
            ch.name: CircuitBreakerState() for ch in channels
        }

    def _should_attempt(self, channel_name: str) -> bool:
        """Check if we should attempt delivery to this channel.

        Once the recovery timeout has passed, up to ``half_open_max_attempts``
        trial deliveries are let through per recovery window.
        """
        state = self._circuit_state[channel_name]

        if not state.is_open:
            return True

        if state.last_failure_time:
            elapsed = (datetime.now(UTC) - state.last_failure_time).total_seconds()
            if (
                elapsed >= self.recovery_timeout_seconds
                and state.half_open_attempts < self.half_open_max_attempts
            ):
                state.half_open_attempts += 1
                logger.info(
                    f"Circuit half-open for {channel_name}, "
                    f"attempt {state.half_open_attempts}"
                )
                return True

        return False

    def _record_success(self, channel_name: str) -> None:
        """Record a successful delivery."""
        state = self._circuit_state[channel_name]
        if state.is_open:
            logger.info(f"Circuit closed for {channel_name}")
        state.failure_count = 0
        state.is_open = False
        state.half_open_attempts = 0
        state.last_failure_time = None

    def _record_failure(self, channel_name: str) -> None:
        """Record a failed delivery."""
        state = self._circuit_state[channel_name]
        state.failure_count += 1
        state.last_failure_time = datetime.now(UTC)

        if state.is_open:
            # Failed trial: start a new recovery window
            state.half_open_attempts = 0
            logger.warning(f"Circuit re-opened for {channel_name}")
        elif state.failure_count >= self.failure_threshold:
            state.is_open = True
            logger.warning(
                f"Circuit opened for {channel_name} after "
                f"{state.failure_count} failures"
            )

    async def _send_once(self, channel: NotificationChannel, notification: Notification) -> bool:
        try:
            return bool(await channel.send(notification))
        except Exception as e:
            logger.warning("Error sending to %s: %s", channel.name, e)
            return False

    async def _send_to_channel(
        self, channel: NotificationChannel, notification: Notification
    ) -> tuple[str, bool, int]:
        """Send to a single channel with retry and circuit breaker."""
        channel_name = channel.name

        if not self._should_attempt(channel_name):
            logger.warning(
                "Dropping notification %s for %s - circuit open",
                notification.source_event_id,
                channel_name,
            )
            return (channel_name, False, 0)

        delay = self.retry_delay
        for attempt in range(1, self.max_attempts + 1):
            if await self._send_once(channel, notification):
                self._record_success(channel_name)
                return (channel_name, True, attempt)

            if attempt < self.max_attempts:
                logger.info(
                    "Delivery to %s failed (attempt %d/%d), retrying in %.1fs",
                    channel_name,
                    attempt,
                    self.max_attempts,
                    delay,
                )
                await self._sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)

        self._record_failure(channel_name)
        logger.warning(
            "Dropping notification %s for %s after %d attempts",
            notification.source_event_id,
            channel_name,
            self.max_attempts,
        )
        return (channel_name, False, self.max_attempts)

    async def dispatch(self, notification: Notification) -> DispatchResult:
        """Dispatch a notification to all channels concurrently.

        Args:
            notification: Notification to deliver.

        Returns:
            DispatchResult with per-channel status.
        """
        if not self.channels:
            logger.warning("No channels configured for dispatch")
            return DispatchResult(
                notification_id=notification.source_event_id,
                success_count=0,
                failure_count=0,
            )

        tasks = [self._send_to_channel(ch, notification) for ch in self.channels]
        results = await asyncio.gather(*tasks)

        channel_results = {name: ok for name, ok, _ in results}
        attempts = {name: count for name, _, count in results}
        success_count = sum(1 for success in channel_results.values() if success)
        failure_count = len(channel_results) - success_count

        result = DispatchResult(
            notification_id=notification.source_event_id,
            success_count=success_count,
            failure_count=failure_count,
            channel_results=channel_results,
            attempts=attempts,
        )

        logger.info(
            "Dispatch of %s complete: %d/%d succeeded",
            notification.source_event_id,
            success_count,
            len(channel_results),
        )
        return result

    def get_circuit_status(self) -> dict[str, dict[str, object]]:
        """Get current circuit breaker status for all channels."""
        return {
            name: {
                "is_open": state.is_open,
                "failure_count": state.failure_count,
                "half_open_attempts": state.half_open_attempts,
                "last_failure": (
                    state.last_failure_time.isoformat()
                    if state.last_failure_time
                    else None
                ),
            }
            for name, state in self._circuit_state.items()
        }

    def reset_circuit(self, channel_name: str) -> bool:
        """Manually reset circuit breaker for a channel.

        Args:
            channel_name: Name of channel to reset.

        Returns:
            True if channel was found and reset.
        """
        if channel_name in self._circuit_state:
            self._circuit_state[channel_name] = CircuitBreakerState()
            logger.info(f"Circuit reset for {channel_name}")
            return True
        return False
