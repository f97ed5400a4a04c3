"""Event pipeline wiring relays, de-duplication and delivery together.

Every event goes through the same steps in the same order: mark seen,
classify, build, dispatch. Marking comes first so a crash or a duplicate
delivery can lose a notification but never repeat one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from bullhorn.alerter.builder import NotificationBuilder
from bullhorn.alerter.channels.console import ConsoleChannel
from bullhorn.alerter.channels.ntfy import NtfyChannel
from bullhorn.alerter.dispatcher import NotificationChannel, NotificationDispatcher
from bullhorn.relay.pool import RelayPool
from bullhorn.storage.seen import SeenEventStore, StoreError
from bullhorn.topic import load_or_create_topic
from bullhorn.watcher.classifier import EventClassifier, build_filters

if TYPE_CHECKING:
    from bullhorn.alerter.models import Notification
    from bullhorn.config import Settings
    from bullhorn.relay.models import RawEvent

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    """Counters for the pipeline."""

    events_received: int = 0
    notifications_built: int = 0
    notifications_delivered: int = 0
    notifications_dropped: int = 0


def resolve_topic(settings: Settings) -> str:
    """The configured ntfy topic, or the persisted generated one."""
    return settings.ntfy.topic or load_or_create_topic(settings.ntfy.topic_file)


def build_channels(settings: Settings, *, dry_run: bool = False) -> list[NotificationChannel]:
    """Create the delivery channels enabled in settings.

    Args:
        settings: Application settings.
        dry_run: Skip channels that publish outside this process.
    """
    channels: list[NotificationChannel] = []

    if settings.console.enabled or dry_run:
        channels.append(ConsoleChannel(show_codes=settings.console.show_codes))

    if settings.ntfy.enabled and not dry_run:
        channels.append(
            NtfyChannel(
                resolve_topic(settings),
                server=settings.ntfy.server,
                timeout=settings.ntfy.timeout,
            )
        )

    if not channels:
        logger.warning("No notification channels enabled")
    return channels


class Pipeline:
    """Runs the relay pool and processes its events until stopped.

    Example:
        ```python
        pipeline = Pipeline(settings)
        await pipeline.start()
        ...
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        *,
        dry_run: bool = False,
        store: SeenEventStore | None = None,
        pool: RelayPool | None = None,
        builder: NotificationBuilder | None = None,
        dispatcher: NotificationDispatcher | None = None,
        on_fatal: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings.
            dry_run: Print notifications instead of publishing them.
            store: Seen-event store, created from settings if not given.
            pool: Relay pool, created from settings if not given.
            builder: Notification builder.
            dispatcher: Notification dispatcher, created from settings if not given.
            on_fatal: Called when the pipeline cannot continue.
            clock: Returns the current unix time.
        """
        self.settings = settings
        self.dry_run = dry_run
        self.watch = settings.watch_config()
        self._on_fatal = on_fatal
        self._shutdown_timeout = settings.shutdown_timeout

        self.store = store or SeenEventStore(
            settings.storage.path, echo=settings.storage.echo_sql
        )
        self.classifier = EventClassifier(self.watch, self.store)
        self.builder = builder or NotificationBuilder(clock=clock)
        self.dispatcher = dispatcher or NotificationDispatcher(
            build_channels(settings, dry_run=dry_run),
            max_attempts=settings.dispatch.max_attempts,
            retry_delay=settings.dispatch.retry_delay,
            max_retry_delay=settings.dispatch.max_retry_delay,
            failure_threshold=settings.dispatch.failure_threshold,
            recovery_timeout_seconds=settings.dispatch.recovery_timeout_seconds,
        )
        self.pool = pool or RelayPool(
            self.watch.relay_endpoints,
            build_filters(self.watch, int(clock())),
            initial_reconnect_delay=settings.nostr.initial_reconnect_delay,
            max_reconnect_delay=settings.nostr.max_reconnect_delay,
            verify_event_ids=settings.nostr.verify_event_ids,
        )

        self.stats = PipelineStats()
        self.fatal_error: StoreError | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._dispatches: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether start() has been called and stop() has not."""
        return self._running

    @property
    def failed(self) -> bool:
        """Whether the pipeline stopped on a fatal error."""
        return self.fatal_error is not None

    @property
    def pending_dispatches(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._dispatches)

    async def start(self) -> None:
        """Open the store and start consuming relay events.

        Raises:
            StoreError: If the seen-event store cannot be opened.
        """
        if self._running:
            logger.warning("Pipeline already running")
            return

        await self.store.open()
        self._running = True
        await self.pool.start()
        self._consumer = asyncio.create_task(self._consume(), name="pipeline-consumer")
        logger.info(
            "Watching %d identities on %d relays",
            len(self.watch.interesting_identities),
            len(self.watch.relay_endpoints),
        )

    async def process(self, event: RawEvent) -> Notification | None:
        """Run one event through the pipeline.

        Returns:
            The notification scheduled for delivery, if any.

        Raises:
            StoreError: If the seen-event store fails.
        """
        classified = await self.classifier.classify(event)
        if classified is None:
            return None

        try:
            notification = self.builder.build(classified)
        except Exception:
            logger.exception("Failed to build notification for %s", event.id)
            self.stats.notifications_dropped += 1
            return None

        self.stats.notifications_built += 1
        task = asyncio.create_task(self._dispatch(notification))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)
        return notification

    async def _dispatch(self, notification: Notification) -> None:
        result = await self.dispatcher.dispatch(notification)
        if result.delivered:
            self.stats.notifications_delivered += 1
        else:
            self.stats.notifications_dropped += 1

    async def _consume(self) -> None:
        async for event in self.pool.events():
            self.stats.events_received += 1
            try:
                await self.process(event)
            except StoreError as e:
                logger.critical("Seen-event store failed, stopping: %s", e)
                self.fatal_error = e
                if self._on_fatal is not None:
                    self._on_fatal()
                return

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries, cancelling any left after timeout."""
        if not self._dispatches:
            return

        pending = set(self._dispatches)
        logger.info("Waiting for %d in-flight deliveries", len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)

        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("Abandoned %d deliveries at shutdown", len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)

    async def stop(self) -> None:
        """Stop relays, finish the current event and in-flight deliveries."""
        if not self._running:
            return

        logger.info("Stopping pipeline...")
        self._running = False
        await self.pool.stop()

        if self._consumer is not None:
            try:
                await asyncio.wait_for(self._consumer, timeout=self._shutdown_timeout)
            except TimeoutError:
                logger.warning("Event consumer did not finish in time")
            self._consumer = None

        await self.drain(timeout=self._shutdown_timeout)
        await self.store.close()
        logger.info(
            "Pipeline stopped: %d events, %d notifications delivered, %d dropped",
            self.stats.events_received,
            self.stats.notifications_delivered,
            self.stats.notifications_dropped,
        )
