"""Event filter and classifier.

Decides, for every event delivered by the relay pool, whether it is new and
in scope and which notification it becomes. Out-of-scope events are common
(relays do not always honour filters) and are dropped without error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pynostr.filters import Filters, FiltersList

from bullhorn.alerter.models import NotificationKind
from bullhorn.relay.models import EventKind, RawEvent
from bullhorn.watcher.models import ClassifiedEvent, RecipientRule, WatchConfig
from bullhorn.watcher.payloads import parse_payload

if TYPE_CHECKING:
    from bullhorn.storage.seen import SeenEventStore

logger = logging.getLogger(__name__)

# Live events are long-lived; look back a day so a stream that is already
# announced when bullhorn starts is still reported.
LIVE_EVENT_LOOKBACK_SECONDS = 24 * 60 * 60


@dataclass
class ClassifierStats:
    """Counters for classification outcomes."""

    duplicates: int = 0
    out_of_scope: int = 0
    classified: int = 0


class EventClassifier:
    """Marks events seen and classifies the in-scope ones.

    The seen mark happens before classification so that an id is handled
    at most once no matter how many relays deliver it.
    """

    def __init__(self, watch: WatchConfig, store: SeenEventStore) -> None:
        """Initialize the classifier.

        Args:
            watch: Identities to watch.
            store: Seen-event store used for de-duplication.
        """
        self.watch = watch
        self.store = store
        self.stats = ClassifierStats()

    async def classify(self, event: RawEvent) -> ClassifiedEvent | None:
        """Classify a raw event.

        Args:
            event: Event received from a relay.

        Returns:
            The classified event, or None if it was already seen or is out
            of scope.

        Raises:
            StoreError: If the seen-event store fails.
        """
        if not await self.store.try_mark_seen(event.id, event.kind):
            self.stats.duplicates += 1
            return None

        kind = self.match(event)
        if kind is None:
            self.stats.out_of_scope += 1
            logger.debug("Event %s (kind %d) is out of scope", event.id, event.kind)
            return None

        payload = parse_payload(event)
        if payload is None:
            self.stats.out_of_scope += 1
            return None

        self.stats.classified += 1
        logger.info("Event %s classified as %s", event.id, kind.value)
        return ClassifiedEvent(kind=kind, event=event, payload=payload)

    def match(self, event: RawEvent) -> NotificationKind | None:
        """Decide which notification an event maps to, ignoring seen state."""
        if event.kind == EventKind.LIVE_EVENT:
            if event.author in self.watch.interesting_identities:
                return NotificationKind.LIVE_EVENT_STARTED
            return None

        if event.kind == EventKind.ZAP_RECEIPT:
            if self._is_payment_to_primary(event):
                return NotificationKind.PAYMENT_RECEIVED
            return None

        return None

    def _is_payment_to_primary(self, event: RawEvent) -> bool:
        primary = self.watch.primary_identity
        rule = self.watch.payment_recipient_rule

        by_author = event.author == primary
        by_tag = event.tag_value("p") == primary

        if rule == RecipientRule.AUTHOR:
            return by_author
        if rule == RecipientRule.TAGGED:
            return by_tag
        return by_author or by_tag


def build_filters(watch: WatchConfig, now: int) -> FiltersList:
    """Build the relay-side filters for a watch configuration.

    Args:
        watch: Identities to watch.
        now: Current unix time, the start of the zap window.
    """
    filters = FiltersList(
        [
            Filters(
                kinds=[int(EventKind.LIVE_EVENT)],
                authors=sorted(watch.interesting_identities),
                since=now - LIVE_EVENT_LOOKBACK_SECONDS,
            )
        ]
    )

    rule = watch.payment_recipient_rule
    if rule in (RecipientRule.TAGGED, RecipientRule.EITHER):
        filters.append(
            Filters(
                kinds=[int(EventKind.ZAP_RECEIPT)],
                pubkey_refs=[watch.primary_identity],
                since=now,
            )
        )
    if rule in (RecipientRule.AUTHOR, RecipientRule.EITHER):
        filters.append(
            Filters(
                kinds=[int(EventKind.ZAP_RECEIPT)],
                authors=[watch.primary_identity],
                since=now,
            )
        )
    return filters
