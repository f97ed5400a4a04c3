"""Data models for the watcher module."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from bullhorn.relay.keys import parse_public_key
from bullhorn.relay.models import RawEvent

if TYPE_CHECKING:
    from bullhorn.alerter.models import NotificationKind
    from bullhorn.watcher.payloads import Payload


class RecipientRule(Enum):
    """How a zap receipt is matched to the watched identity.

    Receipts are signed by the recipient's zap service, not the recipient,
    so the recipient is normally found in the ``p`` tag.
    """

    AUTHOR = "author"
    TAGGED = "tagged"
    EITHER = "either"


@dataclass(frozen=True)
class WatchConfig:
    """Who to watch and where.

    Attributes:
        primary_identity: Hex public key being watched.
        allowed_identities: Extra hex public keys whose live events matter.
        relay_endpoints: Relay URLs, in configured order.
        payment_recipient_rule: How payments are attributed to the primary.
    """

    primary_identity: str
    allowed_identities: frozenset[str] = field(default_factory=frozenset)
    relay_endpoints: tuple[str, ...] = ()
    payment_recipient_rule: RecipientRule = RecipientRule.EITHER

    @classmethod
    def create(
        cls,
        primary_identity: str,
        allowed_identities: Iterable[str] = (),
        relay_endpoints: Iterable[str] = (),
        payment_recipient_rule: RecipientRule = RecipientRule.EITHER,
    ) -> WatchConfig:
        """Build a WatchConfig from npub or hex keys."""
        return cls(
            primary_identity=parse_public_key(primary_identity),
            allowed_identities=frozenset(parse_public_key(k) for k in allowed_identities),
            relay_endpoints=tuple(relay_endpoints),
            payment_recipient_rule=payment_recipient_rule,
        )

    @property
    def interesting_identities(self) -> frozenset[str]:
        """The primary identity plus the allow-list."""
        return self.allowed_identities | {self.primary_identity}


@dataclass(frozen=True)
class ClassifiedEvent:
    """An in-scope, first-seen event with its parsed payload."""

    kind: NotificationKind
    event: RawEvent
    payload: Payload
