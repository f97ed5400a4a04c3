"""Typed payloads for the event kinds the watcher understands.

Each supported kind maps to one payload schema. Parsing is lenient: a
missing or malformed optional tag becomes ``None`` rather than an error, so
an untidy announcement still produces a notification.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from bullhorn.relay.models import EventKind, RawEvent

logger = logging.getLogger(__name__)


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        logger.debug("Ignoring non-integer tag value %r", value)
        return None


@dataclass(frozen=True)
class LiveEventPayload:
    """NIP-53 live event announcement (kind 30311)."""

    identifier: str | None = None
    title: str | None = None
    summary: str | None = None
    status: str | None = None
    starts: int | None = None
    ends: int | None = None
    streaming: str | None = None
    image: str | None = None
    hosts: tuple[str, ...] = ()

    @classmethod
    def from_event(cls, event: RawEvent) -> LiveEventPayload:
        """Build the payload from the event's tags."""
        hosts = tuple(
            tag[1]
            for tag in event.iter_tags("p")
            if len(tag) > 3 and tag[3].lower() == "host"
        )
        return cls(
            identifier=event.tag_value("d"),
            title=event.tag_value("title") or None,
            summary=event.tag_value("summary") or None,
            status=event.tag_value("status"),
            starts=_parse_int(event.tag_value("starts")),
            ends=_parse_int(event.tag_value("ends")),
            streaming=event.tag_value("streaming"),
            image=event.tag_value("image"),
            hosts=hosts,
        )


@dataclass(frozen=True)
class ZapReceiptPayload:
    """NIP-57 zap receipt (kind 9735).

    Attributes:
        bolt11: The paid invoice, the embedded payment request.
        recipient: Public key the zap was sent to (``p`` tag).
        sender: Public key of the zapper (``P`` tag or zap request author).
        zapped_event: Id of the zapped event, if any.
        requested_amount_msat: Amount from the zap request ``amount`` tag.
        comment: Zap request content.
    """

    bolt11: str | None = None
    recipient: str | None = None
    sender: str | None = None
    zapped_event: str | None = None
    requested_amount_msat: int | None = None
    comment: str | None = None

    @classmethod
    def from_event(cls, event: RawEvent) -> ZapReceiptPayload:
        """Build the payload from the event's tags."""
        zap_request = _parse_zap_request(event.tag_value("description"))
        sender = event.tag_value("P")
        amount: int | None = None
        comment: str | None = None

        if zap_request is not None:
            sender = sender or _str_or_none(zap_request.get("pubkey"))
            comment = _str_or_none(zap_request.get("content")) or None
            tags = zap_request.get("tags")
            for tag in tags if isinstance(tags, list) else []:
                if isinstance(tag, list) and len(tag) > 1 and tag[0] == "amount":
                    amount = _parse_int(str(tag[1]))
                    break

        return cls(
            bolt11=event.tag_value("bolt11") or None,
            recipient=event.tag_value("p"),
            sender=sender,
            zapped_event=event.tag_value("e"),
            requested_amount_msat=amount,
            comment=comment,
        )


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _parse_zap_request(description: str | None) -> dict[str, Any] | None:
    """Parse the zap request embedded in a receipt's description tag."""
    if not description:
        return None
    try:
        data = json.loads(description)
    except json.JSONDecodeError:
        logger.debug("Zap receipt description is not JSON")
        return None
    if not isinstance(data, dict) or data.get("kind") != EventKind.ZAP_REQUEST:
        logger.debug("Zap receipt description is not a zap request")
        return None
    return data


Payload = LiveEventPayload | ZapReceiptPayload

PAYLOAD_SCHEMAS: dict[int, type[LiveEventPayload] | type[ZapReceiptPayload]] = {
    EventKind.LIVE_EVENT: LiveEventPayload,
    EventKind.ZAP_RECEIPT: ZapReceiptPayload,
}


def parse_payload(event: RawEvent) -> Payload | None:
    """Parse an event's payload with the schema registered for its kind.

    Returns:
        The payload, or None if the kind has no schema.
    """
    schema = PAYLOAD_SCHEMAS.get(event.kind)
    if schema is None:
        return None
    return schema.from_event(event)
