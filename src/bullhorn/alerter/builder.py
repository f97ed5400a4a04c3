"""Notification builder.

This module turns classified events into human-readable notifications.
Payment receipts carry a BOLT11 invoice which is decoded for the amount and
rendered as a QR code; a request that cannot be decoded only costs the
attachment, never the notification.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import bolt11

from bullhorn.alerter.models import Notification, NotificationKind, PaymentCode
from bullhorn.alerter.qr import render_payment_code
from bullhorn.relay.keys import display_key, nostr_uri
from bullhorn.watcher.payloads import LiveEventPayload, ZapReceiptPayload

if TYPE_CHECKING:
    from bullhorn.relay.models import RawEvent
    from bullhorn.watcher.models import ClassifiedEvent

logger = logging.getLogger(__name__)

LIVE_EVENT_TITLE = "Event announcement"
PAYMENT_TITLE = "Zaps Received"

LIVE_EVENT_TAGS = ("spiral_calendar",)
PAYMENT_TAGS = ("moneybag",)

MAX_MEMO_LENGTH = 140


class PaymentRequestError(ValueError):
    """Raised when a payment request cannot be decoded."""


@dataclass(frozen=True)
class PaymentRequest:
    """The human-relevant fields of a decoded BOLT11 invoice."""

    raw: str
    amount_msat: int | None
    description: str | None
    payment_hash: str | None = None


def decode_payment_request(raw: str) -> PaymentRequest:
    """Decode a BOLT11 invoice.

    Raises:
        PaymentRequestError: If the string is not a valid invoice.
    """
    try:
        invoice = bolt11.decode(raw.strip())
    except Exception as e:
        raise PaymentRequestError(f"Invalid payment request: {e}") from e

    amount = getattr(invoice, "amount_msat", None)
    return PaymentRequest(
        raw=raw,
        amount_msat=int(amount) if amount is not None else None,
        description=getattr(invoice, "description", None),
        payment_hash=getattr(invoice, "payment_hash", None),
    )


def format_duration(seconds: int) -> str:
    """Format a positive duration as e.g. ``1d 2h 5m``."""
    seconds = max(0, int(seconds))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_sats(amount_msat: int) -> str:
    """Format a millisatoshi amount as whole sats."""
    return f"{amount_msat // 1000:,} sats"


def _truncate(text: str, limit: int = MAX_MEMO_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class NotificationBuilder:
    """Builds Notifications from classified events."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        render_code: Callable[[str], PaymentCode] = render_payment_code,
    ) -> None:
        """Initialize the builder.

        Args:
            clock: Returns the current unix time.
            render_code: Renders a payment request into an attachment.
        """
        self._clock = clock
        self._render_code = render_code

    def build(self, classified: ClassifiedEvent) -> Notification:
        """Build the notification for a classified event."""
        payload = classified.payload
        if classified.kind == NotificationKind.LIVE_EVENT_STARTED:
            if not isinstance(payload, LiveEventPayload):
                raise TypeError(f"Expected LiveEventPayload, got {type(payload).__name__}")
            return self.build_live_event(classified.event, payload)

        if not isinstance(payload, ZapReceiptPayload):
            raise TypeError(f"Expected ZapReceiptPayload, got {type(payload).__name__}")
        return self.build_payment(classified.event, payload)

    def build_live_event(self, event: RawEvent, payload: LiveEventPayload) -> Notification:
        """Announcement for a live event."""
        uri = nostr_uri(event.id)
        title = payload.title or f"Event {uri.removeprefix('nostr:')}"
        now = int(self._clock())

        if payload.starts is not None and payload.starts > now:
            headline = f"{title} starts in {format_duration(payload.starts - now)}"
        elif payload.status:
            headline = f"{title} is {payload.status}"
        else:
            headline = title

        lines = [headline, f"Announced by {display_key(event.author)}"]
        if payload.summary:
            lines.append(_truncate(payload.summary))
        if payload.streaming:
            lines.append(payload.streaming)

        logger.info("Built live event notification for %s", event.id)
        return Notification(
            kind=NotificationKind.LIVE_EVENT_STARTED,
            source_event_id=event.id,
            author=event.author,
            title=LIVE_EVENT_TITLE,
            rendered_body="\n".join(lines),
            click_url=uri,
            tags=LIVE_EVENT_TAGS,
        )

    def build_payment(self, event: RawEvent, payload: ZapReceiptPayload) -> Notification:
        """Notification for a received zap."""
        request: PaymentRequest | None = None
        attachment: PaymentCode | None = None

        if payload.bolt11 is None:
            logger.warning("Zap receipt %s has no payment request", event.id)
        else:
            try:
                request = decode_payment_request(payload.bolt11)
            except PaymentRequestError as e:
                logger.warning("Zap receipt %s: %s", event.id, e)

        if request is not None:
            try:
                attachment = self._render_code(request.raw)
            except Exception as e:
                logger.warning("Unable to render payment code for %s: %s", event.id, e)

        amount = request.amount_msat if request and request.amount_msat else None
        amount = amount or payload.requested_amount_msat

        if amount:
            lines = [f"You've received {format_sats(amount)} in zaps!"]
        else:
            lines = ["You've received a zap!"]
        if payload.sender:
            lines.append(f"From {display_key(payload.sender)}")
        if payload.comment:
            lines.append(f'"{_truncate(payload.comment)}"')
        if request and request.description and not request.description.startswith("{"):
            lines.append(f"Memo: {_truncate(request.description)}")

        logger.info("Built payment notification for %s", event.id)
        return Notification(
            kind=NotificationKind.PAYMENT_RECEIVED,
            source_event_id=event.id,
            author=event.author,
            title=PAYMENT_TITLE,
            rendered_body="\n".join(lines),
            attachment=attachment,
            click_url=nostr_uri(payload.zapped_event) if payload.zapped_event else None,
            tags=PAYMENT_TAGS,
        )
