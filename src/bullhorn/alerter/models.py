"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class NotificationKind(Enum):
    """The closed set of notifications bullhorn emits."""

    LIVE_EVENT_STARTED = "live_event_started"
    PAYMENT_RECEIVED = "payment_received"


class Priority(IntEnum):
    """ntfy message priority."""

    MIN = 1
    LOW = 2
    DEFAULT = 3
    HIGH = 4
    MAX = 5

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class PaymentCode:
    """A scannable rendering of a payment request.

    Attributes:
        data: The raw payment request string encoded in the code.
        text: Terminal rendering, one line per module row.
        svg: SVG document of the same code.
    """

    data: str
    text: str
    svg: bytes


@dataclass(frozen=True)
class Notification:
    """A notification ready for delivery to any channel.

    Attributes:
        kind: Which notification this is.
        source_event_id: Id of the event that triggered it.
        author: Public key of the event author.
        title: Short headline.
        rendered_body: Finished message text.
        attachment: Payment request code, only for decodable payments.
        click_url: Link opened when the notification is tapped.
        priority: Delivery priority.
        tags: Emoji shortcodes shown by ntfy.
    """

    kind: NotificationKind
    source_event_id: str
    author: str
    title: str
    rendered_body: str
    attachment: PaymentCode | None = None
    click_url: str | None = None
    priority: Priority = Priority.DEFAULT
    tags: tuple[str, ...] = field(default_factory=tuple)
