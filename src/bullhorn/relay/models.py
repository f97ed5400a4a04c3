"""Data models for the relay layer.

Wire events and subscription filters are handled by ``pynostr``; ``RawEvent``
is the frozen, hashable view of an event that the rest of the pipeline
passes around.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from pynostr.event import Event
from pynostr.filters import FiltersList


class EventKind(IntEnum):
    """Nostr event kinds the watcher cares about."""

    ZAP_REQUEST = 9734
    ZAP_RECEIPT = 9735
    LIVE_EVENT = 30311


class InvalidEventError(ValueError):
    """Raised when a wire event is missing required fields."""


Tag = tuple[str, ...]


@dataclass(frozen=True)
class RawEvent:
    """A Nostr event exactly as received from a relay.

    The ``id`` is the content hash of the event and the only key used for
    de-duplication. ``created_at`` is author-claimed and only used for
    display.
    """

    id: str
    author: str
    kind: int
    created_at: int
    tags: tuple[Tag, ...] = ()
    content: str = ""
    sig: str = ""

    @classmethod
    def from_nostr(cls, event: Event) -> RawEvent:
        """Create a RawEvent from a pynostr event.

        Raises:
            InvalidEventError: If a required field is missing or mistyped.
        """
        if not isinstance(event.id, str) or not isinstance(event.pubkey, str):
            raise InvalidEventError("Malformed event: id and pubkey must be strings")
        try:
            return cls(
                id=event.id,
                author=event.pubkey,
                kind=int(event.kind),
                created_at=int(event.created_at),
                tags=normalize_tags(event.tags or []),
                content=event.content or "",
                sig=event.sig or "",
            )
        except (TypeError, ValueError) as e:
            raise InvalidEventError(f"Malformed event: {e}") from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawEvent:
        """Create a RawEvent from a NIP-01 event object.

        Raises:
            InvalidEventError: If a required field is missing or mistyped.
        """
        try:
            event = Event.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidEventError(f"Malformed event: {e}") from e
        return cls.from_nostr(event)

    def to_nostr(self) -> Event:
        """Convert to a pynostr event."""
        return Event(
            content=self.content,
            pubkey=self.author,
            created_at=self.created_at,
            kind=self.kind,
            tags=[list(tag) for tag in self.tags],
            id=self.id or None,
            sig=self.sig or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the NIP-01 wire object."""
        return {
            "id": self.id,
            "pubkey": self.author,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def compute_id(self) -> str:
        """Compute the NIP-01 id from the event's canonical fields."""
        event = self.to_nostr()
        event.compute_id()
        return event.id

    def has_valid_id(self) -> bool:
        """Return True if the claimed id matches the content hash."""
        return self.id == self.compute_id()

    @property
    def created_at_datetime(self) -> datetime:
        """Author-claimed creation time as an aware datetime."""
        return datetime.fromtimestamp(self.created_at, tz=UTC)

    def iter_tags(self, name: str) -> Iterator[Tag]:
        """Yield every tag whose first element is ``name``."""
        for tag in self.tags:
            if tag and tag[0] == name:
                yield tag

    def tag_value(self, name: str) -> str | None:
        """Return the value of the first ``name`` tag, if any."""
        for tag in self.iter_tags(name):
            if len(tag) > 1:
                return tag[1]
        return None

    def tag_values(self, name: str) -> list[str]:
        """Return the values of every ``name`` tag."""
        return [tag[1] for tag in self.iter_tags(name) if len(tag) > 1]


def build_req_message(subscription_id: str, filters: FiltersList) -> str:
    """Build the ``REQ`` frame for a subscription."""
    return json.dumps(["REQ", subscription_id, *filters.to_json_array()])


def build_close_message(subscription_id: str) -> str:
    """Build the ``CLOSE`` frame for a subscription."""
    return json.dumps(["CLOSE", subscription_id])


def normalize_tags(tags: Iterable[Iterable[Any]]) -> tuple[Tag, ...]:
    """Convert nested lists to the immutable tag representation."""
    return tuple(tuple(str(v) for v in tag) for tag in tags)
