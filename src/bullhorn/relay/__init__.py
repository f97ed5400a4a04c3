"""Relay layer - Nostr relay subscriptions."""

from bullhorn.relay.connection import (
    ConnectionState,
    ConnectionStats,
    RelayConnection,
    RelayConnectionError,
    RelayError,
)
from bullhorn.relay.keys import (
    InvalidKeyError,
    display_key,
    encode_note,
    encode_npub,
    nostr_uri,
    parse_public_key,
)
from bullhorn.relay.models import (
    EventKind,
    InvalidEventError,
    RawEvent,
)
from bullhorn.relay.pool import RelayPool

__all__ = [
    # Connection
    "ConnectionState",
    "ConnectionStats",
    "RelayConnection",
    "RelayConnectionError",
    "RelayError",
    # Keys
    "InvalidKeyError",
    "display_key",
    "encode_note",
    "encode_npub",
    "nostr_uri",
    "parse_public_key",
    # Models
    "EventKind",
    "InvalidEventError",
    "RawEvent",
    # Pool
    "RelayPool",
]
