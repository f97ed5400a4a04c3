"""Public key and event id encodings (NIP-19).

Nostr identities travel as 32-byte hex strings on the wire but are shown to
people as bech32 ``npub`` strings. Event ids are shown as ``note`` strings.
"""

from __future__ import annotations

import re

import bech32

NPUB_PREFIX = "npub"
NOTE_PREFIX = "note"

_HEX_KEY_RE = re.compile(r"^[0-9a-f]{64}$")


class InvalidKeyError(ValueError):
    """Raised when a key or id cannot be decoded."""


def is_hex_key(value: str) -> bool:
    """Return True if value is a lowercase 32-byte hex string."""
    return bool(_HEX_KEY_RE.match(value))


def _decode(value: str, expected_hrp: str) -> str:
    hrp, data = bech32.bech32_decode(value)
    if hrp is None or data is None:
        raise InvalidKeyError(f"Invalid bech32 string: {value!r}")
    if hrp != expected_hrp:
        raise InvalidKeyError(f"Expected {expected_hrp!r} prefix, got {hrp!r}")

    raw = bech32.convertbits(data, 5, 8, False)
    if raw is None or len(raw) != 32:
        raise InvalidKeyError(f"Invalid {expected_hrp} payload length")
    return bytes(raw).hex()


def _encode(hex_value: str, hrp: str) -> str:
    if not is_hex_key(hex_value):
        raise InvalidKeyError(f"Not a 32-byte hex value: {hex_value!r}")
    data = bech32.convertbits(bytes.fromhex(hex_value), 8, 5, True)
    encoded = bech32.bech32_encode(hrp, data)
    if encoded is None:
        raise InvalidKeyError(f"Unable to encode {hex_value!r} as {hrp}")
    return encoded


def parse_public_key(value: str) -> str:
    """Normalize an ``npub`` or hex public key to lowercase hex.

    Raises:
        InvalidKeyError: If the value is neither a valid npub nor a hex key.
    """
    value = value.strip()
    if value.lower().startswith(NPUB_PREFIX + "1"):
        return _decode(value.lower(), NPUB_PREFIX)

    lowered = value.lower()
    if is_hex_key(lowered):
        return lowered
    raise InvalidKeyError(f"Not a valid public key: {value!r}")


def encode_npub(hex_key: str) -> str:
    """Encode a hex public key as ``npub``."""
    return _encode(hex_key, NPUB_PREFIX)


def encode_note(event_id: str) -> str:
    """Encode a hex event id as ``note``."""
    return _encode(event_id, NOTE_PREFIX)


def display_key(hex_key: str) -> str:
    """Human-facing form of an identity: npub when possible, else as given."""
    if is_hex_key(hex_key):
        return encode_npub(hex_key)
    return hex_key


def nostr_uri(event_id: str) -> str:
    """``nostr:`` URI for an event id, falling back to the raw id."""
    if is_hex_key(event_id):
        return f"nostr:{encode_note(event_id)}"
    return f"nostr:{event_id}"
