"""Bullhorn - Nostr live event and zap notification service."""

__version__ = "0.1.0"
