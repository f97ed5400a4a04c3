"""ntfy subscription topic management.

The topic is generated once and kept in the config directory, so the phone
app only has to subscribe once.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from bullhorn.alerter.qr import render_text

logger = logging.getLogger(__name__)


class TopicError(Exception):
    """Raised when the topic file cannot be read or written."""


def load_or_create_topic(path: Path) -> str:
    """Return the persisted topic, creating one on first use.

    Args:
        path: File holding the topic.

    Raises:
        TopicError: If the file is unreadable or cannot be created.
    """
    try:
        contents = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        contents = ""
    except OSError as e:
        raise TopicError(f"Unable to read topic file {path}: {e}") from e

    if contents:
        try:
            return str(uuid.UUID(contents))
        except ValueError as e:
            raise TopicError(f"Topic file {path} does not hold a UUID") from e

    topic = str(uuid.uuid4())
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(topic, encoding="utf-8")
    except OSError as e:
        raise TopicError(f"Unable to write topic file {path}: {e}") from e

    logger.info("Created new ntfy topic at %s", path)
    return topic


def print_subscription_topic(topic: str) -> None:
    """Print the topic and its QR code for the ntfy app."""
    print("This is your subscription topic. Messages will be sent to this topic in ntfy.")
    print()
    print(render_text(topic))
    print()
    print(topic)
    print()
    print("Load this into the ntfy app to receive push notifications.")
