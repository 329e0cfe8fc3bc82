"""
Core types for the CouchDB changes feed client.

This module defines the fundamental types used throughout the library.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Generic,
    Literal,
    TypeVar,
)

# Type alias for sequence tokens - opaque strings (CouchDB 2+) or integers
Seq = str | int

# Type parameter for decoded documents
T = TypeVar("T")

# Feed framing modes
FeedMode = Literal["normal", "longpoll", "continuous", "eventsource"]

FEED_MODES: tuple[str, ...] = ("normal", "longpoll", "continuous", "eventsource")

# Revision styles accepted by the server
STYLES: tuple[str, ...] = ("main_only", "all_docs")

# Type for the document decode function
DocDecoder = Callable[[Any], T]


class ConnectionState(Enum):
    """Lifecycle states of a ChangesFeed."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    AWAITING_HEARTBEAT = "awaiting_heartbeat"
    RETRYING = "retrying"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class ChangeRecord(Generic[T]):
    """
    A single change from the feed.

    Attributes:
        seq: The sequence token of this change
        id: The document id
        revisions: Leaf revision ids from the ``changes`` array, in order
        deleted: True if the change is a deletion
        document: The document body (only with ``include_docs``)
    """

    seq: Seq
    id: str
    revisions: tuple[str, ...] = ()
    deleted: bool = False
    document: T | None = None


# Protocol constants
CHANGES_PATH = "_changes"
SINCE_QUERY_PARAM = "since"

# Options that never become query parameters
BODY_OPTIONS = ("doc_ids", "selector")
CLIENT_OPTIONS = ("live",)

DEFAULT_HEARTBEAT_MS = 60_000
MIN_HEARTBEAT_GRACE_MS = 1_000

JSON_CONTENT_TYPE = "application/json"
