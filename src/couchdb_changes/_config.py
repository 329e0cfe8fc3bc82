"""
Feed configuration.

FeedConfig is an immutable snapshot of the options recognised by the
``_changes`` endpoint, captured once when a feed is created.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

from couchdb_changes._types import (
    BODY_OPTIONS,
    CLIENT_OPTIONS,
    DEFAULT_HEARTBEAT_MS,
    FEED_MODES,
    STYLES,
    FeedMode,
    Seq,
)


@dataclass(frozen=True)
class FeedConfig:
    """
    Recognised changes feed options.

    Attributes mirror the query parameters of the ``_changes`` endpoint,
    plus ``live`` which only affects client behaviour. ``order`` records the
    order in which options were supplied; query parameters follow it.
    """

    since: Seq | None = None
    filter: str | None = None
    doc_ids: tuple[str, ...] | None = None
    selector: Mapping[str, Any] | None = None
    conflicts: bool | None = None
    descending: bool | None = None
    heartbeat: bool | int | None = None
    include_docs: bool | None = None
    attachments: bool | None = None
    att_encoding_info: bool | None = None
    limit: int | None = None
    style: str | None = None
    timeout: int | None = None
    seq_interval: int | None = None
    feed: FeedMode | None = None
    live: bool = False
    order: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.feed is not None and self.feed not in FEED_MODES:
            raise ValueError(
                f"Unknown feed mode {self.feed!r}; expected one of {', '.join(FEED_MODES)}"
            )
        if self.style is not None and self.style not in STYLES:
            raise ValueError(
                f"Unknown style {self.style!r}; expected one of {', '.join(STYLES)}"
            )
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be non-negative")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "FeedConfig":
        """
        Build a FeedConfig from keyword options, keeping their order.

        Raises:
            TypeError: If an option is not recognised
        """
        known = option_names()
        unknown = [name for name in options if name not in known]
        if unknown:
            raise TypeError(f"Unknown changes feed option(s): {', '.join(unknown)}")

        values = dict(options)
        doc_ids = values.get("doc_ids")
        if doc_ids is not None:
            if isinstance(doc_ids, str) or not isinstance(doc_ids, Sequence):
                raise TypeError("doc_ids must be a list of document ids")
            values["doc_ids"] = tuple(doc_ids)
        if values.get("live") is None:
            values["live"] = False

        return cls(**values, order=tuple(options))

    @property
    def mode(self) -> FeedMode:
        """The framing mode; ``normal`` when unset."""
        return self.feed or "normal"

    @property
    def streaming(self) -> bool:
        """True for line-framed modes (continuous and eventsource)."""
        return self.mode in ("continuous", "eventsource")

    @property
    def heartbeat_ms(self) -> int | None:
        """
        Effective watchdog interval in milliseconds.

        None when the watchdog does not apply: batch modes, or a heartbeat
        explicitly disabled with ``False``/``0``.
        """
        if not self.streaming:
            return None
        if self.heartbeat is None or self.heartbeat is True:
            return DEFAULT_HEARTBEAT_MS
        if self.heartbeat is False or self.heartbeat == 0:
            return None
        return int(self.heartbeat)

    def query_items(self) -> list[tuple[str, Any]]:
        """Defined, non-empty options that are sent as query parameters."""
        items: list[tuple[str, Any]] = []
        for name in self.order:
            if name in BODY_OPTIONS or name in CLIENT_OPTIONS:
                continue
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and value == ""):
                continue
            items.append((name, value))
        return items

    def request_body(self) -> dict[str, Any] | None:
        """The POST body: doc_ids take priority over selector."""
        if self.doc_ids:
            return {"doc_ids": list(self.doc_ids)}
        if isinstance(self.selector, Mapping) and self.selector:
            return {"selector": dict(self.selector)}
        return None


def option_names() -> frozenset[str]:
    """Names accepted by FeedConfig.from_options()."""
    return frozenset(f.name for f in fields(FeedConfig) if f.name != "order")
