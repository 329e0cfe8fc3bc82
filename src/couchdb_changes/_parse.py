"""
Parsing utilities for changes feed payloads.

This module decodes change rows, whole ``normal``/``longpoll`` batches and
the trailing ``last_seq`` line of continuous feeds.
"""

import json
from typing import Any

from couchdb_changes._errors import ParseError
from couchdb_changes._types import ChangeRecord, DocDecoder, Seq


class Batch:
    """
    A decoded ``normal``/``longpoll`` response body.

    Attributes:
        results: Raw change rows, in wire order
        last_seq: The sequence to resume from after this batch
        pending: Number of changes still pending on the server
    """

    __slots__ = ("results", "last_seq", "pending")

    def __init__(
        self,
        results: list[dict[str, Any]],
        last_seq: Seq | None = None,
        pending: int | None = None,
    ) -> None:
        self.results = results
        self.last_seq = last_seq
        self.pending = pending


def parse_json_line(line: str) -> Any:
    """
    Decode one non-blank feed line.

    Raises:
        ParseError: If the line is not valid JSON
    """
    try:
        return json.loads(line)
    except ValueError as e:
        raise ParseError(f"Error parsing change ({e})", line=line) from e


def is_last_seq_row(data: Any) -> bool:
    """True for the closing ``{"last_seq": ..., "pending": ...}`` row."""
    return isinstance(data, dict) and "last_seq" in data and "id" not in data


def parse_change(
    data: Any,
    decoder: DocDecoder[Any] | None = None,
) -> ChangeRecord[Any]:
    """
    Convert a decoded change row into a ChangeRecord.

    Args:
        data: The decoded JSON row
        decoder: Optional function applied to the ``doc`` member

    Raises:
        ParseError: If the row has no ``seq`` or ``id``
    """
    if not isinstance(data, dict) or "seq" not in data or "id" not in data:
        raise ParseError("Change row is missing seq or id", line=json.dumps(data))

    revisions = tuple(
        str(change["rev"])
        for change in data.get("changes") or ()
        if isinstance(change, dict) and "rev" in change
    )

    document = data.get("doc")
    if document is not None and decoder is not None:
        document = decoder(document)

    return ChangeRecord(
        seq=data["seq"],
        id=data["id"],
        revisions=revisions,
        deleted=bool(data.get("deleted", False)),
        document=document,
    )


def parse_batch(body: bytes | str) -> Batch:
    """
    Decode a ``normal``/``longpoll`` response body.

    Raises:
        ParseError: If the body is not a JSON object with a ``results`` array
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ParseError(f"Error parsing changes response ({e})", line=text) from e

    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        raise ParseError("Changes response has no results array", line=text)

    pending = data.get("pending")
    return Batch(
        results=data["results"],
        last_seq=data.get("last_seq"),
        pending=pending if isinstance(pending, int) else None,
    )
