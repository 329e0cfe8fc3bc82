"""
Request building for the changes feed.

This module turns a FeedConfig and the current cursor into the HTTP request
that opens (or resumes) a feed connection.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from couchdb_changes._config import FeedConfig
from couchdb_changes._types import (
    CHANGES_PATH,
    JSON_CONTENT_TYPE,
    SINCE_QUERY_PARAM,
    Seq,
)


@dataclass(frozen=True, slots=True)
class ChangesRequest:
    """
    A fully resolved changes request.

    Attributes:
        method: ``GET`` or ``POST``
        url: Target URL including the query string, without credentials
        headers: Request headers
        body: Encoded JSON body for POST requests
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None


def format_param(value: Any) -> str:
    """
    Format an option value as a query string value.

    Booleans are lowercased to match JSON; everything else uses str().
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def split_credentials(url: str) -> tuple[str, str | None]:
    """
    Remove userinfo from a URL.

    Args:
        url: A URL that may embed ``user:pass@``

    Returns:
        The URL without credentials and a Basic ``Authorization`` header
        value, or None if the URL carried no credentials
    """
    parsed = urlsplit(url)
    if parsed.username is None:
        return url, None

    user = unquote(parsed.username)
    password = unquote(parsed.password or "")
    token = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")

    netloc = parsed.netloc.rpartition("@")[2]
    stripped = urlunsplit(parsed._replace(netloc=netloc))
    return stripped, f"Basic {token}"


def build_url_with_params(
    base_url: str,
    params: list[tuple[str, str]],
) -> str:
    """
    Build a URL with query parameters.

    Existing query parameters on ``base_url`` are kept in front of ``params``.

    Args:
        base_url: The base URL
        params: Query parameters to add, in order

    Returns:
        URL with query parameters
    """
    parsed = urlsplit(base_url)
    merged = parse_qsl(parsed.query, keep_blank_values=True)
    merged.extend(params)

    new_query = urlencode(merged)
    return urlunsplit(parsed._replace(query=new_query))


def changes_url(db_url: str) -> str:
    """Append the ``_changes`` path segment to a database URL."""
    parsed = urlsplit(db_url)
    path = parsed.path.rstrip("/") + "/" + CHANGES_PATH
    return urlunsplit(parsed._replace(path=path))


def encode_body(body: Any) -> bytes:
    """JSON-encode a request body to UTF-8 bytes."""
    return json.dumps(body).encode("utf-8")


def build_changes_request(
    db_url: str,
    config: FeedConfig,
    seq: Seq | None = None,
) -> ChangesRequest:
    """
    Build the request for the next connection attempt.

    Args:
        db_url: Database URL, optionally with ``user:pass@`` credentials
        config: Feed options
        seq: The cursor; once set it overrides the configured ``since``

    Returns:
        The resolved ChangesRequest
    """
    url, authorization = split_credentials(changes_url(db_url))

    params = [(name, format_param(value)) for name, value in config.query_items()]
    if seq is not None:
        since = format_param(seq)
        for index, (name, _) in enumerate(params):
            if name == SINCE_QUERY_PARAM:
                params[index] = (SINCE_QUERY_PARAM, since)
                break
        else:
            params.append((SINCE_QUERY_PARAM, since))

    headers = {"Accept": JSON_CONTENT_TYPE}
    body_value = config.request_body()
    body: bytes | None = None
    if body_value is not None:
        body = encode_body(body_value)
        headers["Content-Type"] = JSON_CONTENT_TYPE
    if authorization is not None:
        headers["Authorization"] = authorization

    return ChangesRequest(
        method="POST" if body is not None else "GET",
        url=build_url_with_params(url, params),
        headers=headers,
        body=body,
    )
