"""
Exception hierarchy for the CouchDB changes feed client.

This module defines all exceptions that can be raised while consuming a feed.
Every error here is considered retryable when the feed runs with ``live=True``.
"""

import json
from typing import Any


class ChangesFeedError(Exception):
    """
    Base exception for all changes feed errors.

    Attributes:
        message: Human-readable error message
        url: The URL that was being fetched (if known)
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url

    def __str__(self) -> str:
        parts = [self.message]
        if self.url:
            parts.append(f"at {self.url}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"url={self.url!r})"
        )


class TransportError(ChangesFeedError):
    """
    Exception for network-level failures.

    Raised when the request could not be sent, or the connection failed while
    the response body was being read (connection reset, DNS failure, protocol
    errors and so on).
    """


class HttpStatusError(ChangesFeedError):
    """
    Exception raised when the server answers with a non-success status.

    Attributes:
        status: HTTP status code
        body: Response body text
        error: CouchDB ``error`` field from a JSON error body, if any
        reason: CouchDB ``reason`` field from a JSON error body, if any
    """

    def __init__(
        self,
        message: str,
        status: int,
        url: str | None = None,
        body: str | None = None,
        error: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.status = status
        self.body = body
        self.error = error
        self.reason = reason

    def __str__(self) -> str:
        parts = [self.message, f"(status={self.status})"]
        if self.error is not None:
            parts.append(f"[{self.error}]")
        if self.reason:
            parts.append(self.reason)
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"status={self.status!r}, "
            f"error={self.error!r})"
        )


class HeartbeatTimeoutError(ChangesFeedError):
    """
    Exception raised when no bytes arrive within the heartbeat deadline.

    Attributes:
        timeout_ms: The deadline that elapsed, in milliseconds
    """

    def __init__(self, timeout_ms: int, url: str | None = None) -> None:
        super().__init__(
            f"Heartbeat timeout: no data received from server after {timeout_ms} ms",
            url=url,
        )
        self.timeout_ms = timeout_ms


class ParseError(ChangesFeedError):
    """
    Exception raised when feed data cannot be decoded.

    Attributes:
        line: The offending text
    """

    def __init__(
        self,
        message: str = "Failed to parse change",
        line: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        preview = self.line[:100] + "..." if len(self.line) > 100 else self.line
        return f"{self.message}: {preview}"


class BodyUnavailableError(ChangesFeedError):
    """
    Exception raised when a successful response has no readable body.

    This happens when the response stream was already consumed or closed
    before the feed could read it.
    """

    def __init__(
        self,
        message: str = "Unable to read response body",
        url: str | None = None,
    ) -> None:
        super().__init__(message, url=url)


def error_from_status(
    status: int,
    url: str,
    body: str | None = None,
) -> HttpStatusError:
    """
    Create an HttpStatusError from a non-success response.

    CouchDB reports failures as ``{"error": ..., "reason": ...}``; when the
    body has that shape both fields are copied onto the exception.

    Args:
        status: The HTTP status code
        url: The URL that was requested
        body: The response body (if available)

    Returns:
        An HttpStatusError instance
    """
    error: str | None = None
    reason: str | None = None
    if body:
        try:
            payload: Any = json.loads(body)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            if payload.get("error") is not None:
                error = str(payload["error"])
            if payload.get("reason") is not None:
                reason = str(payload["reason"])

    return HttpStatusError(
        f"HTTP error {status}",
        status=status,
        url=url,
        body=body,
        error=error,
        reason=reason,
    )
