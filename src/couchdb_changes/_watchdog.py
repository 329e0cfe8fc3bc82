"""
Heartbeat watchdog for streaming feeds.

CouchDB writes a newline every ``heartbeat`` milliseconds on an idle
continuous or eventsource feed. If nothing at all arrives for a little
longer than that, the connection is considered stalled and is aborted.
"""

from collections.abc import Iterator
from contextlib import contextmanager

import anyio

from couchdb_changes._errors import HeartbeatTimeoutError
from couchdb_changes._types import MIN_HEARTBEAT_GRACE_MS


def heartbeat_timeout_ms(interval_ms: int) -> int:
    """Deadline for an interval: the interval plus max(10%, 1s) of grace."""
    return interval_ms + max(interval_ms // 10, MIN_HEARTBEAT_GRACE_MS)


class HeartbeatWatchdog:
    """
    Deadline guard for network waits.

    Each call to guard() opens a child cancel scope with a fresh deadline.
    The scope nests inside whatever scope the caller is running in, so a
    cancelled parent cancels the wait immediately, while an expired
    deadline only aborts the guarded wait.

    Attributes:
        interval_ms: Expected heartbeat interval
        timeout_ms: Silence tolerated before the connection is aborted
    """

    def __init__(self, interval_ms: int, url: str | None = None) -> None:
        self.interval_ms = interval_ms
        self.timeout_ms = heartbeat_timeout_ms(interval_ms)
        self._url = url

    @property
    def timeout(self) -> float:
        """The deadline in seconds."""
        return self.timeout_ms / 1000

    @contextmanager
    def guard(self) -> Iterator[anyio.CancelScope]:
        """
        Arm the deadline around one network wait.

        Raises:
            HeartbeatTimeoutError: If the wait outlived the deadline
        """
        with anyio.move_on_after(self.timeout) as scope:
            yield scope
        if scope.cancelled_caught:
            raise HeartbeatTimeoutError(self.timeout_ms, url=self._url)
