"""
ChangesFeed and the top-level changes() function.

This is the primary API: an async iterator over a database's changes feed
that resumes from the last delivered sequence after failures.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncGenerator, Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from typing import Any, Generic, TypeVar, cast

import anyio
import httpx

from couchdb_changes._config import FeedConfig
from couchdb_changes._errors import (
    BodyUnavailableError,
    ChangesFeedError,
    TransportError,
    error_from_status,
)
from couchdb_changes._framing import LineReader, reader_for
from couchdb_changes._parse import (
    is_last_seq_row,
    parse_batch,
    parse_change,
    parse_json_line,
)
from couchdb_changes._retry import Reconnector, RetryPolicy, is_retryable
from couchdb_changes._types import ChangeRecord, ConnectionState, DocDecoder, Seq
from couchdb_changes._util import build_changes_request, changes_url, split_credentials
from couchdb_changes._watchdog import HeartbeatWatchdog

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_TIMEOUT = 30.0


@contextmanager
def _http_errors(url: str) -> Iterator[None]:
    """Translate httpx failures into the feed's error taxonomy."""
    try:
        yield
    except httpx.RequestError as e:
        raise TransportError(str(e) or e.__class__.__name__, url=url) from e
    except httpx.StreamError as e:
        raise BodyUnavailableError(url=url) from e


class ChangesFeed(Generic[T]):
    """
    Async iterator over a ``_changes`` feed.

    Each pull drives the feed until one change is available: it connects
    (or reconnects) using the last delivered sequence, reads just enough of
    the response to produce the next record, and returns it. Nothing is read
    from the network while the consumer holds a record.

    Iteration that ends by exhaustion, error or ``stop()`` releases the
    connection itself. Leaving the loop early (``break``, ``return`` or an
    exception in the loop body) does not: the open response and any
    internally created client stay alive until ``aclose()``. Use the feed
    as an async context manager so it is released on every exit path:

        async with ChangesFeed(url, feed="continuous", live=True) as feed:
            async for change in feed:
                process(change)

    ``stop()`` may be called from any task on the same event loop; it
    cancels the pull in progress (request, read or backoff sleep) and the
    iteration ends without an error.
    """

    def __init__(
        self,
        db_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        request_timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        doc_decoder: DocDecoder[T] | None = None,
        **options: Any,
    ) -> None:
        self._db_url = db_url
        self._config = FeedConfig.from_options(options)
        self._url = split_credentials(changes_url(db_url))[0]
        self._client = client
        self._own_client = client is None
        self._request_timeout = request_timeout or DEFAULT_REQUEST_TIMEOUT
        self._doc_decoder = doc_decoder
        self._reconnector = Reconnector(retry_policy)

        heartbeat_ms = self._config.heartbeat_ms
        self._watchdog = (
            HeartbeatWatchdog(heartbeat_ms, url=self._url)
            if heartbeat_ms is not None
            else None
        )

        self._state = ConnectionState.IDLE
        self._seq: Seq | None = None
        self._pending: int | None = None
        self._delivered = 0
        self._finished = False
        self._stop_requested = False
        self._scope: anyio.CancelScope | None = None

        # Rows waiting to be delivered: raw lines for streaming modes,
        # decoded rows for normal/longpoll
        self._rows: deque[Any] = deque()
        self._batch_last_seq: Seq | None = None
        # Rows received on the current streaming connection
        self._connection_rows = 0
        self._response: httpx.Response | None = None
        self._chunks: AsyncGenerator[bytes, None] | None = None
        self._reader: LineReader | None = None

    @property
    def url(self) -> str:
        """The ``_changes`` URL, without credentials."""
        return self._url

    @property
    def config(self) -> FeedConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def seq(self) -> Seq | None:
        """The sequence of the last delivered change, or None before any."""
        return self._seq

    @property
    def pending(self) -> int | None:
        """Changes still pending on the server, as last reported."""
        return self._pending

    @property
    def retry_count(self) -> int:
        return self._reconnector.retry_count

    # === Lifecycle ===

    def stop(self) -> None:
        """Stop the feed. Safe to call more than once, from any task."""
        self._stop_requested = True
        self._mark_stopped()
        if self._scope is not None:
            self._scope.cancel()

    async def aclose(self) -> None:
        """Stop the feed and release the connection and owned client."""
        self.stop()
        # a pull in progress releases resources itself once cancelled
        if self._scope is None:
            await self._release()

    async def __aenter__(self) -> ChangesFeed[T]:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # === Iteration ===

    def __aiter__(self) -> ChangesFeed[T]:
        return self

    async def __anext__(self) -> ChangeRecord[T]:
        record: ChangeRecord[T] | None = None

        if self._state is not ConnectionState.STOPPED:
            scope = anyio.CancelScope()
            self._scope = scope
            try:
                with scope:
                    record = await self._next_record()
            except ChangesFeedError:
                await self._terminate()
                if self._stop_requested:
                    raise StopAsyncIteration from None
                raise
            except BaseException:
                await self._terminate()
                raise
            finally:
                self._scope = None

        if record is None or self._state is ConnectionState.STOPPED:
            await self._terminate()
            raise StopAsyncIteration
        return record

    async def _next_record(self) -> ChangeRecord[T] | None:
        """Produce the next record, retrying live feeds after failures."""
        while not self._stop_requested:
            try:
                return await self._read_record()
            except ChangesFeedError as error:
                await self._close_response()
                self._rows.clear()
                self._batch_last_seq = None
                if not self._config.live or not is_retryable(error):
                    raise
                self._state = ConnectionState.RETRYING
                await self._reconnector.backoff(error)
        return None

    async def _read_record(self) -> ChangeRecord[T] | None:
        while not self._stop_requested and not self._limit_reached():
            if self._rows:
                record = self._decode(self._rows.popleft())
                if record is not None:
                    return self._deliver(record)
                continue

            if self._batch_last_seq is not None:
                self._seq = self._batch_last_seq
                self._batch_last_seq = None

            if self._response is not None:
                await self._read_chunk()
            elif self._finished:
                return None
            else:
                await self._connect()
        return None

    def _limit_reached(self) -> bool:
        limit = self._config.limit
        return limit is not None and self._delivered >= limit

    def _decode(self, row: Any) -> ChangeRecord[T] | None:
        data = parse_json_line(row) if self._config.streaming else row
        if is_last_seq_row(data):
            self._seq = data["last_seq"]
            if isinstance(data.get("pending"), int):
                self._pending = data["pending"]
            return None
        return cast(ChangeRecord[T], parse_change(data, self._doc_decoder))

    def _deliver(self, record: ChangeRecord[T]) -> ChangeRecord[T]:
        self._seq = record.seq
        self._delivered += 1
        self._reconnector.reset()
        self._state = ConnectionState.STREAMING
        return record

    # === Connection handling ===

    def _guard(self) -> AbstractContextManager[Any]:
        if self._watchdog is None:
            return nullcontext()
        return self._watchdog.guard()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._request_timeout, read=None)
            )
        return self._client

    async def _connect(self) -> None:
        self._state = ConnectionState.CONNECTING
        request = build_changes_request(self._db_url, self._config, self._seq)
        logger.debug("Requesting changes: %s %s", request.method, request.url)

        client = self._ensure_client()
        http_request = client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body,
        )

        with _http_errors(request.url), self._guard():
            response = await client.send(http_request, stream=True)
        self._response = response

        if not response.is_success:
            with _http_errors(request.url):
                body_bytes = await response.aread()
            await self._close_response()
            raise error_from_status(
                response.status_code,
                request.url,
                body=body_bytes.decode("utf-8", errors="replace"),
            )

        self._state = ConnectionState.STREAMING

        if not self._config.streaming:
            with _http_errors(request.url):
                body = await response.aread()
            await self._close_response()

            batch = parse_batch(body)
            self._rows.extend(batch.results)
            self._batch_last_seq = batch.last_seq
            if batch.pending is not None:
                self._pending = batch.pending
            if self._config.mode == "normal":
                self._finished = True
            return

        self._chunks = cast(AsyncGenerator[bytes, None], response.aiter_bytes())
        self._reader = reader_for(self._config.mode)
        self._connection_rows = 0

    async def _read_chunk(self) -> None:
        assert self._chunks is not None and self._reader is not None
        if self._watchdog is not None:
            self._state = ConnectionState.AWAITING_HEARTBEAT

        with _http_errors(self._url), self._guard():
            chunk = await anext(self._chunks, None)

        if chunk is None:
            self._queue_lines(self._reader.finish())
            await self._close_response()
            logger.debug("Changes stream ended at seq %s", self._seq)
            if not self._config.live:
                self._finished = True
            elif self._connection_rows == 0:
                # empty stream: reconnect with backoff, not in a tight loop
                self._state = ConnectionState.RETRYING
                await self._reconnector.backoff("Changes stream ended without data")
            return

        self._state = ConnectionState.STREAMING
        self._queue_lines(self._reader.feed(chunk))

    def _queue_lines(self, lines: list[str]) -> None:
        self._connection_rows += len(lines)
        self._rows.extend(lines)

    async def _close_response(self) -> None:
        response, self._response = self._response, None
        chunks, self._chunks = self._chunks, None
        self._reader = None
        if response is None:
            return
        with anyio.CancelScope(shield=True):
            if chunks is not None:
                await chunks.aclose()
            await response.aclose()

    def _mark_stopped(self) -> None:
        if self._state is not ConnectionState.STOPPED:
            self._state = ConnectionState.STOPPED
            logger.debug("Changes feed stopped at seq %s", self._seq)

    async def _terminate(self) -> None:
        self._mark_stopped()
        await self._release()

    async def _release(self) -> None:
        await self._close_response()
        if self._own_client and self._client is not None:
            client, self._client = self._client, None
            with anyio.CancelScope(shield=True):
                await client.aclose()


def changes(
    db_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    request_timeout: float | None = None,
    retry_policy: RetryPolicy | None = None,
    doc_decoder: DocDecoder[Any] | None = None,
    **options: Any,
) -> ChangesFeed[Any]:
    """
    Open a changes feed for a database.

    Args:
        db_url: Database URL; ``user:pass@`` credentials become Basic auth
        client: Optional httpx.AsyncClient to use (will not be closed)
        request_timeout: Connect/write/pool timeout for an internally
            created client; reads are bounded by the heartbeat watchdog
        retry_policy: Backoff tuning for live feeds
        doc_decoder: Function applied to each change's ``doc``
        **options: Feed options (since, filter, doc_ids, selector,
            conflicts, descending, heartbeat, include_docs, attachments,
            att_encoding_info, limit, style, timeout, seq_interval, feed,
            live)

    Returns:
        A ChangesFeed. Open it with ``async with`` so an early exit from
        ``async for`` still releases the connection

    Example:
        >>> async with changes("http://localhost:5984/db", feed="continuous",
        ...                    live=True, include_docs=True) as feed:
        ...     async for change in feed:
        ...         print(change.seq, change.id)
    """
    return ChangesFeed(
        db_url,
        client=client,
        request_timeout=request_timeout,
        retry_policy=retry_policy,
        doc_decoder=doc_decoder,
        **options,
    )
