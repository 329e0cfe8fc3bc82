"""
Pytest configuration and fixtures for couchdb-changes tests.

Feeds are exercised against a scripted in-process server built on
httpx.MockTransport, so no CouchDB instance is needed.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Union

import anyio
import httpx
import pytest

Responder = Union[
    httpx.Response,
    Exception,
    Callable[[httpx.Request], Union[httpx.Response, Awaitable[httpx.Response]]],
]


def change_row(seq: Any, doc_id: str | None = None, rev: str = "1-abc", **extra: Any) -> dict[str, Any]:
    """Build a change row as CouchDB sends it."""
    row: dict[str, Any] = {
        "seq": seq,
        "id": doc_id or f"doc{seq}",
        "changes": [{"rev": rev}],
    }
    row.update(extra)
    return row


def ndjson(rows: list[dict[str, Any]]) -> bytes:
    """Encode rows as a continuous feed body."""
    return "".join(json.dumps(row, ensure_ascii=False) + "\n" for row in rows).encode("utf-8")


def chunked_body(
    *chunks: bytes | str,
    delay: float = 0,
    then: BaseException | None = None,
    hang: bool = False,
) -> AsyncIterator[bytes]:
    """
    An async response body that yields ``chunks`` one read at a time.

    Args:
        delay: Seconds to wait before each chunk
        then: Exception raised after the last chunk (connection drop)
        hang: Never finish after the last chunk
    """

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            if delay:
                await anyio.sleep(delay)
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
        if then is not None:
            raise then
        if hang:
            await anyio.sleep_forever()

    return body()


def stream_response(*chunks: bytes | str, **kwargs: Any) -> httpx.Response:
    """A 200 response with a streamed body."""
    return httpx.Response(200, content=chunked_body(*chunks, **kwargs))


class FakeCouch:
    """
    Scripted server.

    Each request consumes the next responder; the last one is reused once
    the script runs out, so it should be a callable when reuse is expected.
    Responders may be a Response, an exception to raise, or a callable
    (sync or async) taking the request.
    """

    def __init__(self, *responders: Responder) -> None:
        self.responders = list(responders)
        self.requests: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responders) > 1:
            responder = self.responders.pop(0)
        else:
            responder = self.responders[0]

        if isinstance(responder, Exception):
            raise responder
        if isinstance(responder, httpx.Response):
            return responder
        result = responder(request)
        if isinstance(result, httpx.Response):
            return result
        return await result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def params(self, index: int) -> httpx.QueryParams:
        return self.requests[index].url.params


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def couch() -> Callable[..., FakeCouch]:
    """Factory for scripted servers."""
    return FakeCouch
