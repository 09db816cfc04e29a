import asyncio

import pytest
from aiohttp import ClientConnectionError

from errors import FetchError
from fetcher import FeedFetcher


class FakeContent:
    def __init__(self, body: bytes):
        self.body = body
        self.read = 0

    async def iter_chunked(self, size):
        for start in range(0, len(self.body), size):
            chunk = self.body[start:start + size]
            self.read += len(chunk)
            yield chunk


class FakeResponse:
    def __init__(self, status=200, body=b"", content_length=None):
        self.status = status
        self.content = FakeContent(body)
        self.content_length = content_length

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_fetch_returns_body():
    session = FakeSession(FakeResponse(body=b"<rss/>" * 1000))
    fetcher = FeedFetcher(session=session)

    body = await fetcher.fetch("https://example.com/feed")

    assert body == b"<rss/>" * 1000
    assert session.requests[0][0] == "https://example.com/feed"


@pytest.mark.asyncio
async def test_body_over_cap_is_a_fetch_error():
    response = FakeResponse(body=b"x" * 5000)
    fetcher = FeedFetcher(max_bytes=4096, session=FakeSession(response))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch("https://example.com/huge")

    assert "exceeds" in exc_info.value.reason
    assert exc_info.value.url == "https://example.com/huge"


@pytest.mark.asyncio
async def test_body_exactly_at_cap_is_accepted():
    fetcher = FeedFetcher(max_bytes=4096, session=FakeSession(FakeResponse(body=b"x" * 4096)))

    assert len(await fetcher.fetch("https://example.com/feed")) == 4096


@pytest.mark.asyncio
async def test_declared_oversize_body_is_not_read():
    response = FakeResponse(body=b"x" * 10, content_length=9_000_000)
    fetcher = FeedFetcher(max_bytes=8_000_000, session=FakeSession(response))

    with pytest.raises(FetchError):
        await fetcher.fetch("https://example.com/huge")

    assert response.content.read == 0


@pytest.mark.asyncio
async def test_non_success_status_is_a_fetch_error():
    fetcher = FeedFetcher(session=FakeSession(FakeResponse(status=503)))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch("https://example.com/feed")

    assert exc_info.value.reason == "HTTP 503"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ClientConnectionError("refused"), asyncio.TimeoutError()])
async def test_network_errors_become_fetch_errors(error):
    fetcher = FeedFetcher(session=FakeSession(error=error))

    with pytest.raises(FetchError):
        await fetcher.fetch("https://example.com/feed")


@pytest.mark.asyncio
async def test_supplied_session_is_not_closed():
    session = FakeSession(FakeResponse(body=b""))
    fetcher = FeedFetcher(session=session)

    await fetcher.initialize()
    await fetcher.close()

    assert session.closed is False
