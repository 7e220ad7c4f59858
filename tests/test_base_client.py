import asyncio

import aiohttp
import pytest

from gamecompare.core.base_client import BaseWebClient, fetch_with_retry
from gamecompare.core.errors import TransportError

from conftest import FakeResponse, FakeSession


def test_fetch_returns_json_on_first_success(sleep):
    session = FakeSession([FakeResponse({"ok": True})])

    data = asyncio.run(fetch_with_retry(session, "https://api.test/x", sleep=sleep))

    assert data == {"ok": True}
    assert len(session.calls) == 1
    assert sleep.delays == []


def test_fetch_retries_with_exponential_backoff(sleep):
    session = FakeSession([
        FakeResponse(status=503, reason="Service Unavailable"),
        aiohttp.ClientConnectionError("connection reset"),
        FakeResponse({"apps": []}),
    ])

    data = asyncio.run(fetch_with_retry(session, "https://api.test/x", max_retries=3, base_delay=1.0, sleep=sleep))

    assert data == {"apps": []}
    assert len(session.calls) == 3
    assert sleep.delays == [1.0, 2.0]


def test_fetch_raises_last_error_without_sleeping_after_final_attempt(sleep):
    session = FakeSession([
        FakeResponse(status=500, reason="Server Error"),
        FakeResponse(status=502, reason="Bad Gateway"),
        FakeResponse(status=429, reason="Too Many Requests"),
    ])

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(fetch_with_retry(session, "https://api.test/x", max_retries=3, base_delay=0.5, sleep=sleep))

    assert excinfo.value.status == 429
    assert excinfo.value.url == "https://api.test/x"
    assert sleep.delays == [0.5, 1.0]


def test_fetch_wraps_timeouts_as_transport_error(sleep):
    session = FakeSession([asyncio.TimeoutError()])

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(fetch_with_retry(session, "https://api.test/x", max_retries=1, sleep=sleep))

    assert excinfo.value.status is None
    assert "TimeoutError" in excinfo.value.message


def test_fetch_passes_method_payload_and_params(sleep):
    session = FakeSession([FakeResponse({})])

    asyncio.run(fetch_with_retry(
        session, "https://api.test/graphql", method="POST",
        payload={"query": "{}"}, params={"page": 2}, sleep=sleep,
    ))

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["json"] == {"query": "{}"}
    assert call["params"] == {"page": 2}


def test_cached_skips_network_on_hit_and_does_not_store_none(cache, sleep):
    session = FakeSession([FakeResponse({"n": 1}), FakeResponse(None), FakeResponse(None)])
    client = BaseWebClient(session, cache, cache_ttl=60, sleep=sleep)

    async def scenario():
        first = await client._cached("k", lambda: client._fetch("https://api.test/k"))
        second = await client._cached("k", lambda: client._fetch("https://api.test/k"))
        missing = await client._cached("none", lambda: client._fetch("https://api.test/none"))
        missing_again = await client._cached("none", lambda: client._fetch("https://api.test/none"))
        return first, second, missing, missing_again

    first, second, missing, missing_again = asyncio.run(scenario())

    assert first == second == {"n": 1}
    assert missing is None and missing_again is None
    assert len(session.calls) == 3


def test_throttle_sleeps_rate_limit_delay(cache, sleep):
    client = BaseWebClient(FakeSession([]), cache, cache_ttl=3600, rate_limit_delay=1.5, sleep=sleep)
    asyncio.run(client.throttle())
    assert sleep.delays == [1.5]
    assert client.cache_ttl_hours == 1


def test_network_error_is_the_transport_error():
    from gamecompare.core.errors import NetworkError
    assert NetworkError is TransportError
    assert str(TransportError("https://api.test/x", "Not Found", status=404)) == "HTTP 404 from https://api.test/x: Not Found"
