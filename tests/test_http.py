import asyncio

import httpx
import pytest

from infra.http import AsyncHTTPClient, HTTPError


def _run(handler, retries=3):
    async def go():
        async with AsyncHTTPClient(max_retries=retries, retry_delay=0) as client:
            await client._client.aclose()
            client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            return await client.post_json("http://model.local/generate", {"prompt": "hi"})
    return asyncio.run(go())


def test_post_json_round_trip():
    def handler(request):
        assert request.method == "POST"
        return httpx.Response(200, json={"text": "ok"})

    assert _run(handler) == {"text": "ok"}


def test_connection_errors_are_retried():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) < 3:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"text": "third time"})

    assert _run(handler) == {"text": "third time"}
    assert len(calls) == 3


def test_exhausted_retries_raise_status_zero():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(HTTPError) as info:
        _run(handler, retries=2)
    assert info.value.status_code == 0


def test_error_status_is_not_retried():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(503, text="overloaded")

    with pytest.raises(HTTPError) as info:
        _run(handler)
    assert info.value.status_code == 503
    assert len(calls) == 1


def test_non_json_reply():
    with pytest.raises(HTTPError):
        _run(lambda request: httpx.Response(200, text="plain text"))


def test_client_requires_context_manager():
    with pytest.raises(RuntimeError):
        asyncio.run(AsyncHTTPClient().post_json("http://model.local/generate"))
