from __future__ import annotations

import json

import httpx
import pytest

from feedsync.domain.resources import category_feed
from feedsync.errors import MalformedPayloadError
from feedsync.infra.http.feed_client import ApiError, FeedApiClient


def make_client(transport: httpx.BaseTransport, *, retries: int = 0, appSecret: str | None = "s3cret") -> FeedApiClient:
    return FeedApiClient(
        baseUrl="https://feed.local/api/",
        appSecret=appSecret,
        retries=retries,
        retryBackoffSeconds=0,
        transport=transport,
    )


def test_page_fetcher_sends_query_and_secret_header():
    seen = {}

    def responder(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["secret"] = request.headers.get("x-feedsync-secret")
        return httpx.Response(200, json={"posts": [{"_id": "a"}]})

    client = make_client(httpx.MockTransport(responder))

    response = client.page_fetcher(category_feed("anime", page_size=10), 2)()

    assert response.ok
    assert response.json() == {"posts": [{"_id": "a"}]}
    assert seen["path"] == "/api/posts"
    assert seen["params"] == {"category": "anime", "page": "2", "limit": "10"}
    assert seen["secret"] == "s3cret"


def test_secret_header_omitted_when_not_configured():
    def responder(request: httpx.Request) -> httpx.Response:
        assert "x-feedsync-secret" not in request.headers
        return httpx.Response(200, json=[])

    client = make_client(httpx.MockTransport(responder), appSecret=None)

    assert client.fetch("/posts").ok


def test_non_2xx_is_not_raised_and_carries_error_code():
    client = make_client(httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "nope"})))

    response = client.fetch("/posts")

    assert response.ok is False
    assert response.status_code == 404
    assert response.error_code == "HTTP_4XX"


def test_retries_on_5xx_then_succeeds():
    calls = {"n": 0}

    def responder(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"posts": []})

    client = make_client(httpx.MockTransport(responder), retries=3)

    response = client.fetch("/posts")

    assert response.ok
    assert calls["n"] == 3


def test_exhausted_5xx_retries_return_not_ok_response():
    calls = {"n": 0}

    def responder(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="busy")

    client = make_client(httpx.MockTransport(responder), retries=1)

    response = client.fetch("/posts")

    assert response.ok is False
    assert response.error_code == "HTTP_5XX"
    assert calls["n"] == 2


def test_network_error_raises_api_error_after_retries():
    calls = {"n": 0}

    def responder(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("down", request=request)

    client = make_client(httpx.MockTransport(responder), retries=2)

    with pytest.raises(ApiError) as exc:
        client.fetch("/posts")

    assert exc.value.code == "NETWORK_ERROR"
    assert exc.value.retryable is True
    assert calls["n"] == 3


def test_invalid_json_body_fails_on_decode():
    client = make_client(httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")))

    response = client.fetch("/posts")

    assert response.ok
    with pytest.raises(MalformedPayloadError):
        response.json()


def test_send_action_patches_post():
    seen = {}

    def responder(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.raw_path.decode("ascii")
        seen["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"ok": True})

    client = make_client(httpx.MockTransport(responder))

    response = client.send_action("abc/1", "like", "fp-1")

    assert response.ok
    assert seen["method"] == "PATCH"
    assert seen["path"] == "/api/posts/abc%2F1"
    assert seen["body"] == {"action": "like", "fingerprint": "fp-1"}
