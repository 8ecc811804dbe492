from __future__ import annotations

import httpx
import pytest
from typer.testing import CliRunner

from feedsync.config import ENV_NAMES
from feedsync.infra.http.feed_client import FeedApiClient
from feedsync.main import app

runner = CliRunner()


def posts(start: int, count: int) -> list[dict]:
    return [{"_id": f"p{i}", "title": f"Post {i}", "likes": i, "views": 0} for i in range(start, start + count)]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES.values():
        monkeypatch.delenv(name, raising=False)


def patch_client_with_transport(monkeypatch, transport: httpx.BaseTransport):
    import feedsync.main as cli_module

    def factory(*args, **kwargs):
        kwargs["transport"] = transport
        return FeedApiClient(*args, **kwargs)

    monkeypatch.setattr(cli_module, "FeedApiClient", factory)


def base_args(tmp_path, *extra: str) -> list[str]:
    return [
        "--log-dir",
        str(tmp_path / "logs"),
        "--cache-dir",
        str(tmp_path / "cache"),
        "--base-url",
        "https://feed.local",
        "--retries",
        "0",
        *extra,
    ]


def feed_responder(request: httpx.Request) -> httpx.Response:
    page = int(request.url.params.get("page", "1"))
    if request.method == "PATCH":
        return httpx.Response(200, json={"ok": True})
    if page == 1:
        return httpx.Response(200, json={"posts": posts(0, 10)})
    if page == 2:
        return httpx.Response(200, json={"posts": posts(10, 3)})
    return httpx.Response(200, json={"posts": []})


def offline_responder(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("offline", request=request)


def test_help_shows_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("feed", "search", "action", "cache", "ledger"):
        assert command in result.output


def test_feed_show_loads_requested_pages(monkeypatch, tmp_path):
    patch_client_with_transport(monkeypatch, httpx.MockTransport(feed_responder))

    result = runner.invoke(app, base_args(tmp_path, "feed", "show", "--pages", "3"))

    assert result.exit_code == 0, result.output
    assert "kind=feed pages=2 items=13 has_more=False state=online" in result.output
    assert "p12\t" in result.output
    assert list((tmp_path / "logs").glob("feed-show_*.log"))


def test_feed_show_offline_without_cache_exits_1(monkeypatch, tmp_path):
    patch_client_with_transport(monkeypatch, httpx.MockTransport(offline_responder))

    result = runner.invoke(app, base_args(tmp_path, "feed", "show"))

    assert result.exit_code == 1
    assert "offline" in result.output


def test_feed_show_offline_serves_persistent_cache(monkeypatch, tmp_path):
    patch_client_with_transport(monkeypatch, httpx.MockTransport(feed_responder))
    first = runner.invoke(app, base_args(tmp_path, "feed", "show", "--kind", "category", "--id", "anime"))
    assert first.exit_code == 0, first.output

    patch_client_with_transport(monkeypatch, httpx.MockTransport(offline_responder))
    second = runner.invoke(app, base_args(tmp_path, "feed", "show", "--kind", "category", "--id", "anime"))

    assert second.exit_code == 0, second.output
    assert "items=10" in second.output
    assert "state=offline refresh_failed=True" in second.output


def test_feed_show_requires_id_for_category(monkeypatch, tmp_path):
    patch_client_with_transport(monkeypatch, httpx.MockTransport(feed_responder))

    result = runner.invoke(app, base_args(tmp_path, "feed", "show", "--kind", "category"))

    assert result.exit_code == 2


def test_missing_base_url_exits_2(tmp_path):
    result = runner.invoke(app, ["--log-dir", str(tmp_path / "logs"), "--cache-dir", str(tmp_path / "c"), "feed", "show"])

    assert result.exit_code == 2
    assert "base_url" in result.output


def test_invalid_configuration_exits_2(tmp_path):
    result = runner.invoke(app, base_args(tmp_path, "--page-size", "0", "cache", "status"))

    assert result.exit_code == 2
    assert "invalid configuration" in result.output


def test_action_is_sent_once_and_listed_in_ledger(monkeypatch, tmp_path):
    requests = []

    def responder(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        return httpx.Response(200, json={"ok": True})

    patch_client_with_transport(monkeypatch, httpx.MockTransport(responder))

    first = runner.invoke(app, base_args(tmp_path, "--fingerprint", "dev-1", "action", "like", "p1"))
    second = runner.invoke(app, base_args(tmp_path, "--fingerprint", "dev-1", "action", "like", "p1"))
    listed = runner.invoke(app, base_args(tmp_path, "ledger", "list"))

    assert "status=dispatched" in first.output
    assert "status=already-fired" in second.output
    assert requests == [("PATCH", "/posts/p1")]
    assert "p1\tliked" in listed.output


def test_cache_status_and_clear(monkeypatch, tmp_path):
    patch_client_with_transport(monkeypatch, httpx.MockTransport(feed_responder))
    runner.invoke(app, base_args(tmp_path, "feed", "show", "--pages", "2"))
    runner.invoke(app, base_args(tmp_path, "action", "view", "p1"))

    status = runner.invoke(app, base_args(tmp_path, "cache", "status"))
    assert status.exit_code == 0
    assert "entries=2 ledger_tokens=1" in status.output

    cleared = runner.invoke(app, base_args(tmp_path, "cache", "clear"))
    assert "cleared=2" in cleared.output

    after = runner.invoke(app, base_args(tmp_path, "cache", "status"))
    assert "entries=0 ledger_tokens=1" in after.output


def test_search_short_query_makes_no_request(monkeypatch, tmp_path):
    def responder(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    patch_client_with_transport(monkeypatch, httpx.MockTransport(responder))

    result = runner.invoke(app, base_args(tmp_path, "search", "a"))

    assert result.exit_code == 0
    assert "query too short" in result.output


def test_search_prints_results(monkeypatch, tmp_path):
    def responder(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search"
        assert request.url.params["q"] == "cats"
        return httpx.Response(
            200,
            json={"posts": posts(0, 2), "users": [{"_id": "u1"}], "pagination": {"hasNextPage": False}},
        )

    patch_client_with_transport(monkeypatch, httpx.MockTransport(responder))

    result = runner.invoke(app, base_args(tmp_path, "search", "cats"))

    assert result.exit_code == 0, result.output
    assert "users=1" in result.output
    assert "kind=search pages=1 items=2 has_more=False" in result.output
