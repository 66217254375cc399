from __future__ import annotations

import httpx
import pytest

from deploybot.deploy.poller import ReadinessPoller


UUID = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"
READY_HTML = f'<script>const cfg = {{"UUID": "{UUID}", "TR_PASS": "s3cretPass"}};</script>'


def _poller(handler, *, cycles: int = 3, sleeps: list[float]) -> ReadinessPoller:
    return ReadinessPoller(
        cycles=cycles,
        interval_seconds=20,
        sleep=sleeps.append,
        transport=httpx.MockTransport(handler),
    )


def test_candidate_urls_cover_root_and_panel() -> None:
    poller = ReadinessPoller()
    assert poller.candidate_urls("https://w.alice.workers.dev/") == [
        "https://w.alice.workers.dev/",
        "https://w.alice.workers.dev/panel",
    ]


def test_returns_on_first_page_with_both_values() -> None:
    seen: list[str] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/panel":
            return httpx.Response(200, text=READY_HTML)
        return httpx.Response(200, text="<html>redirecting</html>")

    found = _poller(handler, sleeps=sleeps).poll("https://w.alice.workers.dev")
    assert found is not None
    assert found.uuid == UUID
    assert seen == ["/", "/panel"]
    assert sleeps == []


def test_errors_are_retried_until_ready() -> None:
    calls = {"count": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("dns not propagated", request=request)
        if calls["count"] < 5:
            return httpx.Response(522, text="origin timeout")
        return httpx.Response(200, text=READY_HTML)

    found = _poller(handler, sleeps=sleeps).poll("https://w.alice.workers.dev")
    assert found is not None
    assert sleeps == [20, 20]


def test_exhaustion_returns_none_without_trailing_sleep() -> None:
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(200, text="<html>panel still initializing</html>")

    assert _poller(handler, cycles=4, sleeps=sleeps).poll("https://w.alice.workers.dev") is None
    assert sleeps == [20, 20, 20]


def test_rejects_non_positive_cycles() -> None:
    with pytest.raises(ValueError):
        ReadinessPoller(cycles=0)
