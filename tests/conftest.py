"""Shared pytest fixtures for the eyes-sdk test suite.

Provides reusable fixtures for:
- A ready-to-use Configuration (API key, names, fixed batch id)
- FakeConnector: an in-memory Eyes server + rendering grid
- MockServer: an httpx.MockTransport that scripts responses per route
- Sample DOM snapshots
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from eyes_sdk.config import BatchInfo, BrowserInfo, Configuration
from eyes_sdk.models import (
    DomSnapshot,
    MatchResult,
    RenderingInfo,
    RenderStatus,
    RenderStatusResults,
    RunningRender,
    RunningSession,
    TestResults,
)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> Configuration:
    """Configuration with everything a session needs to open."""
    return Configuration(
        api_key="test-api-key",
        server_url="https://eyes.test",
        app_name="Shop",
        test_name="Checkout",
        batch=BatchInfo(id="batch-1", name="Nightly"),
    )


@pytest.fixture
def grid_config(config: Configuration) -> Configuration:
    """Configuration rendering on two desktop browsers."""
    return config.model_copy(
        update={
            "browsers": [
                BrowserInfo(name="chrome", width=800, height=600),
                BrowserInfo(name="firefox", width=1024, height=768),
            ],
        }
    )


# ---------------------------------------------------------------------------
# In-memory server
# ---------------------------------------------------------------------------

RENDERING_INFO = RenderingInfo(
    service_url="https://render.test",
    access_token="render-token",
    results_url="https://storage.test/blobs/__random__",
)


class FakeConnector:
    """Stands in for ``ServerConnector``; records every call it receives."""

    def __init__(self) -> None:
        self.rendering_info: RenderingInfo | None = None
        self.calls: list[tuple[str, Any]] = []
        self.is_new = False
        self.match_results: list[MatchResult] = []
        self.close_results: list[TestResults] = []
        self.stop_result = TestResults(steps=1, matches=1)
        self.existing_hashes: set[str] = set()
        self.uploaded: list[str] = []
        self.render_error: BaseException | None = None
        self.render_status_error: dict[str, BaseException] = {}
        self.render_delays: dict[int, float] = {}
        self.start_error: BaseException | None = None
        self._sessions = 0
        self._renders = 0

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    # sessions --------------------------------------------------------------

    async def start_session(self, start_info: Any) -> RunningSession:
        self.calls.append(("start_session", start_info))
        if self.start_error is not None:
            raise self.start_error
        self._sessions += 1
        session_id = f"session-{self._sessions}"
        return RunningSession(
            id=session_id,
            batch_id=start_info.batch_info["id"],
            url=f"https://eyes.test/app/sessions/{session_id}",
            is_new=self.is_new,
        )

    async def stop_session(
        self,
        session: RunningSession,
        aborted: bool = False,
        update_baseline_if_new: bool = False,
        update_baseline_if_different: bool = False,
    ) -> TestResults:
        self.calls.append(("stop_session", {"id": session.id, "aborted": aborted}))
        return self.stop_result.model_copy(deep=True)

    async def match_window(self, session: RunningSession, data: Any) -> MatchResult:
        self.calls.append(("match_window", data))
        if self.match_results:
            return self.match_results.pop(0)
        return MatchResult(as_expected=True)

    async def match_window_and_close(self, session: RunningSession, data: Any) -> TestResults:
        self.calls.append(("match_window_and_close", data))
        if self.close_results:
            return self.close_results.pop(0)
        return self.stop_result.model_copy(deep=True)

    async def delete_batch_sessions(self, batch_id: str) -> None:
        self.calls.append(("delete_batch_sessions", batch_id))

    async def render_info(self) -> RenderingInfo:
        self.calls.append(("render_info", None))
        self.rendering_info = RENDERING_INFO
        return self.rendering_info

    async def upload_screenshot(self, screenshot: bytes, upload_id: str | None = None) -> str:
        self.calls.append(("upload_screenshot", screenshot))
        return "https://storage.test/blobs/screenshot"

    async def post_dom_snapshot(self, dom_json: str, upload_id: str | None = None) -> str:
        self.calls.append(("post_dom_snapshot", dom_json))
        return "https://storage.test/blobs/dom"

    # rendering grid ----------------------------------------------------------

    async def render(self, requests: list[Any]) -> list[RunningRender]:
        self.calls.append(("render", requests))
        if self.render_error is not None:
            raise self.render_error
        self._renders += 1
        return [RunningRender(render_id=f"render-{self._renders}", render_status=RenderStatus.RENDERING)]

    async def render_status(self, render_ids: list[str]) -> list[RenderStatusResults]:
        self.calls.append(("render_status", render_ids))
        render_id = render_ids[0]
        delay = self.render_delays.get(int(render_id.rsplit("-", 1)[1]), 0.0)
        if delay:
            await asyncio.sleep(delay)
        if render_id in self.render_status_error:
            raise self.render_status_error[render_id]
        return [
            RenderStatusResults(
                render_id=render_id,
                status=RenderStatus.RENDERED,
                image_location=f"https://storage.test/{render_id}.png",
                dom_location=f"https://storage.test/{render_id}.dom",
            )
        ]

    async def check_resources(self, hashes: list[dict[str, Any]]) -> list[bool]:
        self.calls.append(("check_resources", hashes))
        return [h.get("hash") in self.existing_hashes for h in hashes]

    async def put_resource(self, hash_value: str, content_type: str, value: bytes) -> None:
        self.calls.append(("put_resource", hash_value))
        self.uploaded.append(hash_value)


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector()


# ---------------------------------------------------------------------------
# Scripted HTTP
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


class MockServer:
    """Routes requests by ``(method, path)`` to queued responses.

    A route given several responses hands them out in order and then keeps
    returning the last one.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[httpx.Response | Handler]] = {}

    def add(self, method: str, path: str, *responses: httpx.Response | Handler) -> None:
        self._routes[(method.upper(), path)] = list(responses)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(599, text=f"no route for {request.method} {request.url.path}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if not isinstance(response, httpx.Response):
            return response(request)
        # a fresh copy, so one scripted response can answer many requests
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def json(status: int, payload: Any, headers: dict[str, str] | None = None) -> httpx.Response:
        return httpx.Response(
            status,
            content=json.dumps(payload).encode(),
            headers={"content-type": "application/json", **(headers or {})},
        )


@pytest.fixture
def mock_server() -> MockServer:
    return MockServer()


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@pytest.fixture
def dom_snapshot() -> DomSnapshot:
    """A page with one inline stylesheet and no URL resources."""
    return DomSnapshot(
        url="https://shop.test/checkout",
        cdt=[{"nodeType": 9, "childNodeIndexes": [1]}, {"nodeType": 1, "nodeName": "HTML"}],
        resource_contents={
            "https://shop.test/main.css": {
                "value": b"body { color: red; }",
                "type": "text/css",
            },
        },
    )
