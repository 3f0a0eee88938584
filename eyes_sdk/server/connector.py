"""Typed client for the Eyes server and the rendering grid.

``ServerConnector`` maps each remote operation onto one
``HttpTransport.request`` call and validates the statuses it accepts. The
combined match-and-close endpoint is negotiated once per connector: the
first 404 from it flips the cached capability to ``UNSUPPORTED`` and every
later call goes straight to match + stop.
"""

from __future__ import annotations

import gzip
import json
import struct
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx

from eyes_sdk.errors import EyesError
from eyes_sdk.logger import Logger
from eyes_sdk.models import (
    MatchResult,
    MatchWindowAndCloseData,
    MatchWindowData,
    RenderingInfo,
    RenderRequest,
    RenderStatusResults,
    RunningRender,
    RunningSession,
    SessionStartInfo,
    TestResults,
)
from eyes_sdk.server.transport import HttpTransport, expect_status
from eyes_sdk.utils import guid, http_date, url_concat

API_PATH = "/api/sessions"
REDUCED_TIMEOUT = 15.0
RENDER_STATUS_RETRY = 3
RENDER_STATUS_DELAY_BEFORE_RETRY = 0.5


class Capability(str, Enum):
    UNKNOWN = "unknown"
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"


def encode_match_body(data: MatchWindowData, screenshot: bytes) -> bytes:
    """Frame a match request as ``<4-byte big-endian json length><json><image>``."""
    payload = json.dumps(data.to_wire()).encode("utf-8")
    return struct.pack(">I", len(payload)) + payload + screenshot


class ServerConnector:
    """Endpoints of the Eyes server and of the rendering grid it points to."""

    def __init__(
        self,
        server_url: str,
        transport: HttpTransport,
        logger: Logger | None = None,
        render_status_timeout: float = REDUCED_TIMEOUT,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.transport = transport
        self.logger = logger or Logger(label="ServerConnector")
        self.render_status_timeout = render_status_timeout
        self.rendering_info: RenderingInfo | None = None
        self.match_and_close_capability = Capability.UNKNOWN

    def _api(self, *parts: str) -> str:
        return url_concat(self.server_url, API_PATH, *parts)

    def _render_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        if self.rendering_info is None:
            raise EyesError("Rendering info is not available; call render_info() first")
        headers = {"X-Auth-Token": self.rendering_info.access_token}
        if extra:
            headers.update(extra)
        return headers

    def _render_url(self, *parts: str) -> str:
        if self.rendering_info is None:
            raise EyesError("Rendering info is not available; call render_info() first")
        return url_concat(self.rendering_info.service_url, *parts)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def start_session(self, start_info: SessionStartInfo) -> RunningSession:
        self.logger.log(f"start_session called for '{start_info.scenario_id_or_name}'")
        response = await self.transport.request(
            "startSession",
            "POST",
            self._api("running"),
            json={"startInfo": start_info.to_wire()},
        )
        expect_status(response, "startSession", 200, 201)
        data = response.json()
        session = RunningSession.model_validate(data)
        if data.get("isNew") is None:
            session.is_new = response.status_code == 201
        self.logger.log(f"start_session succeeded: id={session.id} is_new={session.is_new}")
        return session

    async def stop_session(
        self,
        session: RunningSession,
        aborted: bool = False,
        update_baseline_if_new: bool = False,
        update_baseline_if_different: bool = False,
    ) -> TestResults:
        update_baseline = update_baseline_if_new if session.is_new else update_baseline_if_different
        self.logger.log(f"stop_session called: id={session.id} aborted={aborted}")
        response = await self.transport.request(
            "stopSession",
            "DELETE",
            self._api("running", quote(session.id, safe="")),
            params={"aborted": aborted, "updateBaseline": update_baseline},
        )
        expect_status(response, "stopSession", 200)
        return TestResults.model_validate(response.json())

    async def match_window(self, session: RunningSession, data: MatchWindowData) -> MatchResult:
        self.logger.verbose(f"match_window called: id={session.id} tag={data.tag}")
        response = await self._post_match("matchWindow", self._api("running", quote(session.id, safe="")), data)
        expect_status(response, "matchWindow", 200)
        return MatchResult.model_validate(response.json())

    async def match_window_and_close(
        self,
        session: RunningSession,
        data: MatchWindowAndCloseData,
    ) -> TestResults:
        """Match and stop the session in one request, or fall back to two."""
        if self.match_and_close_capability != Capability.UNSUPPORTED:
            response = await self._post_match(
                "matchWindowAndClose",
                self._api("running", quote(session.id, safe=""), "matchandend"),
                data,
                dont_retry_on_404=True,
            )
            if response.status_code != 404:
                expect_status(response, "matchWindowAndClose", 200)
                self.match_and_close_capability = Capability.SUPPORTED
                return TestResults.model_validate(response.json())
            self.logger.log("matchandend endpoint not found, falling back to match + stop")
            self.match_and_close_capability = Capability.UNSUPPORTED

        await self.match_window(session, data)
        return await self.stop_session(
            session,
            aborted=False,
            update_baseline_if_new=data.update_baseline_if_new,
            update_baseline_if_different=data.update_baseline_if_different,
        )

    async def _post_match(
        self,
        name: str,
        url: str,
        data: MatchWindowData,
        dont_retry_on_404: bool = False,
    ) -> httpx.Response:
        screenshot = data.app_output.screenshot
        if screenshot and not data.app_output.screenshot_url:
            return await self.transport.request(
                name,
                "POST",
                url,
                content=encode_match_body(data, screenshot),
                headers={"Content-Type": "application/octet-stream"},
                dont_retry_on_404=dont_retry_on_404,
            )
        return await self.transport.request(
            name, "POST", url, json=data.to_wire(), dont_retry_on_404=dont_retry_on_404
        )

    async def delete_batch_sessions(self, batch_id: str) -> None:
        self.logger.log(f"delete_batch_sessions called for batch {batch_id}")
        response = await self.transport.request(
            "deleteBatchSessions",
            "DELETE",
            self._api("batches", quote(batch_id, safe=""), "close", "bypointerid"),
        )
        expect_status(response, "deleteBatchSessions", 200)

    async def render_info(self) -> RenderingInfo:
        response = await self.transport.request("renderInfo", "GET", self._api("renderinfo"))
        expect_status(response, "renderInfo", 200)
        self.rendering_info = RenderingInfo.model_validate(response.json())
        return self.rendering_info

    # ------------------------------------------------------------------
    # Blob storage
    # ------------------------------------------------------------------

    async def upload_screenshot(self, screenshot: bytes, upload_id: str | None = None) -> str:
        """PUT image bytes to the results storage and return their URL."""
        return await self._upload_blob("uploadScreenshot", screenshot, upload_id)

    async def post_dom_snapshot(self, dom_json: str, upload_id: str | None = None) -> str:
        """PUT a gzipped DOM snapshot to the results storage and return its URL."""
        return await self._upload_blob("postDomSnapshot", gzip.compress(dom_json.encode("utf-8")), upload_id)

    async def _upload_blob(self, name: str, body: bytes, upload_id: str | None) -> str:
        if self.rendering_info is None or not self.rendering_info.results_url:
            raise EyesError(f"{name}: results URL is not available")
        url = self.rendering_info.results_url.replace("__random__", upload_id or guid())
        response = await self.transport.request(
            name,
            "PUT",
            url,
            content=body,
            headers={
                "Date": http_date(),
                "x-ms-blob-type": "BlockBlob",
                "Content-Type": "application/octet-stream",
            },
            with_api_key=False,
        )
        expect_status(response, name, 201)
        return url

    # ------------------------------------------------------------------
    # Rendering grid
    # ------------------------------------------------------------------

    async def render(self, requests: list[RenderRequest]) -> list[RunningRender]:
        response = await self.transport.request(
            "render",
            "POST",
            self._render_url("render"),
            json=[r.to_wire() for r in requests],
            headers=self._render_headers(),
            with_api_key=False,
        )
        expect_status(response, "render", 200)
        return [RunningRender.model_validate(item) for item in response.json()]

    async def render_status(self, render_ids: list[str]) -> list[RenderStatusResults]:
        response = await self.transport.request(
            "renderStatus",
            "POST",
            self._render_url("render-status"),
            json=render_ids,
            headers=self._render_headers(),
            with_api_key=False,
            timeout=self.render_status_timeout,
            retry=RENDER_STATUS_RETRY,
            delay_before_retry=RENDER_STATUS_DELAY_BEFORE_RETRY,
        )
        expect_status(response, "renderStatus", 200)
        return [RenderStatusResults.model_validate(item or {}) for item in response.json()]

    async def check_resources(self, hashes: list[dict[str, Any]]) -> list[bool]:
        """Ask the grid which of *hashes* it already stores."""
        response = await self.transport.request(
            "renderCheckResources",
            "POST",
            self._render_url("resources", "query", "resources-exist") + "/",
            json=hashes,
            params={"render-id": guid()},
            headers=self._render_headers(),
            with_api_key=False,
        )
        expect_status(response, "renderCheckResources", 200)
        return [bool(flag) for flag in response.json()]

    async def put_resource(self, hash_value: str, content_type: str, value: bytes) -> None:
        self.logger.verbose(f"put_resource {hash_value} ({content_type})")
        response = await self.transport.request(
            "renderPutResource",
            "PUT",
            self._render_url("resources", "sha256", hash_value),
            content=value,
            params={"render-id": guid()},
            headers=self._render_headers({"Content-Type": content_type}),
            with_api_key=False,
        )
        expect_status(response, "renderPutResource", 200)
