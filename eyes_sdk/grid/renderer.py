"""Submit render requests to the grid and poll them to a terminal status."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

from eyes_sdk.errors import RenderError
from eyes_sdk.grid.controller import CancellationToken
from eyes_sdk.logger import Logger
from eyes_sdk.models import RenderRequest, RenderStatus, RenderStatusResults
from eyes_sdk.server.connector import ServerConnector
from eyes_sdk.utils import RENDER_STATUS_DELAYS, backoff_delay


class Renderer:
    def __init__(
        self,
        connector: ServerConnector,
        logger: Logger | None = None,
        status_delays: Sequence[float] = RENDER_STATUS_DELAYS,
        timeout: float | None = None,
    ) -> None:
        self.connector = connector
        self.logger = logger or Logger(label="Renderer")
        self.status_delays = status_delays
        self.timeout = timeout

    async def render(self, request: RenderRequest) -> str:
        """Submit one render request and return its render id."""
        running = await self.connector.render([request])
        if not running:
            raise RenderError("Render request returned no result")
        result = running[0]
        if result.render_status == RenderStatus.ERROR:
            raise RenderError(f"Render request failed for {request.url}", render_id=result.render_id)
        if result.render_status == RenderStatus.NEED_MORE_RESOURCES:
            missing = ", ".join(result.need_more_resources or [])
            raise RenderError(
                f"Render request still missing resources: {missing}", render_id=result.render_id
            )
        if not result.render_id:
            raise RenderError("Render request returned no render id")
        self.logger.verbose(f"render submitted: {result.render_id} ({result.render_status})")
        return result.render_id

    async def wait_for_rendered_status(
        self,
        render_id: str,
        token: CancellationToken | None = None,
    ) -> RenderStatusResults | None:
        """Poll until *render_id* is rendered.

        Returns ``None`` when *token* is cancelled before a poll. A render
        that ends in ``error`` raises ``RenderError``.
        """
        started = time.monotonic()
        attempt = 0
        while True:
            if token is not None and token.cancelled:
                self.logger.log(f"stopped waiting for render {render_id}")
                return None

            statuses = await self.connector.render_status([render_id])
            status = statuses[0] if statuses else RenderStatusResults(render_id=render_id)

            if status.status == RenderStatus.ERROR:
                raise RenderError(
                    f"Render {render_id} failed: {status.error or 'unknown error'}",
                    render_id=render_id,
                )
            if status.status == RenderStatus.RENDERED:
                self.logger.verbose(f"render {render_id} finished after {attempt + 1} poll(s)")
                return status

            if self.timeout is not None and time.monotonic() - started >= self.timeout:
                raise RenderError(f"Timed out waiting for render {render_id}", render_id=render_id)

            await asyncio.sleep(backoff_delay(self.status_delays, attempt))
            attempt += 1
