"""Shared machinery behind every Visual Grid session of a runner."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from eyes_sdk.config import Configuration
from eyes_sdk.errors import EyesError
from eyes_sdk.grid.controller import GlobalState
from eyes_sdk.grid.eyes import VisualGridEyes
from eyes_sdk.grid.fetcher import ResourceFetcher
from eyes_sdk.grid.processor import ResourceProcessor
from eyes_sdk.grid.renderer import Renderer
from eyes_sdk.grid.store import ResourceStore
from eyes_sdk.grid.uploader import ResourceUploader
from eyes_sdk.logger import Logger
from eyes_sdk.models import RenderingInfo
from eyes_sdk.server.connector import ServerConnector
from eyes_sdk.server.transport import HttpTransport

if TYPE_CHECKING:
    from eyes_sdk.runner import EyesRunner


def build_connector(
    config: Configuration,
    http_transport: httpx.AsyncBaseTransport | None,
    logger: Logger,
) -> ServerConnector:
    """Connector for *config*; *http_transport* replaces the network (tests)."""
    transport = HttpTransport(
        api_key=config.api_key,
        agent_id=config.agent_id,
        timeout=config.connection_timeout,
        proxy=config.proxy.to_httpx() if config.proxy else None,
        remove_session=config.remove_session,
        transport=http_transport,
        logger=logger.extend("transport"),
    )
    return ServerConnector(
        config.server_url,
        transport,
        logger=logger.extend("server"),
        render_status_timeout=config.render_status_timeout,
    )


class VisualGridClient:
    """Resource pipeline, renderer, render info and the test-concurrency gate."""

    def __init__(
        self,
        config: Configuration,
        connector: ServerConnector | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        store: ResourceStore | None = None,
        global_state: GlobalState | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or Logger(
            label="Eyes/VG",
            show_logs=config.show_logs,
            verbose=config.verbose_logs,
            log_file=config.log_file,
        )
        self.connector = connector or build_connector(config, http_transport, self.logger)
        self.store = store or ResourceStore()
        self.fetcher = ResourceFetcher(transport=http_transport, logger=self.logger.extend("fetch"))
        self.uploader = ResourceUploader(self.connector, self.store, logger=self.logger.extend("upload"))
        self.processor = ResourceProcessor(self.fetcher, self.uploader, self.store, logger=self.logger.extend("resources"))
        self.renderer = Renderer(
            self.connector,
            timeout=config.render_wait_timeout,
            logger=self.logger.extend("render"),
        )
        self.global_state = global_state or GlobalState(close_batch=self.close_batch, logger=self.logger)
        self.session_gate = asyncio.Semaphore(config.test_concurrency)
        self._initial_data: asyncio.Task[RenderingInfo] | None = None

    @property
    def rendering_info(self) -> RenderingInfo:
        if self.connector.rendering_info is None:
            raise EyesError("Rendering info is not available; open a test first")
        return self.connector.rendering_info

    async def get_initial_data(self) -> RenderingInfo:
        """Fetch the render info once; concurrent callers share the request."""
        if self.connector.rendering_info is not None:
            return self.connector.rendering_info
        if self._initial_data is None:
            self._initial_data = asyncio.ensure_future(self.connector.render_info())
        try:
            return await asyncio.shield(self._initial_data)
        except Exception:
            self._initial_data = None
            raise

    def open_eyes(self, config: Configuration | None = None, runner: EyesRunner | None = None) -> VisualGridEyes:
        return VisualGridEyes(self, config or self.config, runner=runner)

    async def close_batch(self, batch_id: str) -> None:
        if self.config.dont_close_batches:
            self.logger.log(f"not closing batch {batch_id}, batch closing is disabled")
            return
        await self.connector.delete_batch_sessions(batch_id)
