"""Runner: creates sessions, collects their results, closes batches."""

from __future__ import annotations

from typing import Any

import httpx

from eyes_sdk.classic import CaptureProvider, ClassicEyes
from eyes_sdk.config import Configuration
from eyes_sdk.grid.client import VisualGridClient, build_connector
from eyes_sdk.grid.controller import GlobalState
from eyes_sdk.grid.eyes import VisualGridEyes
from eyes_sdk.grid.store import ResourceStore
from eyes_sdk.logger import Logger
from eyes_sdk.results import TestResultContainer, TestResultsSummary


class EyesRunner:
    """Owns the connection shared by every session of a run.

    ``open_eyes`` returns a classic session when a capture provider is given
    and a Visual Grid session otherwise.
    """

    def __init__(
        self,
        config: Configuration | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        store: ResourceStore | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config or Configuration.from_env()
        self.logger = logger or Logger(
            label="Eyes",
            show_logs=self.config.show_logs,
            verbose=self.config.verbose_logs,
            log_file=self.config.log_file,
        )
        self._http_transport = http_transport
        self._store = store
        self.connector = build_connector(self.config, http_transport, self.logger)
        self.global_state = GlobalState(close_batch=self._close_batch, logger=self.logger)
        self._grid: VisualGridClient | None = None
        self._sessions: list[ClassicEyes | VisualGridEyes] = []
        self._containers: list[TestResultContainer] = []

    @property
    def grid(self) -> VisualGridClient:
        if self._grid is None:
            self._grid = VisualGridClient(
                self.config,
                connector=self.connector,
                http_transport=self._http_transport,
                store=self._store,
                global_state=self.global_state,
                logger=self.logger.extend("VG"),
            )
        return self._grid

    async def open_eyes(
        self,
        app_name: str | None = None,
        test_name: str | None = None,
        provider: CaptureProvider | None = None,
        config: Configuration | None = None,
        **kwargs: Any,
    ) -> ClassicEyes | VisualGridEyes:
        config = config or self.config
        eyes: ClassicEyes | VisualGridEyes
        if provider is not None:
            eyes = ClassicEyes(config, self.connector, provider, runner=self, logger=self.logger.extend("classic"))
        else:
            eyes = self.grid.open_eyes(config, runner=self)
        await eyes.open(app_name, test_name, **kwargs)
        self._sessions.append(eyes)
        return eyes

    def add_result(self, container: TestResultContainer) -> None:
        self._containers.append(container)
        if container.test_results is not None and container.test_results.batch_id:
            self.global_state.add_batch_id(container.test_results.batch_id)

    async def _close_batch(self, batch_id: str) -> None:
        if self.config.dont_close_batches:
            self.logger.log(f"not closing batch {batch_id}, batch closing is disabled")
            return
        await self.connector.delete_batch_sessions(batch_id)

    async def close_batches(self) -> list[BaseException]:
        """Close every batch a finished test reported. Failures are logged, not raised."""
        return await self.global_state.close_batches()

    async def get_all_test_results(self, throw_ex: bool = True) -> TestResultsSummary:
        """Abort sessions left open, close batches and summarize every result."""
        for eyes in self._sessions:
            if eyes.is_open:
                self.logger.warn("a test was not closed, aborting it")
                await eyes.abort()
        self._sessions.clear()

        await self.close_batches()
        summary = TestResultsSummary.from_containers(self._containers)
        if self.config.show_logs:
            summary.print_table()
        if throw_ex:
            summary.raise_for_status(self.config.fail_on_diff)
        return summary
