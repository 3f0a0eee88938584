"""Compare a capture against the baseline, retrying until it matches or time runs out.

A single ``match`` call issues between one and
``ceil(retry_timeout / MATCH_INTERVAL) + 1`` sequential exchanges against one
running session. While retrying, every exchange is sent with
``ignore_mismatch=True`` so the server does not record intermediate
mismatches; if none of them matches, one final exchange carries the caller's
own ``ignore_mismatch`` so a genuine mismatch is reported.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from eyes_sdk.logger import Logger
from eyes_sdk.models import (
    AppOutput,
    ImageMatchOptions,
    ImageMatchSettings,
    MatchResult,
    MatchWindowAndCloseData,
    MatchWindowData,
    RunningSession,
    TestResults,
)
from eyes_sdk.server.connector import ServerConnector

MATCH_INTERVAL = 0.5


@dataclass
class MatchData:
    """What one capture produces: the app output and the settings to match it with."""

    app_output: AppOutput
    match_settings: ImageMatchSettings = field(default_factory=ImageMatchSettings)
    dom_json: str | None = None


Capture = Callable[[bytes | None], Awaitable[MatchData]]

R = TypeVar("R")


class _RetryingTask(Generic[R]):
    match_interval = MATCH_INTERVAL

    def __init__(
        self,
        connector: ServerConnector,
        session: RunningSession,
        default_retry_timeout_ms: int = 2000,
        logger: Logger | None = None,
    ) -> None:
        self.connector = connector
        self.session = session
        self.default_retry_timeout_ms = default_retry_timeout_ms
        self.logger = logger or Logger(label="MatchTask")
        self.last_screenshot: bytes | None = None

    # ------------------------------------------------------------------
    # Hooks for the concrete tasks
    # ------------------------------------------------------------------

    def _build_data(self, **kwargs: Any) -> MatchWindowData:
        return MatchWindowData(**kwargs)

    async def _exchange(self, data: MatchWindowData) -> R:
        raise NotImplementedError

    def _succeeded(self, result: R) -> bool:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------

    async def match(
        self,
        tag: str | None,
        capture: Capture,
        *,
        ignore_mismatch: bool = False,
        retry_timeout: int | None = None,
        should_run_once_on_timeout: bool = False,
        user_inputs: Sequence[dict[str, Any]] = (),
        render_id: str | None = None,
        variation_group_id: str | None = None,
    ) -> R:
        timeout_ms = self.default_retry_timeout_ms if retry_timeout is None or retry_timeout < 0 else retry_timeout
        attempt_kwargs = {
            "tag": tag,
            "capture": capture,
            "user_inputs": list(user_inputs),
            "render_id": render_id,
            "variation_group_id": variation_group_id,
        }

        if timeout_ms == 0 or should_run_once_on_timeout:
            if should_run_once_on_timeout and timeout_ms > 0:
                self.logger.verbose(f"running once after {timeout_ms}ms")
                await asyncio.sleep(timeout_ms / 1000)
            result, screenshot = await self._attempt(ignore_mismatch=ignore_mismatch, **attempt_kwargs)
            return self._commit(result, screenshot, ignore_mismatch)

        started = time.monotonic()
        attempts = 0
        while True:
            result, screenshot = await self._attempt(ignore_mismatch=True, **attempt_kwargs)
            attempts += 1
            if self._succeeded(result):
                self.logger.verbose(f"'{tag}' matched after {attempts} attempt(s)")
                return self._commit(result, screenshot, ignore_mismatch)
            await asyncio.sleep(self.match_interval)
            spent = max(time.monotonic() - started, attempts * self.match_interval)
            if spent * 1000 >= timeout_ms:
                break

        self.logger.verbose(f"'{tag}' did not match within {timeout_ms}ms, sending final attempt")
        result, screenshot = await self._attempt(ignore_mismatch=ignore_mismatch, **attempt_kwargs)
        return self._commit(result, screenshot, ignore_mismatch)

    def _commit(self, result: R, screenshot: bytes | None, ignore_mismatch: bool) -> R:
        """Keep *screenshot* as the next diff base unless mismatches are ignored."""
        if not ignore_mismatch and screenshot:
            self.last_screenshot = screenshot
        return result

    async def _attempt(
        self,
        tag: str | None,
        capture: Capture,
        ignore_mismatch: bool,
        user_inputs: list[dict[str, Any]],
        render_id: str | None,
        variation_group_id: str | None,
    ) -> tuple[R, bytes | None]:
        captured = await capture(self.last_screenshot)
        options = ImageMatchOptions(
            name=tag,
            user_inputs=user_inputs,
            ignore_mismatch=ignore_mismatch,
            image_match_settings=captured.match_settings,
            render_id=render_id,
            variant_id=variation_group_id,
        )
        data = self._build_data(
            user_inputs=user_inputs,
            app_output=captured.app_output,
            tag=tag,
            ignore_mismatch=ignore_mismatch,
            options=options,
            render_id=render_id,
        )
        result = await self._exchange(data)
        return result, captured.app_output.screenshot


class MatchWindowTask(_RetryingTask[MatchResult]):
    """Retrying match against a running session."""

    async def _exchange(self, data: MatchWindowData) -> MatchResult:
        return await self.connector.match_window(self.session, data)

    def _succeeded(self, result: MatchResult) -> bool:
        return result.as_expected


class MatchWindowAndCloseTask(_RetryingTask[TestResults]):
    """Retrying match whose exchanges also stop the session on the server."""

    def __init__(
        self,
        connector: ServerConnector,
        session: RunningSession,
        default_retry_timeout_ms: int = 2000,
        logger: Logger | None = None,
        update_baseline_if_new: bool = True,
        update_baseline_if_different: bool = False,
    ) -> None:
        super().__init__(connector, session, default_retry_timeout_ms, logger)
        self.update_baseline_if_new = update_baseline_if_new
        self.update_baseline_if_different = update_baseline_if_different

    def _build_data(self, **kwargs: Any) -> MatchWindowAndCloseData:
        return MatchWindowAndCloseData(
            update_baseline_if_new=self.update_baseline_if_new,
            update_baseline_if_different=self.update_baseline_if_different,
            remove_session_if_matching=kwargs["ignore_mismatch"],
            **kwargs,
        )

    async def _exchange(self, data: MatchWindowAndCloseData) -> TestResults:  # type: ignore[override]
        return await self.connector.match_window_and_close(self.session, data)

    def _succeeded(self, result: TestResults) -> bool:
        return not result.is_different
