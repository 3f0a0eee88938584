"""Classic sessions: screenshots captured locally by a capture provider.

The provider (a browser driver, a mobile harness, a test double) produces
the image bytes for each attempt; ``ClassicEyes`` uploads them to the
results storage when the server handed out one, and otherwise sends them
inline with the match request.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from eyes_sdk.config import Configuration, RectangleSize
from eyes_sdk.eyes import EyesSession
from eyes_sdk.logger import Logger
from eyes_sdk.match_task import MatchData
from eyes_sdk.models import MatchResult, TestResults
from eyes_sdk.results import TestResultContainer
from eyes_sdk.server.connector import ServerConnector

if TYPE_CHECKING:
    from eyes_sdk.runner import EyesRunner


class CaptureProvider(Protocol):
    """Produces the app output for one match attempt."""

    async def get_match_data(
        self,
        last_screenshot: bytes | None,
        send_dom: bool,
        check_settings: dict[str, Any],
    ) -> MatchData: ...


class ClassicEyes:
    """``Session`` backed by a local capture provider."""

    def __init__(
        self,
        config: Configuration,
        connector: ServerConnector,
        provider: CaptureProvider,
        runner: EyesRunner | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.config = config
        self.connector = connector
        self.provider = provider
        self.runner = runner
        self.session = EyesSession(config, connector, logger=logger)
        self.logger = self.session.logger

    @property
    def is_open(self) -> bool:
        return self.session.is_open

    async def open(
        self,
        app_name: str | None = None,
        test_name: str | None = None,
        viewport_size: RectangleSize | None = None,
        session_type: str | None = None,
    ) -> ClassicEyes:
        await self.session.open(app_name, test_name, viewport_size, session_type)
        return self

    async def _prepare(self, data: MatchData) -> MatchData:
        info = self.connector.rendering_info
        if info is None or not info.results_url:
            return data

        update: dict[str, Any] = {}
        if data.app_output.screenshot and not data.app_output.screenshot_url:
            update["screenshot_url"] = await self.connector.upload_screenshot(data.app_output.screenshot)
        if data.dom_json and self.config.send_dom and not data.app_output.dom_url:
            update["dom_url"] = await self.connector.post_dom_snapshot(data.dom_json)
        if not update:
            return data
        return MatchData(
            app_output=data.app_output.model_copy(update=update),
            match_settings=data.match_settings,
            dom_json=data.dom_json,
        )

    async def check(
        self,
        tag: str | None = None,
        *,
        check_settings: dict[str, Any] | None = None,
        retry_timeout: int | None = None,
        ignore_mismatch: bool = False,
        close_after_match: bool = False,
        throw_ex: bool = True,
    ) -> MatchResult | TestResults | None:
        settings = check_settings or {}

        async def capture(last_screenshot: bytes | None) -> MatchData:
            data = await self.provider.get_match_data(last_screenshot, self.config.send_dom, settings)
            return await self._prepare(data)

        try:
            result = await self.session.check_window(
                tag,
                capture,
                retry_timeout=retry_timeout,
                ignore_mismatch=ignore_mismatch,
                close_after_match=close_after_match,
                throw_ex=throw_ex,
            )
        except Exception as exc:
            if close_after_match:
                self._register(getattr(exc, "test_results", None), exc)
            raise
        if close_after_match and isinstance(result, TestResults):
            self._register(result, None)
        return result

    async def close(self, throw_ex: bool = True) -> TestResults | None:
        results = await self.session.close(throw_ex=False)
        if results is None:
            return None
        error = results.to_error()
        self._register(results, error)
        if throw_ex and error is not None:
            raise error
        return results

    async def abort(self) -> TestResults | None:
        results = await self.session.abort()
        if results is not None:
            self._register(results, None)
        return results

    def _register(self, results: TestResults | None, exception: BaseException | None) -> None:
        if self.runner is not None:
            self.runner.add_result(TestResultContainer(test_results=results, exception=exception))
