"""Session lifecycle: open, check zero or more times, then close or abort.

``EyesSession`` owns one running session on the server. The remote session
is started lazily: ``open`` starts it right away only when a viewport size is
already known, otherwise the first ``check_window`` does. Closing a session
that never started returns an empty ``TestResults`` without a round trip.

``Session`` is the surface the runner and test-framework glue program
against; ``ClassicEyes`` and ``VisualGridEyes`` both implement it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from eyes_sdk.config import Configuration, FailureReports, RectangleSize
from eyes_sdk.errors import EyesError, TestFailedError
from eyes_sdk.logger import Logger
from eyes_sdk.match_task import Capture, MatchWindowAndCloseTask, MatchWindowTask
from eyes_sdk.models import (
    AppEnvironment,
    ImageMatchSettings,
    MatchResult,
    RunningSession,
    SessionStartInfo,
    TestResults,
)
from eyes_sdk.server.connector import ServerConnector

Hook = Callable[[], Awaitable[None]]


@runtime_checkable
class Session(Protocol):
    """The four operations a test framework drives.

    Implemented by ``ClassicEyes`` and ``VisualGridEyes``. ``EyesSession`` is
    the per-test server lifecycle both of them delegate to.
    """

    async def open(self, *args: Any, **kwargs: Any) -> Any: ...

    async def check(self, *args: Any, **kwargs: Any) -> Any: ...

    async def close(self, throw_ex: bool = True) -> Any: ...

    async def abort(self) -> Any: ...


class EyesSession:
    """One test's lifecycle against the Eyes server."""

    def __init__(
        self,
        config: Configuration,
        connector: ServerConnector,
        logger: Logger | None = None,
        before_match_window: Hook | None = None,
        after_match_window: Hook | None = None,
    ) -> None:
        self.config = config
        self.connector = connector
        self.logger = logger or Logger(
            label="Eyes",
            show_logs=config.show_logs,
            verbose=config.verbose_logs,
            log_file=config.log_file,
        )
        self.before_match_window = before_match_window
        self.after_match_window = after_match_window

        self.app_name: str | None = None
        self.test_name: str | None = None
        self.viewport_size: RectangleSize | None = config.viewport_size
        self.session_type = config.session_type

        self._is_open = False
        self._running_session: RunningSession | None = None
        self._match_task: MatchWindowTask | None = None
        self._should_run_once_on_timeout = False
        self._user_inputs: list[dict[str, Any]] = []
        self._start_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def running_session(self) -> RunningSession | None:
        return self._running_session

    @property
    def is_disabled(self) -> bool:
        return self.config.is_disabled

    def add_user_input(self, trigger: dict[str, Any]) -> None:
        if self.is_disabled or not self._is_open:
            return
        self._user_inputs.append(trigger)

    def _reset(self) -> None:
        self._is_open = False
        self._running_session = None
        self._match_task = None
        self._should_run_once_on_timeout = False
        self._user_inputs.clear()

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open(
        self,
        app_name: str | None = None,
        test_name: str | None = None,
        viewport_size: RectangleSize | None = None,
        session_type: str | None = None,
        skip_starting_session: bool = False,
    ) -> None:
        if self.is_disabled:
            self.logger.log("open ignored, Eyes is disabled")
            return
        if not self.config.api_key:
            raise EyesError(
                "API key is missing! Set APPLITOOLS_API_KEY or pass api_key in the configuration"
            )

        app_name = app_name or self.config.app_name
        test_name = test_name or self.config.test_name
        if not app_name:
            raise EyesError("app_name must be set")
        if not test_name:
            raise EyesError("test_name must be set")

        if self._is_open:
            await self.abort()
            raise EyesError("A test is already running")

        self.app_name = app_name
        self.test_name = test_name
        self.viewport_size = viewport_size or self.config.viewport_size
        self.session_type = session_type or self.config.session_type
        self._is_open = True
        self.logger.log(f"open: app='{app_name}' test='{test_name}'")

        if self.viewport_size is not None and not skip_starting_session:
            await self.ensure_running_session()

    def default_match_settings(self) -> ImageMatchSettings:
        return ImageMatchSettings(
            match_level=self.config.match_level,
            ignore_caret=self.config.ignore_caret,
            use_dom=self.config.use_dom,
            enable_patterns=self.config.enable_patterns,
            ignore_displacements=self.config.ignore_displacements,
        )

    def _session_start_info(self) -> SessionStartInfo:
        cfg = self.config
        batch = cfg.batch
        display_size = None
        if self.viewport_size is not None:
            display_size = {"width": self.viewport_size.width, "height": self.viewport_size.height}
        return SessionStartInfo(
            agent_id=cfg.agent_id,
            session_type=self.session_type,
            app_id_or_name=self.app_name or "",
            scenario_id_or_name=self.test_name or "",
            display_name=cfg.display_name,
            batch_info={
                "id": batch.id,
                "name": batch.name,
                "batchSequenceName": batch.sequence_name,
                "startedAt": batch.started_at,
                "notifyOnCompletion": batch.notify_on_completion,
            },
            baseline_env_name=cfg.baseline_env_name,
            environment_name=cfg.environment_name,
            environment=AppEnvironment(
                os=cfg.host_os,
                hosting_app=cfg.host_app,
                display_size=display_size,
            ),
            default_match_settings=self.default_match_settings(),
            branch_name=cfg.branch_name,
            parent_branch_name=cfg.parent_branch_name,
            baseline_branch_name=cfg.baseline_branch_name,
            save_diffs=cfg.save_diffs,
            properties=cfg.properties,
        )

    async def ensure_running_session(self) -> RunningSession:
        if self._running_session is not None:
            return self._running_session
        async with self._start_lock:
            if self._running_session is not None:
                return self._running_session
            return await self._start_session()

    async def _start_session(self) -> RunningSession:
        session = await self.connector.start_session(self._session_start_info())
        self._running_session = session
        self.logger.tag("session", session.id)
        if session.rendering_info is not None and self.connector.rendering_info is None:
            self.connector.rendering_info = session.rendering_info
        self._should_run_once_on_timeout = bool(session.is_new)
        self._match_task = MatchWindowTask(
            self.connector,
            session,
            default_retry_timeout_ms=self.config.match_timeout_ms,
            logger=self.logger,
        )
        return session

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def check_window(
        self,
        tag: str | None,
        capture: Capture,
        *,
        render_id: str | None = None,
        variation_group_id: str | None = None,
        retry_timeout: int | None = None,
        ignore_mismatch: bool = False,
        close_after_match: bool = False,
        throw_ex: bool = True,
    ) -> MatchResult | TestResults | None:
        if self.is_disabled:
            self.logger.log(f"check_window('{tag}') ignored, Eyes is disabled")
            return None
        if not self._is_open:
            raise EyesError("Eyes not open")

        if self.config.wait_before_capture_ms:
            await asyncio.sleep(self.config.wait_before_capture_ms / 1000)
        if self.before_match_window is not None:
            await self.before_match_window()

        session = await self.ensure_running_session()

        if close_after_match:
            return await self._check_and_close(
                tag,
                capture,
                session,
                render_id=render_id,
                variation_group_id=variation_group_id,
                retry_timeout=retry_timeout,
                ignore_mismatch=ignore_mismatch,
                throw_ex=throw_ex,
            )

        assert self._match_task is not None
        result = await self._match_task.match(
            tag,
            capture,
            ignore_mismatch=ignore_mismatch,
            retry_timeout=retry_timeout,
            should_run_once_on_timeout=self._should_run_once_on_timeout,
            user_inputs=self._user_inputs,
            render_id=render_id,
            variation_group_id=variation_group_id,
        )

        if self.after_match_window is not None:
            await self.after_match_window()
        if not ignore_mismatch:
            self._user_inputs.clear()
        self._validate_result(tag, result.as_expected)
        return result

    def _validate_result(self, tag: str | None, as_expected: bool) -> None:
        if as_expected:
            return
        self._should_run_once_on_timeout = True
        self.logger.log(f"mismatch found in '{tag}'")
        if self.config.failure_reports == FailureReports.IMMEDIATE:
            raise TestFailedError(f"Mismatch found in '{self.test_name}' of '{self.app_name}'")

    async def _check_and_close(
        self,
        tag: str | None,
        capture: Capture,
        session: RunningSession,
        *,
        render_id: str | None,
        variation_group_id: str | None,
        retry_timeout: int | None,
        ignore_mismatch: bool,
        throw_ex: bool,
    ) -> TestResults:
        task = MatchWindowAndCloseTask(
            self.connector,
            session,
            default_retry_timeout_ms=self.config.match_timeout_ms,
            logger=self.logger,
            update_baseline_if_new=self.config.save_new_tests,
            update_baseline_if_different=self.config.save_failed_tests,
        )
        try:
            results = await task.match(
                tag,
                capture,
                ignore_mismatch=ignore_mismatch,
                retry_timeout=retry_timeout,
                should_run_once_on_timeout=self._should_run_once_on_timeout,
                user_inputs=self._user_inputs,
                render_id=render_id,
                variation_group_id=variation_group_id,
            )
            if self.after_match_window is not None:
                await self.after_match_window()
            return self._finalize_results(results, session, throw_ex)
        finally:
            self._reset()
            self.logger.close()

    # ------------------------------------------------------------------
    # Close / abort
    # ------------------------------------------------------------------

    def _finalize_results(
        self,
        results: TestResults,
        session: RunningSession,
        throw_ex: bool,
    ) -> TestResults:
        results.is_new = session.is_new
        results.url = session.url
        results.name = results.name or self.test_name
        results.app_name = results.app_name or self.app_name
        results.batch_id = results.batch_id or session.batch_id
        status = results.resolve_status()
        self.logger.log(f"'{self.test_name}' finished with status {status.value}")

        error = results.to_error()
        if error is not None:
            self.logger.log(error.message)
            if throw_ex:
                raise error
        return results

    async def close(self, throw_ex: bool = True) -> TestResults | None:
        if self.is_disabled:
            self.logger.log("close ignored, Eyes is disabled")
            return None
        if not self._is_open:
            raise EyesError("Eyes not open")

        try:
            self._user_inputs.clear()
            self._is_open = False
            session = self._running_session
            if session is None:
                self.logger.log("close: no running session, returning empty results")
                return TestResults(name=self.test_name, app_name=self.app_name, is_empty=True)

            results = await self.connector.stop_session(
                session,
                aborted=False,
                update_baseline_if_new=self.config.save_new_tests,
                update_baseline_if_different=self.config.save_failed_tests,
            )
            return self._finalize_results(results, session, throw_ex)
        finally:
            self._reset()
            self.logger.close()

    async def abort(self) -> TestResults | None:
        """Stop the session in aborted mode. Never raises."""
        if self.is_disabled:
            return None
        self._is_open = False
        session = self._running_session
        if session is None:
            return None
        self._running_session = None
        try:
            results = await self.connector.stop_session(session, aborted=True)
            results.is_aborted = True
            return results
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"abort failed: {exc}")
            return None
        finally:
            self._reset()
            self.logger.close()
