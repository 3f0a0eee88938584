"""Visual Grid sessions: one logical test rendered on N browsers.

Every browser is a *leg* with its own ``EyesSession``. A check turns the
caller's DOM snapshot into one render request per leg; each leg then runs an
independent job:

    open -> start session -> resources -> render -> poll status -> match

Render submissions pass through a FIFO gate sized
``concurrent_renders_per_test * len(browsers)``; a slot is held until the
render reaches a terminal status. Matches of one leg are issued in step
order even when later renders finish first.

A failed render submission is fatal for every leg of the test. Any other
failure only stops the leg it happened on.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from eyes_sdk.config import Configuration
from eyes_sdk.errors import EyesError
from eyes_sdk.eyes import EyesSession
from eyes_sdk.grid.controller import StepQueue, StepTicket, TestController
from eyes_sdk.grid.regions import RegionCalculator, RegionInput, is_invalid_accessibility
from eyes_sdk.grid.render_request import create_render_request, enrich_render_request
from eyes_sdk.logger import Logger
from eyes_sdk.match_task import MatchData
from eyes_sdk.models import AppOutput, DomSnapshot, RenderRequest, RenderStatusResults, TestResults
from eyes_sdk.results import TestResultContainer

if TYPE_CHECKING:
    from eyes_sdk.grid.client import VisualGridClient
    from eyes_sdk.grid.processor import ResourceMapping
    from eyes_sdk.runner import EyesRunner

RegionArg = RegionInput | list[RegionInput] | None


def _consume_exception(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()


class VisualGridEyes:
    """``Session`` that renders each check on every configured browser."""

    def __init__(
        self,
        client: VisualGridClient,
        config: Configuration,
        runner: EyesRunner | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.runner = runner
        self.logger = logger or client.logger
        self.browsers = list(config.browsers)
        self.wrappers = [
            EyesSession(config.with_browser(browser), client.connector, logger=self.logger.extend(browser.display_name))
            for browser in self.browsers
        ]
        self.controller: TestController | None = None
        self.test_name: str | None = None

        self._render_gate = asyncio.Semaphore(config.concurrent_renders_per_test * len(self.browsers))
        self._queues = [StepQueue() for _ in self.browsers]
        self._open_tasks: list[asyncio.Task[None]] = []
        self._jobs: list[asyncio.Task[None]] = []
        self._leg_results: dict[int, TestResults] = {}
        self._step_count = 0
        self._is_open = False
        self._is_closed = False
        self._holds_slot = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open(
        self,
        app_name: str | None = None,
        test_name: str | None = None,
        session_type: str | None = None,
    ) -> VisualGridEyes:
        if not self.config.api_key:
            raise EyesError("API key is missing! Set APPLITOOLS_API_KEY or pass api_key in the configuration")
        app_name = app_name or self.config.app_name
        test_name = test_name or self.config.test_name
        if not app_name:
            raise EyesError("app_name must be set")
        if not test_name:
            raise EyesError("test_name must be set")
        if self._is_open:
            await self.abort()
            raise EyesError("A test is already running")

        await self.client.session_gate.acquire()
        self._holds_slot = True
        try:
            await self.client.get_initial_data()
        except BaseException:
            self._release_slot()
            raise

        self.test_name = test_name
        self.controller = self.client.global_state.make_test_controller(test_name, len(self.browsers))
        self._is_open = True
        self._is_closed = False
        self.logger.log(f"open: app='{app_name}' test='{test_name}' browsers={len(self.browsers)}")
        self._open_tasks = [
            asyncio.ensure_future(self._open_leg(index, app_name, test_name, session_type))
            for index in range(len(self.browsers))
        ]
        return self

    async def _open_leg(self, index: int, app_name: str, test_name: str, session_type: str | None) -> None:
        assert self.controller is not None
        try:
            await self.wrappers[index].open(
                app_name,
                test_name,
                viewport_size=self.browsers[index].viewport,
                session_type=session_type,
                skip_starting_session=True,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"open failed for {self.browsers[index].display_name}: {exc}")
            self.controller.set_error(index, exc)

    # ------------------------------------------------------------------
    # Check
    # ------------------------------------------------------------------

    async def check(self, snapshot: DomSnapshot | list[DomSnapshot], **kwargs: Any) -> list[TestResultContainer] | None:
        return await self.check_window(snapshot, **kwargs)

    async def check_window(
        self,
        snapshot: DomSnapshot | list[DomSnapshot],
        url: str | None = None,
        tag: str | None = None,
        target: str = "full-page",
        selector: Any = None,
        region: dict[str, int] | None = None,
        ignore: RegionArg = None,
        layout: RegionArg = None,
        strict: RegionArg = None,
        content: RegionArg = None,
        floating: RegionArg = None,
        accessibility: RegionArg = None,
        match_level: str | None = None,
        use_dom: bool | None = None,
        enable_patterns: bool | None = None,
        ignore_displacements: bool | None = None,
        send_dom: bool | None = None,
        visual_grid_options: dict[str, Any] | None = None,
        script_hooks: dict[str, Any] | None = None,
        cookies: list[dict[str, Any]] | None = None,
        variation_group_id: str | None = None,
        close_after_match: bool = False,
        throw_ex: bool = True,
    ) -> list[TestResultContainer] | None:
        """Schedule one check on every browser.

        Returns immediately; failures surface from ``close``. With
        ``close_after_match`` the check also ends the test and its results
        are returned as from ``close``.
        """
        if not self._is_open or self.controller is None:
            raise EyesError("Eyes not open")
        controller = self.controller

        accessibility_error = is_invalid_accessibility(accessibility)
        if accessibility_error:
            controller.set_fatal_error(EyesError(f"Invalid accessibility:\n{accessibility_error}"))
            return None

        self._step_count += 1
        step = self._step_count
        self.logger.log(f"running check_window for test {self.test_name} step #{step}")
        if controller.should_stop_all_tests():
            self.logger.log("aborting check_window synchronously")
            return None

        snapshots = snapshot if isinstance(snapshot, list) else [snapshot] * len(self.browsers)
        calculator = RegionCalculator(
            ignore=ignore,
            layout=layout,
            strict=strict,
            content=content,
            accessibility=accessibility,
            floating=floating,
        )
        settings_update = {
            "match_level": match_level,
            "use_dom": use_dom,
            "enable_patterns": enable_patterns,
            "ignore_displacements": ignore_displacements,
        }

        for index, browser in enumerate(self.browsers):
            leg_snapshot = snapshots[index]
            mapping_task = asyncio.ensure_future(
                self.client.processor.create_resource_mapping(
                    leg_snapshot,
                    browser_name=browser.name,
                    cookies=cookies,
                    proxy=self.config.proxy,
                )
            )
            mapping_task.add_done_callback(_consume_exception)
            request = create_render_request(
                url=url or leg_snapshot.url,
                browser=browser,
                rendering_info=self.client.rendering_info,
                target=target,
                selector=selector,
                selectors_to_find_regions_for=calculator.selectors_to_find_regions_for,
                region=region,
                script_hooks=script_hooks,
                send_dom=self.config.send_dom if send_dom is None else send_dom,
                visual_grid_options=visual_grid_options,
                agent_id=self.config.agent_id,
            )
            ticket = self._queues[index].enqueue()
            self._jobs.append(
                asyncio.ensure_future(
                    self._check_job(
                        index,
                        step,
                        ticket,
                        leg_snapshot,
                        mapping_task,
                        request,
                        calculator,
                        {k: v for k, v in settings_update.items() if v is not None},
                        tag=tag,
                        variation_group_id=variation_group_id,
                        close_after_match=close_after_match,
                    )
                )
            )

        if close_after_match:
            return await self.close(throw_ex=throw_ex)
        return None

    async def _check_job(
        self,
        index: int,
        step: int,
        ticket: StepTicket,
        snapshot: DomSnapshot,
        mapping_task: asyncio.Future[ResourceMapping],
        request: RenderRequest,
        calculator: RegionCalculator,
        settings_update: dict[str, Any],
        *,
        tag: str | None,
        variation_group_id: str | None,
        close_after_match: bool,
    ) -> None:
        assert self.controller is not None
        controller = self.controller
        token = controller.token(index)
        wrapper = self.wrappers[index]
        try:
            if token.cancelled:
                self.logger.log(f"step #{step} leg {index}: stopped before open")
                return
            await self._open_tasks[index]
            if token.cancelled:
                self.logger.log(f"step #{step} leg {index}: stopped after open")
                return

            try:
                await wrapper.ensure_running_session()
            except Exception as exc:  # noqa: BLE001
                controller.set_error(index, exc)
                return

            try:
                mapping = await mapping_task
            except Exception as exc:  # noqa: BLE001
                self.logger.error(f"resources for step #{step} failed: {exc}")
                controller.set_error(index, exc)
                return
            enrich_render_request(request, mapping, snapshot)

            status = await self._render_and_wait(index, request)
            if status is None:
                return
            if status.image_location:
                self.logger.verbose(f"screenshot available for {status.render_id} at {status.image_location}")
            else:
                self.logger.log(f"screenshot NOT available for {status.render_id}")

            await ticket.wait_previous()
            if token.cancelled:
                self.logger.log(f"step #{step} leg {index}: stopped before match")
                return

            regions = calculator.match_regions(status.selector_regions, status.image_position_in_active_frame)
            settings = wrapper.default_match_settings().model_copy(update={**settings_update, **regions})
            app_output = AppOutput(
                screenshot_url=status.image_location,
                dom_url=status.dom_location,
                location=status.image_position_in_active_frame,
            )

            async def capture(_last_screenshot: bytes | None) -> MatchData:
                return MatchData(app_output=app_output, match_settings=settings)

            result = await wrapper.check_window(
                tag,
                capture,
                render_id=status.render_id,
                variation_group_id=variation_group_id,
                retry_timeout=0,
                close_after_match=close_after_match,
                throw_ex=False,
            )
            if close_after_match and isinstance(result, TestResults):
                self._leg_results[index] = result
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"step #{step} leg {index} failed: {exc}")
            controller.set_error(index, exc)
        finally:
            ticket.finish()

    async def _render_and_wait(self, index: int, request: RenderRequest) -> RenderStatusResults | None:
        assert self.controller is not None
        controller = self.controller
        token = controller.token(index)
        global_state = self.client.global_state

        if controller.should_stop_all_tests():
            return None

        global_state.queued_renders_count += 1
        queued = True
        try:
            async with self._render_gate:
                try:
                    render_id = await self.client.renderer.render(request)
                except Exception as exc:  # noqa: BLE001
                    self.logger.error(f"render failed, stopping every browser of the test: {exc}")
                    controller.set_fatal_error(exc)
                    return None
                finally:
                    global_state.queued_renders_count -= 1
                    queued = False

                controller.add_render_id(index, render_id)
                if token.cancelled:
                    return None

                try:
                    status = await self.client.renderer.wait_for_rendered_status(render_id, token)
                except Exception as exc:  # noqa: BLE001
                    self.logger.error(f"render status for {render_id} failed: {exc}")
                    controller.set_error(index, exc)
                    return None
        finally:
            if queued:
                global_state.queued_renders_count -= 1

        if status is None or token.cancelled:
            return None
        return status

    # ------------------------------------------------------------------
    # Close / abort
    # ------------------------------------------------------------------

    async def _wait_for_jobs(self) -> None:
        await asyncio.gather(*self._open_tasks, *self._jobs, return_exceptions=True)

    async def close(self, throw_ex: bool = True) -> list[TestResultContainer]:
        """Wait for every job and end each leg; returns one container per browser."""
        if self.controller is None:
            raise EyesError("Eyes not open")
        controller = self.controller
        if controller.aborted_by_user or self._is_closed:
            return []
        self._is_open = False
        self._is_closed = True

        try:
            await self._wait_for_jobs()
            self.client.global_state.add_batch_id(self.config.batch.id)

            containers = []
            for index in range(len(self.browsers)):
                containers.append(await self._close_leg(index))
        finally:
            self._release_slot()

        self._register(containers)
        if throw_ex:
            for container in containers:
                if container.exception is not None:
                    raise container.exception
        return containers

    async def _close_leg(self, index: int) -> TestResultContainer:
        assert self.controller is not None
        controller = self.controller
        browser = self.browsers[index]
        wrapper = self.wrappers[index]

        fatal = controller.fatal_error
        if fatal is not None:
            await wrapper.abort()
            return TestResultContainer(browser_info=browser, exception=fatal)

        error = controller.get_error(index)
        if error is not None:
            await wrapper.abort()
            return TestResultContainer(browser_info=browser, exception=error)

        results = self._leg_results.get(index)
        if results is None:
            try:
                results = await wrapper.close(throw_ex=False)
            except Exception as exc:  # noqa: BLE001
                return TestResultContainer(browser_info=browser, exception=exc)
        if results is None:
            return TestResultContainer(browser_info=browser)

        for step, render_id in zip(results.steps_info, controller.get_render_ids(index)):
            step.render_id = [render_id]
        return TestResultContainer(test_results=results, browser_info=browser, exception=results.to_error())

    async def abort(self) -> list[TestResultContainer]:
        """Stop every job and abort every leg. Idempotent."""
        controller = self.controller
        if controller is None or controller.aborted_by_user or self._is_closed:
            return []
        controller.set_aborted_by_user()
        self._is_open = False
        self._is_closed = True

        try:
            await self._wait_for_jobs()
            containers = []
            for browser, wrapper in zip(self.browsers, self.wrappers):
                results = await wrapper.abort()
                containers.append(TestResultContainer(test_results=results, browser_info=browser))
        finally:
            self._release_slot()

        self._register(containers)
        return containers

    def _register(self, containers: list[TestResultContainer]) -> None:
        if self.runner is not None:
            for container in containers:
                self.runner.add_result(container)

    def _release_slot(self) -> None:
        if self._holds_slot:
            self._holds_slot = False
            self.client.session_gate.release()
