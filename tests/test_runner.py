"""Unit tests for EyesRunner (eyes_sdk.runner).

Tests cover:
- Classic and Visual Grid sessions opened through one runner
- get_all_test_results: batch closing, dont_close_batches, unclosed tests aborted
- fail_on_diff deciding whether content errors raise
- One fatal grid error shared by every browser counted once
- One batch registry shared by classic and grid sessions
- Configuration read from the environment when none is given
"""

from __future__ import annotations

import io
import os
from typing import Any
from unittest.mock import patch

import pytest
from rich.console import Console

from eyes_sdk.classic import ClassicEyes
from eyes_sdk.config import BatchInfo, Configuration, RectangleSize
from eyes_sdk.errors import DiffsFoundError, RenderError
from eyes_sdk.eyes import Session
from eyes_sdk.grid.eyes import VisualGridEyes
from eyes_sdk.match_task import MatchData
from eyes_sdk.models import AppOutput, TestResults, TestResultsStatus
from eyes_sdk.runner import EyesRunner


class StaticProvider:
    async def get_match_data(
        self,
        last_screenshot: bytes | None,
        send_dom: bool,
        check_settings: dict[str, Any],
    ) -> MatchData:
        return MatchData(app_output=AppOutput(screenshot=b"png"))


def _runner(config: Configuration, connector) -> EyesRunner:
    runner = EyesRunner(config)
    runner.connector = connector
    runner.grid.uploader.throttle = 0
    runner.grid.renderer.status_delays = (0,)
    return runner


def _batch_deletes(connector) -> list[str]:
    return [batch_id for name, batch_id in connector.calls if name == "delete_batch_sessions"]


VIEWPORT = RectangleSize(width=800, height=600)
DIFFS = TestResults(status=TestResultsStatus.UNRESOLVED, mismatches=1)


# ---------------------------------------------------------------------------
# Classic sessions
# ---------------------------------------------------------------------------


class TestClassicThroughRunner:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provider_gives_classic_session(self, config, fake_connector):
        runner = _runner(config, fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.check("home")
        await eyes.close()
        summary = await runner.get_all_test_results()

        assert isinstance(eyes, ClassicEyes)
        assert summary.passed == 1
        assert summary.matches == 1
        assert summary.all_passed
        assert _batch_deletes(fake_connector) == ["batch-1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_dont_close_batches(self, config, fake_connector):
        runner = _runner(config.model_copy(update={"dont_close_batches": True}), fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close()
        await runner.get_all_test_results()

        assert _batch_deletes(fake_connector) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unclosed_session_aborted(self, config, fake_connector):
        runner = _runner(config, fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        summary = await runner.get_all_test_results()

        assert not eyes.is_open
        assert ("stop_session", {"id": "session-1", "aborted": True}) in fake_connector.calls
        assert summary.results[0].test_results.is_aborted

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_diffs_raise_with_fail_on_diff(self, config, fake_connector):
        fake_connector.stop_result = DIFFS
        runner = _runner(config, fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close(throw_ex=False)

        with pytest.raises(DiffsFoundError):
            await runner.get_all_test_results()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_diffs_reported_without_fail_on_diff(self, config, fake_connector):
        fake_connector.stop_result = DIFFS
        runner = _runner(config.model_copy(update={"fail_on_diff": False}), fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close(throw_ex=False)
        summary = await runner.get_all_test_results()

        assert summary.unresolved == 1
        assert summary.exceptions == 1
        assert isinstance(summary.first_exception(), DiffsFoundError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_throw_ex_false_never_raises(self, config, fake_connector):
        fake_connector.stop_result = DIFFS
        runner = _runner(config, fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close(throw_ex=False)
        summary = await runner.get_all_test_results(throw_ex=False)

        assert not summary.all_passed


# ---------------------------------------------------------------------------
# Visual Grid sessions
# ---------------------------------------------------------------------------


class TestGridThroughRunner:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grid_session_results(self, grid_config, fake_connector, dom_snapshot):
        runner = _runner(grid_config, fake_connector)

        eyes = await runner.open_eyes()
        await eyes.check(dom_snapshot, tag="checkout")
        await eyes.close()
        summary = await runner.get_all_test_results()

        assert isinstance(eyes, VisualGridEyes)
        assert summary.passed == 2
        assert [c.browser_info.name for c in summary.results] == ["chrome", "firefox"]
        assert _batch_deletes(fake_connector) == ["batch-1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fatal_error_counted_once(self, grid_config, fake_connector, dom_snapshot):
        fake_connector.render_error = RenderError("grid refused the render")
        runner = _runner(grid_config, fake_connector)

        eyes = await runner.open_eyes()
        await eyes.check(dom_snapshot)
        await eyes.close(throw_ex=False)
        summary = await runner.get_all_test_results(throw_ex=False)

        assert len(summary.results) == 2
        assert summary.exceptions == 1
        assert summary.passed == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fatal_error_raised(self, grid_config, fake_connector, dom_snapshot):
        fake_connector.render_error = RenderError("grid refused the render")
        runner = _runner(grid_config.model_copy(update={"fail_on_diff": False}), fake_connector)

        eyes = await runner.open_eyes()
        await eyes.check(dom_snapshot)
        await eyes.close(throw_ex=False)

        with pytest.raises(RenderError, match="grid refused"):
            await runner.get_all_test_results()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unclosed_grid_session_aborted(self, grid_config, fake_connector, dom_snapshot):
        runner = _runner(grid_config, fake_connector)

        eyes = await runner.open_eyes()
        await eyes.check(dom_snapshot)
        summary = await runner.get_all_test_results()

        assert not eyes.is_open
        assert len(summary.results) == 2
        assert all(c.exception is None for c in summary.results)


# ---------------------------------------------------------------------------
# Mixed runs
# ---------------------------------------------------------------------------


class TestMixedRun:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_batches_closed_for_classic_and_grid(self, grid_config, fake_connector, dom_snapshot):
        runner = _runner(grid_config, fake_connector)
        classic_config = grid_config.model_copy(update={"batch": BatchInfo(id="classic-batch", name="Classic")})

        classic = await runner.open_eyes(provider=StaticProvider(), config=classic_config, viewport_size=VIEWPORT)
        await classic.close()
        grid = await runner.open_eyes()
        await grid.check(dom_snapshot)
        await grid.close()
        summary = await runner.get_all_test_results()

        assert summary.passed == 3
        assert sorted(_batch_deletes(fake_connector)) == ["batch-1", "classic-batch"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_classic_batch_closed_after_grid_created(self, config, fake_connector):
        runner = _runner(config, fake_connector)

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close()
        assert runner.grid.global_state is runner.global_state
        await runner.close_batches()

        assert _batch_deletes(fake_connector) == ["batch-1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_each_batch_closed_once(self, config, fake_connector):
        runner = _runner(config, fake_connector)

        for _ in range(2):
            eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
            await eyes.close()
        await runner.close_batches()
        await runner.close_batches()

        assert _batch_deletes(fake_connector) == ["batch-1"]


# ---------------------------------------------------------------------------
# Runner setup
# ---------------------------------------------------------------------------


class TestRunnerSetup:
    @pytest.mark.unit
    def test_config_from_env(self):
        env = {"APPLITOOLS_API_KEY": "env-key", "APPLITOOLS_BATCH_ID": "ci-7"}
        with patch.dict(os.environ, env, clear=True):
            runner = EyesRunner()
        assert runner.config.api_key == "env-key"
        assert runner.config.batch.id == "ci-7"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sessions_share_one_protocol(self, grid_config, fake_connector):
        runner = _runner(grid_config, fake_connector)

        classic = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        grid = await runner.open_eyes()

        assert isinstance(classic, Session)
        assert isinstance(grid, Session)
        assert not isinstance(classic.session, Session)
        await runner.get_all_test_results(throw_ex=False)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_show_logs_prints_table(self, config, fake_connector):
        runner = _runner(config.model_copy(update={"show_logs": True}), fake_connector)
        buffer = io.StringIO()

        eyes = await runner.open_eyes(provider=StaticProvider(), viewport_size=VIEWPORT)
        await eyes.close()
        with patch("eyes_sdk.results.console", Console(file=buffer, no_color=True, width=200)):
            await runner.get_all_test_results()

        assert "Visual test results" in buffer.getvalue()
        assert "passed=1" in buffer.getvalue()
