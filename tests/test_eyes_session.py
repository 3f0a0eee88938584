"""Unit tests for the session lifecycle (eyes_sdk.eyes).

Tests cover:
- open validation: API key, names, double open
- Lazy session start: at open with a viewport, otherwise on first check
- Concurrent first checks start the session once
- close: empty results without a session, stop flags, status resolution
- Typed errors for new tests and diffs, throw_ex off
- abort: aborted results, no session, never raises
- Disabled sessions, IMMEDIATE failure reports, user inputs, hooks
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from eyes_sdk.config import FailureReports, RectangleSize
from eyes_sdk.errors import DiffsFoundError, EyesError, NewTestError, TestFailedError
from eyes_sdk.eyes import EyesSession
from eyes_sdk.match_task import MatchData
from eyes_sdk.models import AppOutput, MatchResult, TestResults, TestResultsStatus

VIEWPORT = RectangleSize(width=800, height=600)


async def _capture(last_screenshot: bytes | None) -> MatchData:
    return MatchData(app_output=AppOutput(screenshot=b"png"))


def _session(config, connector, **kwargs) -> EyesSession:
    return EyesSession(config.model_copy(update=kwargs), connector)


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------


class TestOpen:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_api_key(self, config, fake_connector):
        eyes = _session(config, fake_connector, api_key=None)
        with pytest.raises(EyesError, match="API key is missing"):
            await eyes.open()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_names(self, config, fake_connector):
        eyes = _session(config, fake_connector, app_name=None)
        with pytest.raises(EyesError, match="app_name"):
            await eyes.open()

        eyes = _session(config, fake_connector, test_name=None)
        with pytest.raises(EyesError, match="test_name"):
            await eyes.open()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_deferred_without_viewport(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)

        await eyes.open()

        assert eyes.is_open
        assert eyes.running_session is None
        assert fake_connector.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_starts_immediately_with_viewport(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)

        await eyes.open("App", "Test", viewport_size=VIEWPORT)

        assert eyes.running_session.id == "session-1"
        start_info = fake_connector.calls[0][1]
        assert start_info.app_id_or_name == "App"
        assert start_info.scenario_id_or_name == "Test"
        assert start_info.environment.display_size == {"width": 800, "height": 600}
        assert start_info.batch_info["id"] == "batch-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_starting_session(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)

        await eyes.open(viewport_size=VIEWPORT, skip_starting_session=True)

        assert eyes.running_session is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_twice_aborts_and_raises(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        with pytest.raises(EyesError, match="already running"):
            await eyes.open()

        assert not eyes.is_open
        assert fake_connector.calls[-1] == ("stop_session", {"id": "session-1", "aborted": True})


# ---------------------------------------------------------------------------
# Check
# ---------------------------------------------------------------------------


class TestCheckWindow:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_check_starts_session(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()

        result = await eyes.check_window("home", _capture)

        assert result.as_expected
        assert fake_connector.names() == ["start_session", "match_window"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_checks_start_once(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()

        await asyncio.gather(eyes.check_window("a", _capture), eyes.check_window("b", _capture))

        assert fake_connector.count("start_session") == 1
        assert fake_connector.count("match_window") == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_requires_open(self, config, fake_connector):
        with pytest.raises(EyesError, match="Eyes not open"):
            await EyesSession(config, fake_connector).check_window("home", _capture)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_new_session_matches_once(self, config, fake_connector):
        fake_connector.is_new = True
        fake_connector.match_results = [MatchResult(as_expected=False)]
        eyes = _session(config, fake_connector, match_timeout_ms=0)
        await eyes.open()

        result = await eyes.check_window("home", _capture)

        assert not result.as_expected
        assert fake_connector.count("match_window") == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_immediate_failure_reports(self, config, fake_connector):
        fake_connector.match_results = [MatchResult(as_expected=False)]
        eyes = _session(config, fake_connector, failure_reports=FailureReports.IMMEDIATE)
        await eyes.open()

        with pytest.raises(TestFailedError, match="Mismatch found"):
            await eyes.check_window("home", _capture, retry_timeout=0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_inputs_sent_and_cleared(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()
        eyes.add_user_input({"type": "click"})

        await eyes.check_window("a", _capture, retry_timeout=0)
        await eyes.check_window("b", _capture, retry_timeout=0)

        first, second = [d for n, d in fake_connector.calls if n == "match_window"]
        assert first.user_inputs == [{"type": "click"}]
        assert second.user_inputs == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hooks_run_around_match(self, config, fake_connector):
        before = AsyncMock()
        after = AsyncMock()
        eyes = EyesSession(config, fake_connector, before_match_window=before, after_match_window=after)
        await eyes.open()

        await eyes.check_window("home", _capture, retry_timeout=0)

        before.assert_awaited_once()
        after.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_after_match(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()

        results = await eyes.check_window("final", _capture, close_after_match=True)

        assert results.is_passed
        assert results.url == "https://eyes.test/app/sessions/session-1"
        assert fake_connector.count("match_window_and_close") == 1
        assert not eyes.is_open


# ---------------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------------


class TestClose:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_without_session_is_empty(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()

        results = await eyes.close()

        assert results.is_empty
        assert results.name == "Checkout"
        assert fake_connector.calls == []
        assert not eyes.is_open

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_requires_open(self, config, fake_connector):
        with pytest.raises(EyesError, match="Eyes not open"):
            await EyesSession(config, fake_connector).close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_passed_new_test(self, config, fake_connector):
        fake_connector.is_new = True
        fake_connector.stop_result = TestResults(status=TestResultsStatus.PASSED, steps=1, matches=1)
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        results = await eyes.close()

        assert results.is_passed
        assert results.is_new is True
        assert results.url == "https://eyes.test/app/sessions/session-1"
        assert results.batch_id == "batch-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_resolved_when_missing(self, config, fake_connector):
        fake_connector.stop_result = TestResults(steps=1, mismatches=1)
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        results = await eyes.close(throw_ex=False)

        assert results.status == TestResultsStatus.UNRESOLVED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_diffs_raise_with_url(self, config, fake_connector):
        fake_connector.stop_result = TestResults(status=TestResultsStatus.UNRESOLVED, steps=1, mismatches=1)
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        with pytest.raises(DiffsFoundError) as exc_info:
            await eyes.close()

        assert "https://eyes.test/app/sessions/session-1" in str(exc_info.value)
        assert exc_info.value.test_results.mismatches == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_new_unresolved_raises_new_test(self, config, fake_connector):
        fake_connector.is_new = True
        fake_connector.stop_result = TestResults(status=TestResultsStatus.UNRESOLVED, steps=1, missing=1)
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        with pytest.raises(NewTestError, match="Please approve the new baseline"):
            await eyes.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_raises_test_failed(self, config, fake_connector):
        fake_connector.stop_result = TestResults(status=TestResultsStatus.FAILED)
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        with pytest.raises(TestFailedError, match="is failed!"):
            await eyes.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_flags_follow_baseline_policy(self, config, fake_connector):
        stop = AsyncMock(return_value=TestResults(status=TestResultsStatus.PASSED))
        fake_connector.stop_session = stop
        eyes = _session(config, fake_connector, save_new_tests=False, save_failed_tests=True)
        await eyes.open(viewport_size=VIEWPORT)

        await eyes.close()

        kwargs = stop.await_args.kwargs
        assert kwargs == {
            "aborted": False,
            "update_baseline_if_new": False,
            "update_baseline_if_different": True,
        }


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------


class TestAbort:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_abort_running_session(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        results = await eyes.abort()

        assert results.is_aborted
        assert fake_connector.calls[-1] == ("stop_session", {"id": "session-1", "aborted": True})
        assert not eyes.is_open

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_abort_without_session(self, config, fake_connector):
        eyes = EyesSession(config, fake_connector)
        await eyes.open()

        assert await eyes.abort() is None
        assert await eyes.abort() is None
        assert fake_connector.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_abort_never_raises(self, config, fake_connector):
        fake_connector.stop_session = AsyncMock(side_effect=RuntimeError("server down"))
        eyes = EyesSession(config, fake_connector)
        await eyes.open(viewport_size=VIEWPORT)

        assert await eyes.abort() is None


# ---------------------------------------------------------------------------
# Disabled
# ---------------------------------------------------------------------------


class TestDisabled:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_every_operation_is_a_noop(self, config, fake_connector):
        eyes = _session(config, fake_connector, is_disabled=True)

        await eyes.open(viewport_size=VIEWPORT)
        assert await eyes.check_window("home", _capture) is None
        assert await eyes.close() is None
        assert await eyes.abort() is None
        assert fake_connector.calls == []
