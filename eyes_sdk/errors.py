"""Exception hierarchy for the Eyes client.

Every error raised by the library derives from ``EyesError``. Errors about
test *content* (new baseline, diffs found, explicit failure) carry the
``TestResults`` that triggered them so callers can inspect counts and the
review URL without another round trip.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eyes_sdk.models import TestResults


class EyesError(Exception):
    """Base error for all Eyes operations."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        test_results: TestResults | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.test_results = test_results


class RequestError(EyesError):
    """An outbound HTTP request failed after exhausting its retry budget."""

    def __init__(
        self,
        message: str,
        request_name: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, reason="request")
        self.request_name = request_name
        self.status_code = status_code


class IncorrectApiKeyError(RequestError):
    """The server rejected the API key (HTTP 401). Never retried."""

    def __init__(self, request_name: str = "") -> None:
        super().__init__("Incorrect API Key", request_name=request_name, status_code=401)


class LongRequestGoneError(RequestError):
    """The server discarded a long-running task before its result was fetched."""

    def __init__(self, request_name: str = "") -> None:
        super().__init__("The server task has gone.", request_name=request_name, status_code=410)


class RenderError(EyesError):
    """The rendering grid refused a render or reported an error status."""

    def __init__(self, message: str, render_id: str | None = None) -> None:
        super().__init__(message, reason="render")
        self.render_id = render_id


# ---------------------------------------------------------------------------
# Test-content errors
# ---------------------------------------------------------------------------


class TestFailedError(EyesError):
    """The test ended with status ``Failed`` (or failed immediately on mismatch)."""

    __test__ = False

    def __init__(self, message: str, test_results: TestResults | None = None) -> None:
        super().__init__(message, reason="failed", test_results=test_results)

    @classmethod
    def from_results(cls, results: TestResults) -> TestFailedError:
        return cls(
            f"Test '{results.name}' of '{results.app_name}' is failed! See details at {results.url}",
            test_results=results,
        )


class NewTestError(TestFailedError):
    """The test has no baseline yet; the new baseline needs approval."""

    def __init__(self, message: str, test_results: TestResults | None = None) -> None:
        super().__init__(message, test_results=test_results)
        self.reason = "new"

    @classmethod
    def from_results(cls, results: TestResults) -> NewTestError:
        return cls(
            f"Test '{results.name}' of '{results.app_name}' is new! "
            f"Please approve the new baseline at {results.url}",
            test_results=results,
        )


class DiffsFoundError(TestFailedError):
    """The test found differences against an existing baseline."""

    def __init__(self, message: str, test_results: TestResults | None = None) -> None:
        super().__init__(message, test_results=test_results)
        self.reason = "diffs"

    @classmethod
    def from_results(cls, results: TestResults) -> DiffsFoundError:
        return cls(
            f"Test '{results.name}' of '{results.app_name}' detected differences! "
            f"See details at: {results.url}",
            test_results=results,
        )
