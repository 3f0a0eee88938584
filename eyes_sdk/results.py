"""Aggregated results of a run: one container per test leg plus totals.

Containers that share the same exception object (every browser of a test
that hit one fatal render error) count as a single exception in the totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.markup import escape
from rich.table import Table

from eyes_sdk.config import BrowserInfo
from eyes_sdk.errors import EyesError, TestFailedError
from eyes_sdk.models import TestResults, TestResultsStatus
from eyes_sdk.utils import console


@dataclass
class TestResultContainer:
    """Outcome of one test leg: results, an exception, or both."""

    __test__ = False

    test_results: TestResults | None = None
    browser_info: BrowserInfo | None = None
    exception: BaseException | None = None

    @property
    def name(self) -> str:
        if self.test_results and self.test_results.name:
            return self.test_results.name
        if isinstance(self.exception, EyesError) and self.exception.test_results:
            return self.exception.test_results.name or ""
        return ""


@dataclass
class TestResultsSummary:
    """Totals over every container collected by a runner."""

    __test__ = False

    results: list[TestResultContainer] = field(default_factory=list)
    passed: int = 0
    unresolved: int = 0
    failed: int = 0
    exceptions: int = 0
    mismatches: int = 0
    missing: int = 0
    matches: int = 0

    @classmethod
    def from_containers(cls, containers: list[TestResultContainer]) -> TestResultsSummary:
        summary = cls(results=list(containers))
        seen_exceptions: set[int] = set()

        for container in containers:
            results = container.test_results
            if results is not None and container.exception is None:
                container.exception = results.to_error()

            if container.exception is not None and id(container.exception) not in seen_exceptions:
                seen_exceptions.add(id(container.exception))
                summary.exceptions += 1

            if results is not None:
                if results.status == TestResultsStatus.FAILED:
                    summary.failed += 1
                elif results.status == TestResultsStatus.PASSED:
                    summary.passed += 1
                elif results.status == TestResultsStatus.UNRESOLVED:
                    summary.unresolved += 1
                summary.matches += results.matches
                summary.missing += results.missing
                summary.mismatches += results.mismatches

        return summary

    @property
    def all_passed(self) -> bool:
        return self.exceptions == 0 and self.unresolved == 0 and self.failed == 0

    def first_exception(self) -> BaseException | None:
        for container in self.results:
            if container.exception is not None:
                return container.exception
        return None

    def raise_for_status(self, fail_on_diff: bool = True) -> None:
        """Raise the first recorded exception.

        Content errors (new test, diffs, failed) only raise when
        *fail_on_diff* is set; orchestration errors always raise.
        """
        for container in self.results:
            exc = container.exception
            if exc is None:
                continue
            if isinstance(exc, TestFailedError) and not fail_on_diff:
                continue
            raise exc

    def print_table(self) -> None:
        table = Table(title="Visual test results", show_lines=False)
        table.add_column("Test", style="bold")
        table.add_column("Browser")
        table.add_column("Status")
        table.add_column("Matches", justify="right")
        table.add_column("Mismatches", justify="right")
        table.add_column("Missing", justify="right")
        table.add_column("URL", overflow="fold")

        for container in self.results:
            results = container.test_results
            browser = container.browser_info.display_name if container.browser_info else "-"
            if results is None:
                table.add_row(
                    container.name or "-",
                    browser,
                    f"[red]error: {escape(str(container.exception))}[/red]",
                    "-", "-", "-", "-",
                )
                continue
            status = results.status.value if results.status else "empty"
            color = {"Passed": "green", "Unresolved": "yellow", "Failed": "red"}.get(status, "dim")
            table.add_row(
                results.name or "-",
                browser,
                f"[{color}]{status}[/{color}]",
                str(results.matches),
                str(results.mismatches),
                str(results.missing),
                results.url or "",
            )

        console.print(table)
        console.print(
            f"passed={self.passed} unresolved={self.unresolved} failed={self.failed} "
            f"exceptions={self.exceptions} mismatches={self.mismatches} "
            f"missing={self.missing} matches={self.matches}"
        )
