"""Visual regression testing client for the Eyes server and its rendering grid.

Key classes:
    EyesRunner      - Opens sessions, collects results, closes batches
    ClassicEyes     - Session fed by locally captured screenshots
    VisualGridEyes  - Session rendered on many browsers by the grid
    Configuration   - Typed settings, loadable from APPLITOOLS_* variables
"""

from .classic import CaptureProvider, ClassicEyes
from .config import BatchInfo, BrowserInfo, Configuration, FailureReports, ProxySettings, RectangleSize
from .errors import (
    DiffsFoundError,
    EyesError,
    IncorrectApiKeyError,
    LongRequestGoneError,
    NewTestError,
    RenderError,
    RequestError,
    TestFailedError,
)
from .eyes import EyesSession, Session
from .grid import VisualGridClient, VisualGridEyes
from .match_task import MatchData
from .models import AppOutput, DomSnapshot, TestResults, TestResultsStatus
from .results import TestResultContainer, TestResultsSummary
from .runner import EyesRunner

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "EyesRunner",
    "ClassicEyes",
    "VisualGridEyes",
    "VisualGridClient",
    "EyesSession",
    "Session",
    "CaptureProvider",
    "MatchData",
    # Configuration
    "BatchInfo",
    "BrowserInfo",
    "Configuration",
    "FailureReports",
    "ProxySettings",
    "RectangleSize",
    # Models and results
    "AppOutput",
    "DomSnapshot",
    "TestResults",
    "TestResultsStatus",
    "TestResultContainer",
    "TestResultsSummary",
    # Errors
    "DiffsFoundError",
    "EyesError",
    "IncorrectApiKeyError",
    "LongRequestGoneError",
    "NewTestError",
    "RenderError",
    "RequestError",
    "TestFailedError",
]
