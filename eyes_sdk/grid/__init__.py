"""Visual Grid: render one snapshot on many browsers in the cloud.

Key classes:
    VisualGridClient   - Resource pipeline, renderer and concurrency gates
    VisualGridEyes     - Session that fans each check out to every browser
    ResourceProcessor  - Snapshot -> uploaded resource mapping
    Renderer           - Render submission and status polling
    TestController     - Per-test error and cancellation state
"""

from .client import VisualGridClient
from .controller import CancellationToken, GlobalState, StepQueue, TestController
from .eyes import VisualGridEyes
from .processor import ResourceMapping, ResourceProcessor
from .renderer import Renderer
from .store import ResourceStore

__all__ = [
    # Sessions
    "VisualGridClient",
    "VisualGridEyes",
    # Resources
    "ResourceMapping",
    "ResourceProcessor",
    "ResourceStore",
    # Rendering
    "Renderer",
    # Coordination
    "CancellationToken",
    "GlobalState",
    "StepQueue",
    "TestController",
]
