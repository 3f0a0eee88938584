"""Wire models exchanged with the Eyes server and the rendering grid.

Every model serialises with camelCase aliases (``is_new`` <-> ``isNew``) and
accepts either spelling on input, so server payloads validate directly with
``model_validate`` and requests go out through ``to_wire``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from eyes_sdk.errors import DiffsFoundError, NewTestError, TestFailedError


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class Location(WireModel):
    x: int = 0
    y: int = 0


class Region(WireModel):
    left: int = 0
    top: int = 0
    width: int = 0
    height: int = 0
    region_id: str | None = None


class FloatingRegion(Region):
    max_up_offset: int | None = None
    max_down_offset: int | None = None
    max_left_offset: int | None = None
    max_right_offset: int | None = None


class AccessibilityRegion(Region):
    accessibility_type: str | None = None


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class RenderingInfo(WireModel):
    """Where the rendering grid lives and how to authenticate against it."""

    service_url: str = ""
    access_token: str = ""
    results_url: str = ""
    stitching_service_url: str | None = None
    max_image_height: int | None = None
    max_image_area: int | None = None


class RunningSession(WireModel):
    """Server handle for one started test. Stopped or aborted exactly once."""

    id: str
    session_id: str | None = None
    batch_id: str | None = None
    baseline_id: str | None = None
    url: str | None = None
    is_new: bool | None = None
    rendering_info: RenderingInfo | None = None


class AppEnvironment(WireModel):
    inferred: str | None = None
    os: str | None = None
    hosting_app: str | None = None
    display_size: dict[str, int] | None = None
    device_info: str | None = None


class ImageMatchSettings(WireModel):
    match_level: str = "Strict"
    ignore_caret: bool | None = None
    use_dom: bool | None = None
    enable_patterns: bool | None = None
    ignore_displacements: bool | None = None
    ignore: list[Region] = Field(default_factory=list)
    layout: list[Region] = Field(default_factory=list)
    strict: list[Region] = Field(default_factory=list)
    content: list[Region] = Field(default_factory=list)
    floating: list[FloatingRegion] = Field(default_factory=list)
    accessibility: list[AccessibilityRegion] = Field(default_factory=list)
    accessibility_settings: dict[str, str] | None = None


class SessionStartInfo(WireModel):
    agent_id: str
    session_type: str = "SEQUENTIAL"
    app_id_or_name: str
    scenario_id_or_name: str
    display_name: str | None = None
    batch_info: dict[str, Any]
    baseline_env_name: str | None = None
    environment_name: str | None = None
    environment: AppEnvironment | None = None
    default_match_settings: ImageMatchSettings
    branch_name: str | None = None
    parent_branch_name: str | None = None
    baseline_branch_name: str | None = None
    save_diffs: bool | None = None
    properties: list[dict[str, str]] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class AppOutput(WireModel):
    """Capture handed to the server: inline bytes or an uploaded image URL."""

    title: str | None = None
    screenshot_url: str | None = None
    dom_url: str | None = None
    image_location: str | None = None
    location: Location | None = None
    page_coverage_info: dict[str, Any] | None = None
    screenshot: bytes | None = Field(default=None, exclude=True)


class ImageMatchOptions(WireModel):
    name: str | None = None
    user_inputs: list[dict[str, Any]] = Field(default_factory=list)
    ignore_mismatch: bool = False
    ignore_match: bool = False
    force_mismatch: bool = False
    force_match: bool = False
    image_match_settings: ImageMatchSettings | None = None
    render_id: str | None = None
    variant_id: str | None = None


class MatchWindowData(WireModel):
    """One comparison request. Built fresh for every exchange."""

    user_inputs: list[dict[str, Any]] = Field(default_factory=list)
    app_output: AppOutput
    tag: str | None = None
    ignore_mismatch: bool = False
    options: ImageMatchOptions
    render_id: str | None = None


class MatchWindowAndCloseData(MatchWindowData):
    update_baseline_if_new: bool = True
    update_baseline_if_different: bool = False
    remove_session_if_matching: bool = False


class MatchResult(WireModel):
    as_expected: bool = False
    window_id: int | None = None
    screenshot: bytes | None = Field(default=None, exclude=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class TestResultsStatus(str, Enum):
    PASSED = "Passed"
    UNRESOLVED = "Unresolved"
    FAILED = "Failed"


class StepInfo(WireModel):
    name: str | None = None
    is_different: bool = False
    has_baseline_image: bool | None = None
    has_current_image: bool | None = None
    app_urls: dict[str, str] | None = None
    api_urls: dict[str, str] | None = None
    render_id: list[str] | None = None


class TestResults(WireModel):
    """Terminal outcome of one session."""

    __test__ = False

    id: str | None = None
    name: str | None = None
    app_name: str | None = None
    batch_id: str | None = None
    batch_name: str | None = None
    branch_name: str | None = None
    host_os: str | None = None
    host_app: str | None = None
    host_display_size: dict[str, int] | None = None
    started_at: str | None = None
    duration: int | None = None
    status: TestResultsStatus | None = None
    is_new: bool | None = None
    is_different: bool | None = None
    is_aborted: bool | None = None
    is_empty: bool = Field(default=False, exclude=True)
    url: str | None = None
    steps: int = 0
    matches: int = 0
    mismatches: int = 0
    missing: int = 0
    steps_info: list[StepInfo] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_passed(self) -> bool:
        return self.status == TestResultsStatus.PASSED

    def resolve_status(self) -> TestResultsStatus:
        """Fill in ``status`` when the server left it out.

        Zero missing and zero mismatches means ``Passed``; anything else is
        ``Unresolved``. An explicit server status is never overridden.
        """
        if self.status is None:
            if self.missing == 0 and self.mismatches == 0:
                self.status = TestResultsStatus.PASSED
            else:
                self.status = TestResultsStatus.UNRESOLVED
        return self.status

    def to_error(self) -> TestFailedError | None:
        """Return the typed error this outcome maps to, if any."""
        if self.status == TestResultsStatus.UNRESOLVED:
            if self.is_new:
                return NewTestError.from_results(self)
            return DiffsFoundError.from_results(self)
        if self.status == TestResultsStatus.FAILED:
            return TestFailedError.from_results(self)
        return None


# ---------------------------------------------------------------------------
# Rendering grid
# ---------------------------------------------------------------------------


class RenderStatus(str, Enum):
    NEED_MORE_RESOURCES = "need-more-resources"
    RENDERING = "rendering"
    RENDERED = "rendered"
    ERROR = "error"


class RenderRequest(WireModel):
    """One browser x snapshot rendering job."""

    webhook: str | None = None
    stitching_service: str | None = None
    url: str
    platform: dict[str, str] = Field(default_factory=lambda: {"name": "linux", "type": "web"})
    browser: dict[str, str] | None = None
    render_info: dict[str, Any] = Field(default_factory=dict)
    snapshot: dict[str, Any] | None = None
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    options: dict[str, Any] | None = None
    script_hooks: dict[str, Any] | None = None
    selectors_to_find_regions_for: list[Any] = Field(default_factory=list)
    enable_multiple_results_per_selector: bool = True
    send_dom: bool | None = None
    agent_id: str | None = None
    render_id: str | None = None


class RunningRender(WireModel):
    render_id: str | None = None
    job_id: str | None = None
    render_status: RenderStatus | None = None
    need_more_resources: list[str] | None = None
    need_more_dom: bool | None = None


class RenderStatusResults(WireModel):
    render_id: str | None = None
    status: RenderStatus | None = None
    image_location: str | None = None
    dom_location: str | None = None
    error: str | None = None
    os: str | None = None
    user_agent: str | None = None
    device_size: dict[str, int] | None = None
    selector_regions: list[list[dict[str, Any]]] | None = None
    image_position_in_active_frame: Location | None = None
    full_page_size: dict[str, int] | None = None


class DomSnapshot(WireModel):
    """Serialized page handed to the grid by the capture provider."""

    url: str
    cdt: list[dict[str, Any]] | None = None
    resource_urls: list[str] = Field(default_factory=list)
    resource_contents: dict[str, dict[str, Any]] = Field(default_factory=dict)
    frames: list[DomSnapshot] = Field(default_factory=list)
    vhs_hash: dict[str, Any] | None = None
    vhs_type: str | None = None
    platform_name: str | None = None
