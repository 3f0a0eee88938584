"""Eyes client configuration.

Typed configuration for sessions, matching, and the rendering grid. All
settings are Pydantic v2 models so they are validated at construction time
and can be serialised to/from JSON or read from ``APPLITOOLS_*`` environment
variables.
"""

from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_SERVER_URL = "https://eyesapi.applitools.com"


class FailureReports(str, Enum):
    """When a mismatch is reported to the caller."""

    ON_CLOSE = "ON_CLOSE"
    IMMEDIATE = "IMMEDIATE"


class RectangleSize(BaseModel):
    width: int = Field(ge=0)
    height: int = Field(ge=0)


class ProxySettings(BaseModel):
    """Outbound proxy for both the Eyes server and resource fetching."""

    url: str
    username: str | None = None
    password: str | None = None
    is_http_only: bool = False

    def to_httpx(self) -> str:
        """Return a proxy URL with credentials embedded, as httpx expects."""
        if not self.username:
            return self.url
        scheme, _, rest = self.url.partition("://")
        auth = self.username if self.password is None else f"{self.username}:{self.password}"
        return f"{scheme}://{auth}@{rest}"


class BrowserInfo(BaseModel):
    """One rendering-grid target: a desktop browser or an emulated device."""

    name: str = Field(default="chrome")
    width: int = Field(default=1024, ge=1)
    height: int = Field(default=768, ge=1)
    platform: str | None = Field(default=None, description="Rendering platform, e.g. linux")
    device_name: str | None = Field(default=None, description="Emulated device name")
    screen_orientation: str | None = None

    @property
    def viewport(self) -> RectangleSize:
        return RectangleSize(width=self.width, height=self.height)

    @property
    def display_name(self) -> str:
        if self.device_name:
            return self.device_name
        return f"{self.name} {self.width}x{self.height}"


class BatchInfo(BaseModel):
    """Groups tests into one batch in the dashboard."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str | None = None
    sequence_name: str | None = None
    started_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )
    notify_on_completion: bool = False
    is_generated_id: bool = True


class Configuration(BaseModel):
    """Top-level configuration for an Eyes runner and its sessions."""

    # Connection
    api_key: str | None = Field(default=None, description="Account API key")
    server_url: str = Field(default=DEFAULT_SERVER_URL)
    proxy: ProxySettings | None = None
    connection_timeout: float = Field(default=300.0, gt=0, description="Request timeout in seconds")
    remove_session: bool | None = None
    agent_id: str = Field(default="eyes-sdk.python/0.1.0")

    # Test identity
    app_name: str | None = None
    test_name: str | None = None
    display_name: str | None = None
    viewport_size: RectangleSize | None = None
    session_type: str = Field(default="SEQUENTIAL")
    batch: BatchInfo = Field(default_factory=BatchInfo)
    branch_name: str | None = None
    parent_branch_name: str | None = None
    baseline_branch_name: str | None = None
    baseline_env_name: str | None = None
    environment_name: str | None = None
    host_app: str | None = None
    host_os: str | None = None
    properties: list[dict[str, str]] = Field(default_factory=list)

    # Matching
    match_timeout_ms: int = Field(default=2000, ge=0, description="Retry budget for one check")
    match_level: str = Field(default="Strict")
    ignore_caret: bool = True
    use_dom: bool = False
    enable_patterns: bool = False
    ignore_displacements: bool = False
    send_dom: bool = True
    wait_before_capture_ms: int = Field(default=0, ge=0)

    # Baseline policy
    save_new_tests: bool = True
    save_failed_tests: bool = False
    save_diffs: bool | None = None
    failure_reports: FailureReports = FailureReports.ON_CLOSE
    is_disabled: bool = False

    # Rendering grid
    browsers: list[BrowserInfo] = Field(default_factory=lambda: [BrowserInfo()])
    concurrent_renders_per_test: int = Field(default=1, ge=1)
    test_concurrency: int = Field(default=5, ge=1, description="Sessions open at once per runner")
    render_status_timeout: float = Field(default=15.0, gt=0, description="Render-status request timeout in seconds")
    render_wait_timeout: float = Field(default=600.0, gt=0, description="Seconds to wait for one render to finish")
    dont_close_batches: bool = False
    fail_on_diff: bool = True

    # Logging
    show_logs: bool = False
    verbose_logs: bool = False
    log_file: Path | None = None

    # ------------------------------------------------------------------
    # Derived copies
    # ------------------------------------------------------------------

    def with_browser(self, browser: BrowserInfo) -> Configuration:
        """Return the configuration one grid leg runs with."""
        update: dict[str, Any] = {
            "viewport_size": browser.viewport,
            "host_app": self.host_app or browser.name,
            "host_os": self.host_os or browser.platform or "linux",
        }
        return self.model_copy(update=update)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> None:
        """Persist configuration to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Configuration:
        """Load configuration from a JSON file."""
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.model_validate(data)

    @classmethod
    def from_env(cls) -> Configuration:
        """Build a ``Configuration`` from environment variables.

        Recognised variables (all optional):
            APPLITOOLS_API_KEY, APPLITOOLS_SERVER_URL, APPLITOOLS_BATCH_ID,
            APPLITOOLS_BATCH_NAME, APPLITOOLS_BATCH_SEQUENCE,
            APPLITOOLS_BRANCH, APPLITOOLS_PARENT_BRANCH,
            APPLITOOLS_BASELINE_BRANCH, APPLITOOLS_CONCURRENCY,
            APPLITOOLS_SHOW_LOGS, APPLITOOLS_DONT_CLOSE_BATCHES,
            APPLITOOLS_IS_DISABLED.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("APPLITOOLS_API_KEY"):
            kwargs["api_key"] = os.environ["APPLITOOLS_API_KEY"]
        if os.environ.get("APPLITOOLS_SERVER_URL"):
            kwargs["server_url"] = os.environ["APPLITOOLS_SERVER_URL"]
        if os.environ.get("APPLITOOLS_BRANCH"):
            kwargs["branch_name"] = os.environ["APPLITOOLS_BRANCH"]
        if os.environ.get("APPLITOOLS_PARENT_BRANCH"):
            kwargs["parent_branch_name"] = os.environ["APPLITOOLS_PARENT_BRANCH"]
        if os.environ.get("APPLITOOLS_BASELINE_BRANCH"):
            kwargs["baseline_branch_name"] = os.environ["APPLITOOLS_BASELINE_BRANCH"]
        if os.environ.get("APPLITOOLS_CONCURRENCY"):
            kwargs["test_concurrency"] = int(os.environ["APPLITOOLS_CONCURRENCY"])

        batch_kwargs: dict[str, Any] = {}
        if os.environ.get("APPLITOOLS_BATCH_ID"):
            batch_kwargs["id"] = os.environ["APPLITOOLS_BATCH_ID"]
            batch_kwargs["is_generated_id"] = False
        if os.environ.get("APPLITOOLS_BATCH_NAME"):
            batch_kwargs["name"] = os.environ["APPLITOOLS_BATCH_NAME"]
        if os.environ.get("APPLITOOLS_BATCH_SEQUENCE"):
            batch_kwargs["sequence_name"] = os.environ["APPLITOOLS_BATCH_SEQUENCE"]

        return cls(
            batch=BatchInfo(**batch_kwargs),
            show_logs=_env_flag("APPLITOOLS_SHOW_LOGS"),
            dont_close_batches=_env_flag("APPLITOOLS_DONT_CLOSE_BATCHES"),
            is_disabled=_env_flag("APPLITOOLS_IS_DISABLED"),
            **kwargs,
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")
