"""Build the per-browser render request for one check."""

from __future__ import annotations

from typing import Any

from eyes_sdk.config import BrowserInfo
from eyes_sdk.grid.processor import ResourceMapping
from eyes_sdk.models import DomSnapshot, RenderingInfo, RenderRequest


def create_render_request(
    url: str,
    browser: BrowserInfo,
    rendering_info: RenderingInfo,
    target: str = "full-page",
    selector: Any = None,
    selectors_to_find_regions_for: list[Any] | None = None,
    region: dict[str, int] | None = None,
    script_hooks: dict[str, Any] | None = None,
    send_dom: bool | None = None,
    visual_grid_options: dict[str, Any] | None = None,
    agent_id: str | None = None,
) -> RenderRequest:
    render_info: dict[str, Any] = {
        "target": target,
        "width": browser.width,
        "height": browser.height,
        "selector": selector,
        "region": region,
    }
    if browser.device_name:
        render_info["emulationInfo"] = {
            "deviceName": browser.device_name,
            "screenOrientation": browser.screen_orientation,
        }
    return RenderRequest(
        webhook=rendering_info.results_url,
        stitching_service=rendering_info.stitching_service_url,
        url=url,
        platform={"name": browser.platform or "linux", "type": "web"},
        browser={"name": browser.name},
        render_info={k: v for k, v in render_info.items() if v is not None},
        options=visual_grid_options,
        script_hooks=script_hooks,
        selectors_to_find_regions_for=selectors_to_find_regions_for or [],
        send_dom=send_dom,
        agent_id=agent_id,
    )


def enrich_render_request(request: RenderRequest, mapping: ResourceMapping, snapshot: DomSnapshot) -> RenderRequest:
    """Attach the uploaded DOM and resource hashes once the mapping is ready."""
    request.snapshot = mapping.dom
    request.resources = mapping.resources
    if snapshot.vhs_type:
        request.render_info["vhsType"] = snapshot.vhs_type
    return request
