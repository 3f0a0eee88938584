"""Check regions declared by coordinates or by selector.

Selector regions are resolved by the grid during rendering: the render
request lists every selector in declaration order and the render status
answers with one list of rectangles per selector, in the same order.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from eyes_sdk.models import AccessibilityRegion, FloatingRegion, Location, Region, WireModel

REGION_KINDS = ("ignore", "layout", "strict", "content", "accessibility", "floating")

ACCESSIBILITY_TYPES = ("IgnoreContrast", "RegularText", "LargeText", "BoldText", "GraphicalObject")


class UserRegion(WireModel):
    """A region as the caller declares it on a check."""

    left: int = 0
    top: int = 0
    width: int = 0
    height: int = 0
    selector: str | None = None
    type: str | None = None
    region_id: str | None = None
    accessibility_type: str | None = None
    max_up_offset: int | None = None
    max_down_offset: int | None = None
    max_left_offset: int | None = None
    max_right_offset: int | None = None
    padding: int | dict[str, int] | None = Field(default=None)

    def selector_object(self) -> Any:
        if self.type in ("css", "xpath"):
            return {"type": self.type, "selector": self.selector}
        return self.selector


RegionInput = UserRegion | Region | dict[str, Any]


def _as_user_region(region: RegionInput) -> UserRegion:
    if isinstance(region, UserRegion):
        return region
    if isinstance(region, Region):
        return UserRegion.model_validate(region.model_dump())
    return UserRegion.model_validate(region)


def _normalize(regions: RegionInput | list[RegionInput] | None) -> list[UserRegion] | None:
    if regions is None:
        return None
    if not isinstance(regions, list):
        regions = [regions]
    return [_as_user_region(region) for region in regions]


def with_padding(box: dict[str, int], padding: int | dict[str, int] | None) -> dict[str, int]:
    """Grow *box* by *padding* (one number for every side, or per-side)."""
    if not padding:
        return box
    if isinstance(padding, int):
        sides = {"top": padding, "right": padding, "bottom": padding, "left": padding}
    else:
        sides = {side: padding.get(side, 0) for side in ("top", "right", "bottom", "left")}
    return {
        "left": box["left"] - sides["left"],
        "top": box["top"] - sides["top"],
        "width": box["width"] + sides["left"] + sides["right"],
        "height": box["height"] + sides["top"] + sides["bottom"],
    }


def _box(raw: dict[str, Any] | UserRegion) -> dict[str, int]:
    if isinstance(raw, UserRegion):
        return {"left": raw.left, "top": raw.top, "width": raw.width, "height": raw.height}
    return {
        "left": int(raw.get("left", raw.get("x", 0))),
        "top": int(raw.get("top", raw.get("y", 0))),
        "width": int(raw.get("width", 0)),
        "height": int(raw.get("height", 0)),
    }


def _with_user_input(box: dict[str, int], user: UserRegion, kind: str) -> Region:
    box = with_padding(box, user.padding)
    if kind == "floating":
        return FloatingRegion(
            **box,
            region_id=user.region_id,
            max_up_offset=user.max_up_offset,
            max_down_offset=user.max_down_offset,
            max_left_offset=user.max_left_offset,
            max_right_offset=user.max_right_offset,
        )
    if kind == "accessibility":
        return AccessibilityRegion(**box, region_id=user.region_id, accessibility_type=user.accessibility_type)
    return Region(**box, region_id=user.region_id)


class RegionCalculator:
    """Collects the selectors to send with a render and maps the answers back."""

    def __init__(
        self,
        ignore: RegionInput | list[RegionInput] | None = None,
        layout: RegionInput | list[RegionInput] | None = None,
        strict: RegionInput | list[RegionInput] | None = None,
        content: RegionInput | list[RegionInput] | None = None,
        accessibility: RegionInput | list[RegionInput] | None = None,
        floating: RegionInput | list[RegionInput] | None = None,
    ) -> None:
        given = {
            "ignore": ignore,
            "layout": layout,
            "strict": strict,
            "content": content,
            "accessibility": accessibility,
            "floating": floating,
        }
        self.user_regions: dict[str, list[UserRegion]] = {}
        for kind in REGION_KINDS:
            normalized = _normalize(given[kind])
            if normalized is not None:
                self.user_regions[kind] = normalized

    @property
    def selectors_to_find_regions_for(self) -> list[Any]:
        # duplicates are kept: answers are matched to selectors by position
        return [
            region.selector_object()
            for regions in self.user_regions.values()
            for region in regions
            if region.selector
        ]

    def match_regions(
        self,
        selector_regions: list[list[dict[str, Any]]] | None,
        image_location: Location | None = None,
    ) -> dict[str, list[Region]]:
        """Concrete regions per kind, sorted top-to-bottom then left-to-right."""
        selector_regions = selector_regions or []
        selector_index = 0
        matched: dict[str, list[Region]] = {}
        for kind, user_regions in self.user_regions.items():
            regions: list[Region] = []
            for user in user_regions:
                if user.selector:
                    found = selector_regions[selector_index] if selector_index < len(selector_regions) else None
                    selector_index += 1
                    boxes = [_box(raw) for raw in found or []]
                    if image_location is not None:
                        for box in boxes:
                            box["left"] = max(0, box["left"] - image_location.x)
                            box["top"] = max(0, box["top"] - image_location.y)
                else:
                    boxes = [_box(user)]
                regions.extend(_with_user_input(box, user, kind) for box in boxes)
            matched[kind] = sorted(regions, key=lambda r: (r.top, r.left))
        return matched


def is_invalid_accessibility(accessibility: RegionInput | list[RegionInput] | None) -> str:
    """Describe every accessibility region with an unknown type; empty when all are valid."""
    errors = []
    for region in _normalize(accessibility) or []:
        if region.accessibility_type and region.accessibility_type not in ACCESSIBILITY_TYPES:
            if not errors:
                errors.append(f"Valid accessibilityType values are: {', '.join(ACCESSIBILITY_TYPES)}")
            errors.append(
                f"The region {region.to_wire()} has an invalid accessibilityType of: {region.accessibility_type}"
            )
    return "\n".join(errors)
