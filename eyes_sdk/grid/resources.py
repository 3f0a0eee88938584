"""Content-addressed resources handed to the rendering grid."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from eyes_sdk.utils import sha256_hex

MAX_RESOURCE_SIZE = int(34.5 * 1024 * 1024)
TRUNCATED_SIZE = MAX_RESOURCE_SIZE - 100_000
UNKNOWN_TYPE = "application/x-applitools-unknown"
DOM_TYPE = "x-applitools-html/cdt"
VHS_MAP_TYPE = "x-applitools-resource-map/native"

_UNTRUNCATED_TYPES = frozenset({
    DOM_TYPE,
    "x-applitools-vhs/ios",
    "x-applitools-vhs/android-x",
    "x-applitools-vhs/android-support",
})

_BROWSER_DEPENDENT = re.compile(r"https://fonts\.googleapis\.com")

USER_AGENTS = {
    "IE": (
        "Mozilla/5.0 (Windows NT 10.0; WOW64; Trident/7.0; .NET4.0C; .NET4.0E; "
        ".NET CLR 2.0.50727; .NET CLR 3.0.30729; .NET CLR 3.5.30729; rv:11.0) like Gecko"
    ),
    "Chrome": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/95.0.4638.54 Safari/537.36"
    ),
    "Firefox": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:93.0) Gecko/20100101 Firefox/93.0",
    "Safari": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 11_6) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/15.0 Safari/605.1.15"
    ),
    "Edge": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/64.0.3282.140 Safari/537.36 Edge/18.17763"
    ),
    "Edgechromium": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4501.0 Safari/537.36 Edg/91.0.866.0"
    ),
}


@dataclass
class Resource:
    """A page resource keyed by URL (plus browser, for browser-dependent ones)."""

    url: str | None = None
    id: str | None = None
    value: bytes | None = None
    type: str | None = None
    hash: dict[str, Any] | None = None
    dependencies: list[str] | None = None
    error_status_code: int | None = None
    browser_name: str | None = None
    user_agent: str | None = None

    @property
    def hash_value(self) -> str | None:
        return self.hash.get("hash") if self.hash else None

    @property
    def has_content(self) -> bool:
        return self.value is not None or self.error_status_code is not None


def sanitize_browser_name(name: str | None) -> str | None:
    if not name:
        return None
    if name in USER_AGENTS:
        return name
    if name in ("ie10", "ie11", "ie"):
        return "IE"
    for needle, canonical in (
        ("chrome", "Chrome"),
        ("firefox", "Firefox"),
        ("safari", "Safari"),
        ("edgechromium", "Edgechromium"),
        ("edge", "Edge"),
    ):
        if needle in name:
            return canonical
    return None


def is_browser_dependent(url: str | None) -> bool:
    return bool(url and _BROWSER_DEPENDENT.search(url))


def create_resource(
    url: str | None = None,
    value: bytes | str | None = None,
    type: str | None = None,
    browser_name: str | None = None,
    dependencies: list[str] | None = None,
    error_status_code: int | None = None,
) -> Resource:
    """Build a resource, hashing its value when one is given.

    A resource with ``error_status_code`` carries only that code as its hash.
    Values over the grid's size limit are truncated unless they are DOM or
    VHS payloads.
    """
    resource = Resource(url=url, id=url)

    if error_status_code:
        resource.error_status_code = error_status_code
        resource.hash = {"errorStatusCode": error_status_code}
        return resource

    if browser_name and is_browser_dependent(url):
        resource.browser_name = sanitize_browser_name(browser_name)
        if resource.browser_name:
            resource.user_agent = USER_AGENTS.get(resource.browser_name)
            resource.id = f"{resource.id}~{resource.browser_name}"

    if value is not None:
        data = value.encode("utf-8") if isinstance(value, str) else value
        if type not in _UNTRUNCATED_TYPES and len(data) > MAX_RESOURCE_SIZE:
            data = data[:TRUNCATED_SIZE]
        resource.value = data
        resource.type = type or UNKNOWN_TYPE
        resource.hash = {
            "hashFormat": "sha256",
            "hash": sha256_hex(data),
            "contentType": resource.type,
        }

    if dependencies:
        resource.dependencies = dependencies
    return resource


def _compact_json(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def create_dom_resource(cdt: list[dict[str, Any]], resources: dict[str, dict[str, Any]]) -> Resource:
    """The DOM snapshot plus a URL-sorted manifest of its resource hashes."""
    manifest = {url: resources[url] for url in sorted(resources)}
    return create_resource(value=_compact_json({"resources": manifest, "domNodes": cdt}), type=DOM_TYPE)


def create_vhs_resource(
    vhs_hash: dict[str, Any] | None,
    resource_mapping: dict[str, dict[str, Any]],
    vhs_type: str | None,
    platform_name: str | None,
) -> Resource:
    """Resource map for a native-app view-hierarchy snapshot."""
    resources = {url: value for url, value in resource_mapping.items() if url != "vhs"}
    metadata = {"platformName": platform_name, "vhsType": vhs_type}
    payload = {
        "vhs": vhs_hash,
        "resources": resources,
        "metadata": {k: v for k, v in metadata.items() if v is not None},
    }
    return create_resource(value=_compact_json(payload), type=VHS_MAP_TYPE)
