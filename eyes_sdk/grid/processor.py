"""Turn a DOM snapshot into the url -> hash mapping a render request carries.

Walks the snapshot and its frames, fetches URL resources (and, recursively,
the CSS/SVG dependencies they reference), hands everything to the uploader
and finally builds the DOM resource over the collected hashes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from eyes_sdk.config import ProxySettings
from eyes_sdk.grid.dependencies import extract_dependency_urls
from eyes_sdk.grid.fetcher import ResourceFetcher
from eyes_sdk.grid.resources import (
    Resource,
    create_dom_resource,
    create_resource,
    create_vhs_resource,
)
from eyes_sdk.grid.store import CachedResource, ResourceStore
from eyes_sdk.grid.uploader import ResourceUploader
from eyes_sdk.logger import Logger
from eyes_sdk.models import DomSnapshot

FETCH_FAILED_STATUS = 504

UrlHashes = dict[str, dict[str, Any]]


@dataclass
class ResourceMapping:
    """Hash of the DOM resource plus the hashes of everything it references."""

    dom: dict[str, Any] | None
    resources: UrlHashes = field(default_factory=dict)


def _content_resource(url: str, content: dict[str, Any]) -> Resource:
    return create_resource(
        url=content.get("url") or url,
        value=content.get("value"),
        type=content.get("type"),
        dependencies=content.get("dependencies"),
        error_status_code=content.get("errorStatusCode"),
    )


class ResourceProcessor:
    def __init__(
        self,
        fetcher: ResourceFetcher,
        uploader: ResourceUploader,
        store: ResourceStore,
        logger: Logger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.uploader = uploader
        self.store = store
        self.logger = logger or Logger(label="ResourceProcessor")

    async def create_resource_mapping(
        self,
        snapshot: DomSnapshot,
        browser_name: str | None = None,
        user_agent: str | None = None,
        cookies: list[dict[str, Any]] | None = None,
        proxy: ProxySettings | None = None,
    ) -> ResourceMapping:
        """Process *snapshot* and wait until every resource is on the grid."""
        mapping, readies = await self._process_snapshot(snapshot, browser_name, user_agent, cookies, proxy)
        await asyncio.gather(*readies)

        if snapshot.cdt is not None:
            dom = mapping.pop(snapshot.url, None)
        else:
            dom = mapping.get("vhs")
        return ResourceMapping(dom=dom, resources=mapping)

    async def _process_snapshot(
        self,
        snapshot: DomSnapshot,
        browser_name: str | None,
        user_agent: str | None,
        cookies: list[dict[str, Any]] | None,
        proxy: ProxySettings | None,
    ) -> tuple[UrlHashes, list[asyncio.Future[None]]]:
        resources = {url: create_resource(url=url, browser_name=browser_name) for url in snapshot.resource_urls}
        for url, content in snapshot.resource_contents.items():
            resources[url] = _content_resource(url, content)

        own, *frames = await asyncio.gather(
            self.process_resources(
                resources,
                referer=snapshot.url,
                browser_name=browser_name,
                user_agent=user_agent,
                cookies=cookies,
                proxy=proxy,
            ),
            *(
                self._process_snapshot(frame, browser_name, user_agent, cookies, proxy)
                for frame in snapshot.frames
            ),
        )
        own_mapping, own_ready = own

        frame_doms: UrlHashes = {}
        for frame, (frame_mapping, _) in zip(snapshot.frames, frames):
            if frame.url in frame_mapping:
                frame_doms[frame.url] = frame_mapping[frame.url]
        without_dom = {**own_mapping, **frame_doms}

        if snapshot.cdt is not None:
            dom_key = snapshot.url
            dom = create_dom_resource(snapshot.cdt, without_dom)
        else:
            dom_key = "vhs"
            dom = create_vhs_resource(
                vhs_hash=snapshot.vhs_hash or own_mapping.get("vhs"),
                resource_mapping=without_dom,
                vhs_type=snapshot.vhs_type,
                platform_name=snapshot.platform_name,
            )
        dom_mapping, dom_ready = await self.process_resources({dom_key: dom})

        merged: UrlHashes = {}
        readies = list(own_ready) + list(dom_ready)
        for frame_mapping, frame_ready in frames:
            merged.update(frame_mapping)
            readies.extend(frame_ready)
        merged.update(own_mapping)
        merged.update(dom_mapping)
        return merged, readies

    async def process_resources(
        self,
        resources: dict[str, Resource],
        referer: str | None = None,
        browser_name: str | None = None,
        user_agent: str | None = None,
        cookies: list[dict[str, Any]] | None = None,
        proxy: ProxySettings | None = None,
    ) -> tuple[UrlHashes, list[asyncio.Future[None]]]:
        """Return ``(url -> hash, upload futures)`` for *resources*.

        Resources that already carry content are persisted as-is. URL
        resources are fetched (or taken from the store) together with their
        dependencies.
        """
        processed: dict[str, CachedResource] = {}
        url_jobs = []
        for url, resource in resources.items():
            if resource.has_content:
                processed[url] = self._persist(resource, resource.dependencies)
            else:
                url_jobs.append(
                    self._process_with_dependencies(resource, referer, browser_name, user_agent, cookies, proxy)
                )
        for found in await asyncio.gather(*url_jobs):
            processed.update(found)

        mapping = {url: entry.hash for url, entry in processed.items()}
        readies = [entry.ready for entry in processed.values() if entry.ready is not None]
        return mapping, readies

    async def _process_with_dependencies(
        self,
        resource: Resource,
        referer: str | None,
        browser_name: str | None,
        user_agent: str | None,
        cookies: list[dict[str, Any]] | None,
        proxy: ProxySettings | None,
    ) -> dict[str, CachedResource]:
        processed: dict[str, CachedResource] = {}
        seen = {resource.url}

        async def visit(current: Resource) -> None:
            entry = await self._process_url_resource(current, referer, user_agent, cookies, proxy)
            if entry is None:
                return
            processed[current.url or ""] = entry
            pending = []
            for dependency_url in entry.dependencies or []:
                if dependency_url in seen:
                    continue
                seen.add(dependency_url)
                pending.append(visit(create_resource(url=dependency_url, browser_name=browser_name)))
            await asyncio.gather(*pending)

        await visit(resource)
        return processed

    async def _process_url_resource(
        self,
        resource: Resource,
        referer: str | None,
        user_agent: str | None,
        cookies: list[dict[str, Any]] | None,
        proxy: ProxySettings | None,
    ) -> CachedResource | None:
        cached = self.store.get(resource.id)
        if cached is not None:
            self.logger.verbose(
                f"resource retrieved from cache: {resource.url} "
                f"with {len(cached.dependencies or [])} dependencies"
            )
            return cached

        url = resource.url or ""
        if urlparse(url).scheme.lower() not in ("http", "https"):
            self.logger.verbose(f"skipping non-http resource {url}")
            return None

        try:
            fetched = await self.fetcher.fetch(
                resource, referer=referer, user_agent=user_agent, cookies=cookies, proxy=proxy
            )
        except httpx.HTTPError as exc:
            self.logger.log(
                f"error fetching resource at {url}, setting errorStatusCode to {FETCH_FAILED_STATUS}. err={exc!r}"
            )
            return CachedResource(hash={"errorStatusCode": FETCH_FAILED_STATUS})

        fetched.id = resource.id
        dependencies: list[str] = []
        if fetched.value is not None:
            dependencies = extract_dependency_urls(fetched.value, fetched.type, url)
            if dependencies:
                self.logger.verbose(f"dependencyUrls for {url} --> {dependencies}")
        return self._persist(fetched, dependencies)

    def _persist(self, resource: Resource, dependencies: list[str] | None) -> CachedResource:
        entry = CachedResource(hash=resource.hash or {}, dependencies=dependencies or None)

        async def _put() -> None:
            try:
                await self.uploader.put_resources([resource])
            except Exception:
                self.store.discard(resource.id, entry)
                raise

        entry.ready = asyncio.ensure_future(_put())
        self.store.put(resource.id, entry)
        return entry
