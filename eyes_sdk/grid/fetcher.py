"""Fetch page resources over HTTP on behalf of the rendering grid."""

from __future__ import annotations

import asyncio
import time
from typing import Any
from urllib.parse import urlparse

import httpx

from eyes_sdk.config import ProxySettings
from eyes_sdk.grid.resources import Resource, create_resource
from eyes_sdk.logger import Logger


def create_cookie_header(url: str, cookies: list[dict[str, Any]] | None) -> str:
    """``Cookie`` header value for *url* from browser cookies.

    A cookie applies when its domain matches (``.example.com`` matches any
    subdomain), the URL path starts with its path, it is not ``secure`` on a
    plain-http URL, and it has not expired.
    """
    if not cookies:
        return ""
    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    path = parsed.path or "/"
    now = time.time()
    header = ""
    for cookie in cookies:
        domain = cookie.get("domain", "")
        if domain.startswith("."):
            if domain[1:] not in hostname:
                continue
        elif hostname != domain:
            continue
        if not path.startswith(cookie.get("path") or "/"):
            continue
        if cookie.get("secure") and parsed.scheme != "https":
            continue
        expiry = cookie.get("expiry")
        if expiry is not None and expiry >= 0 and now > expiry:
            continue
        header += f"{cookie['name']}={cookie['value']};"
    return header


class ResourceFetcher:
    """Downloads resources with retries; concurrent fetches of one id share a job."""

    def __init__(
        self,
        retries: int = 5,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.retries = max(retries, 1)
        self.timeout = timeout
        self._transport = transport
        self.logger = logger or Logger(label="ResourceFetcher")
        self._jobs: dict[str, asyncio.Task[Resource]] = {}

    def _client(self, proxy: ProxySettings | None) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(self.timeout, connect=10.0),
            "follow_redirects": True,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif proxy is not None:
            kwargs["proxy"] = proxy.to_httpx()
        return httpx.AsyncClient(**kwargs)

    async def fetch(
        self,
        resource: Resource,
        referer: str | None = None,
        user_agent: str | None = None,
        cookies: list[dict[str, Any]] | None = None,
        proxy: ProxySettings | None = None,
    ) -> Resource:
        key = resource.id or resource.url or ""
        job = self._jobs.get(key)
        if job is None:
            job = asyncio.ensure_future(self._fetch(resource, referer, user_agent, cookies, proxy))
            self._jobs[key] = job
            job.add_done_callback(lambda _: self._jobs.pop(key, None))
        return await job

    async def _fetch(
        self,
        resource: Resource,
        referer: str | None,
        user_agent: str | None,
        cookies: list[dict[str, Any]] | None,
        proxy: ProxySettings | None,
    ) -> Resource:
        url = resource.url or ""
        headers: dict[str, str] = {}
        if referer:
            headers["Referer"] = referer
        if resource.user_agent or user_agent:
            headers["User-Agent"] = resource.user_agent or user_agent or ""
        if cookies:
            headers["Cookie"] = create_cookie_header(url, cookies)

        last_error: httpx.HTTPError | None = None
        for attempt in range(1, self.retries + 1):
            self.logger.verbose(f"fetching {url} (attempt {attempt}/{self.retries})")
            try:
                async with self._client(proxy) as client:
                    response = await client.get(url, headers=headers)
            except httpx.HTTPError as exc:
                last_error = exc
                self.logger.verbose(f"fetch {url} failed: {exc!r}")
                continue

            if not response.is_success:
                self.logger.verbose(f"fetch {url} returned {response.status_code}, recording error status")
                return create_resource(url=url, error_status_code=response.status_code)

            return create_resource(
                url=url,
                value=response.content,
                type=response.headers.get("content-type"),
                browser_name=resource.browser_name,
            )

        assert last_error is not None
        raise last_error
