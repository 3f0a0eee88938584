"""Resilient async HTTP transport for the Eyes server and rendering grid.

Every outbound call goes through ``HttpTransport.request`` which layers, in
order:

* **Classification** -- 401 with an API key fails immediately with
  ``IncorrectApiKeyError``; 404 on a call marked ``dont_retry_on_404`` is
  handed back untouched so the caller can take its fallback path.
* **Concurrency backoff** -- 503 means the account is at its concurrency
  limit. The request is repeated on the ``CONCURRENCY_BACKOFF`` schedule with
  its own attempt counter; it neither consumes nor resets the retry budget.
* **Generic retry** -- transient statuses (404, 500, 502, 504) and
  connection-level failures are retried ``retry`` times, waiting
  ``delay_before_retry`` seconds or whatever ``Retry-After`` asks for.
* **Long requests** -- a 202 carrying a ``Location`` header starts a polling
  loop against that location until the task finishes (200), hands off its
  result (201, fetched with one DELETE hop), or disappears (410).

The request id header is fixed for the lifetime of one logical request, so
every retry and backoff of it correlates in server logs.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Sequence
from typing import Any

import httpx

from eyes_sdk.errors import IncorrectApiKeyError, LongRequestGoneError, RequestError
from eyes_sdk.logger import Logger
from eyes_sdk.utils import (
    CONCURRENCY_BACKOFF,
    POLLING_DELAYS,
    backoff_delay,
    guid,
    http_date,
    parse_retry_after,
)

RETRYABLE_STATUSES = frozenset({404, 500, 502, 503, 504})

HEADER_AGENT_ID = "x-applitools-eyes-client"
HEADER_REQUEST_ID = "x-applitools-eyes-client-request-id"

_request_counter = itertools.count(1)


class HttpTransport:
    """Async HTTP client with retry, backoff and long-request polling.

    A fresh ``httpx.AsyncClient`` is created per logical request. Pass
    ``transport`` (e.g. ``httpx.MockTransport``) to intercept traffic.
    """

    def __init__(
        self,
        api_key: str | None = None,
        agent_id: str = "eyes-sdk.python",
        timeout: float = 300.0,
        proxy: str | None = None,
        remove_session: bool | None = None,
        retry: int = 5,
        delay_before_retry: float = 0.2,
        polling_delays: Sequence[float] = POLLING_DELAYS,
        concurrency_backoff: Sequence[float] = CONCURRENCY_BACKOFF,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.agent_id = agent_id
        self.timeout = timeout
        self.proxy = proxy
        self.remove_session = remove_session
        self.retry = retry
        self.delay_before_retry = delay_before_retry
        self.polling_delays = tuple(polling_delays)
        self.concurrency_backoff = tuple(concurrency_backoff)
        self._transport = transport
        self.logger = logger or Logger(label="Transport")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(timeout or self.timeout, connect=10.0),
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy:
            kwargs["proxy"] = self.proxy
        return httpx.AsyncClient(**kwargs)

    @staticmethod
    def new_request_id() -> str:
        return f"{next(_request_counter)}--{guid()}"

    def _headers(
        self,
        request_id: str,
        extra: dict[str, str] | None,
        is_polling: bool,
    ) -> dict[str, str]:
        headers = {
            HEADER_AGENT_ID: self.agent_id,
            HEADER_REQUEST_ID: request_id,
        }
        if not is_polling:
            headers["Eyes-Expect-Version"] = "2"
            headers["Eyes-Expect"] = "202+location"
            headers["Eyes-Date"] = http_date()
        if extra:
            headers.update(extra)
        return headers

    def _params(self, params: dict[str, Any] | None, with_api_key: bool) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        if with_api_key and self.api_key:
            merged["apiKey"] = self.api_key
        if self.remove_session is not None:
            merged["removeSession"] = _flag(self.remove_session)
        for key, value in (params or {}).items():
            if value is not None:
                merged[key] = _flag(value)
        return merged

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        name: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        with_api_key: bool = True,
        dont_retry_on_404: bool = False,
        timeout: float | None = None,
        retry: int | None = None,
        delay_before_retry: float | None = None,
    ) -> httpx.Response:
        """Send one logical request and return its final response.

        The response may still carry a non-success status; callers validate
        the statuses they accept. ``RequestError`` is raised only when the
        connection itself keeps failing after all retries.
        """
        response = await self._send(
            name,
            method,
            url,
            params=self._params(params, with_api_key),
            json=json,
            content=content,
            headers=headers,
            with_api_key=with_api_key,
            dont_retry_on_404=dont_retry_on_404,
            timeout=timeout,
            retry=self.retry if retry is None else retry,
            delay_before_retry=self.delay_before_retry if delay_before_retry is None else delay_before_retry,
        )
        if response.status_code == 202 and response.headers.get("location"):
            return await self._poll(name, response, timeout=timeout)
        return response

    async def _send(
        self,
        name: str,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        with_api_key: bool = True,
        dont_retry_on_404: bool = False,
        is_polling: bool = False,
        timeout: float | None = None,
        retry: int = 0,
        delay_before_retry: float = 0.0,
        request_id: str | None = None,
    ) -> httpx.Response:
        request_id = request_id or self.new_request_id()
        retries_left = retry
        backoff_attempt = 0

        async with self._client(timeout) as client:
            while True:
                self.logger.verbose(f"{name} [{request_id}] {method} {url}")
                try:
                    response = await client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        content=content,
                        headers=self._headers(request_id, headers, is_polling),
                    )
                except httpx.TransportError as exc:
                    if retries_left > 0:
                        retries_left -= 1
                        self.logger.log(
                            f"{name} [{request_id}] connection failed ({exc!r}), "
                            f"retrying in {delay_before_retry}s ({retries_left} left)"
                        )
                        await asyncio.sleep(delay_before_retry)
                        continue
                    raise RequestError(
                        f"Error in request {name}: {exc}", request_name=name
                    ) from exc

                status = response.status_code
                self.logger.verbose(f"{name} [{request_id}] status {status}")

                if status == 401 and with_api_key:
                    raise IncorrectApiKeyError(name)

                if status == 404 and dont_retry_on_404:
                    return response

                retry_after = parse_retry_after(response.headers.get("retry-after"))

                if status == 503:
                    delay = backoff_delay(self.concurrency_backoff, backoff_attempt)
                    backoff_attempt += 1
                    self.logger.log(
                        f"{name} [{request_id}] concurrency limit reached, "
                        f"backing off {delay}s (attempt {backoff_attempt})"
                    )
                    await asyncio.sleep(delay)
                    continue

                if status in RETRYABLE_STATUSES and retries_left > 0:
                    retries_left -= 1
                    delay = retry_after if retry_after is not None else delay_before_retry
                    self.logger.log(
                        f"{name} [{request_id}] status {status}, "
                        f"retrying in {delay}s ({retries_left} left)"
                    )
                    await asyncio.sleep(delay)
                    continue

                return response

    async def _poll(
        self,
        name: str,
        accepted: httpx.Response,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Follow a long-running task from its 202 response to its result."""
        location = accepted.headers["location"]
        retry_after = parse_retry_after(accepted.headers.get("retry-after"))
        attempt = 0

        while True:
            delay = retry_after if retry_after is not None else backoff_delay(self.polling_delays, attempt)
            await asyncio.sleep(delay)
            attempt += 1

            response = await self._send(
                name,
                "GET",
                location,
                params=self._params(None, with_api_key=True),
                is_polling=True,
                timeout=timeout,
                retry=self.retry,
                delay_before_retry=self.delay_before_retry,
            )
            status = response.status_code

            if status == 202:
                location = response.headers.get("location") or location
                retry_after = parse_retry_after(response.headers.get("retry-after"))
                continue
            if status == 200:
                return response
            if status == 201:
                return await self._send(
                    name,
                    "DELETE",
                    response.headers.get("location") or location,
                    params=self._params(None, with_api_key=True),
                    headers={"Eyes-Date": http_date()},
                    is_polling=True,
                    timeout=timeout,
                    retry=self.retry,
                    delay_before_retry=self.delay_before_retry,
                )
            if status == 410:
                raise LongRequestGoneError(name)
            raise RequestError(
                f"Unknown error during long request {name}: status {status}",
                request_name=name,
                status_code=status,
            )


def _flag(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def expect_status(response: httpx.Response, name: str, *accepted: int) -> httpx.Response:
    """Raise ``RequestError`` unless the response status is one of *accepted*."""
    if response.status_code not in accepted:
        raise RequestError(
            f"Error in request {name}: status {response.status_code} {response.reason_phrase}"
            f"\n{response.text}",
            request_name=name,
            status_code=response.status_code,
        )
    return response
