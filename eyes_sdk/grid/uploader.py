"""Batch resource uploads to the rendering grid.

Resources are collected for a short throttle window, checked against the
grid in one ``resources-exist`` query, and only the missing ones are PUT.
Every hash is uploaded at most once per store: concurrent callers asking
for the same hash share one future.
"""

from __future__ import annotations

import asyncio

from eyes_sdk.grid.resources import Resource
from eyes_sdk.grid.store import ResourceStore
from eyes_sdk.logger import Logger
from eyes_sdk.server.connector import ServerConnector

UPLOAD_THROTTLE = 0.3
UPLOAD_CONCURRENCY = 100


class ResourceUploader:
    def __init__(
        self,
        connector: ServerConnector,
        store: ResourceStore,
        throttle: float = UPLOAD_THROTTLE,
        concurrency: int = UPLOAD_CONCURRENCY,
        logger: Logger | None = None,
    ) -> None:
        self.connector = connector
        self.store = store
        self.throttle = throttle
        self.concurrency = concurrency
        self.logger = logger or Logger(label="ResourceUploader")
        self._batch: dict[str, Resource] = {}
        self._flush_task: asyncio.Task[None] | None = None

    async def put_resources(self, resources: list[Resource]) -> None:
        """Make sure every resource with content is stored on the grid."""
        waiting: list[asyncio.Future[None]] = []
        loop = asyncio.get_running_loop()
        for resource in resources:
            hash_value = resource.hash_value
            if hash_value is None or hash_value in self.store.uploaded:
                continue
            if not self.store.has_pending(hash_value):
                self.store.pending_uploads[hash_value] = loop.create_future()
                self._batch[hash_value] = resource
            waiting.append(self.store.pending_uploads[hash_value])

        if self._batch and self._flush_task is None:
            self._flush_task = asyncio.ensure_future(self._flush_later())

        if waiting:
            await asyncio.gather(*waiting)

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.throttle)
        batch, self._batch = self._batch, {}
        self._flush_task = None
        await self._flush(batch)

    async def _flush(self, batch: dict[str, Resource]) -> None:
        resources = list(batch.values())
        self.logger.verbose(f"checking {len(resources)} resource(s) on the grid")
        try:
            present = await self.connector.check_resources([r.hash for r in resources if r.hash])
        except Exception as exc:  # noqa: BLE001
            for hash_value in batch:
                self._settle(hash_value, exc)
            return

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _upload(resource: Resource) -> None:
            hash_value = resource.hash_value or ""
            async with semaphore:
                try:
                    await self.connector.put_resource(
                        hash_value, resource.type or "", resource.value or b""
                    )
                except Exception as exc:  # noqa: BLE001
                    self.logger.error(f"upload of {resource.url or hash_value} failed: {exc}")
                    self._settle(hash_value, exc)
                    return
            self._settle(hash_value)

        uploads = []
        for resource, exists in zip(resources, present):
            if exists:
                self._settle(resource.hash_value or "")
            else:
                uploads.append(_upload(resource))
        # a short server answer leaves the rest to be uploaded
        for resource in resources[len(present):]:
            uploads.append(_upload(resource))
        if uploads:
            await asyncio.gather(*uploads)

    def _settle(self, hash_value: str, error: BaseException | None = None) -> None:
        future = self.store.pending_uploads.pop(hash_value, None)
        if error is None:
            self.store.uploaded.add(hash_value)
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)
