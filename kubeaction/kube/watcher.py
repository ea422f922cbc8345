"""List-and-watch subscriber with relist recovery.

A stream starts with a full list (every existing object is delivered as an
add), then watches from the list's resourceVersion. When the watch expires
(HTTP 410) or fails, the collection is relisted after an exponential
back-off and diffed against the objects already known:

* objects no longer present are delivered as :class:`Tombstone` deletions
  carrying their last known body,
* new objects as adds, and objects with a changed resourceVersion as updates.

Handlers are awaited one at a time. Stopping waits for an in-flight handler
to finish and then abandons the blocking stream read.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import aiohttp
import structlog
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from kubeaction.engine.interfaces import WatchHandlers, WatchSubscriber
from kubeaction.kube.discovery import KubeDiscovery
from kubeaction.models.events import Tombstone, WatchableCollection

_log = structlog.get_logger(component="kube.watcher")

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 60.0


class _Expired(Exception):
    """The watch resourceVersion is too old; a relist is required."""


def object_key(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    namespace = metadata.get("namespace") or ""
    name = metadata.get("name") or ""
    return f"{namespace}/{name}" if namespace else str(name)


def _resource_version(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("resourceVersion") or "")


def diff_relist(
    known: dict[str, dict[str, Any]],
    items: list[dict[str, Any]],
) -> tuple[list[dict[str, Any]], list[tuple[dict[str, Any], dict[str, Any]]], list[Tombstone]]:
    """Compare a fresh list against the known objects.

    Returns ``(added, updated, deleted)``; ``updated`` holds (old, new) pairs
    and only includes objects whose resourceVersion changed.
    """
    fresh = {object_key(item): item for item in items}
    added = [obj for key, obj in fresh.items() if key not in known]
    updated = [
        (known[key], obj)
        for key, obj in fresh.items()
        if key in known and _resource_version(known[key]) != _resource_version(obj)
    ]
    deleted = [Tombstone(key=key, last_known=obj) for key, obj in known.items() if key not in fresh]
    return added, updated, deleted


class KubeWatchSubscriber(WatchSubscriber):
    """Watches collections through the dynamic client.

    Args:
        discovery:        Shares its DynamicClient and resource lookup.
        timeout_seconds:  Server-side watch timeout before a re-watch.
    """

    def __init__(self, discovery: KubeDiscovery, timeout_seconds: int = 300) -> None:
        self._discovery = discovery
        self._timeout = timeout_seconds

    async def subscribe(
        self,
        collection: WatchableCollection,
        handlers: WatchHandlers,
        stop: asyncio.Event,
    ) -> None:
        dispatching = asyncio.Lock()
        stream = asyncio.create_task(self._stream(collection, handlers, stop, dispatching))
        stop_waiter = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({stream, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
            if not stream.done():
                async with dispatching:
                    stream.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stream
        finally:
            stop_waiter.cancel()
            if not stream.done():
                stream.cancel()
        _log.info("watch_stream_closed", collection=str(collection))

    async def _stream(
        self,
        collection: WatchableCollection,
        handlers: WatchHandlers,
        stop: asyncio.Event,
        dispatching: asyncio.Lock,
    ) -> None:
        dyn: Any = None
        resource: Any = None
        known: dict[str, dict[str, Any]] = {}
        resource_version: str | None = None
        backoff = _INITIAL_BACKOFF

        while not stop.is_set():
            try:
                if resource is None:
                    dyn = await self._discovery.dynamic_client()
                    resource = await self._discovery.find_resource(collection.api_version, collection.kind)
                if resource_version is None:
                    resource_version = await self._relist(dyn, resource, known, handlers, dispatching)
                resource_version = await self._watch(
                    dyn, resource, resource_version, known, handlers, stop, dispatching
                )
                backoff = _INITIAL_BACKOFF
            except _Expired:
                _log.info("watch_expired_relisting", collection=str(collection))
                resource_version = None
            except ApiException as exc:
                if exc.status == 410:
                    resource_version = None
                    continue
                _log.warning("watch_api_error", collection=str(collection), status=exc.status, backoff=backoff)
                resource_version = None
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
                _log.warning("watch_connection_error", collection=str(collection), error=str(exc), backoff=backoff)
                resource_version = None
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)

    async def _relist(
        self,
        dyn: Any,
        resource: Any,
        known: dict[str, dict[str, Any]],
        handlers: WatchHandlers,
        dispatching: asyncio.Lock,
    ) -> str:
        listing = await dyn.get(resource)
        body = listing.to_dict()
        items = list(body.get("items") or [])
        added, updated, deleted = diff_relist(known, items)

        known.clear()
        known.update({object_key(item): item for item in items})

        for tombstone in deleted:
            async with dispatching:
                await handlers.on_delete(tombstone)
        for obj in added:
            async with dispatching:
                await handlers.on_add(obj)
        for old, new in updated:
            async with dispatching:
                await handlers.on_update(old, new)

        return str((body.get("metadata") or {}).get("resourceVersion") or "")

    async def _watch(
        self,
        dyn: Any,
        resource: Any,
        resource_version: str,
        known: dict[str, dict[str, Any]],
        handlers: WatchHandlers,
        stop: asyncio.Event,
        dispatching: asyncio.Lock,
    ) -> str:
        async for event in dyn.watch(resource, resource_version=resource_version, timeout=self._timeout):
            if stop.is_set():
                break
            event_type = event.get("type")
            obj = event.get("raw_object") or {}
            if event_type == "ERROR":
                if obj.get("code") == 410:
                    raise _Expired()
                raise ApiException(status=obj.get("code") or 500, reason=obj.get("message") or "watch error")

            resource_version = _resource_version(obj) or resource_version
            if event_type == "BOOKMARK":
                continue

            key = object_key(obj)
            async with dispatching:
                if event_type == "ADDED":
                    previous = known.get(key)
                    known[key] = obj
                    if previous is None:
                        await handlers.on_add(obj)
                    elif _resource_version(previous) != _resource_version(obj):
                        await handlers.on_update(previous, obj)
                elif event_type == "MODIFIED":
                    previous = known.get(key, obj)
                    known[key] = obj
                    await handlers.on_update(previous, obj)
                elif event_type == "DELETED":
                    known.pop(key, None)
                    await handlers.on_delete(obj)
        return resource_version
