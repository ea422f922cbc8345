"""Watch coordinator.

Turns resource-type registrations into running watch streams:

* ``ensure_watching`` resolves the type through discovery and starts one
  stream per resolved collection (a repeat registration is a no-op);
* the first registration starts the interval scheduler exactly once;
* raw add/update/delete notifications are normalized into
  :class:`LifecycleEvent` and awaited through the dispatcher in stream order,
  so one slow action delays the next event of the same type only.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from kubeaction.engine.dispatcher import Dispatcher
from kubeaction.engine.interfaces import Discovery, WatchHandlers, WatchSubscriber
from kubeaction.engine.registry import EngineRegistry, WatchSession
from kubeaction.engine.scheduler import IntervalScheduler
from kubeaction.models.events import EventType, LifecycleEvent, ObjectSnapshot, ResourceTypeId, Tombstone

_log = structlog.get_logger(component="engine.watch")


def snapshot_from_tombstone(tombstone: Tombstone) -> ObjectSnapshot | None:
    """Best-effort snapshot of a deletion whose final state was missed.

    Falls back to the ``namespace/name`` store key when the last known body
    is missing; returns None when nothing identifies the object.
    """
    if tombstone.last_known:
        snapshot = ObjectSnapshot.from_object(tombstone.last_known)
        if snapshot.name or snapshot.uid:
            return snapshot
    if not tombstone.key:
        return None
    namespace, _, name = tombstone.key.rpartition("/")
    return ObjectSnapshot(name=name, namespace=namespace, uid="")


class WatchCoordinator:
    """Starts and owns watch sessions; forwards events to the dispatcher."""

    def __init__(
        self,
        discovery: Discovery,
        subscriber: WatchSubscriber,
        dispatcher: Dispatcher,
        scheduler: IntervalScheduler,
        registry: EngineRegistry,
    ) -> None:
        self._discovery = discovery
        self._subscriber = subscriber
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._registry = registry

    async def ensure_watching(self, resource_type: ResourceTypeId) -> None:
        """Make sure a stream is running for *resource_type*.

        Raises:
            UnknownResourceType: discovery cannot resolve the kind right now.
                Not retried here; the caller re-invokes later.
        """
        collection = await self._discovery.resolve(resource_type)
        session = WatchSession(resource_type=resource_type, collection=collection)
        if not await self._registry.add_watch(session):
            return

        if await self._registry.mark_started():
            self._scheduler.start()
            _log.info("watch_dispatch_started")

        session.task = asyncio.create_task(
            self._run_session(session),
            name=f"watch:{collection}",
        )
        _log.info("watch_started", resource_type=str(resource_type), collection=str(collection))

    async def stop_watching(self, resource_type: ResourceTypeId) -> bool:
        """Tear down the session for *resource_type* and cancel its interval tasks.

        Returns False if the type was not being watched.
        """
        for session in await self._registry.watch_sessions():
            if session.resource_type == resource_type:
                await self._teardown(session)
                return True
        return False

    async def watched_types(self) -> list[ResourceTypeId]:
        return [s.resource_type for s in await self._registry.watch_sessions()]

    async def stop(self) -> None:
        """Stop every session. The shutdown signal is set by the caller."""
        for session in await self._registry.watch_sessions():
            await self._teardown(session)

    async def _teardown(self, session: WatchSession) -> None:
        await self._registry.pop_watch(session.collection)
        session.stop.set()
        await self._scheduler.cancel_for(session.resource_type)
        if session.task is not None:
            await asyncio.gather(session.task, return_exceptions=True)
        _log.info("watch_stopped", resource_type=str(session.resource_type))

    async def _run_session(self, session: WatchSession) -> None:
        handlers = self._handlers(session.resource_type)
        stop = session.stop
        shutdown_relay = asyncio.create_task(self._relay_shutdown(stop))
        try:
            await self._subscriber.subscribe(session.collection, handlers, stop)
        except Exception as exc:  # noqa: BLE001
            _log.error("watch_stream_failed", resource_type=str(session.resource_type), error=str(exc))
            await self._registry.pop_watch(session.collection)
        finally:
            shutdown_relay.cancel()

    async def _relay_shutdown(self, stop: asyncio.Event) -> None:
        await self._registry.shutdown.wait()
        stop.set()

    def _handlers(self, resource_type: ResourceTypeId) -> WatchHandlers:
        async def on_add(obj: dict[str, Any]) -> None:
            await self._deliver(LifecycleEvent(EventType.CREATE, resource_type, ObjectSnapshot.from_object(obj)))

        async def on_update(_old: dict[str, Any], new: dict[str, Any]) -> None:
            await self._deliver(LifecycleEvent(EventType.UPDATE, resource_type, ObjectSnapshot.from_object(new)))

        async def on_delete(obj: dict[str, Any] | Tombstone) -> None:
            if isinstance(obj, Tombstone):
                snapshot = snapshot_from_tombstone(obj)
                if snapshot is None:
                    _log.debug("tombstone_discarded", resource_type=str(resource_type))
                    return
                await self._deliver(LifecycleEvent(EventType.DELETE, resource_type, snapshot, tombstone=True))
                return
            await self._deliver(LifecycleEvent(EventType.DELETE, resource_type, ObjectSnapshot.from_object(obj)))

        return WatchHandlers(on_add=on_add, on_update=on_update, on_delete=on_delete)

    async def _deliver(self, event: LifecycleEvent) -> None:
        """Dispatch synchronously; failures are logged and never stop the stream."""
        try:
            await self._dispatcher.on_event(event)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "dispatch_failed",
                resource_type=str(event.resource_type),
                event_type=event.event_type.value,
                name=event.snapshot.name,
                namespace=event.snapshot.namespace,
                error=str(exc),
            )
