"""Shared in-memory state of one engine instance.

The watch coordinator, dispatcher and scheduler receive the same
:class:`EngineRegistry`. Every map in it is mutated under the single
``lock``, which is held only for the lookup/insert itself and never across a
network call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import NamedTuple

from kubeaction.models.events import EventType, ResourceTypeId, WatchableCollection
from kubeaction.observability.metrics import interval_tasks_active, watched_resource_types


class IntervalKey(NamedTuple):
    rule_id: str
    object_uid: str
    action_index: int
    event_type: EventType


@dataclass(eq=False)
class IntervalTaskHandle:
    """Cancellation handle of one interval task.

    ``cancel`` is observed by the task between ticks only.
    """

    key: IntervalKey
    resource_type: ResourceTypeId
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None

    def cancel(self) -> None:
        self.stop.set()


@dataclass(eq=False)
class WatchSession:
    """One running watch stream for a resolved collection."""

    resource_type: ResourceTypeId
    collection: WatchableCollection
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None


class EngineRegistry:
    """Watch sessions, interval task handles and the local ledger index."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.shutdown = asyncio.Event()
        self._started = False
        self._watches: dict[WatchableCollection, WatchSession] = {}
        self._interval_tasks: dict[IntervalKey, IntervalTaskHandle] = {}
        self._ledger: set[tuple[str, str, str]] = set()

    # ------------------------------------------------------------------
    # Single-shot start flag
    # ------------------------------------------------------------------

    async def mark_started(self) -> bool:
        """Return True exactly once per registry."""
        async with self.lock:
            if self._started:
                return False
            self._started = True
            return True

    # ------------------------------------------------------------------
    # Watch sessions
    # ------------------------------------------------------------------

    async def add_watch(self, session: WatchSession) -> bool:
        """Register *session*; False if its collection is already watched."""
        async with self.lock:
            if session.collection in self._watches:
                return False
            self._watches[session.collection] = session
            watched_resource_types.set(len(self._watches))
            return True

    async def pop_watch(self, collection: WatchableCollection) -> WatchSession | None:
        async with self.lock:
            session = self._watches.pop(collection, None)
            watched_resource_types.set(len(self._watches))
            return session

    async def watch_sessions(self) -> list[WatchSession]:
        async with self.lock:
            return list(self._watches.values())

    # ------------------------------------------------------------------
    # Interval tasks
    # ------------------------------------------------------------------

    async def add_interval_task(self, handle: IntervalTaskHandle) -> bool:
        """Register *handle*; an existing key is never replaced."""
        async with self.lock:
            if handle.key in self._interval_tasks:
                return False
            self._interval_tasks[handle.key] = handle
            interval_tasks_active.set(len(self._interval_tasks))
            return True

    async def has_interval_task(self, key: IntervalKey) -> bool:
        async with self.lock:
            return key in self._interval_tasks

    async def remove_interval_task(self, handle: IntervalTaskHandle) -> None:
        """Remove *handle* if it is still the registered one for its key."""
        async with self.lock:
            if self._interval_tasks.get(handle.key) is handle:
                del self._interval_tasks[handle.key]
            interval_tasks_active.set(len(self._interval_tasks))

    async def interval_tasks(self, resource_type: ResourceTypeId | None = None) -> list[IntervalTaskHandle]:
        async with self.lock:
            return [
                h for h in self._interval_tasks.values() if resource_type is None or h.resource_type == resource_type
            ]

    # ------------------------------------------------------------------
    # Ledger index
    # ------------------------------------------------------------------

    async def record_execution(self, rule_id: str, uid: str, event_type: EventType) -> None:
        async with self.lock:
            self._ledger.add((rule_id, uid, event_type.value))

    async def has_execution(self, rule_id: str, uid: str, event_type: EventType) -> bool:
        async with self.lock:
            return (rule_id, uid, event_type.value) in self._ledger
