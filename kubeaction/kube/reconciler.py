"""Rule reconciler.

Watches AutomationRule objects and asks the engine to watch the resource
type each rule selects. A selector the cluster cannot resolve yet (for
example a CRD installed after the rule) is retried after ``requeue_seconds``
until it resolves or the reconciler stops.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog

from kubeaction.engine.interfaces import WatchHandlers, WatchSubscriber
from kubeaction.errors import UnknownResourceType
from kubeaction.models.config import RuleResourceConfig
from kubeaction.models.events import ResourceTypeId, Tombstone, WatchableCollection
from kubeaction.models.rules import ResourceSelector

_log = structlog.get_logger(component="kube.reconciler")

RULE_KIND = "AutomationRule"


class _WatchRegistrar(Protocol):
    async def ensure_watching(self, resource_type: ResourceTypeId) -> None: ...


def rule_collection(resource: RuleResourceConfig) -> WatchableCollection:
    return WatchableCollection(
        group=resource.group,
        version=resource.version,
        resource=resource.plural,
        kind=RULE_KIND,
        namespaced=True,
    )


class RuleReconciler:
    """Calls ``ensure_watching`` once per rule add/update.

    Args:
        engine:          Anything exposing ``ensure_watching``.
        subscriber:      Watch subscriber used for the rule collection.
        resource:        Coordinates of the rule resource.
        requeue_seconds: Delay before retrying an unresolvable selector.
    """

    def __init__(
        self,
        engine: _WatchRegistrar,
        subscriber: WatchSubscriber,
        resource: RuleResourceConfig,
        requeue_seconds: float = 30.0,
    ) -> None:
        self._engine = engine
        self._subscriber = subscriber
        self._collection = rule_collection(resource)
        self._requeue_seconds = requeue_seconds
        self._stop = asyncio.Event()
        self._pending: dict[ResourceTypeId, asyncio.Task[None]] = {}

    async def start(self) -> None:
        """Run until ``stop`` is called."""
        _log.info("rule_reconciler_started", collection=str(self._collection))
        handlers = WatchHandlers(on_add=self._on_rule, on_update=self._on_rule_update, on_delete=self._on_rule_delete)
        await self._subscriber.subscribe(self._collection, handlers, self._stop)

    async def stop(self) -> None:
        self._stop.set()
        for task in list(self._pending.values()):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending.values(), return_exceptions=True)
        self._pending.clear()

    async def reconcile(self, obj: dict[str, Any]) -> bool:
        """Ensure the rule's selected type is watched.

        Returns False when the type could not be resolved (a retry is queued).
        """
        metadata = obj.get("metadata") or {}
        selector = ResourceSelector.from_dict((obj.get("spec") or {}).get("selector") or {})
        resource_type = selector.resource_type
        _log.info(
            "ensuring_watch_for_rule",
            rule=f"{metadata.get('namespace', '')}/{metadata.get('name', '')}",
            resource_type=str(resource_type),
        )
        try:
            await self._engine.ensure_watching(resource_type)
        except UnknownResourceType as exc:
            _log.warning("ensure_watch_failed", resource_type=str(resource_type), error=str(exc))
            self._requeue(resource_type)
            return False
        return True

    async def _on_rule(self, obj: dict[str, Any]) -> None:
        await self.reconcile(obj)

    async def _on_rule_update(self, _old: dict[str, Any], new: dict[str, Any]) -> None:
        await self.reconcile(new)

    async def _on_rule_delete(self, _obj: dict[str, Any] | Tombstone) -> None:
        # Interval tasks notice the deletion themselves; watches stay up.
        return None

    def _requeue(self, resource_type: ResourceTypeId) -> None:
        if resource_type in self._pending or self._stop.is_set():
            return
        self._pending[resource_type] = asyncio.create_task(
            self._retry(resource_type),
            name=f"requeue:{resource_type}",
        )

    async def _retry(self, resource_type: ResourceTypeId) -> None:
        try:
            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._requeue_seconds)
                    return
                except TimeoutError:
                    pass
                try:
                    await self._engine.ensure_watching(resource_type)
                except UnknownResourceType as exc:
                    _log.debug("requeue_still_unresolved", resource_type=str(resource_type), error=str(exc))
                    continue
                _log.info("requeue_resolved", resource_type=str(resource_type))
                return
        finally:
            self._pending.pop(resource_type, None)
