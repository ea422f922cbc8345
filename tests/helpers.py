"""In-memory fakes and factories shared by unit and integration tests.

The fakes implement the engine's collaborator contracts closely enough for
the engine to run unmodified: the rule store enforces resourceVersion on
status writes, the subscriber hands its handlers to the test and blocks
until stopped.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from kubeaction.engine.executor import ActionExecutor
from kubeaction.engine.interfaces import Discovery, RuleStore, SecretStore, WatchHandlers, WatchSubscriber
from kubeaction.errors import ActionError, ConflictError, NotFoundError, UnknownResourceType
from kubeaction.models.events import (
    EventType,
    LifecycleEvent,
    ObjectSnapshot,
    ResourceTypeId,
    WatchableCollection,
)
from kubeaction.models.rules import ActionSpec, AutomationRule

POD = ResourceTypeId(group="", version="v1", kind="Pod")
POD_COLLECTION = WatchableCollection(group="", version="v1", resource="pods", kind="Pod")
DEPLOYMENT = ResourceTypeId(group="apps", version="v1", kind="Deployment")
DEPLOYMENT_COLLECTION = WatchableCollection(group="apps", version="v1", resource="deployments", kind="Deployment")


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_rule_obj(
    name: str = "notify",
    namespace: str = "default",
    uid: str = "rule-uid-1",
    resource_type: ResourceTypeId = POD,
    events: list[str] | None = None,
    actions: list[dict[str, Any]] | None = None,
    filters: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
    resource_version: str = "1",
    generation: int = 1,
) -> dict[str, Any]:
    """Build an AutomationRule body as served by the API server."""
    spec: dict[str, Any] = {
        "selector": {
            "group": resource_type.group,
            "version": resource_type.version,
            "kind": resource_type.kind,
        },
        "events": events if events is not None else ["Create"],
        "actions": actions if actions is not None else [{"type": "http", "url": "https://hooks.example/notify"}],
    }
    if filters is not None:
        spec["filters"] = filters
    obj: dict[str, Any] = {
        "apiVersion": "automation.kubeaction.io/v1alpha1",
        "kind": "AutomationRule",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid,
            "resourceVersion": resource_version,
            "generation": generation,
        },
        "spec": spec,
    }
    if status is not None:
        obj["status"] = status
    return obj


def make_rule(**kwargs: Any) -> AutomationRule:
    return AutomationRule.from_dict(make_rule_obj(**kwargs))


def make_object(
    name: str = "web-0",
    namespace: str = "default",
    uid: str = "pod-uid-1",
    labels: dict[str, str] | None = None,
    resource_version: str = "100",
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid,
            "labels": labels or {},
            "resourceVersion": resource_version,
        },
    }


def make_event(
    event_type: EventType = EventType.CREATE,
    name: str = "web-0",
    namespace: str = "default",
    uid: str = "pod-uid-1",
    labels: dict[str, str] | None = None,
    resource_type: ResourceTypeId = POD,
) -> LifecycleEvent:
    obj = make_object(name=name, namespace=namespace, uid=uid, labels=labels)
    return LifecycleEvent(event_type, resource_type, ObjectSnapshot.from_object(obj))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRuleStore(RuleStore):
    """Rule bodies keyed by (namespace, name) with optimistic status writes.

    ``inject_conflicts`` makes the next N ``update_status`` calls fail with a
    conflict (a concurrent writer bumps the resourceVersion first).
    """

    def __init__(self, *objs: dict[str, Any]) -> None:
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.inject_conflicts = 0
        self.update_calls = 0
        self.list_calls = 0
        for obj in objs:
            self.put(obj)

    def put(self, obj: dict[str, Any]) -> None:
        metadata = obj["metadata"]
        self.objects[(metadata["namespace"], metadata["name"])] = copy.deepcopy(obj)

    def delete(self, name: str, namespace: str = "default") -> None:
        self.objects.pop((namespace, name), None)

    def status_of(self, name: str, namespace: str = "default") -> dict[str, Any]:
        return self.objects[(namespace, name)].get("status") or {}

    async def list(self) -> list[AutomationRule]:
        self.list_calls += 1
        return [AutomationRule.from_dict(copy.deepcopy(obj)) for obj in self.objects.values()]

    async def get(self, name: str, namespace: str) -> AutomationRule:
        try:
            obj = self.objects[(namespace, name)]
        except KeyError:
            raise NotFoundError(f"rule {namespace}/{name} not found") from None
        return AutomationRule.from_dict(copy.deepcopy(obj))

    async def update_status(self, rule: AutomationRule) -> AutomationRule:
        self.update_calls += 1
        key = (rule.namespace, rule.name)
        if key not in self.objects:
            raise NotFoundError(f"rule {rule.rule_id} not found")
        stored = self.objects[key]
        if self.inject_conflicts > 0:
            self.inject_conflicts -= 1
            _bump(stored)
            raise ConflictError(f"rule {rule.rule_id}: object has been modified")
        if stored["metadata"]["resourceVersion"] != rule.resource_version:
            raise ConflictError(f"rule {rule.rule_id}: object has been modified")
        stored["status"] = rule.to_dict()["status"]
        _bump(stored)
        return AutomationRule.from_dict(copy.deepcopy(stored))


def _bump(obj: dict[str, Any]) -> None:
    obj["metadata"]["resourceVersion"] = str(int(obj["metadata"]["resourceVersion"]) + 1)


class FakeSecretStore(SecretStore):
    def __init__(self, secrets: dict[tuple[str, str], dict[str, bytes]] | None = None) -> None:
        self.secrets = secrets or {}
        self.reads: list[tuple[str, str]] = []

    async def get_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        self.reads.append((namespace, name))
        try:
            return dict(self.secrets[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"secret {namespace}/{name} not found") from None


class FakeDiscovery(Discovery):
    def __init__(self, known: dict[ResourceTypeId, WatchableCollection] | None = None) -> None:
        self.known = dict(known) if known is not None else {POD: POD_COLLECTION}
        self.calls: list[ResourceTypeId] = []

    async def resolve(self, resource_type: ResourceTypeId) -> WatchableCollection:
        self.calls.append(resource_type)
        try:
            return self.known[resource_type]
        except KeyError:
            raise UnknownResourceType(resource_type, "not served") from None


class FakeSubscriber(WatchSubscriber):
    """Exposes each subscription's handlers; returns once ``stop`` is set."""

    def __init__(self) -> None:
        self.handlers: dict[WatchableCollection, WatchHandlers] = {}
        self.subscribe_calls: list[WatchableCollection] = []
        self.stopped: list[WatchableCollection] = []
        self._subscribed = asyncio.Event()
        self.fail_with: Exception | None = None

    async def subscribe(
        self,
        collection: WatchableCollection,
        handlers: WatchHandlers,
        stop: asyncio.Event,
    ) -> None:
        self.subscribe_calls.append(collection)
        self.handlers[collection] = handlers
        self._subscribed.set()
        if self.fail_with is not None:
            raise self.fail_with
        await stop.wait()
        self.stopped.append(collection)

    async def wait_subscribed(self, collection: WatchableCollection, timeout: float = 1.0) -> WatchHandlers:
        async with asyncio.timeout(timeout):
            while collection not in self.handlers:
                self._subscribed.clear()
                await self._subscribed.wait()
        return self.handlers[collection]


class RecordingExecutor(ActionExecutor):
    """Records invocations; fails with ``errors`` popped in order, when given."""

    def __init__(self, action_type: str = "http", errors: list[ActionError] | None = None) -> None:
        self._type = action_type
        self.errors = list(errors or [])
        self.calls: list[tuple[ActionSpec, str, ObjectSnapshot, dict[str, str]]] = []
        self.called = asyncio.Event()

    @property
    def action_type(self) -> str:
        return self._type

    async def execute(
        self,
        action: ActionSpec,
        namespace: str,
        snapshot: ObjectSnapshot,
        headers: dict[str, str],
    ) -> None:
        self.calls.append((action, namespace, snapshot, headers))
        self.called.set()
        if self.errors:
            raise self.errors.pop(0)

    async def wait_calls(self, count: int, timeout: float = 2.0) -> None:
        async with asyncio.timeout(timeout):
            while len(self.calls) < count:
                self.called.clear()
                await self.called.wait()
