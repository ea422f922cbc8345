"""Lifecycle event data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    """Lifecycle transition of a watched object."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: str) -> EventType | None:
        """Case-insensitive lookup; returns None for unknown names."""
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return None


@dataclass(frozen=True)
class ResourceTypeId:
    """Group/version/kind of a watchable resource type. Group is empty for core."""

    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


@dataclass(frozen=True)
class WatchableCollection:
    """A resolved, watchable collection (the plural resource of a kind)."""

    group: str
    version: str
    resource: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.api_version}/{self.resource}"


@dataclass(frozen=True)
class ObjectSnapshot:
    """Identity and labels of a watched object plus its raw body.

    Snapshots reconstructed from a tombstone may be partially populated:
    callers must tolerate empty ``uid``/``namespace`` and an empty ``raw``.
    """

    name: str
    namespace: str
    uid: str
    labels: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> ObjectSnapshot:
        metadata = obj.get("metadata") or {}
        return cls(
            name=str(metadata.get("name") or ""),
            namespace=str(metadata.get("namespace") or ""),
            uid=str(metadata.get("uid") or ""),
            labels={str(k): str(v) for k, v in (metadata.get("labels") or {}).items()},
            raw=obj,
        )

    def template_context(self) -> dict[str, Any]:
        """Context exposed to request body templates."""
        return {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "labels": dict(self.labels),
        }


@dataclass(frozen=True)
class Tombstone:
    """A deletion observed without the live object.

    Emitted when an object vanished while the watch was disconnected;
    ``last_known`` is the most recent body seen, if any.
    """

    key: str
    last_known: dict[str, Any] | None = None


@dataclass(frozen=True)
class LifecycleEvent:
    """Normalized Create/Update/Delete notification.

    Produced by the watch coordinator; immutable once emitted.
    """

    event_type: EventType
    resource_type: ResourceTypeId
    snapshot: ObjectSnapshot
    tombstone: bool = False
