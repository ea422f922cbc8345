"""Collaborator contracts consumed by the automation engine.

Concrete Kubernetes-backed implementations live in :mod:`kubeaction.kube`;
tests substitute in-memory fakes.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kubeaction.models.events import ResourceTypeId, Tombstone, WatchableCollection
from kubeaction.models.rules import AutomationRule


class RuleStore(ABC):
    """Read access to AutomationRules plus optimistic status writes."""

    @abstractmethod
    async def list(self) -> list[AutomationRule]:
        """Return every rule across all namespaces."""

    @abstractmethod
    async def get(self, name: str, namespace: str) -> AutomationRule:
        """Return one rule. Raises NotFoundError if it does not exist."""

    @abstractmethod
    async def update_status(self, rule: AutomationRule) -> AutomationRule:
        """Persist ``rule.status``.

        Raises:
            ConflictError: ``rule.resource_version`` is stale.
            NotFoundError: the rule no longer exists.
        """


class SecretStore(ABC):
    """Namespace-scoped secret lookup."""

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        """Return decoded secret data. Raises NotFoundError."""


class Discovery(ABC):
    """Maps a group/version/kind to a watchable collection."""

    @abstractmethod
    async def resolve(self, resource_type: ResourceTypeId) -> WatchableCollection:
        """Raises UnknownResourceType when the kind is not served."""


OnAdd = Callable[[dict[str, Any]], Awaitable[None]]
OnUpdate = Callable[[dict[str, Any], dict[str, Any]], Awaitable[None]]
OnDelete = Callable[[dict[str, Any] | Tombstone], Awaitable[None]]


@dataclass(frozen=True)
class WatchHandlers:
    """Callbacks a subscriber awaits, in stream order, for one collection."""

    on_add: OnAdd
    on_update: OnUpdate
    on_delete: OnDelete


class WatchSubscriber(ABC):
    """Streams add/update/delete notifications for a collection."""

    @abstractmethod
    async def subscribe(
        self,
        collection: WatchableCollection,
        handlers: WatchHandlers,
        stop: asyncio.Event,
    ) -> None:
        """Deliver notifications until *stop* is set.

        Existing objects are delivered through ``on_add`` when the stream
        starts. A deletion whose final state was missed is delivered to
        ``on_delete`` as a :class:`Tombstone`.
        """
