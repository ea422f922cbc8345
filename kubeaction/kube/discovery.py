"""Group/version/kind resolution through the dynamic client's discovery."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]
from kubernetes_asyncio.dynamic import DynamicClient  # type: ignore[import-untyped]
from kubernetes_asyncio.dynamic.exceptions import ResourceNotFoundError  # type: ignore[import-untyped]

from kubeaction.engine.interfaces import Discovery
from kubeaction.errors import UnknownResourceType
from kubeaction.models.events import ResourceTypeId, WatchableCollection

_log = structlog.get_logger(component="kube.discovery")


class KubeDiscovery(Discovery):
    """Resolves kinds to plural resources; shares one lazily built DynamicClient."""

    def __init__(self, api_client: k8s_client.ApiClient) -> None:
        self._api_client = api_client
        self._dynamic: Any = None
        self._lock = asyncio.Lock()

    async def dynamic_client(self) -> Any:
        async with self._lock:
            if self._dynamic is None:
                self._dynamic = await DynamicClient(self._api_client)
            return self._dynamic

    async def find_resource(self, api_version: str, kind: str) -> Any:
        dyn = await self.dynamic_client()
        return await dyn.resources.get(api_version=api_version, kind=kind)

    async def resolve(self, resource_type: ResourceTypeId) -> WatchableCollection:
        try:
            resource = await self.find_resource(resource_type.api_version, resource_type.kind)
        except ResourceNotFoundError as exc:
            raise UnknownResourceType(resource_type, str(exc)) from exc
        except ApiException as exc:
            if exc.status == 404:
                raise UnknownResourceType(resource_type, f"group version not served: {exc.reason}") from exc
            raise

        collection = WatchableCollection(
            group=resource_type.group,
            version=resource_type.version,
            resource=str(resource.name),
            kind=resource_type.kind,
            namespaced=bool(resource.namespaced),
        )
        _log.debug("resource_type_resolved", resource_type=str(resource_type), collection=str(collection))
        return collection
