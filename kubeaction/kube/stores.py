"""Rule and secret stores backed by the Kubernetes API (kubernetes-asyncio)."""

from __future__ import annotations

import base64
import binascii

import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from kubeaction.engine.interfaces import RuleStore, SecretStore
from kubeaction.errors import ConflictError, KubeActionError, NotFoundError
from kubeaction.models.config import RuleResourceConfig
from kubeaction.models.rules import AutomationRule

_log = structlog.get_logger(component="kube.stores")


def _translate(exc: ApiException, what: str) -> KubeActionError:
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        return ConflictError(f"{what}: {exc.reason}")
    return KubeActionError(f"{what}: api error {exc.status} {exc.reason}")


class KubeRuleStore(RuleStore):
    """AutomationRule access through ``CustomObjectsApi``.

    Status writes go through the ``/status`` subresource with the rule's
    ``resourceVersion``; the API server answers 409 when it is stale.
    """

    def __init__(self, api_client: k8s_client.ApiClient, resource: RuleResourceConfig) -> None:
        self._api = k8s_client.CustomObjectsApi(api_client)
        self._resource = resource

    async def list(self) -> list[AutomationRule]:
        try:
            resp = await self._api.list_cluster_custom_object(
                self._resource.group,
                self._resource.version,
                self._resource.plural,
            )
        except ApiException as exc:
            raise _translate(exc, f"list {self._resource.plural}") from exc
        return [AutomationRule.from_dict(item) for item in resp.get("items") or []]

    async def get(self, name: str, namespace: str) -> AutomationRule:
        try:
            obj = await self._api.get_namespaced_custom_object(
                self._resource.group,
                self._resource.version,
                namespace,
                self._resource.plural,
                name,
            )
        except ApiException as exc:
            raise _translate(exc, f"{self._resource.plural} {namespace}/{name}") from exc
        return AutomationRule.from_dict(obj)

    async def update_status(self, rule: AutomationRule) -> AutomationRule:
        try:
            obj = await self._api.replace_namespaced_custom_object_status(
                self._resource.group,
                self._resource.version,
                rule.namespace,
                self._resource.plural,
                rule.name,
                rule.to_dict(),
            )
        except ApiException as exc:
            raise _translate(exc, f"{self._resource.plural} {rule.rule_id} status") from exc
        return AutomationRule.from_dict(obj)


class KubeSecretStore(SecretStore):
    """Reads ``v1.Secret`` data and base64-decodes it."""

    def __init__(self, api_client: k8s_client.ApiClient) -> None:
        self._api = k8s_client.CoreV1Api(api_client)

    async def get_secret(self, namespace: str, name: str) -> dict[str, bytes]:
        try:
            secret = await self._api.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            raise _translate(exc, f"secret {namespace}/{name}") from exc

        decoded: dict[str, bytes] = {}
        for key, value in (secret.data or {}).items():
            try:
                decoded[key] = base64.b64decode(value or "")
            except (binascii.Error, ValueError):
                _log.warning("secret_value_not_base64", namespace=namespace, name=name, key=key)
        return decoded
