"""Kubernetes adapters for the automation engine (kubernetes-asyncio).

Submodules
----------
stores      -- KubeRuleStore (CustomObjectsApi) and KubeSecretStore (CoreV1Api).
discovery   -- KubeDiscovery: kind -> plural resource via the dynamic client.
watcher     -- KubeWatchSubscriber: list + watch, relist recovery, tombstones.
reconciler  -- RuleReconciler: registers each rule's selector with the engine.
"""

from kubeaction.kube.discovery import KubeDiscovery
from kubeaction.kube.reconciler import RuleReconciler
from kubeaction.kube.stores import KubeRuleStore, KubeSecretStore
from kubeaction.kube.watcher import KubeWatchSubscriber

__all__ = [
    "KubeDiscovery",
    "KubeRuleStore",
    "KubeSecretStore",
    "KubeWatchSubscriber",
    "RuleReconciler",
]
