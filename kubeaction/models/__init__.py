"""Core data structures for KubeAction."""

from kubeaction.models.config import KubeActionConfig
from kubeaction.models.events import (
    EventType,
    LifecycleEvent,
    ObjectSnapshot,
    ResourceTypeId,
    Tombstone,
    WatchableCollection,
)
from kubeaction.models.rules import (
    ActionMode,
    ActionSpec,
    AutomationRule,
    ClientCertRef,
    Condition,
    ExecutionRecord,
    HeaderValue,
    ResourceSelector,
    RetryPolicy,
    RuleFilter,
    RuleStatus,
    SecretKeyRef,
    TLSPolicy,
)

__all__ = [
    "ActionMode",
    "ActionSpec",
    "AutomationRule",
    "ClientCertRef",
    "Condition",
    "EventType",
    "ExecutionRecord",
    "HeaderValue",
    "KubeActionConfig",
    "LifecycleEvent",
    "ObjectSnapshot",
    "ResourceSelector",
    "ResourceTypeId",
    "RetryPolicy",
    "RuleFilter",
    "RuleStatus",
    "SecretKeyRef",
    "TLSPolicy",
    "Tombstone",
    "WatchableCollection",
]
