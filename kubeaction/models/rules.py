"""AutomationRule custom resource data structures.

The rule resource is owned by an external actor; the engine only writes its
``status``. ``from_dict`` constructors accept the camelCase JSON served by
the API server; ``to_dict`` returns the full object with the engine-owned
status re-serialized.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from kubeaction.models.events import EventType, ResourceTypeId

DEFAULT_RETRY_ON_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

CONDITION_READY = "Ready"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


class ActionMode(StrEnum):
    """Execution cadence of an action."""

    ONCE = "once"
    INTERVAL = "interval"

    @classmethod
    def parse(cls, value: str | None) -> ActionMode:
        # "cron" is the value the CRD enum historically used for interval mode.
        if (value or "").strip().lower() in ("interval", "cron"):
            return cls.INTERVAL
        return cls.ONCE


def format_time(value: datetime) -> str:
    """Serialize to the RFC 3339 second-precision form used by the API server."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class ResourceSelector:
    group: str
    version: str
    kind: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceSelector:
        return cls(
            group=str(data.get("group") or ""),
            version=str(data.get("version") or ""),
            kind=str(data.get("kind") or ""),
        )

    @property
    def resource_type(self) -> ResourceTypeId:
        return ResourceTypeId(group=self.group, version=self.version, kind=self.kind)

    def matches(self, resource_type: ResourceTypeId) -> bool:
        return (
            self.group == resource_type.group
            and self.version == resource_type.version
            and self.kind == resource_type.kind
        )


@dataclass(frozen=True)
class RuleFilter:
    """Conjunctive object filter. Empty fields are not checked."""

    name_regex: str = ""
    namespace_regex: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleFilter:
        return cls(
            name_regex=str(data.get("nameRegex") or ""),
            namespace_regex=str(data.get("namespaceRegex") or ""),
            labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
        )


@dataclass(frozen=True)
class SecretKeyRef:
    name: str
    key: str

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_key: str = "") -> SecretKeyRef:
        return cls(name=str(data.get("name") or ""), key=str(data.get("key") or default_key))


@dataclass(frozen=True)
class ClientCertRef:
    name: str
    cert_key: str = "tls.crt"
    key_key: str = "tls.key"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientCertRef:
        return cls(
            name=str(data.get("name") or ""),
            cert_key=str(data.get("certKey") or "tls.crt"),
            key_key=str(data.get("keyKey") or "tls.key"),
        )


@dataclass(frozen=True)
class HeaderValue:
    """A header value: either a literal or a reference to secret material."""

    value: str | None = None
    secret_key_ref: SecretKeyRef | None = None

    @classmethod
    def from_raw(cls, data: Any) -> HeaderValue:
        if isinstance(data, str):
            return cls(value=data)
        data = data or {}
        ref = data.get("secretKeyRef") or (data.get("valueFrom") or {}).get("secretKeyRef")
        if ref:
            return cls(secret_key_ref=SecretKeyRef.from_dict(ref))
        return cls(value=str(data.get("value") or ""))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff: str = "500ms"
    max_backoff: str = "10s"
    retry_on_network_error: bool = True
    retry_on_status: frozenset[int] = DEFAULT_RETRY_ON_STATUS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        max_attempts = int(data.get("maxAttempts") or 0)
        on_network = data.get("retryOnNetworkError")
        on_status = data.get("retryOnStatus") or []
        return cls(
            max_attempts=max_attempts if max_attempts > 0 else 1,
            backoff=str(data.get("backoff") or "500ms"),
            max_backoff=str(data.get("maxBackoff") or "10s"),
            retry_on_network_error=True if on_network is None else bool(on_network),
            retry_on_status=frozenset(int(s) for s in on_status) if on_status else DEFAULT_RETRY_ON_STATUS,
        )


@dataclass(frozen=True)
class TLSPolicy:
    insecure_skip_verify: bool = False
    server_name: str = ""
    ca_secret_ref: SecretKeyRef | None = None
    client_cert_secret_ref: ClientCertRef | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSPolicy:
        ca = data.get("caSecretRef")
        client = data.get("clientCertSecretRef")
        return cls(
            insecure_skip_verify=bool(data.get("insecureSkipVerify", False)),
            server_name=str(data.get("serverName") or ""),
            ca_secret_ref=SecretKeyRef.from_dict(ca, default_key="ca.crt") if ca else None,
            client_cert_secret_ref=ClientCertRef.from_dict(client) if client else None,
        )


@dataclass(frozen=True)
class ActionSpec:
    """One configured action of a rule."""

    type: str = "http"
    mode: ActionMode = ActionMode.ONCE
    schedule: str = ""
    method: str = "POST"
    url: str = ""
    headers: dict[str, HeaderValue] = field(default_factory=dict)
    body_template: str = ""
    timeout: str = "10s"
    expected_status: str = "^2..$"
    retry: RetryPolicy | None = None
    tls: TLSPolicy | None = None

    @property
    def is_interval(self) -> bool:
        return self.mode is ActionMode.INTERVAL and bool(self.schedule)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionSpec:
        body = data.get("body") or {}
        retry = data.get("retry")
        tls = data.get("tls")
        return cls(
            type=str(data.get("type") or "http"),
            mode=ActionMode.parse(data.get("mode")),
            schedule=str(data.get("schedule") or ""),
            method=str(data.get("method") or "POST").upper(),
            url=str(data.get("url") or ""),
            headers={str(k): HeaderValue.from_raw(v) for k, v in (data.get("headers") or {}).items()},
            body_template=str(body.get("template") or ""),
            timeout=str(data.get("timeout") or "10s"),
            expected_status=str(data.get("expectedStatus") or "^2..$"),
            retry=RetryPolicy.from_dict(retry) if retry is not None else None,
            tls=TLSPolicy.from_dict(tls) if tls is not None else None,
        )


@dataclass(frozen=True)
class ExecutionRecord:
    """One once-mode execution, keyed by (resource_uid, event) within a rule."""

    resource_uid: str
    event: str
    executed_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return (self.resource_uid, self.event)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionRecord:
        return cls(
            resource_uid=str(data.get("resourceUID") or ""),
            event=str(data.get("event") or ""),
            executed_at=parse_time(data.get("executedAt")) or datetime.fromtimestamp(0, tz=UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "resourceUID": self.resource_uid,
            "event": self.event,
            "executedAt": format_time(self.executed_at),
        }


@dataclass
class Condition:
    type: str
    status: str
    reason: str
    message: str
    observed_generation: int = 0
    last_transition_time: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=str(data.get("type") or ""),
            status=str(data.get("status") or ""),
            reason=str(data.get("reason") or ""),
            message=str(data.get("message") or ""),
            observed_generation=int(data.get("observedGeneration") or 0),
            last_transition_time=parse_time(data.get("lastTransitionTime")),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
        }
        if self.last_transition_time is not None:
            out["lastTransitionTime"] = format_time(self.last_transition_time)
        return out


@dataclass
class RuleStatus:
    executions: list[ExecutionRecord] = field(default_factory=list)
    last_error: str = ""
    conditions: list[Condition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RuleStatus:
        data = data or {}
        return cls(
            executions=[ExecutionRecord.from_dict(e) for e in data.get("executions") or []],
            last_error=str(data.get("lastError") or ""),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.executions:
            out["executions"] = [e.to_dict() for e in self.executions]
        if self.last_error:
            out["lastError"] = self.last_error
        if self.conditions:
            out["conditions"] = [c.to_dict() for c in self.conditions]
        return out

    def executed_keys(self) -> set[tuple[str, str]]:
        return {e.key for e in self.executions}

    def get_condition(self, condition_type: str) -> Condition | None:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None


@dataclass
class AutomationRule:
    """A namespace-scoped AutomationRule resource."""

    name: str
    namespace: str
    selector: ResourceSelector
    events: frozenset[EventType]
    actions: list[ActionSpec] = field(default_factory=list)
    filter: RuleFilter | None = None
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    status: RuleStatus = field(default_factory=RuleStatus)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def rule_id(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> AutomationRule:
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        events = {EventType.parse(str(e)) for e in spec.get("events") or []}
        filters = spec.get("filters") or spec.get("filter")
        return cls(
            name=str(metadata.get("name") or ""),
            namespace=str(metadata.get("namespace") or ""),
            uid=str(metadata.get("uid") or ""),
            generation=int(metadata.get("generation") or 0),
            resource_version=str(metadata.get("resourceVersion") or ""),
            selector=ResourceSelector.from_dict(spec.get("selector") or {}),
            events=frozenset(e for e in events if e is not None),
            filter=RuleFilter.from_dict(filters) if filters else None,
            actions=[ActionSpec.from_dict(a) for a in spec.get("actions") or []],
            status=RuleStatus.from_dict(obj.get("status")),
            raw=obj,
        )

    def to_dict(self) -> dict[str, Any]:
        """Full object body carrying the current status and resource version."""
        body = copy.deepcopy(self.raw)
        metadata = body.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        body["status"] = self.status.to_dict()
        return body
