"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RuleResourceConfig:
    """Coordinates of the AutomationRule custom resource."""

    group: str = "automation.kubeaction.io"
    version: str = "v1alpha1"
    plural: str = "automationrules"


@dataclass
class EngineConfig:
    """Dispatcher and watch tuning."""

    status_update_attempts: int = 5
    requeue_seconds: float = 30.0
    watch_timeout_seconds: int = 300


@dataclass
class MetricsConfig:
    """Prometheus exposition. Port 0 disables the HTTP server."""

    port: int = 0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class KubeActionConfig:
    """Top-level KubeAction configuration."""

    rule_resource: RuleResourceConfig = field(default_factory=RuleResourceConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
