"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kubeaction.models.config import (
    EngineConfig,
    KubeActionConfig,
    LogConfig,
    MetricsConfig,
    RuleResourceConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEACTION_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ValueError(f"Invalid log format: {value}. Must be 'json' or 'console'")
    return value.lower()


def _validate_dns_name(value: str, what: str) -> str:
    if not re.match(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$", value):
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


def load_config() -> KubeActionConfig:
    """Load configuration from KUBEACTION_* environment variables."""
    return KubeActionConfig(
        rule_resource=RuleResourceConfig(
            group=_validate_dns_name(_env("RULE_GROUP", "automation.kubeaction.io"), "rule group"),
            version=_validate_dns_name(_env("RULE_VERSION", "v1alpha1"), "rule version"),
            plural=_validate_dns_name(_env("RULE_PLURAL", "automationrules"), "rule plural"),
        ),
        engine=EngineConfig(
            status_update_attempts=_env_int("STATUS_UPDATE_ATTEMPTS", 5, min_val=1, max_val=20),
            requeue_seconds=_env_float("REQUEUE_SECONDS", 30.0, min_val=1.0),
            watch_timeout_seconds=_env_int("WATCH_TIMEOUT_SECONDS", 300, min_val=30, max_val=3600),
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
