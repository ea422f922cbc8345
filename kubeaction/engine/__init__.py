"""Automation engine: watch coordination, rule dispatch, HTTP execution, intervals.

Exports:
    AutomationEngine   -- Owns the registry and wires every component.
    Dispatcher         -- Matches events to rules, executes, records status.
    IntervalScheduler  -- Idempotent registry of interval tasks.
    WatchCoordinator   -- One deduplicated watch stream per resource type.
    HTTPActionExecutor -- Retrying HTTP executor with TLS from secrets.
    ExecutorRegistry   -- Executors keyed on ``action.type``.
    build_engine       -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from kubeaction.engine.core import AutomationEngine
from kubeaction.engine.dispatcher import Dispatcher
from kubeaction.engine.executor import ActionExecutor, ExecutorRegistry
from kubeaction.engine.http_executor import HTTPActionExecutor
from kubeaction.engine.interfaces import Discovery, RuleStore, SecretStore, WatchHandlers, WatchSubscriber
from kubeaction.engine.scheduler import IntervalScheduler
from kubeaction.engine.templating import BodyRenderer, JinjaBodyRenderer
from kubeaction.engine.watch import WatchCoordinator

__all__ = [
    "ActionExecutor",
    "AutomationEngine",
    "BodyRenderer",
    "Discovery",
    "Dispatcher",
    "ExecutorRegistry",
    "HTTPActionExecutor",
    "IntervalScheduler",
    "JinjaBodyRenderer",
    "RuleStore",
    "SecretStore",
    "WatchCoordinator",
    "WatchHandlers",
    "WatchSubscriber",
    "build_engine",
]


def build_engine(
    rules: RuleStore,
    secrets: SecretStore,
    discovery: Discovery,
    subscriber: WatchSubscriber,
    renderer: BodyRenderer | None = None,
    status_attempts: int = 5,
) -> AutomationEngine:
    """Build an engine with the HTTP executor registered."""
    executors = ExecutorRegistry([HTTPActionExecutor(secrets, renderer=renderer)])
    return AutomationEngine(
        rules=rules,
        secrets=secrets,
        discovery=discovery,
        subscriber=subscriber,
        executors=executors,
        status_attempts=status_attempts,
    )
