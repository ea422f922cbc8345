"""Action executor capability and the registry keyed on ``action.type``.

Adding a new action kind means implementing :class:`ActionExecutor` and
registering it; the dispatcher and scheduler only talk to the registry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from kubeaction.errors import ActionError, ConfigError
from kubeaction.models.events import ObjectSnapshot
from kubeaction.models.rules import ActionSpec
from kubeaction.observability.metrics import action_executions_total

_log = structlog.get_logger(component="engine.executor")


class ActionExecutor(ABC):
    """Executes one action against one object snapshot."""

    @property
    @abstractmethod
    def action_type(self) -> str:
        """Value of ``ActionSpec.type`` this executor handles."""

    @abstractmethod
    async def execute(
        self,
        action: ActionSpec,
        namespace: str,
        snapshot: ObjectSnapshot,
        headers: dict[str, str],
    ) -> None:
        """Run *action*. Raises an ActionError subclass on failure."""


class ExecutorRegistry:
    """Routes actions to the executor registered for their type."""

    def __init__(self, executors: list[ActionExecutor] | None = None) -> None:
        self._executors: dict[str, ActionExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: ActionExecutor) -> None:
        self._executors[executor.action_type] = executor

    def get(self, action_type: str) -> ActionExecutor:
        try:
            return self._executors[action_type]
        except KeyError:
            raise ConfigError(f"no executor registered for action type {action_type!r}") from None

    async def execute(
        self,
        action: ActionSpec,
        namespace: str,
        snapshot: ObjectSnapshot,
        headers: dict[str, str],
    ) -> None:
        """Execute via the registered executor, recording the outcome metric."""
        try:
            await self.get(action.type).execute(action, namespace, snapshot, headers)
        except ActionError as exc:
            action_executions_total.labels(action_type=action.type, mode=action.mode.value, outcome=exc.reason).inc()
            raise
        action_executions_total.labels(action_type=action.type, mode=action.mode.value, outcome="success").inc()
