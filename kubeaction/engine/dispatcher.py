"""Rule matcher and dispatcher.

``on_event`` is awaited once per normalized lifecycle event:

1. list every rule (no caching: always the latest snapshot);
2. arm interval actions through the scheduler;
3. for each rule whose selector, event set and filter match, skip it if
   (rule, uid, event) is already in its ledger, otherwise run its immediate
   actions in order, stopping at the first failure;
4. persist an execution record, ``lastError`` and the ``Ready`` condition
   with a bounded optimistic-concurrency loop.

Every matched rule is processed; the first error is raised afterwards so the
watch coordinator can log it.
"""

from __future__ import annotations

import asyncio
import random
from datetime import UTC, datetime

import structlog

from kubeaction.engine.conditions import set_condition
from kubeaction.engine.executor import ExecutorRegistry
from kubeaction.engine.headers import resolve_headers
from kubeaction.engine.interfaces import RuleStore, SecretStore
from kubeaction.engine.matching import already_executed, rule_matches
from kubeaction.engine.registry import EngineRegistry
from kubeaction.engine.scheduler import IntervalScheduler
from kubeaction.errors import ActionError, ConfigError, ConflictError, KubeActionError
from kubeaction.models.events import LifecycleEvent
from kubeaction.models.rules import (
    CONDITION_FALSE,
    CONDITION_READY,
    CONDITION_TRUE,
    AutomationRule,
    Condition,
    ExecutionRecord,
)
from kubeaction.observability.metrics import (
    events_dispatched_total,
    rule_matches_total,
    status_update_conflicts_total,
)

_log = structlog.get_logger(component="engine.dispatcher")

_DEFAULT_STATUS_ATTEMPTS = 5
_CONFLICT_PAUSE_SECONDS = 0.01
_SUCCESS_MESSAGE = "All actions executed successfully"


class Dispatcher:
    """Matches events to rules and executes their immediate actions.

    Args:
        rules:            Rule store (list/get/update_status).
        secrets:          Secret store for header resolution.
        executors:        Executor registry keyed on action type.
        scheduler:        Interval scheduler armed on every event.
        registry:         Shared engine state (ledger index).
        status_attempts:  Optimistic-concurrency attempt budget.
    """

    def __init__(
        self,
        rules: RuleStore,
        secrets: SecretStore,
        executors: ExecutorRegistry,
        scheduler: IntervalScheduler,
        registry: EngineRegistry,
        status_attempts: int = _DEFAULT_STATUS_ATTEMPTS,
    ) -> None:
        self._rules = rules
        self._secrets = secrets
        self._executors = executors
        self._scheduler = scheduler
        self._registry = registry
        self._status_attempts = max(status_attempts, 1)

    async def on_event(self, event: LifecycleEvent) -> None:
        """Dispatch *event* to every matching rule.

        Raises:
            ActionError: the first action failure among matched rules.
            ConflictError: a status update exhausted its attempt budget.
        """
        events_dispatched_total.labels(event=event.event_type.value).inc()
        rules = await self._rules.list()

        try:
            await self._scheduler.ensure_for_match(event, rules)
        except ConfigError as exc:
            _log.error("interval_arming_failed", error=str(exc), resource_type=str(event.resource_type))

        errors: list[KubeActionError] = []
        for rule in rules:
            if not rule_matches(rule, event):
                continue
            if await self._is_duplicate(rule, event):
                rule_matches_total.labels(decision="deduplicated").inc()
                _log.info(
                    "action_already_executed",
                    rule=rule.rule_id,
                    event_type=event.event_type.value,
                    name=event.snapshot.name,
                    uid=event.snapshot.uid,
                )
                continue

            rule_matches_total.labels(decision="executed").inc()
            exec_error = await self._run_actions(rule, event)
            try:
                await self._record_outcome(rule, event, exec_error)
            except KubeActionError as exc:
                _log.error("status_update_failed", rule=rule.rule_id, error=str(exc))
                errors.append(exc)
            if exec_error is not None:
                errors.append(exec_error)

        if errors:
            raise errors[0]

    async def _is_duplicate(self, rule: AutomationRule, event: LifecycleEvent) -> bool:
        uid = event.snapshot.uid
        if already_executed(rule, uid, event.event_type):
            return True
        return await self._registry.has_execution(_ledger_owner(rule), uid, event.event_type)

    async def _run_actions(self, rule: AutomationRule, event: LifecycleEvent) -> ActionError | None:
        """Run the rule's immediate actions in order; return the first failure."""
        for index, action in enumerate(rule.actions):
            if action.is_interval:
                continue
            _log.info(
                "executing_action",
                rule=rule.rule_id,
                action_index=index,
                type=action.type,
                event_type=event.event_type.value,
                name=event.snapshot.name,
            )
            try:
                headers = await resolve_headers(self._secrets, action.headers, rule.namespace)
                await self._executors.execute(action, rule.namespace, event.snapshot, headers)
            except ActionError as exc:
                _log.warning(
                    "action_failed",
                    rule=rule.rule_id,
                    action_index=index,
                    reason=exc.reason,
                    error=str(exc),
                )
                return exc
        return None

    async def _record_outcome(
        self,
        rule: AutomationRule,
        event: LifecycleEvent,
        exec_error: ActionError | None,
    ) -> None:
        """Append the execution record and set ``Ready`` under optimistic concurrency."""
        now = datetime.now(tz=UTC)
        record = ExecutionRecord(resource_uid=event.snapshot.uid, event=event.event_type.value, executed_at=now)
        if exec_error is None:
            condition = Condition(
                type=CONDITION_READY,
                status=CONDITION_TRUE,
                reason="ActionSucceeded",
                message=_SUCCESS_MESSAGE,
            )
        else:
            condition = Condition(
                type=CONDITION_READY,
                status=CONDITION_FALSE,
                reason=exec_error.reason,
                message=str(exec_error),
            )

        last_conflict: ConflictError | None = None
        for attempt in range(1, self._status_attempts + 1):
            latest = await self._rules.get(rule.name, rule.namespace)
            latest.status.executions.append(record)
            latest.status.last_error = "" if exec_error is None else str(exec_error)
            set_condition(
                latest,
                Condition(
                    type=condition.type,
                    status=condition.status,
                    reason=condition.reason,
                    message=condition.message,
                ),
                now=now,
            )
            try:
                await self._rules.update_status(latest)
            except ConflictError as exc:
                status_update_conflicts_total.inc()
                last_conflict = exc
                _log.debug("status_update_conflict", rule=rule.rule_id, attempt=attempt)
                if attempt < self._status_attempts:
                    await asyncio.sleep(_CONFLICT_PAUSE_SECONDS * (1 + random.random() * 0.1))
                continue
            await self._registry.record_execution(_ledger_owner(rule), event.snapshot.uid, event.event_type)
            return

        raise ConflictError(
            f"status update for {rule.rule_id} failed after {self._status_attempts} attempts: {last_conflict}"
        )


def _ledger_owner(rule: AutomationRule) -> str:
    # the uid distinguishes a recreated rule from its deleted namesake
    return rule.uid or rule.rule_id
