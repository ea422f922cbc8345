"""Interval scheduler for ``mode: interval`` actions.

Each (rule, object uid, action index, event) key owns at most one background
task. Arming is idempotent: once a task exists for a key, later matching
events neither reset nor re-arm it. A task re-executes its action with the
event captured at arming time, every ``schedule`` interval, until

* the owning rule no longer exists (checked each tick unless the arming
  event was a deletion),
* its handle is cancelled (watch session teardown), or
* the engine shuts down.

Cancellation is only observed between ticks; an HTTP call in progress is
always allowed to finish.
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from kubeaction.durations import parse_duration
from kubeaction.engine.executor import ExecutorRegistry
from kubeaction.engine.headers import resolve_headers
from kubeaction.engine.interfaces import RuleStore, SecretStore
from kubeaction.engine.matching import rule_matches
from kubeaction.engine.registry import EngineRegistry, IntervalKey, IntervalTaskHandle
from kubeaction.errors import ConfigError, KubeActionError, NotFoundError
from kubeaction.models.events import EventType, LifecycleEvent, ResourceTypeId
from kubeaction.models.rules import ActionSpec, AutomationRule

_log = structlog.get_logger(component="engine.scheduler")


def parse_interval(schedule: str) -> float:
    """Parse a fixed repeat interval. Calendar/cron syntax is not supported.

    Raises:
        ConfigError: unparsable or non-positive interval.
    """
    try:
        seconds = parse_duration(schedule)
    except ValueError as exc:
        raise ConfigError(f"invalid schedule {schedule!r}: {exc}") from exc
    if seconds <= 0:
        raise ConfigError(f"invalid schedule {schedule!r}: interval must be positive")
    return seconds


class IntervalScheduler:
    """Owns interval tasks; task handles live in the shared registry."""

    def __init__(
        self,
        rules: RuleStore,
        secrets: SecretStore,
        executors: ExecutorRegistry,
        registry: EngineRegistry,
    ) -> None:
        self._rules = rules
        self._secrets = secrets
        self._executors = executors
        self._registry = registry
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Mark the scheduler running. Called once by the watch coordinator."""
        self._running = True
        _log.info("interval_scheduler_started")

    async def ensure_for_match(self, event: LifecycleEvent, rules: list[AutomationRule] | None = None) -> None:
        """Arm interval tasks for every rule/action matching *event*.

        Args:
            event: The normalized lifecycle event.
            rules: Pre-loaded rules; listed from the store when omitted.

        Raises:
            ConfigError: one or more schedules could not be parsed. Every
                other key is still armed before this is raised.
        """
        if rules is None:
            rules = await self._rules.list()

        errors: list[str] = []
        for rule in rules:
            if not any(action.is_interval for action in rule.actions):
                continue
            if not rule_matches(rule, event):
                continue
            for index, action in enumerate(rule.actions):
                if not action.is_interval:
                    continue
                try:
                    await self._arm(rule, index, action, event)
                except ConfigError as exc:
                    _log.error("interval_arm_failed", rule=rule.rule_id, action_index=index, error=str(exc))
                    errors.append(f"{rule.rule_id} action[{index}]: {exc}")

        if errors:
            raise ConfigError("; ".join(errors))

    async def _arm(self, rule: AutomationRule, index: int, action: ActionSpec, event: LifecycleEvent) -> None:
        key = IntervalKey(
            rule_id=rule.rule_id,
            object_uid=event.snapshot.uid,
            action_index=index,
            event_type=event.event_type,
        )
        if await self._registry.has_interval_task(key):
            return

        interval = parse_interval(action.schedule)
        handle = IntervalTaskHandle(key=key, resource_type=event.resource_type)
        if not await self._registry.add_interval_task(handle):
            return

        handle.task = asyncio.create_task(
            self._run(handle, rule, action, event, interval),
            name=f"interval:{rule.rule_id}:{event.snapshot.uid}:{index}:{event.event_type}",
        )
        _log.info(
            "interval_action_armed",
            rule=rule.rule_id,
            action_index=index,
            schedule=action.schedule,
            name=event.snapshot.name,
            uid=event.snapshot.uid,
            event_type=event.event_type.value,
        )

    async def _wait_tick(self, handle: IntervalTaskHandle, interval: float) -> bool:
        """Sleep one interval. Returns False if cancellation or shutdown fired."""
        stop = asyncio.create_task(handle.stop.wait())
        shutdown = asyncio.create_task(self._registry.shutdown.wait())
        try:
            done, _ = await asyncio.wait({stop, shutdown}, timeout=interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (stop, shutdown):
                waiter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await waiter
        return not done

    async def _run(
        self,
        handle: IntervalTaskHandle,
        rule: AutomationRule,
        action: ActionSpec,
        event: LifecycleEvent,
        interval: float,
    ) -> None:
        try:
            while await self._wait_tick(handle, interval):
                if event.event_type is not EventType.DELETE:
                    try:
                        await self._rules.get(rule.name, rule.namespace)
                    except NotFoundError:
                        _log.info("interval_action_rule_gone", rule=rule.rule_id, name=event.snapshot.name)
                        return
                    except KubeActionError as exc:
                        _log.warning("interval_action_rule_check_failed", rule=rule.rule_id, error=str(exc))
                        continue

                _log.info(
                    "interval_action_executing",
                    rule=rule.rule_id,
                    action_index=handle.key.action_index,
                    name=event.snapshot.name,
                )
                try:
                    headers = await resolve_headers(self._secrets, action.headers, rule.namespace)
                    await self._executors.execute(action, rule.namespace, event.snapshot, headers)
                except Exception as exc:  # noqa: BLE001
                    _log.warning(
                        "interval_action_failed",
                        rule=rule.rule_id,
                        action_index=handle.key.action_index,
                        error=str(exc),
                    )
            _log.info("interval_action_stopped", rule=rule.rule_id, name=event.snapshot.name)
        finally:
            await self._registry.remove_interval_task(handle)

    async def cancel_for(self, resource_type: ResourceTypeId | None = None) -> list[IntervalTaskHandle]:
        """Signal every task (optionally only those armed for *resource_type*)."""
        handles = await self._registry.interval_tasks(resource_type)
        for handle in handles:
            handle.cancel()
        return handles

    async def stop(self) -> None:
        """Cancel all tasks and wait for them to exit at their next tick boundary."""
        self._running = False
        handles = await self.cancel_for(None)
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
