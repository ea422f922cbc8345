"""AutomationEngine: one owned bundle of registry, scheduler, dispatcher and watches."""

from __future__ import annotations

import structlog

from kubeaction.engine.dispatcher import Dispatcher
from kubeaction.engine.executor import ExecutorRegistry
from kubeaction.engine.interfaces import Discovery, RuleStore, SecretStore, WatchSubscriber
from kubeaction.engine.registry import EngineRegistry
from kubeaction.engine.scheduler import IntervalScheduler
from kubeaction.engine.watch import WatchCoordinator
from kubeaction.models.events import ResourceTypeId

_log = structlog.get_logger(component="engine")


class AutomationEngine:
    """Wires the engine components around a single :class:`EngineRegistry`.

    ``ensure_watching`` is the entry point used by the rule reconciler.
    ``stop`` broadcasts the shutdown signal and waits for streams and
    interval tasks to exit at their next event or tick boundary.
    """

    def __init__(
        self,
        rules: RuleStore,
        secrets: SecretStore,
        discovery: Discovery,
        subscriber: WatchSubscriber,
        executors: ExecutorRegistry,
        status_attempts: int = 5,
    ) -> None:
        self.registry = EngineRegistry()
        self.executors = executors
        self.scheduler = IntervalScheduler(rules, secrets, executors, self.registry)
        self.dispatcher = Dispatcher(
            rules,
            secrets,
            executors,
            self.scheduler,
            self.registry,
            status_attempts=status_attempts,
        )
        self.watches = WatchCoordinator(discovery, subscriber, self.dispatcher, self.scheduler, self.registry)

    async def ensure_watching(self, resource_type: ResourceTypeId) -> None:
        await self.watches.ensure_watching(resource_type)

    async def stop(self) -> None:
        self.registry.shutdown.set()
        await self.watches.stop()
        await self.scheduler.stop()
        _log.info("engine_stopped")
