"""Application bootstrap for KubeAction.

Wires the components in dependency order and owns the asyncio lifecycle.
Startup order: config → logging → K8s client → stores/discovery/subscriber
              → engine → rule reconciler → metrics server

Components are stopped in reverse startup order. Each stop is wrapped on
its own so a failing teardown does not keep the others from running.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubeaction.config import load_config
from kubeaction.models.config import KubeActionConfig
from kubeaction.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeActionApp:
    """Application root. ``stop()`` is safe on an app that never started."""

    def __init__(self) -> None:
        self.config: KubeActionConfig | None = None

        self._api_client: object | None = None
        self._rule_store: object | None = None
        self._secret_store: object | None = None
        self._discovery: object | None = None
        self._subscriber: object | None = None
        self._engine: object | None = None
        self._reconciler: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("kubeaction_starting", version=_kubeaction_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Stores, discovery, watch subscriber ----------------------
        self._start_adapters()

        # --- 5. Automation engine ----------------------------------------
        self._start_engine()

        # --- 6. Rule reconciler ------------------------------------------
        self._start_reconciler()

        # --- 7. Metrics endpoint -----------------------------------------
        self._start_metrics()

        self._running = True
        self._log.info("kubeaction_started", rule_resource=self.config.rule_resource.plural)

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config, falling back to kubeconfig, and open an ApiClient."""
        assert self._log is not None
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s_client_configured", source="in-cluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s_client_configured", source="kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _start_adapters(self) -> None:
        assert self.config is not None
        try:
            from kubeaction.kube import KubeDiscovery, KubeRuleStore, KubeSecretStore, KubeWatchSubscriber

            self._rule_store = KubeRuleStore(self._api_client, self.config.rule_resource)
            self._secret_store = KubeSecretStore(self._api_client)
            self._discovery = KubeDiscovery(self._api_client)
            self._subscriber = KubeWatchSubscriber(
                self._discovery,
                timeout_seconds=self.config.engine.watch_timeout_seconds,
            )
        except Exception as exc:
            raise _ComponentError("kube_adapters", exc) from exc

    def _start_engine(self) -> None:
        assert self.config is not None
        assert self._log is not None
        try:
            from kubeaction.engine import build_engine

            self._engine = build_engine(
                rules=self._rule_store,  # type: ignore[arg-type]
                secrets=self._secret_store,  # type: ignore[arg-type]
                discovery=self._discovery,  # type: ignore[arg-type]
                subscriber=self._subscriber,  # type: ignore[arg-type]
                status_attempts=self.config.engine.status_update_attempts,
            )
            self._log.info("engine_started")
        except Exception as exc:
            raise _ComponentError("engine", exc) from exc

    def _start_reconciler(self) -> None:
        assert self.config is not None
        assert self._log is not None
        try:
            from kubeaction.kube import RuleReconciler

            reconciler = RuleReconciler(
                self._engine,  # type: ignore[arg-type]
                self._subscriber,  # type: ignore[arg-type]
                self.config.rule_resource,
                requeue_seconds=self.config.engine.requeue_seconds,
            )
            self._reconciler = reconciler
            task = asyncio.create_task(reconciler.start(), name="rule-reconciler")
            self._background_tasks.append(task)
        except Exception as exc:
            raise _ComponentError("reconciler", exc) from exc

    def _start_metrics(self) -> None:
        assert self.config is not None
        assert self._log is not None
        port = self.config.metrics.port
        if port <= 0:
            self._log.info("metrics_server_disabled")
            return
        try:
            from kubeaction.observability.metrics import start_metrics_server

            start_metrics_server(port)
            self._log.info("metrics_server_started", port=port)
        except Exception as exc:
            raise _ComponentError("metrics", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubeaction_shutting_down")
        self._running = False

        await self._stop_component("reconciler", self._reconciler)
        await self._stop_component("engine", self._engine)

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_k8s_client()
        log.info("kubeaction_stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has one, logging any failure."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()  # type: ignore[attr-defined]
        except Exception as exc:
            log.debug("k8s_client_close_failed", error=str(exc))
        self._api_client = None


def _kubeaction_version() -> str:
    from kubeaction import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeActionApp()
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    def _request_shutdown() -> None:
        stopped.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await stopped.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()
