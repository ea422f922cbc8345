"""Tests for the rule reconciler and environment configuration."""

from __future__ import annotations

import asyncio

import pytest

from kubeaction.config import load_config
from kubeaction.errors import UnknownResourceType
from kubeaction.kube.reconciler import RuleReconciler, rule_collection
from kubeaction.models.config import RuleResourceConfig
from kubeaction.models.events import ResourceTypeId
from tests.helpers import DEPLOYMENT, POD, FakeSubscriber, make_rule_obj

_RULES = RuleResourceConfig()


class _Engine:
    """Records registrations; types in ``unknown`` fail until removed."""

    def __init__(self, unknown: set[ResourceTypeId] | None = None) -> None:
        self.unknown = set(unknown or ())
        self.calls: list[ResourceTypeId] = []

    async def ensure_watching(self, resource_type: ResourceTypeId) -> None:
        self.calls.append(resource_type)
        if resource_type in self.unknown:
            raise UnknownResourceType(resource_type)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class TestRuleReconciler:
    def test_rule_collection(self) -> None:
        collection = rule_collection(_RULES)
        assert collection.api_version == "automation.kubeaction.io/v1alpha1"
        assert collection.resource == "automationrules"
        assert collection.kind == "AutomationRule"

    async def test_add_and_update_register_selector(self) -> None:
        engine = _Engine()
        subscriber = FakeSubscriber()
        reconciler = RuleReconciler(engine, subscriber, _RULES)
        task = asyncio.create_task(reconciler.start())
        handlers = await subscriber.wait_subscribed(rule_collection(_RULES))

        await handlers.on_add(make_rule_obj(resource_type=POD))
        await handlers.on_update(make_rule_obj(resource_type=POD), make_rule_obj(resource_type=DEPLOYMENT))
        await handlers.on_delete(make_rule_obj())

        assert engine.calls == [POD, DEPLOYMENT]
        await reconciler.stop()
        await asyncio.wait_for(task, timeout=1)

    async def test_unknown_type_is_requeued_until_resolved(self) -> None:
        engine = _Engine(unknown={DEPLOYMENT})
        reconciler = RuleReconciler(engine, FakeSubscriber(), _RULES, requeue_seconds=0.02)

        assert not await reconciler.reconcile(make_rule_obj(resource_type=DEPLOYMENT))
        assert not await reconciler.reconcile(make_rule_obj(name="other", resource_type=DEPLOYMENT))
        assert len(reconciler._pending) == 1

        engine.unknown.clear()
        async with asyncio.timeout(1):
            while reconciler._pending:
                await asyncio.sleep(0.01)

        assert len(engine.calls) >= 3
        assert engine.calls[-1] == DEPLOYMENT
        await reconciler.stop()

    async def test_stop_cancels_pending_requeues(self) -> None:
        engine = _Engine(unknown={DEPLOYMENT})
        reconciler = RuleReconciler(engine, FakeSubscriber(), _RULES, requeue_seconds=10)
        await reconciler.reconcile(make_rule_obj(resource_type=DEPLOYMENT))

        await asyncio.wait_for(reconciler.stop(), timeout=1)
        assert engine.calls == [DEPLOYMENT]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ("RULE_GROUP", "STATUS_UPDATE_ATTEMPTS", "METRICS_PORT", "LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(f"KUBEACTION_{key}", raising=False)
        config = load_config()
        assert config.rule_resource.group == "automation.kubeaction.io"
        assert config.rule_resource.plural == "automationrules"
        assert config.engine.status_update_attempts == 5
        assert config.metrics.port == 0
        assert config.log.level == "info"
        assert config.log.format == "json"

    def test_overrides_and_clamping(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEACTION_STATUS_UPDATE_ATTEMPTS", "100")
        monkeypatch.setenv("KUBEACTION_WATCH_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("KUBEACTION_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("KUBEACTION_LOG_FORMAT", "console")
        config = load_config()
        assert config.engine.status_update_attempts == 20
        assert config.engine.watch_timeout_seconds == 30
        assert config.log.level == "debug"
        assert config.log.format == "console"

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("LOG_LEVEL", "verbose"),
            ("LOG_FORMAT", "xml"),
            ("RULE_GROUP", "Not_A_DNS_Name"),
            ("METRICS_PORT", "abc"),
        ],
    )
    def test_invalid_values(self, monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
        monkeypatch.setenv(f"KUBEACTION_{key}", value)
        with pytest.raises(ValueError):
            load_config()
