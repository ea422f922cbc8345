"""Tests for the AutomationRule and lifecycle event data structures."""

from __future__ import annotations

from datetime import UTC, datetime

from kubeaction.models.events import EventType, ObjectSnapshot, ResourceTypeId
from kubeaction.models.rules import (
    DEFAULT_RETRY_ON_STATUS,
    ActionMode,
    ActionSpec,
    AutomationRule,
    ExecutionRecord,
    HeaderValue,
    RetryPolicy,
    TLSPolicy,
)
from tests.helpers import POD, make_rule_obj

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEventType:
    def test_parse_is_case_insensitive(self) -> None:
        assert EventType.parse("create") is EventType.CREATE
        assert EventType.parse(" UPDATE ") is EventType.UPDATE
        assert EventType.parse("Delete") is EventType.DELETE

    def test_unknown_name_is_none(self) -> None:
        assert EventType.parse("Patch") is None


class TestResourceTypeId:
    def test_core_group_api_version(self) -> None:
        assert POD.api_version == "v1"

    def test_named_group_api_version(self) -> None:
        assert ResourceTypeId("apps", "v1", "Deployment").api_version == "apps/v1"


class TestObjectSnapshot:
    def test_from_object_reads_metadata(self) -> None:
        snap = ObjectSnapshot.from_object(
            {"metadata": {"name": "a", "namespace": "ns", "uid": "u", "labels": {"app": "web"}}}
        )
        assert (snap.name, snap.namespace, snap.uid) == ("a", "ns", "u")
        assert snap.template_context() == {"name": "a", "namespace": "ns", "uid": "u", "labels": {"app": "web"}}

    def test_missing_metadata_gives_empty_fields(self) -> None:
        snap = ObjectSnapshot.from_object({})
        assert snap.name == "" and snap.uid == "" and snap.labels == {}


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class TestActionSpec:
    def test_defaults(self) -> None:
        action = ActionSpec.from_dict({"url": "https://x"})
        assert action.type == "http"
        assert action.mode is ActionMode.ONCE
        assert action.method == "POST"
        assert action.expected_status == "^2..$"
        assert action.retry is None and action.tls is None
        assert not action.is_interval

    def test_cron_mode_is_interval(self) -> None:
        action = ActionSpec.from_dict({"url": "https://x", "mode": "cron", "schedule": "1m"})
        assert action.mode is ActionMode.INTERVAL
        assert action.is_interval

    def test_interval_without_schedule_runs_once(self) -> None:
        assert not ActionSpec.from_dict({"mode": "interval"}).is_interval

    def test_body_and_headers(self) -> None:
        action = ActionSpec.from_dict(
            {
                "method": "put",
                "body": {"template": '{"n": "{{ name }}"}'},
                "headers": {
                    "X-Plain": "v",
                    "X-Literal": {"value": "w"},
                    "Authorization": {"valueFrom": {"secretKeyRef": {"name": "tok", "key": "auth"}}},
                },
            }
        )
        assert action.method == "PUT"
        assert action.body_template == '{"n": "{{ name }}"}'
        assert action.headers["X-Plain"] == HeaderValue(value="v")
        assert action.headers["X-Literal"].value == "w"
        ref = action.headers["Authorization"].secret_key_ref
        assert ref is not None and (ref.name, ref.key) == ("tok", "auth")


class TestRetryPolicy:
    def test_non_positive_attempts_become_one(self) -> None:
        assert RetryPolicy.from_dict({"maxAttempts": 0}).max_attempts == 1
        assert RetryPolicy.from_dict({"maxAttempts": -3}).max_attempts == 1

    def test_empty_status_set_uses_defaults(self) -> None:
        policy = RetryPolicy.from_dict({"retryOnStatus": []})
        assert policy.retry_on_status == DEFAULT_RETRY_ON_STATUS
        assert policy.retry_on_network_error is True

    def test_explicit_values(self) -> None:
        policy = RetryPolicy.from_dict(
            {"maxAttempts": 4, "backoff": "1s", "retryOnNetworkError": False, "retryOnStatus": [409]}
        )
        assert policy.max_attempts == 4
        assert policy.backoff == "1s"
        assert policy.retry_on_network_error is False
        assert policy.retry_on_status == frozenset({409})


class TestTLSPolicy:
    def test_ca_key_defaults(self) -> None:
        tls = TLSPolicy.from_dict({"caSecretRef": {"name": "ca"}, "clientCertSecretRef": {"name": "client"}})
        assert tls.ca_secret_ref is not None and tls.ca_secret_ref.key == "ca.crt"
        assert tls.client_cert_secret_ref is not None
        assert tls.client_cert_secret_ref.cert_key == "tls.crt"
        assert tls.client_cert_secret_ref.key_key == "tls.key"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestAutomationRule:
    def test_from_dict(self) -> None:
        rule = AutomationRule.from_dict(
            make_rule_obj(events=["Create", "delete", "Bogus"], filters={"nameRegex": "^web"})
        )
        assert rule.rule_id == "default/notify"
        assert rule.events == frozenset({EventType.CREATE, EventType.DELETE})
        assert rule.selector.resource_type == POD
        assert rule.filter is not None and rule.filter.name_regex == "^web"
        assert rule.resource_version == "1"

    def test_status_round_trips_through_to_dict(self) -> None:
        obj = make_rule_obj(
            status={
                "executions": [{"resourceUID": "u1", "event": "Create", "executedAt": "2026-01-02T03:04:05Z"}],
                "lastError": "boom",
            }
        )
        rule = AutomationRule.from_dict(obj)
        assert rule.status.executed_keys() == {("u1", "Create")}
        assert rule.status.executions[0].executed_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

        body = rule.to_dict()
        assert body["status"]["executions"][0]["executedAt"] == "2026-01-02T03:04:05Z"
        assert body["status"]["lastError"] == "boom"
        assert body["spec"] == obj["spec"]

    def test_to_dict_does_not_mutate_raw(self) -> None:
        rule = AutomationRule.from_dict(make_rule_obj())
        rule.status.executions.append(
            ExecutionRecord(resource_uid="u", event="Create", executed_at=datetime.now(tz=UTC))
        )
        rule.to_dict()
        assert "status" not in rule.raw
