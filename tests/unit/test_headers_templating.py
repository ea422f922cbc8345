"""Tests for header resolution, body rendering and the executor registry."""

from __future__ import annotations

import pytest

from kubeaction.engine.executor import ExecutorRegistry
from kubeaction.engine.headers import resolve_headers
from kubeaction.engine.templating import JinjaBodyRenderer
from kubeaction.errors import ConfigError, RenderError, StatusError
from kubeaction.models.events import ObjectSnapshot
from kubeaction.models.rules import ActionSpec, HeaderValue, SecretKeyRef
from tests.helpers import FakeSecretStore, RecordingExecutor

_SNAPSHOT = ObjectSnapshot(name="web-0", namespace="default", uid="u1", labels={"app": "web"})


class TestResolveHeaders:
    async def test_literal_and_secret_values(self) -> None:
        secrets = FakeSecretStore({("default", "token"): {"auth": b"Bearer s3cret\n"}})
        headers = {
            "X-Static": HeaderValue(value="yes"),
            "Authorization": HeaderValue(secret_key_ref=SecretKeyRef(name="token", key="auth")),
        }
        resolved = await resolve_headers(secrets, headers, "default")
        assert resolved == {"X-Static": "yes", "Authorization": "Bearer s3cret"}

    async def test_secret_read_from_rule_namespace(self) -> None:
        secrets = FakeSecretStore({("team-a", "token"): {"auth": b"x"}})
        headers = {"Authorization": HeaderValue(secret_key_ref=SecretKeyRef(name="token", key="auth"))}
        await resolve_headers(secrets, headers, "team-a")
        assert secrets.reads == [("team-a", "token")]

    async def test_missing_secret(self) -> None:
        headers = {"Authorization": HeaderValue(secret_key_ref=SecretKeyRef(name="token", key="auth"))}
        with pytest.raises(ConfigError, match="not found"):
            await resolve_headers(FakeSecretStore(), headers, "default")

    async def test_missing_or_empty_key(self) -> None:
        secrets = FakeSecretStore({("default", "token"): {"auth": b"", "other": b"v"}})
        headers = {"Authorization": HeaderValue(secret_key_ref=SecretKeyRef(name="token", key="auth"))}
        with pytest.raises(ConfigError, match="no data for key"):
            await resolve_headers(secrets, headers, "default")

    async def test_non_utf8_secret(self) -> None:
        secrets = FakeSecretStore({("default", "token"): {"auth": b"\xff\xfe"}})
        headers = {"Authorization": HeaderValue(secret_key_ref=SecretKeyRef(name="token", key="auth"))}
        with pytest.raises(ConfigError):
            await resolve_headers(secrets, headers, "default")

    async def test_non_ascii_secret_value(self) -> None:
        secrets = FakeSecretStore({("default", "team"): {"name": "zürich".encode()}})
        headers = {"X-Team": HeaderValue(secret_key_ref=SecretKeyRef(name="team", key="name"))}
        with pytest.raises(ConfigError, match="ASCII"):
            await resolve_headers(secrets, headers, "default")

    async def test_literal_with_line_break(self) -> None:
        with pytest.raises(ConfigError, match="line break"):
            await resolve_headers(FakeSecretStore(), {"X-A": HeaderValue(value="a\nb")}, "default")


class TestJinjaBodyRenderer:
    def test_renders_object_context(self) -> None:
        body = JinjaBodyRenderer().render(
            '{"pod": "{{ name }}", "ns": "{{ namespace }}", "app": "{{ labels.app }}"}',
            _SNAPSHOT.template_context(),
        )
        assert body == b'{"pod": "web-0", "ns": "default", "app": "web"}'

    def test_undefined_variable_is_an_error(self) -> None:
        with pytest.raises(RenderError):
            JinjaBodyRenderer().render("{{ nope }}", _SNAPSHOT.template_context())

    def test_syntax_error(self) -> None:
        with pytest.raises(RenderError):
            JinjaBodyRenderer().render("{% if %}", _SNAPSHOT.template_context())

    @pytest.mark.parametrize("template", ["{{ 1 / 0 }}", "{{ name + 1 }}"])
    def test_runtime_error_is_render_error(self, template: str) -> None:
        with pytest.raises(RenderError):
            JinjaBodyRenderer().render(template, _SNAPSHOT.template_context())

    def test_sandbox_blocks_attribute_escape(self) -> None:
        with pytest.raises(RenderError):
            JinjaBodyRenderer().render("{{ name.__class__.__mro__ }}", _SNAPSHOT.template_context())


class TestExecutorRegistry:
    async def test_routes_on_action_type(self) -> None:
        http = RecordingExecutor("http")
        other = RecordingExecutor("grpc")
        registry = ExecutorRegistry([http, other])
        await registry.execute(ActionSpec(type="grpc", url="x"), "default", _SNAPSHOT, {})
        assert len(other.calls) == 1
        assert http.calls == []

    async def test_unknown_type_is_config_error(self) -> None:
        registry = ExecutorRegistry([RecordingExecutor("http")])
        with pytest.raises(ConfigError):
            await registry.execute(ActionSpec(type="smtp"), "default", _SNAPSHOT, {})

    async def test_failure_propagates(self) -> None:
        registry = ExecutorRegistry([RecordingExecutor("http", errors=[StatusError(500, "down")])])
        with pytest.raises(StatusError):
            await registry.execute(ActionSpec(url="x"), "default", _SNAPSHOT, {})
