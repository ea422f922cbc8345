"""HTTP action executor.

One ``execute`` call issues a single logical HTTP request for an action:

* the TLS context is built first, from secret material when the action
  carries a TLS policy (no socket is opened if that fails);
* the body template is rendered once, before the attempt loop;
* each attempt runs under the action timeout and is classified as success
  (status matches ``expected_status``), retryable (transient network error,
  or a status in ``retry_on_status``) or terminal.

Pauses between attempts grow exponentially from ``backoff`` up to
``max_backoff`` with up to 25% added jitter.
"""

from __future__ import annotations

import asyncio
import os
import random
import re
import ssl
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
import structlog

from kubeaction.durations import parse_duration_default
from kubeaction.engine.executor import ActionExecutor
from kubeaction.engine.headers import check_header_values, read_secret_key
from kubeaction.engine.interfaces import SecretStore
from kubeaction.engine.templating import BodyRenderer, JinjaBodyRenderer
from kubeaction.errors import ConfigError, NetworkError, NotFoundError, RetriesExhaustedError, StatusError
from kubeaction.models.events import ObjectSnapshot
from kubeaction.models.rules import DEFAULT_RETRY_ON_STATUS, ActionSpec, TLSPolicy
from kubeaction.observability.metrics import http_attempts_total

_log = structlog.get_logger(component="engine.http_executor")

_DEFAULT_TIMEOUT = 10.0
_DEFAULT_BACKOFF = 0.5
_DEFAULT_MAX_BACKOFF = 10.0
_LOG_BODY_LIMIT = 200

_RE_TRANSIENT = re.compile(
    r"connection reset|broken pipe|\bEOF\b|unexpected end|i/o timeout|handshake (?:operation )?timed? ?out",
    re.IGNORECASE,
)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class EffectivePolicy:
    """Timeout and retry settings after defaults are applied. Seconds throughout."""

    timeout: float = _DEFAULT_TIMEOUT
    max_attempts: int = 1
    backoff_base: float = _DEFAULT_BACKOFF
    max_backoff: float = _DEFAULT_MAX_BACKOFF
    retry_on_network_error: bool = True
    retry_on_status: frozenset[int] = DEFAULT_RETRY_ON_STATUS


def _duration(value: str, default: float, what: str) -> float:
    try:
        seconds = parse_duration_default(value, default)
    except ValueError as exc:
        raise ConfigError(f"invalid {what} {value!r}: {exc}") from exc
    if seconds < 0:
        raise ConfigError(f"invalid {what} {value!r}: must not be negative")
    return seconds


def effective_policy(action: ActionSpec) -> EffectivePolicy:
    """Derive the timeout and retry policy of *action*.

    Raises:
        ConfigError: a duration is unparsable or negative.
    """
    timeout = _duration(action.timeout, _DEFAULT_TIMEOUT, "timeout") or _DEFAULT_TIMEOUT
    retry = action.retry
    if retry is None:
        return EffectivePolicy(timeout=timeout)
    return EffectivePolicy(
        timeout=timeout,
        max_attempts=max(retry.max_attempts, 1),
        backoff_base=_duration(retry.backoff, _DEFAULT_BACKOFF, "retry backoff"),
        max_backoff=_duration(retry.max_backoff, _DEFAULT_MAX_BACKOFF, "retry maxBackoff"),
        retry_on_network_error=retry.retry_on_network_error,
        retry_on_status=retry.retry_on_status or DEFAULT_RETRY_ON_STATUS,
    )


def compute_backoff(base: float, max_backoff: float, attempt: int, rng: random.Random) -> float:
    """Pause after failed *attempt* (1-based): capped exponential plus [0, 25%) jitter."""
    delay = min(base * (2 ** min(attempt - 1, 62)), max_backoff)
    if delay > 0:
        delay += rng.random() * (delay / 4)
    return delay


def is_transient_network_error(exc: BaseException) -> bool:
    """Timeouts, premature disconnects, resets, broken pipes, handshake timeouts."""
    if isinstance(exc, (httpx.TimeoutException, TimeoutError, httpx.RemoteProtocolError)):
        return True
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if _RE_TRANSIENT.search(str(current)):
            return True
        current = current.__cause__ or current.__context__
    return False


def _compile_status_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern or "^2..$")
    except re.error as exc:
        raise ConfigError(f"invalid expectedStatus regex {pattern!r}: {exc}") from exc


class HTTPActionExecutor(ActionExecutor):
    """Executes ``type: http`` actions with httpx.

    Args:
        secrets:   Secret store used for TLS material.
        renderer:  Body template renderer. Defaults to Jinja2.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        sleep:     Coroutine used for backoff pauses.
        rng:       Random source for jitter.
    """

    def __init__(
        self,
        secrets: SecretStore,
        renderer: BodyRenderer | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._secrets = secrets
        self._renderer = renderer or JinjaBodyRenderer()
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def action_type(self) -> str:
        return "http"

    async def execute(
        self,
        action: ActionSpec,
        namespace: str,
        snapshot: ObjectSnapshot,
        headers: dict[str, str],
    ) -> None:
        if not action.url:
            raise ConfigError("http action has no url")
        check_header_values(headers)
        policy = effective_policy(action)
        status_pattern = _compile_status_pattern(action.expected_status)
        ssl_context = await self.build_ssl_context(namespace, action.tls)

        body = b""
        if action.body_template:
            body = self._renderer.render(action.body_template, snapshot.template_context())

        request_headers: dict[str, str] = {}
        if body:
            request_headers["Content-Type"] = "application/json"
        request_headers.update(headers)

        extensions: dict[str, str] = {}
        if action.tls is not None and action.tls.server_name:
            extensions["sni_hostname"] = action.tls.server_name

        async with httpx.AsyncClient(
            verify=ssl_context,
            timeout=policy.timeout,
            transport=self._transport,
        ) as client:
            for attempt in range(1, policy.max_attempts + 1):
                try:
                    async with asyncio.timeout(policy.timeout):
                        response = await client.request(
                            action.method,
                            action.url,
                            content=body or None,
                            headers=request_headers,
                            extensions=extensions,
                        )
                except httpx.InvalidURL as exc:
                    raise ConfigError(f"invalid url {action.url!r}: {exc}") from exc
                except (httpx.TransportError, TimeoutError) as exc:
                    if (
                        policy.retry_on_network_error
                        and attempt < policy.max_attempts
                        and is_transient_network_error(exc)
                    ):
                        delay = compute_backoff(policy.backoff_base, policy.max_backoff, attempt, self._rng)
                        http_attempts_total.labels(outcome="retry_network").inc()
                        _log.info(
                            "http_retry_network_error",
                            url=action.url,
                            attempt=attempt,
                            sleep_seconds=round(delay, 3),
                            error=repr(exc),
                        )
                        await self._sleep(delay)
                        continue
                    http_attempts_total.labels(outcome="network_error").inc()
                    raise NetworkError(action.url, exc, attempt) from exc

                status = response.status_code
                text = response.text
                _log.info(
                    "http_action_executed",
                    url=action.url,
                    method=action.method,
                    status=status,
                    attempt=attempt,
                    response=text[:_LOG_BODY_LIMIT],
                )

                if status_pattern.search(str(status)):
                    http_attempts_total.labels(outcome="success").inc()
                    return

                if status in policy.retry_on_status and attempt < policy.max_attempts:
                    delay = compute_backoff(policy.backoff_base, policy.max_backoff, attempt, self._rng)
                    http_attempts_total.labels(outcome="retry_status").inc()
                    _log.info(
                        "http_retry_status",
                        url=action.url,
                        status=status,
                        attempt=attempt,
                        sleep_seconds=round(delay, 3),
                    )
                    await self._sleep(delay)
                    continue

                http_attempts_total.labels(outcome="status_error").inc()
                raise StatusError(status, text)

        raise RetriesExhaustedError(policy.max_attempts)

    async def build_ssl_context(self, namespace: str, tls: TLSPolicy | None) -> ssl.SSLContext:
        """Build the client TLS context for an action.

        Without a policy the system trust store is used. With a ``ca_secret_ref``
        the referenced PEM bundle replaces the system roots entirely.

        Raises:
            ConfigError: missing secret or key, unparsable CA bundle, or an
                empty or invalid client certificate pair.
        """
        if tls is None:
            return ssl.create_default_context()

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2

        if tls.ca_secret_ref is not None:
            ca_pem = await read_secret_key(self._secrets, namespace, tls.ca_secret_ref)
            try:
                ctx.load_verify_locations(cadata=ca_pem.decode("ascii"))
            except (ssl.SSLError, ValueError) as exc:
                raise ConfigError(f"failed to parse CA PEM from {namespace}/{tls.ca_secret_ref.name}: {exc}") from exc
        else:
            ctx.load_default_certs(ssl.Purpose.SERVER_AUTH)

        if tls.insecure_skip_verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        ref = tls.client_cert_secret_ref
        if ref is not None:
            try:
                data = await self._secrets.get_secret(namespace, ref.name)
            except NotFoundError as exc:
                raise ConfigError(f"clientCertSecretRef {namespace}/{ref.name} not found") from exc
            cert_pem = data.get(ref.cert_key) or b""
            key_pem = data.get(ref.key_key) or b""
            if not cert_pem or not key_pem:
                raise ConfigError(f"clientCertSecretRef {namespace}/{ref.name} missing cert/key")
            _load_client_pair(ctx, cert_pem, key_pem, f"{namespace}/{ref.name}")

        return ctx


def _load_client_pair(ctx: ssl.SSLContext, cert_pem: bytes, key_pem: bytes, source: str) -> None:
    # ssl only loads certificate chains from files
    with tempfile.TemporaryDirectory(prefix="kubeaction-tls-") as tmp:
        cert_path = os.path.join(tmp, "tls.crt")
        key_path = os.path.join(tmp, "tls.key")
        for path, data in ((cert_path, cert_pem), (key_path, key_pem)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
        try:
            ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
        except (ssl.SSLError, ValueError) as exc:
            raise ConfigError(f"invalid client certificate pair in {source}: {exc}") from exc
