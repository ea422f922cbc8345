"""Header value resolution against the secret store."""

from __future__ import annotations

from kubeaction.engine.interfaces import SecretStore
from kubeaction.errors import ConfigError, NotFoundError
from kubeaction.models.rules import HeaderValue, SecretKeyRef


async def read_secret_key(secrets: SecretStore, namespace: str, ref: SecretKeyRef) -> bytes:
    """Return the bytes under ``ref.key``.

    Raises:
        ConfigError: the secret does not exist or lacks a non-empty key.
    """
    try:
        data = await secrets.get_secret(namespace, ref.name)
    except NotFoundError as exc:
        raise ConfigError(f"secret {namespace}/{ref.name} not found") from exc
    value = data.get(ref.key)
    if not value:
        raise ConfigError(f"secret {namespace}/{ref.name} has no data for key {ref.key!r}")
    return value


async def resolve_headers(
    secrets: SecretStore,
    headers: dict[str, HeaderValue],
    namespace: str,
) -> dict[str, str]:
    """Resolve literal and secret-backed header values.

    Runs before any network call; the first failure raises ConfigError.
    """
    resolved: dict[str, str] = {}
    for name, header in headers.items():
        if header.secret_key_ref is not None:
            raw = await read_secret_key(secrets, namespace, header.secret_key_ref)
            try:
                # trailing newlines from `kubectl create secret --from-file` are not part of the value
                resolved[name] = raw.decode("utf-8").rstrip("\r\n")
            except UnicodeDecodeError as exc:
                raise ConfigError(f"header {name!r}: secret value is not valid UTF-8") from exc
        else:
            resolved[name] = header.value or ""
    check_header_values(resolved)
    return resolved


def check_header_values(headers: dict[str, str]) -> None:
    """Reject header names or values that cannot go on the wire.

    Raises:
        ConfigError: a non-ASCII character or a line break.
    """
    for name, value in headers.items():
        if not name.isascii() or not value.isascii():
            raise ConfigError(f"header {name!r}: only ASCII names and values are allowed")
        if "\r" in value or "\n" in value:
            raise ConfigError(f"header {name!r}: value contains a line break")
