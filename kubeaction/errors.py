"""Exception hierarchy for KubeAction.

ActionError subclasses carry a ``reason`` which becomes the reason of the
rule's ``Ready=False`` condition when the error ends a dispatch.
"""

from __future__ import annotations


class KubeActionError(Exception):
    """Base class for every error raised by the engine."""


class ActionError(KubeActionError):
    """An action invocation failed."""

    reason = "ActionFailed"


class ConfigError(ActionError):
    """Invalid configuration: bad regex, duration, PEM, secret key or template.

    Terminal for the current invocation; never retried.
    """

    reason = "ConfigurationError"


class RenderError(ConfigError):
    """The request body template could not be rendered."""


class NetworkError(ActionError):
    """The request never produced a response."""

    def __init__(self, url: str, cause: Exception, attempts: int) -> None:
        super().__init__(f"http call to {url} failed after {attempts} attempt(s): {cause!r}")
        self.url = url
        self.cause = cause
        self.attempts = attempts


class StatusError(ActionError):
    """The response status did not match the expected pattern."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"http call failed: status={status_code} body={body}")
        self.status_code = status_code
        self.body = body


class RetriesExhaustedError(ActionError):
    """The attempt loop ended without success or a terminal condition."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"http call failed after {attempts} attempts")
        self.attempts = attempts


class ConflictError(KubeActionError):
    """A status write lost an optimistic-concurrency race."""


class NotFoundError(KubeActionError):
    """A rule or secret does not exist in the store."""


class UnknownResourceType(KubeActionError):
    """Discovery could not resolve a group/version/kind."""

    def __init__(self, resource_type: object, detail: str = "") -> None:
        message = f"unknown resource type {resource_type}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.resource_type = resource_type
