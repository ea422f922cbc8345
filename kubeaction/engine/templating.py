"""Request body rendering.

The executor depends only on :class:`BodyRenderer`; :class:`JinjaBodyRenderer`
is the default implementation. Templates see the object context
``{name, namespace, uid, labels}``::

    {"pod": "{{ name }}", "team": "{{ labels.team }}"}

Undefined variables are errors rather than empty strings so that a typo in
a template fails the action instead of posting a half-empty body.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from kubeaction.errors import RenderError


class BodyRenderer(ABC):
    """Pluggable ``render(template, context) -> bytes`` capability."""

    @abstractmethod
    def render(self, template: str, context: dict[str, Any]) -> bytes:
        """Render *template*. Raises RenderError on failure."""


class JinjaBodyRenderer(BodyRenderer):
    """Renders templates in a sandboxed Jinja2 environment."""

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, template: str, context: dict[str, Any]) -> bytes:
        try:
            return self._env.from_string(template).render(**context).encode("utf-8")
        except TemplateError as exc:
            raise RenderError(f"failed to render body template: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            # runtime errors inside expressions, e.g. {{ 1 / 0 }} or {{ name + 1 }}
            raise RenderError(f"failed to render body template: {exc!r}") from exc
