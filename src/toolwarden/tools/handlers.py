"""
toolwarden Tool Handlers

Bootstrap table of the tools the router knows, and resolution of handler
references (``"package.module:attribute"``) into callables.

The mediation pipeline does not execute tools itself: the agent harness
does that after an ALLOW. The default handler therefore hands the raw
request back unchanged. Deployments that want in-process execution
register their own handler references.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from toolwarden.core.models import ToolCallRequest, ToolCapability

PASSTHROUGH_REF = "toolwarden.tools.handlers:passthrough"

HandlerFn = Callable[[ToolCallRequest], str]

BOOTSTRAP_TOOLS: tuple[tuple[str, ToolCapability], ...] = (
    ("Bash", ToolCapability.EXECUTION),
    ("Write", ToolCapability.FILE),
    ("Edit", ToolCapability.FILE),
    ("Read", ToolCapability.FILE),
    ("Glob", ToolCapability.FILE),
    ("Grep", ToolCapability.FILE),
    ("NotebookEdit", ToolCapability.FILE),
    ("Task", ToolCapability.OPAQUE),
    ("WebFetch", ToolCapability.NETWORK),
    ("WebSearch", ToolCapability.NETWORK),
)


def passthrough(request: ToolCallRequest) -> str:
    """Return the request exactly as received."""
    return request.raw


class HandlerResolver:
    """Resolves and caches handler references."""

    def __init__(self) -> None:
        self._cache: dict[str, HandlerFn] = {}

    def resolve(self, handler_ref: str) -> HandlerFn:
        """Import the callable named by ``handler_ref``.

        Raises:
            ImportError: If the module cannot be imported.
            ValueError: If the reference is malformed or not callable.
        """
        if handler_ref in self._cache:
            return self._cache[handler_ref]

        module_name, sep, attr = handler_ref.partition(":")
        if not sep or not module_name or not attr:
            raise ValueError(f"Handler reference must be 'module:attribute', got {handler_ref!r}")

        target: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            target = getattr(target, part, None)
            if target is None:
                raise ValueError(f"Handler {handler_ref!r} not found")
        if not callable(target):
            raise ValueError(f"Handler {handler_ref!r} is not callable")

        self._cache[handler_ref] = target
        return target
