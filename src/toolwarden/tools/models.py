"""
toolwarden Tool Registry Models

Records kept by the ToolRegistry: the fixed set of known tools with their
handler references, and usage metadata for tool names the registry has
never been told about.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from toolwarden.core.models import ToolCapability

MAX_TOOL_NAME_LENGTH = 100
MAX_SAMPLE_VALUE_LENGTH = 200
MAX_SAMPLE_KEYS = 10


class ToolRegistryEntry(BaseModel):
    """A known tool: name, handler reference and capability class."""

    name: str
    handler_ref: str
    capability: ToolCapability = ToolCapability.OPAQUE


class UnknownToolRecord(BaseModel):
    """Usage metadata for a tool name seen but never registered.

    Created on first sighting; ``count`` and ``last_seen`` advance on
    every later sighting. Records are never deleted within a session.
    """

    name: str
    count: int = Field(default=1, ge=1)
    first_seen: str
    last_seen: str
    sample_parameters: dict[str, Any] = Field(default_factory=dict)


def sample_parameters(parameters: dict[str, Any]) -> dict[str, Any]:
    """Truncated copy of request parameters suitable for persistence."""
    sample: dict[str, Any] = {}
    for key in list(parameters)[:MAX_SAMPLE_KEYS]:
        value = parameters[key]
        if isinstance(value, (int, float, bool)) or value is None:
            sample[key] = value
        else:
            text = value if isinstance(value, str) else str(value)
            if len(text) > MAX_SAMPLE_VALUE_LENGTH:
                text = text[:MAX_SAMPLE_VALUE_LENGTH] + "..."
            sample[key] = text
    return sample
