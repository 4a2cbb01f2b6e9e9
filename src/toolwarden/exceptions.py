"""
toolwarden Custom Exceptions

Structured exception hierarchy for the mediation pipeline.
All toolwarden-specific exceptions inherit from WardenError.

Exception hierarchy:
    WardenError
    +-- MalformedInputError      (request is not a parseable tool call)
    +-- ConfigLoadError          (config or domain list unreadable/invalid)
    +-- InjectionAttemptError    (list mutation carried shell metacharacters)
    +-- StateStoreError          (session store read/write failure)
    +-- ToolExecutionError       (resolved handler failed)
    +-- SafetyBlockedError       (a gate returned BLOCK)
        +-- HeuristicBlockError  (command evasion detected)
        +-- DomainBlockError     (host denied by the domain validator)

An unknown tool is not an error: it is tracked and passed through.
"""

from __future__ import annotations

from typing import Any


class WardenError(Exception):
    """Base exception for all toolwarden errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class MalformedInputError(WardenError):
    """Raised when a request cannot be parsed into a tool call.

    The router maps this to the ERROR exit status without touching state.
    """

    def __init__(self, message: str, raw: str | None = None, details: dict | None = None):
        preview = (raw or "")[:80]
        super().__init__(
            f"Malformed tool call: {message}",
            details={"raw_preview": preview, **(details or {})},
        )


class ConfigLoadError(WardenError):
    """Raised when a configuration file or domain list cannot be loaded."""

    def __init__(self, path: str, message: str, details: dict | None = None):
        super().__init__(
            f"Cannot load '{path}': {message}",
            details={"path": path, **(details or {})},
        )
        self.path = path


class InjectionAttemptError(WardenError):
    """Raised when a list mutation payload contains shell metacharacters.

    The payload is rejected outright and never written or executed.
    """

    def __init__(self, entry: str, details: dict | None = None):
        super().__init__(
            f"Rejected list entry with unsafe characters: {entry!r}",
            details={"entry": entry, **(details or {})},
        )
        self.entry = entry


class StateStoreError(WardenError):
    """Raised when the session store cannot be read or written."""

    def __init__(self, operation: str, message: str, details: dict | None = None):
        super().__init__(
            f"Session store {operation} failed: {message}",
            details={"operation": operation, **(details or {})},
        )
        self.operation = operation


class ToolExecutionError(WardenError):
    """Raised when a tool handler fails.

    Includes tool name for debugging.
    """

    def __init__(self, tool_name: str, message: str, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' execution failed: {message}",
            details={"tool_name": tool_name, **(details or {})},
        )
        self.tool_name = tool_name


class SafetyBlockedError(WardenError):
    """Raised when a gate denies a tool call.

    Only raised by ``HandlerRouter.enforce``; ``route`` reports blocks
    through the exit status instead.
    """

    def __init__(self, tool_name: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Tool '{tool_name}' blocked: {reason}",
            details={"tool_name": tool_name, "reason": reason, **(details or {})},
        )
        self.tool_name = tool_name
        self.reason = reason


class HeuristicBlockError(SafetyBlockedError):
    """Raised when the evasion detector blocks a command."""

    def __init__(self, tool_name: str, finding: Any):
        super().__init__(
            tool_name,
            finding.reason,
            details={
                "category": str(finding.category.value),
                "confidence": finding.confidence,
                "rule": finding.rule,
            },
        )
        self.finding = finding


class DomainBlockError(SafetyBlockedError):
    """Raised when the domain validator blocks a host."""

    def __init__(self, tool_name: str, classification: Any, reason: str):
        super().__init__(
            tool_name,
            reason,
            details={
                "host": classification.host,
                "tier": str(classification.tier.value),
                "matched_rule": classification.matched_rule,
            },
        )
        self.classification = classification
