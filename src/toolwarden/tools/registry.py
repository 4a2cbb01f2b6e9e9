"""
toolwarden Tool Registry

Keeps two disjoint sets of tool names. Known tools are registered once at
router start from a fixed bootstrap table and carry a handler reference
and a capability. Every other name the router sees is tracked as an
unknown tool with usage metadata persisted in the session store, so the
first sighting of a new tool type can be surfaced to the user.

Lookups never raise on absent names; they return empty, zero or None.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any

from toolwarden.core.models import ToolCapability
from toolwarden.storage.session_store import SessionStore
from toolwarden.tools.models import (
    MAX_TOOL_NAME_LENGTH,
    ToolRegistryEntry,
    UnknownToolRecord,
    sample_parameters,
)

logger = logging.getLogger(__name__)

_UNKNOWN_PREFIX = "unknown_tool:"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_tool_name(name: str) -> str:
    """Reduce a tool name to ``[A-Za-z0-9_-]``, at most 100 characters."""
    return _UNSAFE_NAME_CHARS.sub("", name)[:MAX_TOOL_NAME_LENGTH]


class ToolRegistry:
    """Registry of known tools and tracker of unknown ones.

    Args:
        store: Session store for unknown-tool records. Without one the
            registry tracks unknown tools in memory only.
    """

    def __init__(self, store: SessionStore | None = None) -> None:
        self._store = store
        self._known: dict[str, ToolRegistryEntry] = {}
        self._unknown: dict[str, UnknownToolRecord] = {}

    # ── Known tools ─────────────────────────────────────────

    def register_known(
        self,
        name: str,
        handler_ref: str,
        capability: ToolCapability = ToolCapability.OPAQUE,
    ) -> ToolRegistryEntry:
        """Register a known tool. Re-registering a name replaces its entry."""
        entry = ToolRegistryEntry(name=name, handler_ref=handler_ref, capability=capability)
        self._known[name] = entry
        return entry

    def is_known(self, name: str) -> bool:
        return name in self._known

    def get_known(self, name: str) -> ToolRegistryEntry | None:
        return self._known.get(name)

    def list_known(self) -> list[str]:
        return sorted(self._known)

    def count_known(self) -> int:
        return len(self._known)

    # ── Unknown tools ───────────────────────────────────────

    def track_unknown(self, name: str, parameters: dict[str, Any] | None = None) -> UnknownToolRecord | None:
        """Record one sighting of a tool name outside the known set.

        No-op (returns None) for known names and for names that sanitize
        to nothing.
        """
        if self.is_known(name):
            return None
        key_name = sanitize_tool_name(name)
        if not key_name:
            logger.warning("Ignoring tool name with no valid characters", extra={"tool_name": name[:40]})
            return None

        now = datetime.now(UTC).isoformat()
        sample = sample_parameters(parameters or {})

        def _bump(current: dict | None) -> dict:
            if current is None:
                return UnknownToolRecord(
                    name=key_name, first_seen=now, last_seen=now, sample_parameters=sample
                ).model_dump()
            current["count"] = current.get("count", 0) + 1
            current["last_seen"] = now
            current["sample_parameters"] = sample
            return current

        if self._store is not None:
            data = self._store.update(_UNKNOWN_PREFIX + key_name, _bump)
        else:
            existing = self._unknown.get(key_name)
            data = _bump(existing.model_dump() if existing else None)

        record = UnknownToolRecord.model_validate(data)
        self._unknown[key_name] = record
        return record

    def is_first_occurrence(self, name: str) -> bool:
        """True iff the name has never been tracked."""
        return self.get_unknown_metadata(name) is None

    def get_unknown_count(self, name: str) -> int:
        record = self.get_unknown_metadata(name)
        return record.count if record else 0

    def get_unknown_metadata(self, name: str) -> UnknownToolRecord | None:
        key_name = sanitize_tool_name(name)
        if not key_name:
            return None
        if self._store is not None:
            data = self._store.get(_UNKNOWN_PREFIX + key_name)
            if data is None:
                return None
            record = UnknownToolRecord.model_validate(data)
            self._unknown[key_name] = record
            return record
        return self._unknown.get(key_name)

    def list_unknown(self) -> list[str]:
        if self._store is not None:
            return sorted(k[len(_UNKNOWN_PREFIX):] for k in self._store.keys(_UNKNOWN_PREFIX))
        return sorted(self._unknown)

    def count_unknown(self) -> int:
        return len(self.list_unknown())

    def all_unknown(self) -> list[UnknownToolRecord]:
        """Every unknown-tool record, most used first."""
        records = [r for r in (self.get_unknown_metadata(n) for n in self.list_unknown()) if r]
        return sorted(records, key=lambda r: (-r.count, r.name))

    # ── Persistence ─────────────────────────────────────────

    def save(self) -> None:
        """Write the in-memory unknown-tool map to the store."""
        if self._store is None:
            return
        for key_name, record in self._unknown.items():
            self._store.set(_UNKNOWN_PREFIX + key_name, record.model_dump())

    def load(self) -> int:
        """Reload unknown-tool records from the store. Returns the count."""
        if self._store is None:
            return len(self._unknown)
        self._unknown = {}
        for name in self.list_unknown():
            self.get_unknown_metadata(name)
        return len(self._unknown)

    def __len__(self) -> int:
        return len(self._known)

    def __contains__(self, name: str) -> bool:
        return name in self._known
