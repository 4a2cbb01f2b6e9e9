"""Tests for toolwarden custom exceptions.

Covers the exception hierarchy and structured error information.
"""

import pytest

from toolwarden.core.models import (
    DomainClassification,
    DomainTier,
    HeuristicCategory,
    HeuristicFinding,
)
from toolwarden.exceptions import (
    ConfigLoadError,
    DomainBlockError,
    HeuristicBlockError,
    InjectionAttemptError,
    MalformedInputError,
    SafetyBlockedError,
    StateStoreError,
    ToolExecutionError,
    WardenError,
)


class TestWardenError:
    def test_base_error(self):
        err = WardenError("something went wrong")
        assert str(err) == "something went wrong"
        assert err.details == {}

    def test_base_error_with_details(self):
        err = WardenError("failed", details={"key": "value"})
        assert err.details == {"key": "value"}

    def test_is_exception(self):
        assert issubclass(WardenError, Exception)


class TestMalformedInputError:
    def test_preview_truncated(self):
        err = MalformedInputError("invalid JSON", raw="x" * 500)
        assert "Malformed tool call" in str(err)
        assert len(err.details["raw_preview"]) == 80

    def test_without_raw(self):
        err = MalformedInputError("missing tool name")
        assert err.details["raw_preview"] == ""


class TestConfigLoadError:
    def test_creation(self):
        err = ConfigLoadError("/etc/x.conf", "permission denied")
        assert err.path == "/etc/x.conf"
        assert "permission denied" in str(err)
        assert err.details["path"] == "/etc/x.conf"


class TestInjectionAttemptError:
    def test_creation(self):
        err = InjectionAttemptError("example.com; rm -rf /")
        assert err.entry == "example.com; rm -rf /"
        assert "unsafe characters" in str(err)


class TestStateStoreError:
    def test_creation(self):
        err = StateStoreError("update", "database is locked", details={"key": "k"})
        assert err.operation == "update"
        assert err.details == {"operation": "update", "key": "k"}


class TestToolExecutionError:
    def test_creation(self):
        err = ToolExecutionError("Bash", "handler crashed")
        assert err.tool_name == "Bash"
        assert "Bash" in str(err)


class TestSafetyBlockedErrors:
    def test_heuristic_block_carries_finding(self):
        finding = HeuristicFinding(
            category=HeuristicCategory.ENCODING_EVASION,
            confidence=90,
            reason="Base64 decode piped to shell execution",
            rule="encoding_evasion",
        )
        err = HeuristicBlockError("Bash", finding)
        assert err.finding is finding
        assert err.details["confidence"] == 90
        assert err.details["category"] == "encoding-evasion"
        assert err.reason == finding.reason

    def test_domain_block_carries_classification(self):
        classification = DomainClassification(
            host="169.254.169.254", tier=DomainTier.TIER1_BLOCKED, matched_rule="169.254.0.0/16"
        )
        err = DomainBlockError("WebFetch", classification, "Blocked link-local")
        assert err.classification is classification
        assert err.details["tier"] == "TIER1_BLOCKED"
        assert err.details["host"] == "169.254.169.254"

    def test_hierarchy(self):
        assert issubclass(HeuristicBlockError, SafetyBlockedError)
        assert issubclass(DomainBlockError, SafetyBlockedError)
        assert issubclass(SafetyBlockedError, WardenError)
        for cls in (MalformedInputError, ConfigLoadError, InjectionAttemptError,
                    StateStoreError, ToolExecutionError):
            assert issubclass(cls, WardenError)

    def test_catch_as_base(self):
        with pytest.raises(WardenError):
            raise StateStoreError("get", "disk I/O error")
