"""
toolwarden Core Data Models

Pydantic models and enums shared by every stage of the mediation
pipeline: request parsing, the gates, scoring and the router result.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ─── Enums ──────────────────────────────────────────────────


class Verdict(IntEnum):
    """Gate decision. Numeric values double as validator return codes."""

    ALLOW = 0
    WARN = 1
    BLOCK = 2


class ExitCode(IntEnum):
    """Process exit status of a mediated invocation."""

    ALLOW = 0
    ERROR = 1
    BLOCK = 2


class ToolCapability(str, Enum):
    """Closed set of side-effect classes a known tool can have."""

    EXECUTION = "EXECUTION"
    NETWORK = "NETWORK"
    FILE = "FILE"
    OPAQUE = "OPAQUE"


class HeuristicCategory(str, Enum):
    ENCODING_EVASION = "encoding-evasion"
    OBFUSCATION = "obfuscation"
    INDIRECT_EXECUTION = "indirect-execution"
    NETWORK_EXFILTRATION = "network-exfiltration"
    CUSTOM_RULE = "custom-rule"
    NONE = "none"


class DomainTier(str, Enum):
    """Classification tiers, listed in evaluation order."""

    TIER1_BLOCKED = "TIER1_BLOCKED"
    USER_BLOCKED = "USER_BLOCKED"
    TIER2_SENSITIVE = "TIER2_SENSITIVE"
    TIER3_SAFE = "TIER3_SAFE"
    UNCLASSIFIED = "UNCLASSIFIED"


class TrustStatus(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    BLOCKED = "BLOCKED"


class ViolationSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ─── Heuristic policy ──────────────────────────────────────

BLOCK_THRESHOLD = 80
WARN_THRESHOLD = 50


def verdict_for_confidence(confidence: int) -> Verdict:
    """Map a detector confidence (0-100) onto the fixed gate policy."""
    if confidence >= BLOCK_THRESHOLD:
        return Verdict.BLOCK
    if confidence >= WARN_THRESHOLD:
        return Verdict.WARN
    return Verdict.ALLOW


# ─── Request / result records ──────────────────────────────


class ToolCallRequest(BaseModel):
    """One parsed tool invocation.

    ``raw`` keeps the exact input text so that unknown tools can be
    passed through byte-identical.
    """

    model_config = ConfigDict(frozen=True)

    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    raw: str = ""
    session_id: str | None = None


class HeuristicFinding(BaseModel):
    """Result of one detector check. Never persisted."""

    category: HeuristicCategory = HeuristicCategory.NONE
    confidence: int = Field(default=0, ge=0, le=100)
    reason: str = "no evasion pattern matched"
    rule: str = ""

    @property
    def verdict(self) -> Verdict:
        return verdict_for_confidence(self.confidence)

    @property
    def allowed(self) -> bool:
        return self.verdict != Verdict.BLOCK


class DomainClassification(BaseModel):
    host: str
    tier: DomainTier = DomainTier.UNCLASSIFIED
    matched_rule: str = ""


class ScoreChange(BaseModel):
    """One entry in the bounded trust score history."""

    timestamp: str
    previous: int
    value: int
    severity: ViolationSeverity | None = None
    reason: str = ""


class TrustScore(BaseModel):
    value: int = Field(ge=0, le=100)
    status: TrustStatus


class MediationResult(BaseModel):
    """Outcome of routing one request through the pipeline."""

    output: str = ""
    exit_status: ExitCode = ExitCode.ALLOW
    verdict: Verdict = Verdict.ALLOW
    tool: str = ""
    known: bool = False
    finding: HeuristicFinding | None = None
    classification: DomainClassification | None = None
    score: TrustScore | None = None
    warnings: list[str] = Field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.exit_status == ExitCode.BLOCK
