"""
toolwarden: tool-call mediation for AI coding agents

Decides ALLOW, WARN or BLOCK for every tool invocation an agent issues,
before it reaches a side-effecting handler.

Usage:
    from toolwarden import HandlerRouter, MediationContext

    router = HandlerRouter(MediationContext.from_config(session_id="s-1"))
    result = router.route('{"tool": "Bash", "command": "ls -la"}')
    print(result.exit_status, result.output)
"""

from toolwarden.config import WardenConfig, load_config
from toolwarden.core.models import (
    DomainClassification,
    DomainTier,
    ExitCode,
    HeuristicCategory,
    HeuristicFinding,
    MediationResult,
    ToolCallRequest,
    ToolCapability,
    TrustStatus,
    Verdict,
    ViolationSeverity,
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
from toolwarden.scoring.engine import TrustScoringEngine
from toolwarden.security.domains import DomainValidator
from toolwarden.security.heuristics import EvasionDetector
from toolwarden.storage.session_store import SessionStore
from toolwarden.tools.registry import ToolRegistry
from toolwarden.tools.router import HandlerRouter, MediationContext, parse_request

__version__ = "0.4.0"

__all__ = [
    "ConfigLoadError",
    "DomainBlockError",
    "DomainClassification",
    "DomainTier",
    "DomainValidator",
    "EvasionDetector",
    "ExitCode",
    "HandlerRouter",
    "HeuristicBlockError",
    "HeuristicCategory",
    "HeuristicFinding",
    "InjectionAttemptError",
    "MalformedInputError",
    "MediationContext",
    "MediationResult",
    "SafetyBlockedError",
    "SessionStore",
    "StateStoreError",
    "ToolCallRequest",
    "ToolCapability",
    "ToolExecutionError",
    "ToolRegistry",
    "TrustScoringEngine",
    "TrustStatus",
    "Verdict",
    "ViolationSeverity",
    "WardenConfig",
    "WardenError",
    "load_config",
    "parse_request",
]
