"""
toolwarden Handler Router

Sits between the agent's tool call and the real handler. Every request
moves through:

    RECEIVED → CLASSIFIED (known | unknown) → GATED → VERDICT
             → DISPATCHED | REJECTED

1. Parse the request; malformed input exits ERROR without touching state
2. Unknown tools are tracked and passed through unchanged
3. EXECUTION tools are scored by the evasion detector on ``command``
4. NETWORK tools are checked by the domain validator on their target host
5. Non-ALLOW verdicts deduct a trust penalty; a BLOCKED session escalates
   WARN to BLOCK
6. BLOCK rejects with a structured payload; ALLOW and WARN dispatch to
   the tool's handler reference

Exit status: 0 ALLOW (including WARN), 1 ERROR, 2 BLOCK.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from toolwarden.config import WardenConfig
from toolwarden.core.models import (
    DomainClassification,
    DomainTier,
    ExitCode,
    HeuristicFinding,
    MediationResult,
    ToolCallRequest,
    ToolCapability,
    TrustStatus,
    Verdict,
    ViolationSeverity,
)
from toolwarden.exceptions import (
    DomainBlockError,
    HeuristicBlockError,
    MalformedInputError,
    ToolExecutionError,
    WardenError,
)
from toolwarden.scoring.engine import TrustScoringEngine
from toolwarden.security.domains import DomainDecision, DomainValidator
from toolwarden.security.heuristics import EvasionDetector
from toolwarden.security.rules import CustomRuleSet, load_rules
from toolwarden.storage.session_store import SessionStore
from toolwarden.tools.handlers import BOOTSTRAP_TOOLS, PASSTHROUGH_REF, HandlerResolver
from toolwarden.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def parse_request(data: str | bytes | Mapping[str, Any]) -> ToolCallRequest:
    """Parse one tool invocation.

    Accepts ``{"tool": ..., <fields>}`` (``name`` as an alias of ``tool``,
    an optional ``parameters`` object) and the hook shape
    ``{"tool_name": ..., "tool_input": {...}, "session_id": ...}``.

    Raises:
        MalformedInputError: If the input is not a JSON object naming a tool.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInputError("input is not valid UTF-8") from e

    if isinstance(data, str):
        raw = data
        try:
            obj = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedInputError(f"invalid JSON ({e.msg})", raw=raw) from e
    elif isinstance(data, Mapping):
        obj = dict(data)
        try:
            raw = json.dumps(obj)
        except (TypeError, ValueError) as e:
            raise MalformedInputError(f"request is not JSON-serializable ({e})") from e
    else:
        raise MalformedInputError(f"unsupported input type {type(data).__name__}")

    if not isinstance(obj, dict):
        raise MalformedInputError("expected a JSON object", raw=raw)

    if "tool_name" in obj:
        tool = obj["tool_name"]
        parameters = obj.get("tool_input") or {}
    else:
        key = "tool" if "tool" in obj else "name"
        tool = obj.get(key)
        if isinstance(obj.get("parameters"), dict):
            parameters = obj["parameters"]
        else:
            parameters = {k: v for k, v in obj.items() if k not in (key, "session_id")}

    if not isinstance(tool, str) or not tool.strip():
        raise MalformedInputError("missing tool name", raw=raw)
    if not isinstance(parameters, dict):
        raise MalformedInputError("tool parameters must be an object", raw=raw)

    session_id = obj.get("session_id")
    return ToolCallRequest(
        tool=tool.strip(),
        parameters=parameters,
        raw=raw,
        session_id=session_id if isinstance(session_id, str) and session_id else None,
    )


class GateOutcome(BaseModel):
    """What a capability gate decided for one request."""

    verdict: Verdict = Verdict.ALLOW
    reason: str = ""
    severity: ViolationSeverity | None = None
    finding: HeuristicFinding | None = None
    classification: DomainClassification | None = None
    hosts: list[str] = Field(default_factory=list)


def heuristic_severity(finding: HeuristicFinding) -> ViolationSeverity | None:
    if finding.confidence >= 90:
        return ViolationSeverity.CRITICAL
    if finding.verdict == Verdict.BLOCK:
        return ViolationSeverity.HIGH
    if finding.verdict == Verdict.WARN:
        return ViolationSeverity.MEDIUM
    return None


def domain_severity(decision: DomainDecision) -> ViolationSeverity | None:
    if decision.verdict == Verdict.ALLOW:
        return None
    if not decision.valid:
        return ViolationSeverity.HIGH
    tier = decision.classification.tier
    if tier == DomainTier.TIER1_BLOCKED:
        return ViolationSeverity.CRITICAL
    if tier == DomainTier.USER_BLOCKED:
        return ViolationSeverity.HIGH
    if decision.verdict == Verdict.BLOCK:
        return ViolationSeverity.MEDIUM
    return ViolationSeverity.LOW


class MediationContext:
    """Everything the router needs for one session, built once per process."""

    def __init__(
        self,
        config: WardenConfig,
        store: SessionStore,
        registry: ToolRegistry,
        detector: EvasionDetector,
        validator: DomainValidator,
        scoring: TrustScoringEngine,
        resolver: HandlerResolver | None = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.detector = detector
        self.validator = validator
        self.scoring = scoring
        self.resolver = resolver or HandlerResolver()

    @classmethod
    def from_config(
        cls,
        config: WardenConfig | None = None,
        session_id: str = "default",
        store: SessionStore | None = None,
    ) -> MediationContext:
        config = config or WardenConfig()
        store = store or SessionStore(
            config.storage.resolved_url(),
            session_id=session_id,
            busy_timeout=config.storage.busy_timeout,
        )
        custom_rules = CustomRuleSet(
            load_rules(config.heuristics.rules_file) if config.heuristics.rules_file else []
        )
        return cls(
            config=config,
            store=store,
            registry=ToolRegistry(store),
            detector=EvasionDetector(extra_rules=[custom_rules]),
            validator=DomainValidator(
                config.domains.resolved_dir(), default_policy=config.domains.default_policy
            ),
            scoring=TrustScoringEngine(
                store,
                penalties=config.scoring.penalties,
                starting_value=config.scoring.starting_value,
            ),
        )

    @property
    def session_id(self) -> str:
        return self.store.session_id

    def close(self) -> None:
        self.store.close()


class HandlerRouter:
    """Routes tool calls through the gates and on to their handlers."""

    def __init__(self, context: MediationContext):
        self._ctx = context
        self._initialized = False

    @property
    def context(self) -> MediationContext:
        return self._ctx

    def init(self) -> None:
        """Register the bootstrap tools, load tracked tools, seed the score."""
        registry = self._ctx.registry
        for name, capability in BOOTSTRAP_TOOLS:
            if not registry.is_known(name):
                registry.register_known(name, PASSTHROUGH_REF, capability)
        registry.load()
        self._ctx.scoring.init()
        self._initialized = True
        logger.debug(
            "Router initialized with %d known tools",
            registry.count_known(),
            extra={"session_id": self._ctx.session_id},
        )

    def route(self, request: str | bytes | Mapping[str, Any] | ToolCallRequest) -> MediationResult:
        """Mediate one request. Never raises for pipeline failures.

        Returns a MediationResult whose ``output`` and ``exit_status`` are
        what the calling process should emit.
        """
        try:
            return self._mediate(request)
        except WardenError as e:
            logger.error(
                "Mediation failed: %s",
                e,
                extra={"session_id": self._ctx.session_id, "tool_name": e.details.get("tool_name")},
            )
            return _error_result(e)

    def enforce(self, request: str | bytes | Mapping[str, Any] | ToolCallRequest) -> MediationResult:
        """Like ``route`` but raises instead of returning failures.

        Raises:
            HeuristicBlockError: The evasion detector blocked the command.
            DomainBlockError: The domain validator blocked the target host.
            WardenError: Malformed input, store or handler failure.
        """
        result = self._mediate(request)
        if result.exit_status == ExitCode.BLOCK:
            if result.finding is not None:
                raise HeuristicBlockError(result.tool, result.finding)
            reason = json.loads(result.output).get("reason", "blocked")
            raise DomainBlockError(result.tool, result.classification, reason)
        return result

    # ── Pipeline ────────────────────────────────────────────

    def _mediate(self, request: str | bytes | Mapping[str, Any] | ToolCallRequest) -> MediationResult:
        req = request if isinstance(request, ToolCallRequest) else parse_request(request)
        if not self._initialized:
            self.init()

        entry = self._ctx.registry.get_known(req.tool)
        if entry is None:
            return self._pass_unknown(req)

        gate = self._gate(req, entry.capability)
        verdict = gate.verdict
        warnings: list[str] = []

        if gate.severity is not None:
            self._ctx.scoring.apply_penalty(gate.severity, f"{req.tool}: {gate.reason}")
        trust = self._ctx.scoring.get_trust()

        if verdict == Verdict.WARN and trust.status == TrustStatus.BLOCKED:
            verdict = Verdict.BLOCK
            gate.reason = f"{gate.reason} (escalated: session trust is {trust.status.value})"

        result = MediationResult(
            tool=req.tool,
            known=True,
            verdict=verdict,
            finding=gate.finding,
            classification=gate.classification,
            score=trust,
        )

        if verdict == Verdict.BLOCK:
            self._log_decision(req, result, gate.reason)
            result.output = json.dumps(self._block_payload(req, gate, trust.value, trust.status))
            result.exit_status = ExitCode.BLOCK
            return result

        if verdict == Verdict.WARN:
            warnings.append(gate.reason)
            result.warnings = warnings
        self._log_decision(req, result, gate.reason)

        result.output = self._dispatch(req, entry.handler_ref)
        return result

    def _gate(self, req: ToolCallRequest, capability: ToolCapability) -> GateOutcome:
        if capability == ToolCapability.EXECUTION:
            return self._gate_command(req)
        if capability == ToolCapability.NETWORK:
            return self._gate_network(req)
        return GateOutcome()

    def _gate_command(self, req: ToolCallRequest) -> GateOutcome:
        command = req.parameters.get("command")
        if command is not None and not isinstance(command, str):
            raise MalformedInputError(
                f"command must be a string, got {type(command).__name__}",
                raw=req.raw,
                details={"tool_name": req.tool},
            )
        if not self._ctx.config.heuristics.enabled:
            return GateOutcome()
        if not command or not command.strip():
            return GateOutcome()
        finding = self._ctx.detector.check(command)
        return GateOutcome(
            verdict=finding.verdict,
            reason=finding.reason,
            severity=heuristic_severity(finding),
            finding=finding,
        )

    def _gate_network(self, req: ToolCallRequest) -> GateOutcome:
        targets: list[str] = []
        url = req.parameters.get("url")
        if url is not None and not isinstance(url, str):
            raise MalformedInputError(
                f"url must be a string, got {type(url).__name__}",
                raw=req.raw,
                details={"tool_name": req.tool},
            )
        if url is not None:
            targets.append(url)
        allowed = req.parameters.get("allowed_domains")
        if allowed is not None:
            if not isinstance(allowed, list) or not all(isinstance(d, str) for d in allowed):
                raise MalformedInputError(
                    "allowed_domains must be a list of strings", raw=req.raw, details={"tool_name": req.tool}
                )
            targets.extend(allowed)
        if not targets:
            return GateOutcome()

        worst: DomainDecision | None = None
        for target in targets:
            decision = self._ctx.validator.check(target, context=req.tool)
            if worst is None or decision.verdict > worst.verdict:
                worst = decision
        return GateOutcome(
            verdict=worst.verdict,
            reason=worst.reason,
            severity=domain_severity(worst),
            classification=worst.classification,
            hosts=[t[:120] for t in targets],
        )

    def _pass_unknown(self, req: ToolCallRequest) -> MediationResult:
        warnings: list[str] = []
        tracking = self._ctx.config.tool_tracking
        if tracking.enabled:
            registry = self._ctx.registry
            first = registry.is_first_occurrence(req.tool)
            record = registry.track_unknown(req.tool, req.parameters)
            if first and record is not None and tracking.notify_on_first_use:
                message = f"New tool type detected: {record.name}"
                warnings.append(message)
                logger.warning(
                    message,
                    extra={"session_id": self._ctx.session_id, "tool_name": record.name, "count": record.count},
                )
        return MediationResult(
            output=req.raw,
            exit_status=ExitCode.ALLOW,
            verdict=Verdict.ALLOW,
            tool=req.tool,
            known=False,
            warnings=warnings,
        )

    def _dispatch(self, req: ToolCallRequest, handler_ref: str) -> str:
        try:
            handler = self._ctx.resolver.resolve(handler_ref)
            output = handler(req)
        except Exception as e:
            raise ToolExecutionError(
                req.tool, str(e) or type(e).__name__, details={"handler_ref": handler_ref}
            ) from e
        return output if isinstance(output, str) else json.dumps(output, default=str)

    def _block_payload(
        self, req: ToolCallRequest, gate: GateOutcome, score: int, status: TrustStatus
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"decision": "block", "tool": req.tool}
        if gate.finding is not None:
            payload["category"] = gate.finding.category.value
            payload["confidence"] = gate.finding.confidence
        if gate.classification is not None:
            payload["tier"] = gate.classification.tier.value
            payload["host"] = gate.classification.host
        payload["reason"] = gate.reason
        payload["score"] = score
        payload["status"] = status.value
        return payload

    def _log_decision(self, req: ToolCallRequest, result: MediationResult, reason: str) -> None:
        if result.verdict == Verdict.ALLOW:
            logger.debug(
                "Allowed %s(%s)",
                req.tool,
                _summarize_input(req.parameters),
                extra={"session_id": self._ctx.session_id, "tool_name": req.tool},
            )
            return
        extra: dict[str, Any] = {
            "session_id": self._ctx.session_id,
            "tool_name": req.tool,
            "verdict": result.verdict.name,
        }
        if result.finding is not None:
            extra["category"] = result.finding.category.value
            extra["confidence"] = result.finding.confidence
        if result.classification is not None:
            extra["tier"] = result.classification.tier.value
            extra["host"] = result.classification.host
        if result.score is not None:
            extra["score"] = result.score.value
        logger.warning("%s %s: %s", result.verdict.name, req.tool, reason, extra=extra)


def _error_result(error: WardenError) -> MediationResult:
    payload = {
        "decision": "error",
        "tool": error.details.get("tool_name", ""),
        "reason": str(error),
    }
    return MediationResult(
        output=json.dumps(payload),
        exit_status=ExitCode.ERROR,
        verdict=Verdict.BLOCK,
        tool=payload["tool"],
    )


def _summarize_input(tool_input: dict[str, Any]) -> str:
    """Create a short summary of tool input for logging."""
    parts = []
    for key, value in list(tool_input.items())[:3]:
        v = str(value)
        if len(v) > 50:
            v = v[:47] + "..."
        parts.append(f"{key}={v}")
    return ", ".join(parts)
