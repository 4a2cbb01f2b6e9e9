"""
toolwarden Custom Rules

User-supplied command rules loaded from a plain-text rule file and
evaluated by the EvasionDetector alongside its built-in rules.

File format (blocks separated by a new ``rule:`` line, ``#`` comments)::

    rule: block-prod-db
    pattern: psql .*prod
    action: block
    severity: high
    message: Direct production database access

Rules are validated at load time. A rule with an empty pattern, an
unknown action or severity, or a pattern that does not compile is
dropped with a logged warning; loading never fails the detector.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolwarden.core.models import HeuristicCategory, HeuristicFinding
from toolwarden.security.heuristics import EvasionRule

logger = logging.getLogger(__name__)


class RuleAction(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"


class RuleSeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Confidence assigned to a match, chosen so that the fixed gate policy
# reproduces the rule's declared action.
_CONFIDENCE: dict[RuleAction, dict[RuleSeverity, int]] = {
    RuleAction.BLOCK: {
        RuleSeverity.CRITICAL: 95,
        RuleSeverity.HIGH: 90,
        RuleSeverity.MEDIUM: 80,
        RuleSeverity.LOW: 80,
        RuleSeverity.INFO: 80,
    },
    RuleAction.WARN: {
        RuleSeverity.CRITICAL: 79,
        RuleSeverity.HIGH: 75,
        RuleSeverity.MEDIUM: 65,
        RuleSeverity.LOW: 55,
        RuleSeverity.INFO: 50,
    },
    RuleAction.ALLOW: {s: 10 for s in RuleSeverity},
}


class CustomRule(BaseModel):
    """A validated user rule."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    pattern: str = Field(min_length=1)
    action: RuleAction = RuleAction.WARN
    severity: RuleSeverity = RuleSeverity.MEDIUM
    message: str = "Custom rule triggered"

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}") from e
        return v

    @property
    def confidence(self) -> int:
        return _CONFIDENCE[self.action][self.severity]


class CustomRuleSet(EvasionRule):
    """Evaluates loaded custom rules as one detector rule."""

    def __init__(self, rules: list[CustomRule] | None = None):
        super().__init__(
            name="custom_rules",
            description="User-defined command rules",
            category=HeuristicCategory.CUSTOM_RULE,
        )
        self._rules: list[tuple[CustomRule, re.Pattern[str]]] = []
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: CustomRule) -> None:
        self._rules.append((rule, re.compile(rule.pattern, re.IGNORECASE)))

    @property
    def rules(self) -> list[CustomRule]:
        return [r for r, _ in self._rules]

    def __len__(self) -> int:
        return len(self._rules)

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        best: HeuristicFinding | None = None
        for rule, compiled in self._rules:
            if not compiled.search(command):
                continue
            if best is None or rule.confidence > best.confidence:
                best = HeuristicFinding(
                    category=self.category,
                    confidence=rule.confidence,
                    reason=f"{rule.message} (rule: {rule.name})",
                    rule=f"custom:{rule.name}",
                )
        return best


def parse_rules(text: str, source: str = "<string>") -> list[CustomRule]:
    """Parse rule-file text into validated rules, skipping invalid ones."""
    blocks: list[dict[str, str]] = []
    current: dict[str, str] | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "rule":
            current = {"name": value}
            blocks.append(current)
        elif current is not None and key in ("pattern", "action", "severity", "message"):
            current[key] = value.lower() if key in ("action", "severity") else value

    rules: list[CustomRule] = []
    for block in blocks:
        try:
            rules.append(CustomRule.model_validate(block))
        except ValidationError as e:
            logger.warning(
                "Invalid rule skipped: %s (%s: %d error(s))",
                block.get("name", "?"),
                source,
                e.error_count(),
            )
    return rules


def load_rules(path: str | Path) -> list[CustomRule]:
    """Load rules from a file. A missing or unreadable file yields no rules."""
    rule_path = Path(path).expanduser()
    if not rule_path.is_file():
        logger.debug("No custom rules file at %s", rule_path)
        return []
    try:
        text = rule_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot read rules file %s: %s", rule_path, e)
        return []
    rules = parse_rules(text, source=str(rule_path))
    logger.info("Loaded %d custom rule(s) from %s", len(rules), rule_path)
    return rules
