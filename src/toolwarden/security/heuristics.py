"""
toolwarden Heuristic Evasion Detector

Lexical analysis of shell command strings for techniques that hide a
dangerous command from literal pattern matching: encoded payloads piped
to an interpreter, commands assembled from variables or arrays, quoting
and escaping tricks, indirect execution, and fetch-and-execute chains.

Every rule scores independently. The detector reports the highest
confidence seen, together with the reason of the rule that produced it,
and maps that confidence onto the fixed gate policy:

    confidence >= 80  → BLOCK
    50 <= conf < 80   → WARN
    confidence < 50   → ALLOW

This is pattern matching, not program analysis. Benign commands that
merely encode or substitute (``echo hi | base64``, ``echo "$HOME"``)
stay below the warn threshold.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import unquote

from toolwarden.core.models import HeuristicCategory, HeuristicFinding

logger = logging.getLogger(__name__)

# Tokens that make an otherwise-suspicious construct destructive.
# Case-sensitive on purpose: the case-variation check compares this
# against the lowercased command.
_DANGEROUS = re.compile(
    r"\brm\s+(?:-{1,2}[\w-]+\s+)*(?:-[a-zA-Z]*[rf][a-zA-Z]*|--recursive|--force|/|~|\*)"
    r"|\bmkfs(?:\.\w+)?\b"
    r"|\bdd\s+.*\bof=/dev/"
    r"|:\(\)\s*\{"
    r"|\bchmod\s+(?:-r\s+|-R\s+)?777\s+/"
    r"|>\s*/dev/(?:sd|hd|nvme|xvd)"
)

_SHELL = r"(?:sudo\s+)?(?:/usr)?(?:/bin/)?(?:ba|z|da|k)?sh\b"
_PIPE_TO_SHELL = re.compile(rf"\|\s*(?:{_SHELL}|eval\b)")
# Script interpreters reading their program from stdin: bare, or with
# single-letter flags and no script argument (`python3 -m json.tool` reads data).
_PIPE_TO_INTERPRETER = re.compile(
    r"\|\s*(?:sudo\s+)?(?:\S*/)?(?:env\s+)?(?:python[\d.]*|perl|ruby|node|php)"
    r"(?:\s+-[a-z]?(?=\s|$))*\s*(?:$|[;&|)])"
)
_CMD_START = r"(?:^|[;&|(\n]\s*)"


def is_dangerous(text: str) -> bool:
    """True if ``text`` literally contains a destructive command token."""
    return bool(_DANGEROUS.search(text))


def _strip_quotes(text: str) -> str:
    return text.replace('"', "").replace("'", "")


class EvasionRule:
    """A rule that scores one family of evasion techniques."""

    def __init__(self, name: str, description: str, category: HeuristicCategory):
        self.name = name
        self.description = description
        self.category = category

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        """Return the strongest finding for this rule. Override in subclasses."""
        raise NotImplementedError

    def _finding(self, confidence: int, reason: str) -> HeuristicFinding:
        return HeuristicFinding(
            category=self.category, confidence=confidence, reason=reason, rule=self.name
        )


class EncodingEvasion(EvasionRule):
    """Encoded payloads decoded and piped into an interpreter."""

    _DECODERS: tuple[tuple[re.Pattern[str], int, str], ...] = (
        (re.compile(r"\bbase64\s+(?:-\w*\s+)*(?:-d\b|--decode\b|-D\b)"), 90,
         "Base64 decode piped to shell execution"),
        (re.compile(r"\bxxd\s+(?:-\w+\s+)*-r"), 85, "Hex decode piped to shell execution"),
        (re.compile(r"\bprintf\s.*\\x[0-9a-f]{2}"), 85, "printf hex escapes piped to shell"),
        (re.compile(r"\\[0-7]{3}"), 85, "Octal escape sequences piped to shell"),
    )

    def __init__(self):
        super().__init__(
            name="encoding_evasion",
            description="Decoded payload executed by a shell",
            category=HeuristicCategory.ENCODING_EVASION,
        )

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        if not _PIPE_TO_SHELL.search(lowered):
            return None
        for pattern, confidence, reason in self._DECODERS:
            if pattern.search(lowered):
                return self._finding(confidence, reason)
        return None


class VariableExecution(EvasionRule):
    """Commands assembled from variables or arrays and then executed."""

    _ASSIGNMENT = re.compile(r"\b([a-z_]\w*)=(?:\"([^\"]*)\"|'([^']*)'|([^\s;&|()]*))")
    _ARRAY_ASSIGNMENT = re.compile(r"\b[a-z_]\w*=\(([^)]*)\)")
    _VAR_REF = re.compile(r"\$\{?([a-z_]\w*)\}?")
    _EVAL_VAR = re.compile(r"\beval\s+[\"']?\$\{?[a-z_]")
    _ARRAY_EXEC = re.compile(rf"{_CMD_START}\"?\$\{{[a-z_]\w*\[[@*]\]\}}")
    _VAR_EXEC = re.compile(rf"{_CMD_START}\"?\$\{{?[a-z_]")

    def __init__(self):
        super().__init__(
            name="variable_execution",
            description="Variable or array content executed as a command",
            category=HeuristicCategory.OBFUSCATION,
        )

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        if self._EVAL_VAR.search(lowered):
            return HeuristicFinding(
                category=HeuristicCategory.INDIRECT_EXECUTION,
                confidence=85,
                reason="Variable content passed to eval",
                rule=self.name,
            )

        if self._ARRAY_EXEC.search(lowered):
            if any(is_dangerous(_strip_quotes(m)) for m in self._ARRAY_ASSIGNMENT.findall(lowered)):
                return self._finding(85, "Array holding a dangerous command expanded and executed")
            return self._finding(80, "Array expansion used as command execution")

        if self._VAR_EXEC.search(lowered):
            expanded = self._expand(lowered)
            if is_dangerous(_strip_quotes(expanded)) and not is_dangerous(_strip_quotes(lowered)):
                return self._finding(85, "Variable-built dangerous command")
        return None

    def _expand(self, text: str) -> str:
        values: dict[str, str] = {}
        for name, dq, sq, bare in self._ASSIGNMENT.findall(text):
            values[name] = dq or sq or bare
        return self._VAR_REF.sub(lambda m: values.get(m.group(1), m.group(0)), text)


class QuoteObfuscation(EvasionRule):
    """Quoting, escaping and case tricks that split a dangerous token."""

    _EMPTY_QUOTES = re.compile(r"[a-z](?:\"\"|'')[a-z]")
    _BACKSLASH_SPLIT = re.compile(r"[a-z]\\[a-z]")
    # A single-backslash \0 is a sed/grep backreference unless something
    # interprets escapes; a doubled backslash survives one round of quoting.
    _NULL_ESCAPE = re.compile(r"\\(?:x0{2}(?![0-9a-f])|0{1,3}(?![0-7]))")
    _DOUBLED_NULL_ESCAPE = re.compile(r"\\\\+(?:x0{2}(?![0-9a-f])|0{1,3}(?![0-7]))")
    _ESCAPE_CONTEXT = re.compile(r"\bprintf\b|\becho\s+(?:-[a-z]*\s+)*-[a-z]*e|\$'")

    def __init__(self):
        super().__init__(
            name="quote_obfuscation",
            description="Dangerous token reassembled from quotes, escapes or case",
            category=HeuristicCategory.OBFUSCATION,
        )

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        if "\x00" in command or self._DOUBLED_NULL_ESCAPE.search(lowered):
            return self._finding(90, "Null byte insertion detected")
        if self._NULL_ESCAPE.search(lowered) and self._ESCAPE_CONTEXT.search(lowered):
            return self._finding(90, "Null byte insertion detected")

        if self._EMPTY_QUOTES.search(lowered):
            normalized = lowered.replace('""', "").replace("''", "")
            if is_dangerous(normalized):
                return self._finding(85, "Quote-obfuscated dangerous command")

        if lowered.count('"') > 4 or lowered.count("'") > 4:
            if is_dangerous(_strip_quotes(lowered)) and not is_dangerous(lowered):
                return self._finding(80, "Concatenation-obfuscated dangerous command")

        if self._BACKSLASH_SPLIT.search(lowered):
            if is_dangerous(lowered.replace("\\", "")):
                return self._finding(80, "Backslash-obfuscated dangerous command")

        if command != lowered and is_dangerous(lowered) and not is_dangerous(command):
            return self._finding(80, "Case-obfuscated dangerous command")
        return None


class IndirectExecution(EvasionRule):
    """eval, ``<shell> -c``, sourcing from temp dirs, command substitution."""

    _EVAL = re.compile(rf"{_CMD_START}eval\s+(.*)")
    _SHELL_C = re.compile(r"\b(?:ba|z|da|k)?sh\s+(?:-\w+\s+)*-c\s+(.*)")
    _SOURCE_TMP = re.compile(rf"{_CMD_START}\s*(?:source|\.)\s+(?:/tmp/|/var/tmp/|/dev/shm/)")
    _WHOLE_SUBST = re.compile(r"^\s*(?:`[^`]+`|\$\([^)]*\))\s*$")
    _INLINE_SUBST = re.compile(r"`[^`]+`|\$\(")

    def __init__(self):
        super().__init__(
            name="indirect_execution",
            description="Command text handed to another interpreter",
            category=HeuristicCategory.INDIRECT_EXECUTION,
        )

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        best: HeuristicFinding | None = None

        def consider(confidence: int, reason: str) -> None:
            nonlocal best
            if best is None or confidence > best.confidence:
                best = self._finding(confidence, reason)

        m = self._EVAL.search(lowered)
        if m:
            if is_dangerous(_strip_quotes(m.group(1))):
                consider(90, "eval of a dangerous command")
            else:
                consider(75, "eval command detected")

        m = self._SHELL_C.search(lowered)
        if m:
            if is_dangerous(_strip_quotes(m.group(1))):
                consider(90, "Shell -c running a dangerous command")
            else:
                consider(75, "Shell with -c flag for command execution")

        if self._SOURCE_TMP.search(lowered):
            consider(85, "Sourcing script from temporary directory")

        if self._WHOLE_SUBST.search(lowered):
            consider(80, "Command substitution output executed as a command")
        elif self._INLINE_SUBST.search(lowered):
            consider(40, "Command substitution in arguments")

        return best


class NetworkExecution(EvasionRule):
    """Remote content fetched and executed, or fetch targets hidden by URL encoding."""

    _FETCH = re.compile(r"\b(?:curl|wget|fetch|aria2c)\b")
    _PROCESS_SUBST = re.compile(rf"(?:{_SHELL}|\bsource|(?:^|\s)\.)\s*<\(\s*(?:curl|wget)\b")
    _PERCENT = re.compile(r"%[0-9a-f]{2}")
    _IPV4 = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")

    def __init__(self):
        super().__init__(
            name="network_execution",
            description="Fetched content executed or fetch target obfuscated",
            category=HeuristicCategory.NETWORK_EXFILTRATION,
        )

    def check(self, command: str, lowered: str) -> HeuristicFinding | None:
        fetch = self._FETCH.search(lowered)
        if fetch:
            if _PIPE_TO_SHELL.search(lowered, fetch.end()):
                return self._finding(90, f"{fetch.group(0)} output piped to shell")
            if _PIPE_TO_INTERPRETER.search(lowered, fetch.end()):
                return self._finding(90, f"{fetch.group(0)} output piped to script interpreter")
        if self._PROCESS_SUBST.search(lowered):
            return self._finding(90, "Fetched script executed through process substitution")

        if len(self._PERCENT.findall(lowered)) >= 3:
            decoded = unquote(lowered)
            if self._IPV4.search(decoded) and not self._IPV4.search(lowered):
                return self._finding(85, "URL-encoded IP address (potential SSRF evasion)")
            if fetch:
                return self._finding(60, "URL-encoded fetch target")
        return None


DEFAULT_RULES: tuple[type[EvasionRule], ...] = (
    EncodingEvasion,
    VariableExecution,
    QuoteObfuscation,
    IndirectExecution,
    NetworkExecution,
)


class EvasionDetector:
    """Runs every evasion rule against a command and keeps the strongest finding.

    Args:
        extra_rules: Additional rules (e.g. loaded custom rules) evaluated
            after the built-in ones.
    """

    def __init__(self, extra_rules: list[EvasionRule] | None = None):
        self._rules: list[EvasionRule] = [rule() for rule in DEFAULT_RULES]
        self._rules.extend(extra_rules or [])

    @property
    def rules(self) -> list[EvasionRule]:
        return list(self._rules)

    def add_rule(self, rule: EvasionRule) -> None:
        self._rules.append(rule)

    def check(self, command: str) -> HeuristicFinding:
        """Score ``command``. Ties keep the earlier rule's reason."""
        if not command or not command.strip():
            return HeuristicFinding()

        lowered = command.lower()
        best = HeuristicFinding()
        for rule in self._rules:
            finding = rule.check(command, lowered)
            if finding is not None and finding.confidence > best.confidence:
                best = finding

        if best.confidence:
            logger.debug(
                "Evasion rule matched",
                extra={"category": best.category.value, "confidence": best.confidence},
            )
        return best

    def get_confidence(self, command: str) -> int:
        return self.check(command).confidence

    def get_reason(self, command: str) -> str:
        return self.check(command).reason
