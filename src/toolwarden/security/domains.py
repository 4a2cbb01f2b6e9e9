"""
toolwarden Domain / SSRF Validator

Classifies the host of a network-bound tool call into trust tiers:

    TIER1_BLOCKED    compiled-in loopback, private, link-local and cloud
                     metadata targets. Always checked first, never
                     overridable by list files or reloads.
    USER_BLOCKED     custom-blocked-domains.conf
    TIER2_SENSITIVE  *-sensitive-domains.conf → WARN
    TIER3_SAFE       *-safe-domains.conf → ALLOW
    UNCLASSIFIED     configurable default policy (warn by default)

IP literals are recognised in every notation the resolver accepts
(dotted, single decimal, hex, octal, short form, and IPv4 embedded in
IPv6 as mapped, 6to4 or NAT64 addresses), so
``http://2130706433/`` and ``http://0x7f.1/`` are blocked like
``http://127.0.0.1/``. DNS is not resolved; hostnames that resolve to
internal addresses are only caught through the name lists.
"""

from __future__ import annotations

import hashlib
import ipaddress
import json
import logging
import os
import re
import socket
import tempfile
from dataclasses import dataclass
from importlib.resources import files
from pathlib import Path
from urllib.parse import unquote

from pydantic import BaseModel

from toolwarden.core.models import DomainClassification, DomainTier, Verdict
from toolwarden.exceptions import ConfigLoadError, InjectionAttemptError

logger = logging.getLogger(__name__)

MAX_HOST_LENGTH = 253

SYSTEM_SAFE_FILE = "system-safe-domains.conf"
SYSTEM_SENSITIVE_FILE = "system-sensitive-domains.conf"
CUSTOM_SAFE_FILE = "custom-safe-domains.conf"
CUSTOM_SENSITIVE_FILE = "custom-sensitive-domains.conf"
CUSTOM_BLOCKED_FILE = "custom-blocked-domains.conf"

LIST_FILES: dict[str, tuple[str, ...]] = {
    "safe": (SYSTEM_SAFE_FILE, CUSTOM_SAFE_FILE),
    "sensitive": (SYSTEM_SENSITIVE_FILE, CUSTOM_SENSITIVE_FILE),
    "blocked": (CUSTOM_BLOCKED_FILE,),
}
CUSTOM_FILES: dict[str, str] = {
    "safe": CUSTOM_SAFE_FILE,
    "sensitive": CUSTOM_SENSITIVE_FILE,
    "blocked": CUSTOM_BLOCKED_FILE,
}

_HOST_CHARS = re.compile(r"^[a-z0-9._:-]+$")
_ENTRY_CHARS = re.compile(r"^[a-z0-9.*:/_-]+$")
_SHELL_META = re.compile(r"[;&|`$<>(){}\[\]\\'\"!#~\s\x00-\x1f\x7f]")
_LOOSE_IPV4 = re.compile(r"^(?:0x[0-9a-f]+|[0-9]+)(?:\.(?:0x[0-9a-f]+|[0-9]+)){0,3}$")
_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_NAT64_PREFIX = ipaddress.IPv6Network("64:ff9b::/96")

_POLICY_VERDICTS = {"allow": Verdict.ALLOW, "warn": Verdict.WARN, "block": Verdict.BLOCK}


# ─── TIER1: immutable critical block set ───────────────────


@dataclass(frozen=True)
class BlockedTarget:
    """One TIER1 entry: a hostname, a hostname suffix or an IP network."""

    entry: str
    kind: str  # "host" | "suffix" | "network"
    reason: str


TIER1_TARGETS: tuple[BlockedTarget, ...] = (
    BlockedTarget("localhost", "host", "loopback hostname"),
    BlockedTarget(".localhost", "suffix", "loopback hostname"),
    BlockedTarget("localhost.localdomain", "host", "loopback hostname"),
    BlockedTarget("metadata", "host", "cloud metadata service"),
    BlockedTarget("metadata.google.internal", "host", "cloud metadata service"),
    BlockedTarget("metadata.goog", "host", "cloud metadata service"),
    BlockedTarget("instance-data", "host", "cloud metadata service"),
    BlockedTarget("instance-data.ec2.internal", "host", "cloud metadata service"),
    BlockedTarget("kubernetes.default", "host", "kubernetes API service"),
    BlockedTarget("kubernetes.default.svc", "host", "kubernetes API service"),
    BlockedTarget(".svc.cluster.local", "suffix", "kubernetes cluster service"),
    BlockedTarget("0.0.0.0/8", "network", "unspecified address"),
    BlockedTarget("10.0.0.0/8", "network", "private network"),
    BlockedTarget("100.64.0.0/10", "network", "carrier-grade NAT"),
    BlockedTarget("127.0.0.0/8", "network", "loopback"),
    BlockedTarget("169.254.0.0/16", "network", "link-local / cloud metadata"),
    BlockedTarget("172.16.0.0/12", "network", "private network"),
    BlockedTarget("192.168.0.0/16", "network", "private network"),
    BlockedTarget("224.0.0.0/4", "network", "multicast"),
    BlockedTarget("240.0.0.0/4", "network", "reserved"),
    BlockedTarget("::/128", "network", "unspecified address"),
    BlockedTarget("::1/128", "network", "loopback"),
    BlockedTarget("fc00::/7", "network", "unique local / cloud metadata"),
    BlockedTarget("fe80::/10", "network", "link-local"),
    BlockedTarget("ff00::/8", "network", "multicast"),
)


def _compute_tier1_hash(targets: tuple[BlockedTarget, ...]) -> str:
    """Compute SHA-256 integrity hash of the TIER1 set."""
    content = json.dumps(
        [{"entry": t.entry, "kind": t.kind, "reason": t.reason} for t in targets],
        sort_keys=True,
    )
    return hashlib.sha256(content.encode()).hexdigest()


TIER1_HASH = _compute_tier1_hash(TIER1_TARGETS)

_TIER1_HOSTS = {t.entry: t for t in TIER1_TARGETS if t.kind == "host"}
_TIER1_SUFFIXES = tuple(t for t in TIER1_TARGETS if t.kind == "suffix")
_TIER1_NETWORKS = tuple(
    (ipaddress.ip_network(t.entry), t) for t in TIER1_TARGETS if t.kind == "network"
)


def verify_tier1_integrity() -> bool:
    """Check that the TIER1 set has not been tampered with at runtime."""
    return _compute_tier1_hash(TIER1_TARGETS) == TIER1_HASH


# ─── Host normalization ────────────────────────────────────


def extract_host(url: str) -> str:
    """Reduce a URL, ``host:port`` or bare host to a normalized hostname.

    Percent-decodes, strips scheme, userinfo, path, query, fragment and
    port (bracketed IPv6 supported), drops a trailing dot, lowercases.
    """
    text = unquote(url.strip())
    text = _SCHEME.sub("", text)
    if text.startswith("//"):
        text = text[2:]
    text = re.split(r"[/?#\\]", text, maxsplit=1)[0]
    text = text.rpartition("@")[2]

    if text.startswith("["):
        host = text[1:].partition("]")[0]
    elif text.count(":") == 1:
        host = text.partition(":")[0]
    else:
        host = text

    host = host.partition("%")[0] if ":" in host else host
    return host.strip().rstrip(".").lower()


def is_valid_host(host: str) -> bool:
    if not host or len(host) > MAX_HOST_LENGTH:
        return False
    if ".." in host:
        return False
    return bool(_HOST_CHARS.match(host))


def parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Interpret ``host`` as an IP literal in any accepted notation."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if not _LOOSE_IPV4.match(host):
            return None
        try:
            ip = ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped
        if ip.sixtofour is not None:
            return ip.sixtofour
        if ip in _NAT64_PREFIX:
            return ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF)
    return ip


def tier1_match(host: str) -> BlockedTarget | None:
    """Return the TIER1 entry covering ``host`` (already normalized), if any."""
    if host in _TIER1_HOSTS:
        return _TIER1_HOSTS[host]
    for target in _TIER1_SUFFIXES:
        if host.endswith(target.entry):
            return target
    ip = parse_ip(host)
    if ip is not None:
        for network, target in _TIER1_NETWORKS:
            if ip.version == network.version and ip in network:
                return target
    return None


# ─── Mutable tier lists ────────────────────────────────────


class DomainList:
    """A set of list-file entries with suffix, wildcard, prefix and CIDR matching.

    ``github.com`` matches ``github.com`` and ``api.github.com`` but not
    ``evilgithub.com``; ``*.github.com`` matches subdomains only; ``10.*``
    matches by prefix; ``203.0.113.0/24`` matches IP literals in range.
    """

    def __init__(self, entries: list[str] | None = None):
        self._exact: set[str] = set()
        self._wildcards: set[str] = set()
        self._prefixes: set[str] = set()
        self._networks: dict[str, ipaddress.IPv4Network | ipaddress.IPv6Network] = {}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: str) -> None:
        entry = entry.strip().rstrip(".").lower()
        if "/" in entry:
            self._networks[entry] = ipaddress.ip_network(entry, strict=False)
        elif entry.startswith("*."):
            self._wildcards.add(entry[2:])
        elif entry.endswith(".*"):
            self._prefixes.add(entry[:-1])
        else:
            self._exact.add(entry)

    def entries(self) -> list[str]:
        return sorted(
            self._exact
            | {f"*.{w}" for w in self._wildcards}
            | {f"{p}*" for p in self._prefixes}
            | set(self._networks)
        )

    def __len__(self) -> int:
        return len(self.entries())

    def __contains__(self, entry: str) -> bool:
        return entry.strip().rstrip(".").lower() in self.entries()

    def match(self, host: str) -> str | None:
        """Return the entry that covers ``host``, or None."""
        if host in self._exact:
            return host
        labels = host.split(".")
        for i in range(1, len(labels)):
            parent = ".".join(labels[i:])
            if parent in self._exact:
                return parent
            if parent in self._wildcards:
                return f"*.{parent}"
        for prefix in self._prefixes:
            if host.startswith(prefix):
                return f"{prefix}*"
        if self._networks:
            ip = parse_ip(host)
            if ip is not None:
                for entry, network in self._networks.items():
                    if ip.version == network.version and ip in network:
                        return entry
        return None


def is_valid_entry(entry: str) -> bool:
    if not entry or len(entry) > MAX_HOST_LENGTH or ".." in entry:
        return False
    if not _ENTRY_CHARS.match(entry):
        return False
    if "/" in entry:
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError:
            return False
    return True


def read_list_file(path: Path) -> list[str]:
    """Read one list file. Missing files are empty; symlinks are skipped.

    Raises:
        ConfigLoadError: If the file exists but cannot be read or decoded.
    """
    if path.is_symlink():
        logger.warning("Skipping symlinked domain list: %s", path)
        return []
    if not path.exists():
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigLoadError(str(path), str(e)) from e

    entries: list[str] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        entry = line.partition("#")[0].strip().lower()
        if not entry:
            continue
        if not is_valid_entry(entry):
            logger.warning("Skipping invalid domain entry %s:%d: %r", path.name, lineno, entry[:80])
            continue
        entries.append(entry)
    return entries


class DomainLists:
    """The three mutable tiers loaded from a config directory."""

    def __init__(self) -> None:
        self.safe = DomainList()
        self.sensitive = DomainList()
        self.blocked = DomainList()

    @classmethod
    def load(cls, config_dir: Path) -> DomainLists:
        """Load every list file under ``config_dir``.

        Raises:
            ConfigLoadError: If any existing list file is unreadable.
        """
        lists = cls()
        for list_type, filenames in LIST_FILES.items():
            target: DomainList = getattr(lists, list_type)
            for filename in filenames:
                for entry in read_list_file(config_dir / filename):
                    target.add(entry)
        return lists

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "blocked": self.blocked.entries(),
            "sensitive": self.sensitive.entries(),
            "safe": self.safe.entries(),
        }


# ─── Validator ─────────────────────────────────────────────


class DomainDecision(BaseModel):
    """Verdict for one host together with its classification."""

    verdict: Verdict
    classification: DomainClassification
    reason: str
    valid: bool = True


class DomainValidator:
    """Tiered host validator.

    Args:
        config_dir: Directory holding the list files.
        default_policy: Verdict for unclassified hosts: allow, warn or block.
    """

    def __init__(self, config_dir: str | Path, default_policy: str = "warn"):
        if default_policy not in _POLICY_VERDICTS:
            raise ValueError(f"default_policy must be allow, warn or block, got {default_policy!r}")
        self.config_dir = Path(config_dir).expanduser()
        self.default_policy = default_policy
        self.degraded = False
        self._lists = DomainLists()
        self.reload()

    def reload(self) -> None:
        """Rebuild the mutable tiers from disk. TIER1 is unaffected.

        An unreadable list drops every mutable tier (TIER1-only mode) and
        raises the unclassified default to at least WARN.
        """
        try:
            self._lists = DomainLists.load(self.config_dir)
            self.degraded = False
        except ConfigLoadError as e:
            self._lists = DomainLists()
            self.degraded = True
            logger.error("Domain lists unavailable, running TIER1-only: %s", e)

    @property
    def lists(self) -> DomainLists:
        return self._lists

    def classify(self, host: str) -> DomainClassification:
        """Classify a host or URL. Malformed hosts classify as UNCLASSIFIED."""
        return self.check(host).classification

    def check(self, host: str, context: str = "") -> DomainDecision:
        """Classify ``host`` and map its tier to a verdict.

        A TIER1 hash mismatch blocks every host.
        """
        normalized = extract_host(host)
        if not verify_tier1_integrity():
            logger.critical(
                "TIER1 integrity compromised: hash mismatch",
                extra={"host": normalized[:MAX_HOST_LENGTH], "action": context or None},
            )
            return DomainDecision(
                verdict=Verdict.BLOCK,
                classification=DomainClassification(
                    host=normalized[:MAX_HOST_LENGTH],
                    tier=DomainTier.TIER1_BLOCKED,
                    matched_rule="integrity-check",
                ),
                reason="TIER1 block set failed its integrity check; refusing all hosts",
            )
        if not is_valid_host(normalized):
            return DomainDecision(
                verdict=Verdict.BLOCK,
                classification=DomainClassification(host=normalized[:MAX_HOST_LENGTH], matched_rule="invalid-host"),
                reason=f"Invalid host format: {host[:80]!r}",
                valid=False,
            )

        target = tier1_match(normalized)
        if target is not None:
            return DomainDecision(
                verdict=Verdict.BLOCK,
                classification=DomainClassification(
                    host=normalized, tier=DomainTier.TIER1_BLOCKED, matched_rule=target.entry
                ),
                reason=f"Blocked {target.reason}: {normalized}",
            )

        for tier, domain_list, verdict, label in (
            (DomainTier.USER_BLOCKED, self._lists.blocked, Verdict.BLOCK, "blocked by user list"),
            (DomainTier.TIER2_SENSITIVE, self._lists.sensitive, Verdict.WARN, "sensitive domain"),
            (DomainTier.TIER3_SAFE, self._lists.safe, Verdict.ALLOW, "safe domain"),
        ):
            matched = domain_list.match(normalized)
            if matched is not None:
                return DomainDecision(
                    verdict=verdict,
                    classification=DomainClassification(host=normalized, tier=tier, matched_rule=matched),
                    reason=f"{normalized}: {label} ({matched})",
                )

        verdict = _POLICY_VERDICTS[self.default_policy]
        if self.degraded:
            verdict = max(verdict, Verdict.WARN)
        return DomainDecision(
            verdict=verdict,
            classification=DomainClassification(host=normalized),
            reason=f"{normalized}: unclassified domain (policy: {verdict.name.lower()})",
        )

    def validate(self, host: str, context: str = "") -> Verdict:
        """Return ALLOW (0), WARN (1) or BLOCK (2) for ``host``."""
        decision = self.check(host, context)
        logger.debug(
            "Domain validated",
            extra={
                "host": decision.classification.host,
                "tier": decision.classification.tier.value,
                "verdict": decision.verdict.name,
                "action": context or None,
            },
        )
        return decision.verdict

    def is_safe(self, host: str) -> bool:
        return self.check(host).classification.tier == DomainTier.TIER3_SAFE

    def is_blocked(self, host: str) -> bool:
        return self.check(host).verdict == Verdict.BLOCK

    def add_custom(self, host: str, list_type: str) -> bool:
        """Append an entry to a custom list file and reload.

        Returns False when the entry is already present.

        Raises:
            InjectionAttemptError: If the entry carries shell metacharacters.
            ValueError: On an unknown list type, a malformed entry, or an
                attempt to mark a TIER1 target as safe or sensitive.
        """
        if list_type not in CUSTOM_FILES:
            raise ValueError(f"list_type must be one of {sorted(CUSTOM_FILES)}, got {list_type!r}")

        raw = host.strip()
        if _SHELL_META.search(raw):
            logger.warning("Rejected domain list entry with unsafe characters", extra={"action": "add_custom"})
            raise InjectionAttemptError(raw[:120])

        entry = raw.rstrip(".").lower()
        if not is_valid_entry(entry):
            raise ValueError(f"Invalid domain entry: {raw!r}")

        probe = entry[2:] if entry.startswith("*.") else entry
        if tier1_match(probe) is not None:
            if list_type == "blocked":
                return False
            raise ValueError(f"{entry} is permanently blocked and cannot be added to the {list_type} list")

        path = self.config_dir / CUSTOM_FILES[list_type]
        if path.is_symlink():
            raise ValueError(f"Refusing to write symlinked list file: {path}")
        existing = read_list_file(path)
        if entry in existing:
            return False

        self.config_dir.mkdir(parents=True, exist_ok=True)
        content = path.read_text(encoding="utf-8") if path.exists() else ""
        if content and not content.endswith("\n"):
            content += "\n"
        _atomic_write(path, content + entry + "\n")
        logger.info("Added %s to %s list", entry, list_type)
        self.reload()
        return True


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def install_default_lists(config_dir: str | Path, overwrite: bool = False) -> list[Path]:
    """Copy the shipped system lists into ``config_dir``."""
    target_dir = Path(config_dir).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for filename in (SYSTEM_SAFE_FILE, SYSTEM_SENSITIVE_FILE):
        dest = target_dir / filename
        if dest.exists() and not overwrite:
            continue
        source = files("toolwarden") / "data" / filename
        _atomic_write(dest, source.read_text(encoding="utf-8"))
        written.append(dest)
    return written
