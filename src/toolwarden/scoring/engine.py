"""
toolwarden Trust Scoring Engine

Session-scoped trust score in [0, 100]. Every gate decision that is not
a clean ALLOW deducts a severity-dependent penalty; the status band is a
pure function of the value:

    >= 80  EXCELLENT
    60-79  GOOD
    40-59  WARNING
    25-39  CRITICAL
    <  25  BLOCKED

The pipeline never raises the score. ``reset()`` is the explicit
recovery path for an operator.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from toolwarden.config import PenaltyConfig
from toolwarden.core.models import ScoreChange, TrustScore, TrustStatus, ViolationSeverity
from toolwarden.storage.session_store import SessionStore

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100
HISTORY_LIMIT = 50

_SCORE_KEY = "trust:score"
_HISTORY_KEY = "trust:history"

_STATUS_BANDS: tuple[tuple[int, TrustStatus], ...] = (
    (80, TrustStatus.EXCELLENT),
    (60, TrustStatus.GOOD),
    (40, TrustStatus.WARNING),
    (25, TrustStatus.CRITICAL),
)


def clamp(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


class TrustScoringEngine:
    """Tracks and penalizes the trust score of one session.

    Args:
        store: Session store holding the score and its history.
        penalties: Deduction per ViolationSeverity.
        starting_value: Score assigned by ``init()`` and ``reset()``.
    """

    def __init__(
        self,
        store: SessionStore,
        penalties: PenaltyConfig | None = None,
        starting_value: int = MAX_SCORE,
    ):
        self._store = store
        self._penalties = penalties or PenaltyConfig()
        self._starting_value = clamp(starting_value)

    @staticmethod
    def get_status(value: int) -> TrustStatus:
        """Map a score onto its status band."""
        for floor, status in _STATUS_BANDS:
            if value >= floor:
                return status
        return TrustStatus.BLOCKED

    def penalty_for(self, severity: ViolationSeverity) -> int:
        return getattr(self._penalties, severity.value.lower())

    def init(self, starting_value: int | None = None) -> int:
        """Initialize the score if the session has none yet. Returns the score."""
        start = self._starting_value if starting_value is None else clamp(starting_value)
        return self._store.update(_SCORE_KEY, lambda current: start if current is None else current)

    def get_score(self) -> int:
        return clamp(self._store.get(_SCORE_KEY, self._starting_value))

    def get_trust(self) -> TrustScore:
        value = self.get_score()
        return TrustScore(value=value, status=self.get_status(value))

    def set_score(self, value: int, reason: str = "set") -> int:
        """Overwrite the score, clamped to [0, 100]."""
        new_value = clamp(value)
        previous: list[int] = []

        def _replace(current: int | None) -> int:
            previous.append(self._starting_value if current is None else current)
            return new_value

        self._store.update(_SCORE_KEY, _replace)
        self._record(previous[-1], new_value, None, reason)
        return new_value

    def apply_penalty(self, severity: ViolationSeverity, reason: str = "") -> int:
        """Deduct the penalty for ``severity`` atomically. Returns the new score."""
        amount = self.penalty_for(severity)
        previous: list[int] = []

        def _deduct(current: int | None) -> int:
            value = self._starting_value if current is None else current
            previous.append(value)
            return clamp(value - amount)

        new_value = self._store.update(_SCORE_KEY, _deduct)
        self._record(previous[-1], new_value, severity, reason)

        old_status = self.get_status(previous[-1])
        new_status = self.get_status(new_value)
        if new_status != old_status:
            logger.warning(
                "Trust status changed from %s to %s",
                old_status.value,
                new_status.value,
                extra={"session_id": self._store.session_id, "score": new_value, "status": new_status.value},
            )
        return new_value

    def reset(self) -> int:
        """Restore the starting value and drop the history."""
        self._store.set(_SCORE_KEY, self._starting_value)
        self._store.delete(_HISTORY_KEY)
        logger.info(
            "Trust score reset",
            extra={"session_id": self._store.session_id, "score": self._starting_value},
        )
        return self._starting_value

    # ── History ─────────────────────────────────────────────

    def history(self) -> list[ScoreChange]:
        return [ScoreChange.model_validate(c) for c in self._store.get(_HISTORY_KEY, [])]

    def trend(self, window: int = 10) -> str:
        """Direction of the last ``window`` changes: down, stable or up."""
        changes = self.history()[-window:]
        if not changes:
            return "stable"
        delta = changes[-1].value - changes[0].previous
        if delta < 0:
            return "down"
        if delta > 0:
            return "up"
        return "stable"

    def _record(self, previous: int, value: int, severity: ViolationSeverity | None, reason: str) -> None:
        change = ScoreChange(
            timestamp=datetime.now(UTC).isoformat(),
            previous=previous,
            value=value,
            severity=severity,
            reason=reason[:200],
        ).model_dump(mode="json")
        self._store.update(
            _HISTORY_KEY,
            lambda entries: (entries or [])[-(HISTORY_LIMIT - 1):] + [change],
        )
