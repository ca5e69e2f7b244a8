"""
Stability scoring and behavioral classification

Consumes one host's day-ordered history and decides whether the host is
stable (healthy or not), trending (recovering or degrading) or flapping.

Inactive days are skipped entirely: adjacency, change counts and stable
runs are all computed over the host's active days only, so a host that
drops offline and comes back at the same level has not changed.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier, HealthLevel
from .recovery import RecoveryEpisode, RecoveryTracker

logger = logging.getLogger("toolwatch.stability")


class Classification(str, Enum):
    STABLE_HEALTHY = "STABLE_HEALTHY"
    STABLE_UNHEALTHY = "STABLE_UNHEALTHY"
    RECOVERING = "RECOVERING"
    DEGRADING = "DEGRADING"
    FLAPPING = "FLAPPING"


@dataclass(frozen=True)
class ClassificationResult:
    """Stability metrics and classification for one host"""
    host_id: str
    classification: Classification
    stability_score: float
    health_change_count: int
    consecutive_days_stable: int
    days_tracked: int
    current_health_level: HealthLevel
    previous_health_level: Optional[HealthLevel] = None
    last_health_change: Optional[date] = None
    is_actionable: bool = False
    action_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host_id": self.host_id,
            "classification": self.classification.value,
            "stability_score": self.stability_score,
            "health_change_count": self.health_change_count,
            "consecutive_days_stable": self.consecutive_days_stable,
            "days_tracked": self.days_tracked,
            "current_health_level": self.current_health_level.value,
            "previous_health_level": (
                self.previous_health_level.value if self.previous_health_level else None
            ),
            "last_health_change": (
                self.last_health_change.isoformat() if self.last_health_change else None
            ),
            "is_actionable": self.is_actionable,
            "action_reason": self.action_reason,
        }


def stability_score(health_change_count: int, days_tracked: int, damping: float = 200.0) -> float:
    """
    Score 0-100, inversely proportional to change frequency.

    With the default damping a host changing level every other day scores
    0, and a single change over thirty days scores about 93.
    """
    if days_tracked <= 0:
        return 0.0
    score = 100 - (health_change_count / days_tracked) * damping
    return round(max(0.0, min(100.0, score)), 1)


class StabilityAnalyzer:
    """
    Classify a host from its health-level sequence.

    Decision order (first match wins):
        1. no active data            -> excluded (``None``)
        2. few changes, settled, FULLY_HEALTHY         -> STABLE_HEALTHY
        3. few changes, settled, PARTIALLY/UNHEALTHY   -> STABLE_UNHEALTHY
        4. at least ``flapping_threshold`` changes     -> FLAPPING
        5. recent change up from the previous level    -> RECOVERING
        6. recent change down from the previous level  -> DEGRADING
        7. anything else                               -> STABLE_* by current level

    "Settled" means the current level has held for ``stable_days_threshold``
    days, or for the whole history when fewer days were tracked. A change is
    "recent" while the current level has held for fewer than
    ``stable_days_threshold`` days.
    """

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
        recovery_tracker: Optional[RecoveryTracker] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)
        self.recovery_tracker = recovery_tracker or RecoveryTracker(self.thresholds, self.classifier)

    def analyze(
        self,
        host_id: str,
        history: Sequence[DailyHealthRecord],
        as_of: Optional[date] = None,
        episodes: Optional[Sequence[RecoveryEpisode]] = None,
    ) -> Optional[ClassificationResult]:
        """
        Analyze one host's history.

        Args:
            host_id: Host identifier
            history: Daily records for the window
            as_of: Reference date for recovery timing
            episodes: Pre-computed recovery episodes for the same history

        Returns:
            The classification, or None when the host has no active day
            in the window.
        """
        usable = self.classifier.usable_records(history)
        active = [r for r in usable if self.classifier.is_active(r)]
        if not active:
            return None

        levels = [self.classifier.classify_day(r) for r in active]
        days_tracked = len(levels)
        current = levels[-1]

        change_count = sum(1 for i in range(1, days_tracked) if levels[i] != levels[i - 1])
        run = self._current_run(levels)

        previous_level: Optional[HealthLevel] = None
        last_change: Optional[date] = None
        if run < days_tracked:
            previous_level = levels[-run - 1]
            last_change = active[-run].date

        score = stability_score(change_count, days_tracked, self.thresholds.stability_damping)

        classification, actionable, reason = self._decide(
            host_id, history, active, levels, change_count, run, as_of, episodes,
        )

        return ClassificationResult(
            host_id=host_id,
            classification=classification,
            stability_score=score,
            health_change_count=change_count,
            consecutive_days_stable=run,
            days_tracked=days_tracked,
            current_health_level=current,
            previous_health_level=previous_level,
            last_health_change=last_change,
            is_actionable=actionable,
            action_reason=reason,
        )

    @staticmethod
    def _current_run(levels: List[HealthLevel]) -> int:
        run = 1
        for i in range(len(levels) - 2, -1, -1):
            if levels[i] != levels[-1]:
                break
            run += 1
        return run

    def _decide(
        self,
        host_id: str,
        history: Sequence[DailyHealthRecord],
        active: List[DailyHealthRecord],
        levels: List[HealthLevel],
        change_count: int,
        run: int,
        as_of: Optional[date],
        episodes: Optional[Sequence[RecoveryEpisode]],
    ) -> Tuple[Classification, bool, Optional[str]]:
        current = levels[-1]
        settled = run >= min(self.thresholds.stable_days_threshold, len(levels))
        few_changes = change_count <= self.thresholds.low_change_threshold

        if few_changes and settled:
            return self._stable(active)

        if change_count >= self.thresholds.flapping_threshold:
            return Classification.FLAPPING, False, None

        if run < self.thresholds.stable_days_threshold:
            previous = levels[-run - 1]
            if current.is_better_than(previous):
                if episodes is None:
                    episodes = self.recovery_tracker.find_episodes(host_id, history, as_of=as_of)
                open_episode = RecoveryTracker.latest_open_episode(episodes)
                if open_episode is not None and open_episode.is_stuck:
                    return (
                        Classification.RECOVERING,
                        True,
                        open_episode.explanation(self.thresholds.normal_recovery_days),
                    )
                return Classification.RECOVERING, False, None
            return Classification.DEGRADING, True, self._degradation_reason(active[-run - 1], active[-1])

        # A few changes long ago; the host has settled at its current level
        return self._stable(active)

    def _stable(self, active: List[DailyHealthRecord]) -> Tuple[Classification, bool, Optional[str]]:
        if self.classifier.classify_day(active[-1]) == HealthLevel.FULLY_HEALTHY:
            return Classification.STABLE_HEALTHY, False, None
        missing = self.classifier.missing_tools(active[-1])
        reason = "Chronic tooling gap"
        if missing:
            reason += f": missing {', '.join(missing)}"
        return Classification.STABLE_UNHEALTHY, True, reason

    def _degradation_reason(self, before: DailyHealthRecord, now: DailyHealthRecord) -> str:
        lost = [
            tool for tool in self.classifier.monitored_tools
            if self.classifier.tool_reporting(before, tool)
            and not self.classifier.tool_reporting(now, tool)
        ]
        if lost:
            return f"Tools stopped reporting: {', '.join(lost)}"
        before_level = self.classifier.classify_day(before)
        now_level = self.classifier.classify_day(now)
        return f"Health declined from {before_level.value} to {now_level.value}"
