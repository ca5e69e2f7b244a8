"""
Recovery episode detection

An episode opens on the first active day whose health level is strictly
better than the preceding active day, and stays open while the level does
not decline. It is confirmed as FULLY_RECOVERED once the host has held
FULLY_HEALTHY for at least a day and the normal recovery window has passed;
the episode ends on the day FULLY_HEALTHY was first reached. A confirmed
recovery only counts while it holds: any later decline retracts it.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier, HealthLevel

logger = logging.getLogger("toolwatch.recovery")


class RecoveryStatus(str, Enum):
    NORMAL_RECOVERY = "NORMAL_RECOVERY"
    STUCK_RECOVERY = "STUCK_RECOVERY"
    FULLY_RECOVERED = "FULLY_RECOVERED"


@dataclass(frozen=True)
class RecoveryEpisode:
    """A contiguous climb from a worse health level"""
    host_id: str
    start_date: date
    end_date: Optional[date]  # None while the episode is ongoing
    status: RecoveryStatus
    days_since_start: int
    level_before: HealthLevel
    current_level: HealthLevel
    tools_recovered: Tuple[str, ...] = ()

    @property
    def is_ongoing(self) -> bool:
        return self.end_date is None

    @property
    def is_stuck(self) -> bool:
        return self.status == RecoveryStatus.STUCK_RECOVERY

    @property
    def duration_days(self) -> Optional[int]:
        if self.end_date is None:
            return None
        return (self.end_date - self.start_date).days

    def explanation(self, normal_days: int = 2) -> str:
        if self.status == RecoveryStatus.FULLY_RECOVERED:
            return f"Recovered to fully healthy in {self.duration_days} days"
        if self.status == RecoveryStatus.STUCK_RECOVERY:
            return (
                f"Recovery taking longer than expected ({self.days_since_start} days). "
                "May need investigation."
            )
        return (
            f"Recovering normally ({self.days_since_start} days). "
            f"Expected to complete within {normal_days} days."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host_id": self.host_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value,
            "days_since_start": self.days_since_start,
            "duration_days": self.duration_days,
            "level_before": self.level_before.value,
            "current_level": self.current_level.value,
            "tools_recovered": list(self.tools_recovered),
            "is_stuck": self.is_stuck,
        }


@dataclass(frozen=True)
class RecoverySummary:
    total_recovering: int = 0
    normal_recovery: int = 0
    stuck_recovery: int = 0
    fully_recovered: int = 0
    average_recovery_time: float = 0.0
    stuck_hosts: Tuple[str, ...] = ()
    recovering_hosts: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_recovering": self.total_recovering,
            "normal_recovery": self.normal_recovery,
            "stuck_recovery": self.stuck_recovery,
            "fully_recovered": self.fully_recovered,
            "average_recovery_time": self.average_recovery_time,
            "stuck_hosts": list(self.stuck_hosts),
            "recovering_hosts": list(self.recovering_hosts),
        }


@dataclass
class _OpenEpisode:
    start: int
    full_reached: Optional[int] = None


class RecoveryTracker:
    """Find recovery episodes in a host's history and grade their progress"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)

    def find_episodes(
        self,
        host_id: str,
        history: Sequence[DailyHealthRecord],
        as_of: Optional[date] = None,
    ) -> List[RecoveryEpisode]:
        """
        Detect recovery episodes within one host's history.

        Args:
            host_id: Host the history belongs to
            history: Daily records (any order; malformed records are ignored)
            as_of: Reference date for ``days_since_start``; defaults to the
                latest date in the history

        Returns:
            At most one episode: the confirmed recovery the host still
            holds, or the recovery in progress. Episodes followed by a
            decline, confirmed or not, are not reported.
        """
        usable = self.classifier.usable_records(history)
        if not usable:
            return []
        if as_of is None:
            as_of = usable[-1].date

        active = [r for r in usable if self.classifier.is_active(r)]
        levels = [self.classifier.classify_day(r) for r in active]

        recovered: Optional[RecoveryEpisode] = None
        current: Optional[_OpenEpisode] = None

        for i in range(1, len(active)):
            prev_level, level = levels[i - 1], levels[i]

            if level.is_worse_than(prev_level):
                if current is not None:
                    logger.debug(
                        f"{host_id}: recovery starting {active[current.start].date} "
                        f"relapsed on {active[i].date}"
                    )
                    current = None
                if recovered is not None:
                    logger.debug(
                        f"{host_id}: recovery confirmed on {recovered.end_date} "
                        f"did not hold past {active[i].date}"
                    )
                    recovered = None
                continue

            if current is None:
                if level.is_better_than(prev_level):
                    current = _OpenEpisode(start=i)
                    if level == HealthLevel.FULLY_HEALTHY:
                        current.full_reached = i
                continue

            if level == HealthLevel.FULLY_HEALTHY and current.full_reached is None:
                current.full_reached = i

            if current.full_reached is not None and self._confirmed(active, current, i):
                recovered = self._build(
                    host_id, active, levels, current, last=i,
                    status=RecoveryStatus.FULLY_RECOVERED, as_of=as_of,
                )
                current = None

        if recovered is not None:
            return [recovered]

        if current is not None:
            last = len(active) - 1
            days_since = (as_of - active[current.start].date).days
            status = self._ongoing_status(days_since, levels[last])
            return [self._build(
                host_id, active, levels, current, last=last,
                status=status, as_of=as_of,
            )]

        return []

    def _confirmed(self, active: List[DailyHealthRecord], episode: _OpenEpisode, i: int) -> bool:
        held = (active[i].date - active[episode.full_reached].date).days
        elapsed = (active[i].date - active[episode.start].date).days
        return held >= 1 and elapsed >= self.thresholds.normal_recovery_days

    def _ongoing_status(self, days_since: int, level: HealthLevel) -> RecoveryStatus:
        # Grey zone between the normal and stuck thresholds counts as normal
        if days_since < self.thresholds.normal_recovery_days:
            return RecoveryStatus.NORMAL_RECOVERY
        if level == HealthLevel.FULLY_HEALTHY:
            return RecoveryStatus.NORMAL_RECOVERY
        if days_since > self.thresholds.stuck_recovery_days:
            return RecoveryStatus.STUCK_RECOVERY
        return RecoveryStatus.NORMAL_RECOVERY

    def _build(
        self,
        host_id: str,
        active: List[DailyHealthRecord],
        levels: List[HealthLevel],
        episode: _OpenEpisode,
        last: int,
        status: RecoveryStatus,
        as_of: date,
    ) -> RecoveryEpisode:
        before = active[episode.start - 1]
        latest = active[last]
        tools_recovered = tuple(
            tool for tool in self.classifier.monitored_tools
            if not self.classifier.tool_reporting(before, tool)
            and self.classifier.tool_reporting(latest, tool)
        )
        start_date = active[episode.start].date
        return RecoveryEpisode(
            host_id=host_id,
            start_date=start_date,
            end_date=(
                active[episode.full_reached].date
                if status == RecoveryStatus.FULLY_RECOVERED else None
            ),
            status=status,
            days_since_start=(as_of - start_date).days,
            level_before=levels[episode.start - 1],
            current_level=levels[last],
            tools_recovered=tools_recovered,
        )

    @staticmethod
    def latest_open_episode(episodes: Sequence[RecoveryEpisode]) -> Optional[RecoveryEpisode]:
        """The most recent episode, if it is still in progress"""
        if episodes and episodes[-1].is_ongoing:
            return episodes[-1]
        return None


def average_recovery_time(episodes: Iterable[RecoveryEpisode]) -> float:
    """Mean days from start to reaching FULLY_HEALTHY; 0 when nothing recovered"""
    durations = [
        e.duration_days for e in episodes
        if e.status == RecoveryStatus.FULLY_RECOVERED and e.duration_days is not None
    ]
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 1)


def summarize_recoveries(episodes: Iterable[RecoveryEpisode]) -> RecoverySummary:
    """Aggregate episodes from the whole evaluated population"""
    episodes = list(episodes)
    normal = [e for e in episodes if e.status == RecoveryStatus.NORMAL_RECOVERY]
    stuck = [e for e in episodes if e.status == RecoveryStatus.STUCK_RECOVERY]
    recovered = [e for e in episodes if e.status == RecoveryStatus.FULLY_RECOVERED]

    return RecoverySummary(
        total_recovering=len(normal) + len(stuck),
        normal_recovery=len(normal),
        stuck_recovery=len(stuck),
        fully_recovered=len(recovered),
        average_recovery_time=average_recovery_time(recovered),
        stuck_hosts=tuple(sorted({e.host_id for e in stuck})),
        recovering_hosts=tuple(sorted({e.host_id for e in normal + stuck})),
    )
