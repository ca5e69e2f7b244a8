"""
Fleet health over time

Builds the day-by-day health rate of a population across the evaluation
window, and lists hosts that dropped out of the latest snapshot.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier, HealthLevel, HostHistory

logger = logging.getLogger("toolwatch.trending")


@dataclass(frozen=True)
class TrendPoint:
    """Fleet health on one day"""
    date: date
    total_systems: int
    active_systems: int
    levels: Mapping[str, int]
    new_systems: int
    health_rate: float
    tool_health: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total_systems": self.total_systems,
            "active_systems": self.active_systems,
            **dict(self.levels),
            "new_systems": self.new_systems,
            "health_rate": self.health_rate,
            "tool_health": dict(self.tool_health),
        }


@dataclass(frozen=True)
class HealthTrend:
    start_date: Optional[date]
    end_date: Optional[date]
    days: int
    points: Tuple[TrendPoint, ...] = ()
    systems_gained_health: int = 0
    systems_lost_health: int = 0

    @property
    def health_improvement(self) -> float:
        """Change in health rate from the first to the last day with data"""
        if not self.points:
            return 0.0
        return round(self.points[-1].health_rate - self.points[0].health_rate, 1)

    @property
    def new_systems_discovered(self) -> int:
        if not self.points:
            return 0
        return self.points[-1].total_systems - self.points[0].total_systems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": {
                "start_date": self.start_date.isoformat() if self.start_date else None,
                "end_date": self.end_date.isoformat() if self.end_date else None,
                "days": self.days,
            },
            "trend_data": [p.to_dict() for p in self.points],
            "summary": {
                "total_systems_start": self.points[0].total_systems if self.points else 0,
                "total_systems_now": self.points[-1].total_systems if self.points else 0,
                "health_improvement": self.health_improvement,
                "new_systems_discovered": self.new_systems_discovered,
                "systems_gained_health": self.systems_gained_health,
                "systems_lost_health": self.systems_lost_health,
            },
        }


@dataclass(frozen=True)
class MissingSystem:
    host_id: str
    fullname: Optional[str]
    environment: Optional[str]
    last_seen: Optional[date]
    days_since_last_seen: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shortname": self.host_id,
            "fullname": self.fullname,
            "environment": self.environment,
            "last_seen_date": self.last_seen.isoformat() if self.last_seen else None,
            "days_since_last_seen": self.days_since_last_seen,
        }


@dataclass(frozen=True)
class MissingSystemsReport:
    as_of: Optional[date]
    systems: Tuple[MissingSystem, ...] = ()

    @property
    def host_ids(self) -> List[str]:
        return [s.host_id for s in self.systems]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat() if self.as_of else None,
            "count": len(self.systems),
            "systems": [s.to_dict() for s in self.systems],
        }


class HealthTrendAnalyzer:
    """Population health per day, and hosts absent from the current snapshot"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)

    def analyze_health_trend(
        self,
        histories: Mapping[str, HostHistory],
        window_days: int,
        as_of: Optional[date],
    ) -> HealthTrend:
        """
        Compute the daily fleet health rate over a window.

        Args:
            histories: host id -> HostHistory, already trimmed to the window
            window_days: Window length, used for the reported date range
            as_of: Last day of the window; None when the population has no data

        Returns:
            One TrendPoint per day that has at least one record, oldest
            first, plus how many hosts gained or lost health between the
            first and last of those days.
        """
        if as_of is None:
            return HealthTrend(None, None, window_days)
        start = as_of - timedelta(days=window_days - 1)

        by_date: Dict[date, Dict[str, DailyHealthRecord]] = {}
        for host_id in sorted(histories):
            for record in self.classifier.usable_records(histories[host_id].records):
                if start <= record.date <= as_of:
                    by_date.setdefault(record.date, {})[host_id] = record

        points: List[TrendPoint] = []
        seen: set = set()
        for day in sorted(by_date):
            records = by_date[day]
            new_hosts = set(records) - seen
            seen.update(records)
            points.append(self._point(day, list(records.values()), len(new_hosts)))

        gained = lost = 0
        if len(by_date) >= 2:
            days = sorted(by_date)
            first, last = by_date[days[0]], by_date[days[-1]]
            for host_id in sorted(set(first) & set(last)):
                before = self.classifier.classify_day(first[host_id])
                after = self.classifier.classify_day(last[host_id])
                if after.is_better_than(before):
                    gained += 1
                elif after.is_worse_than(before):
                    lost += 1

        logger.debug(f"Health trend {start} to {as_of}: {len(points)} days with data")
        return HealthTrend(
            start_date=start,
            end_date=as_of,
            days=window_days,
            points=tuple(points),
            systems_gained_health=gained,
            systems_lost_health=lost,
        )

    def _point(self, day: date, records: List[DailyHealthRecord], new_systems: int) -> TrendPoint:
        levels = {level.value: 0 for level in HealthLevel}
        tool_health = {tool: 0 for tool in self.classifier.monitored_tools}
        for record in records:
            levels[self.classifier.classify_day(record).value] += 1
            if self.classifier.is_active(record):
                for tool in self.classifier.reporting_tools(record):
                    tool_health[tool] += 1

        return TrendPoint(
            date=day,
            total_systems=len(records),
            active_systems=len(records) - levels[HealthLevel.INACTIVE.value],
            levels=levels,
            new_systems=new_systems,
            health_rate=round(self.classifier.health_rate(records), 1),
            tool_health=tool_health,
        )

    def find_missing_systems(
        self,
        hosts: Mapping[str, HostHistory],
        last_seen: Mapping[str, date],
        as_of: Optional[date],
    ) -> MissingSystemsReport:
        """
        Hosts with no record on ``as_of``, sorted by host id.

        ``last_seen`` maps host ids to their latest valid record date up to
        ``as_of``; hosts absent from it have never reported.
        """
        if as_of is None:
            return MissingSystemsReport(None)

        missing = []
        for host_id in sorted(hosts):
            seen = last_seen.get(host_id)
            if seen == as_of:
                continue
            host = hosts[host_id]
            missing.append(MissingSystem(
                host_id=host_id,
                fullname=host.fullname,
                environment=host.environment,
                last_seen=seen,
                days_since_last_seen=(as_of - seen).days if seen else None,
            ))
        return MissingSystemsReport(as_of, tuple(missing))
