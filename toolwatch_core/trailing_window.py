"""
Trailing-window analysis of continuously active hosts

Restricts the population to hosts the discovery tool saw on every one of
the last N calendar days, then measures where that subset stands today and
how it moved since the start of the window.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier, HealthLevel, HostHistory

logger = logging.getLogger("toolwatch.trailing_window")


@dataclass(frozen=True)
class ToolDegradation:
    lost: int = 0
    gained: int = 0
    stable: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"lost": self.lost, "gained": self.gained, "stable": self.stable}


@dataclass(frozen=True)
class TrailingHostDetail:
    """Drill-down row for one qualifying host"""
    host_id: str
    fullname: Optional[str]
    environment: Optional[str]
    current_health_level: HealthLevel
    current_health_score: float
    health_change: str
    health_score_change: float
    current_tool_status: Mapping[str, bool] = field(default_factory=dict)
    daily_health: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host_id": self.host_id,
            "fullname": self.fullname,
            "environment": self.environment,
            "current_health_level": self.current_health_level.value,
            "current_health_score": self.current_health_score,
            "health_change": self.health_change,
            "health_score_change": self.health_score_change,
            "current_tool_status": dict(self.current_tool_status),
            "daily_health": list(self.daily_health),
        }


@dataclass(frozen=True)
class TrailingWindowAnalysis:
    window_size: int
    start_date: Optional[date]
    end_date: Optional[date]
    total_systems: int
    distribution: Mapping[str, int]
    health_rate: float
    tool_health: Mapping[str, int]
    per_tool_degradation: Mapping[str, ToolDegradation]
    systems_improved: int
    systems_degraded: int
    systems_stable: int
    average_improvement: float
    systems: Tuple[TrailingHostDetail, ...] = ()

    def to_dict(self, include_systems: bool = True) -> Dict[str, Any]:
        data = {
            "date_range": {
                "start_date": self.start_date.isoformat() if self.start_date else None,
                "end_date": self.end_date.isoformat() if self.end_date else None,
                "days": self.window_size,
            },
            "metrics": {
                "total_systems": self.total_systems,
                **dict(self.distribution),
                "health_rate": self.health_rate,
                "tool_health": dict(self.tool_health),
            },
            "per_tool_degradation": {
                tool: stats.to_dict() for tool, stats in self.per_tool_degradation.items()
            },
            "improvement": {
                "total_systems": self.total_systems,
                "systems_improved": self.systems_improved,
                "systems_degraded": self.systems_degraded,
                "systems_stable": self.systems_stable,
                "average_improvement": self.average_improvement,
            },
        }
        if include_systems:
            data["systems"] = [s.to_dict() for s in self.systems]
        return data


def _change_label(delta: float) -> str:
    if delta > 0:
        return "improved"
    if delta < 0:
        return "degraded"
    return "stable"


class FiveDayActiveAnalyzer:
    """Analyse hosts that stayed active for the whole trailing window"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)

    def qualifying_window(
        self,
        records: List[DailyHealthRecord],
        window_dates: List[date],
    ) -> Optional[List[DailyHealthRecord]]:
        """The host's records for ``window_dates``, or None if any day is missing or inactive"""
        by_date = {r.date: r for r in self.classifier.usable_records(records)}
        window = []
        for day in window_dates:
            record = by_date.get(day)
            if record is None or not self.classifier.is_active(record):
                return None
            window.append(record)
        return window

    def analyze_trailing_window(
        self,
        histories: Mapping[str, HostHistory],
        window_size: int = 5,
        as_of: Optional[date] = None,
    ) -> TrailingWindowAnalysis:
        """
        Analyse the continuously active subset.

        Args:
            histories: host id -> HostHistory
            window_size: Number of consecutive calendar days
            as_of: Last day of the window; defaults to the latest record date
                across the population

        Returns:
            Current distribution, per-tool lost/gained counts and per-host
            score movement for the qualifying hosts.
        """
        if window_size < 1:
            raise ValueError(f"window_size must be at least 1, got {window_size}")

        tools = self.classifier.monitored_tools
        if as_of is None:
            dates = [
                r.date for h in histories.values()
                for r in h.records if self.classifier.is_valid(r)
            ]
            as_of = max(dates) if dates else None

        distribution = {
            HealthLevel.FULLY_HEALTHY.value: 0,
            HealthLevel.PARTIALLY_HEALTHY.value: 0,
            HealthLevel.UNHEALTHY.value: 0,
        }
        tool_health = {tool: 0 for tool in tools}
        degradation = {tool: {"lost": 0, "gained": 0, "stable": 0} for tool in tools}

        if as_of is None:
            return self._result(window_size, None, None, distribution, 0.0, tool_health, degradation, [])

        start = as_of - timedelta(days=window_size - 1)
        window_dates = [start + timedelta(days=i) for i in range(window_size)]

        details: List[TrailingHostDetail] = []
        last_day_records: List[DailyHealthRecord] = []

        for host_id in sorted(histories):
            host = histories[host_id]
            window = self.qualifying_window(list(host.records), window_dates)
            if window is None:
                continue

            first, last = window[0], window[-1]
            level = self.classifier.classify_day(last)
            distribution[level.value] += 1
            last_day_records.append(last)

            for tool in tools:
                was = self.classifier.tool_reporting(first, tool)
                now = self.classifier.tool_reporting(last, tool)
                if now:
                    tool_health[tool] += 1
                if was and not now:
                    degradation[tool]["lost"] += 1
                elif now and not was:
                    degradation[tool]["gained"] += 1
                else:
                    degradation[tool]["stable"] += 1

            current_score = self.classifier.fractional_score(last)
            delta = current_score - self.classifier.fractional_score(first)
            details.append(TrailingHostDetail(
                host_id=host_id,
                fullname=host.fullname,
                environment=host.environment,
                current_health_level=level,
                current_health_score=round(current_score, 1),
                health_change=_change_label(delta),
                health_score_change=round(delta, 1),
                current_tool_status={tool: self.classifier.tool_reporting(last, tool) for tool in tools},
                daily_health=tuple(
                    {
                        "date": r.date.isoformat(),
                        "health_level": self.classifier.classify_day(r).value,
                        "health_score": round(self.classifier.fractional_score(r), 1),
                    }
                    for r in window
                ),
            ))

        health_rate = round(self.classifier.health_rate(last_day_records), 1)
        logger.debug(
            f"Trailing window {start} to {as_of}: {len(details)} continuously active hosts"
        )
        return self._result(
            window_size, start, as_of, distribution, health_rate, tool_health, degradation, details
        )

    def _result(
        self,
        window_size: int,
        start: Optional[date],
        end: Optional[date],
        distribution: Dict[str, int],
        health_rate: float,
        tool_health: Dict[str, int],
        degradation: Dict[str, Dict[str, int]],
        details: List[TrailingHostDetail],
    ) -> TrailingWindowAnalysis:
        changes = [d.health_score_change for d in details]
        average = round(sum(changes) / len(changes), 1) if changes else 0.0
        return TrailingWindowAnalysis(
            window_size=window_size,
            start_date=start,
            end_date=end,
            total_systems=len(details),
            distribution=distribution,
            health_rate=health_rate,
            tool_health=tool_health,
            per_tool_degradation={t: ToolDegradation(**c) for t, c in degradation.items()},
            systems_improved=sum(1 for d in details if d.health_change == "improved"),
            systems_degraded=sum(1 for d in details if d.health_change == "degraded"),
            systems_stable=sum(1 for d in details if d.health_change == "stable"),
            average_improvement=average,
            systems=tuple(details),
        )
