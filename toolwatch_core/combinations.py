"""
Missing-tool combination analysis

Groups the currently unhealthy hosts by exactly which tools they are
missing and ranks the buckets by how much remediating them would move the
overall health rate.
"""

import csv
import io
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier, HealthLevel, HostHistory

logger = logging.getLogger("toolwatch.combinations")

CSV_HEADER = ["shortname", "fullname", "environment", "missing_tools"]


@dataclass(frozen=True)
class ToolCombination:
    missing_tools: Tuple[str, ...]
    system_count: int
    percentage_of_unhealthy: float
    potential_health_increase: float
    hosts: Tuple[str, ...]

    @property
    def key(self) -> str:
        return ",".join(self.missing_tools)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "missing_tools": list(self.missing_tools),
            "system_count": self.system_count,
            "percentage_of_unhealthy": self.percentage_of_unhealthy,
            "potential_health_increase": self.potential_health_increase,
            "hosts": list(self.hosts),
        }


@dataclass(frozen=True)
class CombinationInsights:
    systems_missing_single_tool: int = 0
    systems_missing_multiple_tools: int = 0
    systems_missing_all_tools: int = 0
    most_common_missing_tool: Optional[str] = None
    most_common_missing_tool_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "systems_missing_single_tool": self.systems_missing_single_tool,
            "systems_missing_multiple_tools": self.systems_missing_multiple_tools,
            "systems_missing_all_tools": self.systems_missing_all_tools,
            "most_common_missing_tool": self.most_common_missing_tool,
            "most_common_missing_tool_count": self.most_common_missing_tool_count,
        }


@dataclass(frozen=True)
class CombinationAnalysis:
    total_unhealthy_systems: int
    total_active_systems: int
    combinations: Tuple[ToolCombination, ...]
    insights: CombinationInsights

    def top(self, n: int) -> Tuple[ToolCombination, ...]:
        return self.combinations[:n]

    def find(self, missing_tools: Iterable[str]) -> Optional[ToolCombination]:
        key = tuple(sorted(missing_tools))
        for combination in self.combinations:
            if combination.missing_tools == key:
                return combination
        return None

    def to_dict(self, top_n: Optional[int] = None) -> Dict[str, Any]:
        data = {
            "total_unhealthy_systems": self.total_unhealthy_systems,
            "total_active_systems": self.total_active_systems,
            "combinations": [c.to_dict() for c in self.combinations],
            "insights": self.insights.to_dict(),
        }
        if top_n is not None:
            data["top_combinations"] = [c.to_dict() for c in self.top(top_n)]
        return data


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return round(part / whole * 100, 1)


class ToolingCombinationAnalyzer:
    """Rank missing-tool sets among currently unhealthy hosts"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)

    def analyze_combinations(
        self,
        snapshots: Mapping[str, DailyHealthRecord],
    ) -> CombinationAnalysis:
        """
        Group active, not-fully-healthy hosts by their exact missing-tool set.

        Args:
            snapshots: host id -> that host's current-day record

        Returns:
            Buckets sorted by system count (descending) then by the
            missing-tool key, plus summary insights.
        """
        buckets: Dict[Tuple[str, ...], List[str]] = defaultdict(list)
        total_active = 0

        for host_id in sorted(snapshots):
            record = snapshots[host_id]
            if not self.classifier.is_valid(record) or not self.classifier.is_active(record):
                continue
            total_active += 1
            if self.classifier.classify_day(record) == HealthLevel.FULLY_HEALTHY:
                continue
            missing = tuple(sorted(self.classifier.missing_tools(record)))
            buckets[missing].append(host_id)

        total_unhealthy = sum(len(hosts) for hosts in buckets.values())

        combinations = [
            ToolCombination(
                missing_tools=missing,
                system_count=len(hosts),
                percentage_of_unhealthy=_percent(len(hosts), total_unhealthy),
                potential_health_increase=_percent(len(hosts), total_active),
                hosts=tuple(hosts),
            )
            for missing, hosts in buckets.items()
        ]
        combinations.sort(key=lambda c: (-c.system_count, c.key))

        return CombinationAnalysis(
            total_unhealthy_systems=total_unhealthy,
            total_active_systems=total_active,
            combinations=tuple(combinations),
            insights=self._insights(combinations),
        )

    def _insights(self, combinations: Sequence[ToolCombination]) -> CombinationInsights:
        tool_count = len(self.classifier.monitored_tools)
        single = sum(c.system_count for c in combinations if len(c.missing_tools) == 1)
        multiple = sum(c.system_count for c in combinations if len(c.missing_tools) >= 2)
        missing_all = sum(c.system_count for c in combinations if len(c.missing_tools) == tool_count)

        per_tool: Counter = Counter()
        for combination in combinations:
            for tool in combination.missing_tools:
                per_tool[tool] += combination.system_count

        most_common, most_common_count = None, 0
        if per_tool:
            most_common, most_common_count = min(
                per_tool.items(), key=lambda item: (-item[1], item[0])
            )

        return CombinationInsights(
            systems_missing_single_tool=single,
            systems_missing_multiple_tools=multiple,
            systems_missing_all_tools=missing_all,
            most_common_missing_tool=most_common,
            most_common_missing_tool_count=most_common_count,
        )


def export_combination_csv(
    combination: ToolCombination,
    hosts: Mapping[str, HostHistory],
) -> str:
    """
    Render the hosts in one combination as CSV.

    Header: shortname, fullname, environment, missing_tools. Missing tools
    are joined with ``;`` so the column stays a single CSV field.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    missing = ";".join(combination.missing_tools)
    for host_id in combination.hosts:
        host = hosts.get(host_id)
        writer.writerow([
            host_id,
            (host.fullname if host else None) or "",
            (host.environment if host else None) or "",
            missing,
        ])
    return buffer.getvalue()
