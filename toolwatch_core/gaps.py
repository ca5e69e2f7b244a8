"""
Tool-specific gap analysis

For tools whose absence is ambiguous between "host offline" and "agent
broken", separates gaps the tool provider is expected to produce from gaps
that need someone to look at the agent.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import AnalyticsThresholds
from .health import DailyHealthRecord, HealthClassifier

logger = logging.getLogger("toolwatch.gaps")


class GapKind(str, Enum):
    EXPECTED_GAP = "EXPECTED_GAP"
    INVESTIGATE_GAP = "INVESTIGATE_GAP"


@dataclass(frozen=True)
class GapClassification:
    host_id: str
    tool_id: str
    kind: GapKind
    reason: str
    discovery_lag_days: Optional[int] = None

    @property
    def is_expected(self) -> bool:
        return self.kind == GapKind.EXPECTED_GAP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host_id": self.host_id,
            "tool_id": self.tool_id,
            "kind": self.kind.value,
            "is_expected": self.is_expected,
            "reason": self.reason,
            "discovery_lag_days": self.discovery_lag_days,
        }


@dataclass(frozen=True)
class GapSummary:
    tool_id: str
    total_hosts: int = 0
    tool_present: int = 0
    expected_gaps: int = 0
    investigate_gaps: int = 0
    general_unhealthy: int = 0
    percentage_expected: float = 0.0
    breakdown: Mapping[str, int] = field(default_factory=dict)
    systems_to_investigate: Tuple[GapClassification, ...] = ()
    expected_gap_systems: Tuple[GapClassification, ...] = ()

    @property
    def total_gaps(self) -> int:
        return self.expected_gaps + self.investigate_gaps

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "total_hosts": self.total_hosts,
            "tool_present": self.tool_present,
            "expected_gaps": self.expected_gaps,
            "investigate_gaps": self.investigate_gaps,
            "total_gaps": self.total_gaps,
            "general_unhealthy": self.general_unhealthy,
            "percentage_expected": self.percentage_expected,
            "breakdown": dict(self.breakdown),
            "systems_to_investigate": [g.to_dict() for g in self.systems_to_investigate],
            "expected_gap_systems": [g.to_dict() for g in self.expected_gap_systems],
        }


def percentage_expected(expected: int, investigate: int) -> float:
    total = expected + investigate
    if total == 0:
        return 0.0
    return round(expected / total * 100, 1)


class GapAnalyzer:
    """Classify a missing tool report on a host's current day"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        classifier: Optional[HealthClassifier] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = classifier or HealthClassifier(self.thresholds)

    def analyze_gap(
        self,
        host_id: str,
        record: DailyHealthRecord,
        tool_id: str,
    ) -> Optional[GapClassification]:
        """
        Classify the absence of ``tool_id`` on ``record``.

        Returns None when the tool is reporting, and when the host is active
        but no monitored tool reports it at all; that host belongs to the
        general unhealthy view rather than to a tool-specific finding.
        """
        if self.classifier.tool_reporting(record, tool_id):
            return None

        lag = record.discovery_lag_days
        if not self.classifier.is_active(record):
            if lag is None:
                reason = (
                    f"Host not seen by the discovery tool. {tool_id} correctly "
                    "has no record of it."
                )
            else:
                reason = (
                    f"Host inactive (discovery lag: {lag} days). {tool_id} correctly "
                    "deregistered a stale host."
                )
            return GapClassification(host_id, tool_id, GapKind.EXPECTED_GAP, reason, lag)

        others = [
            t for t in self.classifier.reporting_tools(record) if t != tool_id
        ]
        if others:
            reason = (
                f"Host is alive and reporting to {', '.join(others)} but {tool_id} is missing. "
                f"The {tool_id} agent may be broken or misconfigured."
            )
            return GapClassification(host_id, tool_id, GapKind.INVESTIGATE_GAP, reason, lag)

        return None

    def summarize(
        self,
        current_records: Mapping[str, DailyHealthRecord],
        tool_id: str,
    ) -> GapSummary:
        """
        Gap analysis over the current day of every host.

        Args:
            current_records: host id -> that host's most recent record
            tool_id: Tool to analyse
        """
        tool_present = 0
        general_unhealthy = 0
        investigate: List[GapClassification] = []
        expected: List[GapClassification] = []
        breakdown = {"expected_inactive": 0, "expected_never_seen": 0, "investigate_agent": 0}

        for host_id in sorted(current_records):
            record = current_records[host_id]
            if not self.classifier.is_valid(record):
                continue
            if self.classifier.tool_reporting(record, tool_id):
                tool_present += 1
                continue

            gap = self.analyze_gap(host_id, record, tool_id)
            if gap is None:
                general_unhealthy += 1
            elif gap.is_expected:
                expected.append(gap)
                key = "expected_never_seen" if gap.discovery_lag_days is None else "expected_inactive"
                breakdown[key] += 1
            else:
                investigate.append(gap)
                breakdown["investigate_agent"] += 1

        summary = GapSummary(
            tool_id=tool_id,
            total_hosts=tool_present + general_unhealthy + len(expected) + len(investigate),
            tool_present=tool_present,
            expected_gaps=len(expected),
            investigate_gaps=len(investigate),
            general_unhealthy=general_unhealthy,
            percentage_expected=percentage_expected(len(expected), len(investigate)),
            breakdown=breakdown,
            systems_to_investigate=tuple(investigate),
            expected_gap_systems=tuple(expected),
        )
        logger.debug(
            f"Gap analysis for {tool_id}: {summary.expected_gaps} expected, "
            f"{summary.investigate_gaps} to investigate"
        )
        return summary
