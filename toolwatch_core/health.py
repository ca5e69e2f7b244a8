"""
Per-day health level derivation

Turns one daily tool-flag record into a HealthLevel and a fractional
score, and aggregates fractional scores into a population health rate.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AnalyticsThresholds
from .exceptions import MalformedRecordError

logger = logging.getLogger("toolwatch.health")


class HealthLevel(str, Enum):
    """Derived per-day state of a host"""
    FULLY_HEALTHY = "FULLY_HEALTHY"
    PARTIALLY_HEALTHY = "PARTIALLY_HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    INACTIVE = "INACTIVE"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def is_better_than(self, other: "HealthLevel") -> bool:
        return self.rank > other.rank

    def is_worse_than(self, other: "HealthLevel") -> bool:
        return self.rank < other.rank


_LEVEL_RANK = {
    HealthLevel.INACTIVE: 0,
    HealthLevel.UNHEALTHY: 1,
    HealthLevel.PARTIALLY_HEALTHY: 2,
    HealthLevel.FULLY_HEALTHY: 3,
}


@dataclass(frozen=True)
class DailyHealthRecord:
    """A single day's tool reporting snapshot for one host"""
    date: date
    discovery_lag_days: Optional[int]  # days since the discovery tool last saw the host
    tool_found: Mapping[str, bool] = field(default_factory=dict)
    tool_lag_days: Mapping[str, Optional[int]] = field(default_factory=dict)

    def found(self, tool_id: str) -> bool:
        return bool(self.tool_found.get(tool_id, False))

    def to_dict(self) -> Dict:
        return {
            "date": self.date.isoformat(),
            "discovery_lag_days": self.discovery_lag_days,
            "tool_found": dict(self.tool_found),
            "tool_lag_days": dict(self.tool_lag_days),
        }


@dataclass(frozen=True)
class HostHistory:
    """All records supplied for one host, plus its identity"""
    host_id: str
    records: Tuple[DailyHealthRecord, ...] = ()
    fullname: Optional[str] = None
    environment: Optional[str] = None


class HealthClassifier:
    """
    Derive health levels from tool flags and discovery-tool recency.

    A host is active on a day when the discovery tool saw it within
    ``inactive_threshold_days``. Active hosts are graded by how many
    monitored security tools reported them; a tool whose own lag is within
    the grace period still counts as reporting.
    """

    def __init__(self, thresholds: Optional[AnalyticsThresholds] = None):
        self.thresholds = thresholds or AnalyticsThresholds()

    @property
    def monitored_tools(self) -> Tuple[str, ...]:
        return self.thresholds.monitored_tools

    def validate(self, record: DailyHealthRecord) -> None:
        """Raise MalformedRecordError when a record cannot be interpreted"""
        if not isinstance(record.date, date):
            raise MalformedRecordError(f"Record date is not a date: {record.date!r}", "date")
        lag = record.discovery_lag_days
        if lag is not None and lag < 0:
            raise MalformedRecordError(f"Negative discovery lag: {lag}", "discovery_lag_days")
        for tool_id, tool_lag in record.tool_lag_days.items():
            if tool_lag is not None and tool_lag < 0:
                raise MalformedRecordError(
                    f"Negative lag for {tool_id}: {tool_lag}", f"tool_lag_days.{tool_id}"
                )

    def is_valid(self, record: DailyHealthRecord) -> bool:
        try:
            self.validate(record)
        except MalformedRecordError as e:
            logger.debug(f"Treating record for {record.date} as no data: {e}")
            return False
        return True

    def is_active(self, record: DailyHealthRecord) -> bool:
        lag = record.discovery_lag_days
        return lag is not None and lag <= self.thresholds.inactive_threshold_days

    def tool_reporting(self, record: DailyHealthRecord, tool_id: str) -> bool:
        """Whether a tool counts as reporting, allowing for the grace period"""
        if record.found(tool_id):
            return True
        lag = record.tool_lag_days.get(tool_id)
        return lag is not None and lag <= self.thresholds.health_grace_period_days

    def reporting_tools(self, record: DailyHealthRecord) -> List[str]:
        return [t for t in self.monitored_tools if self.tool_reporting(record, t)]

    def missing_tools(self, record: DailyHealthRecord) -> List[str]:
        return [t for t in self.monitored_tools if not self.tool_reporting(record, t)]

    def classify_day(self, record: DailyHealthRecord) -> HealthLevel:
        """Derive the HealthLevel for one day"""
        self.validate(record)

        if not self.is_active(record):
            return HealthLevel.INACTIVE

        count = len(self.reporting_tools(record))
        if count == len(self.monitored_tools):
            return HealthLevel.FULLY_HEALTHY
        if count >= 1:
            return HealthLevel.PARTIALLY_HEALTHY
        return HealthLevel.UNHEALTHY

    def fractional_score(self, record: DailyHealthRecord) -> float:
        """Share of monitored tools reporting, as a 0-100 score"""
        if not self.monitored_tools:
            return 0.0
        return len(self.reporting_tools(record)) / len(self.monitored_tools) * 100

    def health_rate(self, records: Iterable[DailyHealthRecord]) -> float:
        """Mean fractional score over active records; 0 when none are active"""
        scores = [
            self.fractional_score(r)
            for r in records
            if self.is_valid(r) and self.is_active(r)
        ]
        if not scores:
            return 0.0
        return sum(scores) / len(scores)

    def level_counts(self, records: Iterable[DailyHealthRecord]) -> Dict[str, int]:
        """Count records per HealthLevel, skipping malformed ones"""
        counts = {level.value: 0 for level in HealthLevel}
        for record in records:
            if self.is_valid(record):
                counts[self.classify_day(record).value] += 1
        return counts

    def usable_records(self, records: Sequence[DailyHealthRecord]) -> List[DailyHealthRecord]:
        """
        Normalise a history for analysis without touching the input.

        Malformed records are dropped, records are ordered by date, and when
        a date appears more than once the last supplied record wins.
        """
        by_date: Dict[date, DailyHealthRecord] = {}
        for record in records:
            if self.is_valid(record):
                by_date[record.date] = record
        return [by_date[d] for d in sorted(by_date)]
