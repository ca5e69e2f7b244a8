"""
Analytics engine

Runs the per-host analyzers over a population in a single pass and feeds
the fleet-level analyzers from the results. This is the one place that
knows about request windows, environment filters, caching and
cancellation; the analyzers underneath stay pure.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .cache import CacheClient, evaluation_cache_key, payload_digest
from .combinations import CombinationAnalysis, ToolingCombinationAnalyzer
from .config import AnalyticsThresholds
from .exceptions import (
    AnalysisCancelledException,
    HostNotFoundException,
    InsufficientDataException,
    InvalidWindowException,
    UnknownToolException,
)
from .gaps import GapAnalyzer, GapClassification, GapSummary
from .health import DailyHealthRecord, HealthClassifier, HostHistory
from .metrics import track_cache, track_classification, track_evaluation, track_exclusion
from .recovery import RecoveryEpisode, RecoverySummary, RecoveryTracker, summarize_recoveries
from .stability import ClassificationResult, StabilityAnalyzer
from .summary import AnalyticsSummary, SummaryAggregator
from .trailing_window import FiveDayActiveAnalyzer, TrailingWindowAnalysis
from .trending import HealthTrend, HealthTrendAnalyzer, MissingSystemsReport

logger = logging.getLogger("toolwatch.engine")

NO_RECORDS = "insufficient data: no records in window"
NO_ACTIVE_DAYS = "insufficient data: no active days in window"


@dataclass(frozen=True)
class HostEvaluation:
    """Everything computed for one host in one pass"""
    host: HostHistory
    result: ClassificationResult
    episodes: Tuple[RecoveryEpisode, ...]
    current_record: DailyHealthRecord

    @property
    def host_id(self) -> str:
        return self.host.host_id


@dataclass(frozen=True)
class Evaluation:
    """
    Outcome of evaluating a population over one window.

    ``hosts`` holds every host that passed the environment filter, with
    its records trimmed to the window. ``current_records`` is the snapshot
    on ``as_of``: it maps each host with a record dated ``as_of`` to that
    record, including hosts excluded from classification for having no
    active day. Hosts whose latest record is older are still classified
    but are not part of the snapshot. ``last_seen`` maps each host to its
    latest valid record date up to ``as_of``.
    """
    window_days: int
    environment: Optional[str]
    as_of: Optional[date]
    hosts: Mapping[str, HostHistory]
    evaluations: Tuple[HostEvaluation, ...] = ()
    current_records: Mapping[str, DailyHealthRecord] = field(default_factory=dict)
    excluded: Mapping[str, str] = field(default_factory=dict)
    last_seen: Mapping[str, date] = field(default_factory=dict)

    @property
    def results(self) -> List[ClassificationResult]:
        return [e.result for e in self.evaluations]

    @property
    def episodes(self) -> List[RecoveryEpisode]:
        return [ep for e in self.evaluations for ep in e.episodes]

    def get(self, host_id: str) -> Optional[HostEvaluation]:
        for evaluation in self.evaluations:
            if evaluation.host_id == host_id:
                return evaluation
        return None


def validate_window(window_days: Any, max_days: Optional[int] = None) -> int:
    """
    Coerce and validate a window length in days.

    Accepts ints, integral floats and digit strings; raises
    InvalidWindowException for anything else, for values below 1, and for
    values above ``max_days`` when given.
    """
    if isinstance(window_days, bool):
        raise InvalidWindowException(window_days, max_days)
    if isinstance(window_days, str):
        text = window_days.strip()
        if not text.lstrip("-").isdigit():
            raise InvalidWindowException(window_days, max_days)
        value = int(text)
    elif isinstance(window_days, float):
        if not window_days.is_integer():
            raise InvalidWindowException(window_days, max_days)
        value = int(window_days)
    elif isinstance(window_days, int):
        value = window_days
    else:
        raise InvalidWindowException(window_days, max_days)

    if value < 1 or (max_days is not None and value > max_days):
        raise InvalidWindowException(window_days, max_days)
    return value


def latest_date(hosts: Mapping[str, HostHistory], classifier: HealthClassifier) -> Optional[date]:
    dates = [
        r.date for h in hosts.values() for r in h.records if classifier.is_valid(r)
    ]
    return max(dates) if dates else None


def _matches_environment(host: HostHistory, environment: Optional[str]) -> bool:
    if not environment:
        return True
    return (host.environment or "").casefold() == environment.casefold()


class AnalyticsEngine:
    """
    Evaluate host populations and derive every analytics view.

    Args:
        thresholds: Analyzer tuning knobs
        gap_target_tool: Tool examined by the default gap analysis
        max_window_days: Upper bound accepted for ``window_days``
        trailing_window_days: Default trailing-window length
        top_combinations: Number of combinations in the summary's top list
        cache: Evaluation cache; None disables caching
    """

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        gap_target_tool: str = "rapid7",
        max_window_days: Optional[int] = 365,
        trailing_window_days: int = 5,
        top_combinations: int = 10,
        cache: Optional[CacheClient] = None,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.classifier = HealthClassifier(self.thresholds)
        self.recovery_tracker = RecoveryTracker(self.thresholds, self.classifier)
        self.stability = StabilityAnalyzer(self.thresholds, self.classifier, self.recovery_tracker)
        self.gaps = GapAnalyzer(self.thresholds, self.classifier)
        self.combinations = ToolingCombinationAnalyzer(self.thresholds, self.classifier)
        self.trailing = FiveDayActiveAnalyzer(self.thresholds, self.classifier)
        self.trending = HealthTrendAnalyzer(self.thresholds, self.classifier)
        self.aggregator = SummaryAggregator(self.thresholds, top_combinations)

        self.gap_target_tool = self.check_tool(gap_target_tool)
        self.max_window_days = max_window_days
        self.trailing_window_days = trailing_window_days
        self.cache = cache

    @classmethod
    def from_settings(cls, settings, cache: Optional[CacheClient] = None) -> "AnalyticsEngine":
        return cls(
            thresholds=settings.thresholds(),
            gap_target_tool=settings.GAP_TARGET_TOOL,
            max_window_days=settings.MAX_WINDOW_DAYS,
            trailing_window_days=settings.TRAILING_WINDOW_DAYS,
            top_combinations=settings.TOP_COMBINATIONS,
            cache=cache,
        )

    def check_tool(self, tool_id: str) -> str:
        """Return ``tool_id`` if it is monitored, else raise UnknownToolException"""
        if tool_id not in self.thresholds.monitored_tools:
            raise UnknownToolException(tool_id, self.thresholds.monitored_tools)
        return tool_id

    def evaluate(
        self,
        hosts: Sequence[HostHistory],
        window_days: Any,
        environment: Optional[str] = None,
        as_of: Optional[date] = None,
        cancel_event: Optional[threading.Event] = None,
        cache_payload: Optional[Any] = None,
    ) -> Evaluation:
        """
        Classify every host in the window.

        Args:
            hosts: Supplied host histories
            window_days: Window length; validated before anything else runs
            environment: Optional environment filter (case-insensitive)
            as_of: Last day of the window; defaults to the latest record date
            cancel_event: Set by the caller to abandon the evaluation
            cache_payload: JSON-compatible form of the request, used for the
                cache digest; caching is skipped without it

        Returns:
            The complete Evaluation.

        Raises:
            InvalidWindowException: window_days is not a usable window
            AnalysisCancelledException: cancel_event was set mid-evaluation
        """
        window_days = validate_window(window_days, self.max_window_days)

        cache_key = None
        if self.cache is not None and self.cache.enabled and cache_payload is not None:
            cache_key = evaluation_cache_key(
                window_days, environment, as_of.isoformat() if as_of else None,
                payload_digest(cache_payload),
            )
            cached = self.cache.get(cache_key)
            track_cache(cached is not None)
            if cached is not None:
                logger.debug(f"Evaluation cache hit: {cache_key}")
                return cached

        start = time.time()
        try:
            evaluation = self._evaluate(hosts, window_days, environment, as_of, cancel_event)
        except AnalysisCancelledException:
            track_evaluation(0, 0, status="cancelled")
            raise
        except Exception:
            track_evaluation(0, 0, status="error")
            raise

        duration_ms = (time.time() - start) * 1000
        track_evaluation(duration_ms, len(evaluation.evaluations))
        logger.info(
            f"Evaluated {len(evaluation.evaluations)} hosts over {window_days} days "
            f"({len(evaluation.excluded)} excluded) in {duration_ms:.1f}ms"
        )

        if cache_key is not None:
            self.cache.set(cache_key, evaluation)
        return evaluation

    def _evaluate(
        self,
        hosts: Sequence[HostHistory],
        window_days: int,
        environment: Optional[str],
        as_of: Optional[date],
        cancel_event: Optional[threading.Event],
    ) -> Evaluation:
        selected = {h.host_id: h for h in hosts if _matches_environment(h, environment)}
        if as_of is None:
            as_of = latest_date(selected, self.classifier)

        if as_of is None:
            excluded = {host_id: NO_RECORDS for host_id in selected}
            for _ in excluded:
                track_exclusion("no_records")
            return Evaluation(window_days, environment, None, selected, excluded=excluded)

        window_start = as_of - timedelta(days=window_days - 1)
        windowed: Dict[str, HostHistory] = {}
        evaluations: List[HostEvaluation] = []
        current_records: Dict[str, DailyHealthRecord] = {}
        excluded: Dict[str, str] = {}
        last_seen: Dict[str, date] = {}

        host_ids = sorted(selected)
        for processed, host_id in enumerate(host_ids):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Evaluation cancelled after {processed} of {len(host_ids)} hosts")
                raise AnalysisCancelledException(processed, len(host_ids))

            host = selected[host_id]
            seen = [r.date for r in host.records if self.classifier.is_valid(r) and r.date <= as_of]
            if seen:
                last_seen[host_id] = max(seen)

            records = tuple(
                r for r in host.records
                if self.classifier.is_valid(r) and window_start <= r.date <= as_of
            )
            windowed[host_id] = HostHistory(host_id, records, host.fullname, host.environment)

            if not records:
                excluded[host_id] = NO_RECORDS
                track_exclusion("no_records")
                continue

            try:
                usable = self.classifier.usable_records(records)
                if usable[-1].date == as_of:
                    current_records[host_id] = usable[-1]
                episodes = self.recovery_tracker.find_episodes(host_id, usable, as_of=as_of)
                result = self.stability.analyze(host_id, usable, as_of=as_of, episodes=episodes)
            except Exception as e:
                logger.exception(f"Failed to analyse host {host_id}")
                excluded[host_id] = f"analysis failed: {e}"
                track_exclusion("error")
                continue

            if result is None:
                excluded[host_id] = NO_ACTIVE_DAYS
                track_exclusion("no_active_days")
                continue

            track_classification(result.classification.value)
            evaluations.append(HostEvaluation(
                host=windowed[host_id],
                result=result,
                episodes=tuple(episodes),
                current_record=usable[-1],
            ))

        return Evaluation(
            window_days=window_days,
            environment=environment,
            as_of=as_of,
            hosts=windowed,
            evaluations=tuple(evaluations),
            current_records=current_records,
            excluded=excluded,
            last_seen=last_seen,
        )

    # Views over an evaluation

    def gap_summary(self, evaluation: Evaluation, tool_id: Optional[str] = None) -> GapSummary:
        tool_id = self.check_tool(tool_id or self.gap_target_tool)
        return self.gaps.summarize(evaluation.current_records, tool_id)

    def host_gap(
        self, evaluation: Evaluation, host_id: str, tool_id: Optional[str] = None
    ) -> Optional[GapClassification]:
        tool_id = self.check_tool(tool_id or self.gap_target_tool)
        record = evaluation.current_records.get(host_id)
        if record is None:
            return None
        return self.gaps.analyze_gap(host_id, record, tool_id)

    def recovery_summary(self, evaluation: Evaluation) -> RecoverySummary:
        return summarize_recoveries(evaluation.episodes)

    def tooling_combinations(self, evaluation: Evaluation) -> CombinationAnalysis:
        return self.combinations.analyze_combinations(evaluation.current_records)

    def trailing_window(
        self, evaluation: Evaluation, window_size: Optional[int] = None
    ) -> TrailingWindowAnalysis:
        size = validate_window(
            window_size if window_size is not None else self.trailing_window_days
        )
        return self.trailing.analyze_trailing_window(
            evaluation.hosts, window_size=size, as_of=evaluation.as_of
        )

    def health_trend(self, evaluation: Evaluation) -> HealthTrend:
        return self.trending.analyze_health_trend(
            evaluation.hosts, evaluation.window_days, evaluation.as_of
        )

    def missing_systems(self, evaluation: Evaluation) -> MissingSystemsReport:
        """Hosts in the population with no record in the current snapshot"""
        return self.trending.find_missing_systems(
            evaluation.hosts, evaluation.last_seen, evaluation.as_of
        )

    def summary(self, evaluation: Evaluation) -> AnalyticsSummary:
        return self.aggregator.build_summary(
            results=evaluation.results,
            gaps=self.gap_summary(evaluation),
            recovery=self.recovery_summary(evaluation),
            combinations=self.tooling_combinations(evaluation),
            trailing=self.trailing_window(evaluation),
            excluded=dict(evaluation.excluded),
        )

    def system_insights(self, evaluation: Evaluation, host_id: str) -> Dict[str, Any]:
        """
        Drill-down for one host.

        Raises:
            HostNotFoundException: host not in the (filtered) population
            InsufficientDataException: host present but excluded
        """
        host_eval = evaluation.get(host_id)
        if host_eval is None:
            if host_id in evaluation.excluded:
                raise InsufficientDataException(host_id, evaluation.excluded[host_id])
            raise HostNotFoundException(host_id)

        return self.aggregator.system_insights(
            host=host_eval.host,
            result=host_eval.result,
            classifier=self.classifier,
            episodes=host_eval.episodes,
            gap=self.host_gap(evaluation, host_id),
        )

    def system_classifications(self, evaluation: Evaluation) -> Dict[str, Any]:
        """Per-host classification rows split into actionable and expected"""
        rows = []
        for host_eval in evaluation.evaluations:
            record = host_eval.current_record
            rows.append({
                "shortname": host_eval.host_id,
                "fullname": host_eval.host.fullname,
                "environment": host_eval.host.environment,
                **{k: v for k, v in host_eval.result.to_dict().items() if k != "host_id"},
                "tools": {
                    t: self.classifier.tool_reporting(record, t)
                    for t in self.classifier.monitored_tools
                },
                "in_current_snapshot": host_eval.host_id in evaluation.current_records,
            })
        return {
            "systems": rows,
            "actionable_systems": [r for r in rows if r["is_actionable"]],
            "expected_behavior_systems": [r for r in rows if not r["is_actionable"]],
            "excluded": dict(evaluation.excluded),
        }
