"""
Fleet-level summary, insights and action items

Aggregates per-host classifications with the gap, recovery, combination
and trailing-window analyses into the dashboard view.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .combinations import CombinationAnalysis
from .config import AnalyticsThresholds
from .gaps import GapClassification, GapKind, GapSummary
from .health import DailyHealthRecord, HealthClassifier, HostHistory
from .recovery import RecoveryEpisode, RecoveryStatus, RecoverySummary, RecoveryTracker
from .stability import Classification, ClassificationResult
from .trailing_window import TrailingWindowAnalysis

logger = logging.getLogger("toolwatch.summary")

# Number of hosts listed on an insight card / action item
INSIGHT_HOST_LIMIT = 5
ACTION_HOST_LIMIT = 10


@dataclass(frozen=True)
class StabilityOverview:
    total_systems: int = 0
    stable_healthy: int = 0
    stable_unhealthy: int = 0
    recovering: int = 0
    degrading: int = 0
    flapping: int = 0
    actionable_count: int = 0
    expected_behavior_count: int = 0
    average_stability_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_systems": self.total_systems,
            "stable_healthy": self.stable_healthy,
            "stable_unhealthy": self.stable_unhealthy,
            "recovering": self.recovering,
            "degrading": self.degrading,
            "flapping": self.flapping,
            "actionable_count": self.actionable_count,
            "expected_behavior_count": self.expected_behavior_count,
            "average_stability_score": self.average_stability_score,
        }


@dataclass(frozen=True)
class Insight:
    type: str  # warning | info | success
    title: str
    message: str
    count: int
    systems: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "count": self.count,
            "systems": list(self.systems),
        }


@dataclass(frozen=True)
class ActionItem:
    priority: str  # high | medium | low
    category: str
    description: str
    system_count: int
    systems: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "category": self.category,
            "description": self.description,
            "system_count": self.system_count,
            "systems": list(self.systems),
        }


@dataclass(frozen=True)
class AnalyticsSummary:
    overview: StabilityOverview
    critical_insights: Tuple[Insight, ...]
    gap_summary: GapSummary
    recovery_summary: RecoverySummary
    combinations: CombinationAnalysis
    trailing_window: TrailingWindowAnalysis
    action_items: Tuple[ActionItem, ...]
    top_combinations: int = 10
    excluded: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overview": self.overview.to_dict(),
            "critical_insights": [i.to_dict() for i in self.critical_insights],
            "gap_summary": self.gap_summary.to_dict(),
            "recovery_summary": self.recovery_summary.to_dict(),
            "tooling_combinations": self.combinations.to_dict(top_n=self.top_combinations),
            "trailing_window": self.trailing_window.to_dict(include_systems=False),
            "action_items": [a.to_dict() for a in self.action_items],
            "excluded": dict(self.excluded),
        }


def build_overview(results: Sequence[ClassificationResult]) -> StabilityOverview:
    """Counts per classification plus the mean stability score"""
    def count(classification: Classification) -> int:
        return sum(1 for r in results if r.classification == classification)

    average = 0.0
    if results:
        average = round(sum(r.stability_score for r in results) / len(results), 1)

    return StabilityOverview(
        total_systems=len(results),
        stable_healthy=count(Classification.STABLE_HEALTHY),
        stable_unhealthy=count(Classification.STABLE_UNHEALTHY),
        recovering=count(Classification.RECOVERING),
        degrading=count(Classification.DEGRADING),
        flapping=count(Classification.FLAPPING),
        actionable_count=sum(1 for r in results if r.is_actionable),
        expected_behavior_count=sum(1 for r in results if not r.is_actionable),
        average_stability_score=average,
    )


def tool_title(tool_id: str) -> str:
    return tool_id[:1].upper() + tool_id[1:]


class SummaryAggregator:
    """Build the dashboard summary and per-host insights"""

    def __init__(
        self,
        thresholds: Optional[AnalyticsThresholds] = None,
        top_combinations: int = 10,
    ):
        self.thresholds = thresholds or AnalyticsThresholds()
        self.top_combinations = top_combinations

    def critical_insights(
        self,
        overview: StabilityOverview,
        results: Sequence[ClassificationResult],
        recovery: RecoverySummary,
    ) -> List[Insight]:
        insights: List[Insight] = []

        if overview.actionable_count > 0:
            actionable = [r.host_id for r in results if r.is_actionable]
            insights.append(Insight(
                type="warning",
                title="Systems Requiring Investigation",
                message=f"{overview.actionable_count} system(s) need immediate attention",
                count=overview.actionable_count,
                systems=tuple(actionable[:INSIGHT_HOST_LIMIT]),
            ))

        if overview.flapping > 0:
            insights.append(Insight(
                type="info",
                title="Flapping Systems Detected",
                message=(
                    f"{overview.flapping} system(s) showing normal offline/online cycles "
                    "- no action needed"
                ),
                count=overview.flapping,
            ))

        if recovery.stuck_recovery > 0:
            insights.append(Insight(
                type="warning",
                title="Stuck Recovery",
                message=(
                    f"{recovery.stuck_recovery} system(s) stuck in recovery "
                    "- may need intervention"
                ),
                count=recovery.stuck_recovery,
                systems=recovery.stuck_hosts[:INSIGHT_HOST_LIMIT],
            ))

        if overview.stable_healthy > 0:
            insights.append(Insight(
                type="success",
                title="Stable Healthy Systems",
                message=f"{overview.stable_healthy} system(s) consistently healthy",
                count=overview.stable_healthy,
            ))

        return insights

    def action_items(
        self,
        overview: StabilityOverview,
        results: Sequence[ClassificationResult],
        gaps: GapSummary,
        recovery: RecoverySummary,
    ) -> List[ActionItem]:
        """
        Rule-derived remediation list, highest priority first.

        The "Expected Behavior" item is always present so the dashboard can
        show how much of the fleet needs nothing.
        """
        items: List[ActionItem] = []

        chronic = [r.host_id for r in results if r.classification == Classification.STABLE_UNHEALTHY]
        if chronic:
            items.append(ActionItem(
                priority="high",
                category="Chronic Issues",
                description="Systems consistently unhealthy - require immediate remediation",
                system_count=len(chronic),
                systems=tuple(chronic[:ACTION_HOST_LIMIT]),
            ))

        if gaps.investigate_gaps > 0:
            tool = tool_title(gaps.tool_id)
            items.append(ActionItem(
                priority="high",
                category=f"{tool} Configuration",
                description=(
                    f"{tool} missing but other tools present - possible agent or configuration issue"
                ),
                system_count=gaps.investigate_gaps,
                systems=tuple(g.host_id for g in gaps.systems_to_investigate[:ACTION_HOST_LIMIT]),
            ))

        if recovery.stuck_recovery > 0:
            items.append(ActionItem(
                priority="medium",
                category="Stuck Recovery",
                description="Systems taking longer than expected to recover",
                system_count=recovery.stuck_recovery,
                systems=recovery.stuck_hosts[:ACTION_HOST_LIMIT],
            ))

        degrading = [r.host_id for r in results if r.classification == Classification.DEGRADING]
        if degrading:
            items.append(ActionItem(
                priority="medium",
                category="Degrading Health",
                description="Systems recently lost health - monitor closely",
                system_count=len(degrading),
                systems=tuple(degrading[:ACTION_HOST_LIMIT]),
            ))

        items.append(ActionItem(
            priority="low",
            category="Expected Behavior",
            description="Systems with normal patterns - no action needed",
            system_count=overview.expected_behavior_count,
        ))
        return items

    def build_summary(
        self,
        results: Sequence[ClassificationResult],
        gaps: GapSummary,
        recovery: RecoverySummary,
        combinations: CombinationAnalysis,
        trailing: TrailingWindowAnalysis,
        excluded: Optional[Dict[str, str]] = None,
    ) -> AnalyticsSummary:
        overview = build_overview(results)
        summary = AnalyticsSummary(
            overview=overview,
            critical_insights=tuple(self.critical_insights(overview, results, recovery)),
            gap_summary=gaps,
            recovery_summary=recovery,
            combinations=combinations,
            trailing_window=trailing,
            action_items=tuple(self.action_items(overview, results, gaps, recovery)),
            top_combinations=self.top_combinations,
            excluded=dict(excluded or {}),
        )
        logger.info(
            f"Summary built: {overview.total_systems} systems, "
            f"{overview.actionable_count} actionable"
        )
        return summary

    def recommendations(
        self,
        result: ClassificationResult,
        gap: Optional[GapClassification] = None,
        episode: Optional[RecoveryEpisode] = None,
    ) -> List[str]:
        """Plain-language next steps for one host"""
        recs: List[str] = []
        classification = result.classification

        if classification == Classification.STABLE_UNHEALTHY:
            recs.append("System consistently unhealthy - investigate tool agent status and connectivity")
            recs.append("Check if system is properly configured in all security tools")
        elif classification == Classification.DEGRADING:
            recs.append("System health recently declined - investigate what changed")
            recs.append("Check system logs for errors or configuration changes")
        elif classification == Classification.FLAPPING:
            recs.append("System shows normal offline/online cycles - no immediate action needed")
            recs.append("If system should be always-on, investigate power management or network issues")
        elif classification == Classification.RECOVERING:
            recs.append(
                "System recovering - monitor for completion within "
                f"{self.thresholds.normal_recovery_days} days"
            )
        else:
            recs.append("System operating normally - continue monitoring")

        if gap is not None:
            tool = tool_title(gap.tool_id)
            if gap.kind == GapKind.INVESTIGATE_GAP:
                recs.append(f"{tool} agent may need reinstallation or configuration check")
                recs.append(f"Verify the {tool} agent service is running and can reach its servers")
            else:
                recs.append(f"{tool} gap is expected - system is not currently active")
                recs.append(f"{tool} should resume reporting within 24 hours of the system coming back online")

        if episode is not None and episode.status == RecoveryStatus.STUCK_RECOVERY:
            recs.append("Recovery taking longer than expected - manual intervention may be needed")
            recs.append("Check tool agent status and restart services if necessary")

        return recs

    def system_insights(
        self,
        host: HostHistory,
        result: ClassificationResult,
        classifier: HealthClassifier,
        episodes: Sequence[RecoveryEpisode] = (),
        gap: Optional[GapClassification] = None,
    ) -> Dict[str, Any]:
        """Drill-down view for one host"""
        episode = RecoveryTracker.latest_open_episode(episodes)
        if episode is None and episodes:
            episode = episodes[-1]

        history: List[DailyHealthRecord] = classifier.usable_records(host.records)
        return {
            "host_id": host.host_id,
            "fullname": host.fullname,
            "environment": host.environment,
            **{k: v for k, v in result.to_dict().items() if k != "host_id"},
            "gap": gap.to_dict() if gap else None,
            "recovery": episode.to_dict() if episode else None,
            "recovery_explanation": (
                episode.explanation(self.thresholds.normal_recovery_days) if episode else None
            ),
            "recommendations": self.recommendations(result, gap, episode),
            "health_history": [
                {
                    "date": r.date.isoformat(),
                    "health_level": classifier.classify_day(r).value,
                    "discovery_lag_days": r.discovery_lag_days,
                    "tools": {t: classifier.tool_reporting(r, t) for t in classifier.monitored_tools},
                }
                for r in history
            ],
        }
