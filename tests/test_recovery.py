"""Tests for recovery episode detection"""

from datetime import timedelta

import pytest

from toolwatch_core.health import HealthLevel
from toolwatch_core.recovery import (
    RecoveryStatus,
    RecoveryTracker,
    average_recovery_time,
    summarize_recoveries,
)

from conftest import START, make_history


class TestFindEpisodes:
    """Test RecoveryTracker.find_episodes"""

    def test_no_improvement_no_episode(self, tracker):
        assert tracker.find_episodes("host", make_history("F" * 10)) == []
        assert tracker.find_episodes("host", make_history("F" * 5 + "U" * 5)) == []

    def test_empty_history(self, tracker):
        assert tracker.find_episodes("host", []) == []

    def test_confirmed_full_recovery(self, tracker):
        episodes = tracker.find_episodes("host", make_history("U" * 5 + "F" * 5))

        assert len(episodes) == 1
        episode = episodes[0]
        assert episode.status == RecoveryStatus.FULLY_RECOVERED
        assert episode.start_date == START + timedelta(days=5)
        assert episode.end_date == START + timedelta(days=5)
        assert episode.duration_days == 0
        assert episode.level_before == HealthLevel.UNHEALTHY
        assert episode.current_level == HealthLevel.FULLY_HEALTHY
        assert episode.tools_recovered == ("rapid7", "automox", "defender")

    def test_end_date_is_first_fully_healthy_day(self, tracker):
        """Confirmation waits for the normal window but the episode ends on reaching FULLY"""
        episode = tracker.find_episodes("host", make_history("U" * 5 + "PP" + "F" * 5))[0]

        assert episode.status == RecoveryStatus.FULLY_RECOVERED
        assert episode.start_date == START + timedelta(days=5)
        assert episode.end_date == START + timedelta(days=7)
        assert episode.duration_days == 2

    def test_transient_relapse_is_dropped(self, tracker):
        assert tracker.find_episodes("host", make_history("U" * 5 + "P" + "U" * 4)) == []

    def test_relapse_after_confirmed_recovery_is_dropped(self, tracker):
        """A recovery that did not hold is not reported as fully recovered"""
        assert tracker.find_episodes("host", make_history("U" * 5 + "F" * 10 + "P" * 5)) == []

    def test_recovery_after_relapse_is_kept(self, tracker):
        episodes = tracker.find_episodes("host", make_history("UUFFF" + "UU" + "PPFFF"))

        assert len(episodes) == 1
        assert episodes[0].status == RecoveryStatus.FULLY_RECOVERED
        assert episodes[0].start_date == START + timedelta(days=7)
        assert episodes[0].end_date == START + timedelta(days=9)
        assert episodes[0].level_before == HealthLevel.UNHEALTHY

    def test_recent_improvement_is_normal(self, tracker):
        episodes = tracker.find_episodes("host", make_history("U" * 5 + "P"))

        assert len(episodes) == 1
        assert episodes[0].status == RecoveryStatus.NORMAL_RECOVERY
        assert episodes[0].is_ongoing
        assert episodes[0].days_since_start == 0

    def test_brief_dip_then_return_to_healthy(self, tracker):
        """Healthy for weeks, three partial days, back to healthy for two days"""
        episodes = tracker.find_episodes("host", make_history("F" * 25 + "P" * 3 + "F" * 2))

        assert len(episodes) == 1
        episode = episodes[0]
        assert episode.start_date == START + timedelta(days=28)
        assert episode.days_since_start == 1
        assert episode.status == RecoveryStatus.NORMAL_RECOVERY
        assert episode.level_before == HealthLevel.PARTIALLY_HEALTHY
        assert episode.tools_recovered == ("defender",)

    def test_grey_zone_is_normal(self, tracker):
        """Three days in is past normal but not yet stuck"""
        episodes = tracker.find_episodes("host", make_history("U" * 5 + "P" * 4))
        assert episodes[0].days_since_start == 3
        assert episodes[0].status == RecoveryStatus.NORMAL_RECOVERY

    def test_stuck_after_threshold(self, tracker):
        episodes = tracker.find_episodes("host", make_history("U" * 5 + "P" * 5))
        assert episodes[0].days_since_start == 4
        assert episodes[0].status == RecoveryStatus.STUCK_RECOVERY
        assert episodes[0].is_stuck

    def test_as_of_extends_days_since_start(self, tracker):
        history = make_history("U" * 5 + "P")
        episodes = tracker.find_episodes("host", history, as_of=START + timedelta(days=10))
        assert episodes[0].days_since_start == 5
        assert episodes[0].status == RecoveryStatus.STUCK_RECOVERY

    def test_reaching_full_health_is_not_stuck(self, tracker):
        """Fully healthy but not yet confirmed still counts as normal"""
        episodes = tracker.find_episodes(
            "host", make_history("U" * 5 + "F"), as_of=START + timedelta(days=12)
        )
        assert episodes[0].status == RecoveryStatus.NORMAL_RECOVERY

    def test_inactive_days_do_not_open_episodes(self, tracker):
        assert tracker.find_episodes("host", make_history("FFIIFF")) == []

    def test_latest_open_episode(self, tracker):
        closed = tracker.find_episodes("host", make_history("U" * 5 + "F" * 5))
        open_ = tracker.find_episodes("host", make_history("U" * 5 + "P"))

        assert RecoveryTracker.latest_open_episode(closed) is None
        assert RecoveryTracker.latest_open_episode(open_) is open_[0]
        assert RecoveryTracker.latest_open_episode([]) is None


class TestRecoveryPrecondition:
    """Every fully recovered episode climbed from a worse day and still holds"""

    @pytest.mark.parametrize("levels", [
        "U" * 5 + "F" * 5,
        "U" * 5 + "F" * 10 + "P" * 5,
        "UUFFF" + "UU" + "PPFFF",
        "PPFFFUFFF",
        "FFPPFFFFPF",
        "UPFUPFUPFF",
        "UUIIFFF",
        "F" * 25 + "P" * 3 + "F" * 2,
    ])
    def test_fully_recovered_precondition(self, tracker, classifier, levels):
        history = make_history(levels)
        active = [r for r in history if classifier.is_active(r)]
        latest_level = classifier.classify_day(active[-1])

        for episode in tracker.find_episodes("host", history):
            if episode.status != RecoveryStatus.FULLY_RECOVERED:
                continue
            earlier = [
                classifier.classify_day(r) for r in active if r.date < episode.start_date
            ]
            assert any(level.rank < HealthLevel.FULLY_HEALTHY.rank for level in earlier)
            assert latest_level == HealthLevel.FULLY_HEALTHY


class TestExplanation:
    """Test plain-language recovery explanations"""

    def test_explanations(self, tracker):
        recovered = tracker.find_episodes("host", make_history("U" * 5 + "PP" + "F" * 5))[0]
        stuck = tracker.find_episodes("host", make_history("U" * 5 + "P" * 5))[0]
        normal = tracker.find_episodes("host", make_history("U" * 5 + "P"))[0]

        assert recovered.explanation() == "Recovered to fully healthy in 2 days"
        assert "taking longer than expected (4 days)" in stuck.explanation()
        assert "Expected to complete within 2 days" in normal.explanation(2)


class TestSummaries:
    """Test population-level recovery aggregation"""

    def test_average_recovery_time(self, tracker):
        episodes = (
            tracker.find_episodes("a", make_history("U" * 5 + "F" * 5))
            + tracker.find_episodes("b", make_history("U" * 5 + "P" + "F" * 5))
        )
        # a reaches FULLY on its first improving day, b one day later
        assert average_recovery_time(episodes) == 0.5

    def test_average_recovery_time_empty(self):
        assert average_recovery_time([]) == 0.0

    def test_summarize(self, tracker):
        episodes = (
            tracker.find_episodes("recovered", make_history("U" * 5 + "PP" + "F" * 5))
            + tracker.find_episodes("relapsed", make_history("U" * 5 + "F" * 10 + "P" * 5))
            + tracker.find_episodes("stuck", make_history("U" * 5 + "P" * 5))
            + tracker.find_episodes("normal", make_history("U" * 5 + "P"))
        )

        summary = summarize_recoveries(episodes)

        assert summary.total_recovering == 2
        assert summary.normal_recovery == 1
        assert summary.stuck_recovery == 1
        assert summary.fully_recovered == 1
        assert summary.average_recovery_time == 2.0
        assert summary.stuck_hosts == ("stuck",)
        assert summary.recovering_hosts == ("normal", "stuck")
        assert summary.to_dict()["stuck_hosts"] == ["stuck"]
