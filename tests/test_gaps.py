"""Tests for tool-specific gap analysis"""

import pytest

from toolwatch_core.gaps import GapAnalyzer, GapKind, percentage_expected

from conftest import make_record


@pytest.fixture
def gaps(thresholds, classifier):
    return GapAnalyzer(thresholds, classifier)


class TestAnalyzeGap:
    """Test GapAnalyzer.analyze_gap"""

    def test_inactive_host_is_expected_gap(self, gaps):
        """Stale host with no rapid7 record is the provider deregistering it"""
        record = make_record(0, found=(), lag=20)

        gap = gaps.analyze_gap("host-d", record, "rapid7")

        assert gap.kind == GapKind.EXPECTED_GAP
        assert gap.is_expected
        assert "20 days" in gap.reason

    def test_never_seen_is_expected_gap(self, gaps):
        gap = gaps.analyze_gap("host", make_record(0, found=(), lag=None), "rapid7")
        assert gap.kind == GapKind.EXPECTED_GAP
        assert gap.discovery_lag_days is None

    def test_alive_elsewhere_is_investigate_gap(self, gaps):
        record = make_record(0, found=("automox",), lag=0)

        gap = gaps.analyze_gap("host-e", record, "rapid7")

        assert gap.kind == GapKind.INVESTIGATE_GAP
        assert "automox" in gap.reason
        assert gap.to_dict()["is_expected"] is False

    def test_tool_present_is_not_a_gap(self, gaps):
        assert gaps.analyze_gap("host", make_record(0), "rapid7") is None

    def test_tool_in_grace_period_is_not_a_gap(self, gaps):
        record = make_record(0, found=("automox",), tool_lag={"rapid7": 1})
        assert gaps.analyze_gap("host", record, "rapid7") is None

    def test_active_with_no_tools_is_general_unhealthy(self, gaps):
        assert gaps.analyze_gap("host", make_record(0, found=()), "rapid7") is None

    def test_other_target_tool(self, gaps):
        record = make_record(0, found=("rapid7",))
        gap = gaps.analyze_gap("host", record, "defender")
        assert gap.kind == GapKind.INVESTIGATE_GAP
        assert gap.tool_id == "defender"


class TestGapSummary:
    """Test population-level gap accounting"""

    def test_every_host_accounted_once(self, gaps):
        records = {
            "present": make_record(0),
            "stale": make_record(0, found=(), lag=40),
            "never-seen": make_record(0, found=(), lag=None),
            "broken-agent": make_record(0, found=("automox", "defender")),
            "dark": make_record(0, found=()),
        }

        summary = gaps.summarize(records, "rapid7")

        assert summary.total_hosts == 5
        assert summary.tool_present == 1
        assert summary.expected_gaps == 2
        assert summary.investigate_gaps == 1
        assert summary.general_unhealthy == 1
        assert (
            summary.tool_present + summary.expected_gaps
            + summary.investigate_gaps + summary.general_unhealthy
        ) == summary.total_hosts
        assert summary.percentage_expected == pytest.approx(66.7)
        assert summary.breakdown == {
            "expected_inactive": 1,
            "expected_never_seen": 1,
            "investigate_agent": 1,
        }
        assert [g.host_id for g in summary.systems_to_investigate] == ["broken-agent"]

    def test_malformed_records_are_skipped(self, gaps):
        summary = gaps.summarize({"bad": make_record(0, lag=-3)}, "rapid7")
        assert summary.total_hosts == 0

    def test_no_gaps_is_zero_percent(self, gaps):
        summary = gaps.summarize({"a": make_record(0)}, "rapid7")
        assert summary.total_gaps == 0
        assert summary.percentage_expected == 0.0

    def test_percentage_expected(self):
        assert percentage_expected(0, 0) == 0.0
        assert percentage_expected(3, 1) == 75.0
        assert percentage_expected(0, 4) == 0.0
