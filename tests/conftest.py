"""pytest configuration for toolwatch-core tests"""

import os
import sys
from datetime import date, timedelta

import pytest

# Add the parent directory to the path so we can import toolwatch_core
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from toolwatch_core.config import AnalyticsThresholds
from toolwatch_core.health import DailyHealthRecord, HealthClassifier, HostHistory
from toolwatch_core.recovery import RecoveryTracker
from toolwatch_core.stability import StabilityAnalyzer

TOOLS = ("rapid7", "automox", "defender")
START = date(2026, 1, 1)

# Tools reporting for each level code used by make_history
LEVEL_TOOLS = {
    "F": TOOLS,
    "P": ("rapid7", "automox"),
    "U": (),
}


def make_record(day, found=TOOLS, lag=0, tool_lag=None, start=START):
    """Build one record ``day`` days after ``start``"""
    return DailyHealthRecord(
        date=start + timedelta(days=day),
        discovery_lag_days=lag,
        tool_found={tool: tool in found for tool in TOOLS},
        tool_lag_days=dict(tool_lag or {}),
    )


def make_history(levels, start=START):
    """
    Build consecutive daily records from a level string.

    F = all tools, P = rapid7 and automox only, U = no tools (active),
    I = inactive (discovery lag beyond the threshold).
    """
    records = []
    for day, code in enumerate(levels):
        if code == "I":
            records.append(make_record(day, found=(), lag=30, start=start))
        else:
            records.append(make_record(day, found=LEVEL_TOOLS[code], start=start))
    return records


def make_host(host_id, levels, environment="prod", fullname=None, start=START):
    return HostHistory(
        host_id=host_id,
        records=tuple(make_history(levels, start=start)),
        fullname=fullname or f"{host_id}.corp.example.com",
        environment=environment,
    )


@pytest.fixture
def thresholds():
    return AnalyticsThresholds()


@pytest.fixture
def classifier(thresholds):
    return HealthClassifier(thresholds)


@pytest.fixture
def tracker(thresholds, classifier):
    return RecoveryTracker(thresholds, classifier)


@pytest.fixture
def stability(thresholds, classifier, tracker):
    return StabilityAnalyzer(thresholds, classifier, tracker)
