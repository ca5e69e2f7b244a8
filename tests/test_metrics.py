"""Tests for Prometheus metrics module

Ensures evaluation, classification and cache metrics are tracked and exposed.
"""

from prometheus_client import REGISTRY

from toolwatch_core import metrics


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetricsTracking:
    """Test metrics tracking functions"""

    def test_track_request(self):
        before = sample(
            "toolwatch_http_requests_total",
            method="POST", endpoint="/v1/analytics/summary", status_code="200",
        )

        metrics.track_request("POST", "/v1/analytics/summary", 200, 12.5)

        after = sample(
            "toolwatch_http_requests_total",
            method="POST", endpoint="/v1/analytics/summary", status_code="200",
        )
        assert after == before + 1

    def test_track_evaluation_success(self):
        before = sample("toolwatch_evaluations_total", status="success")

        metrics.track_evaluation(40.0, 17)

        assert sample("toolwatch_evaluations_total", status="success") == before + 1
        assert sample("toolwatch_last_evaluation_hosts") == 17

    def test_track_evaluation_failure_keeps_host_gauge(self):
        metrics.track_evaluation(10.0, 5)
        before = sample("toolwatch_evaluations_total", status="cancelled")

        metrics.track_evaluation(0, 0, status="cancelled")

        assert sample("toolwatch_evaluations_total", status="cancelled") == before + 1
        assert sample("toolwatch_last_evaluation_hosts") == 5

    def test_track_classification(self):
        before = sample("toolwatch_hosts_classified_total", classification="FLAPPING")
        metrics.track_classification("FLAPPING")
        assert sample("toolwatch_hosts_classified_total", classification="FLAPPING") == before + 1

    def test_track_exclusion(self):
        before = sample("toolwatch_hosts_excluded_total", reason="no_records")
        metrics.track_exclusion("no_records")
        assert sample("toolwatch_hosts_excluded_total", reason="no_records") == before + 1

    def test_track_cache(self):
        hits = sample("toolwatch_cache_requests_total", result="hit")
        misses = sample("toolwatch_cache_requests_total", result="miss")

        metrics.track_cache(True)
        metrics.track_cache(False)

        assert sample("toolwatch_cache_requests_total", result="hit") == hits + 1
        assert sample("toolwatch_cache_requests_total", result="miss") == misses + 1


class TestMetricsResponse:
    """Test the exposition response"""

    def test_get_metrics_response(self):
        response = metrics.get_metrics_response()

        assert response.status_code == 200
        assert response.media_type.startswith("text/plain")
        assert b"toolwatch_evaluations_total" in response.body
