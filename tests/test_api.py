import csv
import io
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from toolwatch_core.config import settings
from toolwatch_core.main import app
from toolwatch_core.combinations import CSV_HEADER


# Create test client
client = TestClient(app)

START = date(2026, 3, 1)
DAYS = 10

LEVEL_TOOLS = {
    "F": ("rapid7", "automox", "defender"),
    "P": ("rapid7", "automox"),
    "U": (),
}


def host_payload(shortname, levels, environment="prod"):
    return {
        "shortname": shortname,
        "fullname": f"{shortname}.corp.example.com",
        "environment": environment,
        "records": [
            {
                "date": (START + timedelta(days=i)).isoformat(),
                "discovery_lag_days": 0,
                "tool_found": {tool: tool in LEVEL_TOOLS[code] for tool in LEVEL_TOOLS["F"]},
            }
            for i, code in enumerate(levels)
        ],
    }


def request_body(window_days=DAYS, **kwargs):
    body = {
        "window_days": window_days,
        "hosts": [
            host_payload("web-01", "F" * DAYS),
            host_payload("web-02", "P" * DAYS),
            host_payload("db-01", "U" * DAYS, environment="dev"),
        ],
    }
    body.update(kwargs)
    return body


class TestRootEndpoint:
    """Test the root endpoint"""

    def test_root_returns_status(self):
        """Test root endpoint returns basic info"""
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "ToolWatch Core"
        assert data["status"] == "running"
        assert "/v1/analytics/summary" in data["endpoints"]


class TestHealthEndpoint:
    """Test the health check endpoint"""

    def test_health_check(self):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "cache" in data["services"]
        assert data["config"]["gap_target_tool"] == "rapid7"

    def test_health_reports_rate_limiter_and_security_headers(self):
        response = client.get("/health")
        services = response.json()["services"]

        assert services["rate_limiter"]["requests_per_minute"] == settings.RATE_LIMIT_PER_MINUTE
        assert services["rate_limiter"]["tracked_ips"] >= 1
        assert "X-Frame-Options" in services["security_headers"]

    def test_request_id_is_echoed(self):
        response = client.get("/health", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestMetricsEndpoint:
    """Test the Prometheus endpoint"""

    def test_metrics_exposed(self):
        client.post("/v1/analytics/stability-overview", json=request_body())

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "toolwatch_http_requests_total" in response.text
        assert "toolwatch_hosts_classified_total" in response.text


class TestRequestValidation:
    """Test request body validation"""

    @pytest.mark.parametrize("window", [0, -5, True])
    def test_bad_window_is_422(self, window):
        response = client.post("/v1/analytics/summary", json=request_body(window_days=window))
        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"

    def test_window_above_max_is_400(self):
        response = client.post("/v1/analytics/summary", json=request_body(window_days=100000))

        assert response.status_code == 400
        assert response.json()["type"] == "InvalidWindowException"

    def test_duplicate_shortnames_rejected(self):
        body = request_body()
        body["hosts"].append(host_payload("web-01", "F"))

        response = client.post("/v1/analytics/summary", json=body)

        assert response.status_code == 422


class TestAnalyticsEndpoints:
    """Test the analytics endpoints end to end"""

    def test_summary(self):
        response = client.post("/v1/analytics/summary", json=request_body())
        assert response.status_code == 200

        data = response.json()
        assert data["overview"]["total_systems"] == 3
        assert data["overview"]["stable_healthy"] == 1
        assert data["overview"]["stable_unhealthy"] == 2
        assert data["action_items"][-1]["category"] == "Expected Behavior"
        assert "systems" not in data["trailing_window"]

    def test_environment_filter(self):
        response = client.post(
            "/v1/analytics/stability-overview", json=request_body(environment="dev")
        )
        assert response.status_code == 200
        assert response.json()["total_systems"] == 1

    def test_system_classification(self):
        response = client.post("/v1/analytics/system-classification", json=request_body())
        data = response.json()

        assert {s["shortname"] for s in data["actionable_systems"]} == {"web-02", "db-01"}
        assert [s["shortname"] for s in data["expected_behavior_systems"]] == ["web-01"]

    def test_gap_analysis_for_tool(self):
        response = client.post(
            "/v1/analytics/gap-analysis", params={"tool": "defender"}, json=request_body()
        )
        data = response.json()

        assert data["tool_id"] == "defender"
        assert data["investigate_gaps"] == 1
        assert data["systems_to_investigate"][0]["host_id"] == "web-02"
        assert data["general_unhealthy"] == 1

    def test_gap_analysis_unknown_tool(self):
        response = client.post(
            "/v1/analytics/gap-analysis", params={"tool": "crowdstrike"}, json=request_body()
        )
        assert response.status_code == 400
        assert response.json()["type"] == "UnknownToolException"

    def test_recovery_status(self):
        response = client.post("/v1/analytics/recovery-status", json=request_body())
        data = response.json()

        assert data["total_recovering"] == 0
        assert data["recovering_systems"] == []

    def test_tooling_combinations(self):
        response = client.post("/v1/analytics/tooling-combinations", json=request_body())
        data = response.json()

        assert data["total_unhealthy_systems"] == 2
        assert data["total_active_systems"] == 3
        assert {tuple(c["missing_tools"]) for c in data["combinations"]} == {
            ("defender",),
            ("automox", "defender", "rapid7"),
        }

    def test_trailing_window(self):
        response = client.post(
            "/v1/analytics/trailing-window", params={"window_size": 3}, json=request_body()
        )
        data = response.json()

        assert data["date_range"]["days"] == 3
        assert data["metrics"]["total_systems"] == 3
        assert len(data["systems"]) == 3

    def test_system_insights(self):
        response = client.post("/v1/analytics/system-insights/web-02", json=request_body())
        data = response.json()

        assert response.status_code == 200
        assert data["classification"] == "STABLE_UNHEALTHY"
        assert len(data["health_history"]) == DAYS

    def test_system_insights_unknown_host(self):
        response = client.post("/v1/analytics/system-insights/nope", json=request_body())
        assert response.status_code == 404
        assert response.json()["type"] == "HostNotFoundException"

    def test_health_trend(self):
        response = client.post("/v1/analytics/health-trend", json=request_body())
        data = response.json()

        assert response.status_code == 200
        assert len(data["trend_data"]) == DAYS
        assert data["trend_data"][0]["health_rate"] == pytest.approx(55.6)
        assert data["summary"]["health_improvement"] == 0.0
        assert data["summary"]["total_systems_now"] == 3

    def test_missing_systems(self):
        body = request_body()
        body["hosts"].append(host_payload("old-01", "F" * 3))

        response = client.post("/v1/analytics/missing-systems", json=body)
        data = response.json()

        assert data["as_of"] == (START + timedelta(days=DAYS - 1)).isoformat()
        assert data["count"] == 1
        assert data["systems"][0]["shortname"] == "old-01"
        assert data["systems"][0]["days_since_last_seen"] == 7

    def test_host_missing_from_snapshot_is_not_a_current_gap(self):
        body = request_body()
        body["hosts"].append(host_payload("old-01", "P" * 3))

        data = client.post("/v1/analytics/tooling-combinations", json=body).json()

        assert data["total_unhealthy_systems"] == 2
        assert data["total_active_systems"] == 3


class TestCombinationExport:
    """Test the CSV export endpoint"""

    def test_export_csv(self):
        response = client.post(
            "/v1/analytics/tooling-combinations/export",
            params={"missing": "defender"},
            json=request_body(),
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "missing-defender.csv" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == CSV_HEADER
        assert rows[1][0] == "web-02"

    def test_export_no_match_is_404(self):
        response = client.post(
            "/v1/analytics/tooling-combinations/export",
            params={"missing": "rapid7"},
            json=request_body(),
        )
        assert response.status_code == 404

    def test_export_empty_list_is_400(self):
        response = client.post(
            "/v1/analytics/tooling-combinations/export",
            params={"missing": " , "},
            json=request_body(),
        )
        assert response.status_code == 400
