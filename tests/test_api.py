"""
Aegrid Resilience v1.0 — Integration Tests: resilience_api.py (Flask)

Run: pytest tests/test_api.py -v
"""
import json

import pytest


def _signal(sig_id="api-1", sig_type="ASSET_CONDITION", severity="MEDIUM"):
    return {"id": sig_id, "type": sig_type, "severity": severity,
            "source": "scada", "timestamp": "2026-03-01T12:00:00Z"}


# ── Core endpoints ────────────────────────────────────────────────────────────

class TestCoreEndpoints:
    def test_health(self, api_client):
        r = api_client.get("/health")
        assert r.status_code == 200
        data = r.get_json()
        assert data["service"] == "AEGRID-RESILIENCE"
        assert data["port"] == 11450

    def test_status(self, api_client):
        data = api_client.get("/resilience/status").get_json()
        assert data["data"]["operational"] is True
        assert data["data"]["mode"] == "NORMAL"
        assert len(data["state"]["margin_allocation"]) == 4

    def test_process_signals(self, api_client):
        r = api_client.post("/resilience/signals", json={"signals": [_signal()]})
        assert r.status_code == 200
        body = r.get_json()
        assert body["success"] is True
        assert body["data"]["processed"] == 1
        assert body["data"]["level"] == 90

    def test_process_signals_requires_list(self, api_client):
        assert api_client.post("/resilience/signals", json={}).status_code == 400
        assert api_client.post("/resilience/signals", data="nope").status_code == 400

    def test_critical_signals_change_mode(self, api_client):
        sigs = [_signal(f"c-{i}", "RISK_ESCALATION", "CRITICAL") for i in range(2)]
        api_client.post("/resilience/signals", json={"signals": sigs})
        data = api_client.get("/resilience/status").get_json()
        assert data["data"]["mode"] == "HIGH_STRESS"

    def test_queue_signals(self, api_client):
        r = api_client.post("/resilience/queue", json={"signals": [_signal(), {"id": "bad"}]})
        assert r.status_code == 202
        assert r.get_json()["data"]["accepted"] == 1

    def test_health_check(self, api_client):
        data = api_client.get("/resilience/health-check").get_json()
        assert len(data["data"]["components"]) == 5

    def test_update_config(self, api_client):
        r = api_client.put("/resilience/config", json={"emergency_exit_level": 85})
        assert r.status_code == 200
        assert "emergency_exit_level" in r.get_json()["data"]["applied"]

    def test_bad_nested_config_does_not_break_signals(self, api_client):
        r = api_client.put("/resilience/config", json={"antifragile": {"cooldown_seconds": "soon"}})
        assert r.get_json()["data"]["applied"] == []
        sigs = [_signal(f"d-{i}", "PERFORMANCE_DEGRADATION", "CRITICAL") for i in range(2)]
        for _ in range(2):
            assert api_client.post("/resilience/signals", json={"signals": sigs}).status_code == 200

    def test_margin_totals_update_visible(self, api_client):
        api_client.put("/resilience/config", json={"margin_totals": {"TIME": 500}})
        allocs = api_client.get("/margin/status").get_json()["data"]["allocations"]
        time_pool = next(a for a in allocs if a["margin_type"] == "TIME")
        assert time_pool["total_margin"] == 500

    def test_update_config_requires_object(self, api_client):
        r = api_client.put("/resilience/config", data=json.dumps([1]),
                           content_type="application/json")
        assert r.status_code == 400


# ── Margin endpoints ──────────────────────────────────────────────────────────

class TestMarginEndpoints:
    def test_margin_status(self, api_client):
        data = api_client.get("/margin/status").get_json()
        assert len(data["data"]["allocations"]) == 4

    def test_margin_metrics(self, api_client):
        data = api_client.get("/margin/metrics").get_json()
        assert data["data"]["average_utilization"] == pytest.approx(0.2)

    def test_forecast_days(self, api_client):
        data = api_client.get("/margin/forecast?days=3").get_json()
        assert data["data"]["time_horizon_days"] == 3

    @pytest.mark.parametrize("days", ["abc", "0"])
    def test_forecast_bad_days(self, api_client, days):
        assert api_client.get(f"/margin/forecast?days={days}").status_code == 400

    def test_allocate(self, api_client):
        r = api_client.post("/margin/allocate", json={"margin_type": "time", "amount": 5})
        assert r.status_code == 200
        assert r.get_json()["data"]["allocated_margin"] == pytest.approx(25)

    def test_allocate_bad_input(self, api_client):
        r = api_client.post("/margin/allocate", json={"margin_type": "TIME", "amount": -1})
        assert r.status_code == 400

    def test_allocate_insufficient(self, api_client):
        r = api_client.post("/margin/allocate", json={"margin_type": "TIME", "amount": 5000})
        assert r.status_code == 409
        assert "Insufficient" in r.get_json()["error"]

    def test_deploy(self, api_client):
        r = api_client.post("/margin/deploy", json={"margin_type": "CAPACITY", "amount": 20})
        assert r.status_code == 200
        assert r.get_json()["data"]["status"] == "completed"
        mode = api_client.get("/resilience/status").get_json()["data"]["mode"]
        assert mode == "EMERGENCY"


# ── Antifragile, adaptive, stress ─────────────────────────────────────────────

class TestOtherEndpoints:
    def test_antifragile_status(self, api_client):
        data = api_client.get("/antifragile/status").get_json()
        assert len(data["patterns"]) == 3
        assert data["data"]["antifragile_score"] == 50

    def test_adaptive_status(self, api_client):
        data = api_client.get("/adaptive/status").get_json()
        assert len(data["scorers"]) == 5

    def test_stress_custom_config(self, api_client):
        cfg = {"name": "mini", "batches": 2, "batch_size": 2, "signal_types": ["OPERATIONAL"]}
        r = api_client.post("/stress/run", json={"config": cfg})
        assert r.status_code == 200
        assert r.get_json()["data"]["signals"] == 4

    def test_stress_unknown_scenario(self, api_client):
        r = api_client.post("/stress/run", json={"scenario": "meltdown"})
        assert r.status_code == 404
        assert "baseline" in r.get_json()["scenarios"]

    def test_stress_bad_config(self, api_client):
        r = api_client.post("/stress/run", json={"config": {"signal_types": ["METEOR"]}})
        assert r.status_code == 400

    def test_unknown_route_lists_endpoints(self, api_client):
        r = api_client.get("/nope")
        assert r.status_code == 404
        assert "GET  /health" in r.get_json()["endpoints"]
