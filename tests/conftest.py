"""
Aegrid Resilience v1.0 — Test Fixtures (conftest.py)
Shared fixtures for all test modules.
"""
import importlib
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from resilience.config import ResilienceConfig  # noqa: E402
from resilience.engine import ResilienceEngine  # noqa: E402
from resilience.models import Signal, SignalSeverity, SignalType  # noqa: E402


# ── Directory fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def tmp_home(tmp_path):
    """Create a temporary RESILIENCE_HOME with a logs directory."""
    base = tmp_path / "home"
    (base / "logs").mkdir(parents=True, exist_ok=True)
    return base


# ── Signal fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def make_signal():
    """Factory for Signal objects; ids are sequential per test."""
    counter = {"n": 0}

    def _make(sig_type=SignalType.OPERATIONAL, severity=SignalSeverity.LOW,
              source="scada-01", asset_id=None, data=None):
        counter["n"] += 1
        return Signal(
            id        = f"sig-{counter['n']}",
            type      = SignalType(sig_type),
            severity  = SignalSeverity(severity),
            source    = source,
            timestamp = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
            data      = data or {},
            asset_id  = asset_id,
        )
    return _make


@pytest.fixture
def raw_signal():
    """A valid signal as it arrives over the wire."""
    return {
        "id": "wire-1",
        "type": "ASSET_CONDITION",
        "severity": "MEDIUM",
        "source": "substation-7",
        "timestamp": "2026-03-01T12:00:00Z",
        "data": {"condition": "degrading"},
        "assetId": "transformer-3",
    }


# ── Config & engine fixtures ──────────────────────────────────────────────────

@pytest.fixture
def fast_config():
    """Deployments complete inline; background timers effectively idle."""
    return ResilienceConfig(
        deployment_time_scale=0.0,
        health_check_interval=3600,
        signal_processing_interval=3600,
    )


@pytest.fixture
def engine(fast_config):
    """An engine that tests initialize themselves; timers cancelled on teardown."""
    eng = ResilienceEngine(fast_config)
    yield eng
    eng.scheduler.cancel_all()


@pytest.fixture
def resilience_config_file(tmp_home):
    cfg = {
        "deployment_time_scale": 0,
        "health_check_interval": 3600,
        "signal_processing_interval": 3600,
    }
    path = tmp_home / "resilience_config.json"
    path.write_text(json.dumps(cfg, indent=2))
    return path


# ── Mock HTTP responses ───────────────────────────────────────────────────────

@pytest.fixture
def mock_status_response():
    """Mock requests.get result for GET /resilience/status."""
    mock = MagicMock()
    mock.status_code = 200
    mock.json.return_value = {
        "status": "success",
        "data": {
            "operational": True,
            "mode": "ELEVATED",
            "health_score": 72.5,
            "margin_utilization": 35.0,
            "antifragile_score": 51.0,
            "active_signals_count": 4,
        },
        "state": {
            "resilience_level": 65,
            "margin_allocation": {
                "TIME": {"allocated_margin": 30, "available_margin": 70,
                         "total_margin": 100, "utilization_rate": 0.3},
            },
        },
    }
    return mock


# ── Flask test client ─────────────────────────────────────────────────────────

@pytest.fixture
def api_client(tmp_home, resilience_config_file, monkeypatch):
    """
    Return a Flask test client for resilience_api.py with RESILIENCE_HOME
    pointing at the temporary directory.
    """
    monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))

    # Remove any cached module so a fresh engine is built
    for mod in list(sys.modules.keys()):
        if "resilience_api" in mod:
            del sys.modules[mod]

    resilience_api = importlib.import_module("resilience.resilience_api")

    resilience_api.app.config["TESTING"] = True
    with resilience_api.app.test_client() as client:
        yield client
    resilience_api._engine.scheduler.cancel_all()
