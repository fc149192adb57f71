"""
Aegrid Resilience v1.0 — Unit Tests: resilience_status.py

Run: pytest tests/test_resilience_status.py -v
"""
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def status_mod(tmp_home, monkeypatch):
    monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))
    for mod in list(sys.modules):
        if mod == "resilience_status":
            del sys.modules[mod]
    import resilience_status
    return resilience_status


@pytest.fixture
def monitor(status_mod):
    return status_mod.ResilienceMonitor("http://localhost:11450/")


# ── Color coding ──────────────────────────────────────────────────────────────

class TestColor:
    @pytest.mark.parametrize("pct,expected", [
        (0, "green"), (59.9, "green"), (60, "yellow"), (79, "yellow"), (80, "red"), (99, "red"),
    ])
    def test_thresholds(self, status_mod, pct, expected):
        assert status_mod.color(pct) == expected


# ── API polling ───────────────────────────────────────────────────────────────

class TestPolling:
    def test_trailing_slash_stripped(self, monitor):
        assert monitor.api_url == "http://localhost:11450"

    @patch("requests.get")
    def test_engine_status_parsed(self, mock_get, monitor, mock_status_response):
        mock_get.return_value = mock_status_response
        st = monitor.engine_status()
        assert st["mode"] == "ELEVATED"
        assert st["mode_color"] == "yellow"
        assert st["level"] == 65
        assert "TIME" in st["margins"]
        mock_get.assert_called_with("http://localhost:11450/resilience/status", timeout=2)

    @patch("requests.get", side_effect=requests.exceptions.ConnectionError("refused"))
    def test_engine_status_offline(self, mock_get, monitor):
        assert monitor.engine_status() is None

    @patch("requests.get")
    def test_api_health_online(self, mock_get, monitor):
        resp = MagicMock()
        resp.json.return_value = {"uptime": 12.5, "version": "1.0"}
        mock_get.return_value = resp
        h = monitor.api_health()
        assert h["status"] == "✓ Running"
        assert h["uptime"] == 12.5

    @patch("requests.get", side_effect=requests.exceptions.Timeout())
    def test_api_health_offline(self, mock_get, monitor):
        h = monitor.api_health()
        assert h["color"] == "red"


# ── Resources & render ────────────────────────────────────────────────────────

class TestResourcesAndRender:
    def test_resources_shape(self, monitor):
        res = monitor.resources()
        assert set(res) == {"cpu", "mem", "disk"}
        assert 0 <= res["cpu"] <= 100
        assert 0 <= res["mem"] <= 100

    def test_disk_falls_back_to_root(self, monitor, status_mod):
        real = status_mod.psutil.disk_usage

        def fake(path):
            if path != "/":
                raise FileNotFoundError(path)
            return real("/")

        with patch.object(status_mod.psutil, "disk_usage", side_effect=fake):
            assert monitor.resources()["disk"] is not None

    def test_unreadable_disk_shown_as_na(self, monitor, status_mod):
        with patch.object(status_mod.psutil, "disk_usage", side_effect=PermissionError("denied")):
            assert monitor.resources()["disk"] is None
            assert "disk n/a" in monitor.host_line().plain

    @patch("requests.get")
    def test_render_online(self, mock_get, monitor, status_mod, mock_status_response):
        mock_get.return_value = mock_status_response
        with patch.object(status_mod, "console") as console:
            monitor.render()
        assert console.print.call_count >= 3
        panels = [c.args[0] for c in console.print.call_args_list
                  if c.args and isinstance(c.args[0], status_mod.Panel)]
        assert any("Host" in str(p.renderable) and "ELEVATED" in str(p.renderable) for p in panels)

    @patch("requests.get", side_effect=requests.exceptions.ConnectionError("refused"))
    def test_render_offline(self, mock_get, monitor, status_mod):
        with patch.object(status_mod, "console") as console:
            monitor.render()
        console.clear.assert_called_once()

    def test_main_stops_on_interrupt(self, status_mod):
        with patch.object(status_mod.ResilienceMonitor, "render", side_effect=KeyboardInterrupt), \
             patch.object(status_mod, "console") as console:
            status_mod.main()
        console.print.assert_called_with("\n[yellow]Monitor stopped.[/yellow]")
