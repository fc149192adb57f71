"""
Aegrid Resilience v1.0 — Unit Tests: Configuration

Run: pytest tests/test_config.py -v
"""
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from resilience.config import (
    CONFIG_FILE,
    NORMAL_POLICY_ID,
    ResilienceConfig,
    apply_overrides,
    default_emergency_protocols,
    default_policies,
    default_thresholds,
    load_config,
)
from resilience.models import MarginType, ResilienceMode, ResponseActionType


# ── Defaults ──────────────────────────────────────────────────────────────────

class TestDefaults:
    def test_mode_thresholds(self):
        cfg = ResilienceConfig()
        assert (cfg.mode_thresholds.normal, cfg.mode_thresholds.elevated,
                cfg.mode_thresholds.high_stress) == (80, 60, 40)

    def test_emergency_exit_and_override(self):
        cfg = ResilienceConfig()
        assert cfg.emergency_exit_level == 80
        assert cfg.deployment_override_utilization == 0.8

    def test_margin_totals(self):
        cfg = ResilienceConfig()
        assert cfg.margin_totals[MarginType.TIME] == 100
        assert cfg.margin_totals[MarginType.FINANCIAL] == 100_000

    def test_time_thresholds(self):
        t = default_thresholds()[MarginType.TIME]
        assert (t.warning, t.critical, t.emergency, t.optimal_min, t.optimal_max) == (20, 10, 5, 15, 30)

    def test_policy_ids(self):
        ids = [p.id for p in default_policies()]
        assert ids == ["emergency-response-policy", "risk-escalation-policy",
                       "maintenance-window-policy", NORMAL_POLICY_ID]

    def test_normal_policy_matches_any_type(self):
        normal = next(p for p in default_policies() if p.id == NORMAL_POLICY_ID)
        assert normal.signal_types == []
        assert normal.modes == [ResilienceMode.NORMAL]

    def test_emergency_protocol_deploys_capacity(self):
        proto = default_emergency_protocols()[0]
        first = sorted(proto.response_actions, key=lambda a: a.order)[0]
        assert first.type == ResponseActionType.DEPLOY_MARGIN
        assert first.parameters == {"margin_type": "CAPACITY", "amount": 50}

    def test_instances_do_not_share_mutables(self):
        a, b = ResilienceConfig(), ResilienceConfig()
        a.margin_totals[MarginType.TIME] = 1
        assert b.margin_totals[MarginType.TIME] == 100

    def test_to_dict_is_json_serializable(self):
        json.dumps(ResilienceConfig().to_dict())


# ── apply_overrides ───────────────────────────────────────────────────────────

class TestApplyOverrides:
    def test_scalar_override_coerced(self):
        cfg = ResilienceConfig()
        applied = apply_overrides(cfg, {"emergency_exit_level": "85"})
        assert cfg.emergency_exit_level == 85.0
        assert applied == ["emergency_exit_level"]

    def test_invalid_scalar_skipped(self):
        cfg = ResilienceConfig()
        applied = apply_overrides(cfg, {"max_pending_signals": "lots"})
        assert cfg.max_pending_signals == 1000
        assert applied == []

    def test_nested_override(self):
        cfg = ResilienceConfig()
        applied = apply_overrides(cfg, {"antifragile": {"cooldown_seconds": 10, "bogus": 1}})
        assert cfg.antifragile.cooldown_seconds == 10
        assert applied == ["antifragile.cooldown_seconds"]

    def test_mode_thresholds_override(self):
        cfg = ResilienceConfig()
        apply_overrides(cfg, {"mode_thresholds": {"normal": 85}})
        assert cfg.mode_thresholds.normal == 85

    def test_margin_totals_override(self):
        cfg = ResilienceConfig()
        applied = apply_overrides(cfg, {"margin_totals": {"TIME": 120, "NOPE": 5}})
        assert cfg.margin_totals[MarginType.TIME] == 120.0
        assert applied == ["margin_totals.TIME"]

    def test_unknown_keys_ignored(self):
        cfg = ResilienceConfig()
        assert apply_overrides(cfg, {"colour": "blue"}) == []

    def test_invalid_nested_value_skipped(self):
        cfg = ResilienceConfig()
        applied = apply_overrides(cfg, {"antifragile": {"cooldown_seconds": "soon",
                                                        "activation_threshold": "55"}})
        assert cfg.antifragile.cooldown_seconds == 300.0
        assert cfg.antifragile.activation_threshold == 55.0
        assert applied == ["antifragile.activation_threshold"]

    @pytest.mark.parametrize("value", ["yes", 1, None])
    def test_nested_bool_requires_bool(self, value):
        cfg = ResilienceConfig()
        assert apply_overrides(cfg, {"adaptive": {"enabled": value}}) == []
        assert cfg.adaptive.enabled is True

    def test_nested_number_rejects_containers(self):
        cfg = ResilienceConfig()
        assert apply_overrides(cfg, {"mode_thresholds": {"normal": [85]}}) == []
        assert cfg.mode_thresholds.normal == 80.0

    def test_hybrid_weights_coerced(self):
        cfg = ResilienceConfig()
        apply_overrides(cfg, {"adaptive": {"hybrid_weights": {"heuristic": "0.5"}}})
        assert cfg.adaptive.hybrid_weights == {"heuristic": 0.5, "rule": 0.3, "pattern": 0.3}

    @pytest.mark.parametrize("total", [0, -10, "many"])
    def test_invalid_margin_total_skipped(self, total):
        cfg = ResilienceConfig()
        assert apply_overrides(cfg, {"margin_totals": {"TIME": total}}) == []
        assert cfg.margin_totals[MarginType.TIME] == 100.0


# ── load_config ───────────────────────────────────────────────────────────────

class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_home, monkeypatch):
        monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))
        assert load_config().emergency_exit_level == 80

    def test_file_overrides_applied(self, tmp_home, monkeypatch):
        monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))
        (tmp_home / CONFIG_FILE).write_text(json.dumps({"emergency_exit_level": 90}))
        assert load_config().emergency_exit_level == 90

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"max_pending_signals": 5}))
        assert load_config(str(path)).max_pending_signals == 5

    def test_broken_json_falls_back(self, tmp_home, monkeypatch):
        monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))
        (tmp_home / CONFIG_FILE).write_text("{not json")
        assert load_config().emergency_exit_level == 80

    def test_non_object_falls_back(self, tmp_home, monkeypatch):
        monkeypatch.setenv("RESILIENCE_HOME", str(tmp_home))
        (tmp_home / CONFIG_FILE).write_text("[1, 2, 3]")
        cfg = load_config()
        assert cfg.max_pending_signals == 1000
