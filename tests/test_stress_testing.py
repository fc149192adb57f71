"""
Aegrid Resilience v1.0 — Unit Tests: Stress Testing

Run: pytest tests/test_stress_testing.py -v
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from resilience.models import SignalSeverity, SignalType
from resilience.stress_testing import (
    BUILTIN_SCENARIOS,
    SignalGenerator,
    StressTestConfig,
    StressTestRunner,
    outcome_for,
)


# ── Generator ─────────────────────────────────────────────────────────────────

class TestSignalGenerator:
    def test_seeded_generation_reproducible(self):
        cfg = BUILTIN_SCENARIOS["cascade"]
        a = SignalGenerator(7).generate(cfg)
        b = SignalGenerator(7).generate(cfg)
        assert [(s.type, s.severity) for s in a] == [(s.type, s.severity) for s in b]

    def test_batch_size_and_unique_ids(self):
        sigs = SignalGenerator(1).generate(BUILTIN_SCENARIOS["surge"])
        assert len(sigs) == 8
        assert len({s.id for s in sigs}) == 8
        assert all(s.source == "stress-test:surge" for s in sigs)

    def test_zero_weight_severity_never_chosen(self):
        gen = SignalGenerator(3)
        dist = {SignalSeverity.LOW: 0, SignalSeverity.CRITICAL: 100}
        assert {gen.severity(dist) for _ in range(50)} == {SignalSeverity.CRITICAL}

    def test_types_drawn_from_config(self):
        cfg = StressTestConfig(name="t", signal_types=[SignalType.MAINTENANCE], batch_size=10)
        assert {s.type for s in SignalGenerator(2).generate(cfg)} == {SignalType.MAINTENANCE}

    def test_emergency_payload_flags_failure(self):
        payload = SignalGenerator(0).payload(SignalType.EMERGENCY, SignalSeverity.CRITICAL)
        assert payload["asset_failure"] is True


# ── Config parsing ────────────────────────────────────────────────────────────

class TestStressTestConfig:
    def test_from_dict(self):
        cfg = StressTestConfig.from_dict({
            "name": "mini", "batches": 2, "batch_size": 3,
            "signal_types": ["EMERGENCY"],
            "severity_distribution": {"HIGH": 50, "CRITICAL": 50},
            "expected": {"min_resilience_level": 10},
        })
        assert cfg.batches == 2
        assert cfg.signal_types == [SignalType.EMERGENCY]
        assert cfg.severity_distribution[SignalSeverity.CRITICAL] == 50
        assert cfg.expected.min_resilience_level == 10

    def test_unknown_type_raises(self):
        with pytest.raises(ValueError):
            StressTestConfig.from_dict({"signal_types": ["METEOR"]})

    def test_default_distribution_kept(self):
        cfg = StressTestConfig.from_dict({"name": "plain"})
        assert cfg.severity_distribution[SignalSeverity.LOW] == 70


# ── Outcome ───────────────────────────────────────────────────────────────────

class TestOutcome:
    def test_all_pass(self):
        assert outcome_for({"a": True, "b": True}) == "PASS"

    def test_half_is_partial(self):
        assert outcome_for({"a": True, "b": False}) == "PARTIAL"

    def test_mostly_failed(self):
        assert outcome_for({"a": True, "b": False, "c": False, "d": False}) == "FAIL"


# ── Runner ────────────────────────────────────────────────────────────────────

class TestStressTestRunner:
    @pytest.mark.asyncio
    async def test_baseline_run(self, engine):
        await engine.initialize()
        runner = StressTestRunner(engine, seed=11)
        result = await runner.run(BUILTIN_SCENARIOS["baseline"])
        assert result.batches == 10
        assert result.signals == 30
        assert len(result.batch_times_ms) == 10
        assert result.outcome in {"PASS", "PARTIAL", "FAIL"}
        assert set(result.validation) == {"resilience_level", "margin_utilization",
                                          "antifragile_score", "batch_time"}
        assert runner.history() == [result]

    @pytest.mark.asyncio
    async def test_uninitialized_engine_logged(self, engine):
        runner = StressTestRunner(engine, seed=5)
        cfg = StressTestConfig(name="cold", batches=2, batch_size=1)
        result = await runner.run(cfg)
        assert any("error" in line for line in result.logs)
        assert result.to_dict()["final_mode"] == "NORMAL"
