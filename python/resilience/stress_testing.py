"""
Aegrid Resilience v1.0 — Module 11: Stress Testing
==================================================
Synthetic signal storms fed through a live engine, validated against
expected outcomes.

Outcome:
  PASS     every expectation met
  PARTIAL  at least half met
  FAIL     fewer than half met

Usage:
    runner = StressTestRunner(engine)
    result = await runner.run(BUILTIN_SCENARIOS["surge"])
    print(result.outcome, result.validation)
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from .models import (
    ResilienceMode, Signal, SignalSeverity, SignalStatus, SignalType,
    new_id, utcnow,
)

logger = logging.getLogger(__name__)


# ── Config ────────────────────────────────────────────────────────────────────

@dataclass
class ExpectedOutcomes:
    min_resilience_level:   float = 40.0
    max_utilization_pct:    float = 80.0
    min_antifragile_score:  float = 40.0
    max_batch_time_ms:      float = 2000.0


@dataclass
class StressTestConfig:
    name:                  str
    batches:               int                        = 10
    batch_size:            int                        = 5
    signal_types:          list[SignalType]           = field(default_factory=lambda: [SignalType.OPERATIONAL])
    severity_distribution: dict[SignalSeverity, float] = field(default_factory=lambda: {
        SignalSeverity.LOW: 70, SignalSeverity.MEDIUM: 25,
        SignalSeverity.HIGH: 5, SignalSeverity.CRITICAL: 0,
    })
    expected:              ExpectedOutcomes           = field(default_factory=ExpectedOutcomes)
    description:           str                        = ""

    @classmethod
    def from_dict(cls, raw: dict) -> "StressTestConfig":
        """Build from JSON; raises ValueError on unknown signal types or severities."""
        exp = raw.get("expected") or {}
        cfg = cls(
            name         = raw.get("name", "custom"),
            batches      = int(raw.get("batches", 10)),
            batch_size   = int(raw.get("batch_size", 5)),
            signal_types = [SignalType(t) for t in raw.get("signal_types", ["OPERATIONAL"])],
            expected     = ExpectedOutcomes(**{k: float(v) for k, v in exp.items()
                                               if k in ExpectedOutcomes.__dataclass_fields__}),
            description  = raw.get("description", ""),
        )
        if raw.get("severity_distribution"):
            cfg.severity_distribution = {SignalSeverity(k): float(v)
                                         for k, v in raw["severity_distribution"].items()}
        return cfg


BUILTIN_SCENARIOS: dict[str, StressTestConfig] = {
    "baseline": StressTestConfig(
        name         = "baseline",
        description  = "Routine operational noise",
        batches      = 10,
        batch_size   = 3,
        signal_types = [SignalType.ASSET_CONDITION, SignalType.OPERATIONAL],
        severity_distribution = {SignalSeverity.LOW: 70, SignalSeverity.MEDIUM: 25,
                                 SignalSeverity.HIGH: 5, SignalSeverity.CRITICAL: 0},
        expected     = ExpectedOutcomes(min_resilience_level=60, max_utilization_pct=50,
                                        min_antifragile_score=40, max_batch_time_ms=1000),
    ),
    "surge": StressTestConfig(
        name         = "surge",
        description  = "Sustained degradation and risk escalation",
        batches      = 20,
        batch_size   = 8,
        signal_types = [SignalType.PERFORMANCE_DEGRADATION, SignalType.RISK_ESCALATION],
        severity_distribution = {SignalSeverity.LOW: 40, SignalSeverity.MEDIUM: 35,
                                 SignalSeverity.HIGH: 20, SignalSeverity.CRITICAL: 5},
        expected     = ExpectedOutcomes(min_resilience_level=0, max_utilization_pct=70,
                                        min_antifragile_score=40, max_batch_time_ms=2000),
    ),
    "cascade": StressTestConfig(
        name         = "cascade",
        description  = "Emergency cascade across asset, risk and emergency channels",
        batches      = 15,
        batch_size   = 10,
        signal_types = [SignalType.EMERGENCY, SignalType.ASSET_CONDITION, SignalType.RISK_ESCALATION],
        severity_distribution = {SignalSeverity.LOW: 10, SignalSeverity.MEDIUM: 20,
                                 SignalSeverity.HIGH: 30, SignalSeverity.CRITICAL: 40},
        expected     = ExpectedOutcomes(min_resilience_level=0, max_utilization_pct=90,
                                        min_antifragile_score=30, max_batch_time_ms=5000),
    ),
}


# ── Generator ─────────────────────────────────────────────────────────────────

class SignalGenerator:
    """Seeded synthetic signals with type-specific payloads."""

    def __init__(self, seed: Optional[int] = None):
        self.rng = random.Random(seed)
        self._seq = 0

    def severity(self, distribution: dict[SignalSeverity, float]) -> SignalSeverity:
        roll = self.rng.random() * sum(distribution.values())
        cumulative = 0.0
        for sev, weight in distribution.items():
            cumulative += weight
            if weight > 0 and roll <= cumulative:
                return sev
        return SignalSeverity.LOW

    def payload(self, sig_type: SignalType, severity: SignalSeverity) -> dict:
        r = self.rng.random
        critical = severity == SignalSeverity.CRITICAL
        if sig_type == SignalType.ASSET_CONDITION:
            return {"condition": "critical" if critical else "degrading",
                    "performance": round(0.3 + r() * 0.7, 3)}
        if sig_type == SignalType.PERFORMANCE_DEGRADATION:
            return {"performance": round(0.1 + r() * 0.9, 3), "threshold": 0.8,
                    "degradation": 0.9 if critical else 0.5}
        if sig_type == SignalType.RISK_ESCALATION:
            return {"risk_level": round(0.5 + r() * 0.5, 3),
                    "escalation": "critical" if critical else "high",
                    "impact": "system-wide" if critical else "localized"}
        if sig_type == SignalType.EMERGENCY:
            return {"emergency_type": "system_failure", "priority": 1 if critical else 2,
                    "response_required": True, "asset_failure": critical}
        if sig_type == SignalType.MAINTENANCE:
            return {"maintenance_type": "scheduled", "duration_min": round(60 + r() * 240),
                    "priority": 3}
        if sig_type == SignalType.ENVIRONMENTAL:
            return {"temperature": round(20 + r() * 30, 1), "humidity": round(30 + r() * 40, 1),
                    "pressure": round(1000 + r() * 50, 1)}
        if sig_type == SignalType.OPERATIONAL:
            return {"operation": "routine", "efficiency": round(0.6 + r() * 0.4, 3),
                    "throughput": round(100 + r() * 900)}
        return {"framework": "ISO 55000", "finding": "minor" if not critical else "major"}

    def generate(self, config: StressTestConfig, count: Optional[int] = None) -> list[Signal]:
        out = []
        for _ in range(count or config.batch_size):
            self._seq += 1
            sig_type = self.rng.choice(config.signal_types)
            severity = self.severity(config.severity_distribution)
            out.append(Signal(
                id          = f"stress-{config.name}-{self._seq}",
                type        = sig_type,
                severity    = severity,
                source      = f"stress-test:{config.name}",
                timestamp   = utcnow(),
                status      = SignalStatus.RECEIVED,
                data        = {"test": config.name, **self.payload(sig_type, severity)},
                asset_id    = f"asset-{self.rng.randint(0, 99)}",
                description = f"Synthetic {severity.value} {sig_type.value} signal",
            ))
        return out


# ── Runner ────────────────────────────────────────────────────────────────────

@dataclass
class StressTestResult:
    id:                     str
    name:                   str
    outcome:                str
    batches:                int
    signals:                int
    batch_times_ms:         list[float]
    final_resilience_level: float
    final_mode:             ResilienceMode
    margin_utilization:     float
    antifragile_score:      float
    validation:             dict[str, bool]
    logs:                   list[str]
    duration_s:             float

    @property
    def average_batch_ms(self) -> float:
        return sum(self.batch_times_ms) / len(self.batch_times_ms) if self.batch_times_ms else 0.0

    def to_dict(self) -> dict:
        return {
            "id":                     self.id,
            "name":                   self.name,
            "outcome":                self.outcome,
            "batches":                self.batches,
            "signals":                self.signals,
            "average_batch_ms":       round(self.average_batch_ms, 3),
            "max_batch_ms":           round(max(self.batch_times_ms, default=0.0), 3),
            "final_resilience_level": self.final_resilience_level,
            "final_mode":             self.final_mode.value,
            "margin_utilization":     round(self.margin_utilization, 2),
            "antifragile_score":      round(self.antifragile_score, 2),
            "validation":             self.validation,
            "logs":                   self.logs,
            "duration_s":             round(self.duration_s, 3),
        }


def outcome_for(validation: dict[str, bool]) -> str:
    passed = sum(validation.values())
    if passed == len(validation):
        return "PASS"
    if passed * 2 >= len(validation):
        return "PARTIAL"
    return "FAIL"


class StressTestRunner:
    def __init__(self, engine, seed: Optional[int] = None):
        self.engine = engine
        self.generator = SignalGenerator(seed)
        self._history: list[StressTestResult] = []

    async def run(self, config: StressTestConfig) -> StressTestResult:
        started = utcnow()
        t0 = time.perf_counter()
        logs = [f"{started.isoformat()} start '{config.name}': "
                f"{config.batches}x{config.batch_size} signals"]
        times: list[float] = []
        total = 0
        logger.info("Stress test '%s' started", config.name)

        for i in range(config.batches):
            batch = self.generator.generate(config)
            b0 = time.perf_counter()
            resp = await self.engine.process_signals(batch)
            times.append((time.perf_counter() - b0) * 1000)
            total += len(batch)
            if not resp.success:
                logs.append(f"batch {i + 1}: error {resp.error}")
                logger.warning("Stress test '%s' batch %d failed: %s", config.name, i + 1, resp.error)
                continue
            logs.append(f"batch {i + 1}: level {resp.data.level:.0f}, mode {resp.data.mode.value}")

        state = self.engine.get_state()
        exp = config.expected
        avg_ms = sum(times) / len(times) if times else 0.0
        validation = {
            "resilience_level":   state.resilience_level >= exp.min_resilience_level,
            "margin_utilization": state.margin_utilization <= exp.max_utilization_pct,
            "antifragile_score":  state.antifragile_score >= exp.min_antifragile_score,
            "batch_time":         avg_ms <= exp.max_batch_time_ms,
        }
        result = StressTestResult(
            id                     = new_id("stress-test"),
            name                   = config.name,
            outcome                = outcome_for(validation),
            batches                = config.batches,
            signals                = total,
            batch_times_ms         = times,
            final_resilience_level = state.resilience_level,
            final_mode             = state.mode,
            margin_utilization     = state.margin_utilization,
            antifragile_score      = state.antifragile_score,
            validation             = validation,
            logs                   = logs,
            duration_s             = time.perf_counter() - t0,
        )
        logs.append(f"{(started + timedelta(seconds=result.duration_s)).isoformat()} "
                    f"finished: {result.outcome}")
        self._history.append(result)
        logger.info("Stress test '%s' finished: %s %s", config.name, result.outcome, validation)
        return result

    def history(self) -> list[StressTestResult]:
        return list(self._history)
