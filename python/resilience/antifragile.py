"""
Aegrid Resilience v1.0 — Module 9: Antifragile Pattern Tracker
==============================================================
Turns stress into adaptation.

  stress = min(100, Σ CRITICAL 40 │ HIGH 30 │ MEDIUM 20 │ LOW 10)

A pattern fires when:
  - stress ≥ max(pattern minimum, activation threshold)
  - every required signal type is present in the batch
  - the cooldown since its last activation has elapsed
  - its success rate is not below min_success_rate (once it has fired
    min_activations times; each firing earns the share of its
    adaptations that succeeded)

Every adaptation reports an impact (%) and a confidence. Confidence above
the success cut (0.7) counts as a success: the antifragile score moves up
by score_gain, otherwise down by score_loss, always within [0, 100].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .config import AntifragileConfig
from .models import (
    AdaptationRecord, AntifragilePattern, ResilienceMode, Signal,
    SignalSeverity, SignalType, StressEvent, new_id, utcnow,
)

logger = logging.getLogger(__name__)

STRESS_WEIGHT = {
    SignalSeverity.CRITICAL: 40,
    SignalSeverity.HIGH:     30,
    SignalSeverity.MEDIUM:   20,
    SignalSeverity.LOW:      10,
}

CAPACITY_SCALING       = "CAPACITY_SCALING"
EFFICIENCY_IMPROVEMENT = "EFFICIENCY_IMPROVEMENT"
REDUNDANCY_ENHANCEMENT = "REDUNDANCY_ENHANCEMENT"
STRESS_LEARNING        = "STRESS_LEARNING"
THRESHOLD_ADAPTATION   = "THRESHOLD_ADAPTATION"


def calculate_stress_level(signals: Iterable[Signal]) -> float:
    return float(min(100, sum(STRESS_WEIGHT.get(s.severity, 0) for s in signals)))


def _build_default_patterns() -> list[AntifragilePattern]:
    return [
        AntifragilePattern(
            id               = "high-load-capacity-scaling",
            name             = "High Load Capacity Scaling",
            description      = "Automatically scale capacity when under high load stress",
            min_stress_level = 70,
            required_types   = [SignalType.PERFORMANCE_DEGRADATION],
            adaptations      = [CAPACITY_SCALING],
        ),
        AntifragilePattern(
            id               = "stress-learning-pattern",
            name             = "Stress Learning Pattern",
            description      = "Learn from stress events to improve future responses",
            min_stress_level = 60,
            required_types   = [SignalType.RISK_ESCALATION, SignalType.ASSET_CONDITION],
            adaptations      = [STRESS_LEARNING, THRESHOLD_ADAPTATION],
        ),
        AntifragilePattern(
            id               = "efficiency-improvement-pattern",
            name             = "Efficiency Improvement Pattern",
            description      = "Improve efficiency when operating under moderate stress",
            min_stress_level = 50,
            required_types   = [SignalType.MAINTENANCE, SignalType.ENVIRONMENTAL],
            adaptations      = [EFFICIENCY_IMPROVEMENT],
        ),
    ]


@dataclass
class AdaptationOutcome:
    adaptation:  str
    impact:      float
    confidence:  float
    description: str


def _confidence(impact: float, cap: float) -> float:
    """Scales 0.6 → 0.95 as impact approaches its cap."""
    if cap <= 0:
        return 0.0
    return round(min(0.95, 0.6 + 0.5 * impact / cap), 4)


@dataclass
class AntifragileResult:
    stress_level:       float
    activated_patterns: list[AntifragilePattern]  = field(default_factory=list)
    adaptations:        list[AdaptationRecord]    = field(default_factory=list)
    improvements:       list[str]                 = field(default_factory=list)
    score:              float                     = 50.0

    def to_dict(self) -> dict:
        return {
            "stress_level":       self.stress_level,
            "activated_patterns": [p.id for p in self.activated_patterns],
            "adaptations":        [a.to_dict() for a in self.adaptations],
            "improvements":       self.improvements,
            "score":              round(self.score, 2),
        }


class AntifragileTracker:
    def __init__(self, config: Optional[AntifragileConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.config   = config or AntifragileConfig()
        self.clock    = clock
        self.patterns = {p.id: p for p in _build_default_patterns()}
        self.score    = float(self.config.initial_score)
        self._stress_events: list[StressEvent] = []
        self._adaptations:   list[AdaptationRecord] = []
        self._executors: dict[str, Callable[[list[Signal]], AdaptationOutcome]] = {
            CAPACITY_SCALING:       self._capacity_scaling,
            EFFICIENCY_IMPROVEMENT: self._efficiency_improvement,
            REDUNDANCY_ENHANCEMENT: self._redundancy_enhancement,
            STRESS_LEARNING:        self._stress_learning,
            THRESHOLD_ADAPTATION:   self._threshold_adaptation,
        }

    # ── Processing ────────────────────────────────────────────────────────────

    def process_signals(self, signals: list[Signal],
                        mode: ResilienceMode = ResilienceMode.NORMAL) -> AntifragileResult:
        stress = calculate_stress_level(signals)
        result = AntifragileResult(stress_level=stress, score=self.score)
        if not self.config.enabled:
            return result

        now = self.clock()
        for pattern in self.patterns.values():
            if not self.should_activate(pattern, signals, stress, now):
                continue
            pattern.activation_count += 1
            pattern.last_activated = now
            result.activated_patterns.append(pattern)
            logger.info("Antifragile pattern activated: %s (stress %.0f)", pattern.name, stress)

            succeeded = 0
            for adaptation in pattern.adaptations:
                record = self._execute(pattern, adaptation, signals)
                result.adaptations.append(record)
                if record.success:
                    succeeded += 1
                    result.improvements.append(record.details.get("description", adaptation))
            # partial credit: share of adaptations that succeeded
            pattern.success_count += succeeded / len(pattern.adaptations) if pattern.adaptations else 1.0

        self._stress_events.append(StressEvent(
            id           = new_id("stress-event"),
            stress_level = stress,
            signal_types = sorted({s.type for s in signals}, key=lambda t: t.value),
            signal_count = len(signals),
            mode         = mode,
            timestamp    = now,
        ))
        self._prune(now)
        result.score = self.score
        return result

    def should_activate(self, pattern: AntifragilePattern, signals: list[Signal],
                        stress: float, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        if pattern.last_activated is not None:
            elapsed = (now - pattern.last_activated).total_seconds()
            if elapsed < self.config.cooldown_seconds:
                return False
        if stress < max(pattern.min_stress_level, self.config.activation_threshold):
            return False
        present = {s.type for s in signals}
        if not all(t in present for t in pattern.required_types):
            return False
        if (pattern.activation_count >= self.config.min_activations
                and pattern.success_rate < self.config.min_success_rate):
            return False
        return True

    def _execute(self, pattern: AntifragilePattern, adaptation: str,
                 signals: list[Signal]) -> AdaptationRecord:
        executor = self._executors.get(adaptation)
        if executor is None:
            logger.warning("Unknown adaptation type: %s", adaptation)
            outcome = AdaptationOutcome(adaptation, 0.0, 0.0, f"Unknown adaptation type: {adaptation}")
        else:
            outcome = executor(signals)

        success = outcome.confidence > self.config.success_confidence
        if success:
            self.score = min(100.0, self.score + self.config.score_gain)
        else:
            self.score = max(0.0, self.score - self.config.score_loss)

        record = AdaptationRecord(
            id         = new_id("adaptation"),
            pattern_id = pattern.id,
            adaptation = adaptation,
            impact     = outcome.impact if success else 0.0,
            confidence = outcome.confidence,
            success    = success,
            details    = {"description": outcome.description},
            timestamp  = self.clock(),
        )
        self._adaptations.append(record)
        logger.debug("Adaptation %s: impact %.1f, confidence %.2f, success=%s",
                     adaptation, outcome.impact, outcome.confidence, success)
        return record

    # ── Adaptations ───────────────────────────────────────────────────────────

    def _capacity_scaling(self, signals: list[Signal]) -> AdaptationOutcome:
        factor = min(2.0, 1.0 + len(signals) * 0.1)
        impact = round((factor - 1.0) * 100)
        return AdaptationOutcome(CAPACITY_SCALING, impact, _confidence(impact, 100),
                                 f"Capacity scaled by {impact}%")

    def _efficiency_improvement(self, signals: list[Signal]) -> AdaptationOutcome:
        impact = min(25, len(signals) * 2)
        return AdaptationOutcome(EFFICIENCY_IMPROVEMENT, impact, _confidence(impact, 25),
                                 f"Efficiency improved by {impact}%")

    def _redundancy_enhancement(self, signals: list[Signal]) -> AdaptationOutcome:
        impact = min(15.0, len(signals) * 1.5)
        return AdaptationOutcome(REDUNDANCY_ENHANCEMENT, impact, _confidence(impact, 15),
                                 f"Redundancy enhanced by {impact:g}%")

    def _stress_learning(self, signals: list[Signal]) -> AdaptationOutcome:
        opportunities = sum(1 for s in signals
                            if s.severity in (SignalSeverity.HIGH, SignalSeverity.CRITICAL))
        impact = min(20, opportunities * 5)
        return AdaptationOutcome(STRESS_LEARNING, impact, _confidence(impact, 20),
                                 f"Learned from {opportunities} critical signals")

    def _threshold_adaptation(self, signals: list[Signal]) -> AdaptationOutcome:
        cutoff = self.clock() - timedelta(hours=24)
        recent = sum(1 for e in self._stress_events if e.timestamp >= cutoff)
        impact = min(10, recent * 2)
        return AdaptationOutcome(THRESHOLD_ADAPTATION, impact, _confidence(impact, 10),
                                 f"Thresholds adapted based on {recent} recent events")

    # ── Queries ───────────────────────────────────────────────────────────────

    def _prune(self, now: datetime) -> None:
        cutoff = now - timedelta(days=self.config.retention_days)
        self._stress_events = [e for e in self._stress_events if e.timestamp > cutoff]
        self._adaptations   = [a for a in self._adaptations if a.timestamp > cutoff]

    def active_patterns(self) -> list[AntifragilePattern]:
        now = self.clock()
        return [
            p for p in self.patterns.values()
            if p.last_activated is not None
            and (now - p.last_activated).total_seconds() < self.config.cooldown_seconds
        ]

    def get_status(self) -> dict:
        cutoff = self.clock() - timedelta(hours=24)
        recent = [a for a in self._adaptations if a.timestamp >= cutoff]
        successes = sum(1 for a in self._adaptations if a.success)
        rate = successes / len(self._adaptations) if self._adaptations else 0.0
        return {
            "enabled":            self.config.enabled,
            "active_patterns":    [p.to_dict() for p in self.active_patterns()],
            "recent_adaptations": len(recent),
            "success_rate":       round(rate, 4),
            "antifragile_score":  round(self.score, 2),
            "stress_events":      len(self._stress_events),
        }

    def get_patterns(self) -> list[AntifragilePattern]:
        return list(self.patterns.values())

    def get_stress_events(self) -> list[StressEvent]:
        return list(self._stress_events)

    def get_adaptation_history(self) -> list[AdaptationRecord]:
        return list(self._adaptations)

    def update_config(self, updates: dict) -> None:
        for key, value in updates.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)
        logger.info("Antifragile configuration updated: %s", list(updates))
