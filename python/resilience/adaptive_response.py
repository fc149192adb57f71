"""
Aegrid Resilience v1.0 — Module 8: Adaptive Response Selector
=============================================================
Chooses one of five response strategies from the shape of a signal batch
and turns it into a ranked list of response actions.

Algorithm selection (first match wins):
  CRITICAL present or > 10 signals      → HYBRID
  > 3 distinct signal types             → PATTERN_MATCHING
  HIGH present and > 5 signals          → STATISTICAL_ANALYSIS
  mode == EMERGENCY                     → RULE_BASED
  otherwise                             → MACHINE_LEARNING (heuristic scorer)

The "machine learning" path is a deterministic heuristic: each
HeuristicScorer carries calibration numbers that drift up after a
confident run (+0.01, cap 0.99) and down after a weak one (−0.005,
floor 0.5). Jitter comes from an injectable random.Random so runs are
reproducible.
"""

from __future__ import annotations

import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .config import AdaptiveConfig
from .models import (
    AdaptiveResponseResult, AlgorithmType, ResilienceMode, ResponseAction,
    ResponseActionType, ResponsePrediction, Signal, SignalSeverity,
    SignalType, new_id, utcnow,
)
from .signal_ingestion import RawSignal, filter_valid

logger = logging.getLogger(__name__)

SUCCESS_CONFIDENCE = 0.7
CALIBRATION_CAP    = 0.99
CALIBRATION_FLOOR  = 0.5


# ── Heuristic scorers ─────────────────────────────────────────────────────────

SCORER_FEATURES = {
    "signal_classification":    ["signal_frequency", "signal_duration"],
    "response_prediction":      ["response_history", "success_rate"],
    "pattern_recognition":      ["pattern_frequency", "pattern_duration"],
    "anomaly_detection":        ["deviation_score", "baseline_comparison"],
    "effectiveness_prediction": ["resource_availability", "system_load"],
}
BASE_FEATURES = ["signal_type", "signal_severity", "asset_type",
                 "environmental_factors", "historical_patterns"]


@dataclass
class HeuristicScorer:
    """Calibration record for one named scoring heuristic."""
    name:           str
    features:       list[str]
    accuracy:       float    = 0.85
    precision:      float    = 0.80
    recall:         float    = 0.82
    samples:        int      = 0
    last_evaluated: datetime = field(default_factory=utcnow)

    @property
    def f1_score(self) -> float:
        if self.precision + self.recall == 0:
            return 0.0
        return 2 * self.precision * self.recall / (self.precision + self.recall)

    def performance(self) -> dict[str, float]:
        return {
            "accuracy":  round(self.accuracy, 4),
            "precision": round(self.precision, 4),
            "recall":    round(self.recall, 4),
            "f1_score":  round(self.f1_score, 4),
        }

    def calibrate(self, success: bool, gain: float = 0.01, loss: float = 0.005) -> None:
        if success:
            self.accuracy  = min(CALIBRATION_CAP, self.accuracy + gain)
            self.precision = min(CALIBRATION_CAP, self.precision + gain)
            self.recall    = min(CALIBRATION_CAP, self.recall + gain)
        else:
            self.accuracy  = max(CALIBRATION_FLOOR, self.accuracy - loss)
            self.precision = max(CALIBRATION_FLOOR, self.precision - loss)
            self.recall    = max(CALIBRATION_FLOOR, self.recall - loss)
        self.samples += 1
        self.last_evaluated = utcnow()

    def to_dict(self) -> dict:
        return {
            "name":           self.name,
            "features":       self.features,
            "performance":    self.performance(),
            "samples":        self.samples,
            "last_evaluated": self.last_evaluated.isoformat(),
        }


def _build_default_scorers() -> dict[str, HeuristicScorer]:
    return {
        name: HeuristicScorer(name=name, features=BASE_FEATURES + extra)
        for name, extra in SCORER_FEATURES.items()
    }


@dataclass
class FeedbackRecord:
    id:         str
    algorithm:  Optional[AlgorithmType]
    signal_ids: list[str]
    actions:    int
    confidence: float
    success:    bool
    timestamp:  datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id":         self.id,
            "algorithm":  self.algorithm.value if self.algorithm else None,
            "signal_ids": self.signal_ids,
            "actions":    self.actions,
            "confidence": round(self.confidence, 4),
            "success":    self.success,
            "timestamp":  self.timestamp.isoformat(),
        }


# ── Action catalogue ──────────────────────────────────────────────────────────

CATALOGUE = {
    SignalSeverity.CRITICAL: (ResponseActionType.EMERGENCY_RESPONSE, "Emergency response for {t} signal",
                              1, 300_000, ["emergency_team", "emergency_equipment"]),
    SignalSeverity.HIGH:     (ResponseActionType.NOTIFY, "High priority notification for {t} signal",
                              2, 60_000, ["notification_system"]),
    SignalSeverity.MEDIUM:   (ResponseActionType.SCHEDULE_MAINTENANCE, "Schedule maintenance for {t} signal",
                              3, 1_800_000, ["maintenance_team"]),
    SignalSeverity.LOW:      (ResponseActionType.UPDATE_CONFIG, "Update configuration for {t} signal",
                              4, 300_000, ["configuration_system"]),
}


def catalogue_actions(signals: Iterable[Signal]) -> list[ResponseAction]:
    """One action per signal, keyed on severity."""
    actions = []
    for sig in signals:
        action_type, template, priority, duration, resources = CATALOGUE[sig.severity]
        actions.append(ResponseAction(
            id                    = new_id("action"),
            type                  = action_type,
            description           = template.format(t=sig.type.value),
            priority              = priority,
            estimated_duration_ms = duration,
            required_resources    = list(resources),
            parameters            = {"signal_id": sig.id, "severity": sig.severity.value},
        ))
    return actions


def _config_action(description: str, parameters: dict) -> ResponseAction:
    return ResponseAction(
        id                    = new_id("action"),
        type                  = ResponseActionType.UPDATE_CONFIG,
        description           = description,
        priority              = 2,
        estimated_duration_ms = 300_000,
        required_resources    = ["configuration_system"],
        parameters            = parameters,
    )


# ── Rules ─────────────────────────────────────────────────────────────────────

@dataclass
class ResponseRule:
    name:        str
    condition:   Callable[[Signal, ResilienceMode], bool]
    confidence:  float
    action_type: ResponseActionType
    description: str
    priority:    int
    duration_ms: int
    resources:   list[str] = field(default_factory=list)

    def build(self, sig: Signal) -> ResponseAction:
        return ResponseAction(
            id                    = new_id("rule-action"),
            type                  = self.action_type,
            description           = self.description.format(t=sig.type.value),
            priority              = self.priority,
            estimated_duration_ms = self.duration_ms,
            required_resources    = list(self.resources),
            parameters            = {"signal_id": sig.id, "rule": self.name},
        )


def _build_default_rules() -> list[ResponseRule]:
    return [
        ResponseRule(
            name        = "critical_signal",
            condition   = lambda s, m: s.severity == SignalSeverity.CRITICAL,
            confidence  = 0.95,
            action_type = ResponseActionType.EMERGENCY_RESPONSE,
            description = "Critical signal detected: {t}",
            priority    = 1,
            duration_ms = 300_000,
            resources   = ["emergency_team"],
        ),
        ResponseRule(
            name        = "high_signal_in_normal_mode",
            condition   = lambda s, m: s.severity == SignalSeverity.HIGH and m == ResilienceMode.NORMAL,
            confidence  = 0.85,
            action_type = ResponseActionType.NOTIFY,
            description = "High priority signal: {t}",
            priority    = 2,
            duration_ms = 60_000,
            resources   = ["notification_system"],
        ),
        ResponseRule(
            name        = "medium_asset_condition",
            condition   = lambda s, m: (s.type == SignalType.ASSET_CONDITION
                                        and s.severity == SignalSeverity.MEDIUM),
            confidence  = 0.75,
            action_type = ResponseActionType.SCHEDULE_MAINTENANCE,
            description = "Schedule maintenance for asset condition signal",
            priority    = 3,
            duration_ms = 1_800_000,
            resources   = ["maintenance_team"],
        ),
    ]


# ── Pure selection ────────────────────────────────────────────────────────────

def select_algorithm(signals: list[Signal], mode: ResilienceMode) -> AlgorithmType:
    severities = {s.severity for s in signals}
    if SignalSeverity.CRITICAL in severities or len(signals) > 10:
        return AlgorithmType.HYBRID
    if len({s.type for s in signals}) > 3:
        return AlgorithmType.PATTERN_MATCHING
    if SignalSeverity.HIGH in severities and len(signals) > 5:
        return AlgorithmType.STATISTICAL_ANALYSIS
    if mode == ResilienceMode.EMERGENCY:
        return AlgorithmType.RULE_BASED
    return AlgorithmType.MACHINE_LEARNING


def type_patterns(signals: list[Signal]) -> list[dict]:
    """Frequency patterns: signal types seen more than twice in the batch."""
    n = len(signals)
    counts = Counter(s.type for s in signals)
    return [
        {"pattern_id": f"pattern-{t.value}", "pattern_type": "frequency",
         "frequency": c, "confidence": min(0.9, c / n)}
        for t, c in counts.items() if c > 2
    ]


def severity_anomalies(signals: list[Signal]) -> list[dict]:
    if not signals:
        return []
    avg = sum(s.severity.rank for s in signals) / len(signals)
    return [
        {"anomaly_type": "severity_deviation", "signal_id": s.id,
         "severity": s.severity.value, "confidence": 0.7}
        for s in signals if abs(s.severity.rank - avg) > 1.5
    ]


def type_trends(signals: list[Signal]) -> list[dict]:
    n = len(signals)
    counts = Counter(s.type for s in signals)
    return [
        {"metric": f"{t.value}_frequency",
         "direction": "increasing" if c > 2 else "stable",
         "rate": c / n, "confidence": min(0.9, c / n)}
        for t, c in counts.items()
    ]


def type_correlations(signals: list[Signal], min_strength: float = 0.3) -> list[dict]:
    """
    Co-occurrence of signal types across sources: the Jaccard overlap of
    the sources that reported each type.
    """
    by_type: dict[SignalType, set[str]] = {}
    for s in signals:
        by_type.setdefault(s.type, set()).add(s.asset_id or s.source)
    types = sorted(by_type, key=lambda t: t.value)
    out = []
    for i, a in enumerate(types):
        for b in types[i + 1:]:
            union = by_type[a] | by_type[b]
            strength = len(by_type[a] & by_type[b]) / len(union) if union else 0.0
            if strength > min_strength:
                out.append({"signal1": a.value, "signal2": b.value,
                            "correlation": round(strength, 4),
                            "shared_sources": len(by_type[a] & by_type[b])})
    return out


# ── Selector ──────────────────────────────────────────────────────────────────

class AdaptiveResponseSelector:
    """Runs the selected response algorithm and keeps scorer calibration."""

    def __init__(self, config: Optional[AdaptiveConfig] = None, rng: Optional[random.Random] = None):
        self.config   = config or AdaptiveConfig()
        self.rng      = rng or random.Random()
        self.scorers  = _build_default_scorers()
        self.rules    = _build_default_rules()
        self._feedback: list[FeedbackRecord] = []
        self._runs: Counter = Counter()

    def process_signals(self, signals: Iterable[RawSignal], mode: ResilienceMode) -> AdaptiveResponseResult:
        t0 = time.perf_counter()
        valid = filter_valid(signals)
        if not valid:
            return AdaptiveResponseResult(
                algorithm           = None,
                recommended_actions = [],
                prediction          = ResponsePrediction(0.0, 0.0, 0.0, 0.0, []),
                confidence          = 0.0,
                performance         = {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1_score": 0.0},
                insights            = ["No valid signals to process"],
                processing_time_ms  = (time.perf_counter() - t0) * 1000,
            )

        algorithm = select_algorithm(valid, mode)
        result = self.run_algorithm(algorithm, valid, mode)
        self._runs[algorithm.value] += 1
        if self.config.real_time_feedback:
            self._record_feedback(valid, result)
        result.insights = self._insights(valid, result)
        result.processing_time_ms = (time.perf_counter() - t0) * 1000
        logger.info("Adaptive response: %s → %d action(s), confidence %.2f",
                    algorithm.value, len(result.recommended_actions), result.confidence)
        return result

    def run_algorithm(self, algorithm: AlgorithmType, signals: list[Signal],
                      mode: ResilienceMode) -> AdaptiveResponseResult:
        runners = {
            AlgorithmType.MACHINE_LEARNING:     self._heuristic,
            AlgorithmType.RULE_BASED:           self._rule_based,
            AlgorithmType.PATTERN_MATCHING:     self._pattern_matching,
            AlgorithmType.STATISTICAL_ANALYSIS: self._statistical,
            AlgorithmType.HYBRID:               self._hybrid,
        }
        return runners[algorithm](signals, mode)

    # ── Algorithms ────────────────────────────────────────────────────────────

    def _heuristic(self, signals: list[Signal], mode: ResilienceMode) -> AdaptiveResponseResult:
        scorer = self.scorers["response_prediction"]
        n = len(signals)
        prediction = ResponsePrediction(
            effectiveness        = min(95.0, 60 + n * 5 + self.rng.random() * 20),
            confidence           = min(0.95, scorer.accuracy + self.rng.random() * 0.1),
            response_time        = 150 + n * 10,
            resource_utilization = 50 + n * 5,
            side_effects         = ["Heuristic-scored response"],
        )
        return AdaptiveResponseResult(
            algorithm           = AlgorithmType.MACHINE_LEARNING,
            recommended_actions = catalogue_actions(signals),
            prediction          = prediction,
            confidence          = scorer.accuracy,
            performance         = scorer.performance(),
        )

    def _rule_based(self, signals: list[Signal], mode: ResilienceMode) -> AdaptiveResponseResult:
        actions: list[ResponseAction] = []
        confidence = 0.0
        for sig in signals:
            for rule in self.rules:
                if rule.condition(sig, mode):
                    actions.append(rule.build(sig))
                    confidence = max(confidence, rule.confidence)
        return AdaptiveResponseResult(
            algorithm           = AlgorithmType.RULE_BASED,
            recommended_actions = actions,
            prediction          = ResponsePrediction(75.0, confidence, 100, 60,
                                                     ["Standard response patterns"]),
            confidence          = confidence,
            performance         = {"accuracy": 0.85, "precision": 0.80, "recall": 0.82, "f1_score": 0.81},
        )

    def _pattern_matching(self, signals: list[Signal], mode: ResilienceMode) -> AdaptiveResponseResult:
        patterns = type_patterns(signals)
        anomalies = severity_anomalies(signals)
        actions = [
            _config_action(f"Update configuration based on frequent pattern: {p['pattern_id']}",
                           {"pattern_id": p["pattern_id"], "confidence": p["confidence"]})
            for p in patterns if p["confidence"] > self.config.confidence_threshold
        ]
        if not actions:
            actions = catalogue_actions(signals)
        confidence = (sum(p["confidence"] for p in patterns) / len(patterns)) if patterns else 0.8
        side_effects = ["Pattern-based response"]
        if anomalies:
            side_effects.append(f"{len(anomalies)} severity anomaly(ies) detected")
        return AdaptiveResponseResult(
            algorithm           = AlgorithmType.PATTERN_MATCHING,
            recommended_actions = actions,
            prediction          = ResponsePrediction(80.0, confidence, 200, 70, side_effects),
            confidence          = confidence,
            performance         = {"accuracy": 0.82, "precision": 0.78, "recall": 0.85, "f1_score": 0.81},
        )

    def _statistical(self, signals: list[Signal], mode: ResilienceMode) -> AdaptiveResponseResult:
        trends = type_trends(signals)
        correlations = type_correlations(signals)
        actions = [
            _config_action(f"Update configuration based on increasing trend: {t['metric']}",
                           {"trend_metric": t["metric"], "rate": t["rate"]})
            for t in trends
            if t["direction"] == "increasing" and t["confidence"] > self.config.confidence_threshold
        ]
        if not actions:
            actions = catalogue_actions(signals)
        confidence = (sum(t["confidence"] for t in trends) / len(trends)) if trends else 0.75
        side_effects = ["Statistical-based response"]
        if correlations:
            side_effects.append(f"{len(correlations)} correlated signal type pair(s)")
        return AdaptiveResponseResult(
            algorithm           = AlgorithmType.STATISTICAL_ANALYSIS,
            recommended_actions = actions,
            prediction          = ResponsePrediction(75.0, confidence, 300, 65, side_effects),
            confidence          = confidence,
            performance         = {"accuracy": 0.78, "precision": 0.75, "recall": 0.80, "f1_score": 0.77},
        )

    def _hybrid(self, signals: list[Signal], mode: ResilienceMode) -> AdaptiveResponseResult:
        w = self.config.hybrid_weights
        parts = [
            (self._heuristic(signals, mode),        w.get("heuristic", 0.4)),
            (self._rule_based(signals, mode),       w.get("rule", 0.3)),
            (self._pattern_matching(signals, mode), w.get("pattern", 0.3)),
        ]
        votes: dict[str, list] = {}
        for result, weight in parts:
            for action in result.recommended_actions:
                key = f"{action.type.value}-{action.description}"
                if key in votes:
                    votes[key][1] += weight
                else:
                    votes[key] = [action, weight]
        ranked = sorted(votes.values(), key=lambda v: v[1], reverse=True)
        actions = [a for a, _ in ranked[: self.config.max_hybrid_actions]]
        confidence = sum(r.confidence * weight for r, weight in parts)
        return AdaptiveResponseResult(
            algorithm           = AlgorithmType.HYBRID,
            recommended_actions = actions,
            prediction          = ResponsePrediction(85.0, confidence, 250, 75,
                                                     ["Hybrid response combining multiple approaches"]),
            confidence          = confidence,
            performance         = {"accuracy": 0.88, "precision": 0.85, "recall": 0.87, "f1_score": 0.86},
        )

    # ── Feedback ──────────────────────────────────────────────────────────────

    def _record_feedback(self, signals: list[Signal], result: AdaptiveResponseResult) -> None:
        success = result.confidence > SUCCESS_CONFIDENCE
        self._feedback.append(FeedbackRecord(
            id         = new_id("feedback"),
            algorithm  = result.algorithm,
            signal_ids = [s.id for s in signals],
            actions    = len(result.recommended_actions),
            confidence = result.confidence,
            success    = success,
        ))
        cutoff = utcnow() - timedelta(days=self.config.retention_days)
        self._feedback = [f for f in self._feedback if f.timestamp >= cutoff]
        for scorer in self.scorers.values():
            scorer.calibrate(success, self.config.calibration_gain, self.config.calibration_loss)

    @staticmethod
    def _insights(signals: list[Signal], result: AdaptiveResponseResult) -> list[str]:
        insights = []
        if result.confidence > 0.8:
            insights.append("High confidence response generated")
        if len(signals) > 5:
            insights.append("Multiple signals processed simultaneously")
        if result.prediction.effectiveness > 80:
            insights.append("High effectiveness predicted for response")
        critical = sum(1 for s in signals if s.severity == SignalSeverity.CRITICAL)
        if critical:
            insights.append(f"{critical} critical signals processed")
        high = sum(1 for s in signals if s.severity == SignalSeverity.HIGH)
        if high:
            insights.append(f"{high} high priority signals processed")
        types = len({s.type for s in signals})
        if types > 1:
            insights.append(f"Processed {types} different signal types")
        if result.recommended_actions:
            insights.append(f"Generated {len(result.recommended_actions)} response actions")
        if not insights:
            insights.append(f"Processed {len(signals)} signals with {result.confidence:.2f} confidence")
        return insights

    # ── Status ────────────────────────────────────────────────────────────────

    def get_status(self) -> dict:
        scorers = list(self.scorers.values())
        avg = sum(s.accuracy for s in scorers) / len(scorers) if scorers else 0.0
        return {
            "enabled":          self.config.enabled,
            "active_scorers":   len(scorers),
            "feedback_events":  len(self._feedback),
            "average_accuracy": round(avg, 4),
            "algorithm_types":  [a.value for a in AlgorithmType],
            "runs":             dict(self._runs),
        }

    def get_feedback_log(self, limit: int = 100) -> list[FeedbackRecord]:
        return self._feedback[-limit:]

    def get_scorers(self) -> list[HeuristicScorer]:
        return list(self.scorers.values())

    def update_config(self, updates: dict) -> None:
        for key, value in updates.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)
            else:
                logger.debug("Adaptive config key '%s' ignored", key)
        logger.info("Adaptive response configuration updated: %s", list(updates))
