"""
Aegrid Resilience v1.0 — Unit Tests: Adaptive Response Selector

Run: pytest tests/test_adaptive_response.py -v
"""
import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from resilience.adaptive_response import (
    AdaptiveResponseSelector,
    HeuristicScorer,
    catalogue_actions,
    select_algorithm,
    severity_anomalies,
    type_correlations,
)
from resilience.config import AdaptiveConfig
from resilience.models import (
    AlgorithmType,
    ResilienceMode,
    ResponseActionType,
    SignalSeverity,
    SignalType,
)


@pytest.fixture
def selector():
    return AdaptiveResponseSelector(rng=random.Random(42))


# ── Algorithm selection ───────────────────────────────────────────────────────

class TestSelectAlgorithm:
    def test_critical_selects_hybrid(self, make_signal):
        sigs = [make_signal(severity=SignalSeverity.CRITICAL)]
        assert select_algorithm(sigs, ResilienceMode.NORMAL) == AlgorithmType.HYBRID

    def test_more_than_ten_selects_hybrid(self, make_signal):
        sigs = [make_signal() for _ in range(11)]
        assert select_algorithm(sigs, ResilienceMode.NORMAL) == AlgorithmType.HYBRID

    def test_four_types_selects_pattern_matching(self, make_signal):
        sigs = [make_signal(t) for t in (SignalType.OPERATIONAL, SignalType.MAINTENANCE,
                                         SignalType.ENVIRONMENTAL, SignalType.COMPLIANCE)]
        assert select_algorithm(sigs, ResilienceMode.NORMAL) == AlgorithmType.PATTERN_MATCHING

    def test_high_and_many_selects_statistical(self, make_signal):
        sigs = [make_signal(severity=SignalSeverity.HIGH) for _ in range(6)]
        assert select_algorithm(sigs, ResilienceMode.NORMAL) == AlgorithmType.STATISTICAL_ANALYSIS

    def test_emergency_mode_selects_rules(self, make_signal):
        assert select_algorithm([make_signal()], ResilienceMode.EMERGENCY) == AlgorithmType.RULE_BASED

    def test_default_is_heuristic(self, make_signal):
        assert select_algorithm([make_signal()], ResilienceMode.NORMAL) == AlgorithmType.MACHINE_LEARNING


# ── Analysis helpers ──────────────────────────────────────────────────────────

class TestAnalysis:
    def test_catalogue_one_action_per_signal(self, make_signal):
        actions = catalogue_actions([make_signal(severity=SignalSeverity.CRITICAL),
                                     make_signal(severity=SignalSeverity.LOW)])
        assert [a.type for a in actions] == [ResponseActionType.EMERGENCY_RESPONSE,
                                             ResponseActionType.UPDATE_CONFIG]

    def test_severity_anomaly_detected(self, make_signal):
        sigs = [make_signal() for _ in range(5)] + [make_signal(severity=SignalSeverity.CRITICAL)]
        anomalies = severity_anomalies(sigs)
        assert len(anomalies) == 1
        assert anomalies[0]["severity"] == "CRITICAL"

    def test_correlation_on_shared_asset(self, make_signal):
        sigs = [make_signal(SignalType.ENVIRONMENTAL, asset_id="t-1"),
                make_signal(SignalType.ASSET_CONDITION, asset_id="t-1")]
        corr = type_correlations(sigs)
        assert len(corr) == 1
        assert corr[0]["correlation"] == 1.0

    def test_no_correlation_on_disjoint_assets(self, make_signal):
        sigs = [make_signal(SignalType.ENVIRONMENTAL, asset_id="t-1"),
                make_signal(SignalType.ASSET_CONDITION, asset_id="t-2")]
        assert type_correlations(sigs) == []


# ── Scorer calibration ────────────────────────────────────────────────────────

class TestHeuristicScorer:
    def test_f1(self):
        s = HeuristicScorer("x", [], precision=0.8, recall=0.8)
        assert s.f1_score == pytest.approx(0.8)

    def test_calibrate_up_capped(self):
        s = HeuristicScorer("x", [], accuracy=0.985)
        s.calibrate(True)
        s.calibrate(True)
        assert s.accuracy == 0.99
        assert s.samples == 2

    def test_calibrate_down_floored(self):
        s = HeuristicScorer("x", [], accuracy=0.502)
        s.calibrate(False)
        assert s.accuracy == 0.5


# ── Selector ──────────────────────────────────────────────────────────────────

class TestAdaptiveResponseSelector:
    def test_invalid_only_batch(self, selector):
        result = selector.process_signals([{"id": "broken"}], ResilienceMode.NORMAL)
        assert result.algorithm is None
        assert result.confidence == 0
        assert result.recommended_actions == []
        assert result.insights == ["No valid signals to process"]

    def test_heuristic_path_and_feedback(self, selector, make_signal):
        result = selector.process_signals([make_signal()], ResilienceMode.NORMAL)
        assert result.algorithm == AlgorithmType.MACHINE_LEARNING
        assert result.confidence == pytest.approx(0.85)
        assert [a.type for a in result.recommended_actions] == [ResponseActionType.UPDATE_CONFIG]
        assert selector.scorers["response_prediction"].accuracy == pytest.approx(0.86)
        assert selector.get_feedback_log()[0].success is True

    def test_rule_based_in_emergency(self, selector, make_signal):
        sig = make_signal(SignalType.ASSET_CONDITION, SignalSeverity.MEDIUM)
        result = selector.process_signals([sig], ResilienceMode.EMERGENCY)
        assert result.algorithm == AlgorithmType.RULE_BASED
        assert [a.type for a in result.recommended_actions] == [ResponseActionType.SCHEDULE_MAINTENANCE]
        assert result.confidence == 0.75

    def test_pattern_matching_config_action(self, make_signal):
        selector = AdaptiveResponseSelector(AdaptiveConfig(confidence_threshold=0.6), random.Random(1))
        sigs = [make_signal() for _ in range(7)] + [
            make_signal(SignalType.MAINTENANCE), make_signal(SignalType.ENVIRONMENTAL),
            make_signal(SignalType.COMPLIANCE)]
        result = selector.process_signals(sigs, ResilienceMode.NORMAL)
        assert result.algorithm == AlgorithmType.PATTERN_MATCHING
        assert len(result.recommended_actions) == 1
        assert result.recommended_actions[0].parameters["pattern_id"] == "pattern-OPERATIONAL"

    def test_weak_confidence_calibrates_down(self, make_signal):
        selector = AdaptiveResponseSelector(AdaptiveConfig(confidence_threshold=0.6), random.Random(1))
        sigs = [make_signal() for _ in range(7)] + [
            make_signal(SignalType.MAINTENANCE), make_signal(SignalType.ENVIRONMENTAL),
            make_signal(SignalType.COMPLIANCE)]
        selector.process_signals(sigs, ResilienceMode.NORMAL)
        assert selector.get_feedback_log()[0].success is False
        assert selector.scorers["response_prediction"].accuracy == pytest.approx(0.845)

    def test_hybrid_caps_actions(self, selector, make_signal):
        sigs = [make_signal(severity=SignalSeverity.CRITICAL) for _ in range(12)]
        result = selector.process_signals(sigs, ResilienceMode.EMERGENCY)
        assert result.algorithm == AlgorithmType.HYBRID
        assert 0 < len(result.recommended_actions) <= 5
        assert "12 critical signals processed" in result.insights

    def test_feedback_disabled(self, make_signal):
        selector = AdaptiveResponseSelector(AdaptiveConfig(real_time_feedback=False), random.Random(3))
        selector.process_signals([make_signal()], ResilienceMode.NORMAL)
        assert selector.get_feedback_log() == []

    def test_status(self, selector, make_signal):
        selector.process_signals([make_signal()], ResilienceMode.NORMAL)
        status = selector.get_status()
        assert status["active_scorers"] == 5
        assert status["runs"] == {"MACHINE_LEARNING": 1}
