"""
Aegrid Resilience v1.0 — Module 2: Configuration
================================================
Injectable configuration for the resilience engine.

Defaults reproduce the production council deployment. Operators override
them with $RESILIENCE_HOME/resilience_config.json; unknown keys are
ignored, a missing or broken file falls back to defaults.

Example resilience_config.json:
  {
    "mode_thresholds": {"normal": 80, "elevated": 60, "high_stress": 40},
    "emergency_exit_level": 85,
    "deployment_override_utilization": 0.8,
    "antifragile": {"activation_threshold": 55, "cooldown_seconds": 120},
    "margin_totals": {"TIME": 120}
  }
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Optional

from .models import (
    AllocationRule, MarginPolicy, MarginThreshold, MarginType,
    ResilienceMode, ResponseActionType, SignalSeverity, SignalType,
)

logger = logging.getLogger(__name__)

CONFIG_FILE = "resilience_config.json"


def resilience_home() -> str:
    return os.environ.get("RESILIENCE_HOME", os.path.expanduser("~"))


# ── Sub-configs ───────────────────────────────────────────────────────────────

@dataclass
class ModeThresholds:
    """Lower bounds of resilience level per mode (EMERGENCY below high_stress)."""
    normal:      float = 80.0
    elevated:    float = 60.0
    high_stress: float = 40.0


@dataclass
class AntifragileConfig:
    enabled:              bool  = True
    activation_threshold: float = 60.0
    cooldown_seconds:     float = 300.0
    min_success_rate:     float = 0.7
    min_activations:      int   = 5      # before the success-rate gate applies
    success_confidence:   float = 0.7
    score_gain:           float = 1.0
    score_loss:           float = 0.5
    initial_score:        float = 50.0
    retention_days:       int   = 30


@dataclass
class AdaptiveConfig:
    enabled:              bool  = True
    confidence_threshold: float = 0.7
    hybrid_weights:       dict  = field(default_factory=lambda: {
        "heuristic": 0.4, "rule": 0.3, "pattern": 0.3,
    })
    max_hybrid_actions:   int   = 5
    calibration_gain:     float = 0.01
    calibration_loss:     float = 0.005
    real_time_feedback:   bool  = True
    retention_days:       int   = 30


@dataclass
class ProtocolAction:
    type:       ResponseActionType
    parameters: dict = field(default_factory=dict)
    order:      int  = 1


@dataclass
class EmergencyProtocol:
    id:                 str
    name:               str
    trigger_conditions: list[str]
    response_actions:   list[ProtocolAction]
    priority:           int = 1
    timeout_seconds:    int = 300


# ── Defaults ──────────────────────────────────────────────────────────────────

DEFAULT_MARGIN_TOTALS: dict[MarginType, float] = {
    MarginType.TIME:      100.0,       # hours
    MarginType.CAPACITY:  1000.0,      # units
    MarginType.MATERIAL:  500.0,       # units
    MarginType.FINANCIAL: 100_000.0,   # dollars
}

DEFAULT_INITIAL_UTILIZATION = 0.2


def default_thresholds() -> dict[MarginType, MarginThreshold]:
    return {
        MarginType.TIME:      MarginThreshold(MarginType.TIME,      20, 10, 5,  15, 30),
        MarginType.CAPACITY:  MarginThreshold(MarginType.CAPACITY,  25, 15, 8,  20, 40),
        MarginType.MATERIAL:  MarginThreshold(MarginType.MATERIAL,  30, 20, 10, 25, 50),
        MarginType.FINANCIAL: MarginThreshold(MarginType.FINANCIAL, 15, 8,  3,  10, 25),
    }


def _rules(pairs: dict[MarginType, tuple[float, float]], priority: int) -> dict[MarginType, AllocationRule]:
    return {mt: AllocationRule(lo, hi, priority) for mt, (lo, hi) in pairs.items()}


NORMAL_POLICY_ID = "normal-operations-policy"


def default_policies() -> list[MarginPolicy]:
    T, C, M, F = MarginType.TIME, MarginType.CAPACITY, MarginType.MATERIAL, MarginType.FINANCIAL
    return [
        MarginPolicy(
            id           = "emergency-response-policy",
            name         = "Emergency Response Policy",
            description  = "Deploy maximum available margins during emergency situations",
            signal_types = [SignalType.EMERGENCY, SignalType.ASSET_CONDITION],
            severities   = [SignalSeverity.CRITICAL],
            modes        = [ResilienceMode.EMERGENCY, ResilienceMode.HIGH_STRESS],
            allocation_rules = _rules({T: (80, 100), C: (80, 100), M: (80, 100), F: (80, 100)}, 1),
            strategy     = "immediate",
        ),
        MarginPolicy(
            id           = "risk-escalation-policy",
            name         = "Risk Escalation Policy",
            description  = "Increase margins when risk levels escalate",
            signal_types = [SignalType.RISK_ESCALATION],
            severities   = [SignalSeverity.HIGH, SignalSeverity.MEDIUM],
            modes        = [ResilienceMode.ELEVATED],
            allocation_rules = _rules({T: (20, 50), C: (25, 60), M: (30, 70), F: (15, 40)}, 2),
            strategy     = "graduated",
        ),
        MarginPolicy(
            id           = "maintenance-window-policy",
            name         = "Maintenance Window Policy",
            description  = "Allocate additional margins during planned maintenance",
            signal_types = [SignalType.MAINTENANCE],
            severities   = [SignalSeverity.LOW, SignalSeverity.MEDIUM],
            modes        = [ResilienceMode.MAINTENANCE],
            allocation_rules = _rules({T: (30, 60), C: (20, 40), M: (40, 80), F: (10, 30)}, 3),
            strategy     = "scheduled",
        ),
        MarginPolicy(
            id           = NORMAL_POLICY_ID,
            name         = "Normal Operations Policy",
            description  = "Maintain optimal margins during normal operations",
            signal_types = [],
            severities   = [SignalSeverity.LOW],
            modes        = [ResilienceMode.NORMAL],
            allocation_rules = _rules({T: (15, 30), C: (20, 40), M: (25, 50), F: (10, 25)}, 4),
            strategy     = "maintenance",
        ),
    ]


def default_emergency_protocols() -> list[EmergencyProtocol]:
    return [
        EmergencyProtocol(
            id                 = "emergency-protocol-1",
            name               = "Critical Asset Failure",
            trigger_conditions = ["asset_failure", "critical_severity"],
            response_actions   = [
                ProtocolAction(ResponseActionType.DEPLOY_MARGIN,
                               {"margin_type": "CAPACITY", "amount": 50}, order=1),
                ProtocolAction(ResponseActionType.NOTIFY,
                               {"message": "Critical asset failure detected"}, order=2),
            ],
            priority           = 1,
            timeout_seconds    = 300,
        ),
    ]


# ── Root config ───────────────────────────────────────────────────────────────

@dataclass
class ResilienceConfig:
    mode_thresholds:                 ModeThresholds    = field(default_factory=ModeThresholds)
    emergency_exit_level:            float             = 80.0
    deployment_override_utilization: float             = 0.8
    min_resilience_level:            float             = 60.0
    max_margin_utilization:          float             = 80.0
    signal_processing_interval:      float             = 5.0     # seconds
    health_check_interval:           float             = 5.0     # seconds
    deployment_time_scale:           float             = 1.0     # seconds per estimated minute
    max_pending_signals:             int               = 1000
    initial_resilience_level:        float             = 75.0
    margin_totals:                   dict              = field(default_factory=lambda: dict(DEFAULT_MARGIN_TOTALS))
    initial_utilization:             float             = DEFAULT_INITIAL_UTILIZATION
    margin_thresholds:               dict              = field(default_factory=default_thresholds)
    margin_policies:                 list              = field(default_factory=default_policies)
    emergency_protocols:             list              = field(default_factory=default_emergency_protocols)
    antifragile:                     AntifragileConfig = field(default_factory=AntifragileConfig)
    adaptive:                        AdaptiveConfig    = field(default_factory=AdaptiveConfig)

    def to_dict(self) -> dict:
        return {
            "mode_thresholds":                 vars(self.mode_thresholds),
            "emergency_exit_level":            self.emergency_exit_level,
            "deployment_override_utilization": self.deployment_override_utilization,
            "min_resilience_level":            self.min_resilience_level,
            "max_margin_utilization":          self.max_margin_utilization,
            "signal_processing_interval":      self.signal_processing_interval,
            "health_check_interval":           self.health_check_interval,
            "deployment_time_scale":           self.deployment_time_scale,
            "max_pending_signals":             self.max_pending_signals,
            "margin_totals":   {mt.value: v for mt, v in self.margin_totals.items()},
            "antifragile":     vars(self.antifragile),
            "adaptive":        vars(self.adaptive),
            "emergency_protocols": [p.name for p in self.emergency_protocols],
            "margin_policies":     [p.id for p in self.margin_policies],
        }


# Keys an operator may change at runtime or through the JSON file.
_SCALAR_KEYS = {
    "emergency_exit_level", "deployment_override_utilization",
    "min_resilience_level", "max_margin_utilization",
    "signal_processing_interval", "health_check_interval",
    "deployment_time_scale", "max_pending_signals",
    "initial_resilience_level", "initial_utilization",
}
_NESTED_KEYS = {"mode_thresholds", "antifragile", "adaptive"}
_POSITIVE_KEYS = {"signal_processing_interval", "health_check_interval", "max_pending_signals"}


def _coerce(current: Any, value: Any) -> Any:
    """Convert value to the type of the field it replaces. Raises TypeError/ValueError."""
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise TypeError(f"expected true/false, got {value!r}")
        return value
    if isinstance(current, dict):
        if not isinstance(value, dict):
            raise TypeError(f"expected an object, got {value!r}")
        return {**current, **{k: _coerce(current.get(k, 0.0), v) for k, v in value.items()}}
    if isinstance(current, (int, float)) and isinstance(value, (bool, dict, list)):
        raise TypeError(f"expected a number, got {value!r}")
    return type(current)(value)


def apply_overrides(cfg: ResilienceConfig, raw: dict[str, Any]) -> list[str]:
    """
    Overlay known keys from a plain dict onto cfg in place.
    Values are converted to the type of the field they replace; values that
    do not convert are logged and skipped. Returns the list of keys applied.
    """
    applied: list[str] = []
    for key, value in raw.items():
        if key in _SCALAR_KEYS:
            try:
                coerced = _coerce(getattr(cfg, key), value)
                if key in _POSITIVE_KEYS and coerced <= 0:
                    raise ValueError(f"{key} must be positive")
                setattr(cfg, key, coerced)
                applied.append(key)
            except (TypeError, ValueError):
                logger.warning("Config key '%s' has invalid value %r", key, value)
        elif key in _NESTED_KEYS and isinstance(value, dict):
            target = getattr(cfg, key)
            names = {f.name for f in fields(target)} if is_dataclass(target) else set()
            for sub_key, sub_value in value.items():
                if sub_key not in names:
                    logger.debug("Config key '%s.%s' ignored", key, sub_key)
                    continue
                try:
                    setattr(target, sub_key, _coerce(getattr(target, sub_key), sub_value))
                    applied.append(f"{key}.{sub_key}")
                except (TypeError, ValueError):
                    logger.warning("Config key '%s.%s' has invalid value %r", key, sub_key, sub_value)
        elif key == "margin_totals" and isinstance(value, dict):
            for name, total in value.items():
                try:
                    mt, total = MarginType(name), float(total)
                except (ValueError, TypeError):
                    logger.warning("Margin total '%s' = %r skipped", name, total)
                    continue
                if total <= 0:
                    logger.warning("Margin total '%s' must be positive, got %g", name, total)
                    continue
                cfg.margin_totals[mt] = total
                applied.append(f"margin_totals.{name}")
        else:
            logger.debug("Config key '%s' ignored", key)
    return applied


def load_config(path: Optional[str] = None) -> ResilienceConfig:
    """Load defaults, then overlay the JSON file if present."""
    cfg = ResilienceConfig()
    path = path or os.path.join(resilience_home(), CONFIG_FILE)
    if not os.path.exists(path):
        return cfg
    try:
        with open(path) as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("top-level JSON value must be an object")
        applied = apply_overrides(cfg, raw)
        logger.info("Resilience config loaded from %s (%d overrides)", path, len(applied))
    except Exception as exc:
        logger.warning("Resilience config load failed (%s), using defaults: %s", path, exc)
        cfg = ResilienceConfig()
    return cfg
