"""
Aegrid Resilience v1.0 — Module 1: Core Data Model
===================================================
Enumerations and records shared by every resilience component.

Records are plain dataclasses with a to_dict() for the REST layer.
MarginAllocation is the only record with an invariant of its own:
allocated + available == total and utilization == allocated / total.
Build it through MarginAllocation.build() so the invariant always holds.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ── Enumerations ──────────────────────────────────────────────────────────────

class SignalType(str, Enum):
    ASSET_CONDITION         = "ASSET_CONDITION"
    PERFORMANCE_DEGRADATION = "PERFORMANCE_DEGRADATION"
    RISK_ESCALATION         = "RISK_ESCALATION"
    EMERGENCY               = "EMERGENCY"
    MAINTENANCE             = "MAINTENANCE"
    ENVIRONMENTAL           = "ENVIRONMENTAL"
    OPERATIONAL             = "OPERATIONAL"
    COMPLIANCE              = "COMPLIANCE"


class SignalSeverity(str, Enum):
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    SignalSeverity.LOW: 1,
    SignalSeverity.MEDIUM: 2,
    SignalSeverity.HIGH: 3,
    SignalSeverity.CRITICAL: 4,
}


class SignalStatus(str, Enum):
    RECEIVED   = "RECEIVED"
    PROCESSING = "PROCESSING"
    PROCESSED  = "PROCESSED"


SIGNAL_STATUS_ORDER = [SignalStatus.RECEIVED, SignalStatus.PROCESSING, SignalStatus.PROCESSED]


class ResilienceMode(str, Enum):
    NORMAL      = "NORMAL"
    ELEVATED    = "ELEVATED"
    HIGH_STRESS = "HIGH_STRESS"
    EMERGENCY   = "EMERGENCY"
    RECOVERY    = "RECOVERY"
    MAINTENANCE = "MAINTENANCE"


class MarginType(str, Enum):
    TIME      = "TIME"
    CAPACITY  = "CAPACITY"
    MATERIAL  = "MATERIAL"
    FINANCIAL = "FINANCIAL"


class MarginStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    WARNING   = "WARNING"
    CRITICAL  = "CRITICAL"
    EMERGENCY = "EMERGENCY"


class DeploymentStatus(str, Enum):
    PENDING     = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED   = "completed"


class AlgorithmType(str, Enum):
    RULE_BASED           = "RULE_BASED"
    PATTERN_MATCHING     = "PATTERN_MATCHING"
    STATISTICAL_ANALYSIS = "STATISTICAL_ANALYSIS"
    MACHINE_LEARNING     = "MACHINE_LEARNING"
    HYBRID               = "HYBRID"


class ResponseActionType(str, Enum):
    EMERGENCY_RESPONSE   = "EMERGENCY_RESPONSE"
    NOTIFY               = "NOTIFY"
    SCHEDULE_MAINTENANCE = "SCHEDULE_MAINTENANCE"
    UPDATE_CONFIG        = "UPDATE_CONFIG"
    DEPLOY_MARGIN        = "DEPLOY_MARGIN"
    ESCALATE             = "ESCALATE"


class EventType(str, Enum):
    STATE_CHANGE           = "STATE_CHANGE"
    SIGNAL_PROCESSED       = "SIGNAL_PROCESSED"
    MARGIN_ALLOCATED       = "MARGIN_ALLOCATED"
    MARGIN_DEPLOYED        = "MARGIN_DEPLOYED"
    EMERGENCY_RESPONSE     = "EMERGENCY_RESPONSE"
    ADAPTIVE_RESPONSE      = "ADAPTIVE_RESPONSE"
    ANTIFRAGILE_ACTIVATION = "ANTIFRAGILE_ACTIVATION"
    CONFIG_UPDATED         = "CONFIG_UPDATED"


# ── Exceptions ────────────────────────────────────────────────────────────────

class ResilienceError(Exception):
    """Base class for the few errors the resilience core raises."""


class InsufficientMarginError(ResilienceError):
    def __init__(self, margin_type: MarginType, required: float, available: float):
        self.margin_type = margin_type
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient {margin_type.value} margin available. "
            f"Required: {required:g}, Available: {available:g}"
        )


class EngineNotInitializedError(ResilienceError):
    def __init__(self):
        super().__init__("Resilience Engine not initialized")


# ── Signals ───────────────────────────────────────────────────────────────────

@dataclass
class Signal:
    """A typed, timestamped observation awaiting evaluation."""
    id:          str
    type:        SignalType
    severity:    SignalSeverity
    source:      str
    timestamp:   datetime
    status:      SignalStatus        = SignalStatus.RECEIVED
    data:        dict[str, Any]      = field(default_factory=dict)
    asset_id:    Optional[str]       = None
    description: str                 = ""

    def to_dict(self) -> dict:
        return {
            "id":          self.id,
            "type":        self.type.value,
            "severity":    self.severity.value,
            "source":      self.source,
            "timestamp":   self.timestamp.isoformat(),
            "status":      self.status.value,
            "data":        self.data,
            "asset_id":    self.asset_id,
            "description": self.description,
        }


# ── Margins ───────────────────────────────────────────────────────────────────

@dataclass
class MarginAllocation:
    margin_type:      MarginType
    total_margin:     float
    allocated_margin: float
    available_margin: float
    utilization_rate: float
    status:           MarginStatus = MarginStatus.AVAILABLE
    last_updated:     datetime     = field(default_factory=utcnow)

    @classmethod
    def build(
        cls,
        margin_type: MarginType,
        total: float,
        allocated: float,
        status: MarginStatus = MarginStatus.AVAILABLE,
    ) -> "MarginAllocation":
        allocated = max(0.0, min(float(total), float(allocated)))
        return cls(
            margin_type      = margin_type,
            total_margin     = float(total),
            allocated_margin = allocated,
            available_margin = float(total) - allocated,
            utilization_rate = allocated / total if total > 0 else 0.0,
            status           = status,
        )

    @property
    def remaining_pct(self) -> float:
        return (1.0 - self.utilization_rate) * 100.0

    def to_dict(self) -> dict:
        return {
            "margin_type":      self.margin_type.value,
            "total_margin":     self.total_margin,
            "allocated_margin": round(self.allocated_margin, 4),
            "available_margin": round(self.available_margin, 4),
            "utilization_rate": round(self.utilization_rate, 4),
            "status":           self.status.value,
            "last_updated":     self.last_updated.isoformat(),
        }


@dataclass
class MarginThreshold:
    """Remaining-margin percentages at which a pool changes status."""
    margin_type: MarginType
    warning:     float
    critical:    float
    emergency:   float
    optimal_min: float
    optimal_max: float


@dataclass
class AllocationRule:
    min_pct:  float
    max_pct:  float
    priority: int = 4


@dataclass
class MarginPolicy:
    """Static rule set: trigger sets → allocation bounds per margin type."""
    id:               str
    name:             str
    description:      str
    signal_types:     list[SignalType]
    severities:       list[SignalSeverity]
    modes:            list[ResilienceMode]
    allocation_rules: dict[MarginType, AllocationRule]
    strategy:         str  = "maintenance"
    active:           bool = True

    def to_dict(self) -> dict:
        return {
            "id":           self.id,
            "name":         self.name,
            "description":  self.description,
            "signal_types": [t.value for t in self.signal_types],
            "severities":   [s.value for s in self.severities],
            "modes":        [m.value for m in self.modes],
            "allocation_rules": {
                mt.value: {"min": r.min_pct, "max": r.max_pct, "priority": r.priority}
                for mt, r in self.allocation_rules.items()
            },
            "strategy":     self.strategy,
            "active":       self.active,
        }


@dataclass
class MarginDeployment:
    id:                     str
    margin_type:            MarginType
    amount:                 float
    reason:                 str
    priority:               int
    estimated_duration_min: float
    expected_outcome:       str
    requested_by:           str               = "margin-manager"
    requested_at:           datetime          = field(default_factory=utcnow)
    status:                 DeploymentStatus  = DeploymentStatus.PENDING
    started_at:             Optional[datetime] = None
    completed_at:           Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id":                     self.id,
            "margin_type":            self.margin_type.value,
            "amount":                 round(self.amount, 4),
            "reason":                 self.reason,
            "priority":               self.priority,
            "estimated_duration_min": round(self.estimated_duration_min, 2),
            "expected_outcome":       self.expected_outcome,
            "requested_by":           self.requested_by,
            "requested_at":           self.requested_at.isoformat(),
            "status":                 self.status.value,
            "started_at":   self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class MarginRecommendation:
    id:                  str
    margin_type:         MarginType
    recommendation_type: str     # increase_allocation | optimize_allocation
    priority:            str
    description:         str
    rationale:           str
    suggested_amount:    float
    estimated_cost:      float
    timeframe:           str

    def to_dict(self) -> dict:
        return {
            "id":                  self.id,
            "margin_type":         self.margin_type.value,
            "recommendation_type": self.recommendation_type,
            "priority":            self.priority,
            "description":         self.description,
            "rationale":           self.rationale,
            "suggested_amount":    round(self.suggested_amount, 4),
            "estimated_cost":      self.estimated_cost,
            "timeframe":           self.timeframe,
        }


@dataclass
class MarginEvent:
    id:          str
    event_type:  str     # ALLOCATION_UPDATE | MARGIN_DEPLOYMENT
    margin_type: MarginType
    description: str
    details:     dict
    impact:      str
    policy_id:   str
    timestamp:   datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id":          self.id,
            "event_type":  self.event_type,
            "margin_type": self.margin_type.value,
            "description": self.description,
            "details":     self.details,
            "impact":      self.impact,
            "policy_id":   self.policy_id,
            "timestamp":   self.timestamp.isoformat(),
        }


# ── Adaptive response ─────────────────────────────────────────────────────────

@dataclass
class ResponseAction:
    id:                    str
    type:                  ResponseActionType
    description:           str
    priority:              int
    estimated_duration_ms: int
    required_resources:    list[str]      = field(default_factory=list)
    parameters:            dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id":                    self.id,
            "type":                  self.type.value,
            "description":           self.description,
            "priority":              self.priority,
            "estimated_duration_ms": self.estimated_duration_ms,
            "required_resources":    self.required_resources,
            "parameters":            self.parameters,
        }


@dataclass
class ResponsePrediction:
    effectiveness:        float
    confidence:           float
    response_time:        float
    resource_utilization: float
    side_effects:         list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "effectiveness":        round(self.effectiveness, 3),
            "confidence":           round(self.confidence, 4),
            "response_time":        self.response_time,
            "resource_utilization": self.resource_utilization,
            "side_effects":         self.side_effects,
        }


@dataclass
class AdaptiveResponseResult:
    algorithm:           Optional[AlgorithmType]
    recommended_actions: list[ResponseAction]
    prediction:          ResponsePrediction
    confidence:          float
    performance:         dict[str, float]  = field(default_factory=dict)
    insights:            list[str]         = field(default_factory=list)
    processing_time_ms:  float             = 0.0

    def to_dict(self) -> dict:
        return {
            "algorithm":           self.algorithm.value if self.algorithm else None,
            "recommended_actions": [a.to_dict() for a in self.recommended_actions],
            "prediction":          self.prediction.to_dict(),
            "confidence":          round(self.confidence, 4),
            "performance":         self.performance,
            "insights":            self.insights,
            "processing_time_ms":  round(self.processing_time_ms, 3),
        }


# ── Antifragile ───────────────────────────────────────────────────────────────

@dataclass
class StressEvent:
    id:            str
    stress_level:  float
    signal_types:  list[SignalType]
    signal_count:  int
    mode:          ResilienceMode
    timestamp:     datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id":           self.id,
            "stress_level": self.stress_level,
            "signal_types": [t.value for t in self.signal_types],
            "signal_count": self.signal_count,
            "mode":         self.mode.value,
            "timestamp":    self.timestamp.isoformat(),
        }


@dataclass
class AntifragilePattern:
    """A stress signature that, once matched, triggers adaptations."""
    id:                   str
    name:                 str
    description:          str
    min_stress_level:     float
    required_types:       list[SignalType]
    adaptations:          list[str]
    activation_count:     int                = 0
    success_count:        float              = 0.0
    last_activated:       Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.activation_count == 0:
            return 1.0
        return self.success_count / self.activation_count

    def to_dict(self) -> dict:
        return {
            "id":               self.id,
            "name":             self.name,
            "description":      self.description,
            "min_stress_level": self.min_stress_level,
            "required_types":   [t.value for t in self.required_types],
            "adaptations":      self.adaptations,
            "activation_count": self.activation_count,
            "success_count":    round(self.success_count, 4),
            "success_rate":     round(self.success_rate, 4),
            "last_activated":   self.last_activated.isoformat() if self.last_activated else None,
        }


@dataclass
class AdaptationRecord:
    id:           str
    pattern_id:   str
    adaptation:   str
    impact:       float
    confidence:   float
    success:      bool
    details:      dict     = field(default_factory=dict)
    timestamp:    datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id":         self.id,
            "pattern_id": self.pattern_id,
            "adaptation": self.adaptation,
            "impact":     round(self.impact, 3),
            "confidence": round(self.confidence, 3),
            "success":    self.success,
            "details":    self.details,
            "timestamp":  self.timestamp.isoformat(),
        }


# ── Engine state ──────────────────────────────────────────────────────────────

@dataclass
class ResilienceState:
    """The aggregate owned by one engine instance."""
    mode:               ResilienceMode                      = ResilienceMode.NORMAL
    resilience_level:   float                               = 75.0
    antifragile_score:  float                               = 50.0
    margin_utilization: float                               = 0.0
    active_signals:     list[Signal]                        = field(default_factory=list)
    margin_allocation:  dict[MarginType, MarginAllocation]  = field(default_factory=dict)
    last_updated:       datetime                            = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "mode":               self.mode.value,
            "resilience_level":   self.resilience_level,
            "antifragile_score":  self.antifragile_score,
            "margin_utilization": round(self.margin_utilization, 4),
            "active_signals":     [s.id for s in self.active_signals],
            "margin_allocation":  {mt.value: a.to_dict() for mt, a in self.margin_allocation.items()},
            "last_updated":       self.last_updated.isoformat(),
        }


@dataclass
class ResilienceStatus:
    operational:          bool
    mode:                 ResilienceMode
    health_score:         float
    margin_utilization:   float
    antifragile_score:    float
    active_signals_count: int
    last_health_check:    datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "operational":          self.operational,
            "mode":                 self.mode.value,
            "health_score":         round(self.health_score, 2),
            "margin_utilization":   round(self.margin_utilization, 2),
            "antifragile_score":    round(self.antifragile_score, 2),
            "active_signals_count": self.active_signals_count,
            "last_health_check":    self.last_health_check.isoformat(),
        }


@dataclass
class ResilienceResponse:
    """{success, data | error} envelope returned by every engine operation."""
    success:   bool
    data:      Any           = None
    error:     Optional[str] = None
    timestamp: datetime      = field(default_factory=utcnow)

    @classmethod
    def ok(cls, data: Any = None) -> "ResilienceResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: Exception | str) -> "ResilienceResponse":
        return cls(success=False, error=str(exc))

    def to_dict(self) -> dict:
        data = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        out = {"success": self.success, "timestamp": self.timestamp.isoformat()}
        if self.success:
            out["data"] = data
        else:
            out["error"] = self.error
        return out
