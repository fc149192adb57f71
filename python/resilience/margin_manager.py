"""
Aegrid Resilience v1.0 — Module 7: Margin Manager
=================================================
Four resource pools (TIME, CAPACITY, MATERIAL, FINANCIAL) tracked as
allocated / available / utilization triples.

Per signal batch:
  1. Select policies whose trigger sets intersect the batch and mode
     (normal-operations fallback when none match).
  2. Scale allocations by a severity multiplier (≤ 2.0), clamped to the
     policy's min/max percentage of total.
  3. Derive pool status from remaining margin against thresholds.
  4. Plan deployments when remaining ≤ critical threshold, or a CRITICAL
     signal arrives while utilization ≥ the override utilization.
  5. Emit recommendations and margin events, record utilization history.

Deployments are bookkeeping only: they flip to in_progress immediately
and to completed from a scheduler callback.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import NORMAL_POLICY_ID, ResilienceConfig
from .models import (
    DeploymentStatus, InsufficientMarginError, MarginAllocation,
    MarginDeployment, MarginEvent, MarginPolicy, MarginRecommendation,
    MarginStatus, MarginThreshold, MarginType, ResilienceMode, Signal,
    SignalSeverity, new_id, utcnow,
)
from .scheduler import TaskScheduler
from .signal_ingestion import RawSignal, filter_valid

logger = logging.getLogger(__name__)

SEVERITY_WEIGHT = {
    SignalSeverity.CRITICAL: 0.5,
    SignalSeverity.HIGH:     0.3,
    SignalSeverity.MEDIUM:   0.1,
    SignalSeverity.LOW:      0.05,
}
MAX_SEVERITY_MULTIPLIER = 2.0

DEPLOYMENT_BASE_MINUTES = {
    MarginType.TIME:      60,
    MarginType.CAPACITY:  30,
    MarginType.MATERIAL:  120,
    MarginType.FINANCIAL: 15,
}

RECOMMENDATION_UNIT_COST = {
    MarginType.TIME:      100,   # $ per hour
    MarginType.CAPACITY:  50,    # $ per unit
    MarginType.MATERIAL:  25,    # $ per unit
    MarginType.FINANCIAL: 1,     # $ per $
}

STATUS_PRIORITY = {
    MarginStatus.EMERGENCY: 1,
    MarginStatus.CRITICAL:  2,
    MarginStatus.WARNING:   3,
    MarginStatus.AVAILABLE: 4,
}

BASELINE_UTILIZATION = 0.2
HISTORY_RETENTION    = timedelta(days=30)


# ── Data Structures ───────────────────────────────────────────────────────────

@dataclass
class UtilizationSample:
    margin_type:      MarginType
    utilization_rate: float
    available_margin: float
    allocated_margin: float
    status:           MarginStatus
    timestamp:        datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "margin_type":      self.margin_type.value,
            "utilization_rate": round(self.utilization_rate, 4),
            "available_margin": round(self.available_margin, 4),
            "allocated_margin": round(self.allocated_margin, 4),
            "status":           self.status.value,
            "timestamp":        self.timestamp.isoformat(),
        }


@dataclass
class MarginProcessingResult:
    allocations:     list[MarginAllocation]     = field(default_factory=list)
    deployments:     list[MarginDeployment]     = field(default_factory=list)
    recommendations: list[MarginRecommendation] = field(default_factory=list)
    events:          list[MarginEvent]          = field(default_factory=list)
    policies:        list[str]                  = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allocations":     [a.to_dict() for a in self.allocations],
            "deployments":     [d.to_dict() for d in self.deployments],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "events":          [e.to_dict() for e in self.events],
            "policies":        self.policies,
        }


# ── Pure helpers ──────────────────────────────────────────────────────────────

def severity_multiplier(signals: Iterable[Signal]) -> float:
    m = 1.0 + sum(SEVERITY_WEIGHT.get(s.severity, 0.0) for s in signals)
    return min(MAX_SEVERITY_MULTIPLIER, m)


def margin_status(utilization: float, threshold: Optional[MarginThreshold]) -> MarginStatus:
    if threshold is None:
        return MarginStatus.AVAILABLE
    remaining = (1.0 - utilization) * 100.0
    if remaining <= threshold.emergency:
        return MarginStatus.EMERGENCY
    if remaining <= threshold.critical:
        return MarginStatus.CRITICAL
    if remaining <= threshold.warning:
        return MarginStatus.WARNING
    return MarginStatus.AVAILABLE


def deployment_amount(allocation: MarginAllocation, threshold: MarginThreshold) -> float:
    gap = threshold.optimal_max - allocation.remaining_pct
    return max(0.0, min(allocation.available_margin, gap / 100.0 * allocation.total_margin))


def deployment_duration(margin_type: MarginType, amount: float) -> float:
    return DEPLOYMENT_BASE_MINUTES[margin_type] * min(2.0, amount / 100.0)


def expected_outcome(margin_type: MarginType, amount: float) -> str:
    return {
        MarginType.TIME:      f"Increase available time buffer by {amount:g} hours",
        MarginType.CAPACITY:  f"Increase system capacity by {amount:g} units",
        MarginType.MATERIAL:  f"Increase material inventory by {amount:g} units",
        MarginType.FINANCIAL: f"Increase financial buffer by ${amount:,.2f}",
    }[margin_type]


def _allocation_impact(allocation: MarginAllocation) -> str:
    change = abs(allocation.utilization_rate - BASELINE_UTILIZATION)
    if change > 0.3:
        return "high"
    if change > 0.15:
        return "medium"
    return "low"


def _deployment_impact(deployment: MarginDeployment) -> str:
    if deployment.priority <= 2:
        return "high"
    if deployment.priority == 3:
        return "medium"
    return "low"


# ── Manager ───────────────────────────────────────────────────────────────────

class MarginManager:
    """
    Owns the current margin allocations, policies, thresholds and the
    deployment ledger for one engine.
    """

    def __init__(self, config: Optional[ResilienceConfig] = None,
                 scheduler: Optional[TaskScheduler] = None):
        self.config     = config or ResilienceConfig()
        self.scheduler  = scheduler or TaskScheduler()
        self.thresholds: dict[MarginType, MarginThreshold] = dict(self.config.margin_thresholds)
        self.policies:   list[MarginPolicy] = list(self.config.margin_policies)
        self.allocations: dict[MarginType, MarginAllocation] = {
            mt: MarginAllocation.build(mt, total, total * self.config.initial_utilization)
            for mt, total in self.config.margin_totals.items()
        }
        for mt, alloc in self.allocations.items():
            alloc.status = margin_status(alloc.utilization_rate, self.thresholds.get(mt))

        self._deployments: list[MarginDeployment] = []
        self._events: deque[MarginEvent] = deque(maxlen=1000)
        self._history: list[UtilizationSample] = []
        self._last_recommendations: list[MarginRecommendation] = []
        self._lock = threading.Lock()
        self._stats = {"batches": 0, "deployments": 0, "completed": 0, "manual_allocations": 0}

    # ── Batch processing ──────────────────────────────────────────────────────

    def process_signals(self, signals: Iterable[RawSignal], mode: ResilienceMode) -> MarginProcessingResult:
        valid = filter_valid(signals)
        if not valid:
            return MarginProcessingResult(allocations=list(self.allocations.values()))

        policies = self.applicable_policies(valid, mode)
        logger.info("Margin processing: %d signal(s), policies=%s",
                    len(valid), [p.id for p in policies])

        multiplier = severity_multiplier(valid)
        critical_present = any(s.severity == SignalSeverity.CRITICAL for s in valid)
        result = MarginProcessingResult(policies=[p.id for p in policies])
        updated: dict[MarginType, MarginAllocation] = {}

        for policy in policies:
            policy_allocs = self._policy_allocations(policy, multiplier)
            policy_deploys = self._plan_deployments(policy_allocs, critical_present)
            result.allocations     += policy_allocs
            result.deployments     += policy_deploys
            result.recommendations += self._recommendations(policy_allocs)
            result.events          += self._margin_events(policy, policy_allocs, policy_deploys)
            for alloc in policy_allocs:
                updated[alloc.margin_type] = alloc

        with self._lock:
            self.allocations.update(updated)
            self._events.extend(result.events)
            self._last_recommendations = list(result.recommendations)
            self._stats["batches"] += 1
        self._execute(result.deployments)
        self._record_utilization()
        return result

    def applicable_policies(self, signals: list[Signal], mode: ResilienceMode) -> list[MarginPolicy]:
        """Matching active policies, least urgent first so the most urgent applies last."""
        types = {s.type for s in signals}
        severities = {s.severity for s in signals}
        matched = []
        for p in self.policies:
            if not p.active:
                continue
            if p.signal_types and not types.intersection(p.signal_types):
                continue
            if p.severities and not severities.intersection(p.severities):
                continue
            if p.modes and mode not in p.modes:
                continue
            matched.append(p)
        if not matched:
            fallback = next((p for p in self.policies if p.id == NORMAL_POLICY_ID), None)
            return [fallback] if fallback else []
        return sorted(matched, key=_policy_urgency, reverse=True)

    def _policy_allocations(self, policy: MarginPolicy, multiplier: float) -> list[MarginAllocation]:
        out = []
        for mt, current in self.allocations.items():
            rule = policy.allocation_rules.get(mt)
            if rule is None:
                continue
            total = current.total_margin
            lo, hi = rule.min_pct / 100.0 * total, rule.max_pct / 100.0 * total
            allocated = min(total, max(lo, min(hi, current.allocated_margin * multiplier)))
            alloc = MarginAllocation.build(mt, total, allocated)
            alloc.status = margin_status(alloc.utilization_rate, self.thresholds.get(mt))
            out.append(alloc)
        return out

    def _plan_deployments(self, allocations: list[MarginAllocation],
                          critical_present: bool) -> list[MarginDeployment]:
        override = self.config.deployment_override_utilization
        plans = []
        for alloc in allocations:
            threshold = self.thresholds.get(alloc.margin_type)
            if threshold is None:
                continue
            remaining = alloc.remaining_pct
            if critical_present and alloc.utilization_rate >= override:
                priority = 1
                reason = (f"Emergency signal detected - high utilization: "
                          f"{alloc.utilization_rate * 100:.1f}%")
            elif remaining <= threshold.critical:
                priority = STATUS_PRIORITY[alloc.status]
                reason = f"Critical threshold reached: {remaining:.1f}% remaining"
            else:
                continue
            amount = deployment_amount(alloc, threshold)
            plans.append(MarginDeployment(
                id                     = new_id("deployment"),
                margin_type            = alloc.margin_type,
                amount                 = amount,
                reason                 = reason,
                priority               = priority,
                estimated_duration_min = deployment_duration(alloc.margin_type, amount),
                expected_outcome       = expected_outcome(alloc.margin_type, amount),
            ))
        return plans

    def _recommendations(self, allocations: list[MarginAllocation]) -> list[MarginRecommendation]:
        recs = []
        for alloc in allocations:
            threshold = self.thresholds.get(alloc.margin_type)
            if threshold is None:
                continue
            remaining = alloc.remaining_pct
            mt = alloc.margin_type
            if remaining < threshold.optimal_min:
                target = 1.0 - threshold.optimal_min / 100.0
                recs.append(MarginRecommendation(
                    id                  = new_id("rec"),
                    margin_type         = mt,
                    recommendation_type = "increase_allocation",
                    priority            = "high",
                    description         = f"Increase {mt.value} margin allocation to maintain optimal range",
                    rationale           = (f"Current margin ({remaining:.1f}%) below optimal "
                                           f"minimum ({threshold.optimal_min:g}%)"),
                    suggested_amount    = max(0.0, (target - alloc.utilization_rate) * alloc.total_margin),
                    estimated_cost      = RECOMMENDATION_UNIT_COST[mt],
                    timeframe           = "immediate",
                ))
            elif remaining > threshold.optimal_max:
                target = 1.0 - threshold.optimal_max / 100.0
                recs.append(MarginRecommendation(
                    id                  = new_id("rec"),
                    margin_type         = mt,
                    recommendation_type = "optimize_allocation",
                    priority            = "medium",
                    description         = f"Optimize {mt.value} margin allocation for better efficiency",
                    rationale           = (f"Current margin ({remaining:.1f}%) above optimal "
                                           f"maximum ({threshold.optimal_max:g}%)"),
                    suggested_amount    = max(0.0, (alloc.utilization_rate - target) * alloc.total_margin),
                    estimated_cost      = -RECOMMENDATION_UNIT_COST[mt] * 0.5,
                    timeframe           = "planned",
                ))
        return recs

    def _margin_events(self, policy: MarginPolicy, allocations: list[MarginAllocation],
                       deployments: list[MarginDeployment]) -> list[MarginEvent]:
        events = []
        for alloc in allocations:
            previous = self.allocations.get(alloc.margin_type)
            events.append(MarginEvent(
                id          = new_id("event"),
                event_type  = "ALLOCATION_UPDATE",
                margin_type = alloc.margin_type,
                description = f"Margin allocation updated for {alloc.margin_type.value}",
                details     = {
                    "previous_allocation": previous.allocated_margin if previous else 0.0,
                    "new_allocation":      alloc.allocated_margin,
                    "utilization_rate":    alloc.utilization_rate,
                    "status":              alloc.status.value,
                },
                impact      = _allocation_impact(alloc),
                policy_id   = policy.id,
            ))
        for dep in deployments:
            events.append(self._deployment_event(dep, policy.id))
        return events

    @staticmethod
    def _deployment_event(dep: MarginDeployment, policy_id: str) -> MarginEvent:
        return MarginEvent(
            id          = new_id("event"),
            event_type  = "MARGIN_DEPLOYMENT",
            margin_type = dep.margin_type,
            description = f"Margin deployment initiated for {dep.margin_type.value}",
            details     = {
                "deployment_amount": dep.amount,
                "reason":            dep.reason,
                "priority":          dep.priority,
                "expected_duration": dep.estimated_duration_min,
            },
            impact      = _deployment_impact(dep),
            policy_id   = policy_id,
        )

    # ── Deployment execution ──────────────────────────────────────────────────

    def _execute(self, deployments: list[MarginDeployment]) -> None:
        scale = self.config.deployment_time_scale
        for dep in deployments:
            with self._lock:
                dep.status = DeploymentStatus.IN_PROGRESS
                dep.started_at = utcnow()
                self._deployments.append(dep)
                self._stats["deployments"] += 1
            logger.info("Executing margin deployment: %s %.2f (priority %d)",
                        dep.margin_type.value, dep.amount, dep.priority)
            self.scheduler.call_later(
                dep.estimated_duration_min * scale,
                lambda d=dep: self._complete(d),
                name=f"deploy-{dep.id}",
            )

    def _complete(self, dep: MarginDeployment) -> None:
        with self._lock:
            if dep.status == DeploymentStatus.COMPLETED:
                return
            dep.status = DeploymentStatus.COMPLETED
            dep.completed_at = utcnow()
            self._stats["completed"] += 1
        logger.info("Margin deployment completed: %s", dep.margin_type.value)

    # ── Explicit operations ───────────────────────────────────────────────────

    def allocate_margin(self, margin_type: MarginType, amount: float, reason: str = "") -> MarginAllocation:
        """Move `amount` from available to allocated. Raises InsufficientMarginError."""
        with self._lock:
            current = self.allocations[margin_type]
            if amount > current.available_margin:
                raise InsufficientMarginError(margin_type, amount, current.available_margin)
            alloc = MarginAllocation.build(margin_type, current.total_margin,
                                           current.allocated_margin + amount)
            alloc.status = margin_status(alloc.utilization_rate, self.thresholds.get(margin_type))
            self.allocations[margin_type] = alloc
            self._events.append(MarginEvent(
                id          = new_id("event"),
                event_type  = "ALLOCATION_UPDATE",
                margin_type = margin_type,
                description = f"Manual allocation of {amount:g} {margin_type.value}",
                details     = {"amount": amount, "reason": reason,
                               "previous_allocation": current.allocated_margin,
                               "new_allocation": alloc.allocated_margin},
                impact      = _allocation_impact(alloc),
                policy_id   = "manual",
            ))
            self._stats["manual_allocations"] += 1
        logger.info("Allocated %.2f %s margin: %s", amount, margin_type.value, reason or "-")
        self._record_utilization()
        return alloc

    def deploy_margin(self, margin_type: MarginType, amount: float, reason: str = "",
                      requested_by: str = "operator") -> MarginDeployment:
        """Deploy an explicit amount; it becomes allocated. Raises InsufficientMarginError."""
        with self._lock:
            current = self.allocations[margin_type]
            if amount > current.available_margin:
                raise InsufficientMarginError(margin_type, amount, current.available_margin)
            alloc = MarginAllocation.build(margin_type, current.total_margin,
                                           current.allocated_margin + amount)
            alloc.status = margin_status(alloc.utilization_rate, self.thresholds.get(margin_type))
            self.allocations[margin_type] = alloc
            dep = MarginDeployment(
                id                     = new_id("deployment"),
                margin_type            = margin_type,
                amount                 = amount,
                reason                 = reason or "Manual margin deployment",
                priority               = 1,
                estimated_duration_min = deployment_duration(margin_type, amount),
                expected_outcome       = expected_outcome(margin_type, amount),
                requested_by           = requested_by,
            )
            self._events.append(self._deployment_event(dep, "manual"))
        self._execute([dep])
        self._record_utilization()
        return dep

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def deployments(self) -> list[MarginDeployment]:
        with self._lock:
            return list(self._deployments)

    def active_deployments(self) -> list[MarginDeployment]:
        return [d for d in self.deployments if d.status == DeploymentStatus.IN_PROGRESS]

    def average_utilization(self) -> float:
        if not self.allocations:
            return 0.0
        return sum(a.utilization_rate for a in self.allocations.values()) / len(self.allocations)

    def get_status(self) -> dict:
        with self._lock:
            events = list(self._events)[-10:]
            history = self._history[-24:]
            recs = list(self._last_recommendations)
        return {
            "allocations":        [a.to_dict() for a in self.allocations.values()],
            "active_deployments": [d.to_dict() for d in self.active_deployments()],
            "recent_events":      [e.to_dict() for e in events],
            "utilization_trends": [s.to_dict() for s in history],
            "recommendations":    [r.to_dict() for r in recs],
        }

    def get_metrics(self) -> dict:
        allocs = list(self.allocations.values())
        total     = sum(a.total_margin for a in allocs)
        allocated = sum(a.allocated_margin for a in allocs)
        available = sum(a.available_margin for a in allocs)
        return {
            "total_margin":        total,
            "total_allocated":     round(allocated, 4),
            "total_available":     round(available, 4),
            "average_utilization": round(self.average_utilization(), 4),
            "margin_efficiency":   round(available / total, 4) if total else 0.0,
            "critical_margins":    sum(1 for a in allocs
                                       if a.status in (MarginStatus.CRITICAL, MarginStatus.EMERGENCY)),
            "optimal_margins":     sum(1 for a in allocs if a.status == MarginStatus.AVAILABLE),
            "deployments":         self._stats["deployments"],
            "completed":           self._stats["completed"],
            "last_updated":        utcnow().isoformat(),
        }

    def utilization_trend(self, margin_type: MarginType) -> float:
        """Utilization change per day across the last 10 samples."""
        with self._lock:
            samples = [s for s in self._history if s.margin_type == margin_type][-10:]
        if len(samples) < 2:
            return 0.0
        days = (samples[-1].timestamp - samples[0].timestamp).total_seconds() / 86400.0
        if days == 0:
            return 0.0
        return (samples[-1].utilization_rate - samples[0].utilization_rate) / days

    def generate_forecast(self, horizon_days: int = 7) -> dict:
        projections = []
        for alloc in self.allocations.values():
            trend = self.utilization_trend(alloc.margin_type)
            projected = min(1.0, max(0.0, alloc.utilization_rate + trend * horizon_days))
            remaining = (1.0 - projected) * 100.0
            threshold = self.thresholds.get(alloc.margin_type)
            projections.append({
                "margin_type":           alloc.margin_type.value,
                "current_utilization":   round(alloc.utilization_rate, 4),
                "projected_utilization": round(projected, 4),
                "projected_available":   round(alloc.total_margin * (1.0 - projected), 4),
                "trend_per_day":         round(trend, 6),
                "risk_level":            _projection_risk(remaining, threshold),
                "recommendations":       _forecast_recommendations(alloc.margin_type, remaining,
                                                                   trend, threshold),
            })
        return {
            "time_horizon_days": horizon_days,
            "generated_at":      utcnow().isoformat(),
            "confidence":        0.8,
            "assumptions": [
                "Current utilization trends continue",
                "No major system changes",
                "Standard operational patterns",
            ],
            "projections": projections,
        }

    # ── Configuration ─────────────────────────────────────────────────────────

    def update_thresholds(self, updates: dict) -> None:
        """Merge per-type threshold fields, e.g. {"TIME": {"critical": 12}}."""
        for key, values in updates.items():
            try:
                mt = MarginType(key) if not isinstance(key, MarginType) else key
            except ValueError:
                logger.warning("Unknown margin type '%s' in threshold update skipped", key)
                continue
            current = self.thresholds.get(mt)
            if isinstance(values, MarginThreshold):
                self.thresholds[mt] = values
            elif current is not None and isinstance(values, dict):
                known = {}
                for k, v in values.items():
                    if not hasattr(current, k) or k == "margin_type":
                        continue
                    try:
                        known[k] = float(v)
                    except (TypeError, ValueError):
                        logger.warning("Threshold %s.%s has invalid value %r", mt.value, k, v)
                self.thresholds[mt] = replace(current, **known)
        logger.info("Margin thresholds updated: %s", list(updates))

    def update_totals(self, totals: dict) -> list[MarginAllocation]:
        """
        Resize pools to new totals, keeping the allocated amount (clamped to
        the new total). Returns the allocations that changed.
        """
        changed = []
        with self._lock:
            for mt, total in totals.items():
                current = self.allocations.get(mt)
                if current is None or current.total_margin == total:
                    continue
                alloc = MarginAllocation.build(mt, total, current.allocated_margin)
                alloc.status = margin_status(alloc.utilization_rate, self.thresholds.get(mt))
                self.allocations[mt] = alloc
                changed.append(alloc)
                logger.info("Margin pool %s resized: %g → %g (utilization %.0f%%)",
                            mt.value, current.total_margin, total, alloc.utilization_rate * 100)
        if changed:
            self._record_utilization()
        return changed

    def update_policies(self, policies: list[MarginPolicy]) -> None:
        self.policies = list(policies)
        logger.info("Margin policies updated: %d active",
                    sum(1 for p in self.policies if p.active))

    def _record_utilization(self) -> None:
        now = utcnow()
        with self._lock:
            for alloc in self.allocations.values():
                self._history.append(UtilizationSample(
                    margin_type      = alloc.margin_type,
                    utilization_rate = alloc.utilization_rate,
                    available_margin = alloc.available_margin,
                    allocated_margin = alloc.allocated_margin,
                    status           = alloc.status,
                    timestamp        = now,
                ))
            cutoff = now - HISTORY_RETENTION
            self._history = [s for s in self._history if s.timestamp >= cutoff]

    def get_stats(self) -> dict:
        return {**self._stats, "history_samples": len(self._history),
                "policies": len(self.policies)}


def _policy_urgency(policy: MarginPolicy) -> int:
    return min((r.priority for r in policy.allocation_rules.values()), default=4)


def _projection_risk(remaining: float, threshold: Optional[MarginThreshold]) -> str:
    if threshold is None:
        return "medium"
    if remaining <= threshold.critical:
        return "high"
    if remaining <= threshold.warning:
        return "medium"
    return "low"


def _forecast_recommendations(margin_type: MarginType, remaining: float, trend: float,
                              threshold: Optional[MarginThreshold]) -> list[str]:
    if threshold is None:
        return []
    recs = []
    if remaining <= threshold.warning:
        recs.append(f"Consider increasing {margin_type.value} margin allocation")
    if trend > 0.01:
        recs.append(f"Monitor {margin_type.value} utilization closely - upward trend detected")
    if remaining <= threshold.critical:
        recs.append(f"Prepare emergency margin deployment for {margin_type.value}")
    return recs
