"""
Aegrid Resilience v1.0 — Module 10: Resilience Engine
=====================================================
Owns the single ResilienceState and wires every component together.

Batch pipeline (process_signals):
  1. Filter invalid signals, mark PROCESSING.
  2. Per-signal handling: EMERGENCY + CRITICAL runs emergency protocols.
  3. Mark PROCESSED, emit SIGNAL_PROCESSED.
  4. Resilience level from the whole batch → mode controller (sticky EMERGENCY).
  5. Antifragile tracker → ANTIFRAGILE_ACTIVATION.
  6. Adaptive selector, actions executed → ADAPTIVE_RESPONSE.
  7. Margin manager, snapshot refreshed → MARGIN_DEPLOYED.

Every public operation returns a ResilienceResponse envelope; exceptions
raised by components become {success: False, error}.

Usage:
    engine = ResilienceEngine(load_config())
    await engine.initialize()
    resp = await engine.process_signals([...])
    print(resp.to_dict())
    await engine.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import psutil

from .adaptive_response import AdaptiveResponseSelector
from .antifragile import AntifragileResult, AntifragileTracker
from .config import ResilienceConfig, apply_overrides
from .events import EventBus
from .margin_manager import MarginManager, MarginProcessingResult
from .mode_controller import ModeController, ModeTransition, calculate_resilience_level
from .models import (
    AdaptiveResponseResult, EngineNotInitializedError, EventType,
    MarginType, ResilienceError, ResilienceMode, ResilienceResponse,
    ResilienceState, ResilienceStatus, ResponseAction, ResponseActionType,
    Signal, SignalSeverity, SignalType, utcnow,
)
from .scheduler import TaskScheduler
from .signal_ingestion import RawSignal, SignalIngestor, filter_valid

logger = logging.getLogger(__name__)

MAX_ACTIVE_SIGNALS = 100


# ── Data Structures ───────────────────────────────────────────────────────────

@dataclass
class BatchReport:
    """Everything one process_signals call did."""
    signals:      list[Signal]
    rejected:     int                               = 0
    level:        Optional[float]                   = None
    mode:         ResilienceMode                    = ResilienceMode.NORMAL
    transition:   Optional[ModeTransition]          = None
    protocols:    list[str]                         = field(default_factory=list)
    antifragile:  Optional[AntifragileResult]       = None
    adaptive:     Optional[AdaptiveResponseResult]  = None
    margin:       Optional[MarginProcessingResult]  = None
    duration_ms:  float                             = 0.0

    def to_dict(self) -> dict:
        return {
            "signals":     [s.to_dict() for s in self.signals],
            "processed":   len(self.signals),
            "rejected":    self.rejected,
            "level":       self.level,
            "mode":        self.mode.value,
            "transition":  self.transition.to_dict() if self.transition else None,
            "protocols":   self.protocols,
            "antifragile": self.antifragile.to_dict() if self.antifragile else None,
            "adaptive":    self.adaptive.to_dict() if self.adaptive else None,
            "margin":      self.margin.to_dict() if self.margin else None,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass
class ComponentHealth:
    name:    str
    score:   float
    details: dict = field(default_factory=dict)

    @property
    def status(self) -> str:
        return health_status(self.score)

    def to_dict(self) -> dict:
        return {"name": self.name, "status": self.status,
                "score": round(self.score, 1), "details": self.details}


def health_status(score: float) -> str:
    if score >= 80:
        return "HEALTHY"
    if score >= 60:
        return "DEGRADED"
    return "UNHEALTHY"


# ── Engine ────────────────────────────────────────────────────────────────────

class ResilienceEngine:
    def __init__(
        self,
        config: Optional[ResilienceConfig] = None,
        scheduler: Optional[TaskScheduler] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config      = config or ResilienceConfig()
        self.scheduler   = scheduler or TaskScheduler()
        self.events      = EventBus()
        self.ingestor    = SignalIngestor(self.config.max_pending_signals)
        self.modes       = ModeController(self.config.mode_thresholds, self.config.emergency_exit_level)
        self.margin      = MarginManager(self.config, self.scheduler)
        self.antifragile = AntifragileTracker(self.config.antifragile)
        self.adaptive    = AdaptiveResponseSelector(self.config.adaptive, rng)
        self.state = ResilienceState(
            mode              = self.modes.mode,
            resilience_level  = self.config.initial_resilience_level,
            antifragile_score = self.antifragile.score,
        )
        self._refresh_margin_snapshot()

        self.initialized = False
        self._lock = threading.RLock()
        self._background: list = []
        self._last_health: Optional[dict] = None
        self._stats = {"batches": 0, "signals": 0, "rejected": 0,
                       "protocols_run": 0, "actions_executed": 0, "errors": 0}

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> ResilienceResponse:
        if self.initialized:
            return ResilienceResponse.ok(self.get_status())
        logger.info("Initializing Resilience Engine...")
        self._start_background()
        self.initialized = True
        self.events.emit(EventType.STATE_CHANGE, {
            "previous_mode": None,
            "current_mode":  self.state.mode.value,
            "reason":        "Engine initialized",
        })
        logger.info("Resilience Engine initialized (mode %s)", self.state.mode.value)
        return ResilienceResponse.ok(self.get_status())

    async def shutdown(self) -> ResilienceResponse:
        self._background = []
        cancelled = self.scheduler.cancel_all()
        self.initialized = False
        logger.info("Resilience Engine shutdown completed (%d task(s) cancelled)", cancelled)
        return ResilienceResponse.ok({"cancelled_tasks": cancelled})

    # ── Signal processing ─────────────────────────────────────────────────────

    async def process_signals(self, signals: Iterable[RawSignal]) -> ResilienceResponse:
        if not self.initialized:
            return ResilienceResponse.fail(EngineNotInitializedError())
        try:
            report = self.process_batch(signals)
        except Exception as exc:
            self._stats["errors"] += 1
            logger.error("Signal processing failed: %s", exc, exc_info=True)
            return ResilienceResponse.fail(exc)
        return ResilienceResponse.ok(report)

    def submit_signals(self, signals: Iterable[RawSignal]) -> ResilienceResponse:
        """Queue signals for the periodic drain."""
        accepted = self.ingestor.submit(signals)
        return ResilienceResponse.ok({
            "accepted": len(accepted),
            "pending":  self.ingestor.pending_count,
        })

    def process_batch(self, signals: Iterable[RawSignal]) -> BatchReport:
        t0 = time.perf_counter()
        raw = list(signals or [])
        valid = filter_valid(raw)
        report = BatchReport(signals=valid, rejected=len(raw) - len(valid), mode=self.state.mode)

        with self._lock:
            self._stats["batches"] += 1
            self._stats["signals"] += len(valid)
            self._stats["rejected"] += report.rejected
            if not valid:
                logger.info("Batch of %d record(s) had no valid signals", len(raw))
                if self.config.adaptive.enabled:
                    report.adaptive = self.adaptive.process_signals([], self.state.mode)
                report.duration_ms = (time.perf_counter() - t0) * 1000
                return report

            logger.info("Processing %d signal(s) (%d rejected)", len(valid), report.rejected)
            self.ingestor.mark_processing(valid)
            for sig in valid:
                report.protocols += self._handle_signal(sig)
            self.ingestor.mark_processed(valid)
            for sig in valid:
                self.events.emit(EventType.SIGNAL_PROCESSED, {
                    "signal_id": sig.id, "type": sig.type.value, "severity": sig.severity.value,
                })

            report.level = calculate_resilience_level(valid)
            report.transition = self.modes.update(report.level)
            self.state.resilience_level = report.level
            self.state.mode = self.modes.mode
            self.state.active_signals = (self.state.active_signals + valid)[-MAX_ACTIVE_SIGNALS:]
            if report.transition:
                self.events.emit(EventType.STATE_CHANGE, {
                    "previous_mode": report.transition.previous.value,
                    "current_mode":  report.transition.current.value,
                    "reason":        "Resilience level changed",
                    "level":         report.level,
                })

            report.antifragile = self.antifragile.process_signals(valid, self.state.mode)
            self.state.antifragile_score = self.antifragile.score
            if report.antifragile.activated_patterns:
                self.events.emit(EventType.ANTIFRAGILE_ACTIVATION, {
                    "activated_patterns": [p.name for p in report.antifragile.activated_patterns],
                    "adaptations":        len(report.antifragile.adaptations),
                    "improvements":       report.antifragile.improvements,
                })

            if self.config.adaptive.enabled:
                report.adaptive = self.adaptive.process_signals(valid, self.state.mode)
                for action in report.adaptive.recommended_actions:
                    self._execute_action(action)
                if report.adaptive.recommended_actions:
                    self.events.emit(EventType.ADAPTIVE_RESPONSE, {
                        "algorithm":   report.adaptive.algorithm.value if report.adaptive.algorithm else None,
                        "actions":     len(report.adaptive.recommended_actions),
                        "confidence":  report.adaptive.confidence,
                        "insights":    report.adaptive.insights,
                    })

            report.margin = self.margin.process_signals(valid, self.state.mode)
            self._refresh_margin_snapshot()
            if report.margin.deployments:
                self.events.emit(EventType.MARGIN_DEPLOYED, {
                    "deployments":     len(report.margin.deployments),
                    "recommendations": len(report.margin.recommendations),
                    "events":          len(report.margin.events),
                })

            report.mode = self.state.mode
            self.state.last_updated = utcnow()
        report.duration_ms = (time.perf_counter() - t0) * 1000
        logger.info("Processed %d signal(s): level %.0f, mode %s, %.1f ms",
                    len(valid), report.level, report.mode.value, report.duration_ms)
        return report

    def _handle_signal(self, sig: Signal) -> list[str]:
        logger.debug("Processing %s signal %s (%s)", sig.type.value, sig.id, sig.severity.value)
        if sig.type == SignalType.EMERGENCY and sig.severity == SignalSeverity.CRITICAL:
            return self._trigger_emergency_protocols(sig)
        return []

    def _trigger_emergency_protocols(self, sig: Signal) -> list[str]:
        ran = []
        for protocol in sorted(self.config.emergency_protocols, key=lambda p: p.priority):
            if not any(_condition_matches(c, sig) for c in protocol.trigger_conditions):
                continue
            logger.warning("Executing emergency protocol '%s' for signal %s", protocol.name, sig.id)
            for action in sorted(protocol.response_actions, key=lambda a: a.order):
                self._run_protocol_action(action.type, action.parameters, sig)
            ran.append(protocol.name)
            self._stats["protocols_run"] += 1
        return ran

    def _run_protocol_action(self, action_type: ResponseActionType, params: dict, sig: Signal) -> None:
        if action_type == ResponseActionType.DEPLOY_MARGIN:
            try:
                self._deploy(MarginType(params["margin_type"]), float(params["amount"]),
                             f"Emergency response for signal: {sig.id}")
            except (ResilienceError, KeyError, ValueError) as exc:
                logger.warning("Protocol margin deployment skipped: %s", exc)
        elif action_type == ResponseActionType.NOTIFY:
            logger.warning("NOTIFY: %s (signal %s)", params.get("message", ""), sig.id)
        elif action_type == ResponseActionType.ESCALATE:
            logger.warning("ESCALATE to %s (signal %s)", params.get("authority", "duty officer"), sig.id)
        else:
            logger.info("Protocol action %s for signal %s", action_type.value, sig.id)

    def _execute_action(self, action: ResponseAction) -> None:
        known = {
            ResponseActionType.EMERGENCY_RESPONSE:   "Emergency response",
            ResponseActionType.NOTIFY:               "Notification",
            ResponseActionType.SCHEDULE_MAINTENANCE: "Maintenance scheduling",
            ResponseActionType.UPDATE_CONFIG:        "Configuration update",
        }
        label = known.get(action.type)
        if label is None:
            logger.warning("Unknown action type: %s", action.type.value)
            return
        logger.info("%s: %s", label, action.description)
        self._stats["actions_executed"] += 1

    # ── Margin operations ─────────────────────────────────────────────────────

    async def allocate_margin(self, margin_type: Union[MarginType, str], amount: float,
                              reason: str = "") -> ResilienceResponse:
        if not self.initialized:
            return ResilienceResponse.fail(EngineNotInitializedError())
        try:
            mt = MarginType(margin_type)
            with self._lock:
                alloc = self.margin.allocate_margin(mt, float(amount), reason)
                self._refresh_margin_snapshot()
        except (ResilienceError, ValueError) as exc:
            logger.error("Failed to allocate margin: %s", exc)
            return ResilienceResponse.fail(exc)
        self.events.emit(EventType.MARGIN_ALLOCATED, {
            "margin_type": mt.value, "amount": amount, "reason": reason,
            "allocation": alloc.to_dict(),
        })
        return ResilienceResponse.ok(alloc)

    async def deploy_margin(self, margin_type: Union[MarginType, str], amount: float,
                            reason: str = "") -> ResilienceResponse:
        if not self.initialized:
            return ResilienceResponse.fail(EngineNotInitializedError())
        try:
            with self._lock:
                dep = self._deploy(MarginType(margin_type), float(amount), reason)
        except (ResilienceError, ValueError) as exc:
            logger.error("Failed to deploy margin: %s", exc)
            return ResilienceResponse.fail(exc)
        return ResilienceResponse.ok(dep)

    def _deploy(self, mt: MarginType, amount: float, reason: str):
        logger.warning("Deploying %.2f %s margin for emergency: %s", amount, mt.value, reason)
        dep = self.margin.deploy_margin(mt, amount, reason)
        transition = self.modes.enter(ResilienceMode.EMERGENCY, f"margin deployment: {reason}",
                                      self.state.resilience_level)
        self.state.mode = self.modes.mode
        self._refresh_margin_snapshot()
        if transition:
            self.events.emit(EventType.STATE_CHANGE, {
                "previous_mode": transition.previous.value,
                "current_mode":  transition.current.value,
                "reason":        transition.reason,
            })
        self.events.emit(EventType.EMERGENCY_RESPONSE, {
            "margin_type": mt.value, "amount": amount, "reason": reason,
            "deployment_id": dep.id, "deployed_at": utcnow().isoformat(),
        })
        return dep

    def _refresh_margin_snapshot(self) -> None:
        self.state.margin_allocation = dict(self.margin.allocations)
        self.state.margin_utilization = self.margin.average_utilization() * 100.0
        self.state.last_updated = utcnow()

    # ── Configuration ─────────────────────────────────────────────────────────

    async def update_config(self, updates: dict) -> ResilienceResponse:
        if not self.initialized:
            return ResilienceResponse.fail(EngineNotInitializedError())
        with self._lock:
            applied = apply_overrides(self.config, updates)
            if isinstance(updates.get("margin_thresholds"), dict):
                self.margin.update_thresholds(updates["margin_thresholds"])
                applied.append("margin_thresholds")
            if any(key.startswith("margin_totals.") for key in applied):
                self.margin.update_totals(self.config.margin_totals)
                self._refresh_margin_snapshot()
            if {"health_check_interval", "signal_processing_interval"} & set(applied):
                self._restart_background()
            self.modes.emergency_exit_level = self.config.emergency_exit_level
            self.ingestor.max_pending = self.config.max_pending_signals
            self.state.last_updated = utcnow()
        self.events.emit(EventType.CONFIG_UPDATED, {"applied": applied,
                                                    "updated_at": utcnow().isoformat()})
        logger.info("Resilience configuration updated: %s", applied)
        return ResilienceResponse.ok({"applied": applied, "config": self.config.to_dict()})

    # ── Status ────────────────────────────────────────────────────────────────

    def calculate_health_score(self) -> float:
        score = 100.0
        score -= min(20.0, len(self.state.active_signals) * 2)
        score -= min(30.0, self.state.margin_utilization * 0.3)
        score -= min(50.0, (100.0 - self.state.resilience_level) * 0.5)
        return max(0.0, min(100.0, score))

    def get_status(self) -> ResilienceStatus:
        return ResilienceStatus(
            operational          = self.initialized,
            mode                 = self.state.mode,
            health_score         = self.calculate_health_score(),
            margin_utilization   = self.state.margin_utilization,
            antifragile_score    = self.state.antifragile_score,
            active_signals_count = len(self.state.active_signals),
        )

    def get_state(self) -> ResilienceState:
        return self.state

    async def perform_health_check(self) -> dict:
        t0 = time.perf_counter()
        metrics = self.margin.get_metrics()
        components = [
            ComponentHealth("Signal Processing",
                            95.0 - min(25.0, self.ingestor.pending_count * 0.05),
                            {"active_signals": len(self.state.active_signals),
                             "pending": self.ingestor.pending_count}),
            ComponentHealth("Margin Management",
                            90.0 - 15.0 * metrics["critical_margins"],
                            {"utilization": round(self.state.margin_utilization, 2),
                             "critical_margins": metrics["critical_margins"]}),
            ComponentHealth("Antifragile System", 85.0,
                            {"antifragile_score": round(self.state.antifragile_score, 2),
                             "enabled": self.config.antifragile.enabled}),
            ComponentHealth("Configuration", 100.0, {"config_valid": True}),
            _host_health(),
        ]
        score = sum(c.score for c in components) / len(components)
        result = {
            "status":      health_status(score),
            "score":       round(score, 1),
            "timestamp":   utcnow().isoformat(),
            "components":  [c.to_dict() for c in components],
            "duration_ms": round((time.perf_counter() - t0) * 1000, 3),
        }
        self._last_health = result
        logger.info("Health check completed: %s (%.1f%%)", result["status"], score)
        return result

    def get_margin_status(self) -> dict:
        return self.margin.get_status()

    def get_margin_metrics(self) -> dict:
        return self.margin.get_metrics()

    def generate_margin_forecast(self, horizon_days: int = 7) -> dict:
        return self.margin.generate_forecast(horizon_days)

    def get_antifragile_status(self) -> dict:
        return self.antifragile.get_status()

    def get_adaptive_status(self) -> dict:
        return self.adaptive.get_status()

    def get_stats(self) -> dict:
        return {**self._stats, "pending": self.ingestor.pending_count,
                "mode": self.state.mode.value, "events": self.events.get_stats()}

    # ── Background ────────────────────────────────────────────────────────────

    def _start_background(self) -> None:
        self._background = [
            self.scheduler.call_every(self.config.health_check_interval,
                                      self._background_health_check, name="health-check"),
            self.scheduler.call_every(self.config.signal_processing_interval,
                                      self._drain_pending, name="signal-drain"),
        ]

    def _restart_background(self) -> None:
        for handle in self._background:
            self.scheduler.cancel(handle)
        self._start_background()
        logger.info("Background tasks re-armed (health %gs, drain %gs)",
                    self.config.health_check_interval, self.config.signal_processing_interval)

    def _background_health_check(self) -> None:
        # timer thread, no running loop
        asyncio.run(self.perform_health_check())

    def _drain_pending(self) -> None:
        batch = self.ingestor.drain()
        if batch:
            self.process_batch(batch)


def _condition_matches(condition: str, sig: Signal) -> bool:
    if condition == "critical_severity":
        return sig.severity == SignalSeverity.CRITICAL
    if condition == "asset_failure":
        return bool(sig.data.get("asset_failure")) or sig.type in (
            SignalType.EMERGENCY, SignalType.ASSET_CONDITION)
    return False


def _host_health() -> ComponentHealth:
    cpu = psutil.cpu_percent(interval=None)
    mem = psutil.virtual_memory().percent
    load = max(cpu, mem)
    score = 100.0 if load < 60 else 80.0 if load < 80 else 50.0
    return ComponentHealth("Host Resources", score, {"cpu_percent": cpu, "memory_percent": mem})
