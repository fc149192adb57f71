"""
Aegrid Resilience v1.0 — Module 6: Mode Controller
==================================================
Resilience level scoring and the operating-mode state machine.

  level = clamp(100 − 30·CRITICAL − 25·HIGH − 10·MEDIUM, 0, 100)

  ≥ 80 NORMAL │ ≥ 60 ELEVATED │ ≥ 40 HIGH_STRESS │ else EMERGENCY

EMERGENCY is sticky: the controller stays there until a batch scores at
or above the configured exit level (80 by default).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from .config import ModeThresholds
from .models import ResilienceMode, Signal, SignalSeverity, utcnow

logger = logging.getLogger(__name__)

SEVERITY_PENALTY = {
    SignalSeverity.CRITICAL: 30,
    SignalSeverity.HIGH:     25,
    SignalSeverity.MEDIUM:   10,
    SignalSeverity.LOW:      0,
}


def calculate_resilience_level(signals: Iterable[Signal]) -> float:
    level = 100.0
    for sig in signals:
        level -= SEVERITY_PENALTY.get(sig.severity, 0)
    return max(0.0, min(100.0, level))


def determine_resilience_mode(level: float, thresholds: Optional[ModeThresholds] = None) -> ResilienceMode:
    t = thresholds or ModeThresholds()
    if level >= t.normal:
        return ResilienceMode.NORMAL
    if level >= t.elevated:
        return ResilienceMode.ELEVATED
    if level >= t.high_stress:
        return ResilienceMode.HIGH_STRESS
    return ResilienceMode.EMERGENCY


@dataclass
class ModeTransition:
    previous: ResilienceMode
    current:  ResilienceMode
    level:    float
    reason:   str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "previous":  self.previous.value,
            "current":   self.current.value,
            "level":     self.level,
            "reason":    self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


class ModeController:
    def __init__(
        self,
        thresholds: Optional[ModeThresholds] = None,
        emergency_exit_level: float = 80.0,
        initial_mode: ResilienceMode = ResilienceMode.NORMAL,
        history_size: int = 200,
    ):
        self.thresholds           = thresholds or ModeThresholds()
        self.emergency_exit_level = emergency_exit_level
        self.mode                 = initial_mode
        self._history: deque[ModeTransition] = deque(maxlen=history_size)
        self._held = 0

    def update(self, level: float) -> Optional[ModeTransition]:
        """Apply a fresh resilience level. Returns the transition, if any."""
        target = determine_resilience_mode(level, self.thresholds)
        if target == self.mode:
            return None
        if self.mode == ResilienceMode.EMERGENCY and level < self.emergency_exit_level:
            self._held += 1
            logger.info("EMERGENCY held: level %.1f below exit level %.1f",
                        level, self.emergency_exit_level)
            return None
        return self._transition(target, level, f"resilience level {level:.1f}")

    def enter(self, mode: ResilienceMode, reason: str, level: float = 0.0) -> Optional[ModeTransition]:
        """Force a mode regardless of level (operator action or margin deployment)."""
        if mode == self.mode:
            return None
        return self._transition(mode, level, reason)

    def history(self, limit: int = 20) -> list[ModeTransition]:
        return list(self._history)[-limit:]

    def get_stats(self) -> dict:
        return {
            "mode":                 self.mode.value,
            "transitions":          len(self._history),
            "emergency_holds":      self._held,
            "emergency_exit_level": self.emergency_exit_level,
        }

    def _transition(self, target: ResilienceMode, level: float, reason: str) -> ModeTransition:
        t = ModeTransition(previous=self.mode, current=target, level=level, reason=reason)
        self.mode = target
        self._history.append(t)
        logger.info("Resilience mode %s → %s (%s)", t.previous.value, t.current.value, reason)
        return t
