"""Aegrid Resilience v1.0 — Resilience State Machine Package — 11 Modules"""

# ── Module 1: Core Data Model ───────────────────────────────────────────────
from .models import (
    SignalType, SignalSeverity, SignalStatus, ResilienceMode,
    MarginType, MarginStatus, DeploymentStatus, AlgorithmType,
    ResponseActionType, EventType,
    ResilienceError, InsufficientMarginError, EngineNotInitializedError,
    Signal, MarginAllocation, MarginThreshold, MarginPolicy, AllocationRule,
    MarginDeployment, MarginRecommendation, MarginEvent,
    ResponseAction, ResponsePrediction, AdaptiveResponseResult,
    StressEvent, AntifragilePattern, AdaptationRecord,
    ResilienceState, ResilienceStatus, ResilienceResponse,
)

# ── Module 2: Configuration ─────────────────────────────────────────────────
from .config import (
    ResilienceConfig, ModeThresholds, AntifragileConfig, AdaptiveConfig,
    EmergencyProtocol, ProtocolAction, load_config, apply_overrides,
)

# ── Modules 3-4: Events & Scheduling ────────────────────────────────────────
from .events import EventBus, ResilienceEvent
from .scheduler import TaskScheduler, TaskHandle

# ── Module 5: Signal Ingestion ──────────────────────────────────────────────
from .signal_ingestion import SignalIngestor, validate_signal, filter_valid

# ── Module 6: Mode Controller ───────────────────────────────────────────────
from .mode_controller import (
    ModeController, ModeTransition,
    calculate_resilience_level, determine_resilience_mode,
)

# ── Module 7: Margin Manager ────────────────────────────────────────────────
from .margin_manager import MarginManager, MarginProcessingResult

# ── Module 8: Adaptive Response Selector ────────────────────────────────────
from .adaptive_response import AdaptiveResponseSelector, HeuristicScorer, select_algorithm

# ── Module 9: Antifragile Pattern Tracker ───────────────────────────────────
from .antifragile import AntifragileTracker, AntifragileResult, calculate_stress_level

# ── Module 10: Resilience Engine ────────────────────────────────────────────
from .engine import ResilienceEngine, BatchReport

# ── Module 11: Stress Testing ───────────────────────────────────────────────
from .stress_testing import (
    StressTestConfig, StressTestRunner, StressTestResult,
    SignalGenerator, BUILTIN_SCENARIOS,
)

__version__ = "1.0.0"
