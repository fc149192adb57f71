"""
Aegrid Resilience v1.0 — RESILIENCE API SERVER
REST interface for the Resilience State Machine.
Port: 11450

Endpoints:
  GET  /health                    — Health check
  GET  /resilience/status         — Engine status (mode, health score, utilization)
  POST /resilience/signals        — Process a signal batch now
  POST /resilience/queue          — Queue signals for the periodic drain
  GET  /resilience/health-check   — Component health check
  PUT  /resilience/config         — Merge configuration updates
  GET  /margin/status             — Allocations, deployments, recent events
  GET  /margin/metrics            — Aggregate margin metrics
  GET  /margin/forecast           — Utilization forecast (?days=7)
  POST /margin/allocate           — Allocate margin {margin_type, amount, reason}
  POST /margin/deploy             — Emergency deployment {margin_type, amount, reason}
  GET  /antifragile/status        — Antifragile tracker status
  GET  /adaptive/status           — Adaptive selector status
  POST /stress/run                — Run a stress scenario {scenario} or {config}

Version: 1.0
"""

import asyncio
import datetime
import logging
import os
import sys
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS

sys.path.insert(0, str(Path(__file__).parent.parent))

from resilience.config import load_config
from resilience.engine import ResilienceEngine
from resilience.models import ResilienceResponse
from resilience.stress_testing import BUILTIN_SCENARIOS, StressTestConfig, StressTestRunner

# ── App setup ─────────────────────────────────────────────────────────────────
app = Flask(__name__)
CORS(app)

LOG_DIR = os.path.join(os.environ.get("RESILIENCE_HOME", os.path.expanduser("~")), "logs")
os.makedirs(LOG_DIR, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [RESILIENCE-API] %(message)s",
    handlers=[
        logging.FileHandler(os.path.join(LOG_DIR, "resilience_api.log")),
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("resilience_api")

PORT = 11450


# ── Helpers ───────────────────────────────────────────────────────────────────

def run_async(coro):
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def envelope(resp: ResilienceResponse, error_code: int = 400):
    """Map an engine envelope onto the HTTP error convention."""
    if resp.success:
        return jsonify({"status": "success", **resp.to_dict()})
    code = 409 if "not initialized" in (resp.error or "") else error_code
    return jsonify({"status": "error", "error": resp.error}), code


# ── Singletons ────────────────────────────────────────────────────────────────
_engine = ResilienceEngine(load_config())
_runner = StressTestRunner(_engine)
run_async(_engine.initialize())

_start = datetime.datetime.now()
_stats = {
    "batches": 0, "queued": 0, "allocations": 0, "deployments": 0,
    "config_updates": 0, "stress_runs": 0, "errors": 0,
}


# ═══════════════════════════════════════════════════════════════
# CORE ENDPOINTS
# ═══════════════════════════════════════════════════════════════

@app.route("/health")
def health():
    uptime = (datetime.datetime.now() - _start).total_seconds()
    return jsonify({
        "status":    "active",
        "service":   "AEGRID-RESILIENCE",
        "version":   "1.0",
        "port":      PORT,
        "uptime":    round(uptime, 1),
        "mode":      _engine.state.mode.value,
        "stats":     _stats,
        "modules":   ["SignalIngestion", "MarginManager", "ModeController",
                      "AdaptiveResponse", "Antifragile", "StressTesting"],
        "timestamp": datetime.datetime.now().isoformat(),
    })


@app.route("/resilience/status")
def resilience_status():
    return jsonify({
        "status": "success",
        "data":   _engine.get_status().to_dict(),
        "state":  _engine.get_state().to_dict(),
        "engine": _engine.get_stats(),
    })


@app.route("/resilience/signals", methods=["POST"])
def process_signals():
    data = request.get_json(silent=True) or {}
    signals = data.get("signals")
    if not isinstance(signals, list) or not signals:
        return jsonify({"status": "error", "error": "signals (non-empty list) is required"}), 400
    try:
        resp = run_async(_engine.process_signals(signals))
    except Exception as exc:
        _stats["errors"] += 1
        logger.error("Signal processing failed: %s", exc)
        return jsonify({"status": "error", "error": str(exc)}), 500
    _stats["batches"] += 1
    return envelope(resp, error_code=500)


@app.route("/resilience/queue", methods=["POST"])
def queue_signals():
    data = request.get_json(silent=True) or {}
    signals = data.get("signals")
    if not isinstance(signals, list) or not signals:
        return jsonify({"status": "error", "error": "signals (non-empty list) is required"}), 400
    resp = _engine.submit_signals(signals)
    _stats["queued"] += resp.data["accepted"]
    return envelope(resp), 202


@app.route("/resilience/health-check")
def health_check():
    try:
        result = run_async(_engine.perform_health_check())
    except Exception as exc:
        _stats["errors"] += 1
        logger.error("Health check failed: %s", exc)
        return jsonify({"status": "error", "error": str(exc)}), 500
    return jsonify({"status": "success", "data": result})


@app.route("/resilience/config", methods=["PUT"])
def update_config():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({"status": "error", "error": "JSON object of config updates required"}), 400
    resp = run_async(_engine.update_config(data))
    if resp.success:
        _stats["config_updates"] += 1
    return envelope(resp)


# ═══════════════════════════════════════════════════════════════
# MARGIN MANAGEMENT
# ═══════════════════════════════════════════════════════════════

@app.route("/margin/status")
def margin_status():
    return jsonify({"status": "success", "data": _engine.get_margin_status()})


@app.route("/margin/metrics")
def margin_metrics():
    return jsonify({"status": "success", "data": _engine.get_margin_metrics()})


@app.route("/margin/forecast")
def margin_forecast():
    try:
        days = int(request.args.get("days", 7))
    except ValueError:
        return jsonify({"status": "error", "error": "days must be an integer"}), 400
    if days <= 0:
        return jsonify({"status": "error", "error": "days must be positive"}), 400
    return jsonify({"status": "success", "data": _engine.generate_margin_forecast(days)})


def _margin_request():
    data = request.get_json(silent=True) or {}
    margin_type = str(data.get("margin_type", "")).upper()
    try:
        amount = float(data.get("amount", 0))
    except (TypeError, ValueError):
        amount = 0.0
    return margin_type, amount, data.get("reason", "")


@app.route("/margin/allocate", methods=["POST"])
def margin_allocate():
    margin_type, amount, reason = _margin_request()
    if not margin_type or amount <= 0:
        return jsonify({"status": "error", "error": "margin_type and positive amount required"}), 400
    resp = run_async(_engine.allocate_margin(margin_type, amount, reason))
    if resp.success:
        _stats["allocations"] += 1
    return envelope(resp, error_code=409)


@app.route("/margin/deploy", methods=["POST"])
def margin_deploy():
    margin_type, amount, reason = _margin_request()
    if not margin_type or amount <= 0:
        return jsonify({"status": "error", "error": "margin_type and positive amount required"}), 400
    resp = run_async(_engine.deploy_margin(margin_type, amount, reason or "Operator deployment"))
    if resp.success:
        _stats["deployments"] += 1
    return envelope(resp, error_code=409)


# ═══════════════════════════════════════════════════════════════
# ANTIFRAGILE & ADAPTIVE
# ═══════════════════════════════════════════════════════════════

@app.route("/antifragile/status")
def antifragile_status():
    return jsonify({
        "status":   "success",
        "data":     _engine.get_antifragile_status(),
        "patterns": [p.to_dict() for p in _engine.antifragile.get_patterns()],
    })


@app.route("/adaptive/status")
def adaptive_status():
    return jsonify({
        "status":  "success",
        "data":    _engine.get_adaptive_status(),
        "scorers": [s.to_dict() for s in _engine.adaptive.get_scorers()],
    })


# ═══════════════════════════════════════════════════════════════
# STRESS TESTING
# ═══════════════════════════════════════════════════════════════

@app.route("/stress/run", methods=["POST"])
def stress_run():
    data = request.get_json(silent=True) or {}
    if "config" in data:
        try:
            config = StressTestConfig.from_dict(data["config"])
        except (TypeError, ValueError) as exc:
            return jsonify({"status": "error", "error": f"invalid config: {exc}"}), 400
        if not config.signal_types or config.batches <= 0 or config.batch_size <= 0:
            return jsonify({"status": "error", "error": "signal_types, batches and batch_size required"}), 400
    else:
        name = data.get("scenario", "baseline")
        config = BUILTIN_SCENARIOS.get(name)
        if config is None:
            return jsonify({"status": "error", "error": f"Unknown scenario '{name}'",
                            "scenarios": sorted(BUILTIN_SCENARIOS)}), 404
    try:
        result = run_async(_runner.run(config))
    except Exception as exc:
        _stats["errors"] += 1
        logger.error("Stress test failed: %s", exc)
        return jsonify({"status": "error", "error": str(exc)}), 500
    _stats["stress_runs"] += 1
    return jsonify({"status": "success", "data": result.to_dict()})


# ── Error handlers ────────────────────────────────────────────────────────────

@app.errorhandler(404)
def not_found(_):
    return jsonify({
        "status": "error",
        "error":  "Endpoint not found",
        "endpoints": [
            "GET  /health",
            "GET  /resilience/status", "POST /resilience/signals", "POST /resilience/queue",
            "GET  /resilience/health-check", "PUT  /resilience/config",
            "GET  /margin/status", "GET  /margin/metrics", "GET  /margin/forecast",
            "POST /margin/allocate", "POST /margin/deploy",
            "GET  /antifragile/status", "GET  /adaptive/status",
            "POST /stress/run",
        ],
    }), 404


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("╔══════════════════════════════════════════════════════╗")
    logger.info("║  AEGRID RESILIENCE v1.0 — STATE MACHINE API         ║")
    logger.info("║  Port: 11450  |  Modules: 11  |  Endpoints: 14      ║")
    logger.info("╚══════════════════════════════════════════════════════╝")
    app.run(host="127.0.0.1", port=PORT, debug=False, threaded=True)
