"""
Aegrid Resilience v1.0 — Module 5: Signal Ingestion
===================================================
Validation and queueing of incoming signal records.

Invalid records never raise: they are dropped with a DEBUG line and
counted. Accepted signals move RECEIVED → PROCESSING → PROCESSED and
never backwards.

Usage:
    ingestor = SignalIngestor(max_pending=1000)
    ingestor.submit([{"id": "s1", "type": "EMERGENCY", "severity": "CRITICAL",
                      "source": "scada", "timestamp": "2026-01-01T00:00:00Z"}])
    batch = ingestor.drain()
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from .models import (
    SIGNAL_STATUS_ORDER, Signal, SignalSeverity, SignalStatus, SignalType,
)

logger = logging.getLogger(__name__)

RawSignal = Union[Signal, Mapping[str, Any]]

REQUIRED_FIELDS = ("id", "type", "severity", "source", "timestamp")


# ── Validation ────────────────────────────────────────────────────────────────

def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        return None


def validate_signal(raw: RawSignal) -> Optional[Signal]:
    """Return a well-formed Signal, or None when a required field is missing."""
    if isinstance(raw, Signal):
        fields_ = {
            "id": raw.id, "type": raw.type, "severity": raw.severity,
            "source": raw.source, "timestamp": raw.timestamp,
            "status": raw.status, "data": raw.data,
            "asset_id": raw.asset_id, "description": raw.description,
        }
    elif isinstance(raw, Mapping):
        fields_ = dict(raw)
    else:
        logger.debug("Signal dropped: unsupported record %r", type(raw).__name__)
        return None

    missing = [k for k in REQUIRED_FIELDS if not fields_.get(k)]
    if missing:
        logger.debug("Signal %s dropped: missing %s", fields_.get("id"), ", ".join(missing))
        return None

    sig_type  = _enum(SignalType, fields_["type"])
    severity  = _enum(SignalSeverity, fields_["severity"])
    timestamp = _parse_timestamp(fields_["timestamp"])
    status    = _enum(SignalStatus, fields_.get("status") or SignalStatus.RECEIVED)
    if sig_type is None or severity is None or timestamp is None:
        logger.debug("Signal %s dropped: unrecognised type/severity/timestamp", fields_["id"])
        return None

    if isinstance(raw, Signal):
        raw.type, raw.severity, raw.timestamp = sig_type, severity, timestamp
        return raw

    data = fields_.get("data") or {}
    return Signal(
        id          = str(fields_["id"]),
        type        = sig_type,
        severity    = severity,
        source      = str(fields_["source"]),
        timestamp   = timestamp,
        status      = status or SignalStatus.RECEIVED,
        data        = dict(data) if isinstance(data, Mapping) else {},
        asset_id    = fields_.get("asset_id") or fields_.get("assetId"),
        description = str(fields_.get("description") or ""),
    )


def filter_valid(signals: Iterable[RawSignal]) -> list[Signal]:
    """Validate a batch, preserving order and dropping invalid records."""
    out: list[Signal] = []
    for raw in signals or []:
        sig = validate_signal(raw)
        if sig is not None:
            out.append(sig)
    return out


def advance_status(signal: Signal, status: SignalStatus) -> bool:
    """Move a signal forward in its lifecycle. Returns False for backward moves."""
    current = SIGNAL_STATUS_ORDER.index(signal.status)
    target  = SIGNAL_STATUS_ORDER.index(status)
    if target < current:
        logger.warning("Signal %s: refused status change %s → %s",
                       signal.id, signal.status.value, status.value)
        return False
    signal.status = status
    return True


# ── Ingestor ──────────────────────────────────────────────────────────────────

class SignalIngestor:
    """Bounded FIFO of accepted signals awaiting the next processing pass."""

    def __init__(self, max_pending: int = 1000):
        self.max_pending = max_pending
        self._pending: deque[Signal] = deque()
        self._lock = threading.Lock()
        self._stats = {"accepted": 0, "rejected": 0, "dropped_overflow": 0, "drained": 0}

    def submit(self, signals: Iterable[RawSignal]) -> list[Signal]:
        raw = list(signals or [])
        valid = filter_valid(raw)
        with self._lock:
            self._stats["accepted"] += len(valid)
            self._stats["rejected"] += len(raw) - len(valid)
            for sig in valid:
                if len(self._pending) >= self.max_pending:
                    dropped = self._pending.popleft()
                    self._stats["dropped_overflow"] += 1
                    logger.warning("Pending queue full, oldest signal %s dropped", dropped.id)
                self._pending.append(sig)
        return valid

    def drain(self, limit: Optional[int] = None) -> list[Signal]:
        with self._lock:
            count = len(self._pending) if limit is None else min(limit, len(self._pending))
            batch = [self._pending.popleft() for _ in range(count)]
            self._stats["drained"] += len(batch)
        return batch

    def mark_processing(self, signals: Iterable[Signal]) -> None:
        for sig in signals:
            advance_status(sig, SignalStatus.PROCESSING)

    def mark_processed(self, signals: Iterable[Signal]) -> None:
        for sig in signals:
            advance_status(sig, SignalStatus.PROCESSED)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_stats(self) -> dict:
        return {**self._stats, "pending": self.pending_count, "max_pending": self.max_pending}
