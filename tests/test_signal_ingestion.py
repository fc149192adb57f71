"""
Aegrid Resilience v1.0 — Unit Tests: Signal Ingestion

Run: pytest tests/test_signal_ingestion.py -v
"""
import sys
from datetime import timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from resilience.models import SignalSeverity, SignalStatus, SignalType
from resilience.signal_ingestion import (
    SignalIngestor,
    advance_status,
    filter_valid,
    validate_signal,
)


# ── validate_signal ───────────────────────────────────────────────────────────

class TestValidateSignal:
    def test_wire_record_parsed(self, raw_signal):
        sig = validate_signal(raw_signal)
        assert sig.type == SignalType.ASSET_CONDITION
        assert sig.severity == SignalSeverity.MEDIUM
        assert sig.status == SignalStatus.RECEIVED
        assert sig.timestamp.tzinfo is not None
        assert sig.timestamp.utcoffset() == timezone.utc.utcoffset(None)

    def test_asset_id_alias(self, raw_signal):
        assert validate_signal(raw_signal).asset_id == "transformer-3"

    def test_lowercase_enums_accepted(self, raw_signal):
        raw_signal["type"] = "emergency"
        raw_signal["severity"] = "critical"
        sig = validate_signal(raw_signal)
        assert sig.type == SignalType.EMERGENCY
        assert sig.severity == SignalSeverity.CRITICAL

    def test_naive_timestamp_becomes_utc(self, raw_signal):
        raw_signal["timestamp"] = "2026-03-01T12:00:00"
        assert validate_signal(raw_signal).timestamp.tzinfo is not None

    @pytest.mark.parametrize("field", ["id", "type", "severity", "source", "timestamp"])
    def test_missing_required_field(self, raw_signal, field):
        del raw_signal[field]
        assert validate_signal(raw_signal) is None

    def test_unknown_type_rejected(self, raw_signal):
        raw_signal["type"] = "SOLAR_FLARE"
        assert validate_signal(raw_signal) is None

    def test_bad_timestamp_rejected(self, raw_signal):
        raw_signal["timestamp"] = "yesterday"
        assert validate_signal(raw_signal) is None

    def test_non_mapping_rejected(self):
        assert validate_signal(["not", "a", "signal"]) is None

    def test_signal_object_passes_through(self, make_signal):
        sig = make_signal()
        assert validate_signal(sig) is sig

    def test_filter_valid_preserves_order(self, raw_signal, make_signal):
        a, b = make_signal(), make_signal()
        out = filter_valid([a, {"id": "broken"}, raw_signal, b])
        assert [s.id for s in out] == [a.id, "wire-1", b.id]

    def test_filter_valid_none(self):
        assert filter_valid(None) == []


# ── Lifecycle ─────────────────────────────────────────────────────────────────

class TestStatusLifecycle:
    def test_forward_moves_allowed(self, make_signal):
        sig = make_signal()
        assert advance_status(sig, SignalStatus.PROCESSING)
        assert advance_status(sig, SignalStatus.PROCESSED)
        assert sig.status == SignalStatus.PROCESSED

    def test_backward_move_refused(self, make_signal):
        sig = make_signal()
        advance_status(sig, SignalStatus.PROCESSED)
        assert advance_status(sig, SignalStatus.RECEIVED) is False
        assert sig.status == SignalStatus.PROCESSED


# ── SignalIngestor ────────────────────────────────────────────────────────────

class TestSignalIngestor:
    def test_submit_and_drain(self, make_signal):
        ing = SignalIngestor()
        ing.submit([make_signal(), make_signal()])
        assert ing.pending_count == 2
        assert len(ing.drain()) == 2
        assert ing.pending_count == 0

    def test_invalid_counted_as_rejected(self, make_signal):
        ing = SignalIngestor()
        accepted = ing.submit([make_signal(), {"id": "x"}])
        assert len(accepted) == 1
        assert ing.get_stats()["rejected"] == 1

    def test_overflow_drops_oldest(self, make_signal):
        ing = SignalIngestor(max_pending=2)
        sigs = [make_signal() for _ in range(3)]
        ing.submit(sigs)
        assert [s.id for s in ing.drain()] == [sigs[1].id, sigs[2].id]
        assert ing.get_stats()["dropped_overflow"] == 1

    def test_drain_limit(self, make_signal):
        ing = SignalIngestor()
        ing.submit([make_signal() for _ in range(5)])
        assert len(ing.drain(limit=2)) == 2
        assert ing.pending_count == 3

    def test_mark_processed(self, make_signal):
        ing = SignalIngestor()
        sigs = [make_signal()]
        ing.mark_processing(sigs)
        ing.mark_processed(sigs)
        assert sigs[0].status == SignalStatus.PROCESSED
