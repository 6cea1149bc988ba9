"""
Unit tests for the capture health summary.
"""

from core.models import EventFailure
from fakes import incoming, make_block
from monitoring import build_capture_summary
from scanner.extract import extract_block


class TestCaptureSummary:

    def test_empty_store(self, store):
        summary = build_capture_summary(store)
        assert summary.progress == {}
        assert summary.overwrites == 0
        assert summary.healthy
        assert summary.table_counts["source_inits"] == 0

    def test_counts_progress_and_failures(self, store):
        store.set_scan_progress("domain", 99)
        extract_block(store, "consensus", make_block(20), [incoming()])
        store.record_failure(EventFailure(
            chain="domain", block_height=5, block_hash="0x5", extrinsic_index=9,
            event_kind="OutgoingTransferInitiated", reason="out of range",
            code="EXTRACT_EXTRINSIC_OUT_OF_RANGE",
        ))

        data = build_capture_summary(store).to_dict()
        assert data["progress"] == {"domain": 99}
        assert data["table_counts"]["destination_successes"] == 1
        assert data["failures_by_code"] == {"EXTRACT_EXTRINSIC_OUT_OF_RANGE": 1}
        assert data["healthy"] is True

    def test_overwrite_marks_unhealthy(self, store):
        extract_block(store, "consensus", make_block(20), [incoming(amount="95")])
        extract_block(store, "consensus", make_block(20, salt="fork"), [incoming(amount="95")])

        summary = build_capture_summary(store)
        assert summary.overwrites == 1
        assert not summary.healthy
