# PATH: tests/unit/test_store.py
"""
Unit tests for the SQLite event store.

Upsert contract: one row per key, identical rewrites are no-ops,
differing rewrites win and leave an audit row. Scan progress never
moves backward.
"""

import sqlite3
from unittest.mock import patch

import pytest

from core.constants import AckResult, ErrorCode
from core.exceptions import StoreError
from core.models import DestinationSuccess, EventFailure, SourceAck, SourceInit
from store.sqlite import EventStore


def source_init(**overrides) -> SourceInit:
    data = dict(
        source_chain="domain",
        destination_chain_id="consensus",
        channel_id=1,
        nonce="5",
        from_address="addrA",
        amount="100",
        source_block_height=10,
        source_block_hash="0xaa",
        source_extrinsic_index=1,
    )
    data.update(overrides)
    return SourceInit(**data)


def destination_success(**overrides) -> DestinationSuccess:
    data = dict(
        destination_chain="consensus",
        source_chain_id="domain:0",
        channel_id=1,
        nonce="5",
        amount="95",
        destination_block_height=20,
        destination_block_hash="0xbb",
    )
    data.update(overrides)
    return DestinationSuccess(**data)


def source_ack(**overrides) -> SourceAck:
    data = dict(
        source_chain="domain",
        destination_chain_id="consensus",
        channel_id=1,
        nonce="5",
        result=AckResult.OK,
        source_block_height=30,
        source_block_hash="0xcc",
    )
    data.update(overrides)
    return SourceAck(**data)


class TestUpsertIdempotence:

    def test_source_init_roundtrip(self, store):
        row = source_init()
        assert store.upsert_source_init(row) is True
        assert store.get_source_init("domain", 1, "5") == row

    @pytest.mark.parametrize("upsert,getter,row", [
        ("upsert_source_init", "get_source_init", source_init()),
        ("upsert_destination_success", "get_destination_success", destination_success()),
        ("upsert_source_ack", "get_source_ack", source_ack()),
    ])
    def test_identical_rewrite_is_noop(self, store, upsert, getter, row):
        assert getattr(store, upsert)(row) is True
        assert getattr(store, upsert)(row) is False
        assert getattr(store, getter)(*row.key) == row
        assert store.list_overwrites() == []

    def test_counts_after_repeated_writes(self, store):
        for _ in range(3):
            store.upsert_source_init(source_init())
            store.upsert_destination_success(destination_success())
            store.upsert_source_ack(source_ack())
        counts = store.table_counts()
        assert counts["source_inits"] == 1
        assert counts["destination_successes"] == 1
        assert counts["source_acks"] == 1
        assert counts["row_overwrites"] == 0

    def test_same_nonce_different_chains_are_distinct(self, store):
        store.upsert_source_init(source_init(source_chain="domain"))
        store.upsert_source_init(source_init(source_chain="consensus", destination_chain_id="domain:0"))
        assert store.table_counts()["source_inits"] == 2

    def test_ack_result_roundtrip(self, store):
        store.upsert_source_ack(source_ack(result=AckResult.ERR))
        assert store.get_source_ack("domain", 1, "5").result == AckResult.ERR


class TestOverwriteAudit:

    def test_differing_rewrite_wins_and_is_audited(self, store):
        store.upsert_source_init(source_init(amount="100", source_block_hash="0xaa"))
        changed = store.upsert_source_init(source_init(amount="100", source_block_hash="0xfork"))

        assert changed is True
        assert store.get_source_init("domain", 1, "5").source_block_hash == "0xfork"

        [audit] = store.list_overwrites()
        assert audit.table == "source_inits"
        assert audit.previous["source_block_hash"] == "0xaa"
        assert audit.current["source_block_hash"] == "0xfork"
        assert store.table_counts()["row_overwrites"] == 1

    def test_overwrite_is_logged(self, store, caplog):
        store.upsert_destination_success(destination_success(amount="95"))
        with caplog.at_level("WARNING"):
            store.upsert_destination_success(destination_success(amount="96"))
        assert any("Overwrote destination_successes" in r.getMessage() for r in caplog.records)


class TestScanProgress:

    def test_unknown_chain(self, store):
        assert store.get_scan_progress("domain") is None

    def test_progress_is_monotonic(self, store):
        store.set_scan_progress("domain", 100)
        store.set_scan_progress("domain", 50)
        assert store.get_scan_progress("domain") == 100
        store.set_scan_progress("domain", 101)
        assert store.get_scan_progress("domain") == 101

    def test_progress_per_chain(self, store):
        store.set_scan_progress("domain", 10)
        store.set_scan_progress("consensus", 20)
        assert store.all_scan_progress() == {"domain": 10, "consensus": 20}

    def test_progress_survives_reopen(self, tmp_path):
        path = tmp_path / "xdm.sqlite"
        with EventStore(path) as first:
            first.set_scan_progress("domain", 42)
        with EventStore(path) as second:
            assert second.get_scan_progress("domain") == 42


class TestFailures:

    def test_record_and_list(self, store):
        store.record_failure(EventFailure(
            chain="domain", block_height=10, block_hash="0xaa", extrinsic_index=3,
            event_kind="OutgoingTransferInitiated", reason="unsigned",
            code=ErrorCode.EXTRACT_UNSIGNED_EXTRINSIC.value,
        ))
        store.record_failure(EventFailure(
            chain="consensus", block_height=11, block_hash="0xbb", extrinsic_index=None,
            event_kind="IncomingTransferSuccessful", reason="bad nonce",
            code=ErrorCode.DECODE_MALFORMED_EVENT.value,
        ))
        assert len(store.list_failures()) == 2
        [failure] = store.list_failures("domain")
        assert failure.reason == "unsigned"
        assert failure.recorded_at is not None
        assert store.failure_histogram() == {
            ErrorCode.EXTRACT_UNSIGNED_EXTRINSIC.value: 1,
            ErrorCode.DECODE_MALFORMED_EVENT.value: 1,
        }


class TestStoreErrors:

    def test_unopenable_path(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StoreError) as exc:
            EventStore(blocker / "xdm.sqlite")
        assert exc.value.code == ErrorCode.STORE_IO_ERROR

    def test_sqlite_error_becomes_store_error(self, store):
        store.close()
        with pytest.raises(StoreError):
            store.upsert_source_init(source_init())

    def test_progress_write_failure(self, store):
        with patch.object(store, "_conn") as conn:
            conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")
            conn.__enter__.return_value = conn
            with pytest.raises(StoreError):
                store.set_scan_progress("domain", 1)
