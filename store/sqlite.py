"""
store/sqlite.py - Keyed SQLite event store.

Tables:
    source_inits           PK (source_chain, channel_id, nonce)
    destination_successes  PK (destination_chain, channel_id, nonce)
    source_acks            PK (source_chain, channel_id, nonce)
    scan_progress          PK chain, last_block_height only moves forward
    event_failures         append-only diagnostics
    row_overwrites         append-only audit of differing rewrites

UPSERT CONTRACT:
- one row per key; last write wins
- identical rewrite is a no-op (no write, no audit entry)
- a rewrite with different values is applied and audited

Every sqlite3.Error surfaces as StoreError; callers must treat it as fatal.
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterator, Optional

from core.constants import AckResult
from core.exceptions import StoreError
from core.logging import get_logger
from core.models import (
    DestinationSuccess,
    EventFailure,
    RowOverwrite,
    SourceAck,
    SourceInit,
)
from core.time import now_iso

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS source_inits (
    source_chain TEXT NOT NULL,
    destination_chain_id TEXT NOT NULL,
    channel_id INTEGER NOT NULL,
    nonce TEXT NOT NULL,
    from_address TEXT NOT NULL,
    amount TEXT NOT NULL,
    source_block_height INTEGER NOT NULL,
    source_block_hash TEXT NOT NULL,
    source_extrinsic_index INTEGER,
    PRIMARY KEY (source_chain, channel_id, nonce)
);
CREATE TABLE IF NOT EXISTS destination_successes (
    destination_chain TEXT NOT NULL,
    source_chain_id TEXT NOT NULL,
    channel_id INTEGER NOT NULL,
    nonce TEXT NOT NULL,
    amount TEXT NOT NULL,
    destination_block_height INTEGER NOT NULL,
    destination_block_hash TEXT NOT NULL,
    PRIMARY KEY (destination_chain, channel_id, nonce)
);
CREATE TABLE IF NOT EXISTS source_acks (
    source_chain TEXT NOT NULL,
    destination_chain_id TEXT NOT NULL,
    channel_id INTEGER NOT NULL,
    nonce TEXT NOT NULL,
    result TEXT NOT NULL,
    source_block_height INTEGER NOT NULL,
    source_block_hash TEXT NOT NULL,
    PRIMARY KEY (source_chain, channel_id, nonce)
);
CREATE INDEX IF NOT EXISTS idx_src_init_key ON source_inits (channel_id, nonce, source_chain);
CREATE INDEX IF NOT EXISTS idx_dst_succ_key ON destination_successes (channel_id, nonce, destination_chain);
CREATE INDEX IF NOT EXISTS idx_src_ack_key ON source_acks (channel_id, nonce, source_chain);
CREATE TABLE IF NOT EXISTS scan_progress (
    chain TEXT PRIMARY KEY,
    last_block_height INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS event_failures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chain TEXT NOT NULL,
    block_height INTEGER NOT NULL,
    block_hash TEXT NOT NULL,
    extrinsic_index INTEGER,
    event_kind TEXT NOT NULL,
    code TEXT NOT NULL,
    reason TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS row_overwrites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    row_key TEXT NOT NULL,
    previous TEXT NOT NULL,
    current TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);
"""

# table -> (key columns, value columns)
_TABLES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "source_inits": (
        ("source_chain", "channel_id", "nonce"),
        ("destination_chain_id", "from_address", "amount",
         "source_block_height", "source_block_hash", "source_extrinsic_index"),
    ),
    "destination_successes": (
        ("destination_chain", "channel_id", "nonce"),
        ("source_chain_id", "amount", "destination_block_height", "destination_block_hash"),
    ),
    "source_acks": (
        ("source_chain", "channel_id", "nonce"),
        ("destination_chain_id", "result", "source_block_height", "source_block_hash"),
    ),
}

CORRELATION_SQL = """
SELECT
    i.from_address,
    i.channel_id,
    i.nonce,
    i.amount,
    i.source_block_height,
    i.source_block_hash,
    i.source_extrinsic_index,
    ds.amount AS dest_amount,
    ds.destination_block_height,
    ds.destination_block_hash,
    ds.destination_chain IS NOT NULL AS dest_present,
    ack.result AS ack_result
FROM source_inits i
LEFT JOIN destination_successes ds
    ON ds.destination_chain = ? AND ds.channel_id = i.channel_id AND ds.nonce = i.nonce
LEFT JOIN source_acks ack
    ON ack.source_chain = i.source_chain AND ack.channel_id = i.channel_id AND ack.nonce = i.nonce
WHERE i.source_chain = ?
ORDER BY i.source_block_height, i.source_extrinsic_index, i.channel_id, i.nonce
"""


class EventStore:
    """
    SQLite-backed keyed store shared by all scan workers.

    Writes are serialized by a lock and committed per call.
    """

    def __init__(self, db_path: str | Path, *, busy_timeout_ms: int = 30000):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=busy_timeout_ms / 1000,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
            with self._conn:
                self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to open store at {self.db_path}: {e}") from e

        logger.debug("Event store opened", extra={"context": {"db_path": str(self.db_path)}})

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as e:
                raise StoreError(f"Failed to close store: {e}") from e

    def __enter__(self) -> "EventStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # generic keyed upsert
    # -------------------------------------------------------------------------

    def _upsert(self, table: str, row: dict[str, Any]) -> bool:
        """Insert or overwrite by key. Returns True if the store changed."""
        key_cols, value_cols = _TABLES[table]
        where = " AND ".join(f"{c} = ?" for c in key_cols)
        key = [row[c] for c in key_cols]
        cols = key_cols + value_cols
        insert = (
            f"INSERT INTO {table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)}) "
            f"ON CONFLICT({', '.join(key_cols)}) DO UPDATE SET "
            + ", ".join(f"{c}=excluded.{c}" for c in value_cols)
        )

        with self._lock:
            try:
                existing = self._conn.execute(
                    f"SELECT {', '.join(value_cols)} FROM {table} WHERE {where}", key
                ).fetchone()
                current = {c: row[c] for c in value_cols}
                if existing is not None:
                    previous = dict(existing)
                    if previous == current:
                        return False
                with self._conn:
                    self._conn.execute(insert, [row[c] for c in cols])
                    if existing is not None:
                        self._conn.execute(
                            "INSERT INTO row_overwrites (table_name, row_key, previous, current, recorded_at) "
                            "VALUES (?, ?, ?, ?, ?)",
                            (table, json.dumps(key), json.dumps(previous), json.dumps(current), now_iso()),
                        )
            except sqlite3.Error as e:
                raise StoreError(f"Upsert into {table} failed: {e}", details={"key": key}) from e

        if existing is not None:
            logger.warning(
                f"Overwrote {table} row with different values",
                extra={"context": {"table": table, "key": key, "previous": previous, "current": current}},
            )
        return True

    def _get(self, table: str, key: tuple) -> Optional[sqlite3.Row]:
        key_cols, _ = _TABLES[table]
        where = " AND ".join(f"{c} = ?" for c in key_cols)
        with self._lock:
            try:
                return self._conn.execute(f"SELECT * FROM {table} WHERE {where}", key).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Lookup in {table} failed: {e}") from e

    # -------------------------------------------------------------------------
    # event tables
    # -------------------------------------------------------------------------

    def upsert_source_init(self, row: SourceInit) -> bool:
        return self._upsert("source_inits", row.to_dict())

    def upsert_destination_success(self, row: DestinationSuccess) -> bool:
        return self._upsert("destination_successes", row.to_dict())

    def upsert_source_ack(self, row: SourceAck) -> bool:
        return self._upsert("source_acks", row.to_dict())

    def get_source_init(self, source_chain: str, channel_id: int, nonce: str) -> Optional[SourceInit]:
        r = self._get("source_inits", (source_chain, channel_id, nonce))
        return SourceInit(**dict(r)) if r else None

    def get_destination_success(
        self, destination_chain: str, channel_id: int, nonce: str
    ) -> Optional[DestinationSuccess]:
        r = self._get("destination_successes", (destination_chain, channel_id, nonce))
        return DestinationSuccess(**dict(r)) if r else None

    def get_source_ack(self, source_chain: str, channel_id: int, nonce: str) -> Optional[SourceAck]:
        r = self._get("source_acks", (source_chain, channel_id, nonce))
        if not r:
            return None
        data = dict(r)
        data["result"] = AckResult(data["result"])
        return SourceAck(**data)

    # -------------------------------------------------------------------------
    # scan progress
    # -------------------------------------------------------------------------

    def get_scan_progress(self, chain: str) -> Optional[int]:
        """Last contiguously processed height, or None if never scanned."""
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT last_block_height FROM scan_progress WHERE chain = ?", (chain,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Reading scan progress failed: {e}") from e
        return row["last_block_height"] if row else None

    def set_scan_progress(self, chain: str, height: int) -> None:
        """Advance progress; a lower height never moves it backward."""
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO scan_progress (chain, last_block_height) VALUES (?, ?) "
                        "ON CONFLICT(chain) DO UPDATE SET "
                        "last_block_height = MAX(last_block_height, excluded.last_block_height)",
                        (chain, height),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Writing scan progress failed: {e}", details={"chain": chain}) from e

    # -------------------------------------------------------------------------
    # diagnostics
    # -------------------------------------------------------------------------

    def record_failure(self, failure: EventFailure) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO event_failures "
                        "(chain, block_height, block_hash, extrinsic_index, event_kind, code, reason, recorded_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            failure.chain,
                            failure.block_height,
                            failure.block_hash,
                            failure.extrinsic_index,
                            failure.event_kind,
                            failure.code,
                            failure.reason,
                            failure.recorded_at or now_iso(),
                        ),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Recording event failure failed: {e}") from e

    def list_failures(self, chain: Optional[str] = None) -> list[EventFailure]:
        sql = (
            "SELECT chain, block_height, block_hash, extrinsic_index, event_kind, reason, code, recorded_at "
            "FROM event_failures"
        )
        params: tuple = ()
        if chain is not None:
            sql += " WHERE chain = ?"
            params = (chain,)
        sql += " ORDER BY id"
        with self._lock:
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Listing failures failed: {e}") from e
        return [EventFailure(**dict(r)) for r in rows]

    def list_overwrites(self) -> list[RowOverwrite]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT table_name, row_key, previous, current, recorded_at FROM row_overwrites ORDER BY id"
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Listing overwrites failed: {e}") from e
        return [
            RowOverwrite(
                table=r["table_name"],
                key=r["row_key"],
                previous=json.loads(r["previous"]),
                current=json.loads(r["current"]),
                recorded_at=r["recorded_at"],
            )
            for r in rows
        ]

    def table_counts(self) -> dict[str, int]:
        tables = list(_TABLES) + ["event_failures", "row_overwrites"]
        with self._lock:
            try:
                return {
                    t: self._conn.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0]
                    for t in tables
                }
            except sqlite3.Error as e:
                raise StoreError(f"Counting rows failed: {e}") from e

    def all_scan_progress(self) -> dict[str, int]:
        with self._lock:
            try:
                rows = self._conn.execute("SELECT chain, last_block_height FROM scan_progress").fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Reading scan progress failed: {e}") from e
        return {r["chain"]: r["last_block_height"] for r in rows}

    def failure_histogram(self) -> dict[str, int]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT code, COUNT(*) AS n FROM event_failures GROUP BY code ORDER BY n DESC"
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Reading failure histogram failed: {e}") from e
        return {r["code"]: r["n"] for r in rows}

    # -------------------------------------------------------------------------
    # correlation
    # -------------------------------------------------------------------------

    def iter_correlation_rows(self, source_chain: str, destination_chain: str) -> Iterator[dict]:
        """
        SourceInit rows on source_chain joined with their DestinationSuccess on
        destination_chain and SourceAck on source_chain (both nullable).
        """
        with self._lock:
            try:
                rows = self._conn.execute(CORRELATION_SQL, (destination_chain, source_chain)).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Correlation query failed: {e}") from e
        for r in rows:
            yield dict(r)
