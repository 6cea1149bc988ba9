"""
chains/substrate.py - Chain Adapter for Substrate nodes.

Built on py-substrate-interface:
- Ordered endpoint list, first reachable endpoint wins; a dropped connection
  is discarded and the next call reconnects from the top of the list.
- One connection per worker thread (SubstrateInterface is not thread-safe);
  blocking calls run via asyncio.to_thread.
- Events come from System.Events, or from System.EventSegments when the
  runtime shards them (use_segments=True). Segments are flattened in order
  and deduplicated before decoding.

Every failure here is surfaced as ChainAccessError, so the scanner retries it.
"""

import asyncio
import threading
from typing import Any, Optional

from substrateinterface import SubstrateInterface

from chains.events import decode_events
from core.constants import EVENT_SEGMENT_SIZE
from core.exceptions import ChainAccessError
from core.logging import get_logger
from core.models import Block, ChainEvent, Extrinsic

logger = get_logger(__name__)


def _signer_of(value: dict) -> Optional[str]:
    address = value.get("address")
    if isinstance(address, dict):
        # MultiAddress variants: {"Id": "..."}, {"Address20": "0x..."}
        address = next(iter(address.values()), None)
    if address is None:
        return None
    return str(address) or None


def to_extrinsic(index: int, value: dict) -> Extrinsic:
    """Extrinsic view from a decoded GenericExtrinsic value."""
    call = value.get("call") or {}
    args = {
        arg.get("name"): arg.get("value")
        for arg in call.get("call_args") or []
        if isinstance(arg, dict)
    }
    return Extrinsic(
        index=index,
        signer=_signer_of(value),
        call_module=call.get("call_module"),
        call_function=call.get("call_function"),
        call_args=args,
    )


class SubstrateChainAdapter:
    """ChainAdapter backed by one or more Substrate RPC endpoints."""

    def __init__(self, chain: str, rpc_urls: list[str], ss58_format: int | None = None):
        if not rpc_urls:
            raise ValueError("at least one RPC endpoint is required")
        self.chain = chain
        self.rpc_urls = [u.strip() for u in rpc_urls if u.strip()]
        self.ss58_format = ss58_format
        self._local = threading.local()
        self._connections: list[SubstrateInterface] = []
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # connection handling
    # -------------------------------------------------------------------------

    def _connect(self) -> SubstrateInterface:
        errors = {}
        for url in self.rpc_urls:
            try:
                substrate = SubstrateInterface(url=url, ss58_format=self.ss58_format)
            except Exception as e:
                errors[url] = str(e)
                logger.warning(
                    f"Endpoint unreachable: {url}",
                    extra={"context": {"chain": self.chain, "error": str(e)}},
                )
                continue
            logger.info(
                f"Connected to {url}",
                extra={"context": {"chain": self.chain}},
            )
            with self._lock:
                self._connections.append(substrate)
            return substrate
        raise ChainAccessError(
            f"No reachable endpoint for chain {self.chain}",
            details={"chain": self.chain, "errors": errors},
        )

    def _substrate(self) -> SubstrateInterface:
        substrate = getattr(self._local, "substrate", None)
        if substrate is None:
            substrate = self._connect()
            self._local.substrate = substrate
        return substrate

    def _drop_connection(self) -> None:
        substrate = getattr(self._local, "substrate", None)
        self._local.substrate = None
        if substrate is None:
            return
        with self._lock:
            if substrate in self._connections:
                self._connections.remove(substrate)
        try:
            substrate.close()
        except Exception as e:
            logger.debug(f"Error closing connection: {e}")

    def _guarded(self, what: str, fn, *args) -> Any:
        try:
            return fn(self._substrate(), *args)
        except ChainAccessError:
            raise
        except Exception as e:
            self._drop_connection()
            raise ChainAccessError(
                f"{what} failed: {e}",
                details={"chain": self.chain, "args": [str(a) for a in args]},
            ) from e

    # -------------------------------------------------------------------------
    # blocking fetches (run in worker threads)
    # -------------------------------------------------------------------------

    @staticmethod
    def _fetch_block(substrate: SubstrateInterface, height: int) -> Block:
        block_hash = substrate.get_block_hash(block_id=height)
        if not block_hash:
            raise ChainAccessError(f"No block at height {height}")
        block = substrate.get_block(block_hash=block_hash)
        extrinsics = tuple(
            to_extrinsic(i, getattr(ext, "value", ext) or {})
            for i, ext in enumerate(block.get("extrinsics") or [])
        )
        return Block(height=height, hash=str(block_hash), extrinsics=extrinsics)

    @staticmethod
    def _fetch_event_records(
        substrate: SubstrateInterface, block_hash: str, use_segments: bool
    ) -> list[dict]:
        has_segments = use_segments and substrate.get_metadata_storage_function(
            "System", "EventSegments", block_hash=block_hash
        ) is not None

        if not has_segments:
            return [getattr(e, "value", e) for e in substrate.get_events(block_hash=block_hash)]

        count_obj = substrate.query("System", "EventCount", block_hash=block_hash)
        count = int(count_obj.value or 0) if count_obj is not None else 0
        records: list[dict] = []
        for index in range((count - 1) // EVENT_SEGMENT_SIZE + 1 if count > 0 else 0):
            segment = substrate.query("System", "EventSegments", [index], block_hash=block_hash)
            value = segment.value if segment is not None else None
            if value:
                records.extend(value)
        return records

    # -------------------------------------------------------------------------
    # ChainAdapter
    # -------------------------------------------------------------------------

    async def block_at(self, height: int) -> Block:
        return await asyncio.to_thread(self._guarded, "block_at", self._fetch_block, height)

    async def events_at(self, block_hash: str, use_segments: bool) -> list[ChainEvent]:
        records = await asyncio.to_thread(
            self._guarded, "events_at", self._fetch_event_records, block_hash, use_segments
        )
        return decode_events(records)

    async def close(self) -> None:
        with self._lock:
            connections, self._connections = self._connections, []
        for substrate in connections:
            try:
                substrate.close()
            except Exception as e:
                logger.debug(f"Error closing connection: {e}")
