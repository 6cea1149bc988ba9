"""
chains/adapter.py - Chain Adapter interface.

The scanner only talks to this protocol. Implementations:
- chains.substrate.SubstrateChainAdapter (live nodes)
- in-memory fakes in tests

Contract:
- block_at(height) -> Block (hash + ordered extrinsics)
- events_at(block_hash, use_segments) -> ordered, deduplicated ChainEvent list
- transient failures raise ChainAccessError (the scanner retries them)
- undecodable individual events come back as UndecodableEvent, never raise
"""

from typing import Protocol, runtime_checkable

from core.models import Block, ChainEvent


@runtime_checkable
class ChainAdapter(Protocol):
    """Async block/event source for one chain."""

    async def block_at(self, height: int) -> Block:
        ...

    async def events_at(self, block_hash: str, use_segments: bool) -> list[ChainEvent]:
        ...

    async def close(self) -> None:
        ...
