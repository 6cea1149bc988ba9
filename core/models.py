"""
core/models.py - Core data models.

STORE ROWS (one row per key, idempotent upsert):
  SourceInit          key (source_chain, channel_id, nonce)
  DestinationSuccess  key (destination_chain, channel_id, nonce)
  SourceAck           key (source_chain, channel_id, nonce)

DIAGNOSTICS (append-only):
  EventFailure, RowOverwrite

CHAIN VIEW (what the Chain Adapter hands to the scanner):
  Block, Extrinsic, and the ChainEvent tagged union:
    OutgoingTransferInitiated | IncomingTransferSuccessful |
    OutboxMessageResult | OtherEvent | UndecodableEvent

DERIVED (never persisted):
  Direction, MatchedTransfer

ENCODING:
  nonce and amount are decimal strings (U256 / Balance on chain),
  channel_id is an int, chain ids are normalized strings
  ("consensus", "domain:0").
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Optional, Union

from core.constants import AckResult, ConfirmedBy


# =============================================================================
# STORE ROWS
# =============================================================================

@dataclass(frozen=True)
class SourceInit:
    """An initiated transfer on its source chain."""
    source_chain: str
    destination_chain_id: str
    channel_id: int
    nonce: str
    from_address: str
    amount: str
    source_block_height: int
    source_block_hash: str
    source_extrinsic_index: Optional[int]

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.source_chain, self.channel_id, self.nonce)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DestinationSuccess:
    """A confirmed deposit on the destination chain."""
    destination_chain: str
    source_chain_id: str
    channel_id: int
    nonce: str
    amount: str
    destination_block_height: int
    destination_block_hash: str

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.destination_chain, self.channel_id, self.nonce)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SourceAck:
    """Source-side acknowledgment of relay completion."""
    source_chain: str
    destination_chain_id: str
    channel_id: int
    nonce: str
    result: AckResult
    source_block_height: int
    source_block_hash: str

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.source_chain, self.channel_id, self.nonce)

    @property
    def is_ok(self) -> bool:
        return self.result == AckResult.OK

    def to_dict(self) -> dict:
        data = asdict(self)
        data["result"] = self.result.value
        return data


@dataclass(frozen=True)
class EventFailure:
    """An event that could not be safely attributed."""
    chain: str
    block_height: int
    block_hash: str
    extrinsic_index: Optional[int]
    event_kind: str
    reason: str
    code: str = "UNKNOWN"
    recorded_at: Optional[str] = None


@dataclass(frozen=True)
class RowOverwrite:
    """Audit entry for an upsert that replaced differing field values."""
    table: str
    key: str
    previous: dict
    current: dict
    recorded_at: str


# =============================================================================
# CHAIN VIEW
# =============================================================================

@dataclass(frozen=True)
class Extrinsic:
    """One extrinsic of a block; signer is None when unsigned."""
    index: int
    signer: Optional[str] = None
    call_module: Optional[str] = None
    call_function: Optional[str] = None
    call_args: dict[str, Any] = field(default_factory=dict)

    @property
    def is_signed(self) -> bool:
        return bool(self.signer)


@dataclass(frozen=True)
class Block:
    """A block header view with its ordered extrinsics."""
    height: int
    hash: str
    extrinsics: tuple[Extrinsic, ...] = ()

    def extrinsic_at(self, index: Optional[int]) -> Optional[Extrinsic]:
        """Extrinsic at index, or None if index is missing or out of range."""
        if index is None or index < 0 or index >= len(self.extrinsics):
            return None
        return self.extrinsics[index]


@dataclass(frozen=True)
class OutgoingTransferInitiated:
    destination_chain_id: str
    channel_id: int
    nonce: str
    amount: Optional[str]
    extrinsic_index: Optional[int] = None


@dataclass(frozen=True)
class IncomingTransferSuccessful:
    source_chain_id: str
    channel_id: int
    nonce: str
    amount: Optional[str]
    extrinsic_index: Optional[int] = None


@dataclass(frozen=True)
class OutboxMessageResult:
    destination_chain_id: str
    channel_id: int
    nonce: str
    result: AckResult
    extrinsic_index: Optional[int] = None


@dataclass(frozen=True)
class OtherEvent:
    """Any event the scanner does not care about."""
    module: str
    name: str
    extrinsic_index: Optional[int] = None


@dataclass(frozen=True)
class UndecodableEvent:
    """A relevant event whose payload could not be decoded."""
    module: str
    name: str
    reason: str
    extrinsic_index: Optional[int] = None


ChainEvent = Union[
    OutgoingTransferInitiated,
    IncomingTransferSuccessful,
    OutboxMessageResult,
    OtherEvent,
    UndecodableEvent,
]


# =============================================================================
# DERIVED
# =============================================================================

@dataclass(frozen=True)
class Direction:
    """An ordered (source, destination) chain pair."""
    source: str
    destination: str

    @property
    def label(self) -> str:
        """Short label, e.g. domain -> consensus = "d2c"."""
        return f"{self.source[:1]}2{self.destination[:1]}"

    @classmethod
    def parse(cls, value: str) -> "Direction":
        """Parse "d2c" / "c2d" or "source:destination"."""
        shorthand = {"d": "domain", "c": "consensus"}
        if ":" in value:
            source, destination = value.split(":", 1)
            return cls(source.strip(), destination.strip())
        if len(value) == 3 and value[1] == "2" and value[0] in shorthand and value[2] in shorthand:
            return cls(shorthand[value[0]], shorthand[value[2]])
        raise ValueError(f"Invalid direction: {value!r} (expected d2c, c2d or source:destination)")


@dataclass(frozen=True)
class MatchedTransfer:
    """A confirmed transfer, one per NDJSON line."""
    direction: str
    from_address: str
    channel_id: int
    nonce: str
    amount: str
    source_block_height: int
    source_block_hash: str
    source_extrinsic_index: Optional[int]
    destination_block_height: Optional[int]
    destination_block_hash: Optional[str]
    confirmed_by: ConfirmedBy

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "from": self.from_address,
            "channel_id": self.channel_id,
            "nonce": self.nonce,
            "amount": self.amount,
            "source_block_height": self.source_block_height,
            "source_block_hash": self.source_block_hash,
            "source_extrinsic_index": self.source_extrinsic_index,
            "destination_block_height": self.destination_block_height,
            "destination_block_hash": self.destination_block_hash,
            "confirmed_by": self.confirmed_by.value,
        }
