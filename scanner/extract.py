"""
scanner/extract.py - Per-block extraction of XDM events into the store.

Rules:
- OutgoingTransferInitiated  -> SourceInit, from_address = signer of the
  originating extrinsic. Rejected (EventFailure, no row) when the event is
  not tied to an extrinsic, the index is outside the block's extrinsic
  list, or the extrinsic is unsigned.
- IncomingTransferSuccessful -> DestinationSuccess
- OutboxMessageResult        -> SourceAck (Ok/Err)
- UndecodableEvent           -> EventFailure
- anything else              -> ignored

Failures are isolated per event; StoreError is never caught here.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from chains.events import as_decimal_str
from core.constants import EventKind, ErrorCode, ZERO_AMOUNT
from core.exceptions import EventDecodeError
from core.logging import get_logger
from core.models import (
    Block,
    ChainEvent,
    DestinationSuccess,
    EventFailure,
    Extrinsic,
    IncomingTransferSuccessful,
    OutboxMessageResult,
    OutgoingTransferInitiated,
    SourceAck,
    SourceInit,
    UndecodableEvent,
)
from store.sqlite import EventStore

logger = get_logger(__name__)


class ExtractionRejected(Exception):
    """An event that decoded fine but cannot be attributed safely."""

    def __init__(self, code: ErrorCode, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason


@dataclass
class ExtractionStats:
    """Counts for one or more processed blocks."""
    source_inits: int = 0
    destination_successes: int = 0
    source_acks: int = 0
    failures: int = 0
    ignored: int = 0

    def merge(self, other: "ExtractionStats") -> None:
        self.source_inits += other.source_inits
        self.destination_successes += other.destination_successes
        self.source_acks += other.source_acks
        self.failures += other.failures
        self.ignored += other.ignored

    def to_dict(self) -> dict:
        return {
            "source_inits": self.source_inits,
            "destination_successes": self.destination_successes,
            "source_acks": self.source_acks,
            "failures": self.failures,
            "ignored": self.ignored,
        }


def amount_from_call(extrinsic: Optional[Extrinsic]) -> Optional[str]:
    """The `amount` argument of a transporter call, if there is one."""
    if extrinsic is None or (extrinsic.call_module or "").lower() != "transporter":
        return None
    raw = extrinsic.call_args.get("amount")
    if raw is None:
        return None
    try:
        return as_decimal_str(raw, "amount")
    except EventDecodeError:
        return None


def resolve_origin(block: Block, event: OutgoingTransferInitiated) -> Extrinsic:
    """Originating signed extrinsic, or ExtractionRejected."""
    index = event.extrinsic_index
    if index is None:
        raise ExtractionRejected(
            ErrorCode.EXTRACT_NO_EXTRINSIC,
            "event is not emitted by an extrinsic",
        )
    extrinsic = block.extrinsic_at(index)
    if extrinsic is None:
        raise ExtractionRejected(
            ErrorCode.EXTRACT_EXTRINSIC_OUT_OF_RANGE,
            f"extrinsic index {index} outside block with {len(block.extrinsics)} extrinsics",
        )
    if not extrinsic.is_signed:
        raise ExtractionRejected(
            ErrorCode.EXTRACT_UNSIGNED_EXTRINSIC,
            f"extrinsic {index} is unsigned",
        )
    return extrinsic


def _source_init(chain: str, block: Block, event: OutgoingTransferInitiated) -> SourceInit:
    origin = resolve_origin(block, event)
    amount = event.amount or amount_from_call(origin) or ZERO_AMOUNT
    return SourceInit(
        source_chain=chain,
        destination_chain_id=event.destination_chain_id,
        channel_id=event.channel_id,
        nonce=event.nonce,
        from_address=origin.signer,
        amount=amount,
        source_block_height=block.height,
        source_block_hash=block.hash,
        source_extrinsic_index=event.extrinsic_index,
    )


def _failure(chain: str, block: Block, event: ChainEvent, kind: str, code: ErrorCode, reason: str) -> EventFailure:
    return EventFailure(
        chain=chain,
        block_height=block.height,
        block_hash=block.hash,
        extrinsic_index=event.extrinsic_index,
        event_kind=kind,
        reason=reason,
        code=code.value,
    )


def extract_block(
    store: EventStore,
    chain: str,
    block: Block,
    events: Iterable[ChainEvent],
) -> ExtractionStats:
    """Apply extraction rules to every event of a block."""
    stats = ExtractionStats()

    for event in events:
        if isinstance(event, OutgoingTransferInitiated):
            try:
                row = _source_init(chain, block, event)
            except ExtractionRejected as e:
                stats.failures += 1
                store.record_failure(_failure(
                    chain, block, event, EventKind.OUTGOING_TRANSFER_INITIATED.value, e.code, e.reason
                ))
                logger.warning(
                    f"Rejected OutgoingTransferInitiated at #{block.height}: {e.reason}",
                    extra={"context": {
                        "chain": chain,
                        "block_height": block.height,
                        "channel_id": event.channel_id,
                        "nonce": event.nonce,
                        "code": e.code.value,
                    }},
                )
                continue
            store.upsert_source_init(row)
            stats.source_inits += 1
            logger.debug(
                "OutgoingTransferInitiated",
                extra={"context": {
                    "chain": chain,
                    "block_height": block.height,
                    "channel_id": row.channel_id,
                    "nonce": row.nonce,
                    "amount": row.amount,
                    "from": row.from_address,
                }},
            )

        elif isinstance(event, IncomingTransferSuccessful):
            store.upsert_destination_success(DestinationSuccess(
                destination_chain=chain,
                source_chain_id=event.source_chain_id,
                channel_id=event.channel_id,
                nonce=event.nonce,
                amount=event.amount or ZERO_AMOUNT,
                destination_block_height=block.height,
                destination_block_hash=block.hash,
            ))
            stats.destination_successes += 1

        elif isinstance(event, OutboxMessageResult):
            store.upsert_source_ack(SourceAck(
                source_chain=chain,
                destination_chain_id=event.destination_chain_id,
                channel_id=event.channel_id,
                nonce=event.nonce,
                result=event.result,
                source_block_height=block.height,
                source_block_hash=block.hash,
            ))
            stats.source_acks += 1

        elif isinstance(event, UndecodableEvent):
            stats.failures += 1
            store.record_failure(_failure(
                chain, block, event, event.name or "unknown", ErrorCode.DECODE_MALFORMED_EVENT, event.reason
            ))
            logger.warning(
                f"Undecodable {event.module}.{event.name} at #{block.height}: {event.reason}",
                extra={"context": {"chain": chain, "block_height": block.height}},
            )

        else:
            stats.ignored += 1

    return stats
