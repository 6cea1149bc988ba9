"""
correlator/correlator.py - Offline join of the three event tables.

For a direction X -> Y and a confirmation mode, yields one MatchedTransfer
per SourceInit on X that the mode confirms:

    dest-only  DestinationSuccess on Y with the same (channel_id, nonce)
    ack-only   SourceAck on X with the same key and result Ok
    both       either; confirmed_by = "both" when both hold

Unconfirmed transfers are dropped. Amount = destination amount when a
DestinationSuccess exists, else the source amount. Stateless: every call
recomputes from current store contents.
"""

from typing import Iterator, Optional

from core.constants import AckResult, ConfirmationMode, ConfirmedBy
from core.logging import get_logger
from core.models import Direction, MatchedTransfer
from store.sqlite import EventStore

logger = get_logger(__name__)


def confirmation(mode: ConfirmationMode, dest_present: bool, ack_ok: bool) -> Optional[ConfirmedBy]:
    """Which evidence confirms the transfer under mode, or None."""
    if mode == ConfirmationMode.DEST_ONLY:
        return ConfirmedBy.DEST if dest_present else None
    if mode == ConfirmationMode.ACK_ONLY:
        return ConfirmedBy.ACK if ack_ok else None
    if dest_present and ack_ok:
        return ConfirmedBy.BOTH
    if dest_present:
        return ConfirmedBy.DEST
    if ack_ok:
        return ConfirmedBy.ACK
    return None


class Correlator:
    """Read-only matcher over an EventStore."""

    def __init__(self, store: EventStore):
        self.store = store

    def correlate(self, direction: Direction, mode: ConfirmationMode) -> Iterator[MatchedTransfer]:
        mode = ConfirmationMode(mode)
        scanned = 0
        matched = 0
        for row in self.store.iter_correlation_rows(direction.source, direction.destination):
            scanned += 1
            dest_present = bool(row["dest_present"])
            ack_ok = row["ack_result"] == AckResult.OK.value
            confirmed_by = confirmation(mode, dest_present, ack_ok)
            if confirmed_by is None:
                continue
            matched += 1
            yield MatchedTransfer(
                direction=direction.label,
                from_address=row["from_address"] or "",
                channel_id=int(row["channel_id"]),
                nonce=str(row["nonce"]),
                amount=str(row["dest_amount"] if dest_present else row["amount"]),
                source_block_height=int(row["source_block_height"]),
                source_block_hash=str(row["source_block_hash"]),
                source_extrinsic_index=row["source_extrinsic_index"],
                destination_block_height=row["destination_block_height"] if dest_present else None,
                destination_block_hash=row["destination_block_hash"] if dest_present else None,
                confirmed_by=confirmed_by,
            )

        logger.info(
            f"Correlated {direction.label}: {matched}/{scanned} confirmed",
            extra={"context": {
                "direction": direction.label,
                "mode": mode.value,
                "source_inits": scanned,
                "confirmed": matched,
                "unconfirmed": scanned - matched,
            }},
        )
