"""
chains/events.py - Tagged-union decode step for XDM events.

Turns the raw decoded records a Substrate client returns (nested dicts,
lists, ints, hex strings) into ChainEvent variants. Nothing past this module
looks at wire shapes.

Raw record shapes accepted:
    {"module_id": "Transporter", "event_id": "...", "attributes": ...,
     "extrinsic_idx": 2, "phase": "ApplyExtrinsic"}
    {"phase": {"ApplyExtrinsic": 2}, "event": {"module_id": ..., ...}}

Attributes may be positional (list/tuple) or named (dict).
"""

import json
from typing import Any, Iterable, Mapping, Optional

from core.constants import (
    AckResult,
    EventKind,
    MESSENGER_PALLET,
    TRANSPORTER_PALLET,
)
from core.exceptions import EventDecodeError
from core.models import (
    ChainEvent,
    IncomingTransferSuccessful,
    OtherEvent,
    OutboxMessageResult,
    OutgoingTransferInitiated,
    UndecodableEvent,
)

_MISSING = object()


# =============================================================================
# SCALAR NORMALIZATION
# =============================================================================

def as_int(value: Any, field_name: str = "value") -> int:
    """Decode an integer that may arrive as int, decimal or hex string."""
    if isinstance(value, bool):
        raise EventDecodeError(f"{field_name}: boolean is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        try:
            if text.lower().startswith("0x"):
                return int(text, 16)
            return int(text)
        except ValueError:
            pass
    raise EventDecodeError(f"{field_name}: cannot decode integer from {value!r}")


def as_decimal_str(value: Any, field_name: str = "value") -> str:
    """Decode a U256/Balance into its decimal string form."""
    return str(as_int(value, field_name))


def normalize_chain_id(value: Any) -> str:
    """
    ChainId enum -> normalized string.

    "Consensus" / {"Consensus": None} -> "consensus"
    {"Domain": 0} / ("Domain", 0)     -> "domain:0"
    """
    if isinstance(value, str):
        if value.lower() == "consensus":
            return "consensus"
        if value.lower().startswith("domain:"):
            return f"domain:{as_int(value.split(':', 1)[1], 'domain_id')}"
    if isinstance(value, Mapping) and len(value) == 1:
        variant, inner = next(iter(value.items()))
        if str(variant).lower() == "consensus":
            return "consensus"
        if str(variant).lower() == "domain":
            return f"domain:{as_int(inner, 'domain_id')}"
    if isinstance(value, (list, tuple)) and len(value) == 2 and str(value[0]).lower() == "domain":
        return f"domain:{as_int(value[1], 'domain_id')}"
    raise EventDecodeError(f"chain_id: unrecognized ChainId {value!r}")


def normalize_result(value: Any) -> AckResult:
    """OutboxMessageResult -> Ok/Err. Anything but an Ok variant is Err."""
    if value is None:
        raise EventDecodeError("result: missing")
    if isinstance(value, str):
        return AckResult.OK if value == "Ok" else AckResult.ERR
    if isinstance(value, Mapping):
        return AckResult.OK if "Ok" in value else AckResult.ERR
    if isinstance(value, (list, tuple)) and value:
        return AckResult.OK if value[0] == "Ok" else AckResult.ERR
    return AckResult.ERR


# =============================================================================
# RECORD ACCESS
# =============================================================================

def _field(attrs: Any, name: str, position: int, default: Any = _MISSING) -> Any:
    if isinstance(attrs, Mapping):
        if name in attrs:
            return attrs[name]
    elif isinstance(attrs, (list, tuple)):
        if position < len(attrs):
            return attrs[position]
    else:
        raise EventDecodeError(f"attributes: unsupported payload type {type(attrs).__name__}")
    if default is _MISSING:
        raise EventDecodeError(f"{name}: missing from event attributes")
    return default


def _message_id(value: Any) -> tuple[int, str]:
    if isinstance(value, Mapping):
        channel = value.get("channel_id")
        nonce = value.get("nonce")
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        channel, nonce = value
    else:
        raise EventDecodeError(f"message_id: expected (channel_id, nonce), got {value!r}")
    return as_int(channel, "channel_id"), as_decimal_str(nonce, "nonce")


def _optional_amount(attrs: Any) -> Optional[str]:
    raw = _field(attrs, "amount", 2, default=None)
    return None if raw is None else as_decimal_str(raw, "amount")


def extrinsic_index_of(record: Mapping) -> Optional[int]:
    """Index of the ApplyExtrinsic phase, None for Initialization/Finalization."""
    if record.get("extrinsic_idx") is not None:
        return as_int(record["extrinsic_idx"], "extrinsic_idx")
    phase = record.get("phase")
    if isinstance(phase, Mapping) and "ApplyExtrinsic" in phase:
        return as_int(phase["ApplyExtrinsic"], "extrinsic_idx")
    return None


def _names(record: Mapping) -> tuple[str, str, Any]:
    event = record.get("event")
    source = event if isinstance(event, Mapping) and "module_id" in event else record
    module = str(source.get("module_id") or "")
    name = str(source.get("event_id") or "")
    return module, name, source.get("attributes")


# =============================================================================
# DECODE
# =============================================================================

def decode_event(record: Mapping) -> ChainEvent:
    """
    Decode one raw event record.

    Relevant events with a malformed payload become UndecodableEvent;
    everything else becomes OtherEvent.
    """
    module, name, attrs = _names(record)
    try:
        index = extrinsic_index_of(record)
    except EventDecodeError as e:
        return UndecodableEvent(module=module, name=name, reason=e.message)

    try:
        if module == TRANSPORTER_PALLET and name == EventKind.OUTGOING_TRANSFER_INITIATED.value:
            channel_id, nonce = _message_id(_field(attrs, "message_id", 1))
            return OutgoingTransferInitiated(
                destination_chain_id=normalize_chain_id(_field(attrs, "chain_id", 0)),
                channel_id=channel_id,
                nonce=nonce,
                amount=_optional_amount(attrs),
                extrinsic_index=index,
            )

        if module == TRANSPORTER_PALLET and name == EventKind.INCOMING_TRANSFER_SUCCESSFUL.value:
            channel_id, nonce = _message_id(_field(attrs, "message_id", 1))
            return IncomingTransferSuccessful(
                source_chain_id=normalize_chain_id(_field(attrs, "chain_id", 0)),
                channel_id=channel_id,
                nonce=nonce,
                amount=_optional_amount(attrs),
                extrinsic_index=index,
            )

        if module == MESSENGER_PALLET and name == EventKind.OUTBOX_MESSAGE_RESULT.value:
            return OutboxMessageResult(
                destination_chain_id=normalize_chain_id(_field(attrs, "chain_id", 0)),
                channel_id=as_int(_field(attrs, "channel_id", 1), "channel_id"),
                nonce=as_decimal_str(_field(attrs, "nonce", 2), "nonce"),
                result=normalize_result(_field(attrs, "result", 3)),
                extrinsic_index=index,
            )
    except EventDecodeError as e:
        return UndecodableEvent(module=module, name=name, reason=e.message, extrinsic_index=index)

    return OtherEvent(module=module, name=name, extrinsic_index=index)


def _fingerprint(record: Mapping) -> str:
    module, name, attrs = _names(record)
    return json.dumps(
        [record.get("phase"), record.get("extrinsic_idx"), module, name, attrs, record.get("topics")],
        sort_keys=True,
        default=str,
    )


def dedupe_records(records: Iterable[Mapping]) -> list[Mapping]:
    """Drop records repeated across overlapping segments, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for record in records:
        fp = _fingerprint(record)
        if fp in seen:
            continue
        seen.add(fp)
        unique.append(record)
    return unique


def decode_events(records: Iterable[Mapping]) -> list[ChainEvent]:
    """Deduplicate then decode an ordered record list."""
    return [decode_event(r) for r in dedupe_records(records)]
