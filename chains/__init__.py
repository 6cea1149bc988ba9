"""Chain access: adapter protocol, event decoding, Substrate adapter, JSON-RPC provider."""

from chains.adapter import ChainAdapter
from chains.events import decode_event, decode_events

__all__ = [
    "ChainAdapter",
    "decode_event",
    "decode_events",
]
