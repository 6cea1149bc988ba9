"""
core/constants.py - Enums, defaults, and configuration constants.

Contains:
- ErrorCode: canonical error codes shared by exceptions and failure records
- ChainLabel: chains the capture tool knows how to scan
- EventKind: relevant XDM event kinds
- ConfirmationMode / ConfirmedBy: correlator policies and their outcomes
- Scan defaults (concurrency, backoff, segment size)
"""

from enum import Enum
from typing import Final


class ErrorCode(str, Enum):
    """Canonical error codes."""
    # Chain access (transient)
    INFRA_RPC_ERROR = "INFRA_RPC_ERROR"
    INFRA_TIMEOUT = "INFRA_TIMEOUT"
    INFRA_RATE_LIMIT = "INFRA_RATE_LIMIT"

    # Event decoding / extraction (structural)
    DECODE_MALFORMED_EVENT = "DECODE_MALFORMED_EVENT"
    EXTRACT_NO_EXTRINSIC = "EXTRACT_NO_EXTRINSIC"
    EXTRACT_EXTRINSIC_OUT_OF_RANGE = "EXTRACT_EXTRINSIC_OUT_OF_RANGE"
    EXTRACT_UNSIGNED_EXTRINSIC = "EXTRACT_UNSIGNED_EXTRINSIC"

    # Configuration (fatal)
    CONFIG_MISSING_FIELD = "CONFIG_MISSING_FIELD"
    CONFIG_INVALID_VALUE = "CONFIG_INVALID_VALUE"

    # Store (fatal)
    STORE_IO_ERROR = "STORE_IO_ERROR"

    # Retry
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"

    UNKNOWN = "UNKNOWN"


class ChainLabel(str, Enum):
    """Chains of the network that can be scanned."""
    CONSENSUS = "consensus"
    DOMAIN = "domain"


class EventKind(str, Enum):
    """XDM event kinds the scanner extracts."""
    OUTGOING_TRANSFER_INITIATED = "OutgoingTransferInitiated"
    INCOMING_TRANSFER_SUCCESSFUL = "IncomingTransferSuccessful"
    OUTBOX_MESSAGE_RESULT = "OutboxMessageResult"


class AckResult(str, Enum):
    """Normalized outbox message result."""
    OK = "Ok"
    ERR = "Err"


class ConfirmationMode(str, Enum):
    """Which companion event(s) confirm an initiated transfer."""
    DEST_ONLY = "dest-only"
    ACK_ONLY = "ack-only"
    BOTH = "both"


class ConfirmedBy(str, Enum):
    """Which companion event(s) actually confirmed a transfer."""
    DEST = "dest"
    ACK = "ack"
    BOTH = "both"


# Pallets emitting the relevant events
TRANSPORTER_PALLET: Final[str] = "Transporter"
MESSENGER_PALLET: Final[str] = "Messenger"

# Scan defaults
DEFAULT_BLOCK_CONCURRENCY: Final[int] = 8
DEFAULT_RETRY_BACKOFF_MS: Final[int] = 1000
DEFAULT_RETRY_MAX_BACKOFF_MS: Final[int] = 10000
DEFAULT_OUTPUT_DIR: Final[str] = "exports"
DEFAULT_DB_FILENAME: Final[str] = "xdm.sqlite"
DEFAULT_RPC_TIMEOUT_SECONDS: Final[int] = 30

# Events are sharded across System.EventSegments entries of this size
EVENT_SEGMENT_SIZE: Final[int] = 100

# Progress log cadence (heights)
PROGRESS_LOG_EVERY: Final[int] = 100

# Fallback amount when neither the event nor the call carries one
ZERO_AMOUNT: Final[str] = "0"

MANIFEST_SCHEMA_VERSION: Final[str] = "1.0.0"
