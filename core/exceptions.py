"""
Typed exceptions for the XDM capture tool.

Transient chain-access faults vs structural decode faults vs fatal
configuration/store faults. Every error carries an ErrorCode.
"""

from typing import Optional

from core.constants import ErrorCode


class XdmError(Exception):
    """Base exception for the capture tool."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class InfraError(XdmError):
    """Infrastructure-related errors (RPC, timeouts, rate limits)."""
    pass


class ChainAccessError(InfraError):
    """Transient failure fetching a block or its events. Always retryable."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INFRA_RPC_ERROR,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class EventDecodeError(XdmError):
    """A single event payload could not be decoded."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.DECODE_MALFORMED_EVENT, details)


class ConfigError(XdmError):
    """Missing or invalid configuration. Fatal at startup."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_MISSING_FIELD,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class StoreError(XdmError):
    """Persistence failure. Fatal: the pipeline must not run on a lost write."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.STORE_IO_ERROR, details)


class RetryExhaustedError(XdmError):
    """A finite retry policy ran out of attempts."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.RETRY_EXHAUSTED, details)
