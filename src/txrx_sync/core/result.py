"""
Outcome types and exceptions for TX/RX sessions.

Components raise the exceptions below internally. At their public
boundary (validator, synchronizer, streaming engine, transceiver) they
return a Result instead, so callers can branch on the failure kind
without catching exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure categories surfaced at component boundaries."""

    VALIDATION = "validation"  # Bad config, checked before any hardware change
    SYNC = "sync"  # LO / reference / MIMO lock failure
    SYNC_TIMEOUT = "sync_timeout"  # No PPS edge observed in time
    STREAM = "stream"  # Fatal streaming error code
    CANCELLED = "cancelled"  # Cancellation token set
    PROTOCOL = "protocol"  # Malformed remote request


class TxRxError(Exception):
    """Base class for all errors raised by this package."""

    kind: ErrorKind = ErrorKind.STREAM


class ConfigValidationError(TxRxError, ValueError):
    """Raised when configuration values are invalid."""

    kind = ErrorKind.VALIDATION


class LockError(TxRxError):
    """Raised when a lock sensor reports unlocked."""

    kind = ErrorKind.SYNC


class ClockSyncTimeout(TxRxError):
    """Raised when no PPS edge is seen within the poll timeout."""

    kind = ErrorKind.SYNC_TIMEOUT


class StreamError(TxRxError):
    """Raised on a non-recoverable stream error code."""

    kind = ErrorKind.STREAM


class CancelledError(TxRxError):
    """Raised when a blocking step observes cancellation."""

    kind = ErrorKind.CANCELLED


class ProtocolError(TxRxError):
    """Raised for malformed or unsupported remote requests."""

    kind = ErrorKind.PROTOCOL


class SessionError(TxRxError):
    """Raised by Result.unwrap() on a failed result."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Tagged outcome: either a value or an (ErrorKind, message) pair.

    Use Result.success() / Result.failure() rather than the constructor.
    """

    value: Optional[T] = None
    kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(kind=kind, message=message)

    @classmethod
    def from_exception(cls, exc: Exception) -> "Result[T]":
        """Build a failure from an exception, keeping TxRxError kinds."""
        kind = getattr(exc, "kind", ErrorKind.STREAM)
        if not isinstance(kind, ErrorKind):
            kind = ErrorKind.STREAM
        return cls(kind=kind, message=str(exc) or exc.__class__.__name__)

    @property
    def ok(self) -> bool:
        return self.kind is None

    def unwrap(self) -> T:
        """Return the value, or raise SessionError for a failure."""
        if self.kind is not None:
            raise SessionError(self.kind, self.message)
        return self.value

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.kind.value}, {self.message!r})"
