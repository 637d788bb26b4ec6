"""
Core module - Session configuration, synchronization and streaming.
"""

from .result import (
    CancelledError,
    ClockSyncTimeout,
    ConfigValidationError,
    ErrorKind,
    LockError,
    ProtocolError,
    Result,
    SessionError,
    StreamError,
    TxRxError,
)
from .cancel import CancellationToken
from .config import ClockSource, SessionConfig
from .sample_buffer import SampleBuffer
from .validator import validate_config
from .synchronizer import DeviceSynchronizer, SyncReport, SyncState
from .streaming import RxReport, StreamingEngine, StreamReport, TxReport
from .transceiver import Transceiver

__all__ = [
    # Results and errors
    "Result",
    "ErrorKind",
    "TxRxError",
    "ConfigValidationError",
    "LockError",
    "ClockSyncTimeout",
    "StreamError",
    "CancelledError",
    "ProtocolError",
    "SessionError",
    # Configuration
    "SessionConfig",
    "ClockSource",
    "CancellationToken",
    "SampleBuffer",
    # Pipeline
    "validate_config",
    "DeviceSynchronizer",
    "SyncReport",
    "SyncState",
    "StreamingEngine",
    "StreamReport",
    "TxReport",
    "RxReport",
    "Transceiver",
]
