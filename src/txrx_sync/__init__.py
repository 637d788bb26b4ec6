"""
TxRx Sync - Phase-aligned multi-channel TX/RX for software defined radios.

Transmits and receives complex baseband samples on several channels of
one radio front end, starting both directions on the same device clock
tick.

Pipeline:
    SessionConfig -> validate_config -> DeviceSynchronizer -> StreamingEngine

Entry points:
    - Transceiver: local buffer or file sessions on an opened device
    - RemoteSession: request/response server with shared memory transfer
    - RemoteClient: drives a RemoteSession from another process
"""

__version__ = "0.1.0"
__author__ = "TxRx Sync Team"

from .core import (
    CancellationToken,
    ClockSource,
    DeviceSynchronizer,
    ErrorKind,
    Result,
    SampleBuffer,
    SessionConfig,
    StreamingEngine,
    Transceiver,
    TxRxError,
    validate_config,
)
from .devices import RadioDevice, UHDDevice
from .server import RemoteClient, RemoteSession

__all__ = [
    # Core
    "SessionConfig",
    "ClockSource",
    "SampleBuffer",
    "CancellationToken",
    "Result",
    "ErrorKind",
    "TxRxError",
    "validate_config",
    "DeviceSynchronizer",
    "StreamingEngine",
    "Transceiver",
    # Devices
    "RadioDevice",
    "UHDDevice",
    # Remote
    "RemoteSession",
    "RemoteClient",
    # Version
    "__version__",
]
