"""
Device drivers - Hardware abstraction for multi-channel radio front ends.
"""

from .base import (
    DeviceInfo,
    RadioDevice,
    RxErrorCode,
    RxMetadata,
    RxStream,
    StreamCommand,
    StreamMode,
    TimeSpec,
    TxMetadata,
    TxStream,
)
from .uhd_usrp import UHDDevice

__all__ = [
    "RadioDevice",
    "DeviceInfo",
    "TxStream",
    "RxStream",
    "TxMetadata",
    "RxMetadata",
    "RxErrorCode",
    "StreamCommand",
    "StreamMode",
    "TimeSpec",
    "UHDDevice",
]
