"""
Base radio device abstraction layer.

Defines the interface the synchronizer and streaming engine drive:
per-channel tuning controls, the device clock, lock sensors, and
TX/RX stream objects.

A RadioDevice is exclusively owned by one session at a time. TX and RX
workers only touch their own stream object, so no locking is done
around device calls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class TimeSpec:
    """Point on the device clock, in seconds."""

    secs: float = 0.0

    def __add__(self, other) -> "TimeSpec":
        if isinstance(other, TimeSpec):
            return TimeSpec(self.secs + other.secs)
        return TimeSpec(self.secs + float(other))

    def __sub__(self, other) -> "TimeSpec":
        if isinstance(other, TimeSpec):
            return TimeSpec(self.secs - other.secs)
        return TimeSpec(self.secs - float(other))

    @property
    def real_secs(self) -> float:
        return self.secs


class RxErrorCode(Enum):
    """Receive metadata error codes."""

    NONE = auto()
    TIMEOUT = auto()  # No packet within the recv timeout
    OVERFLOW = auto()  # Host did not keep up, samples dropped
    LATE_COMMAND = auto()  # Stream command time already passed
    BROKEN_CHAIN = auto()
    ALIGNMENT = auto()  # Multi-channel alignment failed
    BAD_PACKET = auto()


@dataclass
class TxMetadata:
    """Burst and timing flags attached to a send() call."""

    start_of_burst: bool = False
    end_of_burst: bool = False
    has_time_spec: bool = False
    time_spec: Optional[TimeSpec] = None


@dataclass
class RxMetadata:
    """Result metadata filled in by a recv() call."""

    error_code: RxErrorCode = RxErrorCode.NONE
    time_spec: Optional[TimeSpec] = None
    error_message: str = ""

    def strerror(self) -> str:
        return self.error_message or self.error_code.name


class StreamMode(Enum):
    """RX stream command modes."""

    START_CONTINUOUS = "start_cont"
    STOP_CONTINUOUS = "stop_cont"
    NUM_SAMPS_AND_DONE = "num_done"
    NUM_SAMPS_AND_MORE = "num_more"


@dataclass
class StreamCommand:
    """RX stream command, optionally scheduled at a device time."""

    mode: StreamMode = StreamMode.NUM_SAMPS_AND_DONE
    num_samps: int = 0
    stream_now: bool = True
    time_spec: Optional[TimeSpec] = None


@dataclass
class DeviceInfo:
    """Radio device information."""

    name: str
    serial: str = ""
    args: str = ""
    num_mboards: int = 1
    tx_channels: int = 0
    rx_channels: int = 0
    extra: dict = field(default_factory=dict)


class TxStream(ABC):
    """Transmit streamer bound to a fixed list of channels."""

    @property
    @abstractmethod
    def num_channels(self) -> int:
        pass

    @abstractmethod
    def send(
        self, buffs: Sequence[np.ndarray], metadata: TxMetadata, timeout: float = 0.1
    ) -> int:
        """
        Send one block of samples per channel.

        Args:
            buffs: One complex64 array per channel, equal lengths
            metadata: Burst / timing flags
            timeout: Seconds to block waiting for buffer space

        Returns:
            Number of samples per channel accepted (may be 0)
        """
        pass


class RxStream(ABC):
    """Receive streamer bound to a fixed list of channels."""

    @property
    @abstractmethod
    def num_channels(self) -> int:
        pass

    @abstractmethod
    def issue_stream_cmd(self, cmd: StreamCommand) -> None:
        pass

    @abstractmethod
    def recv(
        self,
        buffs: Sequence[np.ndarray],
        max_samps: int,
        metadata: RxMetadata,
        timeout: float = 0.1,
    ) -> int:
        """
        Receive up to `max_samps` samples per channel into `buffs`.

        Args:
            buffs: One writable complex64 view per channel
            max_samps: Maximum samples per channel to write
            metadata: Filled in with the error code of this call
            timeout: Seconds to block waiting for a packet

        Returns:
            Number of samples per channel written
        """
        pass


class RadioDevice(ABC):
    """
    Abstract base class for multi-channel radio front ends.

    Channel arguments are hardware channel indices. Setters take effect
    immediately unless a command time has been set, in which case the
    hardware applies them at that time.
    """

    def __init__(self):
        self._info: Optional[DeviceInfo] = None
        self._is_open: bool = False

    @property
    def info(self) -> Optional[DeviceInfo]:
        """Get device information."""
        return self._info

    @property
    def is_open(self) -> bool:
        """Check if device is open."""
        return self._is_open

    @abstractmethod
    def open(self) -> bool:
        """
        Open the radio device.

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the device and release resources."""
        pass

    # Topology
    @property
    @abstractmethod
    def tx_num_channels(self) -> int:
        pass

    @property
    @abstractmethod
    def rx_num_channels(self) -> int:
        pass

    @property
    @abstractmethod
    def num_mboards(self) -> int:
        pass

    # TX channel settings
    @abstractmethod
    def set_tx_gain(self, gain_db: float, channel: int) -> None:
        pass

    @abstractmethod
    def get_tx_gain(self, channel: int) -> float:
        pass

    @abstractmethod
    def set_tx_antenna(self, antenna: str, channel: int) -> None:
        pass

    @abstractmethod
    def get_tx_antenna(self, channel: int) -> str:
        pass

    @abstractmethod
    def set_tx_rate(self, rate_hz: float, channel: int) -> None:
        pass

    @abstractmethod
    def get_tx_rate(self, channel: int) -> float:
        pass

    @abstractmethod
    def set_tx_freq(self, freq_hz: float, channel: int, integer_n: bool = False) -> None:
        pass

    @abstractmethod
    def get_tx_freq(self, channel: int) -> float:
        pass

    def set_tx_bandwidth(self, bw_hz: float, channel: int) -> None:
        raise NotImplementedError("This device does not support TX bandwidth control")

    # RX channel settings
    @abstractmethod
    def set_rx_gain(self, gain_db: float, channel: int) -> None:
        pass

    @abstractmethod
    def get_rx_gain(self, channel: int) -> float:
        pass

    @abstractmethod
    def set_rx_antenna(self, antenna: str, channel: int) -> None:
        pass

    @abstractmethod
    def get_rx_antenna(self, channel: int) -> str:
        pass

    @abstractmethod
    def set_rx_rate(self, rate_hz: float, channel: int) -> None:
        pass

    @abstractmethod
    def get_rx_rate(self, channel: int) -> float:
        pass

    @abstractmethod
    def set_rx_freq(self, freq_hz: float, channel: int, integer_n: bool = False) -> None:
        pass

    @abstractmethod
    def get_rx_freq(self, channel: int) -> float:
        pass

    def set_rx_bandwidth(self, bw_hz: float, channel: int) -> None:
        raise NotImplementedError("This device does not support RX bandwidth control")

    # Clock and time
    @abstractmethod
    def set_clock_source(self, source: str) -> None:
        pass

    @abstractmethod
    def set_time_source(self, source: str) -> None:
        pass

    @abstractmethod
    def get_time_now(self) -> TimeSpec:
        pass

    @abstractmethod
    def get_time_last_pps(self) -> TimeSpec:
        pass

    @abstractmethod
    def set_time_next_pps(self, time_spec: TimeSpec) -> None:
        pass

    # Timed commands (applied to all mainboards)
    @abstractmethod
    def set_command_time(self, time_spec: TimeSpec) -> None:
        pass

    @abstractmethod
    def clear_command_time(self) -> None:
        pass

    # Sensors
    @abstractmethod
    def get_tx_sensor_names(self, channel: int) -> List[str]:
        pass

    @abstractmethod
    def get_tx_sensor(self, name: str, channel: int) -> bool:
        pass

    @abstractmethod
    def get_rx_sensor_names(self, channel: int) -> List[str]:
        pass

    @abstractmethod
    def get_rx_sensor(self, name: str, channel: int) -> bool:
        pass

    @abstractmethod
    def get_mboard_sensor_names(self, mboard: int) -> List[str]:
        pass

    @abstractmethod
    def get_mboard_sensor(self, name: str, mboard: int) -> bool:
        pass

    # Streams
    @abstractmethod
    def get_tx_stream(self, channels: Sequence[int]) -> TxStream:
        pass

    @abstractmethod
    def get_rx_stream(self, channels: Sequence[int]) -> RxStream:
        pass

    def __enter__(self):
        """Context manager entry."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False

    def __repr__(self) -> str:
        if self._info:
            return f"<{self.__class__.__name__} {self._info.name}>"
        return f"<{self.__class__.__name__} (not opened)>"
