"""
USRP device driver wrapper.

Adapts uhd.usrp.MultiUSRP (UHD Python bindings) to the RadioDevice
interface. Samples cross the host boundary as fc32 and travel over the
wire as sc16.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from ..core.sample_buffer import SAMPLE_DTYPE
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

logger = logging.getLogger(__name__)

DEFAULT_ARGS = "addr=192.168.180.2"
CPU_FORMAT = "fc32"
OTW_FORMAT = "sc16"


def _import_uhd():
    try:
        import uhd
    except ImportError as e:
        raise RuntimeError(
            "UHD Python bindings not installed. Install UHD with Python "
            "support (e.g. 'apt install python3-uhd')."
        ) from e
    return uhd


class UHDTxStream(TxStream):
    """TX streamer backed by a UHD tx_streamer."""

    def __init__(self, uhd, streamer):
        self._uhd = uhd
        self._streamer = streamer

    @property
    def num_channels(self) -> int:
        return self._streamer.get_num_channels()

    def send(
        self, buffs: Sequence[np.ndarray], metadata: TxMetadata, timeout: float = 0.1
    ) -> int:
        md = self._uhd.types.TXMetadata()
        md.start_of_burst = metadata.start_of_burst
        md.end_of_burst = metadata.end_of_burst
        md.has_time_spec = metadata.has_time_spec
        if metadata.has_time_spec and metadata.time_spec is not None:
            md.time_spec = self._uhd.types.TimeSpec(metadata.time_spec.secs)
        if buffs:
            data = np.ascontiguousarray(np.stack(buffs), dtype=SAMPLE_DTYPE)
        else:
            data = np.zeros((self.num_channels, 0), dtype=SAMPLE_DTYPE)
        return int(self._streamer.send(data, md, timeout))


class UHDRxStream(RxStream):
    """RX streamer backed by a UHD rx_streamer."""

    def __init__(self, uhd, streamer):
        self._uhd = uhd
        self._streamer = streamer
        self._scratch: Optional[np.ndarray] = None
        codes = uhd.types.RXMetadataErrorCode
        self._error_codes = {
            codes.none: RxErrorCode.NONE,
            codes.timeout: RxErrorCode.TIMEOUT,
            codes.overflow: RxErrorCode.OVERFLOW,
            codes.late: RxErrorCode.LATE_COMMAND,
            codes.broken_chain: RxErrorCode.BROKEN_CHAIN,
            codes.alignment: RxErrorCode.ALIGNMENT,
            codes.bad_packet: RxErrorCode.BAD_PACKET,
        }

    @property
    def num_channels(self) -> int:
        return self._streamer.get_num_channels()

    def issue_stream_cmd(self, cmd: StreamCommand) -> None:
        modes = {
            StreamMode.START_CONTINUOUS: self._uhd.types.StreamMode.start_cont,
            StreamMode.STOP_CONTINUOUS: self._uhd.types.StreamMode.stop_cont,
            StreamMode.NUM_SAMPS_AND_DONE: self._uhd.types.StreamMode.num_done,
            StreamMode.NUM_SAMPS_AND_MORE: self._uhd.types.StreamMode.num_more,
        }
        stream_cmd = self._uhd.types.StreamCMD(modes[cmd.mode])
        stream_cmd.num_samps = cmd.num_samps
        stream_cmd.stream_now = cmd.stream_now
        if not cmd.stream_now and cmd.time_spec is not None:
            stream_cmd.time_spec = self._uhd.types.TimeSpec(cmd.time_spec.secs)
        self._streamer.issue_stream_cmd(stream_cmd)

    def recv(
        self,
        buffs: Sequence[np.ndarray],
        max_samps: int,
        metadata: RxMetadata,
        timeout: float = 0.1,
    ) -> int:
        # pyuhd needs a C-contiguous 2D array; offset views into the
        # session buffer are not, so receive into scratch and copy out.
        shape = (self.num_channels, max_samps)
        if self._scratch is None or self._scratch.shape != shape:
            self._scratch = np.zeros(shape, dtype=SAMPLE_DTYPE)

        md = self._uhd.types.RXMetadata()
        num_rx = int(self._streamer.recv(self._scratch, md, timeout))

        metadata.error_code = self._error_codes.get(md.error_code, RxErrorCode.BAD_PACKET)
        metadata.error_message = md.strerror() if metadata.error_code != RxErrorCode.NONE else ""
        metadata.time_spec = TimeSpec(md.time_spec.get_real_secs())

        for ch, buff in enumerate(buffs):
            buff[:num_rx] = self._scratch[ch, :num_rx]
        return num_rx


class UHDDevice(RadioDevice):
    """
    USRP device driver.

    Wraps uhd.usrp.MultiUSRP. Multiple mainboards addressed through one
    args string are treated as a single device with a shared clock.
    """

    def __init__(self, args: str = DEFAULT_ARGS):
        super().__init__()
        self._args = args
        self._uhd = None
        self._usrp = None

    def open(self) -> bool:
        """Open USRP device."""
        if self._is_open:
            logger.warning("Device already open")
            return True

        try:
            self._uhd = _import_uhd()
            logger.info(f"Creating USRP device with args: {self._args}")
            self._usrp = self._uhd.usrp.MultiUSRP(self._args)
        except (RuntimeError, LookupError) as e:
            logger.error(f"Failed to open USRP: {e}")
            return False

        self._is_open = True
        self._info = DeviceInfo(
            name=self._usrp.get_mboard_name(0),
            args=self._args,
            num_mboards=self._usrp.get_num_mboards(),
            tx_channels=self._usrp.get_tx_num_channels(),
            rx_channels=self._usrp.get_rx_num_channels(),
        )
        logger.info(
            f"Opened {self._info.name}: {self._info.tx_channels} TX / "
            f"{self._info.rx_channels} RX channels"
        )
        return True

    def close(self) -> None:
        """Close USRP device."""
        if self._usrp is not None:
            # MultiUSRP releases the device when the last reference goes away
            self._usrp = None
            self._is_open = False
            logger.info("USRP device closed")

    @property
    def usrp(self):
        if self._usrp is None:
            raise RuntimeError("USRP device is not open")
        return self._usrp

    @property
    def tx_num_channels(self) -> int:
        return self.usrp.get_tx_num_channels()

    @property
    def rx_num_channels(self) -> int:
        return self.usrp.get_rx_num_channels()

    @property
    def num_mboards(self) -> int:
        return self.usrp.get_num_mboards()

    def _tune_request(self, freq_hz: float, integer_n: bool):
        tune_req = self._uhd.types.TuneRequest(freq_hz)
        if integer_n:
            tune_req.args = self._uhd.types.DeviceAddr("mode_n=integer")
        return tune_req

    # TX
    def set_tx_gain(self, gain_db: float, channel: int) -> None:
        self.usrp.set_tx_gain(gain_db, channel)

    def get_tx_gain(self, channel: int) -> float:
        return self.usrp.get_tx_gain(channel)

    def set_tx_antenna(self, antenna: str, channel: int) -> None:
        self.usrp.set_tx_antenna(antenna, channel)

    def get_tx_antenna(self, channel: int) -> str:
        return self.usrp.get_tx_antenna(channel)

    def set_tx_rate(self, rate_hz: float, channel: int) -> None:
        self.usrp.set_tx_rate(rate_hz, channel)

    def get_tx_rate(self, channel: int) -> float:
        return self.usrp.get_tx_rate(channel)

    def set_tx_freq(self, freq_hz: float, channel: int, integer_n: bool = False) -> None:
        self.usrp.set_tx_freq(self._tune_request(freq_hz, integer_n), channel)

    def get_tx_freq(self, channel: int) -> float:
        return self.usrp.get_tx_freq(channel)

    def set_tx_bandwidth(self, bw_hz: float, channel: int) -> None:
        self.usrp.set_tx_bandwidth(bw_hz, channel)

    # RX
    def set_rx_gain(self, gain_db: float, channel: int) -> None:
        self.usrp.set_rx_gain(gain_db, channel)

    def get_rx_gain(self, channel: int) -> float:
        return self.usrp.get_rx_gain(channel)

    def set_rx_antenna(self, antenna: str, channel: int) -> None:
        self.usrp.set_rx_antenna(antenna, channel)

    def get_rx_antenna(self, channel: int) -> str:
        return self.usrp.get_rx_antenna(channel)

    def set_rx_rate(self, rate_hz: float, channel: int) -> None:
        self.usrp.set_rx_rate(rate_hz, channel)

    def get_rx_rate(self, channel: int) -> float:
        return self.usrp.get_rx_rate(channel)

    def set_rx_freq(self, freq_hz: float, channel: int, integer_n: bool = False) -> None:
        self.usrp.set_rx_freq(self._tune_request(freq_hz, integer_n), channel)

    def get_rx_freq(self, channel: int) -> float:
        return self.usrp.get_rx_freq(channel)

    def set_rx_bandwidth(self, bw_hz: float, channel: int) -> None:
        self.usrp.set_rx_bandwidth(bw_hz, channel)

    # Clock and time
    def set_clock_source(self, source: str) -> None:
        self.usrp.set_clock_source(source)

    def set_time_source(self, source: str) -> None:
        self.usrp.set_time_source(source)

    def get_time_now(self) -> TimeSpec:
        return TimeSpec(self.usrp.get_time_now().get_real_secs())

    def get_time_last_pps(self) -> TimeSpec:
        return TimeSpec(self.usrp.get_time_last_pps().get_real_secs())

    def set_time_next_pps(self, time_spec: TimeSpec) -> None:
        self.usrp.set_time_next_pps(self._uhd.types.TimeSpec(time_spec.secs))

    def set_command_time(self, time_spec: TimeSpec) -> None:
        self.usrp.set_command_time(self._uhd.types.TimeSpec(time_spec.secs))

    def clear_command_time(self) -> None:
        self.usrp.clear_command_time()

    # Sensors
    def get_tx_sensor_names(self, channel: int) -> List[str]:
        return list(self.usrp.get_tx_sensor_names(channel))

    def get_tx_sensor(self, name: str, channel: int) -> bool:
        return self.usrp.get_tx_sensor(name, channel).to_bool()

    def get_rx_sensor_names(self, channel: int) -> List[str]:
        return list(self.usrp.get_rx_sensor_names(channel))

    def get_rx_sensor(self, name: str, channel: int) -> bool:
        return self.usrp.get_rx_sensor(name, channel).to_bool()

    def get_mboard_sensor_names(self, mboard: int) -> List[str]:
        return list(self.usrp.get_mboard_sensor_names(mboard))

    def get_mboard_sensor(self, name: str, mboard: int) -> bool:
        return self.usrp.get_mboard_sensor(name, mboard).to_bool()

    # Streams
    def _stream_args(self, channels: Sequence[int]):
        stream_args = self._uhd.usrp.StreamArgs(CPU_FORMAT, OTW_FORMAT)
        stream_args.channels = list(channels)
        return stream_args

    def get_tx_stream(self, channels: Sequence[int]) -> TxStream:
        logger.debug(f"Creating TX stream on channels {list(channels)}")
        return UHDTxStream(self._uhd, self.usrp.get_tx_stream(self._stream_args(channels)))

    def get_rx_stream(self, channels: Sequence[int]) -> RxStream:
        logger.debug(f"Creating RX stream on channels {list(channels)}")
        return UHDRxStream(self._uhd, self.usrp.get_rx_stream(self._stream_args(channels)))
