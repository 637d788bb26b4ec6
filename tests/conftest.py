"""Shared fixtures: an in-memory radio with scriptable streams."""

import time
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

from txrx_sync.core.config import SessionConfig
from txrx_sync.core.sample_buffer import SAMPLE_DTYPE, SampleBuffer
from txrx_sync.devices.base import (
    DeviceInfo,
    RadioDevice,
    RxErrorCode,
    RxStream,
    StreamCommand,
    TimeSpec,
    TxMetadata,
    TxStream,
)


class FakeTxStream(TxStream):
    """TX stream that records every send()."""

    def __init__(self, num_channels: int):
        self._num_channels = num_channels
        self.sends: List[TxMetadata] = []
        self.lengths: List[int] = []
        self.data: List[List[np.ndarray]] = [[] for _ in range(num_channels)]
        self.zero_sends = 0  # leading sends that accept nothing
        self.max_per_send: Optional[int] = None
        self.send_delay = 0.0
        self.on_send: Optional[Callable[[int], None]] = None
        self.total = 0

    @property
    def num_channels(self) -> int:
        return self._num_channels

    @property
    def end_of_burst_count(self) -> int:
        return sum(1 for md in self.sends if md.end_of_burst)

    @property
    def samples(self) -> List[np.ndarray]:
        return [
            np.concatenate(chunks) if chunks else np.zeros(0, dtype=SAMPLE_DTYPE)
            for chunks in self.data
        ]

    def send(self, buffs, metadata, timeout=0.1):
        assert len(buffs) == self._num_channels
        self.sends.append(metadata)
        if self.send_delay:
            time.sleep(self.send_delay)
        if metadata.end_of_burst:
            self.lengths.append(0)
            return 0
        if self.zero_sends > 0:
            self.zero_sends -= 1
            self.lengths.append(0)
            return 0
        n = min(len(b) for b in buffs)
        if self.max_per_send is not None:
            n = min(n, self.max_per_send)
        for ch, b in enumerate(buffs):
            self.data[ch].append(np.array(b[:n], dtype=SAMPLE_DTYPE))
        self.lengths.append(n)
        self.total += n
        if self.on_send is not None:
            self.on_send(self.total)
        return n


class FakeRxStream(RxStream):
    """
    RX stream producing a ramp: sample k of channel c is k + 1j * c.

    `script` lists error codes returned by consecutive recv() calls;
    once exhausted every call succeeds.
    """

    def __init__(self, num_channels: int):
        self._num_channels = num_channels
        self.commands: List[StreamCommand] = []
        self.script: List[RxErrorCode] = []
        self.timeouts_seen: List[float] = []
        self.on_recv: Optional[Callable[[int], None]] = None
        self.produced = 0

    @property
    def num_channels(self) -> int:
        return self._num_channels

    def issue_stream_cmd(self, cmd):
        self.commands.append(cmd)

    def recv(self, buffs, max_samps, metadata, timeout=0.1):
        self.timeouts_seen.append(timeout)
        if self.script:
            code = self.script.pop(0)
            if code != RxErrorCode.NONE:
                metadata.error_code = code
                metadata.error_message = code.name
                return 0
        metadata.error_code = RxErrorCode.NONE
        n = min(max_samps, min(len(b) for b in buffs))
        ramp = np.arange(self.produced, self.produced + n, dtype=np.float32)
        for ch, b in enumerate(buffs):
            b[:n] = ramp + 1j * ch
        self.produced += n
        if self.on_recv is not None:
            self.on_recv(self.produced)
        return n


class FakeRadio(RadioDevice):
    """
    In-memory radio.

    The last-PPS time changes after `pps_edge_after` reads (None never
    changes). Sensor dictionaries control lock readings.
    """

    def __init__(self, tx_channels: int = 2, rx_channels: int = 2, num_mboards: int = 1):
        super().__init__()
        self._tx_channels = tx_channels
        self._rx_channels = rx_channels
        self._num_mboards = num_mboards
        self.calls: List[tuple] = []
        self.settings: Dict[tuple, object] = {}
        self.time_now = 0.0
        self.pps_edge_after: Optional[int] = 1
        self.pps_reads = 0
        self.command_time: Optional[TimeSpec] = None
        self.tuned_at: List[tuple] = []
        self.tx_sensors = {"lo_locked": True}
        self.rx_sensors = {"lo_locked": True}
        self.mboard_sensors = {"ref_locked": True, "mimo_locked": True}
        self.tx_stream: Optional[FakeTxStream] = None
        self.rx_stream: Optional[FakeRxStream] = None

    def _record(self, name, *args):
        self.calls.append((name,) + args)

    def open(self) -> bool:
        self._info = DeviceInfo(
            name="FakeRadio",
            tx_channels=self._tx_channels,
            rx_channels=self._rx_channels,
            num_mboards=self._num_mboards,
        )
        self._is_open = True
        return True

    def close(self) -> None:
        self._is_open = False

    @property
    def tx_num_channels(self) -> int:
        return self._tx_channels

    @property
    def rx_num_channels(self) -> int:
        return self._rx_channels

    @property
    def num_mboards(self) -> int:
        return self._num_mboards

    # Channel settings
    def _set(self, key, value, channel):
        self._record(f"set_{key}", value, channel)
        self.settings[(key, channel)] = value

    def set_tx_gain(self, gain_db, channel):
        self._set("tx_gain", gain_db, channel)

    def get_tx_gain(self, channel):
        return self.settings.get(("tx_gain", channel), 0.0)

    def set_tx_antenna(self, antenna, channel):
        self._set("tx_antenna", antenna, channel)

    def get_tx_antenna(self, channel):
        return self.settings.get(("tx_antenna", channel), "")

    def set_tx_rate(self, rate_hz, channel):
        self._set("tx_rate", rate_hz, channel)

    def get_tx_rate(self, channel):
        return self.settings.get(("tx_rate", channel), 0.0)

    def set_tx_freq(self, freq_hz, channel, integer_n=False):
        self._set("tx_freq", freq_hz, channel)
        self.tuned_at.append(("tx", channel, integer_n, self.command_time))

    def get_tx_freq(self, channel):
        return self.settings.get(("tx_freq", channel), 0.0)

    def set_rx_gain(self, gain_db, channel):
        self._set("rx_gain", gain_db, channel)

    def get_rx_gain(self, channel):
        return self.settings.get(("rx_gain", channel), 0.0)

    def set_rx_antenna(self, antenna, channel):
        self._set("rx_antenna", antenna, channel)

    def get_rx_antenna(self, channel):
        return self.settings.get(("rx_antenna", channel), "")

    def set_rx_rate(self, rate_hz, channel):
        self._set("rx_rate", rate_hz, channel)

    def get_rx_rate(self, channel):
        return self.settings.get(("rx_rate", channel), 0.0)

    def set_rx_freq(self, freq_hz, channel, integer_n=False):
        self._set("rx_freq", freq_hz, channel)
        self.tuned_at.append(("rx", channel, integer_n, self.command_time))

    def get_rx_freq(self, channel):
        return self.settings.get(("rx_freq", channel), 0.0)

    # Clock and time
    def set_clock_source(self, source):
        self._record("set_clock_source", source)
        self.settings["clock_source"] = source

    def set_time_source(self, source):
        self._record("set_time_source", source)
        self.settings["time_source"] = source

    def get_time_now(self):
        return TimeSpec(self.time_now)

    def get_time_last_pps(self):
        self.pps_reads += 1
        if self.pps_edge_after is not None and self.pps_reads > self.pps_edge_after:
            return TimeSpec(1.0)
        return TimeSpec(0.0)

    def set_time_next_pps(self, time_spec):
        self._record("set_time_next_pps", time_spec)
        self.time_now = time_spec.secs + 1.1

    def set_command_time(self, time_spec):
        self._record("set_command_time", time_spec)
        self.command_time = time_spec

    def clear_command_time(self):
        self._record("clear_command_time")
        self.command_time = None

    # Sensors
    def get_tx_sensor_names(self, channel):
        return list(self.tx_sensors)

    def get_tx_sensor(self, name, channel):
        return self.tx_sensors[name]

    def get_rx_sensor_names(self, channel):
        return list(self.rx_sensors)

    def get_rx_sensor(self, name, channel):
        return self.rx_sensors[name]

    def get_mboard_sensor_names(self, mboard):
        return list(self.mboard_sensors)

    def get_mboard_sensor(self, name, mboard):
        return self.mboard_sensors[name]

    # Streams
    def get_tx_stream(self, channels: Sequence[int]):
        if self.tx_stream is None or self.tx_stream.num_channels != len(channels):
            self.tx_stream = FakeTxStream(len(channels))
        return self.tx_stream

    def get_rx_stream(self, channels: Sequence[int]):
        if self.rx_stream is None or self.rx_stream.num_channels != len(channels):
            self.rx_stream = FakeRxStream(len(channels))
        return self.rx_stream


def make_config(**kwargs) -> SessionConfig:
    """Two-channel TX / two-channel RX config with small buffers."""
    values = dict(
        tx_channels=(0, 1),
        rx_channels=(0, 1),
        tx_gains=(10.0, 10.0),
        rx_gains=(20.0, 20.0),
        tx_ants=("TX/RX", "TX/RX"),
        rx_ants=("RX2", "RX2"),
        tx_freqs=(915e6, 915e6),
        rx_freqs=(915e6, 915e6),
        tx_rates=(1e6, 1e6),
        rx_rates=(1e6, 1e6),
        spb=100,
        nsamps=1000,
        delay=0.5,
    )
    values.update(kwargs)
    return SessionConfig(**values)


def ramp_buffer(num_channels: int, num_samples: int) -> SampleBuffer:
    """Buffer whose sample k of channel c is k + 1j * c."""
    ramp = np.arange(num_samples, dtype=np.float32)
    return SampleBuffer([ramp + 1j * ch for ch in range(num_channels)])


@pytest.fixture
def radio():
    """Opened two-by-two fake radio."""
    device = FakeRadio()
    device.open()
    return device


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def buffer_factory():
    return ramp_buffer


@pytest.fixture
def radio_factory():
    """Build an opened fake radio with custom channel counts."""

    def factory(tx_channels=2, rx_channels=2, num_mboards=1):
        device = FakeRadio(tx_channels, rx_channels, num_mboards)
        device.open()
        return device

    return factory
