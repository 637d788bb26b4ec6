"""
Device synchronization for phase-aligned multi-channel TX/RX.

Brings the radio into a known state before streaming:

    IDLE -> CONFIGURED -> CLOCK_SYNCED -> TUNED -> LOCK_VERIFIED -> SCHEDULED

and computes the absolute device time at which both streaming workers
start. The synchronizer mutates device state; only one session may run
it against a device at a time.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..devices.base import RadioDevice, TimeSpec
from .cancel import CancellationToken
from .config import ClockSource, SessionConfig
from .result import (
    CancelledError,
    ClockSyncTimeout,
    LockError,
    Result,
    TxRxError,
)

logger = logging.getLogger(__name__)

PPS_POLL_INTERVAL = 0.1  # seconds between last-PPS reads
PPS_SETTLE_TIME = 1.1  # wait past the PPS edge that zeroes the clock
TUNE_COMMAND_OFFSET = 0.3  # timed tune commands run this far in the future
TUNE_SETTLE_MARGIN = 0.2  # extra wait after the tune offset
DEFAULT_PPS_TIMEOUT = 5.0

LO_LOCK_SENSOR = "lo_locked"
REF_LOCK_SENSOR = "ref_locked"
MIMO_LOCK_SENSOR = "mimo_locked"


class SyncState(Enum):
    """Synchronization progress."""

    IDLE = "idle"
    CONFIGURED = "configured"  # Gain / antenna / rate applied
    CLOCK_SYNCED = "clock_synced"  # Device time zeroed on a PPS edge
    TUNED = "tuned"  # Timed integer-N tune done
    LOCK_VERIFIED = "lock_verified"  # LO / ref sensors checked
    SCHEDULED = "scheduled"  # Start time computed
    FAILED = "failed"


@dataclass
class ChannelReadback:
    """Values the device actually applied to one channel."""

    channel: int
    gain: float = 0.0
    antenna: str = ""
    rate: float = 0.0
    freq: float = 0.0


@dataclass
class SyncReport:
    """Outcome of a successful synchronization."""

    start_time: TimeSpec
    tx: List[ChannelReadback] = field(default_factory=list)
    rx: List[ChannelReadback] = field(default_factory=list)
    sensors: Dict[str, bool] = field(default_factory=dict)


class DeviceSynchronizer:
    """
    Applies a SessionConfig to a device and schedules a common start time.

    Delays wait on the cancellation token so a cancel cuts them short.
    A sleep function can be injected to run the timing sequence without
    real delays.
    """

    def __init__(
        self,
        device: RadioDevice,
        pps_timeout: Optional[float] = DEFAULT_PPS_TIMEOUT,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            device: Radio to configure
            pps_timeout: Seconds to wait for a PPS edge, None to wait forever
            sleep: Sleep function used between polls and for settle delays
                (None = wait on the cancellation token)
        """
        self._device = device
        self._pps_timeout = pps_timeout
        self._sleep = sleep
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    def synchronize(
        self, config: SessionConfig, token: Optional[CancellationToken] = None
    ) -> Result[SyncReport]:
        """
        Run the full synchronization sequence.

        Returns:
            Result with a SyncReport whose start_time is the single value
            both streaming workers must use
        """
        token = token or CancellationToken()
        self._state = SyncState.IDLE
        try:
            report = SyncReport(start_time=TimeSpec(0.0))
            report.tx, report.rx = self.apply_channel_settings(config)
            self.sync_clock(config, token)
            self.tune(config, report, token)
            report.sensors = self.verify_locks(config)
            report.start_time = self.schedule_start(config)
            return Result.success(report)
        except TxRxError as e:
            self._state = SyncState.FAILED
            logger.error(f"Synchronization failed: {e}")
            return Result.from_exception(e)
        except Exception:
            self._state = SyncState.FAILED
            raise

    def apply_channel_settings(self, config: SessionConfig):
        """Apply gain, antenna and rate to every TX then every RX channel."""
        dev = self._device
        tx_readback: List[ChannelReadback] = []
        rx_readback: List[ChannelReadback] = []

        logger.info("====== Configuring Tx ======")
        for i, ch in enumerate(config.tx_channels):
            dev.set_tx_gain(config.tx_gains[i], ch)
            dev.set_tx_antenna(config.tx_ants[i], ch)
            dev.set_tx_rate(config.tx_rates[i], ch)
            rb = ChannelReadback(
                channel=ch,
                gain=dev.get_tx_gain(ch),
                antenna=dev.get_tx_antenna(ch),
                rate=dev.get_tx_rate(ch),
            )
            tx_readback.append(rb)
            logger.info(
                f"Tx channel {ch}: gain {rb.gain:.2f} dB, ant {rb.antenna}, "
                f"rate {rb.rate / 1e6:.3f} Msps"
            )

        logger.info("====== Configuring Rx ======")
        for i, ch in enumerate(config.rx_channels):
            dev.set_rx_gain(config.rx_gains[i], ch)
            dev.set_rx_antenna(config.rx_ants[i], ch)
            dev.set_rx_rate(config.rx_rates[i], ch)
            rb = ChannelReadback(
                channel=ch,
                gain=dev.get_rx_gain(ch),
                antenna=dev.get_rx_antenna(ch),
                rate=dev.get_rx_rate(ch),
            )
            rx_readback.append(rb)
            logger.info(
                f"Rx channel {ch}: gain {rb.gain:.1f} dB, ant {rb.antenna}, "
                f"rate {rb.rate / 1e6:.3f} Msps"
            )

        self._state = SyncState.CONFIGURED
        return tx_readback, rx_readback

    def sync_clock(self, config: SessionConfig, token: CancellationToken) -> None:
        """
        Select clock/time sources and zero the device time on a PPS edge.

        Raises:
            ClockSyncTimeout: No PPS edge within pps_timeout
            CancelledError: Token cancelled while waiting
        """
        dev = self._device
        logger.info(f"Setting clock reference to: {config.clock_source.value}")
        dev.set_clock_source(config.clock_source.value)

        time_source = config.derived_time_source
        if time_source != config.time_source:
            logger.debug(
                f"time_source {config.time_source.value!r} overridden by "
                f"clock source {config.clock_source.value!r}"
            )
        logger.info(f"Setting time reference to: {time_source.value}")
        dev.set_time_source(time_source.value)

        logger.info("Waiting for PPS edge...")
        self._wait_for_pps(token)

        # Processed shortly after the edge just seen, so it applies on the next one
        dev.set_time_next_pps(TimeSpec(0.0))
        if self._pause(PPS_SETTLE_TIME, token):
            raise CancelledError("Cancelled while settling device time")

        logger.info(f"Current device time: {dev.get_time_now().real_secs:.6f} seconds")
        self._state = SyncState.CLOCK_SYNCED

    def _wait_for_pps(self, token: CancellationToken) -> None:
        max_polls = None
        if self._pps_timeout is not None:
            max_polls = max(1, math.ceil(self._pps_timeout / PPS_POLL_INTERVAL))

        last_pps = self._device.get_time_last_pps()
        polls = 0
        while self._device.get_time_last_pps() == last_pps:
            if token.cancelled:
                raise CancelledError("Cancelled while waiting for PPS edge")
            if max_polls is not None and polls >= max_polls:
                raise ClockSyncTimeout(
                    f"No PPS edge detected within {self._pps_timeout:.1f} s"
                )
            if self._pause(PPS_POLL_INTERVAL, token):
                raise CancelledError("Cancelled while waiting for PPS edge")
            polls += 1

    def _pause(self, seconds: float, token: CancellationToken) -> bool:
        """Wait `seconds`; return True if the token was cancelled."""
        if self._sleep is None:
            return token.wait(seconds)
        self._sleep(seconds)
        return token.cancelled

    def tune(
        self,
        config: SessionConfig,
        report: Optional[SyncReport] = None,
        token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Tune every channel at one common device time using integer-N mode.

        Raises:
            CancelledError: Token cancelled while waiting for the tune to apply
        """
        token = token or CancellationToken()
        dev = self._device
        command_time = dev.get_time_now() + TUNE_COMMAND_OFFSET
        logger.info(f"Timed tune request for Tx and Rx at {command_time.real_secs:.3f} s")

        dev.set_command_time(command_time)
        try:
            for ch, freq in zip(config.tx_channels, config.tx_freqs):
                dev.set_tx_freq(freq, ch, integer_n=True)
            for ch, freq in zip(config.rx_channels, config.rx_freqs):
                dev.set_rx_freq(freq, ch, integer_n=True)
        finally:
            dev.clear_command_time()

        if self._pause(TUNE_COMMAND_OFFSET + TUNE_SETTLE_MARGIN, token):
            raise CancelledError("Cancelled while tuning")

        tx_rb = {rb.channel: rb for rb in report.tx} if report else {}
        rx_rb = {rb.channel: rb for rb in report.rx} if report else {}
        for ch in config.tx_channels:
            freq = dev.get_tx_freq(ch)
            if ch in tx_rb:
                tx_rb[ch].freq = freq
            logger.info(f"Tx channel {ch} freq set to {freq / 1e6:.3f} MHz")
        for ch in config.rx_channels:
            freq = dev.get_rx_freq(ch)
            if ch in rx_rb:
                rx_rb[ch].freq = freq
            logger.info(f"Rx channel {ch} freq set to {freq / 1e6:.3f} MHz")

        self._state = SyncState.TUNED

    def verify_locks(self, config: SessionConfig) -> Dict[str, bool]:
        """
        Check LO lock per channel and reference / MIMO lock per mainboard.

        Sensors the device does not advertise are skipped.

        Returns:
            Sensor readings keyed like "tx0:lo_locked" or "mb0:ref_locked"

        Raises:
            LockError: An advertised sensor reports unlocked
        """
        dev = self._device
        readings: Dict[str, bool] = {}

        logger.info("Checking LO lock status...")
        for ch in config.tx_channels:
            if LO_LOCK_SENSOR in dev.get_tx_sensor_names(ch):
                locked = bool(dev.get_tx_sensor(LO_LOCK_SENSOR, ch))
                readings[f"tx{ch}:{LO_LOCK_SENSOR}"] = locked
                logger.info(f"Checking Tx(ch={ch}): {LO_LOCK_SENSOR}={locked}")
                if not locked:
                    raise LockError(f"Tx channel {ch} LO is not locked")
        for ch in config.rx_channels:
            if LO_LOCK_SENSOR in dev.get_rx_sensor_names(ch):
                locked = bool(dev.get_rx_sensor(LO_LOCK_SENSOR, ch))
                readings[f"rx{ch}:{LO_LOCK_SENSOR}"] = locked
                logger.info(f"Checking Rx(ch={ch}): {LO_LOCK_SENSOR}={locked}")
                if not locked:
                    raise LockError(f"Rx channel {ch} LO is not locked")

        board_sensor = None
        if config.clock_source == ClockSource.EXTERNAL:
            board_sensor = REF_LOCK_SENSOR
        elif config.clock_source == ClockSource.MIMO:
            board_sensor = MIMO_LOCK_SENSOR

        if board_sensor is not None:
            logger.info(f"Checking {board_sensor} status...")
            for mb in range(dev.num_mboards):
                if board_sensor not in dev.get_mboard_sensor_names(mb):
                    continue
                locked = bool(dev.get_mboard_sensor(board_sensor, mb))
                readings[f"mb{mb}:{board_sensor}"] = locked
                logger.info(f"Checking mboard {mb}: {board_sensor}={locked}")
                if not locked:
                    raise LockError(f"Mainboard {mb} {board_sensor} is false")

        self._state = SyncState.LOCK_VERIFIED
        return readings

    def schedule_start(self, config: SessionConfig) -> TimeSpec:
        """Compute the shared absolute start time: now + delay."""
        start_time = self._device.get_time_now() + config.delay
        logger.info(
            f"Start time: {config.delay:.3f} seconds in the future "
            f"(absolute time: {start_time.real_secs:.6f})"
        )
        self._state = SyncState.SCHEDULED
        return start_time
