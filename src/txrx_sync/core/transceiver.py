"""
Synchronized multi-channel transceiver.

Owns one radio device and runs complete sessions on it:

    validate -> synchronize -> stream (TX and RX concurrently)

Only one session may use the device at a time. Callers serialize
sessions (the remote session server handles one request at a time);
the transceiver itself does no locking.
"""

import logging
from typing import Callable, Optional

from ..devices.base import RadioDevice
from ..utils.iq import load_files_to_buffer, write_buffer_to_files
from .cancel import CancellationToken
from .config import SessionConfig
from .result import Result
from .sample_buffer import SampleBuffer
from .streaming import StreamingEngine, StreamReport
from .synchronizer import DEFAULT_PPS_TIMEOUT, DeviceSynchronizer, SyncReport
from .validator import validate_config

logger = logging.getLogger(__name__)


class Transceiver:
    """
    Runs validated, synchronized TX/RX sessions on a single device.
    """

    def __init__(
        self,
        device: RadioDevice,
        pps_timeout: Optional[float] = DEFAULT_PPS_TIMEOUT,
        max_rx_timeouts: Optional[int] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize transceiver.

        Args:
            device: Opened radio device, exclusively owned by this instance
            pps_timeout: PPS edge wait limit in seconds (None = unbounded)
            max_rx_timeouts: Consecutive RX timeouts before giving up
            sleep: Sleep function for synchronization delays (None = wait on
                the cancellation token)
        """
        self._device = device
        self._synchronizer = DeviceSynchronizer(device, pps_timeout=pps_timeout, sleep=sleep)
        self._max_rx_timeouts = max_rx_timeouts
        self._last_sync: Optional[SyncReport] = None
        self._last_engine: Optional[StreamingEngine] = None

    @property
    def device(self) -> RadioDevice:
        return self._device

    @property
    def synchronizer(self) -> DeviceSynchronizer:
        return self._synchronizer

    @property
    def last_sync(self) -> Optional[SyncReport]:
        """Report of the most recent successful synchronization."""
        return self._last_sync

    @property
    def last_engine(self) -> Optional[StreamingEngine]:
        """Engine of the most recent session (worker statistics)."""
        return self._last_engine

    def validate(self, config: SessionConfig, check_files: bool = True) -> Result[None]:
        """Check `config` against this device without changing it."""
        return validate_config(
            config,
            self._device.tx_num_channels,
            self._device.rx_num_channels,
            check_files=check_files,
        )

    def synchronize(
        self, config: SessionConfig, token: Optional[CancellationToken] = None
    ) -> Result[SyncReport]:
        """Apply `config` and compute the shared start time."""
        result = self._synchronizer.synchronize(config, token)
        if result.ok:
            self._last_sync = result.value
        return result

    def _engine(self, config: SessionConfig) -> StreamingEngine:
        self._last_engine = StreamingEngine(config.spb, max_rx_timeouts=self._max_rx_timeouts)
        return self._last_engine

    def execute(
        self,
        config: SessionConfig,
        tx_buffer: Optional[SampleBuffer],
        token: Optional[CancellationToken] = None,
        check_files: bool = False,
    ) -> Result[SampleBuffer]:
        """
        Run one buffer-to-buffer session.

        Args:
            config: Session configuration
            tx_buffer: Samples to transmit, one channel per TX channel
            token: Cancellation token
            check_files: Apply file checks during validation

        Returns:
            Result with the received buffer
        """
        token = token or CancellationToken()
        checked = self.validate(config, check_files=check_files)
        if not checked.ok:
            return Result.failure(checked.kind, checked.message)

        synced = self.synchronize(config, token)
        if not synced.ok:
            return Result.failure(synced.kind, synced.message)

        return self._engine(config).run(
            self._device, config, synced.value.start_time, tx_buffer, token
        )

    def execute_files(
        self,
        config: SessionConfig,
        token: Optional[CancellationToken] = None,
        streaming: bool = False,
    ) -> Result[StreamReport]:
        """
        Run one file-backed session.

        Buffered mode loads every TX file up front and writes RX files
        after reception. Streaming mode reads and writes chunk by chunk.
        """
        token = token or CancellationToken()
        checked = self.validate(config, check_files=True)
        if not checked.ok:
            return Result.failure(checked.kind, checked.message)

        if streaming:
            synced = self.synchronize(config, token)
            if not synced.ok:
                return Result.failure(synced.kind, synced.message)
            return self._engine(config).run_files(
                self._device, config, synced.value.start_time, token
            )

        try:
            tx_buffer = load_files_to_buffer(config.tx_files)
        except OSError as e:
            logger.error(f"Failed to load TX files: {e}")
            return Result.from_exception(e)

        received = self.execute(config, tx_buffer, token, check_files=False)
        if not received.ok:
            return Result.failure(received.kind, received.message)

        try:
            write_buffer_to_files(config.rx_files, received.value)
        except OSError as e:
            logger.error(f"Failed to write RX files: {e}")
            return Result.from_exception(e)
        engine = self._last_engine
        return Result.success(StreamReport(tx=engine.tx_report, rx=engine.rx_report))
