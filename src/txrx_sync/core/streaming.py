"""
Concurrent TX/RX streaming engine.

Runs a transmit worker and a receive worker side by side against the
device's stream objects. Both workers get the same absolute start time
from the synchronizer, so the hardware begins TX and RX on the same
clock tick regardless of host scheduling jitter.

Workers check their cancellation token once per iteration. Blocking
send/recv calls are not interrupted.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..devices.base import (
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
from ..utils.iq import file_num_samples
from .cancel import CancellationToken
from .config import SessionConfig
from .result import ErrorKind, Result, StreamError
from .sample_buffer import SAMPLE_DTYPE, SampleBuffer

logger = logging.getLogger(__name__)

FIRST_PACKET_TIMEOUT = 5.0  # seconds, covers the start delay
STREAM_TIMEOUT = 0.1  # seconds, once samples are flowing


@dataclass
class TxReport:
    """Transmit worker statistics."""

    samples_sent: int = 0
    chunks_sent: int = 0
    zero_sends: int = 0
    cancelled: bool = False


@dataclass
class RxReport:
    """Receive worker statistics."""

    samples_requested: int = 0
    samples_received: int = 0
    timeouts: int = 0
    overflows: int = 0
    cancelled: bool = False


@dataclass
class StreamReport:
    """Combined statistics of one streaming session."""

    tx: Optional[TxReport] = None
    rx: Optional[RxReport] = None


class StreamingEngine:
    """
    Moves sample blocks between host buffers/files and the radio streams.

    One engine instance serves one session. The last worker reports are
    kept on the instance for diagnostics.
    """

    def __init__(
        self,
        spb: int,
        first_timeout: float = FIRST_PACKET_TIMEOUT,
        timeout: float = STREAM_TIMEOUT,
        max_rx_timeouts: Optional[int] = None,
    ):
        """
        Initialize streaming engine.

        Args:
            spb: Samples per channel per send/recv call
            first_timeout: Timeout before the first packet
            timeout: Timeout after the first packet
            max_rx_timeouts: Stop receiving after this many consecutive
                timeouts (None retries until cancelled)
        """
        if spb <= 0:
            raise ValueError(f"spb must be positive, got {spb}")
        self._spb = spb
        self._first_timeout = first_timeout
        self._timeout = timeout
        self._max_rx_timeouts = max_rx_timeouts
        self.tx_report = TxReport()
        self.rx_report = RxReport()

    @property
    def spb(self) -> int:
        return self._spb

    # ------------------------------------------------------------------
    # TX worker
    # ------------------------------------------------------------------

    @staticmethod
    def _start_metadata(start_time: TimeSpec) -> TxMetadata:
        return TxMetadata(start_of_burst=True, has_time_spec=True, time_spec=start_time)

    @staticmethod
    def _send_end_of_burst(tx_stream: TxStream) -> None:
        empty = [np.zeros(0, dtype=SAMPLE_DTYPE) for _ in range(tx_stream.num_channels)]
        tx_stream.send(empty, TxMetadata(end_of_burst=True), STREAM_TIMEOUT)

    def transmit_from_buffer(
        self,
        tx_stream: TxStream,
        buffer: SampleBuffer,
        start_time: TimeSpec,
        token: CancellationToken,
    ) -> int:
        """
        Transmit a whole buffer as one timed burst.

        Returns:
            Samples per channel transmitted
        """
        report = TxReport()
        self.tx_report = report
        total = buffer.num_samples
        cursor = 0
        timeout = self._first_timeout
        md = self._start_metadata(start_time)

        logger.info(f"Starting transmission from buffer with {total} samples per channel")

        while cursor < total:
            if token.cancelled:
                report.cancelled = True
                break
            count = min(self._spb, total - cursor)
            sent = tx_stream.send(buffer.chunk(cursor, count), md, timeout)
            if sent == 0:
                report.zero_sends += 1
                logger.warning(f"send() returned 0 samples [{cursor}/{total}]")
                continue
            cursor += sent
            report.samples_sent += sent
            report.chunks_sent += 1
            md = TxMetadata()
            timeout = self._timeout

        self._send_end_of_burst(tx_stream)
        logger.info(f"Transmit completed! Samples sent: {report.samples_sent}")
        return report.samples_sent

    def transmit_from_files(
        self,
        tx_stream: TxStream,
        paths: Sequence[str],
        start_time: TimeSpec,
        token: CancellationToken,
    ) -> int:
        """
        Transmit per-channel cf32 files chunk by chunk as one timed burst.

        Each iteration reads up to spb samples from every file and sends
        only as many as the shortest read returned, so all channels stay
        aligned and stop together at the shortest file's end.

        Returns:
            Samples per channel transmitted
        """
        report = TxReport()
        self.tx_report = report
        timeout = self._first_timeout
        md = self._start_metadata(start_time)

        with ExitStack() as stack:
            files = [stack.enter_context(open(p, "rb")) for p in paths]
            chunks: List[np.ndarray] = []
            valid = 0
            offset = 0

            while True:
                if token.cancelled:
                    report.cancelled = True
                    break
                if offset == valid:
                    chunks = [np.fromfile(f, dtype=SAMPLE_DTYPE, count=self._spb) for f in files]
                    valid = min((len(c) for c in chunks), default=0)
                    offset = 0
                    if valid == 0:
                        break

                sent = tx_stream.send([c[offset:valid] for c in chunks], md, timeout)
                if sent == 0:
                    report.zero_sends += 1
                    logger.warning("send() returned 0 samples")
                    continue
                offset += sent
                report.samples_sent += sent
                report.chunks_sent += 1
                md = TxMetadata()
                timeout = self._timeout

        self._send_end_of_burst(tx_stream)
        logger.info(f"Transmit DONE! samps: {report.samples_sent}")
        return report.samples_sent

    # ------------------------------------------------------------------
    # RX worker
    # ------------------------------------------------------------------

    def _issue_start(self, rx_stream: RxStream, num_samps: int, start_time: TimeSpec) -> None:
        cmd = StreamCommand(
            mode=StreamMode.NUM_SAMPS_AND_DONE,
            num_samps=num_samps,
            stream_now=False,
            time_spec=start_time,
        )
        logger.debug(f"Reception start time: {start_time.real_secs:.3f} seconds")
        rx_stream.issue_stream_cmd(cmd)

    def _classify(self, md: RxMetadata, report: RxReport) -> bool:
        """
        Classify one recv() result.

        Returns:
            True if the samples are valid, False to retry without advancing

        Raises:
            StreamError: Any error other than timeout or overflow
        """
        if md.error_code == RxErrorCode.NONE:
            return True
        if md.error_code == RxErrorCode.TIMEOUT:
            report.timeouts += 1
            logger.warning("RX channel received timeout.")
            return False
        if md.error_code == RxErrorCode.OVERFLOW:
            # Samples dropped by the hardware leave an undetected gap here
            report.overflows += 1
            logger.warning("RX channel received overflow.")
            return False
        logger.error(f"RX channel received error: {md.strerror()}")
        raise StreamError(f"Receive error: {md.strerror()}")

    def _receive_loop(self, rx_stream, num_samps, start_time, token, sink) -> RxReport:
        report = RxReport(samples_requested=num_samps)
        self.rx_report = report
        if num_samps == 0:
            return report

        self._issue_start(rx_stream, num_samps, start_time)
        md = RxMetadata()
        timeout = self._first_timeout
        consecutive_timeouts = 0

        while report.samples_received < num_samps:
            if token.cancelled:
                report.cancelled = True
                break
            count = min(self._spb, num_samps - report.samples_received)
            n = sink(report.samples_received, count, md, timeout)
            if not self._classify(md, report):
                if md.error_code == RxErrorCode.TIMEOUT:
                    consecutive_timeouts += 1
                    if (
                        self._max_rx_timeouts is not None
                        and consecutive_timeouts >= self._max_rx_timeouts
                    ):
                        logger.warning(
                            f"Giving up after {consecutive_timeouts} consecutive timeouts"
                        )
                        break
                continue
            consecutive_timeouts = 0
            report.samples_received += n
            timeout = self._timeout

        return report

    def receive_to_buffer(
        self,
        rx_stream: RxStream,
        num_samps: int,
        start_time: TimeSpec,
        token: CancellationToken,
    ) -> SampleBuffer:
        """
        Receive `num_samps` samples per channel starting at `start_time`.

        Returns:
            Buffer trimmed to the number of samples actually received
        """
        buffer = SampleBuffer.zeros(rx_stream.num_channels, num_samps)
        logger.info(f"Starting reception, will receive {num_samps} samples")

        def sink(offset, count, md, timeout):
            return rx_stream.recv(buffer.chunk(offset, count), count, md, timeout)

        report = self._receive_loop(rx_stream, num_samps, start_time, token, sink)
        buffer.truncate(report.samples_received)
        logger.info(f"Receive completed! Samples received: {report.samples_received}")
        return buffer

    def receive_to_files(
        self,
        rx_stream: RxStream,
        paths: Sequence[str],
        num_samps: int,
        start_time: TimeSpec,
        token: CancellationToken,
    ) -> int:
        """
        Receive into per-channel cf32 files, appending each chunk as it arrives.

        Returns:
            Samples per channel written
        """
        scratch = SampleBuffer.zeros(rx_stream.num_channels, self._spb)

        with ExitStack() as stack:
            files = []
            for path in paths:
                files.append(stack.enter_context(open(path, "wb")))
                logger.info(f"RX channel saving to file: {path}")

            def sink(offset, count, md, timeout):
                n = rx_stream.recv(scratch.chunk(0, count), count, md, timeout)
                if md.error_code == RxErrorCode.NONE:
                    for f, ch in zip(files, scratch.channels):
                        ch[:n].tofile(f)
                return n

            report = self._receive_loop(rx_stream, num_samps, start_time, token, sink)

        logger.info(f"Received DONE! number of samples ({report.samples_received})")
        return report.samples_received

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @staticmethod
    def _guarded(session: CancellationToken, fn, *args):
        # A fatal error in one worker stops the other at its next iteration
        try:
            return fn(*args)
        except Exception:
            session.cancel()
            raise

    def _run_workers(self, session: CancellationToken, tx_job, rx_job):
        """Run the TX and RX jobs concurrently and join both."""
        tx_result = rx_result = None
        errors: List[Exception] = []
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="txrx") as pool:
            tx_future = pool.submit(self._guarded, session, *tx_job) if tx_job else None
            rx_future = pool.submit(self._guarded, session, *rx_job) if rx_job else None
            if tx_future is not None:
                try:
                    tx_result = tx_future.result()
                except Exception as e:
                    errors.append(e)
            if rx_future is not None:
                try:
                    rx_result = rx_future.result()
                except Exception as e:
                    errors.append(e)
        return tx_result, rx_result, errors

    def run(
        self,
        device: RadioDevice,
        config: SessionConfig,
        start_time: TimeSpec,
        tx_buffer: Optional[SampleBuffer],
        token: CancellationToken,
    ) -> Result[SampleBuffer]:
        """
        Transmit `tx_buffer` and receive concurrently from one start time.

        A config nsamps of 0 receives as many samples as are transmitted.

        Returns:
            Result with the received buffer (one channel per RX channel)
        """
        tx_buffer = tx_buffer if tx_buffer is not None else SampleBuffer()
        if config.tx_channels and tx_buffer.num_channels != len(config.tx_channels):
            return Result.failure(
                ErrorKind.VALIDATION,
                f"TX buffer has {tx_buffer.num_channels} channels, "
                f"config has {len(config.tx_channels)}",
            )

        num_samps = config.nsamps or tx_buffer.num_samples
        session = token.child()

        tx_job = rx_job = None
        if config.tx_channels:
            tx_stream = device.get_tx_stream(config.tx_channels)
            tx_job = (self.transmit_from_buffer, tx_stream, tx_buffer, start_time, session)
        if config.rx_channels:
            rx_stream = device.get_rx_stream(config.rx_channels)
            rx_job = (self.receive_to_buffer, rx_stream, num_samps, start_time, session)

        _, rx_buffer, errors = self._run_workers(session, tx_job, rx_job)
        if errors:
            logger.error(f"Streaming session failed: {errors[0]}")
            return Result.from_exception(errors[0])
        if token.cancelled:
            logger.warning("Streaming session cancelled, returning partial data")
        return Result.success(rx_buffer if rx_buffer is not None else SampleBuffer())

    def run_files(
        self,
        device: RadioDevice,
        config: SessionConfig,
        start_time: TimeSpec,
        token: CancellationToken,
    ) -> Result[StreamReport]:
        """
        Stream TX files to the radio and RX samples to files concurrently.

        A config nsamps of 0 receives as many samples as the first TX
        file holds.
        """
        num_samps = config.nsamps
        if num_samps == 0 and config.tx_files:
            num_samps = file_num_samples(config.tx_files[0])
        session = token.child()

        tx_job = rx_job = None
        if config.tx_channels:
            tx_stream = device.get_tx_stream(config.tx_channels)
            tx_job = (self.transmit_from_files, tx_stream, config.tx_files, start_time, session)
        if config.rx_channels:
            rx_stream = device.get_rx_stream(config.rx_channels)
            rx_job = (
                self.receive_to_files,
                rx_stream,
                config.rx_files,
                num_samps,
                start_time,
                session,
            )

        _, _, errors = self._run_workers(session, tx_job, rx_job)
        if errors:
            logger.error(f"Streaming session failed: {errors[0]}")
            return Result.from_exception(errors[0])
        return Result.success(
            StreamReport(
                tx=self.tx_report if tx_job else None,
                rx=self.rx_report if rx_job else None,
            )
        )
