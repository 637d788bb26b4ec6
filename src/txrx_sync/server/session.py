"""
Remote session server.

Serves EXECUTE / RELEASE requests over a ZeroMQ REP socket. Requests are
handled strictly one at a time, which also serializes all access to the
transceiver's device.

A single request's failure never stops the loop: every request gets a
reply, and the server keeps serving until its cancellation token is set.
"""

import json
import logging
import time
from typing import Optional, Union

import zmq

from ..core.cancel import CancellationToken
from ..core.result import ProtocolError
from ..core.transceiver import Transceiver
from .protocol import Command, Reply, ReplyStatus, Request, UnknownCommandError
from .shm import DEFAULT_RX_SHM_NAME, create_region, read_region, release_region, remove_region

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5555
POLL_INTERVAL_MS = 200  # receive poll slice, bounds shutdown latency


class RemoteSession:
    """
    Dispatches remote requests to a Transceiver.

    The RX region created by an EXECUTE stays alive until the next
    RELEASE, the next EXECUTE, or close().
    """

    def __init__(
        self,
        transceiver: Transceiver,
        rx_shm_name: str = DEFAULT_RX_SHM_NAME,
        token: Optional[CancellationToken] = None,
    ):
        """
        Initialize remote session.

        Args:
            transceiver: Transceiver owning the device
            rx_shm_name: Name of the RX shared memory region
            token: Root cancellation token for the served sessions
        """
        self._transceiver = transceiver
        self._rx_shm_name = rx_shm_name
        self._token = token or CancellationToken()
        self._rx_shm = None

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def rx_shm_name(self) -> str:
        return self._rx_shm_name

    def handle(self, data) -> Reply:
        """
        Handle one decoded request object.

        Never raises: every outcome is turned into a Reply.
        """
        try:
            request = Request.from_dict(data)
        except UnknownCommandError as e:
            logger.warning(str(e))
            return Reply(status=ReplyStatus.UNKNOWN, msg=str(e))
        except ProtocolError as e:
            logger.error(f"Rejected request: {e}")
            return Reply.error(str(e))

        if request.command == Command.RELEASE:
            return self.release()

        try:
            return self.execute(request)
        except Exception as e:
            logger.exception(f"EXECUTE failed: {e}")
            return Reply.error(str(e) or e.__class__.__name__)

    def handle_raw(self, message: Union[str, bytes]) -> str:
        """Handle one raw JSON request and return the JSON reply."""
        try:
            data = json.loads(message)
        except ValueError as e:
            logger.error(f"Malformed JSON request: {e}")
            reply = Reply.error(f"Malformed JSON request: {e}")
        else:
            reply = self.handle(data)
        return json.dumps(reply.to_dict())

    def execute(self, request: Request) -> Reply:
        """Run one buffer session with TX samples from shared memory."""
        config = request.config
        num_tx_ch = len(config.tx_channels)
        tx_buffer = read_region(request.tx_shm_name, num_tx_ch)
        tx_stats = tx_buffer.stats
        logger.info(
            f"Loaded {tx_stats.num_channels} channels, "
            f"{tx_stats.num_samples} samples per channel ({tx_stats.nbytes} bytes)"
        )

        result = self._transceiver.execute(config, tx_buffer, self._token)
        if not result.ok:
            logger.error(f"Session failed ({result.kind.value}): {result.message}")
            return Reply.failed(f"{result.kind.value}: {result.message}")

        rx_buffer = result.value
        self._release_rx()
        self._rx_shm = create_region(self._rx_shm_name, rx_buffer)
        rx_stats = rx_buffer.stats
        logger.info(
            f"RX data ready in {self._rx_shm_name}: {rx_stats.num_channels} channels, "
            f"{rx_stats.num_samples} samples per channel ({rx_stats.nbytes} bytes)"
        )
        return Reply(
            status=ReplyStatus.SUCCESS,
            rx_shm_name=self._rx_shm_name,
            rx_nsamps_per_ch=rx_stats.num_samples,
            num_rx_ch=rx_stats.num_channels,
        )

    def _release_rx(self) -> None:
        if self._rx_shm is not None:
            release_region(self._rx_shm)
            self._rx_shm = None
        else:
            remove_region(self._rx_shm_name)

    def release(self) -> Reply:
        """Unlink the RX region. Safe to call when none exists."""
        self._release_rx()
        logger.info(f"Released {self._rx_shm_name}")
        return Reply(status=ReplyStatus.RELEASED)

    def close(self) -> None:
        self._release_rx()

    def serve(self, address: str = f"tcp://*:{DEFAULT_PORT}", context=None) -> None:
        """
        Serve requests on a REP socket until the token is cancelled.

        Args:
            address: ZeroMQ bind address
            context: ZeroMQ context (defaults to the shared instance)
        """
        ctx = context or zmq.Context.instance()
        sock = ctx.socket(zmq.REP)
        sock.setsockopt(zmq.LINGER, 0)
        sock.bind(address)
        poller = zmq.Poller()
        poller.register(sock, zmq.POLLIN)
        logger.info(f"Remote session server live on {address}")

        try:
            while not self._token.cancelled:
                events = dict(poller.poll(POLL_INTERVAL_MS))
                if sock not in events:
                    continue
                message = sock.recv()
                started = time.monotonic()
                reply = self.handle_raw(message)
                sock.send_string(reply)
                logger.debug(f"Request handled in {(time.monotonic() - started) * 1000:.1f} ms")
        finally:
            poller.unregister(sock)
            sock.close()
            self.close()
            logger.info("Remote session server stopped")
