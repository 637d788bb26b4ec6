"""
Client for the remote session server.
"""

import logging
import os
import uuid
from typing import Any, Dict, Optional

import zmq

from ..core.config import SessionConfig
from ..core.result import ErrorKind, TxRxError
from ..core.sample_buffer import SampleBuffer
from .protocol import Command, Reply, ReplyStatus, Request
from .shm import create_region, read_region, release_region

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "tcp://localhost:5555"


class RemoteSessionError(TxRxError):
    """Raised when the server answers with anything but success."""

    kind = ErrorKind.PROTOCOL

    def __init__(self, message: str, reply: Optional[Reply] = None):
        super().__init__(message)
        self.reply = reply


class RemoteClient:
    """
    Drives remote TX/RX sessions.

    Usage:
        with RemoteClient("tcp://radio-host:5555") as client:
            rx = client.execute(config, tx_buffer)
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        timeout_ms: Optional[int] = None,
        context=None,
    ):
        """
        Initialize client.

        Args:
            address: Server address
            timeout_ms: Reply timeout (None waits forever)
            context: ZeroMQ context (defaults to the shared instance)
        """
        self._address = address
        self._timeout_ms = timeout_ms
        self._context = context
        self._sock = None

    @property
    def address(self) -> str:
        return self._address

    def connect(self) -> None:
        if self._sock is not None:
            return
        ctx = self._context or zmq.Context.instance()
        self._sock = ctx.socket(zmq.REQ)
        self._sock.setsockopt(zmq.LINGER, 0)
        self._sock.connect(self._address)
        logger.debug(f"Connected to {self._address}")

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send one request and wait for its reply."""
        self.connect()
        self._sock.send_json(payload)
        if self._timeout_ms is not None and not self._sock.poll(self._timeout_ms, zmq.POLLIN):
            # A REQ socket cannot send again before a reply arrives
            self.close()
            raise RemoteSessionError(f"No reply from {self._address} within {self._timeout_ms} ms")
        return self._sock.recv_json()

    def request(self, request: Request) -> Reply:
        return Reply.from_dict(self._send(request.to_dict()))

    def release(self) -> Reply:
        """Ask the server to unlink its RX region."""
        return self.request(Request(command=Command.RELEASE))

    def execute(self, config: SessionConfig, tx_buffer: SampleBuffer) -> SampleBuffer:
        """
        Run one session on the server.

        Args:
            config: Session configuration
            tx_buffer: One channel per TX channel

        Returns:
            Received samples, one channel per RX channel

        Raises:
            ValueError: tx_buffer channel count differs from config.tx_channels
            RemoteSessionError: The server did not report success
        """
        if tx_buffer.num_channels != len(config.tx_channels):
            raise ValueError(
                f"TX buffer has {tx_buffer.num_channels} channels, "
                f"config has {len(config.tx_channels)} TX channels"
            )

        tx_name = f"txrx_tx_{os.getpid()}_{uuid.uuid4().hex[:8]}"
        tx_shm = create_region(tx_name, tx_buffer)
        try:
            reply = self.request(
                Request(command=Command.EXECUTE, config=config, tx_shm_name=tx_name)
            )
        finally:
            release_region(tx_shm)

        if reply.status != ReplyStatus.SUCCESS:
            raise RemoteSessionError(
                f"Server replied {reply.status.value}: {reply.msg or ''}".rstrip(": "),
                reply,
            )

        try:
            rx_buffer = read_region(reply.rx_shm_name, reply.num_rx_ch, reply.rx_nsamps_per_ch)
        finally:
            self.release()
        logger.info(
            f"Received {rx_buffer.num_channels} channels, "
            f"{rx_buffer.num_samples} samples per channel"
        )
        return rx_buffer

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
