"""
Remote session server - Drives TX/RX sessions on behalf of another process.

Bulk sample data travels through named shared memory regions; control
messages travel as JSON over ZeroMQ.
"""

from .client import RemoteClient, RemoteSessionError
from .protocol import Command, Reply, ReplyStatus, Request, UnknownCommandError
from .session import DEFAULT_PORT, RemoteSession
from .shm import DEFAULT_RX_SHM_NAME, create_region, read_region, release_region, remove_region

__all__ = [
    "RemoteSession",
    "RemoteClient",
    "RemoteSessionError",
    "Command",
    "Request",
    "Reply",
    "ReplyStatus",
    "UnknownCommandError",
    "DEFAULT_PORT",
    "DEFAULT_RX_SHM_NAME",
    "create_region",
    "read_region",
    "release_region",
    "remove_region",
]
