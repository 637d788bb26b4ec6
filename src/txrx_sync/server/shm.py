"""
Shared memory regions for bulk sample transfer.

Regions hold samples in channel-major layout: all of channel 0's cf32
samples, then all of channel 1's, and so on. Each region has exactly
one writer and one reader; the creator of a region is responsible for
unlinking it.
"""

import logging
from multiprocessing import resource_tracker
from multiprocessing.shared_memory import SharedMemory
from typing import Optional

import numpy as np

from ..core.sample_buffer import BYTES_PER_SAMPLE, SAMPLE_DTYPE, SampleBuffer

logger = logging.getLogger(__name__)

DEFAULT_RX_SHM_NAME = "usrp_rx_shm"


def _attach(name: str) -> SharedMemory:
    """
    Open an existing region without taking ownership of it.

    The resource tracker would otherwise unlink a region this process
    did not create when the process exits.
    """
    shm = SharedMemory(name=name)
    resource_tracker.unregister(shm._name, "shared_memory")
    return shm


def read_region(name: str, num_channels: int, num_samples: Optional[int] = None) -> SampleBuffer:
    """
    Copy a channel-major region into a SampleBuffer.

    Args:
        name: Region name
        num_channels: Number of channels packed in the region
        num_samples: Per-channel sample count; derived from the region
            size when None

    Raises:
        FileNotFoundError: No region with that name exists
    """
    shm = _attach(name)
    try:
        if num_channels <= 0:
            return SampleBuffer()
        if num_samples is None:
            num_samples = shm.size // (num_channels * BYTES_PER_SAMPLE)
        count = num_channels * num_samples
        flat = np.ndarray((count,), dtype=SAMPLE_DTYPE, buffer=shm.buf)
        buffer = SampleBuffer.from_channel_major(flat.copy(), num_channels)
        del flat
        return buffer
    finally:
        shm.close()


def remove_region(name: str) -> bool:
    """
    Unlink a region by name if it exists.

    Returns:
        True if a region was removed
    """
    try:
        shm = SharedMemory(name=name)
    except FileNotFoundError:
        return False
    shm.close()
    shm.unlink()
    logger.debug(f"Removed shared memory region {name}")
    return True


def create_region(name: str, buffer: SampleBuffer) -> SharedMemory:
    """
    Create a region holding `buffer` in channel-major layout.

    A stale region with the same name is removed first. The caller owns
    the returned region and must close and unlink it.
    """
    remove_region(name)
    data = buffer.to_channel_major()
    shm = SharedMemory(name=name, create=True, size=max(data.nbytes, 1))
    if data.nbytes:
        view = np.ndarray(data.shape, dtype=SAMPLE_DTYPE, buffer=shm.buf)
        view[:] = data
        del view
    logger.debug(f"Created shared memory region {name} ({data.nbytes} bytes)")
    return shm


def release_region(shm: Optional[SharedMemory]) -> None:
    """Close and unlink a region created by this process, tolerating repeats."""
    if shm is None:
        return
    shm.close()
    try:
        shm.unlink()
    except FileNotFoundError:
        logger.debug(f"Shared memory region {shm.name} already removed")
