"""
I/Q sample file utilities.

Flat binary cf32 files: interleaved float32 I/Q pairs, one file per
channel, no header.
"""

import logging
import os
from typing import Optional, Sequence

import numpy as np

from ..core.sample_buffer import BYTES_PER_SAMPLE, SAMPLE_DTYPE, SampleBuffer

logger = logging.getLogger(__name__)


def file_num_samples(filepath: str) -> int:
    """Number of whole cf32 samples in a file."""
    return os.path.getsize(filepath) // BYTES_PER_SAMPLE


def load_cf32(
    filepath: str, num_samples: Optional[int] = None, offset_samples: int = 0
) -> np.ndarray:
    """
    Load cf32 samples from file.

    Args:
        filepath: Path to I/Q file
        num_samples: Number of samples to read (None = all)
        offset_samples: Number of samples to skip

    Returns:
        Complex64 numpy array
    """
    with open(filepath, "rb") as f:
        f.seek(offset_samples * BYTES_PER_SAMPLE)
        count = -1 if num_samples is None else num_samples
        return np.fromfile(f, dtype=SAMPLE_DTYPE, count=count)


def save_cf32(samples: np.ndarray, filepath: str) -> None:
    """Save samples to a cf32 file, replacing any existing file."""
    np.asarray(samples, dtype=SAMPLE_DTYPE).tofile(filepath)


def load_files_to_buffer(paths: Sequence[str]) -> SampleBuffer:
    """
    Load one cf32 file per channel into a buffer.

    Channels are trimmed to the shortest file.

    Raises:
        OSError: A file cannot be opened
    """
    channels = []
    for path in paths:
        samples = load_cf32(path)
        if len(samples) * BYTES_PER_SAMPLE != os.path.getsize(path):
            logger.warning(f"Incomplete read for TX file: {path}")
        channels.append(samples)

    buffer = SampleBuffer(channels)
    buffer.equalize()
    logger.info(
        f"Loaded {buffer.num_channels} channels of TX data "
        f"({buffer.num_samples} samples per channel)"
    )
    return buffer


def write_buffer_to_files(paths: Sequence[str], buffer: SampleBuffer) -> int:
    """
    Write each buffer channel to its cf32 file.

    Paths beyond the buffer's channel count get an empty file.

    Returns:
        Number of files written
    """
    for i, path in enumerate(paths):
        if i < buffer.num_channels:
            save_cf32(buffer[i], path)
        else:
            open(path, "wb").close()
        logger.info(f"Rx channel saved to file: {path}")

    logger.info(f"Write completed! Files written: {len(paths)}")
    return len(paths)
