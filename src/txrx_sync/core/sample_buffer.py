"""
Multi-channel sample buffer for complex I/Q data.

Holds one complex64 sequence per active channel. A buffer has a single
owner at a time: the loader or RX worker that produced it, then the
consumer it is handed to. No locking is done here.
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

SAMPLE_DTYPE = np.complex64
BYTES_PER_SAMPLE = np.dtype(SAMPLE_DTYPE).itemsize  # 8 bytes: two float32


@dataclass
class BufferStats:
    """Buffer statistics."""

    num_channels: int = 0
    num_samples: int = 0
    nbytes: int = 0


class SampleBuffer:
    """
    Ordered per-channel complex sample sequences.

    All channels are expected to hold the same number of samples.
    Producers equalize by trimming every channel to the shortest one.
    """

    def __init__(self, channels: Sequence[np.ndarray] = ()):
        """
        Initialize sample buffer.

        Args:
            channels: One array of samples per channel (converted to complex64)
        """
        self._channels: List[np.ndarray] = [
            np.ascontiguousarray(ch, dtype=SAMPLE_DTYPE) for ch in channels
        ]

    @classmethod
    def zeros(cls, num_channels: int, num_samples: int) -> "SampleBuffer":
        """Allocate a zero-filled buffer."""
        return cls([np.zeros(num_samples, dtype=SAMPLE_DTYPE) for _ in range(num_channels)])

    @classmethod
    def from_channel_major(cls, data, num_channels: int) -> "SampleBuffer":
        """
        Split channel-major data into channels.

        Channel 0's samples come first, then channel 1's, and so on. Bytes
        beyond a whole number of samples per channel are ignored.

        Args:
            data: Bytes-like object or complex64 array
            num_channels: Number of channels packed in `data`
        """
        if num_channels <= 0:
            return cls()
        if isinstance(data, np.ndarray) and data.dtype == SAMPLE_DTYPE:
            flat = data.reshape(-1)
        else:
            raw = np.frombuffer(data, dtype=np.uint8)
            usable = len(raw) - len(raw) % BYTES_PER_SAMPLE
            flat = raw[:usable].view(SAMPLE_DTYPE)
        per_channel = len(flat) // num_channels
        return cls(
            [
                flat[i * per_channel : (i + 1) * per_channel].copy()
                for i in range(num_channels)
            ]
        )

    @property
    def channels(self) -> List[np.ndarray]:
        return self._channels

    @property
    def num_channels(self) -> int:
        return len(self._channels)

    @property
    def num_samples(self) -> int:
        """Per-channel sample count (shortest channel)."""
        if not self._channels:
            return 0
        return min(len(ch) for ch in self._channels)

    @property
    def nbytes(self) -> int:
        """Size of the buffer in channel-major layout."""
        return self.num_channels * self.num_samples * BYTES_PER_SAMPLE

    @property
    def stats(self) -> BufferStats:
        return BufferStats(
            num_channels=self.num_channels,
            num_samples=self.num_samples,
            nbytes=self.nbytes,
        )

    def equalize(self) -> int:
        """
        Trim every channel to the shortest channel's length.

        Returns:
            Resulting per-channel sample count
        """
        n = self.num_samples
        self.truncate(n)
        return n

    def truncate(self, num_samples: int) -> None:
        """Trim every channel to at most `num_samples` samples."""
        self._channels = [ch[:num_samples] for ch in self._channels]

    def chunk(self, start: int, count: int) -> List[np.ndarray]:
        """Views of `count` samples per channel starting at `start`."""
        return [ch[start : start + count] for ch in self._channels]

    def to_channel_major(self) -> np.ndarray:
        """Concatenate channels into one flat complex64 array."""
        n = self.num_samples
        if not self._channels:
            return np.zeros(0, dtype=SAMPLE_DTYPE)
        return np.concatenate([ch[:n] for ch in self._channels])

    def __len__(self) -> int:
        return self.num_channels

    def __getitem__(self, index: int) -> np.ndarray:
        return self._channels[index]

    def __repr__(self) -> str:
        return f"<SampleBuffer {self.num_channels} ch x {self.num_samples} samples>"
