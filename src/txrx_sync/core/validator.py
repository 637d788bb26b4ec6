"""
Session configuration checks against device capabilities.

Pure functions: nothing here touches the device, so callers may validate
speculatively before committing any hardware change.
"""

import logging
import os
from typing import Dict, Sequence

from .config import SessionConfig
from .result import ErrorKind, Result

logger = logging.getLogger(__name__)


def _lengths_match(lengths: Dict[str, int]) -> bool:
    return len(set(lengths.values())) <= 1


def _describe(lengths: Dict[str, int]) -> str:
    return ", ".join(f"{name}={n}" for name, n in lengths.items())


def _out_of_range(channels: Sequence[int], limit: int) -> list:
    return [ch for ch in channels if ch >= limit]


def validate_config(
    config: SessionConfig,
    max_tx_channels: int,
    max_rx_channels: int,
    check_files: bool = True,
) -> Result[None]:
    """
    Check a session configuration against the device's channel counts.

    Checks run in order and stop at the first failure:
      1. every channel index is below the device's channel count
      2. per-channel settings of each direction have equal lengths
      3. (file mode) every TX input file exists
      4. (file mode) all TX input files have the same byte size
      5. (file mode) every RX output file's directory exists

    Args:
        config: Session to check
        max_tx_channels: TX channel count reported by the device
        max_rx_channels: RX channel count reported by the device
        check_files: Apply file checks; disable when samples arrive
            through shared memory

    Returns:
        Result.success(None), or a VALIDATION failure with a diagnostic
    """
    logger.info(f"TX channels: {list(config.tx_channels)}")
    logger.info(f"RX channels: {list(config.rx_channels)}")

    bad_tx = _out_of_range(config.tx_channels, max_tx_channels)
    if bad_tx:
        return _fail(
            f"TX channels {bad_tx} are not supported "
            f"(device has {max_tx_channels} TX channels)"
        )
    bad_rx = _out_of_range(config.rx_channels, max_rx_channels)
    if bad_rx:
        return _fail(
            f"RX channels {bad_rx} are not supported "
            f"(device has {max_rx_channels} RX channels)"
        )

    tx_lengths = {
        "tx_channels": len(config.tx_channels),
        "tx_gains": len(config.tx_gains),
        "tx_ants": len(config.tx_ants),
        "tx_freqs": len(config.tx_freqs),
        "tx_rates": len(config.tx_rates),
    }
    rx_lengths = {
        "rx_channels": len(config.rx_channels),
        "rx_gains": len(config.rx_gains),
        "rx_ants": len(config.rx_ants),
        "rx_freqs": len(config.rx_freqs),
        "rx_rates": len(config.rx_rates),
    }
    if check_files:
        tx_lengths["tx_files"] = len(config.tx_files)
        rx_lengths["rx_files"] = len(config.rx_files)

    if not _lengths_match(tx_lengths):
        return _fail(f"TX configuration length mismatch: {_describe(tx_lengths)}")
    if not _lengths_match(rx_lengths):
        return _fail(f"RX configuration length mismatch: {_describe(rx_lengths)}")

    if check_files:
        missing = [f for f in config.tx_files if not os.path.isfile(f)]
        if missing:
            return _fail(f"TX input files do not exist: {missing}")

        sizes = {f: os.path.getsize(f) for f in config.tx_files}
        if len(set(sizes.values())) > 1:
            return _fail(f"TX file sizes mismatch: {sizes}")

        no_dir = [
            f for f in config.rx_files if not os.path.isdir(os.path.dirname(os.path.abspath(f)))
        ]
        if no_dir:
            return _fail(f"RX output directories do not exist: {no_dir}")

    logger.info("The input parameters appear to be correct.")
    return Result.success(None)


def _fail(message: str) -> Result[None]:
    logger.error(message)
    return Result.failure(ErrorKind.VALIDATION, message)
