"""
Configuration management for TX/RX sessions.

Handles per-channel radio settings, clock selection, buffer sizing,
and JSON persistence.
"""

import json
import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .result import ConfigValidationError

logger = logging.getLogger(__name__)


class ClockSource(Enum):
    """Reference clock / time source selection."""

    INTERNAL = "internal"
    EXTERNAL = "external"
    GPSDO = "gpsdo"
    MIMO = "mimo"

    @classmethod
    def parse(cls, value: Any) -> "ClockSource":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ConfigValidationError(
                f"Invalid clock/time source: {value!r}. Must be one of: {valid}"
            ) from None


# Fields carried by a remote EXECUTE request; all are required there
WIRE_FIELDS = (
    "tx_channels",
    "rx_channels",
    "spb",
    "delay",
    "nsamps",
    "tx_rates",
    "rx_rates",
    "tx_freqs",
    "rx_freqs",
    "tx_gains",
    "rx_gains",
    "tx_ants",
    "rx_ants",
    "clock_source",
    "time_source",
)

_INT_TUPLES = ("tx_channels", "rx_channels")
_FLOAT_TUPLES = ("tx_gains", "rx_gains", "tx_freqs", "rx_freqs", "tx_rates", "rx_rates")
_STR_TUPLES = ("tx_ants", "rx_ants", "tx_files", "rx_files")


def _as_int(value) -> int:
    """Convert to int, refusing to truncate non-integral numbers."""
    number = int(value)
    if not isinstance(value, str) and number != value:
        raise ValueError(f"expected an integer, got {value!r}")
    return number


@dataclass(frozen=True)
class SessionConfig:
    """
    Immutable description of one simultaneous TX/RX session.

    Per-channel sequences are index-aligned with the channel list of
    their direction: tx_gains[i] applies to tx_channels[i].
    """

    tx_channels: Tuple[int, ...] = (0,)
    rx_channels: Tuple[int, ...] = (1,)
    tx_gains: Tuple[float, ...] = (10.0,)  # dB
    rx_gains: Tuple[float, ...] = (10.0,)  # dB
    tx_ants: Tuple[str, ...] = ("TX/RX",)
    rx_ants: Tuple[str, ...] = ("RX2",)
    tx_freqs: Tuple[float, ...] = (915e6,)  # Hz
    rx_freqs: Tuple[float, ...] = (915e6,)  # Hz
    tx_rates: Tuple[float, ...] = (1e6,)  # Hz
    rx_rates: Tuple[float, ...] = (1e6,)  # Hz
    spb: int = 2500  # Samples per buffer
    nsamps: int = 5_000_000  # Samples to receive, 0 = as many as transmitted
    delay: float = 1.0  # Seconds between sync and stream start
    clock_source: ClockSource = ClockSource.INTERNAL
    time_source: ClockSource = ClockSource.INTERNAL
    # File-backed mode only
    tx_files: Tuple[str, ...] = ()
    rx_files: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Normalize field types and validate values."""
        try:
            for name in _INT_TUPLES:
                object.__setattr__(self, name, tuple(_as_int(v) for v in getattr(self, name)))
            for name in _FLOAT_TUPLES:
                object.__setattr__(
                    self, name, tuple(float(v) for v in getattr(self, name))
                )
            for name in _STR_TUPLES:
                object.__setattr__(self, name, tuple(str(v) for v in getattr(self, name)))
            object.__setattr__(self, "spb", _as_int(self.spb))
            object.__setattr__(self, "nsamps", _as_int(self.nsamps))
            object.__setattr__(self, "delay", float(self.delay))
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"Invalid configuration value: {e}") from e

        object.__setattr__(self, "clock_source", ClockSource.parse(self.clock_source))
        object.__setattr__(self, "time_source", ClockSource.parse(self.time_source))
        self._validate()

    def _validate(self) -> None:
        """Validate all scalar fields."""
        if self.spb <= 0:
            raise ConfigValidationError(f"spb must be positive, got {self.spb}")
        if self.nsamps < 0:
            raise ConfigValidationError(
                f"nsamps must be non-negative, got {self.nsamps}"
            )
        if self.delay <= 0:
            raise ConfigValidationError(f"delay must be positive, got {self.delay}")
        for name in _INT_TUPLES:
            if any(ch < 0 for ch in getattr(self, name)):
                raise ConfigValidationError(
                    f"{name} must be non-negative, got {getattr(self, name)}"
                )
        for name in ("tx_rates", "rx_rates"):
            if any(rate <= 0 for rate in getattr(self, name)):
                raise ConfigValidationError(
                    f"{name} must be positive, got {getattr(self, name)}"
                )

    @property
    def file_backed(self) -> bool:
        """True when the session reads TX / writes RX flat files."""
        return bool(self.tx_files or self.rx_files)

    @property
    def derived_time_source(self) -> ClockSource:
        """Time source actually applied for the selected clock source."""
        if self.clock_source in (ClockSource.EXTERNAL, ClockSource.GPSDO):
            return ClockSource.EXTERNAL
        return ClockSource.INTERNAL

    def with_overrides(
        self, rate: Optional[float] = None, freq: Optional[float] = None
    ) -> "SessionConfig":
        """
        Return a copy with one rate and/or frequency applied to every channel.

        Args:
            rate: Sample rate in Hz for all TX and RX channels
            freq: Center frequency in Hz for all TX and RX channels
        """
        changes: Dict[str, Any] = {}
        if rate is not None:
            changes["tx_rates"] = (rate,) * len(self.tx_channels)
            changes["rx_rates"] = (rate,) * len(self.rx_channels)
            logger.info(f"Set Tx and Rx rate to {rate / 1e6:.3f} Msps")
        if freq is not None:
            changes["tx_freqs"] = (freq,) * len(self.tx_channels)
            changes["rx_freqs"] = (freq,) * len(self.rx_channels)
            logger.info(f"Set Tx and Rx freq to {freq / 1e6:.3f} MHz")
        if not changes:
            return self
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-ready dictionary."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, ClockSource):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = False) -> "SessionConfig":
        """
        Create configuration from a dictionary.

        Args:
            data: Field values, as produced by to_dict() or a remote request
            strict: Require every wire field to be present

        Raises:
            KeyError: A required field is missing (strict mode)
            ConfigValidationError: A field value is invalid
        """
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Configuration must be an object, got {type(data).__name__}"
            )
        if strict:
            missing = [name for name in WIRE_FIELDS if name not in data]
            if missing:
                raise KeyError(f"Missing configuration field(s): {', '.join(missing)}")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.debug(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def save(self, path: str) -> bool:
        """Save configuration to JSON file.

        Args:
            path: File path to save configuration to

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            with open(path, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
            logger.info(f"Configuration saved to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save configuration to {path}: {e}")
            return False

    @classmethod
    def load(cls, path: str) -> Optional["SessionConfig"]:
        """Load configuration from JSON file.

        Args:
            path: File path to load configuration from

        Returns:
            SessionConfig instance or None if loading failed
        """
        try:
            with open(path, "r") as f:
                data = json.load(f)
            config = cls.from_dict(data)
            logger.info(f"Configuration loaded from {path}")
            return config
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {path}")
            return None
        except OSError as e:
            logger.error(f"Failed to read configuration from {path}: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file {path}: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid configuration format in {path}: {e}")
            return None

