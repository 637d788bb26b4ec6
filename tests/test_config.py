"""Tests for session configuration."""

import json
import os
import tempfile

import pytest

from txrx_sync.core.config import WIRE_FIELDS, ClockSource, SessionConfig
from txrx_sync.core.result import ConfigValidationError


class TestSessionConfigDefaults:
    """Test default values and normalization."""

    def test_defaults(self):
        """Test defaults match the command line defaults."""
        config = SessionConfig()
        assert config.tx_channels == (0,)
        assert config.rx_channels == (1,)
        assert config.tx_ants == ("TX/RX",)
        assert config.rx_ants == ("RX2",)
        assert config.tx_freqs == (915e6,)
        assert config.spb == 2500
        assert config.nsamps == 5_000_000
        assert config.delay == 1.0
        assert config.clock_source == ClockSource.INTERNAL
        assert not config.file_backed

    def test_lists_become_tuples(self):
        """Test sequences are normalized to typed tuples."""
        config = SessionConfig(tx_channels=[0, 1], tx_gains=[1, 2], tx_ants=["A", "B"])
        assert config.tx_channels == (0, 1)
        assert config.tx_gains == (1.0, 2.0)
        assert isinstance(config.tx_gains[0], float)
        assert config.tx_ants == ("A", "B")

    def test_clock_source_from_string(self):
        """Test clock sources parse case-insensitively."""
        config = SessionConfig(clock_source="GPSDO", time_source="external")
        assert config.clock_source == ClockSource.GPSDO
        assert config.time_source == ClockSource.EXTERNAL

    def test_frozen(self):
        """Test configs cannot be mutated."""
        config = SessionConfig()
        with pytest.raises(AttributeError):
            config.spb = 10

    def test_file_backed(self):
        """Test file_backed follows the file lists."""
        assert SessionConfig(tx_files=["a.bin"]).file_backed
        assert SessionConfig(rx_files=["b.bin"]).file_backed


class TestSessionConfigValidation:
    """Test value-level validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"spb": 0},
            {"nsamps": -1},
            {"delay": 0},
            {"tx_channels": [-1]},
            {"rx_rates": [0.0]},
            {"clock_source": "atomic"},
            {"tx_gains": ["loud"]},
            {"tx_channels": 3},
        ],
    )
    def test_invalid_values(self, kwargs):
        """Test invalid values raise ConfigValidationError."""
        with pytest.raises(ConfigValidationError):
            SessionConfig(**kwargs)

    def test_validation_error_is_value_error(self):
        """Test ConfigValidationError can be caught as ValueError."""
        with pytest.raises(ValueError):
            SessionConfig(spb=-5)

    def test_nsamps_zero_allowed(self):
        """Test nsamps of 0 is accepted."""
        assert SessionConfig(nsamps=0).nsamps == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"nsamps": 1.7},
            {"spb": 2.5},
            {"tx_channels": [0.9]},
            {"rx_channels": [0, 1.5]},
        ],
    )
    def test_fractional_integers_rejected(self, kwargs):
        """Test integer fields refuse to truncate fractional numbers."""
        with pytest.raises(ConfigValidationError, match="expected an integer"):
            SessionConfig(**kwargs)

    def test_integral_floats_accepted(self):
        """Test whole-number floats, as JSON may carry them, still convert."""
        config = SessionConfig(nsamps=1000.0, spb=256.0, tx_channels=[1.0])
        assert config.nsamps == 1000
        assert isinstance(config.nsamps, int)
        assert config.spb == 256
        assert config.tx_channels == (1,)

    def test_fractional_nsamps_from_dict(self):
        with pytest.raises(ConfigValidationError):
            SessionConfig.from_dict({"nsamps": 1.7})


class TestDerivedTimeSource:
    """Test the time source applied for each clock source."""

    @pytest.mark.parametrize(
        "clock,expected",
        [
            ("internal", ClockSource.INTERNAL),
            ("external", ClockSource.EXTERNAL),
            ("gpsdo", ClockSource.EXTERNAL),
            ("mimo", ClockSource.INTERNAL),
        ],
    )
    def test_derived(self, clock, expected):
        config = SessionConfig(clock_source=clock, time_source="internal")
        assert config.derived_time_source == expected


class TestOverrides:
    """Test rate / frequency broadcast."""

    def test_rate_override(self):
        """Test one rate applies to every channel."""
        config = SessionConfig(tx_channels=(0, 1), rx_channels=(0, 1, 2))
        updated = config.with_overrides(rate=2e6)
        assert updated.tx_rates == (2e6, 2e6)
        assert updated.rx_rates == (2e6, 2e6, 2e6)
        assert config.tx_rates == (1e6,)

    def test_freq_override(self):
        """Test one frequency applies to every channel."""
        config = SessionConfig(tx_channels=(0, 1))
        updated = config.with_overrides(freq=2.4e9)
        assert updated.tx_freqs == (2.4e9, 2.4e9)
        assert updated.rx_freqs == (2.4e9,)

    def test_no_override_returns_same(self):
        config = SessionConfig()
        assert config.with_overrides() is config


class TestSerialization:
    """Test dictionary and JSON round trips."""

    def test_to_dict_is_json_ready(self):
        """Test to_dict output serializes to JSON."""
        data = SessionConfig(tx_files=["a.bin"]).to_dict()
        text = json.dumps(data)
        assert '"clock_source": "internal"' in text
        assert data["tx_channels"] == [0]

    def test_from_dict_round_trip(self):
        """Test from_dict restores an equal config."""
        config = SessionConfig(tx_channels=(0, 1), tx_gains=(1, 2), tx_ants=("A", "B"),
                               tx_freqs=(1e9, 1e9), tx_rates=(1e6, 1e6), clock_source="external")
        assert SessionConfig.from_dict(config.to_dict()) == config

    def test_from_dict_loose_fills_defaults(self):
        config = SessionConfig.from_dict({"spb": 100})
        assert config.spb == 100
        assert config.nsamps == 5_000_000

    def test_from_dict_ignores_unknown_keys(self):
        config = SessionConfig.from_dict({"spb": 100, "color": "blue"})
        assert config.spb == 100

    def test_from_dict_strict_requires_wire_fields(self):
        """Test strict mode reports missing wire fields."""
        data = SessionConfig().to_dict()
        del data["tx_gains"]
        with pytest.raises(KeyError, match="tx_gains"):
            SessionConfig.from_dict(data, strict=True)

    def test_from_dict_strict_accepts_complete(self):
        data = {k: v for k, v in SessionConfig().to_dict().items() if k in WIRE_FIELDS}
        assert SessionConfig.from_dict(data, strict=True) == SessionConfig()

    def test_from_dict_rejects_non_dict(self):
        with pytest.raises(ConfigValidationError):
            SessionConfig.from_dict([1, 2, 3])


class TestPersistence:
    """Test save / load."""

    def test_save_and_load(self):
        """Test a saved config loads back equal."""
        config = SessionConfig(spb=1234, nsamps=0, rx_files=["out.bin"])
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "session.json")
            assert config.save(path)
            assert SessionConfig.load(path) == config

    def test_load_missing_file(self):
        assert SessionConfig.load("/nonexistent/session.json") is None

    def test_load_invalid_json(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            f.write("{not json")
            path = f.name
        try:
            assert SessionConfig.load(path) is None
        finally:
            os.unlink(path)

    def test_load_invalid_values(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            json.dump({"spb": 0}, f)
            path = f.name
        try:
            assert SessionConfig.load(path) is None
        finally:
            os.unlink(path)

    def test_save_to_bad_path(self):
        assert not SessionConfig().save("/nonexistent/dir/session.json")
