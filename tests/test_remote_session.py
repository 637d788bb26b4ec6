"""Tests for the remote session server request handling."""

import json
import uuid

import numpy as np
import pytest

from txrx_sync.core.config import WIRE_FIELDS
from txrx_sync.core.transceiver import Transceiver
from txrx_sync.server.protocol import ReplyStatus
from txrx_sync.server.session import RemoteSession
from txrx_sync.server.shm import create_region, read_region, release_region, remove_region


def _unique(prefix):
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _wire_config(config):
    return {k: v for k, v in config.to_dict().items() if k in WIRE_FIELDS}


@pytest.fixture
def session(radio):
    rx_name = _unique("txrx_test_rx")
    remote = RemoteSession(Transceiver(radio, sleep=lambda s: None), rx_shm_name=rx_name)
    yield remote
    remote.close()
    remove_region(rx_name)


@pytest.fixture
def tx_region(buffer_factory):
    """Two-channel, 1000-sample TX region."""
    name = _unique("txrx_test_tx")
    shm = create_region(name, buffer_factory(2, 1000))
    yield name
    release_region(shm)


class TestExecute:
    """Test EXECUTE requests."""

    def test_success(self, session, radio, config, tx_region):
        """Test a good request returns the RX region description."""
        reply = session.handle(
            {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        )

        assert reply.status == ReplyStatus.SUCCESS
        assert reply.rx_shm_name == session.rx_shm_name
        assert reply.rx_nsamps_per_ch == 1000
        assert reply.num_rx_ch == 2

        rx = read_region(reply.rx_shm_name, reply.num_rx_ch, reply.rx_nsamps_per_ch)
        np.testing.assert_array_equal(rx[1].real, np.arange(1000))
        np.testing.assert_array_equal(radio.tx_stream.samples[1].imag, np.ones(1000))

    def test_missing_config_field(self, session, radio, config, tx_region):
        """Test a config missing a field is rejected before the device is touched."""
        wire = _wire_config(config)
        del wire["tx_gains"]

        reply = session.handle({"cmd": "EXECUTE", "config": wire, "tx_shm_name": tx_region})

        assert reply.status == ReplyStatus.ERROR
        assert reply.msg
        assert "tx_gains" in reply.msg
        assert radio.calls == []

    def test_missing_tx_region(self, session, radio, config):
        reply = session.handle(
            {
                "cmd": "EXECUTE",
                "config": _wire_config(config),
                "tx_shm_name": _unique("txrx_test_absent"),
            }
        )
        assert reply.status == ReplyStatus.ERROR
        assert reply.msg
        assert radio.calls == []

    def test_sync_failure(self, session, radio, config, tx_region):
        radio.tx_sensors["lo_locked"] = False
        reply = session.handle(
            {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        )
        assert reply.status == ReplyStatus.FAILED
        assert reply.msg.startswith("sync")

    def test_serves_after_failure(self, session, radio, config, tx_region):
        """Test a failed request does not stop later ones."""
        request = {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        radio.tx_sensors["lo_locked"] = False
        assert session.handle(request).status == ReplyStatus.FAILED

        radio.tx_sensors["lo_locked"] = True
        assert session.handle(request).status == ReplyStatus.SUCCESS

    def test_repeated_execute_replaces_rx_region(self, session, config, config_factory, tx_region):
        request = {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        session.handle(request)

        smaller = _wire_config(config_factory(nsamps=300))
        reply = session.handle({"cmd": "EXECUTE", "config": smaller, "tx_shm_name": tx_region})

        assert reply.rx_nsamps_per_ch == 300
        assert read_region(session.rx_shm_name, 2).num_samples == 300


class TestRelease:
    """Test RELEASE requests."""

    def test_release_after_execute(self, session, config, tx_region):
        session.handle(
            {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        )
        reply = session.handle({"cmd": "RELEASE"})
        assert reply.status == ReplyStatus.RELEASED
        with pytest.raises(FileNotFoundError):
            read_region(session.rx_shm_name, 2)

    def test_release_twice(self, session):
        """Test RELEASE without a region still succeeds."""
        assert session.handle({"cmd": "RELEASE"}).status == ReplyStatus.RELEASED
        assert session.handle({"cmd": "RELEASE"}).status == ReplyStatus.RELEASED

    def test_release_removes_leftover_region(self, session, buffer_factory):
        """Test a region left by an earlier server process is removed."""
        shm = create_region(session.rx_shm_name, buffer_factory(1, 10))
        shm.close()
        session.release()
        with pytest.raises(FileNotFoundError):
            read_region(session.rx_shm_name, 1)


class TestMalformedRequests:
    """Test replies to bad requests."""

    def test_unknown_command(self, session, radio):
        reply = session.handle({"cmd": "REBOOT"})
        assert reply.status == ReplyStatus.UNKNOWN
        assert "REBOOT" in reply.msg
        assert radio.calls == []

    def test_not_an_object(self, session):
        assert session.handle([1, 2]).status == ReplyStatus.ERROR

    def test_malformed_json(self, session):
        reply = json.loads(session.handle_raw(b"{not json"))
        assert reply["status"] == "ERROR"
        assert reply["msg"]

    def test_raw_round_trip(self, session):
        assert json.loads(session.handle_raw('{"cmd": "RELEASE"}')) == {"status": "RELEASED"}

    def test_unexpected_exception(self, session, radio, config, tx_region):
        """Test a driver crash becomes an ERROR reply."""

        def broken(*args):
            raise RuntimeError("driver crashed")

        radio.set_clock_source = broken
        reply = session.handle(
            {"cmd": "EXECUTE", "config": _wire_config(config), "tx_shm_name": tx_region}
        )
        assert reply.status == ReplyStatus.ERROR
        assert "driver crashed" in reply.msg
