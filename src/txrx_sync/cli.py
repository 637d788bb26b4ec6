#!/usr/bin/env python3
"""
TxRx Sync - Command Line Interface

Main entry point for running synchronized TX/RX sessions from files
and for serving remote sessions.
"""

import argparse
import logging
import signal
import sys
from dataclasses import replace
from typing import Optional

from . import __version__
from .core.cancel import CancellationToken
from .core.config import SessionConfig
from .core.result import ConfigValidationError
from .core.synchronizer import DEFAULT_PPS_TIMEOUT
from .core.transceiver import Transceiver
from .devices.base import RadioDevice
from .devices.uhd_usrp import DEFAULT_ARGS, UHDDevice
from .server.session import DEFAULT_PORT, RemoteSession

logger = logging.getLogger(__name__)

DEFAULT_TX_FILE = "tx_data_fc32.bin"
DEFAULT_RX_FILE = "rx_data_fc32.bin"

# argparse dest -> SessionConfig field
_CONFIG_OPTIONS = (
    "tx_files",
    "rx_files",
    "tx_ants",
    "rx_ants",
    "tx_channels",
    "rx_channels",
    "spb",
    "tx_rates",
    "rx_rates",
    "tx_freqs",
    "rx_freqs",
    "tx_gains",
    "rx_gains",
    "delay",
    "nsamps",
    "clock_source",
    "time_source",
)


def setup_logging(verbosity: int, log_file: Optional[str] = None) -> None:
    """Setup logging based on verbosity level."""
    levels = [logging.WARNING, logging.INFO, logging.DEBUG]
    level = levels[min(verbosity, len(levels) - 1)]

    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    if log_file:
        logging.basicConfig(level=level, format=format_str, filename=log_file, filemode="w")
    else:
        logging.basicConfig(level=level, format=format_str)

    # Set third-party loggers to WARNING
    logging.getLogger("zmq").setLevel(logging.WARNING)


def create_device(args: str) -> RadioDevice:
    """Create the radio device for a device address string."""
    return UHDDevice(args)


def install_signal_handlers(token: CancellationToken) -> dict:
    """
    Cancel `token` on SIGINT / SIGTERM.

    Returns:
        Previous handlers, for restore_signal_handlers()
    """

    def handler(signum, frame):
        logger.warning(f"{signal.Signals(signum).name} received, stopping...")
        token.cancel()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def build_config(args: argparse.Namespace) -> SessionConfig:
    """
    Build the session configuration from command line options.

    Starts from --config (or the defaults), then applies every option
    given explicitly, then --rate / --freq.

    Raises:
        ConfigValidationError: Invalid option value or unreadable --config
    """
    if args.config:
        base = SessionConfig.load(args.config)
        if base is None:
            raise ConfigValidationError(f"Could not load configuration from {args.config}")
    else:
        base = SessionConfig(tx_files=(DEFAULT_TX_FILE,), rx_files=(DEFAULT_RX_FILE,))

    overrides = {}
    for name in _CONFIG_OPTIONS:
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    config = replace(base, **overrides) if overrides else base
    return config.with_overrides(rate=args.rate, freq=args.freq)


def cmd_info(args: argparse.Namespace) -> int:
    """Display module information."""
    print(f"TxRx Sync v{__version__}")
    print()
    print("Phase-aligned multi-channel TX/RX")
    print("=================================")
    print()
    print("Session pipeline:")
    print("  1. Validate channels, per-channel settings and files")
    print("  2. Zero the device clock on a PPS edge")
    print("  3. Timed integer-N tune of every channel")
    print("  4. Verify LO / reference lock")
    print("  5. Start TX and RX on one scheduled device time")
    print()
    print("Commands:")
    print("  run    Transmit from files and receive to files")
    print("  serve  Serve remote sessions (shared memory + ZeroMQ)")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run one file-backed TX/RX session."""
    try:
        config = build_config(args)
    except ConfigValidationError as e:
        print(f"Error: {e}")
        return 1

    device = create_device(args.args)
    if not device.open():
        print(f"Error: could not open device '{args.args}'")
        return 1

    token = CancellationToken()
    previous = install_signal_handlers(token)
    try:
        transceiver = Transceiver(device, pps_timeout=args.pps_timeout)
        result = transceiver.execute_files(config, token, streaming=args.streaming)
    except Exception as e:
        logger.exception(f"Session failed: {e}")
        print(f"Error: {e}")
        return 1
    finally:
        restore_signal_handlers(previous)
        device.close()

    if not result.ok:
        print(f"Error ({result.kind.value}): {result.message}")
        return 1

    report = result.value
    if report.tx is not None:
        print(f"Transmitted {report.tx.samples_sent} samples per channel")
    if report.rx is not None:
        print(f"Received {report.rx.samples_received} samples per channel")
        if report.rx.overflows:
            print(f"Warning: {report.rx.overflows} overflow(s) during reception")
    if token.cancelled:
        print("Stopped early")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Serve remote sessions until interrupted."""
    device = create_device(args.args)
    if not device.open():
        print(f"Error: could not open device '{args.args}'")
        return 1

    token = CancellationToken()
    previous = install_signal_handlers(token)
    try:
        transceiver = Transceiver(device, pps_timeout=args.pps_timeout)
        session = RemoteSession(transceiver, token=token)
        session.serve(f"tcp://*:{args.port}")
    finally:
        restore_signal_handlers(previous)
        device.close()
    return 0


def _pps_timeout(value: str) -> Optional[float]:
    if value.lower() in ("none", "inf"):
        return None
    timeout = float(value)
    if timeout < 0:
        raise argparse.ArgumentTypeError("PPS timeout must be non-negative")
    return timeout


def _add_device_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--args",
        default=DEFAULT_ARGS,
        help=f"Device address string (default: {DEFAULT_ARGS})",
    )
    parser.add_argument(
        "--pps-timeout",
        type=_pps_timeout,
        default=DEFAULT_PPS_TIMEOUT,
        help=f"Seconds to wait for a PPS edge, 'none' to wait forever "
        f"(default: {DEFAULT_PPS_TIMEOUT})",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="txrx-sync",
        description="TxRx Sync - Phase-aligned multi-channel TX/RX",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug)",
    )
    parser.add_argument("--log-file", type=str, help="Log to file instead of stderr")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Info command
    info_parser = subparsers.add_parser("info", help="Display module information")
    info_parser.set_defaults(func=cmd_info)

    # Run command
    run_parser = subparsers.add_parser("run", help="Transmit from files and receive to files")
    _add_device_options(run_parser)
    run_parser.add_argument("--config", type=str, help="Start from a saved JSON configuration")
    run_parser.add_argument(
        "--streaming",
        action="store_true",
        help="Stream files chunk by chunk instead of loading them up front",
    )
    run_parser.add_argument(
        "--tx-files", nargs="+", help=f"TX files, one per channel (default: {DEFAULT_TX_FILE})"
    )
    run_parser.add_argument(
        "--rx-files", nargs="+", help=f"RX files, one per channel (default: {DEFAULT_RX_FILE})"
    )
    run_parser.add_argument("--tx-ants", nargs="+", help="TX antennas (default: TX/RX)")
    run_parser.add_argument("--rx-ants", nargs="+", help="RX antennas (default: RX2)")
    run_parser.add_argument("--tx-channels", nargs="+", type=int, help="TX channels (default: 0)")
    run_parser.add_argument("--rx-channels", nargs="+", type=int, help="RX channels (default: 1)")
    run_parser.add_argument("--spb", type=int, help="Samples per buffer (default: 2500)")
    run_parser.add_argument("--rate", type=float, help="Sample rate for all channels (Hz)")
    run_parser.add_argument("--tx-rates", nargs="+", type=float, help="TX sample rates (Hz)")
    run_parser.add_argument("--rx-rates", nargs="+", type=float, help="RX sample rates (Hz)")
    run_parser.add_argument("--freq", type=float, help="Center frequency for all channels (Hz)")
    run_parser.add_argument("--tx-freqs", nargs="+", type=float, help="TX center frequencies (Hz)")
    run_parser.add_argument("--rx-freqs", nargs="+", type=float, help="RX center frequencies (Hz)")
    run_parser.add_argument("--tx-gains", nargs="+", type=float, help="TX gains (dB)")
    run_parser.add_argument("--rx-gains", nargs="+", type=float, help="RX gains (dB)")
    run_parser.add_argument(
        "--delay", type=float, help="Delay before start in seconds (default: 1.0)"
    )
    run_parser.add_argument(
        "--nsamps",
        type=int,
        help="Samples to receive, 0 means as many as transmitted (default: 5000000)",
    )
    run_parser.add_argument(
        "--clock-source",
        choices=["internal", "external", "gpsdo", "mimo"],
        help="Reference clock (default: internal)",
    )
    run_parser.add_argument(
        "--time-source",
        choices=["internal", "external", "gpsdo", "mimo"],
        help="Time source (default: internal)",
    )
    run_parser.set_defaults(func=cmd_run)

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Serve remote sessions")
    _add_device_options(serve_parser)
    serve_parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=DEFAULT_PORT,
        help=f"Server port (default: {DEFAULT_PORT})",
    )
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    if args.command is None:
        # No command specified - show info
        return cmd_info(args)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
