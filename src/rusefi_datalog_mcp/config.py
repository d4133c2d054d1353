"""Runtime configuration for the logger."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path

from .transport.serial_connection import BAUDRATE, PRODUCT_ID, VENDOR_ID

POLL_INTERVAL_MS = 50  # 20 Hz
SYNC_INTERVAL_MS = 1000
SETTLE_MS = 300
SIGNATURE_RETRY_MS = 4000
INI_REMINDER_MS = 10000


@dataclass
class LoggerConfig:
    """Timings, storage root and serial settings."""

    root: Path = Path(".")
    port: str | None = None
    baudrate: int = BAUDRATE
    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    poll_interval_ms: int = POLL_INTERVAL_MS
    sync_interval_ms: int = SYNC_INTERVAL_MS
    settle_ms: int = SETTLE_MS
    signature_retry_ms: int = SIGNATURE_RETRY_MS
    ini_reminder_ms: int = INI_REMINDER_MS

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> LoggerConfig:
        return cls(
            root=Path(args.root),
            port=args.port,
            baudrate=args.baudrate,
            vendor_id=args.vid,
            product_id=args.pid,
            poll_interval_ms=args.poll_ms,
            sync_interval_ms=args.sync_ms,
        )


def _hex_int(text: str) -> int:
    return int(text, 0)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="rusEFI output-channel logger with an MCP control surface",
    )
    p.add_argument("--root", default=".", help="Folder holding *.INI files and logs (default: .)")
    p.add_argument("--port", default=None, help="Serial port (default: auto-detect by USB ID)")
    p.add_argument("--baudrate", type=int, default=BAUDRATE, help=f"Baud rate (default: {BAUDRATE})")
    p.add_argument("--vid", type=_hex_int, default=VENDOR_ID, help="USB vendor ID for auto-detect")
    p.add_argument("--pid", type=_hex_int, default=PRODUCT_ID, help="USB product ID for auto-detect")
    p.add_argument("--poll-ms", type=int, default=POLL_INTERVAL_MS, help="Poll interval in ms")
    p.add_argument("--sync-ms", type=int, default=SYNC_INTERVAL_MS, help="Log sync interval in ms")
    p.add_argument("--headless", action="store_true", help="Run the logger without the MCP server")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p
