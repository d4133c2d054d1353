"""MCP server entry point for the rusEFI datalogger.

The logger loop runs on its own thread; this server is the host-side
control surface. It exposes status, operator commands (stop, reset,
set clock) and a bulk file-transfer channel for finished logs, using the
official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from .clock import SystemClock
from .config import LoggerConfig, build_arg_parser
from .models.log_file import LOG_EXTENSION
from .session import OperatorCommand, Session
from .storage import Storage
from .transport.serial_connection import SerialConnection

logger = logging.getLogger(__name__)

READ_CHUNK_MAX = 1 << 20

mcp = FastMCP(
    "rusefi-datalog",
    instructions="Control surface and log download for a rusEFI output-channel logger",
)

# Global logger state
_session: Session | None = None
_storage: Storage | None = None
_clock: SystemClock | None = None
_thread: threading.Thread | None = None
_stop_event = threading.Event()


def _get_session() -> Session:
    """Get the running session, raising if the logger was not started."""
    if _session is None:
        raise RuntimeError("Logger is not running.")
    return _session


def build_session(config: LoggerConfig) -> Session:
    """Wire a session to the serial port, storage root and host clock."""
    transport = SerialConnection(
        port=config.port,
        baudrate=config.baudrate,
        vendor_id=config.vendor_id,
        product_id=config.product_id,
    )
    return Session(transport, Storage(config.root), SystemClock(), config)


def start(config: LoggerConfig) -> Session:
    """Build the logger from ``config`` and run it on a background thread."""
    global _session, _storage, _clock, _thread
    _session = build_session(config)
    _storage = _session.storage
    _clock = _session.clock
    _stop_event.clear()
    _thread = threading.Thread(
        target=_session.run, args=(_stop_event,), name="datalogger", daemon=True
    )
    _thread.start()
    return _session


def shutdown(timeout: float = 2.0) -> None:
    """Stop the logger thread; the session closes its log on the way out."""
    _stop_event.set()
    if _thread is not None and _thread.is_alive():
        _thread.join(timeout=timeout)


# ─── SESSION TOOLS ───────────────────────────────────────────────────

@mcp.tool()
def get_status() -> dict[str, Any]:
    """Report logger state, ECU signature, current log file and row counts."""
    return _get_session().snapshot()


@mcp.tool()
def stop_logging() -> dict[str, Any]:
    """Close the current log and stop logging until the session is reset.

    Has no effect if the logger is already stopped or in an error state.
    """
    _get_session().submit(OperatorCommand.STOP)
    return {"queued": "stop"}


@mcp.tool()
def reset_session() -> dict[str, Any]:
    """Leave a stopped or error state and wait for the ECU again."""
    _get_session().submit(OperatorCommand.RESET)
    return {"queued": "reset"}


@mcp.tool()
def set_clock(timestamp: str) -> dict[str, Any]:
    """Set the logger clock used for dated log folders and file names.

    Args:
        timestamp: ISO 8601 local time, e.g. "2025-09-01T14:30:00".
    """
    if _clock is None:
        return {"error": "Logger is not running"}
    try:
        when = datetime.fromisoformat(timestamp)
    except ValueError:
        return {"error": f"Not an ISO 8601 timestamp: {timestamp!r}"}
    _clock.set(when)
    return {"clock": _clock.now().isoformat(timespec="seconds"), "valid": _clock.is_valid()}


@mcp.tool()
def get_channels() -> dict[str, Any]:
    """List the channels and log columns parsed from the tune definition."""
    table = _get_session().channel_table
    if table is None:
        return {"error": "No tune definition loaded"}
    return table.to_dict()


# ─── LOG TRANSFER TOOLS ──────────────────────────────────────────────

@mcp.tool()
def list_logs() -> dict[str, Any]:
    """List log files on the logger storage."""
    if _storage is None:
        return {"error": "Logger is not running"}
    logs = _storage.list_files(f"**/*{LOG_EXTENSION}")
    return {"logs": logs, "count": len(logs)}


@mcp.tool()
def read_log(path: str, offset: int = 0, length: int = 65536) -> dict[str, Any]:
    """Download part of a log file.

    Call repeatedly with ``next_offset`` until ``eof`` is true.

    Args:
        path: Log path as returned by list_logs.
        offset: Byte offset to start reading at.
        length: Maximum number of bytes to return (up to 1 MiB).
    """
    if _storage is None:
        return {"error": "Logger is not running"}
    if offset < 0 or not 0 < length <= READ_CHUNK_MAX:
        return {"error": f"offset must be >= 0 and length 1-{READ_CHUNK_MAX}"}
    try:
        if not _storage.exists(path):
            return {"error": f"File not found: {path}"}
        data = _storage.read_bytes(path, offset, length)
    except (ValueError, OSError) as e:
        return {"error": str(e)}
    return {
        "path": path,
        "offset": offset,
        "data": data.decode("utf-8", errors="replace"),
        "next_offset": offset + len(data),
        "eof": len(data) < length,
    }


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("rusefi://session/status")
def resource_status() -> str:
    """Logger state and counters."""
    if _session is None:
        return json.dumps({"running": False})
    return json.dumps({"running": True, **_session.snapshot()})


@mcp.resource("rusefi://session/channels")
def resource_channels() -> str:
    """Channel table of the connected ECU."""
    if _session is None or _session.channel_table is None:
        return json.dumps({"channels": []})
    return json.dumps(_session.channel_table.to_dict())


@mcp.resource("rusefi://logs/list")
def resource_logs() -> str:
    """Log files on storage."""
    if _storage is None:
        return json.dumps({"logs": []})
    return json.dumps({"logs": _storage.list_files(f"**/*{LOG_EXTENSION}")})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the logger, with the MCP server on stdio unless --headless."""
    args = build_arg_parser().parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    config = LoggerConfig.from_args(args)

    if args.headless:
        session = build_session(config)
        try:
            session.run(threading.Event())
        except KeyboardInterrupt:
            logger.info("Interrupted")
        return

    start(config)
    try:
        mcp.run(transport="stdio")
    finally:
        shutdown()


if __name__ == "__main__":
    main()
