"""Command constants and request builders.

Only the slice of the TunerStudio command set needed to identify the ECU
and fetch the output-channel block is implemented. ``S`` and ``F`` are
sent as bare bytes (legacy text mode); ``O`` is sent inside a CRC frame.
"""

from __future__ import annotations

from enum import IntEnum

from .framing import build_frame


class Command(IntEnum):
    """Single-byte command identifiers."""

    SIGNATURE = 0x53  # 'S'
    PROTOCOL = 0x46  # 'F', switches the ECU to CRC framing
    OUTPUT_CHANNELS = 0x4F  # 'O'


def build_signature_query() -> bytes:
    """Build the legacy signature query (a single ``S`` byte)."""
    return bytes([Command.SIGNATURE])


def build_mode_switch() -> bytes:
    """Build the binary-mode switch (a single ``F`` byte)."""
    return bytes([Command.PROTOCOL])


def build_fetch_output_channels(count: int, offset: int = 0) -> bytes:
    """Build the framed output-channel fetch.

    Args:
        count: Number of bytes to fetch (the record size).
        offset: Start offset inside the output-channel block.
    """
    if count <= 0:
        raise ValueError(f"Record size must be positive, got {count}")
    return build_frame(Command.OUTPUT_CHANNELS, offset, count)
