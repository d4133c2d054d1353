"""Tests for request framing and response parsing."""

import pytest

from rusefi_datalog_mcp.protocol.framing import (
    FRAME_OVERHEAD,
    Frame,
    build_frame,
    build_response,
    parse_frame,
)
from rusefi_datalog_mcp.utils.crc import crc32


def test_fetch_frame_for_2948_byte_record():
    """Fetch of a 2948-byte record matches the documented wire bytes."""
    frame = build_frame(0x4F, 0, 2948)
    payload = bytes([0x4F, 0x00, 0x00, 0x84, 0x0B])
    assert len(frame) == 11
    assert frame[:7] == bytes([0x00, 0x05, 0x4F, 0x00, 0x00, 0x84, 0x0B])
    assert frame[7:] == crc32(payload).to_bytes(4, "big")


def test_frame_length_is_big_endian():
    """Payload length prefix is big-endian."""
    frame = build_frame(0x4F, *range(200))
    assert frame[:2] == (401).to_bytes(2, "big")


def test_frame_without_params():
    """A bare command still gets length and CRC."""
    frame = build_frame(0x53)
    assert frame[:3] == b"\x00\x01\x53"
    assert frame[3:] == crc32(b"\x53").to_bytes(4, "big")


def test_frame_param_out_of_range():
    """Parameters must fit in 16 bits."""
    with pytest.raises(ValueError):
        build_frame(0x4F, 0, 0x10000)


def test_parse_valid_response():
    """A complete status-0 response yields its data."""
    data = bytes(range(10))
    frame = parse_frame(build_response(data), 10)
    assert frame is not None
    assert frame.ok
    assert frame.crc_checked
    assert frame.data == data


def test_parse_response_layout():
    """Response length counts the status byte; CRC covers status + data."""
    response = build_response(b"\x01\x02")
    assert response[:2] == b"\x00\x03"
    assert response[2] == 0x00
    assert response[-4:] == crc32(b"\x00\x01\x02").to_bytes(4, "big")
    assert len(response) == 2 + FRAME_OVERHEAD


def test_parse_nonzero_status():
    """Non-zero status parses but is not ok."""
    frame = parse_frame(build_response(b"\x00" * 4, status=0x80), 4)
    assert frame is not None
    assert not frame.ok


def test_parse_short_response():
    """Fewer than size + 3 bytes is rejected."""
    response = build_response(bytes(8))
    assert parse_frame(response[:10], 8) is None


def test_parse_response_without_crc_accepted():
    """Header and data alone are enough when the CRC was cut off."""
    response = build_response(bytes(range(8)))
    frame = parse_frame(response[:11], 8)
    assert frame is not None
    assert frame.data == bytes(range(8))
    assert not frame.crc_checked


def test_parse_bad_crc():
    """A corrupted checksum is rejected."""
    response = bytearray(build_response(bytes(8)))
    response[-1] ^= 0xFF
    assert parse_frame(bytes(response), 8) is None


def test_parse_wrong_declared_length():
    """Declared length must match the expected record size."""
    response = build_response(bytes(8))
    assert parse_frame(response, 6) is None


def test_frame_repr():
    """Frame repr should be readable."""
    r = repr(Frame(status=0x80, data=b"\x01"))
    assert "0x80" in r
