"""CRC-framed request/response codec for the ECU binary protocol.

Request layout::

    +-----------------+---------+--------------------+------------------+
    | Payload length  | Command | Parameters         | CRC32(payload)   |
    | 2 bytes, BE     | 1 byte  | 2 bytes each, LE   | 4 bytes, BE      |
    +-----------------+---------+--------------------+------------------+

Response layout::

    +-----------------+--------+------------------+------------------+
    | Data length     | Status | Data             | CRC32(status+data)|
    | 2 bytes, BE     | 1 byte | variable length  | 4 bytes, BE      |
    +-----------------+--------+------------------+------------------+

- Lengths and CRCs are big-endian, command parameters little-endian.
  The asymmetry is part of the wire protocol and must not be "fixed".
- Data length counts the status byte, so it is ``1 + len(data)``.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..utils.crc import crc32

LENGTH_SIZE = 2
STATUS_SIZE = 1
CRC_SIZE = 4
HEADER_SIZE = LENGTH_SIZE + STATUS_SIZE  # 3
FRAME_OVERHEAD = HEADER_SIZE + CRC_SIZE  # 7

STATUS_OK = 0x00


@dataclass
class Frame:
    """A parsed response frame."""

    status: int
    data: bytes
    crc_checked: bool = False

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def __repr__(self) -> str:
        return (
            f"Frame(status=0x{self.status:02X}, data_len={len(self.data)}, "
            f"crc_checked={self.crc_checked})"
        )


def build_frame(command: int, *params: int) -> bytes:
    """Build a framed request.

    Args:
        command: Single-byte command identifier.
        params: 16-bit parameters, each encoded little-endian.

    Returns:
        ``[len BE][command][params LE...][crc32 BE]``
    """
    payload = bytes([command])
    for param in params:
        if not 0 <= param <= 0xFFFF:
            raise ValueError(f"Parameter must fit in 16 bits, got {param}")
        payload += param.to_bytes(2, "little")
    size = len(payload).to_bytes(LENGTH_SIZE, "big")
    checksum = crc32(payload).to_bytes(CRC_SIZE, "big")
    return size + payload + checksum


def parse_frame(data: bytes, expected_size: int) -> Frame | None:
    """Parse a framed response carrying ``expected_size`` data bytes.

    A response is usable once the header and all data bytes arrived. The
    trailing CRC is verified when it was received completely; a response
    cut short inside the CRC is still accepted.

    Returns:
        A ``Frame`` on success, or ``None`` if the response is short, the
        declared length disagrees, or the checksum fails.
    """
    if len(data) < HEADER_SIZE + expected_size:
        return None

    declared = int.from_bytes(data[0:LENGTH_SIZE], "big")
    if declared != STATUS_SIZE + expected_size:
        return None

    status = data[LENGTH_SIZE]
    body_end = HEADER_SIZE + expected_size
    body = data[LENGTH_SIZE:body_end]

    crc_checked = False
    if len(data) >= body_end + CRC_SIZE:
        expected_checksum = int.from_bytes(data[body_end : body_end + CRC_SIZE], "big")
        if crc32(body) != expected_checksum:
            return None
        crc_checked = True

    return Frame(status=status, data=bytes(body[STATUS_SIZE:]), crc_checked=crc_checked)


def build_response(data: bytes, status: int = STATUS_OK) -> bytes:
    """Build a response frame as the ECU would send it."""
    body = bytes([status]) + data
    size = len(body).to_bytes(LENGTH_SIZE, "big")
    checksum = crc32(body).to_bytes(CRC_SIZE, "big")
    return size + body + checksum
