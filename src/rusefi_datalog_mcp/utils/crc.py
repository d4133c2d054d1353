"""CRC-32 and djb2 helpers.

The binary protocol authenticates every frame with CRC-32/ISO-HDLC
(reflected polynomial 0xEDB88320, all-ones initial value, final
complement), which is exactly what :func:`zlib.crc32` computes.
"""

from __future__ import annotations

import logging
import zlib

logger = logging.getLogger(__name__)

CRC32_CHECK_INPUT = b"123456789"
CRC32_CHECK_VALUE = 0xCBF43926

DJB2_SEED = 5381


def crc32(data: bytes) -> int:
    """Return the CRC-32/ISO-HDLC checksum of ``data`` as an unsigned int."""
    return zlib.crc32(data) & 0xFFFFFFFF


def self_test() -> bool:
    """Verify :func:`crc32` against the canonical check value.

    A wrong checksum routine corrupts every framed exchange, so the
    result is reported loudly, but the caller decides what to do with it.
    """
    result = crc32(CRC32_CHECK_INPUT)
    if result != CRC32_CHECK_VALUE:
        logger.error(
            "CRC32 self test FAILED: got 0x%08X, expected 0x%08X",
            result,
            CRC32_CHECK_VALUE,
        )
        return False
    logger.debug("CRC32 self test OK (0x%08X)", result)
    return True


def djb2(text: str | bytes) -> int:
    """Hash ``text`` with the xor variant of djb2, truncated to 32 bits."""
    if isinstance(text, str):
        text = text.encode("ascii", errors="replace")
    h = DJB2_SEED
    for byte in text:
        h = (((h << 5) + h) ^ byte) & 0xFFFFFFFF
    return h
