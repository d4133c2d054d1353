"""Response parsing for legacy text replies and framed record replies."""

from __future__ import annotations

import logging

from .framing import FRAME_OVERHEAD, parse_frame

logger = logging.getLogger(__name__)

SIGNATURE_MAX_LEN = 63
PRINTABLE_MIN = 0x20
TERMINATORS = (0x00, 0x0A)


class AsciiAccumulator:
    """Collects a NUL- or LF-terminated ASCII reply one byte at a time.

    Bytes below 0x20 (other than the terminators) are ignored, and the
    text is capped at ``max_len`` characters; extra printable bytes are
    dropped but still count as progress.
    """

    def __init__(self, max_len: int = SIGNATURE_MAX_LEN) -> None:
        self._max_len = max_len
        self._chars = bytearray()
        self.done = False

    def feed(self, byte: int) -> bool:
        """Consume one byte. Returns True if it was a printable byte."""
        if byte in TERMINATORS:
            self.done = True
            return False
        if byte < PRINTABLE_MIN:
            return False
        if len(self._chars) < self._max_len:
            self._chars.append(byte)
        return True

    @property
    def text(self) -> str | None:
        if not self._chars:
            return None
        return self._chars.decode("ascii", errors="replace")


def parse_record_response(data: bytes, record_size: int, into: bytearray) -> bool:
    """Validate a framed output-channel reply and copy its data into ``into``.

    Returns:
        True if the reply was complete and reported status 0. On any
        other outcome ``into`` is left untouched.
    """
    frame = parse_frame(data, record_size)
    if frame is None:
        logger.debug(
            "Malformed record response (%d/%d bytes)",
            len(data),
            record_size + FRAME_OVERHEAD,
        )
        return False
    if not frame.ok:
        logger.debug("ECU reported status 0x%02X", frame.status)
        return False
    into[:record_size] = frame.data
    return True
