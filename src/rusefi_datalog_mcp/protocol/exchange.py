"""Request/response exchanges with the ECU over a byte transport.

Every wait is a bounded busy-poll that keeps calling ``transport.pump()``
and extends its deadline whenever bytes arrive, so a slow but live reply
completes while a stalled one is abandoned at the outer bound.

Usage::

    engine = ProtocolEngine(transport, ticks_ms)
    signature = engine.query_signature()
    engine.switch_mode()
    ok = engine.fetch_record(record_size, raw_record)
"""

from __future__ import annotations

import logging
from typing import Callable

from .commands import (
    build_fetch_output_channels,
    build_mode_switch,
    build_signature_query,
)
from .framing import FRAME_OVERHEAD
from .parser import AsciiAccumulator, parse_record_response

logger = logging.getLogger(__name__)

SIGNATURE_TIMEOUT_MS = 2000
SIGNATURE_EXTEND_MS = 500
MODE_SWITCH_TIMEOUT_MS = 1000
RECORD_TIMEOUT_MS = 1500
RECORD_EXTEND_MS = 200


class ExtendingDeadline:
    """A deadline that moves forward whenever the exchange makes progress."""

    def __init__(self, ticks_ms: Callable[[], int], timeout_ms: int, extend_ms: int) -> None:
        self._ticks_ms = ticks_ms
        self._extend_ms = extend_ms
        self.deadline = ticks_ms() + timeout_ms

    def expired(self) -> bool:
        return self._ticks_ms() >= self.deadline

    def extend(self) -> None:
        self.deadline = self._ticks_ms() + self._extend_ms


class ProtocolEngine:
    """Frames requests and validates responses against a byte transport.

    The transport must provide ``read()``, ``write()``, ``available()``
    and ``pump()``. No method raises on timeouts or malformed replies;
    each returns a result the caller can branch on.
    """

    def __init__(self, transport, ticks_ms: Callable[[], int]) -> None:
        self._transport = transport
        self._ticks_ms = ticks_ms

    def discard_input(self) -> int:
        """Drop any buffered input bytes. Returns how many were dropped."""
        dropped = 0
        while self._transport.available():
            if self._transport.read() is None:
                break
            dropped += 1
        if dropped:
            logger.debug("Discarded %d stale input bytes", dropped)
        return dropped

    def send_signature_query(self) -> None:
        self._transport.write(build_signature_query())

    def read_ascii_response(
        self,
        timeout_ms: int = SIGNATURE_TIMEOUT_MS,
        extend_ms: int = SIGNATURE_EXTEND_MS,
    ) -> str | None:
        """Read a NUL- or LF-terminated ASCII reply.

        Returns:
            The accumulated text, or None if nothing printable arrived
            before the deadline.
        """
        reply = AsciiAccumulator()
        deadline = ExtendingDeadline(self._ticks_ms, timeout_ms, extend_ms)
        while not reply.done and not deadline.expired():
            self._transport.pump()
            while not reply.done and self._transport.available():
                byte = self._transport.read()
                if byte is None:
                    break
                if reply.feed(byte):
                    deadline.extend()
        return reply.text

    def query_signature(self) -> str | None:
        """Send ``S`` and read the signature reply."""
        self.send_signature_query()
        return self.read_ascii_response()

    def switch_mode(self) -> str | None:
        """Ask the ECU for CRC-framed mode and log its acknowledgement.

        Issued once per connection; there is no retry.
        """
        self._transport.write(build_mode_switch())
        ack = self.read_ascii_response(MODE_SWITCH_TIMEOUT_MS)
        if ack is None:
            logger.warning("No acknowledgement to mode switch")
        else:
            logger.info("Mode switch acknowledged: %s", ack)
        return ack

    def fetch_record(self, record_size: int, into: bytearray) -> bool:
        """Fetch one output-channel record into ``into``.

        Returns:
            True if a complete, status-0 reply arrived in time. On failure
            ``into`` keeps its previous contents.
        """
        self.discard_input()
        self._transport.write(build_fetch_output_channels(record_size))

        cap = record_size + FRAME_OVERHEAD
        received = bytearray()
        deadline = ExtendingDeadline(self._ticks_ms, RECORD_TIMEOUT_MS, RECORD_EXTEND_MS)
        while len(received) < cap and not deadline.expired():
            self._transport.pump()
            progressed = False
            while len(received) < cap and self._transport.available():
                byte = self._transport.read()
                if byte is None:
                    break
                received.append(byte)
                progressed = True
            if progressed:
                deadline.extend()

        if len(received) < cap:
            logger.debug("Record read ended with %d/%d bytes", len(received), cap)
        return parse_record_response(bytes(received), record_size, into)
