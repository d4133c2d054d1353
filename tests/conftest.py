"""Shared test doubles: a fake millisecond clock and a scripted ECU."""

from __future__ import annotations

import struct
from datetime import datetime

import pytest

from rusefi_datalog_mcp.protocol.commands import Command
from rusefi_datalog_mcp.protocol.framing import build_response
from rusefi_datalog_mcp.storage import Storage

SIGNATURE = "rusEFI 2025.09.01"

MINIMAL_INI = """\
[MegaTune]
   signature = "rusEFI 2025.09.01"

[OutputChannels]
ochGetCommand = "O%2o%2c"
ochBlockSize = 16
RPMValue     = scalar, U16,  0, "RPM",  1, 0
coolant      = scalar, S16,  2, "C",    0.01, 0 ; centi-degrees
vBatt        = scalar, F32,  4, "V",    1, 0
MAP          = scalar, U16,  8, "kPa",  0.03333333, 0
isFanOn      = bits,   U32, 12, [0:0]

[Datalog]
entry = RPMValue, "RPM",     int,   "%d"
entry = coolant,  "CLT",     float, "%.1f"
entry = time,     "Time",    float, "%.3f"
"""


def make_record(rpm=2400, clt=8750, vbatt=13.8, map_raw=3000, size=16) -> bytes:
    """Pack a record matching ``MINIMAL_INI``."""
    record = bytearray(size)
    struct.pack_into("<H", record, 0, rpm)
    struct.pack_into("<h", record, 2, clt)
    struct.pack_into("<f", record, 4, vbatt)
    struct.pack_into("<H", record, 8, map_raw)
    return bytes(record)


class FakeTicks:
    """Millisecond tick source advanced explicitly or by ``pump()``."""

    def __init__(self, start: int = 1000) -> None:
        self.ms = start

    def __call__(self) -> int:
        return self.ms

    def advance(self, ms: int) -> None:
        self.ms += ms


class FakeEcu:
    """Transport double that answers the way a rusEFI ECU does.

    Each ``pump()`` advances the fake clock by one millisecond.
    """

    def __init__(self, ticks: FakeTicks, signature: str = SIGNATURE, record: bytes = b"") -> None:
        self.ticks = ticks
        self.signature = signature
        self.record = record or make_record()
        self.connected = True
        self.silent = False
        self.status = 0
        self.dtr = self.rts = False
        self.rx = bytearray()
        self.written: list[bytes] = []

    def present(self) -> bool:
        return self.connected

    def available(self) -> bool:
        return bool(self.rx)

    def read(self):
        if not self.rx:
            return None
        byte = self.rx[0]
        del self.rx[0]
        return byte

    def pump(self) -> None:
        self.ticks.advance(1)

    def set_flow_control(self, dtr: bool, rts: bool) -> None:
        self.dtr, self.rts = dtr, rts

    def write(self, data: bytes) -> int:
        if not self.connected:
            raise ConnectionError("Serial port not open")
        self.written.append(bytes(data))
        if self.silent:
            return len(data)
        if data == bytes([Command.SIGNATURE]):
            self.rx += self.signature.encode("ascii") + b"\n"
        elif data == bytes([Command.PROTOCOL]):
            self.rx += b"001\n"
        elif len(data) > 2 and data[2] == Command.OUTPUT_CHANNELS:
            count = int.from_bytes(data[5:7], "little")
            self.rx += build_response(self.record[:count], self.status)
        return len(data)

    def fetches(self) -> list[bytes]:
        return [w for w in self.written if len(w) > 2 and w[2] == Command.OUTPUT_CHANNELS]


class FakeClock:
    """Wall clock pinned to a fixed time."""

    def __init__(self, when: datetime | None = None, valid: bool = True) -> None:
        self.when = when or datetime(2025, 9, 1, 14, 30, 5)
        self.valid = valid

    def now(self) -> datetime:
        return self.when

    def is_valid(self) -> bool:
        return self.valid


@pytest.fixture
def ticks() -> FakeTicks:
    return FakeTicks()


@pytest.fixture
def ecu(ticks) -> FakeEcu:
    return FakeEcu(ticks)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def minimal_ini() -> str:
    return MINIMAL_INI


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def sd_card(tmp_path):
    """A storage root holding DEFAULT.INI."""
    (tmp_path / "DEFAULT.INI").write_text(MINIMAL_INI)
    return Storage(tmp_path)
