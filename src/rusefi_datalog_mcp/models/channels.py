"""Channel table data model.

A ``ChannelTable`` is derived from the tune definition once per
connection and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

RECORD_CAPACITY = 4096  # bytes; must be >= any supported ochBlockSize
MAX_CHANNELS = 300
F32_MAX = 3.4028234663852886e38  # largest finite single-precision value


class TypeCode(Enum):
    """Raw storage type of a channel inside the record."""

    U8 = ("u8", 1, "<B")
    S8 = ("s8", 1, "<b")
    U16 = ("u16", 2, "<H")
    S16 = ("s16", 2, "<h")
    U32 = ("u32", 4, "<I")
    S32 = ("s32", 4, "<i")
    F32 = ("f32", 4, "<f")

    def __init__(self, label: str, width: int, struct_format: str) -> None:
        self.label = label
        self.width = width
        self.struct_format = struct_format


# Tune files use either the short or the long spelling.
TYPE_CODE_ALIASES: dict[str, TypeCode] = {
    "U08": TypeCode.U8,
    "UBYTE": TypeCode.U8,
    "S08": TypeCode.S8,
    "BYTE": TypeCode.S8,
    "U16": TypeCode.U16,
    "UINT": TypeCode.U16,
    "S16": TypeCode.S16,
    "INT": TypeCode.S16,
    "U32": TypeCode.U32,
    "ULONG": TypeCode.U32,
    "S32": TypeCode.S32,
    "LONG": TypeCode.S32,
    "F32": TypeCode.F32,
    "FLOAT": TypeCode.F32,
}


class Presentation(Enum):
    """How a value is written to the log."""

    FLOAT = "float"
    INTEGER = "int"


@dataclass(frozen=True)
class ChannelDescriptor:
    """One scalar output channel at a fixed offset in the record."""

    name: str
    unit: str
    offset: int
    type_code: TypeCode
    multiplier: float = 1.0
    additive: float = 0.0

    @property
    def end(self) -> int:
        return self.offset + self.type_code.width

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "unit": self.unit,
            "offset": self.offset,
            "type": self.type_code.label,
            "multiplier": self.multiplier,
            "additive": self.additive,
        }


@dataclass(frozen=True)
class DatalogEntry:
    """A log column: display label and presentation over a channel."""

    label: str
    channel_index: int
    presentation: Presentation = Presentation.FLOAT


@dataclass(frozen=True)
class OutputColumn:
    """A resolved log column."""

    label: str
    unit: str
    descriptor: ChannelDescriptor
    presentation: Presentation


@dataclass(frozen=True)
class ChannelTable:
    """Channels, record size and optional datalog overlay for one ECU."""

    record_size: int
    channels: tuple[ChannelDescriptor, ...]
    datalog: tuple[DatalogEntry, ...] = field(default=())

    def __post_init__(self) -> None:
        if not 0 < self.record_size <= RECORD_CAPACITY:
            raise ValueError(
                f"Record size must be 1-{RECORD_CAPACITY}, got {self.record_size}"
            )
        if len(self.channels) > MAX_CHANNELS:
            raise ValueError(f"At most {MAX_CHANNELS} channels, got {len(self.channels)}")
        for ch in self.channels:
            if ch.end > self.record_size:
                raise ValueError(
                    f"Channel {ch.name!r} ends at {ch.end}, "
                    f"past record size {self.record_size}"
                )
        for entry in self.datalog:
            if not 0 <= entry.channel_index < len(self.channels):
                raise ValueError(f"Datalog entry {entry.label!r} has no channel")

    def columns(self) -> list[OutputColumn]:
        """Log columns in output order.

        Without a datalog overlay every channel is logged in parse order
        as a float.
        """
        if not self.datalog:
            return [
                OutputColumn(ch.name, ch.unit, ch, Presentation.FLOAT)
                for ch in self.channels
            ]
        columns = []
        for entry in self.datalog:
            ch = self.channels[entry.channel_index]
            columns.append(OutputColumn(entry.label, ch.unit, ch, entry.presentation))
        return columns

    def to_dict(self) -> dict:
        return {
            "record_size": self.record_size,
            "channels": [ch.to_dict() for ch in self.channels],
            "columns": [
                {"label": col.label, "channel": col.descriptor.name,
                 "presentation": col.presentation.value}
                for col in self.columns()
            ],
        }
