"""Fixed-offset decoding of the raw output-channel record.

Offsets are validated once when the channel table is built, so decoding
does no bounds checks of its own.
"""

from __future__ import annotations

import math
import struct

from .channels import ChannelDescriptor, ChannelTable

_F32 = struct.Struct("<f")


def to_f32(value: float) -> float:
    """Round ``value`` to the nearest IEEE-754 single-precision float.

    Values beyond the single-precision range saturate to infinity.
    """
    try:
        return _F32.unpack(_F32.pack(value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def decode(raw: bytes | bytearray, descriptor: ChannelDescriptor) -> float:
    """Decode one channel: ``raw * multiplier + additive`` in single precision."""
    (value,) = struct.unpack_from(descriptor.type_code.struct_format, raw, descriptor.offset)
    scaled = to_f32(to_f32(value) * to_f32(descriptor.multiplier))
    return to_f32(scaled + to_f32(descriptor.additive))


def decode_row(raw: bytes | bytearray, table: ChannelTable) -> list[float]:
    """Decode every log column of ``table`` in output order."""
    return [decode(raw, col.descriptor) for col in table.columns()]
