"""Tune-definition (INI) parsing into a ``ChannelTable``.

Only what the logger needs is read from the file:

- ``ochBlockSize = N`` anywhere in the file (first occurrence wins)
- ``[OutputChannels]`` scalar lines::

      name = scalar, TYPE, OFFSET, "UNIT", MUL, ADD[, ...]

- ``[Datalog]`` entries::

      entry = channelName, "Label", float|int[, "fmt"]

Bit fields, arrays and computed channels are skipped. Datalog entries are
resolved after the whole file has been read, so section order in the
file does not matter. Entries naming an unknown channel are dropped.

The definition file for an ECU is named after the djb2 hash of its
signature (``1A2B3C4D.INI``), with ``DEFAULT.INI`` as the fallback.
"""

from __future__ import annotations

import csv
import logging
import math
import re
from enum import Enum
from typing import Iterable

from ..utils.crc import djb2
from .channels import (
    F32_MAX,
    MAX_CHANNELS,
    RECORD_CAPACITY,
    TYPE_CODE_ALIASES,
    ChannelDescriptor,
    ChannelTable,
    DatalogEntry,
    Presentation,
)

logger = logging.getLogger(__name__)

INI_EXTENSION = ".INI"
FALLBACK_INI = "DEFAULT.INI"

COMMENT_MARKER = ";"
RECORD_SIZE_RE = re.compile(r"^ochBlockSize\s*=\s*(\d+)\b")

PRESENTATIONS = {
    "float": Presentation.FLOAT,
    "int": Presentation.INTEGER,
}


class Section(Enum):
    NONE = ""
    OUTPUT_CHANNELS = "[OutputChannels"
    DATALOG = "[Datalog"


def ini_filename(signature: str) -> str:
    """Return the 8.3 definition filename for an ECU signature."""
    return f"{djb2(signature):08X}{INI_EXTENSION}"


def strip_comment(line: str) -> str:
    """Cut ``line`` at the first comment marker outside quotes.

    A marker preceded by a backslash is kept as a literal.
    """
    quoted = False
    escaped = False
    for i, char in enumerate(line):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            quoted = not quoted
        elif char == COMMENT_MARKER and not quoted:
            return line[:i]
    return line


def split_fields(text: str) -> list[str]:
    """Split a comma-separated value list, honouring double quotes."""
    row = next(csv.reader([text], skipinitialspace=True), [])
    return [field.strip() for field in row]


def _split_assignment(line: str) -> tuple[str, str] | None:
    name, sep, value = line.partition("=")
    if not sep:
        return None
    name = "".join(name.split())
    if not name:
        return None
    return name, value


def parse_channel_line(line: str) -> ChannelDescriptor | None:
    """Parse one ``[OutputChannels]`` line, or return None if unsupported."""
    assignment = _split_assignment(line)
    if assignment is None:
        return None
    name, value = assignment

    fields = split_fields(value)
    if len(fields) < 6 or fields[0] != "scalar":
        return None

    type_code = TYPE_CODE_ALIASES.get(fields[1].upper())
    if type_code is None:
        logger.debug("Unknown type %r for channel %s", fields[1], name)
        return None

    try:
        offset = int(fields[2], 10)
        multiplier = float(fields[4])
        additive = float(fields[5])
    except ValueError:
        logger.debug("Unparseable numeric field in channel %s", name)
        return None

    if not all(math.isfinite(x) and abs(x) <= F32_MAX for x in (multiplier, additive)):
        logger.debug("Channel %s scale outside single-precision range", name)
        return None

    if not 0 <= offset < RECORD_CAPACITY:
        logger.debug("Channel %s offset %d outside record buffer", name, offset)
        return None

    return ChannelDescriptor(
        name=name,
        unit=fields[3],
        offset=offset,
        type_code=type_code,
        multiplier=multiplier,
        additive=additive,
    )


def parse_datalog_line(line: str) -> tuple[str, str, Presentation] | None:
    """Parse one ``[Datalog]`` entry into (channel, label, presentation)."""
    if not line.startswith("entry"):
        return None
    assignment = _split_assignment(line)
    if assignment is None or assignment[0] != "entry":
        return None

    fields = split_fields(assignment[1])
    if len(fields) < 3 or not fields[0]:
        return None
    presentation = PRESENTATIONS.get(fields[2].lower())
    if presentation is None:
        return None
    return fields[0], fields[1], presentation


def parse_ini(lines: Iterable[str]) -> ChannelTable | None:
    """Build a ``ChannelTable`` from tune-definition text.

    Returns:
        The table, or None if no record size was found, the record size
        does not fit the record buffer, or no channel could be parsed.
    """
    section = Section.NONE
    record_size: int | None = None
    channels: list[ChannelDescriptor] = []
    entries: list[tuple[str, str, Presentation]] = []
    truncated = False

    for raw_line in lines:
        line = strip_comment(raw_line).strip()
        if not line:
            continue

        if line.startswith("["):
            if line.startswith(Section.OUTPUT_CHANNELS.value):
                section = Section.OUTPUT_CHANNELS
            elif line.startswith(Section.DATALOG.value):
                section = Section.DATALOG
            else:
                section = Section.NONE
            continue

        if record_size is None:
            match = RECORD_SIZE_RE.match(line)
            if match:
                record_size = int(match.group(1))

        if section is Section.OUTPUT_CHANNELS:
            descriptor = parse_channel_line(line)
            if descriptor is None:
                continue
            if len(channels) >= MAX_CHANNELS:
                truncated = True
                continue
            channels.append(descriptor)
        elif section is Section.DATALOG:
            entry = parse_datalog_line(line)
            if entry is not None:
                entries.append(entry)

    if truncated:
        logger.warning("More than %d channels defined; extra channels ignored", MAX_CHANNELS)

    if record_size is None or record_size == 0:
        logger.error("ochBlockSize not found")
        return None
    if record_size > RECORD_CAPACITY:
        logger.error(
            "ochBlockSize=%d exceeds record buffer capacity %d",
            record_size,
            RECORD_CAPACITY,
        )
        return None

    fitting = []
    for ch in channels:
        if ch.end > record_size:
            logger.warning(
                "Channel %s (offset %d) extends past ochBlockSize %d; dropped",
                ch.name,
                ch.offset,
                record_size,
            )
            continue
        fitting.append(ch)

    if not fitting:
        logger.error("No scalar channels parsed")
        return None

    index_by_name: dict[str, int] = {}
    for i, ch in enumerate(fitting):
        index_by_name.setdefault(ch.name, i)

    datalog = []
    for channel_name, label, presentation in entries:
        index = index_by_name.get(channel_name)
        if index is None:
            logger.debug("Datalog entry %r references unknown channel", channel_name)
            continue
        datalog.append(DatalogEntry(label=label or channel_name,
                                    channel_index=index,
                                    presentation=presentation))

    logger.info(
        "Parsed %d channels, %d datalog entries, ochBlockSize %d",
        len(fitting),
        len(datalog),
        record_size,
    )
    return ChannelTable(record_size=record_size, channels=tuple(fitting), datalog=tuple(datalog))


def load_ini(storage, filename: str) -> ChannelTable | None:
    """Parse the definition file ``filename`` from ``storage``."""
    logger.info("Reading tune definition %s", filename)
    handle = storage.open(filename, "r")
    if handle is None:
        logger.error("Cannot open %s", filename)
        return None
    with handle:
        return parse_ini(handle)


def select_ini(storage, signature: str) -> str | None:
    """Pick the definition file for ``signature``.

    Returns:
        The hash-named file if present, else ``DEFAULT.INI`` if present,
        else None.
    """
    hashed = ini_filename(signature)
    if storage.exists(hashed):
        return hashed
    if storage.exists(FALLBACK_INI):
        logger.info("%s absent, using %s", hashed, FALLBACK_INI)
        return FALLBACK_INI
    logger.error("No tune definition found: expected %s or %s", hashed, FALLBACK_INI)
    return None
