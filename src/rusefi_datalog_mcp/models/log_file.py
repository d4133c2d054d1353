"""Tab-separated datalog files (``.msl``).

File layout::

    Time    RPM     CLT     ...     <- labels
    s       RPM     C       ...     <- units
    0.050   2400.000 87.500 ...     <- one row per successful poll

Naming: with a valid clock, ``YYYYMMDD/HHMMSS.msl`` with ``_01`` to
``_99`` appended on collision; otherwise ``LOG001.msl`` to ``LOG999.msl``.
"""

from __future__ import annotations

import logging
import math
from typing import IO, Sequence

from ..storage import sync
from .channels import ChannelTable, OutputColumn, Presentation

logger = logging.getLogger(__name__)

LOG_EXTENSION = ".msl"
MAX_COLLISION_SUFFIX = 99
MAX_FLAT_INDEX = 999
SEPARATOR = "\t"

TIME_LABEL = "Time"
TIME_UNIT = "s"


def dated_candidates(when) -> tuple[str, list[str]]:
    """Folder and candidate file paths for a log started at ``when``."""
    folder = when.strftime("%Y%m%d")
    stem = f"{folder}/{when.strftime('%H%M%S')}"
    names = [f"{stem}{LOG_EXTENSION}"]
    names += [f"{stem}_{i:02d}{LOG_EXTENSION}" for i in range(1, MAX_COLLISION_SUFFIX + 1)]
    return folder, names


def flat_candidates() -> list[str]:
    """Sequential file names used when no valid clock is available."""
    return [f"LOG{i:03d}{LOG_EXTENSION}" for i in range(1, MAX_FLAT_INDEX + 1)]


def format_value(value: float, presentation: Presentation) -> str:
    if presentation is Presentation.INTEGER and math.isfinite(value):
        return str(int(value))
    return f"{value:.3f}"


def _create_first_free(storage, names: Sequence[str]) -> tuple[str, IO[str]] | None:
    for name in names:
        if storage.exists(name):
            continue
        handle = storage.open(name, "x")
        if handle is None:
            return None
        return name, handle
    return None


class LogWriter:
    """Writes header and sample rows to one open log file."""

    def __init__(self, handle: IO[str], path: str, columns: list[OutputColumn]) -> None:
        self._handle = handle
        self.path = path
        self.columns = columns
        self.row_count = 0

    @classmethod
    def create(cls, storage, clock, table: ChannelTable) -> LogWriter | None:
        """Create the next free log file for ``table``.

        Returns:
            An open writer, or None if every candidate name is taken or
            the file cannot be created.
        """
        if clock.is_valid():
            folder, names = dated_candidates(clock.now())
            if not storage.mkdir(folder):
                return None
        else:
            logger.info("Clock not valid; using sequential log names")
            names = flat_candidates()

        created = _create_first_free(storage, names)
        if created is None:
            logger.error("No free log file name (tried %s .. %s)", names[0], names[-1])
            return None

        path, handle = created
        logger.info("Logging to %s", path)
        return cls(handle, path, table.columns())

    def write_header(self) -> None:
        labels = [TIME_LABEL] + [col.label for col in self.columns]
        units = [TIME_UNIT] + [col.unit for col in self.columns]
        self._handle.write(SEPARATOR.join(labels) + "\n")
        self._handle.write(SEPARATOR.join(units) + "\n")
        self.sync()

    def write_row(self, elapsed_s: float, values: Sequence[float]) -> None:
        fields = [f"{elapsed_s:.3f}"]
        for col, value in zip(self.columns, values):
            fields.append(format_value(value, col.presentation))
        self._handle.write(SEPARATOR.join(fields) + "\n")
        self.row_count += 1

    def sync(self) -> None:
        sync(self._handle)

    def close(self) -> None:
        if self._handle.closed:
            return
        try:
            self.sync()
        except OSError as e:
            logger.warning("Sync on close failed for %s: %s", self.path, e)
        finally:
            self._handle.close()
            logger.info("Closed %s (%d rows)", self.path, self.row_count)
