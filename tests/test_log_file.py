"""Tests for log file naming and formatting."""

from rusefi_datalog_mcp.models.channels import (
    ChannelDescriptor,
    ChannelTable,
    DatalogEntry,
    Presentation,
    TypeCode,
)
from rusefi_datalog_mcp.models.log_file import LogWriter, format_value
from rusefi_datalog_mcp.storage import Storage


def _table(datalog=()):
    return ChannelTable(
        record_size=4,
        channels=(
            ChannelDescriptor("RPMValue", "RPM", 0, TypeCode.U16),
            ChannelDescriptor("coolant", "C", 2, TypeCode.S16, 0.01),
        ),
        datalog=datalog,
    )


def test_dated_name(tmp_path, clock):
    """A valid clock gives YYYYMMDD/HHMMSS.msl."""
    log = LogWriter.create(Storage(tmp_path), clock, _table())
    assert log.path == "20250901/143005.msl"
    assert (tmp_path / "20250901" / "143005.msl").exists()
    log.close()


def test_collision_appends_suffix(tmp_path, clock):
    """An existing primary name yields the _01 name."""
    (tmp_path / "20250901").mkdir()
    (tmp_path / "20250901" / "143005.msl").write_text("old")
    log = LogWriter.create(Storage(tmp_path), clock, _table())
    assert log.path == "20250901/143005_01.msl"
    log.close()


def test_all_suffixes_taken_fails_cleanly(tmp_path, clock):
    """With the primary and _01.._99 taken, creation fails without a file."""
    folder = tmp_path / "20250901"
    folder.mkdir()
    (folder / "143005.msl").write_text("")
    for i in range(1, 100):
        (folder / f"143005_{i:02d}.msl").write_text("")
    before = sorted(p.name for p in folder.iterdir())

    assert LogWriter.create(Storage(tmp_path), clock, _table()) is None
    assert sorted(p.name for p in folder.iterdir()) == before


def test_invalid_clock_uses_flat_names(tmp_path, clock):
    """Without a valid clock, LOGnnn.msl names are used in sequence."""
    clock.valid = False
    (tmp_path / "LOG001.msl").write_text("")
    log = LogWriter.create(Storage(tmp_path), clock, _table())
    assert log.path == "LOG002.msl"
    log.close()


def test_flat_names_exhausted(tmp_path, clock):
    """All 999 flat names taken means failure."""
    clock.valid = False
    for i in range(1, 1000):
        (tmp_path / f"LOG{i:03d}.msl").write_text("")
    assert LogWriter.create(Storage(tmp_path), clock, _table()) is None


def test_header_without_datalog(tmp_path, clock):
    """Header rows are channel names and units, tab separated."""
    log = LogWriter.create(Storage(tmp_path), clock, _table())
    log.write_header()
    log.close()
    lines = (tmp_path / log.path).read_text().splitlines()
    assert lines[0] == "Time\tRPMValue\tcoolant"
    assert lines[1] == "s\tRPM\tC"


def test_header_and_rows_with_datalog(tmp_path, clock):
    """Datalog labels, order and presentation drive the output."""
    table = _table(datalog=(
        DatalogEntry("CLT", 1, Presentation.FLOAT),
        DatalogEntry("RPM", 0, Presentation.INTEGER),
    ))
    log = LogWriter.create(Storage(tmp_path), clock, table)
    log.write_header()
    log.write_row(0.05, [87.5, 2400.9])
    log.write_row(1.1234, [-3.25, -12.7])
    log.close()

    lines = (tmp_path / log.path).read_text().splitlines()
    assert lines[0] == "Time\tCLT\tRPM"
    assert lines[1] == "s\tC\tRPM"
    assert lines[2] == "0.050\t87.500\t2400"
    assert lines[3] == "1.123\t-3.250\t-12"
    assert log.row_count == 2


def test_format_value():
    """Float presentation is 3 decimals, integer presentation truncates."""
    assert format_value(14.5, Presentation.FLOAT) == "14.500"
    assert format_value(14.9, Presentation.INTEGER) == "14"
    assert format_value(float("nan"), Presentation.INTEGER) == "nan"


def test_close_is_idempotent(tmp_path, clock):
    """Closing twice does not raise."""
    log = LogWriter.create(Storage(tmp_path), clock, _table())
    log.close()
    log.close()
