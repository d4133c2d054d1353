"""Data models: channel table, tune-definition parser, decoder, log files."""

from .channels import (
    ChannelDescriptor,
    ChannelTable,
    DatalogEntry,
    Presentation,
    TypeCode,
)
from .decoder import decode, decode_row
from .ini_file import parse_ini
from .log_file import LogWriter
