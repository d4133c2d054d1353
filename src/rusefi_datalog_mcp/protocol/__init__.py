"""Protocol layer: CRC framing, command builders, and ECU exchanges."""

from .framing import build_frame, parse_frame
from .commands import Command, build_fetch_output_channels
from .exchange import ProtocolEngine
