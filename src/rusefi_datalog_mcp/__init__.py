"""rusEFI output-channel datalogger with an MCP control surface."""

__version__ = "0.1.0"
