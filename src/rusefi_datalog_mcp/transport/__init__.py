"""Transport layer: serial link to the ECU."""

from .serial_connection import SerialConnection, find_port
