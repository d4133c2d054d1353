"""USB CDC serial connection to a rusEFI ECU.

The ECU enumerates as an STM32 virtual COM port. With no explicit port
the connection looks for the first port matching the USB vendor/product
ID. Disconnects are detected by pyserial errors and reported through
``present()``; the session polls that once per loop iteration.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import serial
import serial.tools.list_ports

logger = logging.getLogger(__name__)

VENDOR_ID = 0x0483
PRODUCT_ID = 0x5740
BAUDRATE = 115200
IDLE_PUMP_SLEEP_S = 0.001


@dataclass
class DeviceInfo:
    """Basic device identification from USB descriptors."""

    port: str = ""
    vendor_id: int | None = None
    product_id: int | None = None
    manufacturer: str = ""
    product: str = ""
    serial_number: str = ""


def find_port(vendor_id: int = VENDOR_ID, product_id: int = PRODUCT_ID) -> DeviceInfo | None:
    """Return the first serial port whose USB IDs match, or None."""
    for info in serial.tools.list_ports.comports():
        if info.vid == vendor_id and info.pid == product_id:
            return DeviceInfo(
                port=info.device,
                vendor_id=info.vid,
                product_id=info.pid,
                manufacturer=info.manufacturer or "",
                product=info.product or "",
                serial_number=info.serial_number or "",
            )
    return None


class SerialConnection:
    """Byte transport over pyserial.

    ``present()`` opens the port lazily when the device shows up, and
    returns False once it has gone away. ``pump()`` moves whatever the OS
    has buffered into an internal queue that ``read()`` and
    ``available()`` serve from.

    Usage::

        conn = SerialConnection(port="/dev/ttyACM0")
        if conn.present():
            conn.write(b"S")
            conn.pump()
            byte = conn.read()
    """

    def __init__(
        self,
        port: str | None = None,
        baudrate: int = BAUDRATE,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
    ) -> None:
        self._port = port
        self._baudrate = baudrate
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._serial: serial.Serial | None = None
        self._rx = bytearray()
        self._device_info = DeviceInfo(port=port or "")

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def _locate(self) -> DeviceInfo | None:
        if self._port:
            return DeviceInfo(port=self._port)
        return find_port(self._vendor_id, self._product_id)

    def present(self) -> bool:
        """True while an ECU port is open; tries to open one if not."""
        if self.connected:
            return True
        info = self._locate()
        if info is None:
            return False
        try:
            self._serial = serial.Serial(info.port, baudrate=self._baudrate, timeout=0)
        except serial.SerialException as e:
            logger.debug("Cannot open %s: %s", info.port, e)
            self._serial = None
            return False
        self._device_info = info
        self._rx.clear()
        logger.info("Opened %s @ %d", info.port, self._baudrate)
        return True

    def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return
        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning("Error closing port: %s", e)
        finally:
            self._serial = None
            self._rx.clear()
            logger.info("Disconnected")

    def _lost(self, error: Exception) -> None:
        logger.warning("Serial link lost: %s", error)
        self.close()

    def set_flow_control(self, dtr: bool, rts: bool) -> None:
        if not self.connected:
            return
        try:
            self._serial.dtr = dtr
            self._serial.rts = rts
        except (serial.SerialException, OSError) as e:
            self._lost(e)

    def write(self, data: bytes) -> int:
        """Write raw bytes.

        Returns:
            Number of bytes written; 0 if the link dropped during the write.

        Raises:
            ConnectionError: If the port was never opened.
        """
        if not self.connected:
            raise ConnectionError("Serial port not open")
        try:
            return self._serial.write(data) or 0
        except (serial.SerialException, OSError) as e:
            self._lost(e)
            return 0

    def pump(self) -> None:
        """Move pending input from the OS into the receive queue."""
        if not self.connected:
            time.sleep(IDLE_PUMP_SLEEP_S)
            return
        try:
            waiting = self._serial.in_waiting
            if waiting:
                self._rx += self._serial.read(waiting)
                return
        except (serial.SerialException, OSError) as e:
            self._lost(e)
        time.sleep(IDLE_PUMP_SLEEP_S)

    def available(self) -> bool:
        if not self._rx:
            self.pump()
        return bool(self._rx)

    def read(self) -> int | None:
        """Pop one received byte, or None if nothing is queued."""
        if not self._rx:
            return None
        byte = self._rx[0]
        del self._rx[0]
        return byte
