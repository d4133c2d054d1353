"""Connection and logging state machine.

Lifecycle::

    WAIT_DEVICE -> ASSERT_DTR -> GET_SIGNATURE -> LOAD_INI -> LOGGING
                                                     |          |
                                        ERROR_INI (bad INI)   STOPPED (operator stop)
                                        ERROR_SD (no log file) ERROR_SD (write error)

- Losing the transport in any connected state closes the log and goes
  back to WAIT_DEVICE.
- STOPPED, ERROR_SD and ERROR_INI are terminal until a RESET command.
- A log file that cannot be created is a storage error (ERROR_SD), not a
  definition error.
- An unexpected exception in the loop is logged with its traceback and
  ends in ERROR_SD.
- Exactly one thread runs :meth:`Session.step`; other threads only
  :meth:`Session.submit` commands and read :meth:`Session.snapshot`.
"""

from __future__ import annotations

import logging
import queue
import threading
from enum import Enum, IntEnum
from typing import Callable

from . import indicator as patterns
from .clock import monotonic_ms
from .config import LoggerConfig
from .indicator import Indicator
from .models.channels import RECORD_CAPACITY, ChannelTable
from .models.decoder import decode_row
from .models.ini_file import FALLBACK_INI, ini_filename, load_ini, select_ini
from .models.log_file import LogWriter
from .protocol.exchange import ProtocolEngine
from .utils import crc

logger = logging.getLogger(__name__)


class State(Enum):
    WAIT_DEVICE = "WaitDevice"
    ASSERT_DTR = "AssertDTR"
    GET_SIGNATURE = "GetSignature"
    LOAD_INI = "LoadINI"
    LOGGING = "Logging"
    STOPPED = "Stopped"
    ERROR_SD = "ErrorSD"
    ERROR_INI = "ErrorINI"


class OperatorCommand(IntEnum):
    """Single-byte operator commands."""

    STOP = 0x78  # 'x'
    RESET = 0x72  # 'r'


TERMINAL_STATES = frozenset({State.STOPPED, State.ERROR_SD, State.ERROR_INI})
CONNECTED_STATES = frozenset({
    State.ASSERT_DTR,
    State.GET_SIGNATURE,
    State.LOAD_INI,
    State.LOGGING,
})

STATE_PATTERNS = {
    State.WAIT_DEVICE: patterns.WAITING,
    State.ASSERT_DTR: patterns.CONNECTING,
    State.GET_SIGNATURE: patterns.CONNECTING,
    State.LOAD_INI: patterns.CONNECTING,
    State.LOGGING: patterns.LOGGING,
    State.STOPPED: patterns.STOPPED,
    State.ERROR_SD: patterns.ERROR,
    State.ERROR_INI: patterns.ERROR,
}


class Session:
    """Owns the connection lifecycle, channel table, record buffer and log."""

    def __init__(
        self,
        transport,
        storage,
        clock,
        config: LoggerConfig | None = None,
        ticks_ms: Callable[[], int] = monotonic_ms,
        indicator: Indicator | None = None,
    ) -> None:
        self._transport = transport
        self._storage = storage
        self._clock = clock
        self._config = config or LoggerConfig()
        self._ticks_ms = ticks_ms
        self._commands: queue.SimpleQueue[OperatorCommand] = queue.SimpleQueue()
        self.engine = ProtocolEngine(transport, ticks_ms)
        self.indicator = indicator or Indicator()
        self.raw_record = bytearray(RECORD_CAPACITY)

        self.state = State.WAIT_DEVICE
        self.state_entered = 0
        self.crc_ok: bool | None = None
        self.signature: str | None = None
        self.ini_name: str | None = None
        self.channel_table: ChannelTable | None = None
        self.log: LogWriter | None = None
        self.row_count = 0
        self.failed_polls = 0
        self.log_start = 0
        self.last_poll = 0
        self.last_sync = 0

        self._handlers = {
            State.WAIT_DEVICE: self._wait_device,
            State.ASSERT_DTR: self._assert_dtr,
            State.GET_SIGNATURE: self._get_signature,
            State.LOAD_INI: self._load_ini,
            State.LOGGING: self._logging,
            State.ERROR_INI: self._error_ini,
        }

    @property
    def storage(self):
        return self._storage

    @property
    def clock(self):
        return self._clock

    # ---- lifecycle ----

    def boot(self) -> None:
        """Self-test the checksum routine and check storage."""
        self.crc_ok = crc.self_test()
        self._check_storage()

    def run(self, stop_event: threading.Event) -> None:
        """Step until ``stop_event`` is set, then close any open log."""
        self.boot()
        try:
            while not stop_event.is_set():
                try:
                    self.step()
                except Exception:
                    logger.exception("Unexpected error in %s", self.state.value)
                    self._close_log()
                    self._enter(State.ERROR_SD)
        finally:
            self._close_log()

    def submit(self, command: int) -> None:
        """Queue an operator command; safe to call from any thread."""
        self._commands.put(OperatorCommand(command))

    def step(self) -> None:
        """Run one loop iteration."""
        self._transport.pump()
        now = self._ticks_ms()
        self.indicator.update(now)

        if self.state in CONNECTED_STATES and not self._transport.present():
            self._on_disconnect()
            return

        command = self._next_command()
        if command is not None:
            self._handle_command(command)

        handler = self._handlers.get(self.state)
        if handler is None:
            return
        try:
            handler(now)
        except ConnectionError as e:
            logger.warning("Transport error in %s: %s", self.state.value, e)
            self._on_disconnect()

    def snapshot(self) -> dict:
        """Status summary for the host side."""
        table = self.channel_table
        log = self.log
        return {
            "state": self.state.value,
            "indicator": self.indicator.pattern.name,
            "crc_self_test": self.crc_ok,
            "signature": self.signature,
            "ini_file": self.ini_name,
            "record_size": table.record_size if table else None,
            "channel_count": len(table.channels) if table else 0,
            "log_file": log.path if log else None,
            "row_count": self.row_count,
            "failed_polls": self.failed_polls,
        }

    # ---- transitions ----

    def _enter(self, state: State) -> None:
        now = self._ticks_ms()
        if state is not self.state:
            logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_entered = now
        self.indicator.set(STATE_PATTERNS[state], now)

    def _check_storage(self) -> None:
        if self._storage.available():
            logger.info("Storage OK: %s", self._storage.root)
            self._enter(State.WAIT_DEVICE)
        else:
            logger.error("Storage unavailable: %s", self._storage.root)
            self._enter(State.ERROR_SD)

    def _reset_connection(self) -> None:
        self.signature = None
        self.ini_name = None
        self.channel_table = None
        self.row_count = 0
        self.failed_polls = 0

    def _close_log(self) -> None:
        if self.log is None:
            return
        self.log.close()
        self.log = None

    def _on_disconnect(self) -> None:
        logger.info("ECU disconnected")
        self._close_log()
        self._reset_connection()
        self._enter(State.WAIT_DEVICE)

    def _next_command(self) -> OperatorCommand | None:
        try:
            return self._commands.get_nowait()
        except queue.Empty:
            return None

    def _handle_command(self, command: OperatorCommand) -> None:
        if command is OperatorCommand.STOP:
            if self.state in TERMINAL_STATES:
                logger.debug("Stop ignored in %s", self.state.value)
                return
            self._close_log()
            logger.info("Logging stopped by operator")
            self._enter(State.STOPPED)
        elif command is OperatorCommand.RESET:
            if self.state not in TERMINAL_STATES:
                logger.debug("Reset ignored in %s", self.state.value)
                return
            logger.info("Session reset by operator")
            self._reset_connection()
            self._check_storage()

    # ---- state handlers ----

    def _wait_device(self, now: int) -> None:
        if self._transport.present():
            logger.info("ECU detected")
            self._enter(State.ASSERT_DTR)

    def _assert_dtr(self, now: int) -> None:
        if now - self.state_entered < self._config.settle_ms:
            return
        logger.info("Asserting DTR + RTS, requesting signature")
        self._transport.set_flow_control(dtr=True, rts=True)
        self.engine.discard_input()
        self.engine.send_signature_query()
        self._enter(State.GET_SIGNATURE)

    def _resend_signature_query(self) -> None:
        self.engine.discard_input()
        self.engine.send_signature_query()
        self.state_entered = self._ticks_ms()

    def _get_signature(self, now: int) -> None:
        if self._transport.available():
            signature = self.engine.read_ascii_response()
            if not signature:
                logger.warning("Empty signature response; retrying")
                self._resend_signature_query()
                return
            self.signature = signature
            self.ini_name = ini_filename(signature)
            logger.info("Signature: %s", signature)
            logger.info("Tune definition: %s (fallback %s)", self.ini_name, FALLBACK_INI)
            self._enter(State.LOAD_INI)
        elif now - self.state_entered > self._config.signature_retry_ms:
            logger.warning("Signature timeout; retrying")
            self._resend_signature_query()

    def _load_ini(self, now: int) -> None:
        name = select_ini(self._storage, self.signature)
        table = load_ini(self._storage, name) if name else None
        if table is None:
            self._enter(State.ERROR_INI)
            return
        self.ini_name = name
        self.channel_table = table

        self.engine.switch_mode()

        log = LogWriter.create(self._storage, self._clock, table)
        if log is None:
            self._enter(State.ERROR_SD)
            return
        try:
            log.write_header()
        except OSError as e:
            logger.error("Cannot write log header: %s", e)
            log.close()
            self._enter(State.ERROR_SD)
            return

        self.log = log
        self.row_count = 0
        self.failed_polls = 0
        start = self._ticks_ms()
        self.log_start = start
        self.last_poll = start
        self.last_sync = start
        logger.info("Logging %d columns", len(log.columns))
        self._enter(State.LOGGING)

    def _logging(self, now: int) -> None:
        try:
            if now - self.last_poll >= self._config.poll_interval_ms:
                self.last_poll = now
                self._poll()
            if self._ticks_ms() - self.last_sync >= self._config.sync_interval_ms:
                self.log.sync()
                self.last_sync = self._ticks_ms()
        except OSError as e:
            logger.error("Log write failed: %s", e)
            self._close_log()
            self._enter(State.ERROR_SD)

    def _poll(self) -> None:
        table = self.channel_table
        if not self.engine.fetch_record(table.record_size, self.raw_record):
            self.failed_polls += 1
            logger.debug("Poll failed (%d so far)", self.failed_polls)
            return
        values = decode_row(self.raw_record, table)
        elapsed_s = (self._ticks_ms() - self.log_start) / 1000.0
        self.log.write_row(elapsed_s, values)
        self.row_count += 1

    def _error_ini(self, now: int) -> None:
        if now - self.state_entered < self._config.ini_reminder_ms:
            return
        self.state_entered = now
        logger.warning(
            "Waiting for tune definition: expected %s or %s",
            self.ini_name or "<signature>.INI",
            FALLBACK_INI,
        )
