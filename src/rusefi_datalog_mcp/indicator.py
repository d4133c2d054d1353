"""Status indicator driven by named blink patterns."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedPattern:
    """On/off duty cycle in milliseconds; 0/0 means solid on."""

    name: str
    on_ms: int
    off_ms: int

    @property
    def solid(self) -> bool:
        return not self.on_ms and not self.off_ms


WAITING = LedPattern("waiting", 500, 500)
CONNECTING = LedPattern("connecting", 100, 100)
LOGGING = LedPattern("logging", 50, 950)
STOPPED = LedPattern("stopped", 100, 1900)
ERROR = LedPattern("error", 0, 0)


class Indicator:
    """Tracks the lit/unlit phase of the current pattern.

    ``on_change`` receives the new lit state on every toggle, which is
    where a real LED would be driven.
    """

    def __init__(self, on_change=None) -> None:
        self._on_change = on_change
        self.pattern = WAITING
        self.lit = False
        self._toggled_at = 0

    def set(self, pattern: LedPattern, now_ms: int) -> None:
        if pattern is not self.pattern:
            logger.debug("Indicator: %s", pattern.name)
        self.pattern = pattern
        self._toggled_at = now_ms

    def update(self, now_ms: int) -> None:
        if self.pattern.solid:
            self._drive(True)
            return
        period = self.pattern.on_ms if self.lit else self.pattern.off_ms
        if now_ms - self._toggled_at >= period:
            self._drive(not self.lit)
            self._toggled_at = now_ms

    def _drive(self, lit: bool) -> None:
        if lit == self.lit:
            return
        self.lit = lit
        if self._on_change is not None:
            self._on_change(lit)
