from datetime import datetime, UTC
from typing import Optional
import os
import sys

STATUS_EMOJI = {
    "ERROR": "❌",
    "WARN": "⚠️",
    "INFO": "ℹ️",
    "OK": "✅",
    "DEBUG": "🔍",
    "TRACE": "🪰",
}

# Log level hierarchy (lower number = more severe)
LOG_LEVELS = {
    "ERROR": 0,
    "WARN": 1,
    "WARNING": 1,
    "INFO": 2,
    "OK": 2,
    "DEBUG": 3,
    "TRACE": 4,
}

DEFAULT_LEVEL = "ERROR"


def parse_level(name: Optional[str]) -> int:
    """
    Map a level name to its numeric value.

    Unknown or empty names fall back to ERROR, so a typo in the
    configured level keeps the proxy quiet rather than chatty.
    """
    key = (name or "").strip().upper()
    return LOG_LEVELS.get(key, LOG_LEVELS[DEFAULT_LEVEL])


class LogUtil:
    """
    Line logger shared by the services.

      [timestamp][service][LEVEL]emoji message

    Level comes from LOG_LEVEL at construction and can be replaced
    later with set_level() once the CLI has been parsed.
    Logging must NEVER raise.
    """

    def __init__(self, service_name: str, level: Optional[str] = None, stream=None):
        self.service_name = service_name
        self.stream = stream
        self.log_level = parse_level(level if level is not None else os.getenv("LOG_LEVEL"))

    # -------------------------------------------------
    # Configuration
    # -------------------------------------------------

    def set_level(self, level: Optional[str]) -> None:
        self.log_level = parse_level(level)

    @property
    def level_name(self) -> str:
        for name, value in LOG_LEVELS.items():
            if value == self.log_level and name not in ("WARNING", "OK"):
                return name
        return DEFAULT_LEVEL

    def enabled(self, level: str) -> bool:
        return LOG_LEVELS.get(level, LOG_LEVELS["INFO"]) <= self.log_level

    # -------------------------------------------------
    # Internal formatting
    # -------------------------------------------------

    def _stamp(self, level: str, message: str, emoji: str) -> str:
        now = datetime.now(UTC).isoformat(timespec="milliseconds")
        symbol = emoji or STATUS_EMOJI.get(level, "")
        return f"[{now}][{self.service_name}][{level}]{symbol} {message}"

    def _emit(self, level: str, message: str, emoji: str = "") -> None:
        try:
            if not self.enabled(level):
                return
            out = self.stream or sys.stdout
            out.write(self._stamp(level, message, emoji) + "\n")
            out.flush()
        except Exception:
            # Absolute last line of defense
            pass

    # -------------------------------------------------
    # Public API
    # -------------------------------------------------

    def error(self, message: str, emoji: str = STATUS_EMOJI["ERROR"]):
        self._emit("ERROR", message, emoji)

    def warn(self, message: str, emoji: str = STATUS_EMOJI["WARN"]):
        self._emit("WARN", message, emoji)

    def warning(self, message: str, emoji: str = STATUS_EMOJI["WARN"]):
        # Alias for compatibility with standard logging APIs
        self.warn(message, emoji)

    def info(self, message: str, emoji: str = STATUS_EMOJI["INFO"]):
        self._emit("INFO", message, emoji)

    def ok(self, message: str, emoji: str = STATUS_EMOJI["OK"]):
        self._emit("OK", message, emoji)

    def debug(self, message: str, emoji: str = STATUS_EMOJI["DEBUG"]):
        self._emit("DEBUG", message, emoji)

    def trace(self, message: str, emoji: str = STATUS_EMOJI["TRACE"]):
        self._emit("TRACE", message, emoji)
