"""Console logging for the AR depth-of-field nodes."""

import logging
import os
import sys

_ANSI_RESET = "\033[0m"
_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRIT",
}
_LEVEL_COLORS = {
    logging.DEBUG: "\033[90m",   # dim grey
    logging.INFO: "\033[36m",    # cyan
    logging.WARNING: "\033[33m", # yellow
    logging.ERROR: "\033[31m",   # red
    logging.CRITICAL: "\033[41m",
}

ROOT_LOGGER = "ar_dof"


def _supports_color(stream) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


class _ConsoleFormatter(logging.Formatter):
    """Prefixes each record with a short level tag, coloured on a TTY."""

    def __init__(self, use_color: bool):
        super().__init__("%(message)s")
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = f"[{_LEVEL_NAMES.get(record.levelno, record.levelname)}]"
        prefix = tag
        if self._use_color and record.levelno in _LEVEL_COLORS:
            prefix = f"{_LEVEL_COLORS[record.levelno]}{tag}{_ANSI_RESET}"

        if "\n" in message:
            indent = " " * (len(tag) + 1)
            lines = message.splitlines()
            message = lines[0] + "".join("\n" + indent + line for line in lines[1:])
        return f"{prefix} {message}"


def _has_console_handler(logger: logging.Logger) -> bool:
    return any(isinstance(h, logging.StreamHandler) and isinstance(h.formatter, _ConsoleFormatter)
               for h in logger.handlers)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Return a logger under the ``ar_dof`` hierarchy.

    The first call sets the package level from AR_DOF_LOG_LEVEL (default
    WARNING) unless it was already configured. A console handler is added only
    when the process has no root handlers of its own (ComfyUI installs them);
    records always propagate to the root logger.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if root.level == logging.NOTSET:
        level_name = os.environ.get("AR_DOF_LOG_LEVEL", "WARNING").strip().upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.WARNING
        root.setLevel(level)

    if not logging.getLogger().handlers and not _has_console_handler(root):
        stream = sys.stderr
        handler = logging.StreamHandler(stream=stream)
        handler.setFormatter(_ConsoleFormatter(use_color=_supports_color(stream)))
        root.addHandler(handler)

    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


__all__ = ["get_logger"]
