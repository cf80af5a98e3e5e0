"""Logging utilities for clone-home commands."""

from __future__ import annotations

import logging
import re
from pathlib import Path

_LOGGER_NAME = "clonehome"

# Userinfo password of an URL, e.g. ``https://x-access-token:<token>@github.com``.
_URL_CREDENTIAL_RE = re.compile(r"(://[^/\s:@]+:)[^/\s@]+@")


def mask_credentials(text: str) -> str:
    """Replace the password part of any credential-bearing URL with ``***``."""
    return _URL_CREDENTIAL_RE.sub(r"\1***@", text)


class CredentialFilter(logging.Filter):
    """Mask access tokens embedded in clone URLs before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_credentials(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


class ConsoleFormatter(logging.Formatter):
    """Terse console lines; the level name is shown only for warnings and up."""

    def __init__(self) -> None:
        super().__init__("[clone-home] %(message)s")
        self._loud = logging.Formatter("[clone-home] %(levelname)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return self._loud.format(record)
        return super().format(record)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the clonehome hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the clonehome logger with console output and optional file sink.

    The console shows warnings and errors unless ``verbose`` is set; the file
    sink always records everything. Both sinks mask clone credentials.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Reset handlers so repeated CLI invocations do not duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    credentials = CredentialFilter()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(ConsoleFormatter())
    stream_handler.addFilter(credentials)
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        file_handler.addFilter(credentials)
        logger.addHandler(file_handler)

    return logger


__all__ = [
    "ConsoleFormatter",
    "CredentialFilter",
    "configure_logging",
    "get_logger",
    "mask_credentials",
]
