"""Logging pipeline for broker processes.

Two handlers hang off the root logger:

* a :class:`SafeStreamHandler` on stdout, which survives narrow
  Windows code pages when a page title or cookie value contains
  characters the console cannot encode;
* a :class:`CompressedRotatingFileHandler` that rolls the broker log
  over at 10 MiB, keeping five gzip-compressed generations.

Typical entry point::

    from core.config import BrokerSettings
    from core.logging_setup import configure_logging

    configure_logging(BrokerSettings())
"""

import gzip
import io
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

DEFAULT_LOG_FILE = os.path.join("logs", "browser_broker.log")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


class CompressedRotatingFileHandler(RotatingFileHandler):
    """Size-based rotation where every rolled-over file is gzipped."""

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """Stream *source* into the gzip archive *dest* and drop *source*."""
        with open(source, "rb") as raw, gzip.open(dest, "wb") as packed:
            shutil.copyfileobj(raw, packed)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """Console handler that degrades unencodable text instead of failing.

    Only Windows consoles are affected; elsewhere it behaves like a
    plain :class:`logging.StreamHandler`.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record) + self.terminator
            try:
                self.stream.write(line)
            except UnicodeEncodeError:
                if sys.platform != "win32":
                    raise
                self.stream.write(
                    line.encode("cp1252", errors="replace").decode("cp1252"),
                )
            self.flush()
        except Exception:
            self.handleError(record)


def _utf8_console() -> None:
    """Switch stdout/stderr to UTF-8 with replacement."""
    for name in ("stdout", "stderr"):
        stream = getattr(sys, name)
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(encoding="utf-8", errors="replace")
        else:
            setattr(sys, name, io.TextIOWrapper(
                stream.buffer,
                encoding="utf-8",
                errors="replace",
                line_buffering=True,
            ))


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = MAX_LOG_BYTES,
    backup_count: int = LOG_BACKUPS,
    console: bool = True,
) -> None:
    """Install the file and console handlers on the root logger.

    Any handlers already attached to the root logger are replaced.

    Args:
        log_level: Level name such as ``"DEBUG"``; unknown names mean
            ``INFO``.
        log_file: Where to write; ``logs/browser_broker.log`` when
            omitted. Missing parent directories are created.
        max_bytes: Rollover threshold for the file handler.
        backup_count: Compressed generations to keep.
        console: Also log to stdout.
    """
    # The console has to be switched before a StreamHandler binds stdout
    if console and sys.platform == "win32":
        try:
            _utf8_console()
        except (AttributeError, OSError, ValueError):
            os.environ["PYTHONIOENCODING"] = "utf-8:replace"

    path = log_file or DEFAULT_LOG_FILE
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    handlers: List[logging.Handler] = [
        CompressedRotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ),
    ]
    if console:
        handlers.append(SafeStreamHandler(sys.stdout))

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def configure_logging(settings, console: bool = True) -> None:
    """Set up logging from a :class:`~core.config.BrokerSettings`."""
    setup_logging(settings.log_level, settings.log_file, console=console)
