# lfspm/logging.py
# -*- coding: utf-8 -*-
"""
lfspm logging

Features:
 - Console color formatter (stderr), level driven by quiet/verbose settings
 - Module-tagged records via LoggerAdapter (get_logger("fetcher"))
 - Per-build file handler so pipeline records land in the same log as the
   output of every external command run during that build
"""

from __future__ import annotations

import sys
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from lfspm.config import Settings

ROOT_LOGGER = "lfspm"
_lock = threading.RLock()
_console_handlers: List[logging.Handler] = []


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


class _ModuleDefault(logging.Filter):
    """Records emitted through plain loggers get a module name too."""

    def filter(self, record):
        if not hasattr(record, "lfspm_module"):
            record.lfspm_module = record.name.rsplit(".", 1)[-1]
        return True


CONSOLE_FORMAT = "[%(levelname)s] [%(lfspm_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(lfspm_module)s] %(message)s"


def setup_logging(settings: Settings) -> logging.Logger:
    """(Re)configure the console handler of the lfspm logger from settings."""
    root = logging.getLogger(ROOT_LOGGER)
    with _lock:
        for h in _console_handlers:
            root.removeHandler(h)
        _console_handlers.clear()

        if settings.verbose:
            level = logging.DEBUG
        elif settings.quiet:
            level = logging.ERROR
        else:
            level = logging.WARNING

        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(level)
        ch.addFilter(_ModuleDefault())
        ch.setFormatter(ColorFormatter(CONSOLE_FORMAT, color=settings.use_color()))
        root.addHandler(ch)
        _console_handlers.append(ch)

        # handlers filter; the logger itself lets everything through
        root.setLevel(logging.DEBUG)
        root.propagate = False
    return root


@contextmanager
def build_log_handler(path: Path) -> Iterator[logging.Handler]:
    """Mirror every lfspm record into `path` while the block runs."""
    root = logging.getLogger(ROOT_LOGGER)
    path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(str(path), mode="a", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.addFilter(_ModuleDefault())
    fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%H:%M:%S"))
    # the file gets every record even when the console handler was never set up
    old_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(fh)
    try:
        yield fh
    finally:
        root.removeHandler(fh)
        root.setLevel(old_level)
        fh.close()


def get_logger(module: str) -> logging.LoggerAdapter:
    """Return a LoggerAdapter that injects 'lfspm_module' into records."""
    base = logging.getLogger(ROOT_LOGGER)
    return logging.LoggerAdapter(base, {"lfspm_module": module})
