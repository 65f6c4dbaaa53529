# lfspm/ui.py
"""
Terminal presentation for lfspm

- status lines (ok / warn / err / info) rendered with rich, honoring color and quiet
- run_with_spinner: runs a long unit of work in a background thread while a rich
  spinner polls it; only the unit's outcome matters, the spinner's never does
"""

from __future__ import annotations

import sys
import time
import threading
from typing import Any, Callable, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from lfspm.config import Settings
from lfspm.logging import get_logger

logger = get_logger("ui")

POLL_INTERVAL = 0.1
INTERRUPT_GRACE = 10


def _make_console(settings: Optional[Settings], stderr: bool = False) -> Console:
    kwargs: Dict[str, Any] = {"highlight": False, "stderr": stderr, "soft_wrap": True}
    if settings is not None:
        if settings.color == "always":
            kwargs["force_terminal"] = True
        elif settings.color == "never":
            kwargs["no_color"] = True
    return Console(**kwargs)


class UI:
    def __init__(self, settings: Optional[Settings] = None,
                 console: Optional[Console] = None, err_console: Optional[Console] = None):
        self.quiet = bool(settings and settings.quiet)
        self.spinner = bool(settings.spinner) if settings else False
        self.console = console or _make_console(settings)
        self.err_console = err_console or _make_console(settings, stderr=True)

    # -----------------------
    # Small pretty helpers
    # -----------------------
    def info(self, msg: str):
        if not self.quiet:
            self.console.print(f"[cyan]\\[lfs][/cyan] {escape(msg)}")

    def ok(self, msg: str):
        if not self.quiet:
            self.console.print(f"[bold green]\\[ ok ][/] {escape(msg)}")

    def warn(self, msg: str):
        self.err_console.print(f"[bold yellow]\\[warn][/] {escape(msg)}")

    def err(self, msg: str):
        self.err_console.print(f"[bold red]\\[err ][/] {escape(msg)}")

    def table(self, table: Table):
        self.console.print(table)

    def out(self, text: str):
        """Machine-readable output: plain, unstyled, always printed."""
        sys.stdout.write(text + "\n")
        sys.stdout.flush()

    # -----------------------
    # Background unit + spinner
    # -----------------------
    def run_with_spinner(self, func: Callable[..., Any], *args: Any, text: str = "working", **kwargs: Any) -> Any:
        result: Dict[str, Any] = {"value": None, "exception": None}

        def target():
            try:
                result["value"] = func(*args, **kwargs)
            except BaseException as e:  # re-raised in the calling thread
                result["exception"] = e

        th = threading.Thread(target=target, name=f"lfspm-{text}", daemon=True)
        th.start()

        try:
            if self.spinner and not self.quiet:
                try:
                    with Progress(SpinnerColumn(), TextColumn("{task.description}"), TimeElapsedColumn(),
                                  console=self.console, transient=True) as prog:
                        prog.add_task(description=text, total=None)
                        while th.is_alive():
                            time.sleep(POLL_INTERVAL)
                except Exception:
                    logger.debug("spinner failed for %r; waiting without it", text, exc_info=True)
            while th.is_alive():
                th.join(POLL_INTERVAL)
        except KeyboardInterrupt:
            # child processes share our process group and get the same SIGINT
            logger.warning("interrupted; waiting up to %ds for %r to stop", INTERRUPT_GRACE, text)
            th.join(INTERRUPT_GRACE)
            raise

        if result["exception"] is not None:
            raise result["exception"]
        return result["value"]
