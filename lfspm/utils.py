# lfspm/utils.py
"""Small helpers shared by the pipeline modules: tools, processes, digests, time."""

from __future__ import annotations

import os
import shutil
import hashlib
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from lfspm.errors import ToolNotFound
from lfspm.logging import get_logger

logger = get_logger("utils")


def require_tool(name: str, purpose: Optional[str] = None) -> str:
    """Absolute path of `name` on PATH, or ToolNotFound."""
    path = shutil.which(name)
    if not path:
        raise ToolNotFound(name, purpose)
    return path


def sha256_of_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def utc_timestamp(ts: Optional[float] = None) -> str:
    """ISO-8601 UTC, second precision: 2024-01-31T12:00:00Z."""
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts))


def reset_dir(path: Path) -> Path:
    """Remove `path` if present and recreate it empty."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def build_env(extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update({k: str(v) for k, v in extra.items()})
    return env


def run_logged(cmd: List[str], log_path: Optional[Path] = None, cwd: Optional[Path] = None,
               env: Optional[Mapping[str, str]] = None) -> int:
    """
    Run `cmd` with stdout/stderr appended to `log_path` (or discarded).
    Returns the exit status; a missing executable is reported as 127 and one
    that cannot be executed as 126, with the error written to the log.
    """
    logger.debug("RUN: %s (cwd=%s)", " ".join(cmd), cwd)
    with open(log_path, "ab") if log_path else open(os.devnull, "wb") as out:
        out.write(f"$ {' '.join(cmd)}\n".encode("utf-8", "replace"))
        out.flush()
        try:
            proc = subprocess.run(cmd, cwd=str(cwd) if cwd else None, env=dict(env) if env else None,
                                  stdin=subprocess.DEVNULL, stdout=out, stderr=subprocess.STDOUT)
        except OSError as e:
            out.write(f"{e}\n".encode("utf-8", "replace"))
            logger.debug("cannot run %s: %s", cmd[0], e)
            return 127 if isinstance(e, FileNotFoundError) else 126
    if proc.returncode != 0:
        logger.debug("command exited %d: %s", proc.returncode, " ".join(cmd))
    return proc.returncode
