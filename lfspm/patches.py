# lfspm/patches.py
"""
patches.py - apply a recipe's patch queue to its working source tree

The queue is every *.patch file in recipes/NAME.patches/, applied in lexical
order with `patch -p1` from the source root. The first failing patch aborts the
build; patches already applied stay applied (the working dir is recreated on the
next build anyway).
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from lfspm.errors import PatchError
from lfspm.logging import get_logger
from lfspm.recipes import Recipe
from lfspm.utils import require_tool, run_logged

logger = get_logger("patches")

PATCH_GLOB = "*.patch"


def patch_queue(recipe: Recipe) -> List[Path]:
    pdir = recipe.patch_dir
    if not pdir.is_dir():
        return []
    return sorted((p for p in pdir.glob(PATCH_GLOB) if p.is_file()), key=lambda p: p.name)


def apply_patches(recipe: Recipe, source_dir: Path, log_path: Optional[Path] = None) -> List[Path]:
    """Apply the queue in order; returns the patches applied."""
    queue = patch_queue(recipe)
    if not queue:
        logger.debug("no patches for %s", recipe.name)
        return []
    patch = require_tool("patch", "applying recipe patches")
    applied: List[Path] = []
    for p in queue:
        logger.info("applying patch %s", p.name)
        rc = run_logged([patch, "-N", "-p1", "-i", str(p)], log_path=log_path, cwd=source_dir)
        if rc != 0:
            raise PatchError(p, log_path)
        applied.append(p)
    return applied
