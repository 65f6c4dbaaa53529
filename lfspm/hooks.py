# lfspm/hooks.py
"""
Lifecycle hook slots for recipes.

Each recipe has three slots, configure, build and install. A slot holds either a
DefaultStep (the built-in behaviour) or a RecipeFunction (a shell function the
recipe defines). Invoking a slot asks the variant for its argv and runs it in the
source tree with the step's environment.

RecipeFunction sources the recipe file in `sh` before calling the function, so a
custom hook runs arbitrary shell code with the invoking user's rights (or under
the privilege-emulation wrapper for install). Recipes are trusted input.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from lfspm.logging import get_logger
from lfspm.utils import build_env, run_logged

logger = get_logger("hooks")

STEPS = ("configure", "build", "install")

Wrapper = Callable[[List[str]], List[str]]


@dataclass(frozen=True)
class HookContext:
    name: str
    version: str
    prefix: str
    jobs: int
    srcdir: Path
    builddir: Path
    destdir: Path

    def env(self, step: str) -> Dict[str, str]:
        extra = {
            "NAME": self.name,
            "VERSION": self.version,
            "PREFIX": self.prefix,
            "JOBS": str(self.jobs),
            "SRCDIR": str(self.srcdir),
            "BUILDDIR": str(self.builddir),
        }
        if step == "install":
            extra["DESTDIR"] = str(self.destdir)
        env = build_env(extra)
        if step != "install":
            env.pop("DESTDIR", None)
        return env


class LifecycleHook:
    step: str
    custom = False

    def argv(self, ctx: HookContext) -> Optional[List[str]]:
        """Command for this step, or None when the step has nothing to do."""
        raise NotImplementedError

    def run(self, ctx: HookContext, log_path: Optional[Path] = None, wrap: Optional[Wrapper] = None) -> int:
        cmd = self.argv(ctx)
        if cmd is None:
            logger.info("%s: nothing to run, skipped", self.step)
            return 0
        if wrap is not None:
            cmd = wrap(cmd)
        logger.info("%s (%s)", self.step, "recipe" if self.custom else "default")
        return run_logged(cmd, log_path=log_path, cwd=ctx.srcdir, env=ctx.env(self.step))


@dataclass(frozen=True)
class DefaultStep(LifecycleHook):
    step: str

    def argv(self, ctx: HookContext) -> Optional[List[str]]:
        if self.step == "configure":
            # no executable configure script is not an error: plain Makefile projects skip it
            script = ctx.srcdir / "configure"
            if not (script.is_file() and os.access(script, os.X_OK)):
                return None
            return ["./configure", f"--prefix={ctx.prefix}"]
        if self.step == "build":
            return ["make", f"-j{ctx.jobs}"]
        if self.step == "install":
            return ["make", f"DESTDIR={ctx.destdir}", "install"]
        raise ValueError(f"unknown lifecycle step: {self.step}")


@dataclass(frozen=True)
class RecipeFunction(LifecycleHook):
    step: str
    recipe_path: Path
    custom = True

    def argv(self, ctx: HookContext) -> Optional[List[str]]:
        script = f'set -e; . "$1"; {self.step}'
        return ["sh", "-c", script, "lfspm-recipe", str(self.recipe_path)]


def resolve_hooks(recipe_path: Path, custom_steps: Iterable[str]) -> Dict[str, LifecycleHook]:
    """One slot per step: the recipe's function when it defines one, else the default."""
    custom = set(custom_steps)
    unknown = custom - set(STEPS)
    if unknown:
        raise ValueError(f"unknown lifecycle steps: {sorted(unknown)}")
    hooks: Dict[str, LifecycleHook] = {}
    for step in STEPS:
        hooks[step] = RecipeFunction(step, recipe_path) if step in custom else DefaultStep(step)
    return hooks
