# lfspm/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - the lfspm build pipeline

API:
  bs = BuildSystem(settings)
  result = bs.build("zlib")       # BuildResult(artifact, entry, log_path)

Stages, in order; the first failure aborts and nothing later runs:
  fetch -> extract -> prepare (build dir, destination root) -> patch
  -> configure/build/install (one background unit under the spinner)
  -> package -> register

Every external command appends to logs/NAME-VERSION.build.log, which is
truncated when the build starts; pipeline log records are mirrored there too.
A registry entry is written only after the artifact exists.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from lfspm.config import Settings
from lfspm.errors import BuildError, SourceError
from lfspm.extractor import Extractor
from lfspm.fakeroot import Fakeroot
from lfspm.fetcher import Fetcher
from lfspm.hooks import STEPS, HookContext
from lfspm.logging import build_log_handler, get_logger
from lfspm.patches import apply_patches
from lfspm.pkgtool import PkgTool
from lfspm.recipes import Recipe, RecipeStore
from lfspm.registry import Registry, RegistryEntry
from lfspm.ui import UI
from lfspm.utils import reset_dir

logger = get_logger("buildsystem")


@dataclass(frozen=True)
class BuildResult:
    artifact: Path
    entry: RegistryEntry
    log_path: Path


class BuildSystem:
    def __init__(self, settings: Settings, ui: Optional[UI] = None):
        self.settings = settings
        self.ui = ui or UI(settings)
        self.store = RecipeStore(settings)
        self.fetcher = Fetcher(settings, self.ui)
        self.extractor = Extractor(settings, self.fetcher)
        self.fakeroot = Fakeroot(settings)
        self.pkgtool = PkgTool(settings, self.fakeroot)
        self.registry = Registry(settings)

    # -------------------------
    # layout
    # -------------------------
    def init_layout(self) -> List[Path]:
        created = []
        for d in self.settings.layout_dirs():
            d.mkdir(parents=True, exist_ok=True)
            created.append(d)
        self.registry.ensure()
        logger.info("layout ready under %s", self.settings.root_dir)
        return created

    def clean(self, name: str) -> List[Path]:
        """Remove the scratch trees of one recipe, or every scratch root for "all"."""
        if name == "all":
            targets = self.settings.scratch_roots()
        else:
            recipe = self.store.load(name)
            targets = [
                self.settings.work_tree(recipe.name, recipe.version),
                self.settings.build_tree(recipe.name, recipe.version),
                self.settings.dest_base / recipe.ident,
            ]
        removed = []
        for t in targets:
            if t.is_symlink() or t.is_file():
                t.unlink()
            elif t.exists():
                shutil.rmtree(t)
            else:
                continue
            removed.append(t)
            logger.info("removed %s", t)
        return removed

    # -------------------------
    # stages
    # -------------------------
    def _prepare(self, recipe: Recipe, srcdir: Path) -> HookContext:
        builddir = reset_dir(self.settings.build_tree(recipe.name, recipe.version))
        destdir = reset_dir(self.settings.dest_root(recipe.name, recipe.version))
        return HookContext(
            name=recipe.name,
            version=recipe.version,
            prefix=recipe.prefix,
            jobs=recipe.jobs,
            srcdir=srcdir,
            builddir=builddir,
            destdir=destdir,
        )

    def _run_steps(self, recipe: Recipe, ctx: HookContext, log_path: Path):
        for step in STEPS:
            hook = recipe.hooks[step]
            wrap = self.fakeroot.wrap if step == "install" else None
            rc = hook.run(ctx, log_path=log_path, wrap=wrap)
            if rc != 0:
                raise BuildError(f"{step} failed for {recipe.ident} (exit {rc})", log_path)

    # -------------------------
    # pipeline
    # -------------------------
    def build(self, name: str) -> BuildResult:
        recipe = self.store.load(name)
        log_path = self.settings.build_log(recipe.name, recipe.version)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_bytes(b"")

        with build_log_handler(log_path):
            logger.info("build %s started", recipe.ident)
            kind, src = self.fetcher.acquire(recipe, log_path=log_path)
            logger.info("sources (%s): %s", kind, src)

            srcdir = self.extractor.extract(recipe, log_path=log_path, sync=False)
            if not srcdir.is_dir():
                # a lone file collapses to itself; steps need a directory to run in
                raise SourceError(f"source root {srcdir} is not a directory")
            ctx = self._prepare(recipe, srcdir)

            apply_patches(recipe, srcdir, log_path=log_path)

            self.ui.info(f"building {recipe.ident}")
            self.ui.run_with_spinner(self._run_steps, recipe, ctx, log_path, text=f"building {recipe.ident}")

            artifact = self.pkgtool.quickpkg(recipe.name, recipe.version, ctx.destdir)
            entry = self.registry.append(recipe.name, recipe.version, artifact)
            logger.info("build %s finished", recipe.ident)
        return BuildResult(artifact=artifact, entry=entry, log_path=log_path)
