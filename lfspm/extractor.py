# lfspm/extractor.py
"""
Extractor: turns acquired sources into a fresh working source tree.

The working dir work/NAME-VERSION is destroyed and recreated on every call.
Archives are unpacked by extension; a git clone is copied whole (.git included).
When an archive unpacks to exactly one entry that entry is the source root,
otherwise the working dir itself is.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from lfspm.config import Settings
from lfspm.errors import SourceError, UnsupportedFormat
from lfspm.fetcher import Fetcher
from lfspm.logging import get_logger
from lfspm.recipes import Recipe
from lfspm.utils import require_tool, reset_dir

logger = get_logger("extractor")

# extraction filters exist from 3.12 and in the 3.8-3.11 security releases
_TAR_FILTER = {"filter": "tar"} if hasattr(tarfile, "tar_filter") else {}


def _extract_tar(archive: Path, dest: Path, mode: str):
    with tarfile.open(archive, mode) as tar:
        tar.extractall(dest, **_TAR_FILTER)


def _extract_tar_zst(archive: Path, dest: Path):
    zstd = require_tool("zstd", f"extracting {archive.name}")
    proc = subprocess.Popen([zstd, "-dc", "--", str(archive)], stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    try:
        with tarfile.open(fileobj=proc.stdout, mode="r|") as tar:
            tar.extractall(dest, **_TAR_FILTER)
    finally:
        proc.stdout.close()
        stderr = proc.stderr.read().decode("utf-8", "replace").strip()
        proc.stderr.close()
        rc = proc.wait()
    if rc != 0:
        raise SourceError(f"zstd failed on {archive} (exit {rc}): {stderr}")


def _extract_zip(archive: Path, dest: Path):
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            target = Path(zf.extract(info, dest))
            # zipfile drops permissions; the unix mode lives in the high word
            mode = (info.external_attr >> 16) & 0o7777
            if mode and not info.is_dir():
                os.chmod(target, mode)
        for info in zf.infolist():
            mode = (info.external_attr >> 16) & 0o7777
            if mode and info.is_dir():
                os.chmod(dest / info.filename, mode)


Handler = Callable[[Path, Path], None]

FORMATS: List[Tuple[Tuple[str, ...], Handler]] = [
    ((".tar.gz", ".tgz"), lambda a, d: _extract_tar(a, d, "r:gz")),
    ((".tar.xz", ".txz"), lambda a, d: _extract_tar(a, d, "r:xz")),
    ((".tar.bz2", ".tbz2"), lambda a, d: _extract_tar(a, d, "r:bz2")),
    ((".tar.zst", ".tzst"), _extract_tar_zst),
    ((".tar",), lambda a, d: _extract_tar(a, d, "r:")),
    ((".zip",), _extract_zip),
]


def handler_for(archive: Path) -> Handler:
    name = archive.name.lower()
    for suffixes, handler in FORMATS:
        if name.endswith(suffixes):
            return handler
    raise UnsupportedFormat(archive)


def unpack(archive: Path, dest: Path):
    handler = handler_for(archive)
    try:
        handler(archive, dest)
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, OSError) as e:
        raise SourceError(f"cannot extract {archive}: {e}") from e


def source_root(workdir: Path) -> Path:
    entries = list(workdir.iterdir())
    if len(entries) == 1:
        return entries[0]
    return workdir


class Extractor:
    def __init__(self, settings: Settings, fetcher: Optional[Fetcher] = None):
        self.settings = settings
        self.fetcher = fetcher or Fetcher(settings)

    def extract(self, recipe: Recipe, log_path: Optional[Path] = None, sync: bool = True) -> Path:
        """
        Recreate the working dir for `recipe` and return its source root.
        With sync=False a git clone is copied as it is, without re-syncing first.
        """
        workdir = self.settings.work_tree(recipe.name, recipe.version)

        if recipe.git:
            clone = self.settings.git_clone_path(recipe.name, recipe.version)
            if sync:
                clone = self.fetcher.sync_git(recipe, log_path=log_path)
            elif not clone.is_dir():
                raise SourceError(f"no clone at {clone}; run fetch first")
            reset_dir(workdir)
            logger.info("copying %s -> %s", clone.name, workdir)
            shutil.copytree(clone, workdir, symlinks=True, dirs_exist_ok=True)
            return workdir

        archive = self.fetcher.cached_archive(recipe)
        if not archive.is_file():
            raise SourceError(f"source archive {archive} not found; run fetch first")
        # unknown formats fail before the old working dir is destroyed
        handler_for(archive)
        reset_dir(workdir)
        logger.info("extracting %s -> %s", archive.name, workdir)
        unpack(archive, workdir)
        root = source_root(workdir)
        logger.debug("source root: %s", root)
        return root
