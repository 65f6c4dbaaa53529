# lfspm/fetcher.py
"""
fetcher.py - Source Acquirer

- Protocol support: http(s) (requests, streamed), ftp (urllib), file:// and local paths (copy)
- git sources: shallow clone, later runs re-sync the existing clone
- Download cache under <source_dir>: a cached file is reused as-is, partial
  transfers land in "<file>.part" and are renamed only when complete
- SHA256 verification of the cached archive when the recipe declares one
- Long transfers run in the background under the ui spinner
"""

from __future__ import annotations

import os
import shutil
import urllib.request
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import requests

from lfspm.config import Settings
from lfspm.errors import ChecksumMismatch, RecipeError, SourceError
from lfspm.logging import get_logger
from lfspm.recipes import Recipe
from lfspm.ui import UI
from lfspm.utils import require_tool, run_logged, sha256_of_file

logger = get_logger("fetcher")

CHUNK_SIZE = 64 * 1024
HTTP_TIMEOUT = (30, 300)  # connect, read

KIND_GIT = "git"
KIND_TARBALL = "tarball"


def archive_name(url: str) -> str:
    """Cache file name for a source URL: the basename of its path."""
    parsed = urlparse(url)
    path = parsed.path if parsed.scheme else url
    name = os.path.basename(unquote(path).rstrip("/"))
    if not name or name in (".", ".."):
        raise SourceError(f"cannot derive a file name from URL: {url}")
    return name


# -----------------------------------------------------------------------
# Transfer implementations per protocol
# -----------------------------------------------------------------------
def _fetch_http(url: str, out_path: Path):
    try:
        with requests.get(url, stream=True, timeout=HTTP_TIMEOUT) as r:
            r.raise_for_status()
            with open(out_path, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except requests.RequestException as e:
        raise SourceError(f"download failed: {url}: {e}") from e


def _fetch_ftp(url: str, out_path: Path):
    try:
        with urllib.request.urlopen(url, timeout=HTTP_TIMEOUT[1]) as resp, open(out_path, "wb") as f:
            shutil.copyfileobj(resp, f, CHUNK_SIZE)
    except OSError as e:
        raise SourceError(f"download failed: {url}: {e}") from e


def _fetch_local(src: Path, out_path: Path):
    if not src.is_file():
        raise SourceError(f"local source not found: {src}")
    try:
        shutil.copyfile(src, out_path)
    except OSError as e:
        raise SourceError(f"cannot copy {src}: {e}") from e


class Fetcher:
    def __init__(self, settings: Settings, ui: Optional[UI] = None):
        self.settings = settings
        self.ui = ui or UI(settings)

    # -------------------------
    # entry point
    # -------------------------
    def acquire(self, recipe: Recipe, log_path: Optional[Path] = None) -> Tuple[str, Path]:
        """Make the recipe's sources available locally; returns (kind, path)."""
        if recipe.git:
            if recipe.url:
                logger.warning("%s defines both URL and GIT; using GIT", recipe.name)
            return KIND_GIT, self.sync_git(recipe, log_path=log_path)
        if recipe.url:
            return KIND_TARBALL, self.fetch_url(recipe)
        raise RecipeError(f"recipe {recipe.name} defines neither URL nor GIT")

    def cached_archive(self, recipe: Recipe) -> Path:
        if not recipe.url:
            raise RecipeError(f"recipe {recipe.name} has no URL")
        return self.settings.source_dir / archive_name(recipe.url)

    # -------------------------
    # tarball sources
    # -------------------------
    def _local_source(self, url: str) -> Optional[Path]:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        if parsed.scheme == "":
            p = Path(os.path.expanduser(url))
            return p if p.is_absolute() else self.settings.recipe_dir / p
        return None

    def _download(self, url: str, dest: Path):
        scheme = urlparse(url).scheme
        part = dest.with_name(dest.name + ".part")
        if part.exists():
            part.unlink()
        local = self._local_source(url)
        try:
            if local is not None:
                _fetch_local(local, part)
            elif scheme in ("http", "https"):
                _fetch_http(url, part)
            elif scheme == "ftp":
                _fetch_ftp(url, part)
            else:
                raise SourceError(f"unsupported URL scheme {scheme!r}: {url}")
            os.replace(part, dest)
        finally:
            if part.exists():
                part.unlink()

    def fetch_url(self, recipe: Recipe) -> Path:
        dest = self.cached_archive(recipe)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.is_file():
            logger.info("using cached %s", dest.name)
        else:
            logger.info("downloading %s", recipe.url)
            self.ui.run_with_spinner(self._download, recipe.url, dest, text=f"fetching {dest.name}")
        if recipe.sha256:
            got = sha256_of_file(dest)
            if got != recipe.sha256:
                raise ChecksumMismatch(dest, recipe.sha256, got)
            logger.info("sha256 ok: %s", dest.name)
        return dest

    # -------------------------
    # git sources
    # -------------------------
    def _git(self, args, log_path: Optional[Path], cwd: Optional[Path] = None) -> bool:
        return run_logged(["git"] + list(args), log_path=log_path, cwd=cwd) == 0

    def _sync(self, url: str, clone: Path, log_path: Optional[Path]):
        if (clone / ".git").is_dir():
            logger.info("updating clone %s", clone.name)
            if (self._git(["fetch", "--all", "--tags", "--prune"], log_path, cwd=clone)
                    and self._git(["reset", "--hard", "origin/HEAD"], log_path, cwd=clone)):
                return
            logger.warning("fetch/reset failed for %s; trying pull --rebase", clone.name)
            if not self._git(["pull", "--rebase"], log_path, cwd=clone):
                raise SourceError(f"git update failed for {clone}")
            return
        if clone.exists():
            raise SourceError(f"{clone} exists but is not a git clone")
        logger.info("cloning %s", url)
        if not self._git(["clone", "--depth", "1", url, str(clone)], log_path):
            shutil.rmtree(clone, ignore_errors=True)
            raise SourceError(f"git clone failed: {url}")

    def sync_git(self, recipe: Recipe, log_path: Optional[Path] = None) -> Path:
        require_tool("git", "git sources")
        clone = self.settings.git_clone_path(recipe.name, recipe.version)
        clone.parent.mkdir(parents=True, exist_ok=True)
        self.ui.run_with_spinner(self._sync, recipe.git, clone, log_path, text=f"syncing {clone.name}")
        return clone
