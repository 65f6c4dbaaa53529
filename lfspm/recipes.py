# lfspm/recipes.py
"""
recipes.py - Recipe Store: locate, evaluate, scaffold and search .recipe files

A recipe is a POSIX shell fragment at <recipe_dir>/<NAME>.recipe:

    NAME=foo
    VERSION=1.0
    URL=https://example.org/foo-1.0.tar.gz     # or GIT=https://example.org/foo.git
    SHA256=<hex>                               # optional
    DEPENDS=""                                 # informational only
    PREFIX="${PREFIX:-/usr}"
    configure() { ./configure --prefix="$PREFIX" "$@"; }
    build()     { make -j${JOBS}; }
    install()   { make DESTDIR="$DESTDIR" install; }

Loading evaluates the fragment with `sh` in a fresh environment carrying PREFIX and
JOBS, then reads back the variables and which lifecycle functions exist. The
result is a frozen Recipe; the tool never writes to an existing recipe.
"""

from __future__ import annotations

import re
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from lfspm.config import Settings
from lfspm.errors import RecipeError, RecipeExists, RecipeNotFound, UsageError
from lfspm.hooks import STEPS, LifecycleHook, resolve_hooks
from lfspm.logging import get_logger
from lfspm.utils import build_env, require_tool

logger = get_logger("recipes")

RECIPE_SUFFIX = ".recipe"
PATCH_DIR_SUFFIX = ".patches"
RECIPE_VARS = ("NAME", "VERSION", "URL", "GIT", "SHA256", "DEPENDS", "PREFIX", "JOBS")

_VALID_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

# variables are NUL-separated so values may hold anything but NUL
_PROBE = r"""
set -e
. "$1" >&2
for v in %(vars)s; do
  eval "val=\${$v-}"
  printf '%%s=%%s\0' "$v" "$val"
done
for f in %(steps)s; do
  if type "$f" 2>/dev/null | grep -q function; then
    printf 'fn=%%s\0' "$f"
  fi
done
""" % {"vars": " ".join(RECIPE_VARS), "steps": " ".join(STEPS)}

_TEMPLATE_HOOKS = """\
# DEPENDS is informational only: lfspm never resolves dependencies
DEPENDS=""
configure() { [ -x ./configure ] || return 0; ./configure --prefix="$PREFIX" "$@"; }
build()     { make -j${JOBS}; }
install()   { make DESTDIR="$DESTDIR" install; }
"""


@dataclass(frozen=True)
class Recipe:
    name: str
    version: str
    path: Path
    url: Optional[str] = None
    git: Optional[str] = None
    sha256: Optional[str] = None
    depends: str = ""
    prefix: str = "/usr"
    jobs: int = 1
    hooks: Dict[str, LifecycleHook] = field(default_factory=dict, compare=False)

    @property
    def ident(self) -> str:
        return f"{self.name}-{self.version}"

    @property
    def patch_dir(self) -> Path:
        return self.path.parent / f"{self.path.stem}{PATCH_DIR_SUFFIX}"

    def custom_steps(self) -> List[str]:
        return [s for s, h in self.hooks.items() if h.custom]


def validate_name(value: str, what: str = "name") -> str:
    if not _VALID_NAME.match(value or ""):
        raise UsageError(f"invalid {what}: {value!r}")
    return value


class RecipeStore:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.root = settings.recipe_dir

    def path_for(self, name: str) -> Path:
        return self.root / f"{validate_name(name)}{RECIPE_SUFFIX}"

    # -------------------------
    # evaluation
    # -------------------------
    def _evaluate(self, path: Path) -> Dict[str, str]:
        sh = require_tool("sh", "evaluating recipes")
        env = build_env({"PREFIX": self.settings.prefix, "JOBS": str(self.settings.jobs)})
        # DESTDIR is bound per build, never inherited at load time
        env.pop("DESTDIR", None)
        proc = subprocess.run([sh, "-c", _PROBE, "lfspm-recipe", str(path)],
                              env=env, stdin=subprocess.DEVNULL, capture_output=True)
        if proc.returncode != 0:
            detail = proc.stderr.decode("utf-8", "replace").strip()
            raise RecipeError(f"recipe {path} failed to evaluate (exit {proc.returncode}): {detail}")
        values: Dict[str, str] = {}
        steps: List[str] = []
        for chunk in proc.stdout.decode("utf-8", "replace").split("\0"):
            if not chunk or "=" not in chunk:
                continue
            key, val = chunk.split("=", 1)
            if key == "fn":
                steps.append(val)
            else:
                values[key] = val
        values["__steps__"] = " ".join(steps)
        return values

    def load(self, name: str) -> Recipe:
        path = self.path_for(name)
        if not path.is_file():
            raise RecipeNotFound(name, path)
        values = self._evaluate(path)
        rname = values.get("NAME", "").strip()
        version = values.get("VERSION", "").strip()
        if not rname or not version:
            raise RecipeError(f"recipe {path} must define NAME and VERSION")
        validate_name(rname, "NAME")
        validate_name(version, "VERSION")
        if rname != name:
            logger.warning("recipe %s declares NAME=%s", path.name, rname)
        jobs_raw = values.get("JOBS") or str(self.settings.jobs)
        try:
            jobs = int(jobs_raw)
        except ValueError:
            raise RecipeError(f"recipe {path}: JOBS must be an integer, got {jobs_raw!r}")
        recipe = Recipe(
            name=rname,
            version=version,
            path=path,
            url=values.get("URL") or None,
            git=values.get("GIT") or None,
            sha256=(values.get("SHA256") or "").strip().lower() or None,
            depends=values.get("DEPENDS", ""),
            prefix=values.get("PREFIX") or self.settings.prefix,
            jobs=max(jobs, 1),
            hooks=resolve_hooks(path, values["__steps__"].split()),
        )
        logger.debug("loaded recipe %s (custom hooks: %s)", recipe.ident, recipe.custom_steps() or "none")
        return recipe

    # -------------------------
    # scaffolding
    # -------------------------
    def create(self, name: str, version: str, url: Optional[str] = None,
               sha256: Optional[str] = None, git: bool = False) -> Path:
        validate_name(version, "version")
        path = self.path_for(name)
        if path.exists():
            raise RecipeExists(path)
        lines = [f"NAME={name}", f"VERSION={version}"]
        if url:
            lines.append(f"{'GIT' if git else 'URL'}={shlex.quote(url)}")
        if sha256:
            lines.append(f"SHA256={shlex.quote(sha256.strip().lower())}")
        lines.append('PREFIX="${PREFIX:-/usr}"')
        text = "\n".join(lines) + "\n" + _TEMPLATE_HOOKS
        path.parent.mkdir(parents=True, exist_ok=True)
        # "x" refuses to clobber a recipe created since the check above
        try:
            with open(path, "x", encoding="utf-8") as f:
                f.write(text)
        except FileExistsError:
            raise RecipeExists(path)
        logger.info("recipe created: %s", path)
        return path

    # -------------------------
    # listing
    # -------------------------
    def names(self) -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob(f"*{RECIPE_SUFFIX}") if p.is_file())

    def search(self, pattern: str) -> List[str]:
        try:
            rx = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise UsageError(f"invalid search pattern {pattern!r}: {e}")
        return [n for n in self.names() if rx.search(n)]
