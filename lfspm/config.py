# lfspm/config.py
# -*- coding: utf-8 -*-
"""
lfspm central configuration loader

Features:
- Authoritative DEFAULTS, every directory derived from ROOT_DIR unless overridden
- Optional YAML config file from several locations (explicit, env override, root, user, system)
- Environment variable overrides using the historical variable names (SOURCE, WORKDIR, ...)
- Command-line flag overrides, highest precedence
- Validation and coercion through a frozen pydantic model (Settings)

Settings are built once per invocation with load_settings() and handed explicitly
to each component; nothing in lfspm reads configuration from global state.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lfspm.errors import ConfigError

logger = logging.getLogger("lfspm.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "prefix": "/usr",
    "jobs": os.cpu_count() or 1,
    "color": "auto",
    "quiet": False,
    "verbose": False,
    "spinner": True,
    "pkg_compression": "gz",
    "pkg_owner": "root",
    "pkg_group": "root",
    "pkg_mode": "0644",
    "fakeroot": "fakeroot",
    "install_root": "/",
}

# directories relative to root_dir when not set explicitly
PATH_DEFAULTS: Dict[str, str] = {
    "source_dir": "sources",
    "work_dir": "work",
    "build_dir": "build",
    "dest_base": "dest",
    "pkg_dir": "packages",
    "log_dir": "logs",
    "recipe_dir": "recipes",
    "registry": "registry.txt",
}

PATH_KEYS = ("root_dir", "install_root") + tuple(PATH_DEFAULTS)

ENV_VARS: Dict[str, str] = {
    "root_dir": "ROOT_DIR",
    "source_dir": "SOURCE",
    "work_dir": "WORKDIR",
    "build_dir": "BUILD",
    "dest_base": "DESTBASE",
    "pkg_dir": "PKGDIR",
    "log_dir": "LOGDIR",
    "recipe_dir": "RECIPES",
    "registry": "REGISTRY",
    "prefix": "PREFIX",
    "jobs": "JOBS",
    "color": "COLOR",
    "quiet": "QUIET",
    "verbose": "VERBOSE",
    "spinner": "SPINNER",
    "pkg_compression": "PKG_COMPRESSION",
    "pkg_owner": "PKG_OWNER",
    "pkg_group": "PKG_GROUP",
    "pkg_mode": "PKG_MODE",
    "fakeroot": "FAKEROOT",
    "install_root": "INSTALL_ROOT",
}

# variables where an empty value is meaningful
_EMPTY_ALLOWED = {"fakeroot"}

CONFIG_ENV = "LFSPM_CONFIG"


class Settings(BaseModel):
    """Immutable, validated configuration for one lfspm invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_dir: Path
    source_dir: Path
    work_dir: Path
    build_dir: Path
    dest_base: Path
    pkg_dir: Path
    log_dir: Path
    recipe_dir: Path
    registry: Path
    prefix: str = "/usr"
    jobs: int = Field(default=1, ge=1)
    color: Literal["auto", "always", "never"] = "auto"
    quiet: bool = False
    verbose: bool = False
    spinner: bool = True
    pkg_compression: Literal["gz", "xz", "bz2", "zst"] = "gz"
    pkg_owner: str = "root"
    pkg_group: str = "root"
    pkg_mode: int = 0o644
    fakeroot: str = "fakeroot"
    install_root: Path = Path("/")

    @field_validator("pkg_mode", mode="before")
    @classmethod
    def _octal_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return int(v.strip(), 8)
            except ValueError:
                raise ValueError(f"pkg_mode must be an octal string, got {v!r}")
        return v

    @field_validator("pkg_mode")
    @classmethod
    def _mode_range(cls, v: int) -> int:
        if not 0 <= v <= 0o7777:
            raise ValueError("pkg_mode out of range")
        return v

    # ----------------------------
    # Derived per-recipe locations
    # ----------------------------
    def layout_dirs(self) -> List[Path]:
        return [self.source_dir, self.work_dir, self.build_dir, self.dest_base,
                self.pkg_dir, self.log_dir, self.recipe_dir]

    def scratch_roots(self) -> List[Path]:
        return [self.work_dir, self.build_dir, self.dest_base]

    def work_tree(self, name: str, version: str) -> Path:
        return self.work_dir / f"{name}-{version}"

    def build_tree(self, name: str, version: str) -> Path:
        return self.build_dir / f"{name}-{version}"

    def dest_root(self, name: str, version: str) -> Path:
        return self.dest_base / f"{name}-{version}" / "root"

    def build_log(self, name: str, version: str) -> Path:
        return self.log_dir / f"{name}-{version}.build.log"

    def git_clone_path(self, name: str, version: str) -> Path:
        return self.source_dir / f"{name}-{version}.git"

    def artifact_path(self, name: str, version: str) -> Path:
        return self.pkg_dir / f"{name}-{version}.tar.{self.pkg_compression}"

    def use_color(self) -> bool:
        if self.color == "always":
            return True
        if self.color == "never":
            return False
        return sys.stdout.isatty()


# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Any, base: Optional[Path] = None) -> Path:
    p = Path(os.path.expandvars(os.path.expanduser(str(val))))
    if not p.is_absolute():
        p = (base or Path.cwd()) / p
    return Path(os.path.abspath(p))


def _find_candidates(explicit: Optional[str], env: Mapping[str, str], root: Path) -> List[Path]:
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    if env.get(CONFIG_ENV):
        candidates.append(Path(env[CONFIG_ENV]))
    candidates.extend([
        root / "lfspm.yaml",
        Path.home() / ".config" / "lfspm" / "config.yaml",
        Path("/etc") / "lfspm" / "config.yaml",
    ])
    return candidates


def _find_path(explicit: Optional[str], env: Mapping[str, str], root: Path) -> Optional[Path]:
    if explicit and not Path(explicit).exists():
        raise ConfigError(f"config file not found: {explicit}")
    for p in _find_candidates(explicit, env, root):
        if p.exists():
            return p
    return None


def _load_file(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    out: Dict[str, Any] = {}
    for k, v in data.items():
        if k in ENV_VARS:
            out[k] = v
        else:
            logger.warning("config: unknown key %r in %s (ignored)", k, path)
    return out


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, var in ENV_VARS.items():
        if var not in env:
            continue
        val = env[var]
        if val == "" and key not in _EMPTY_ALLOWED:
            continue
        out[key] = val
    return out


# ----------------------------
# Loading
# ----------------------------
def load_settings(overrides: Optional[Mapping[str, Any]] = None,
                  env: Optional[Mapping[str, str]] = None,
                  config_path: Optional[str] = None) -> Settings:
    """
    Build Settings from DEFAULTS < config file < environment < overrides.
    `overrides` carries command-line flags; None values are ignored.
    """
    env = os.environ if env is None else env
    flags = {k: v for k, v in (overrides or {}).items() if v is not None}
    env_values = _from_env(env)

    for layer in (env_values, flags):
        for key in PATH_KEYS:
            if key in layer:
                layer[key] = _expand_path(layer[key])

    # the root used to locate lfspm.yaml comes from flags/env before the file is read
    lookup_root = flags.get("root_dir") or env_values.get("root_dir") or Path.cwd()
    cfg_path = _find_path(config_path, env, Path(lookup_root))
    file_values: Dict[str, Any] = {}
    if cfg_path:
        file_values = _load_file(cfg_path)
        logger.debug("config: loaded %s", cfg_path)

    merged: Dict[str, Any] = dict(DEFAULTS)
    merged.update(file_values)
    merged.update(env_values)
    merged.update(flags)

    root_dir = _expand_path(merged.get("root_dir") or Path.cwd())
    merged["root_dir"] = root_dir
    for key, rel in PATH_DEFAULTS.items():
        if key in merged and merged[key] not in (None, ""):
            # relative paths from the config file are anchored at the root
            merged[key] = _expand_path(merged[key], base=root_dir)
        else:
            merged[key] = root_dir / rel
    merged["install_root"] = _expand_path(merged.get("install_root") or "/", base=root_dir)

    try:
        settings = Settings(**merged)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
    logger.debug("config: settings resolved (from=%s)", cfg_path or "<defaults>")
    return settings


def dump_settings(settings: Settings) -> Dict[str, Any]:
    """Plain mapping of the effective settings, paths as strings."""
    out: Dict[str, Any] = {}
    for k, v in settings.model_dump().items():
        out[k] = str(v) if isinstance(v, Path) else v
    out["pkg_mode"] = format(settings.pkg_mode, "04o")
    return out
