# lfspm/errors.py
"""
Exception hierarchy for lfspm.

Every failure the tool detects derives from LfspmError; the CLI maps all of
them to exit status 1. Modules raise, they do not recover.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class LfspmError(Exception):
    """Base class for every failure surfaced to the user."""


# environment
class ToolNotFound(LfspmError):
    def __init__(self, tool: str, purpose: Optional[str] = None):
        self.tool = tool
        msg = f"required command not found: {tool}"
        if purpose:
            msg += f" ({purpose})"
        super().__init__(msg)


class ConfigError(LfspmError):
    pass


# input
class UsageError(LfspmError):
    pass


class RecipeNotFound(LfspmError):
    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path
        super().__init__(f"recipe not found: {name} ({path})")


class RecipeExists(LfspmError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"recipe already exists: {path}")


class RecipeError(LfspmError):
    pass


class SourceError(LfspmError):
    pass


class UnsupportedFormat(LfspmError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"unsupported archive format: {path}")


# integrity
class ChecksumMismatch(LfspmError):
    def __init__(self, path: Path, expected: str, got: str):
        self.path = path
        self.expected = expected
        self.got = got
        super().__init__(f"SHA256 mismatch for {path.name}: expected {expected}, got {got}")


# execution
class PatchError(LfspmError):
    def __init__(self, patch: Path, log_path: Optional[Path] = None):
        self.patch = patch
        self.log_path = log_path
        super().__init__(f"failed to apply patch {patch}")


class BuildError(LfspmError):
    def __init__(self, message: str, log_path: Optional[Path] = None):
        self.log_path = log_path
        super().__init__(message)


class InstallError(LfspmError):
    pass


# packaging
class PackagingError(LfspmError):
    pass


class RegistryError(LfspmError):
    pass
