# lfspm/registry.py
"""
Build history log.

One line per successful build, four tab-separated fields, no header:

    NAME<TAB>VERSION<TAB>ARTIFACT<TAB>TIMESTAMP

The file is only ever appended to. It records history, not installed state:
duplicates are expected and nothing is ever looked up, updated or deleted.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from lfspm.config import Settings
from lfspm.errors import RegistryError
from lfspm.logging import get_logger
from lfspm.utils import utc_timestamp

logger = get_logger("registry")

FIELD_SEP = "\t"


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    version: str
    artifact: str
    timestamp: str

    def to_line(self) -> str:
        return FIELD_SEP.join((self.name, self.version, self.artifact, self.timestamp)) + "\n"


class Registry:
    def __init__(self, settings: Settings):
        self.path = settings.registry
        self.root_dir = settings.root_dir

    def ensure(self):
        """Create an empty registry if there is none; an existing one is left alone."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()

    def _artifact_field(self, artifact: Path) -> str:
        artifact = Path(os.path.abspath(artifact))
        try:
            return str(artifact.relative_to(self.root_dir))
        except ValueError:
            return str(artifact)

    def append(self, name: str, version: str, artifact: Path, timestamp: Optional[str] = None) -> RegistryEntry:
        entry = RegistryEntry(name, version, self._artifact_field(artifact), timestamp or utc_timestamp())
        for value in (entry.name, entry.version, entry.artifact, entry.timestamp):
            if FIELD_SEP in value or "\n" in value or "\r" in value:
                raise RegistryError(f"registry field contains a tab or newline: {value!r}")
        data = entry.to_line().encode("utf-8")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # a single write on an O_APPEND descriptor keeps each line intact
        try:
            fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                os.write(fd, data)
            finally:
                os.close(fd)
        except OSError as e:
            raise RegistryError(f"cannot append to registry {self.path}: {e}") from e
        logger.info("registry: %s %s -> %s", entry.name, entry.version, entry.artifact)
        return entry

    def read(self, name: Optional[str] = None) -> List[RegistryEntry]:
        if not self.path.exists():
            return []
        entries: List[RegistryEntry] = []
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, 1):
                line = line.rstrip("\n")
                if not line:
                    continue
                fields = line.split(FIELD_SEP)
                if len(fields) != 4 or not all(fields):
                    logger.warning("registry: skipping malformed line %d in %s", lineno, self.path)
                    continue
                entry = RegistryEntry(*fields)
                if name is None or entry.name == name:
                    entries.append(entry)
        return entries
