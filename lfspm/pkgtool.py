# lfspm/pkgtool.py
"""
pkgtool.py - binary packaging and installation for lfspm

Features:
- quickpkg: pack a Destination Root into packages/NAME-VERSION.tar.<comp>
- reproducible archives: sorted entries, whole-second mtimes clamped to
  SOURCE_DATE_EPOCH when set, gzip header without timestamp or file name,
  ownership normalized to pkg_owner/pkg_group
- compressions: gz, xz, bz2 (tarfile) and zst (system zstd binary)
- artifact written under a temporary name, renamed into place, chmod'ed to pkg_mode
- install_bin: extract an artifact onto a root with `tar -xpf` under fakeroot
"""

from __future__ import annotations

import os
import grp
import pwd
import gzip
import tarfile
import tempfile
import subprocess
from pathlib import Path
from typing import Optional

from lfspm.config import Settings
from lfspm.errors import InstallError, PackagingError, SourceError
from lfspm.fakeroot import Fakeroot
from lfspm.logging import get_logger
from lfspm.utils import require_tool

logger = get_logger("pkgtool")

# reproducible-builds convention: when set, entry mtimes are clamped to it
SOURCE_DATE_EPOCH = "SOURCE_DATE_EPOCH"


def _resolve_id(value: str, kind: str) -> int:
    if value.isdigit():
        return int(value)
    if value == "root":
        return 0
    try:
        if kind == "user":
            return pwd.getpwnam(value).pw_uid
        return grp.getgrnam(value).gr_gid
    except KeyError:
        raise PackagingError(f"unknown {kind} for package ownership: {value}")


def _mtime_clamp() -> Optional[int]:
    raw = os.environ.get(SOURCE_DATE_EPOCH, "").strip()
    if not raw:
        return None
    try:
        return max(int(raw), 0)
    except ValueError:
        raise PackagingError(f"{SOURCE_DATE_EPOCH} is not an integer: {raw!r}")


class PkgTool:
    def __init__(self, settings: Settings, fakeroot: Optional[Fakeroot] = None):
        self.settings = settings
        self.fakeroot = fakeroot or Fakeroot(settings)

    # -------------------------
    # packaging
    # -------------------------
    def _normalizer(self):
        uid = _resolve_id(self.settings.pkg_owner, "user")
        gid = _resolve_id(self.settings.pkg_group, "group")
        uname, gname = self.settings.pkg_owner, self.settings.pkg_group
        clamp = _mtime_clamp()

        def normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
            info.uid, info.gid = uid, gid
            info.uname, info.gname = uname, gname
            mtime = int(info.mtime)
            info.mtime = mtime if clamp is None else min(mtime, clamp)
            return info

        return normalize

    def _write_tar(self, destdir: Path, fileobj, mode: str):
        normalize = self._normalizer()
        with tarfile.open(fileobj=fileobj, mode=mode, format=tarfile.PAX_FORMAT) as tar:
            # children only: the archive must not carry the root directory itself
            for child in sorted(destdir.iterdir(), key=lambda p: p.name):
                tar.add(str(child), arcname=child.name, recursive=True, filter=normalize)

    def _write_archive(self, destdir: Path, out):
        comp = self.settings.pkg_compression
        if comp == "gz":
            with gzip.GzipFile(filename="", mode="wb", fileobj=out, mtime=0) as gz:
                self._write_tar(destdir, gz, "w")
        elif comp in ("xz", "bz2"):
            self._write_tar(destdir, out, f"w:{comp}")
        elif comp == "zst":
            zstd = require_tool("zstd", "zst package compression")
            proc = subprocess.Popen([zstd, "-q", "-c"], stdin=subprocess.PIPE, stdout=out, stderr=subprocess.PIPE)
            try:
                self._write_tar(destdir, proc.stdin, "w|")
            finally:
                proc.stdin.close()
                stderr = proc.stderr.read().decode("utf-8", "replace").strip()
                proc.stderr.close()
                rc = proc.wait()
            if rc != 0:
                raise PackagingError(f"zstd failed (exit {rc}): {stderr}")
        else:
            raise PackagingError(f"unsupported package compression: {comp}")

    def quickpkg(self, name: str, version: str, destdir: Path) -> Path:
        """Pack `destdir` into the canonical artifact path; returns that path."""
        if not destdir.is_dir():
            raise PackagingError(f"destination root missing: {destdir}")
        if not any(destdir.iterdir()):
            logger.warning("destination root %s is empty; packaging an empty archive", destdir)
        out_path = self.settings.artifact_path(name, version)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{out_path.name}.", dir=str(out_path.parent))
        try:
            with os.fdopen(fd, "wb") as out:
                self._write_archive(destdir, out)
            os.replace(tmp, out_path)
            os.chmod(out_path, self.settings.pkg_mode)
        except (OSError, tarfile.TarError) as e:
            raise PackagingError(f"cannot create {out_path}: {e}") from e
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)
        logger.info("package created: %s", out_path)
        return out_path

    # -------------------------
    # installation
    # -------------------------
    def install_bin(self, artifact: Path, root: Optional[Path] = None) -> Path:
        """
        Extract `artifact` onto `root` (install_root by default), preserving modes.
        There is no conflict check and no rollback: a failing tar can leave a
        partially populated root behind.
        """
        artifact = Path(os.path.abspath(artifact))
        if not artifact.is_file():
            raise SourceError(f"package not found: {artifact}")
        root = Path(os.path.abspath(root or self.settings.install_root))
        tar = require_tool("tar", "installing packages")
        root.mkdir(parents=True, exist_ok=True)
        cmd = self.fakeroot.wrap([tar, "-xpf", str(artifact), "-C", str(root)])
        logger.info("installing %s into %s", artifact.name, root)
        logger.debug("RUN: %s", " ".join(cmd))
        proc = subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True)
        if proc.returncode != 0:
            detail = proc.stderr.decode("utf-8", "replace").strip()
            raise InstallError(f"installing {artifact.name} into {root} failed (exit {proc.returncode}): {detail}")
        return root
