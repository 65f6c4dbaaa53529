"""
Shared test fixtures: settings rooted at tmp_path, recipe writers, upstream archives.
"""

import itertools
import logging
import shutil
import tarfile
import textwrap
from pathlib import Path
from typing import Dict, Optional

import pytest

from lfspm import logging as lfspm_logging
from lfspm.config import ENV_VARS, CONFIG_ENV, load_settings

HELLO_FILES = {"hello-1.0/hello.sh": "#!/bin/sh\necho hello\n"}
HELLO_MODES = {"hello-1.0/hello.sh": 0o755}

HELLO_RECIPE = """\
NAME=hello
VERSION=1.0
URL="{url}"
{extra}
PREFIX="${{PREFIX:-/usr}}"
configure() {{ :; }}
build() {{ cp hello.sh hello; }}
install() {{
  mkdir -p "$DESTDIR$PREFIX/bin"
  cp hello "$DESTDIR$PREFIX/bin/hello"
  chmod 755 "$DESTDIR$PREFIX/bin/hello"
}}
"""


def requires_tool(name: str):
    return pytest.mark.skipif(shutil.which(name) is None, reason=f"{name} not installed")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    """Keep the caller's lfspm environment out of every test."""
    for var in list(ENV_VARS.values()) + [CONFIG_ENV, "DESTDIR", "SOURCE_DATE_EPOCH"]:
        monkeypatch.delenv(var, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    yield
    root = logging.getLogger(lfspm_logging.ROOT_LOGGER)
    for h in list(lfspm_logging._console_handlers):
        root.removeHandler(h)
    lfspm_logging._console_handlers.clear()
    root.propagate = True


@pytest.fixture
def root_dir(tmp_path: Path) -> Path:
    root = tmp_path / "lfs"
    root.mkdir()
    return root


@pytest.fixture
def make_settings(root_dir: Path):
    """Settings factory; spinner off, privilege emulation disabled, colors off."""

    def _make(**overrides):
        values = {"root_dir": root_dir, "spinner": False, "fakeroot": "", "color": "never", "jobs": 2}
        values.update(overrides)
        return load_settings(overrides=values, env={})

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def write_recipe(settings):
    def _write(name: str, text: str) -> Path:
        settings.recipe_dir.mkdir(parents=True, exist_ok=True)
        path = settings.recipe_dir / f"{name}.recipe"
        path.write_text(textwrap.dedent(text))
        return path

    return _write


@pytest.fixture
def make_archive(tmp_path: Path):
    """Build an upstream archive from {relpath: content}; returns its path."""
    counter = itertools.count()

    def _make(files: Dict[str, str], name: str = "hello-1.0.tar.gz",
              modes: Optional[Dict[str, int]] = None) -> Path:
        stage = tmp_path / f"stage-{next(counter)}"
        for rel, content in files.items():
            p = stage / rel
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content)
        for rel, mode in (modes or {}).items():
            (stage / rel).chmod(mode)
        upstream = tmp_path / "upstream"
        upstream.mkdir(exist_ok=True)
        out = upstream / name
        if name.endswith((".tar.gz", ".tgz")):
            mode = "w:gz"
        elif name.endswith((".tar.xz", ".txz")):
            mode = "w:xz"
        elif name.endswith((".tar.bz2", ".tbz2")):
            mode = "w:bz2"
        else:
            mode = "w"
        with tarfile.open(out, mode) as tar:
            for child in sorted(stage.iterdir()):
                tar.add(str(child), arcname=child.name)
        return out

    return _make


@pytest.fixture
def hello_archive(make_archive) -> Path:
    return make_archive(HELLO_FILES, modes=HELLO_MODES)


@pytest.fixture
def hello_recipe(write_recipe, hello_archive):
    """Writes recipes/hello.recipe pointing at the hello archive; extra lines optional."""

    def _write(extra: str = "", url: Optional[str] = None) -> Path:
        return write_recipe("hello", HELLO_RECIPE.format(url=url or hello_archive.as_uri(), extra=extra))

    return _write
