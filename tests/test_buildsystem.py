"""
Tests for the build pipeline: stage order, logs, registry discipline, patches, clean/init.
"""

import tarfile
import textwrap
import zipfile

import pytest

from lfspm.buildsystem import BuildSystem
from lfspm.errors import BuildError, ChecksumMismatch, PatchError, SourceError
from lfspm.registry import Registry

from conftest import requires_tool

HELLO_PATCH = """\
--- a/hello.sh
+++ b/hello.sh
@@ -1,2 +1,2 @@
 #!/bin/sh
-echo hello
+echo patched
"""

BAD_PATCH = """\
--- a/hello.sh
+++ b/hello.sh
@@ -1,2 +1,2 @@
 #!/bin/sh
-echo something else
+echo nope
"""


def _members(artifact):
    with tarfile.open(artifact) as tar:
        return sorted(tar.getnames())


class TestBuild:
    def test_success(self, settings, hello_recipe):
        hello_recipe()
        result = BuildSystem(settings).build("hello")

        assert result.artifact == settings.pkg_dir / "hello-1.0.tar.gz"
        assert result.artifact.is_file()
        assert "usr/bin/hello" in _members(result.artifact)

        entries = Registry(settings).read()
        assert len(entries) == 1
        assert (entries[0].name, entries[0].version) == ("hello", "1.0")
        assert entries[0].artifact == "packages/hello-1.0.tar.gz"
        assert result.entry == entries[0]

    def test_build_log(self, settings, hello_recipe):
        hello_recipe()
        result = BuildSystem(settings).build("hello")
        assert result.log_path == settings.build_log("hello", "1.0")
        text = result.log_path.read_text()
        assert "$ sh -c" in text
        assert "build hello-1.0 started" in text

    def test_log_truncated_per_build(self, settings, hello_recipe):
        hello_recipe()
        bs = BuildSystem(settings)
        bs.build("hello")
        bs.build("hello")
        assert settings.build_log("hello", "1.0").read_text().count("build hello-1.0 started") == 1

    def test_rebuild_is_reproducible_and_logged_twice(self, settings, hello_recipe, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
        hello_recipe()
        bs = BuildSystem(settings)
        first = bs.build("hello").artifact.read_bytes()
        second = bs.build("hello").artifact.read_bytes()
        assert first == second
        assert len(Registry(settings).read()) == 2

    def test_hook_environment(self, settings, write_recipe, hello_archive):
        write_recipe("hello", f"""\
            NAME=hello
            VERSION=1.0
            URL="{hello_archive.as_uri()}"
            PREFIX=/opt/hello
            build() {{ env > build.env; }}
            install() {{
              mkdir -p "$DESTDIR$PREFIX"
              {{ echo "N=$NAME"; echo "V=$VERSION"; echo "J=$JOBS"; echo "S=$SRCDIR"; echo "B=$BUILDDIR"; echo "P=$PREFIX"; }} > "$DESTDIR$PREFIX/env.txt"
            }}
        """)
        BuildSystem(settings).build("hello")
        dest = settings.dest_root("hello", "1.0")
        lines = (dest / "opt" / "hello" / "env.txt").read_text().splitlines()
        assert lines == [
            "N=hello",
            "V=1.0",
            "J=2",
            f"S={settings.work_tree('hello', '1.0') / 'hello-1.0'}",
            f"B={settings.build_tree('hello', '1.0')}",
            "P=/opt/hello",
        ]
        build_env = (settings.work_tree("hello", "1.0") / "hello-1.0" / "build.env").read_text()
        assert "DESTDIR=" not in build_env

    def test_scratch_trees_are_recreated(self, settings, hello_recipe):
        hello_recipe()
        bs = BuildSystem(settings)
        bs.build("hello")
        stale = settings.dest_root("hello", "1.0") / "stale"
        stale.write_text("x")
        (settings.build_tree("hello", "1.0") / "stale").write_text("x")
        result = bs.build("hello")
        assert "stale" not in _members(result.artifact)
        assert not (settings.build_tree("hello", "1.0") / "stale").exists()


class TestFailures:
    def test_failing_step(self, settings, write_recipe, hello_archive):
        write_recipe("hello", f"""\
            NAME=hello
            VERSION=1.0
            URL="{hello_archive.as_uri()}"
            build() {{ echo compiling; exit 3; }}
        """)
        with pytest.raises(BuildError) as exc:
            BuildSystem(settings).build("hello")
        assert exc.value.log_path == settings.build_log("hello", "1.0")
        assert "compiling" in exc.value.log_path.read_text()
        assert "build" in str(exc.value)
        assert Registry(settings).read() == []
        assert not settings.artifact_path("hello", "1.0").exists()

    def test_missing_make_target_fails(self, settings, write_recipe, make_archive):
        # default build step with no Makefile
        archive = make_archive({"pkg-1/README": "x\n"}, name="pkg-1.tar.gz")
        write_recipe("pkg", f'NAME=pkg\nVERSION=1\nURL="{archive.as_uri()}"\n')
        with pytest.raises(BuildError):
            BuildSystem(settings).build("pkg")
        assert Registry(settings).read() == []

    def test_checksum_mismatch_stops_before_extract(self, settings, hello_recipe):
        hello_recipe(extra="SHA256=" + "f" * 64)
        with pytest.raises(ChecksumMismatch):
            BuildSystem(settings).build("hello")
        assert not settings.work_tree("hello", "1.0").exists()
        assert Registry(settings).read() == []

    def test_single_file_archive_is_not_a_source_tree(self, settings, write_recipe, make_archive):
        archive = make_archive({"tool.sh": "#!/bin/sh\n"}, name="tool-1.tar.gz")
        write_recipe("tool", f"""\
            NAME=tool
            VERSION=1
            URL="{archive.as_uri()}"
            build() {{ :; }}
            install() {{ :; }}
        """)
        with pytest.raises(SourceError, match="not a directory"):
            BuildSystem(settings).build("tool")
        assert Registry(settings).read() == []


class TestZipWithoutModes:
    @pytest.fixture
    def modeless_zip(self, tmp_path):
        out = tmp_path / "pkg-1.zip"
        with zipfile.ZipFile(out, "w") as zf:
            for name, text in (
                ("pkg-1/configure", "#!/bin/sh\ntouch configured\n"),
                ("pkg-1/Makefile", "all:\n\ttrue\n"),
            ):
                info = zipfile.ZipInfo(name)
                info.external_attr = 0
                zf.writestr(info, text)
        return out

    def test_non_executable_configure_is_skipped(self, settings, write_recipe, modeless_zip):
        write_recipe("pkg", f"""\
            NAME=pkg
            VERSION=1
            URL="{modeless_zip.as_uri()}"
            build() {{ :; }}
            install() {{ mkdir -p "$DESTDIR/usr/share/pkg"; cp Makefile "$DESTDIR/usr/share/pkg/"; }}
        """)
        result = BuildSystem(settings).build("pkg")
        srcdir = settings.work_tree("pkg", "1") / "pkg-1"
        assert (srcdir / "configure").is_file()
        assert not (srcdir / "configured").exists()
        assert "configure: nothing to run" in result.log_path.read_text()
        assert "usr/share/pkg/Makefile" in _members(result.artifact)


@requires_tool("patch")
class TestPatches:
    def test_patches_applied_in_order(self, settings, hello_recipe):
        hello_recipe()
        pdir = settings.recipe_dir / "hello.patches"
        pdir.mkdir()
        (pdir / "01-message.patch").write_text(HELLO_PATCH)
        (pdir / "02-extra.patch").write_text(textwrap.dedent("""\
            --- a/hello.sh
            +++ b/hello.sh
            @@ -1,2 +1,3 @@
             #!/bin/sh
             echo patched
            +echo twice
        """))
        (pdir / "notes.txt").write_text("ignored")
        BuildSystem(settings).build("hello")
        installed = settings.dest_root("hello", "1.0") / "usr" / "bin" / "hello"
        assert installed.read_text() == "#!/bin/sh\necho patched\necho twice\n"

    def test_failing_patch(self, settings, hello_recipe):
        hello_recipe()
        pdir = settings.recipe_dir / "hello.patches"
        pdir.mkdir()
        (pdir / "01-bad.patch").write_text(BAD_PATCH)
        with pytest.raises(PatchError) as exc:
            BuildSystem(settings).build("hello")
        assert exc.value.patch == pdir / "01-bad.patch"
        assert Registry(settings).read() == []


@requires_tool("make")
class TestDefaultSteps:
    def test_configure_make_install(self, settings, write_recipe, make_archive):
        makefile = (
            "all:\n\techo built > built.txt\n"
            "install:\n\tmkdir -p $(DESTDIR)/usr/share/pkg\n\tcp built.txt config.txt $(DESTDIR)/usr/share/pkg/\n"
        )
        configure = '#!/bin/sh\necho "$1" > config.txt\n'
        archive = make_archive(
            {"pkg-1/Makefile": makefile, "pkg-1/configure": configure},
            name="pkg-1.tar.gz",
            modes={"pkg-1/configure": 0o755},
        )
        write_recipe("pkg", f'NAME=pkg\nVERSION=1\nURL="{archive.as_uri()}"\n')
        BuildSystem(settings).build("pkg")
        share = settings.dest_root("pkg", "1") / "usr" / "share" / "pkg"
        assert (share / "built.txt").read_text() == "built\n"
        assert (share / "config.txt").read_text() == "--prefix=/usr\n"

    def test_configure_skipped_without_script(self, settings, write_recipe, make_archive):
        makefile = "all:\n\ttrue\ninstall:\n\tmkdir -p $(DESTDIR)/usr/lib\n\ttouch $(DESTDIR)/usr/lib/libpkg.a\n"
        archive = make_archive({"pkg-1/Makefile": makefile}, name="pkg-1.tar.gz")
        write_recipe("pkg", f'NAME=pkg\nVERSION=1\nURL="{archive.as_uri()}"\n')
        result = BuildSystem(settings).build("pkg")
        assert "usr/lib/libpkg.a" in _members(result.artifact)
        assert "configure: nothing to run, skipped" in result.log_path.read_text()


class TestLayout:
    def test_init_creates_layout(self, settings):
        BuildSystem(settings).init_layout()
        for d in ("sources", "work", "build", "dest", "packages", "logs", "recipes"):
            assert (settings.root_dir / d).is_dir()
        assert settings.registry.read_text() == ""

    def test_init_keeps_registry(self, settings):
        settings.registry.write_text("a\t1\tp\t2024-01-01T00:00:00Z\n")
        BuildSystem(settings).init_layout()
        assert settings.registry.read_text() == "a\t1\tp\t2024-01-01T00:00:00Z\n"

    def test_clean_one(self, settings, hello_recipe):
        hello_recipe()
        bs = BuildSystem(settings)
        bs.build("hello")
        other = settings.work_dir / "other-2"
        other.mkdir()
        removed = bs.clean("hello")
        assert settings.work_tree("hello", "1.0") in removed
        assert not settings.work_tree("hello", "1.0").exists()
        assert not settings.build_tree("hello", "1.0").exists()
        assert not (settings.dest_base / "hello-1.0").exists()
        assert other.exists()
        assert settings.artifact_path("hello", "1.0").exists()

    def test_clean_all(self, settings, hello_recipe):
        hello_recipe()
        bs = BuildSystem(settings)
        bs.build("hello")
        bs.clean("all")
        for d in (settings.work_dir, settings.build_dir, settings.dest_base):
            assert not d.exists()
        assert settings.source_dir.exists()
        assert settings.pkg_dir.exists()

    def test_clean_nothing(self, settings, hello_recipe):
        hello_recipe()
        assert BuildSystem(settings).clean("hello") == []
