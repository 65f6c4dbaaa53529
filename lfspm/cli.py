#!/usr/bin/env python3
# lfspm/cli.py
"""
lfspm CLI - command surface over the recipe store, build pipeline, registry and installer

How it works:
- global flags (-s -w -b ... -S) become overrides layered on top of the config
  file and environment by config.load_settings
- each subcommand delegates to one component; components raise LfspmError
- every LfspmError, and every argument error, is printed as a red line and
  exits 1
"""

from __future__ import annotations

import sys
import argparse
from typing import Any, Callable, Dict, List, Optional

import yaml
from rich.table import Table

from lfspm.buildsystem import BuildSystem
from lfspm.config import Settings, dump_settings, load_settings
from lfspm.errors import LfspmError, UsageError
from lfspm.logging import get_logger, setup_logging
from lfspm.pkgtool import PkgTool
from lfspm.recipes import RecipeStore
from lfspm.registry import Registry
from lfspm.ui import UI

logger = get_logger("cli")


class _Parser(argparse.ArgumentParser):
    """Argument errors become UsageError so they share the exit path of every other failure."""

    def error(self, message):
        raise UsageError(f"{self.prog}: {message}")


# -----------------------
# Command handlers
# -----------------------
def cmd_init(settings: Settings, ui: UI, args) -> int:
    BuildSystem(settings, ui).init_layout()
    ui.ok(f"initialized {settings.root_dir}")
    return 0


def cmd_new(settings: Settings, ui: UI, args) -> int:
    if args.git and not args.url:
        raise UsageError("new --git requires a repository URL")
    path = RecipeStore(settings).create(args.name, args.version, url=args.url, sha256=args.sha256, git=args.git)
    ui.ok(f"recipe created: {path}")
    return 0


def cmd_fetch(settings: Settings, ui: UI, args) -> int:
    bs = BuildSystem(settings, ui)
    kind, path = bs.fetcher.acquire(bs.store.load(args.name))
    ui.out(f"{kind}:{path}")
    return 0


def cmd_extract(settings: Settings, ui: UI, args) -> int:
    bs = BuildSystem(settings, ui)
    root = bs.extractor.extract(bs.store.load(args.name))
    ui.out(str(root))
    return 0


def cmd_build(settings: Settings, ui: UI, args) -> int:
    result = BuildSystem(settings, ui).build(args.name)
    ui.ok(f"built {result.entry.name}-{result.entry.version}")
    ui.out(str(result.artifact))
    return 0


def cmd_info(settings: Settings, ui: UI, args) -> int:
    r = RecipeStore(settings).load(args.name)
    custom = r.custom_steps()
    for label, value in (
        ("Name", r.name),
        ("Version", r.version),
        ("URL", r.url or ""),
        ("GIT", r.git or ""),
        ("SHA256", r.sha256 or ""),
        ("DEPENDS", r.depends),
        ("Recipe", str(r.path)),
        ("Custom hooks", " ".join(custom) if custom else "none"),
    ):
        ui.out(f"{label}: {value}")
    return 0


def cmd_list(settings: Settings, ui: UI, args) -> int:
    for name in RecipeStore(settings).names():
        ui.out(name)
    return 0


def cmd_search(settings: Settings, ui: UI, args) -> int:
    for name in RecipeStore(settings).search(args.pattern):
        ui.out(name)
    return 0


def cmd_installpkg(settings: Settings, ui: UI, args) -> int:
    root = PkgTool(settings).install_bin(args.archive, root=args.root)
    ui.ok(f"installed {args.archive} into {root}")
    return 0


def cmd_clean(settings: Settings, ui: UI, args) -> int:
    removed = BuildSystem(settings, ui).clean(args.name)
    ui.ok(f"cleaned {args.name} ({len(removed)} removed)")
    return 0


def cmd_history(settings: Settings, ui: UI, args) -> int:
    entries = Registry(settings).read(name=args.name)
    if not entries:
        ui.info("no builds recorded")
        return 0
    table = Table(title="Build history")
    for col in ("Name", "Version", "Artifact", "Built (UTC)"):
        table.add_column(col, overflow="fold")
    for e in entries:
        table.add_row(e.name, e.version, e.artifact, e.timestamp)
    ui.table(table)
    return 0


def cmd_config(settings: Settings, ui: UI, args) -> int:
    ui.out(yaml.safe_dump(dump_settings(settings), sort_keys=True).rstrip("\n"))
    return 0


# -----------------------
# Argparse wiring
# -----------------------
def make_parser() -> argparse.ArgumentParser:
    ap = _Parser(prog="lfspm", description="Recipe-driven source builds and packaging for LFS-style systems")
    ap.add_argument("-c", "--config", help="YAML config file")
    ap.add_argument("-s", dest="source_dir", metavar="DIR", help="source cache directory")
    ap.add_argument("-w", dest="work_dir", metavar="DIR", help="working source trees")
    ap.add_argument("-b", dest="build_dir", metavar="DIR", help="build directories")
    ap.add_argument("-d", dest="dest_base", metavar="DIR", help="destination roots")
    ap.add_argument("-p", dest="pkg_dir", metavar="DIR", help="package output directory")
    ap.add_argument("-L", dest="log_dir", metavar="DIR", help="build logs")
    ap.add_argument("-r", dest="recipe_dir", metavar="DIR", help="recipe directory")
    ap.add_argument("-R", dest="registry", metavar="FILE", help="registry file")
    ap.add_argument("-j", dest="jobs", type=int, metavar="N", help="parallel make jobs")
    ap.add_argument("-C", dest="color", choices=("auto", "always", "never"), help="color mode")
    ap.add_argument("-q", dest="quiet", action="store_const", const=True, help="quiet: errors only")
    ap.add_argument("-v", dest="verbose", action="store_const", const=True, help="verbose: debug logging")
    ap.add_argument("-S", dest="spinner", action="store_const", const=False, help="disable the spinner")
    sub = ap.add_subparsers(dest="cmd", metavar="COMMAND")

    sub.add_parser("init", help="create the directory layout and an empty registry")

    p_new = sub.add_parser("new", help="scaffold a recipe")
    p_new.add_argument("name")
    p_new.add_argument("version")
    p_new.add_argument("url", nargs="?")
    p_new.add_argument("sha256", nargs="?")
    p_new.add_argument("--git", action="store_true", help="URL is a git repository")

    for cmd, helptext in (
        ("fetch", "acquire sources into the cache"),
        ("extract", "recreate the working source tree"),
        ("build", "run the full build pipeline"),
        ("info", "show a recipe"),
    ):
        p = sub.add_parser(cmd, help=helptext)
        p.add_argument("name")

    sub.add_parser("list", help="list recipes")

    p_search = sub.add_parser("search", help="search recipe names (regex, case-insensitive)")
    p_search.add_argument("pattern")

    p_inst = sub.add_parser("installpkg", help="install a package archive")
    p_inst.add_argument("archive")
    p_inst.add_argument("--root", help="install root (default: install_root)")

    p_clean = sub.add_parser("clean", help="remove scratch trees of NAME, or all of them")
    p_clean.add_argument("name", metavar="NAME|all")

    p_hist = sub.add_parser("history", help="show the build registry")
    p_hist.add_argument("name", nargs="?")

    sub.add_parser("config", help="print the effective settings")
    return ap


COMMANDS: Dict[str, Callable[[Settings, UI, Any], int]] = {
    "init": cmd_init,
    "new": cmd_new,
    "fetch": cmd_fetch,
    "extract": cmd_extract,
    "build": cmd_build,
    "info": cmd_info,
    "list": cmd_list,
    "search": cmd_search,
    "installpkg": cmd_installpkg,
    "clean": cmd_clean,
    "history": cmd_history,
    "config": cmd_config,
}

OVERRIDE_KEYS = ("source_dir", "work_dir", "build_dir", "dest_base", "pkg_dir", "log_dir",
                 "recipe_dir", "registry", "jobs", "color", "quiet", "verbose", "spinner")


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    ui = UI()
    parser = make_parser()
    try:
        args = parser.parse_args(argv)
        if not args.cmd:
            parser.print_help()
            return 1
        settings = load_settings({k: getattr(args, k) for k in OVERRIDE_KEYS}, config_path=args.config)
        setup_logging(settings)
        ui = UI(settings)
        return COMMANDS[args.cmd](settings, ui, args)
    except LfspmError as e:
        ui.err(str(e))
        log_path = getattr(e, "log_path", None)
        if log_path:
            ui.err(f"build log: {log_path}")
        return 1
    except KeyboardInterrupt:
        ui.err("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
