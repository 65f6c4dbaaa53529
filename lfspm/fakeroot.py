# lfspm/fakeroot.py
"""
fakeroot.py - privilege emulation for install steps

The install step of a build and the installer's `tar` run under the configured
wrapper (`fakeroot` by default) so that ownership operations succeed without
real root. An empty wrapper setting disables wrapping: commands run as-is and a
warning is logged once per Fakeroot instance.
"""

from __future__ import annotations

import shlex
from typing import List

from lfspm.config import Settings
from lfspm.logging import get_logger
from lfspm.utils import require_tool

logger = get_logger("fakeroot")


class Fakeroot:
    def __init__(self, settings: Settings):
        # the setting may carry arguments, e.g. "fakeroot -u"
        self.argv = shlex.split(settings.fakeroot or "")
        self._warned = False

    @property
    def enabled(self) -> bool:
        return bool(self.argv)

    def ensure(self):
        if self.enabled:
            require_tool(self.argv[0], "privilege emulation for install")

    def wrap(self, cmd: List[str]) -> List[str]:
        if not self.enabled:
            if not self._warned:
                logger.warning("privilege emulation disabled; running install steps as the current user")
                self._warned = True
            return list(cmd)
        self.ensure()
        return self.argv + list(cmd)
