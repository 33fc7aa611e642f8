from __future__ import annotations

import logging
from typing import Dict, Iterable

from ..errors import CommandError
from .command import CommandRunner

logger = logging.getLogger(__name__)


class PackageManager:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def is_rpm_ostree(self) -> bool:
        return self.runner.exists("rpm-ostree")

    def is_installed(self, package: str) -> bool:
        """True if rpm knows the package; rpm -q exits 1 for a missing package."""

        r = self.runner.run(["rpm", "-q", package], check=False)
        if r.returncode == 0:
            return True
        if r.returncode == 1:
            return False
        raise CommandError(r.argv, r.returncode, r.stdout, r.stderr)

    def check_installed(self, packages: Iterable[str]) -> Dict[str, bool]:
        return {p: self.is_installed(p) for p in packages}

    def install_hint(self, packages: Iterable[str]) -> str:
        return "sudo rpm-ostree install " + " ".join(packages) + " && systemctl reboot"
