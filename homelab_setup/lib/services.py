from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from .command import CommandRunner
from .files import FileManager

logger = logging.getLogger(__name__)


# Admin units first: a unit in /etc shadows the image-provided copy.
UNIT_SEARCH_PATHS = (
    "/etc/systemd/system",
    "/usr/lib/systemd/system",
    "/lib/systemd/system",
)
UNIT_WRITE_DIR = "/etc/systemd/system"


class ServiceManager:
    def __init__(
        self,
        runner: CommandRunner,
        files: FileManager,
        *,
        search_paths: Sequence[str] = UNIT_SEARCH_PATHS,
        unit_dir: str = UNIT_WRITE_DIR,
    ) -> None:
        self.runner = runner
        self.files = files
        self.search_paths = tuple(search_paths)
        self.unit_dir = unit_dir

    def find_unit(self, name: str) -> Optional[str]:
        for base in self.search_paths:
            p = Path(base) / name
            if p.exists():
                return str(p)
        return None

    def unit_path(self, name: str) -> str:
        return str(Path(self.unit_dir) / name)

    def read_unit(self, name: str) -> Optional[str]:
        path = self.find_unit(name)
        if path is None:
            return None
        return self.files.read_file(path)

    def write_unit(self, name: str, contents: str) -> str:
        path = self.unit_path(name)
        self.files.write_file(path, contents, mode=0o644)
        return path

    def remove_unit(self, name: str) -> None:
        self.files.remove(self.unit_path(name))

    def is_active(self, name: str) -> bool:
        # Non-zero covers inactive (3) and unknown unit (4).
        r = self.runner.run(["systemctl", "is-active", "--quiet", name], check=False)
        return r.returncode == 0

    def is_enabled(self, name: str) -> bool:
        r = self.runner.run(["systemctl", "is-enabled", "--quiet", name], check=False)
        return r.returncode == 0

    def daemon_reload(self) -> None:
        self.runner.run(["systemctl", "daemon-reload"], sudo=True)

    def enable(self, name: str, *, now: bool = False) -> None:
        argv = ["systemctl", "enable"]
        if now:
            argv.append("--now")
        self.runner.run([*argv, name], sudo=True)

    def disable(self, name: str) -> None:
        self.runner.run(["systemctl", "disable", name], sudo=True)

    def start(self, name: str) -> None:
        self.runner.run(["systemctl", "start", name], sudo=True)

    def stop(self, name: str) -> None:
        self.runner.run(["systemctl", "stop", name], sudo=True)

    def restart(self, name: str) -> None:
        self.runner.run(["systemctl", "restart", name], sudo=True)

