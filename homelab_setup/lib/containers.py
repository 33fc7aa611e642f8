from __future__ import annotations

import enum
import getpass
import logging
from typing import List, Optional, Tuple

from ..errors import SetupError
from .command import CommandRunner, pushd

logger = logging.getLogger(__name__)


class ContainerRuntime(str, enum.Enum):
    PODMAN = "podman"
    DOCKER = "docker"

    @property
    def rootless(self) -> bool:
        return self is ContainerRuntime.PODMAN

    @property
    def unit_prefix(self) -> str:
        return f"{self.value}-compose"

    @property
    def standalone_compose(self) -> str:
        return f"{self.value}-compose"

    @classmethod
    def parse(cls, value: str) -> "ContainerRuntime":
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise SetupError(f"Unsupported container runtime {value!r} (expected podman or docker)") from e


class ContainerManager:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def runtime_available(self, runtime: ContainerRuntime) -> bool:
        return self.runner.exists(runtime.value)

    def detect_runtime(self) -> Optional[ContainerRuntime]:
        for rt in (ContainerRuntime.PODMAN, ContainerRuntime.DOCKER):
            if self.runtime_available(rt):
                return rt
        return None

    def daemon_active(self, runtime: ContainerRuntime) -> bool:
        if runtime.rootless:
            return True
        r = self.runner.run(["systemctl", "is-active", "--quiet", "docker.service"], check=False)
        return r.returncode == 0

    def compose_works(self, command: List[str]) -> bool:
        if not command or not self.runner.exists(command[0]):
            return False
        r = self.runner.run([*command, "version"], check=False)
        return r.returncode == 0

    def detect_compose_command(self, runtime: ContainerRuntime) -> Optional[List[str]]:
        """Plugin invocation first (``docker compose``), then the standalone binary."""

        candidates = [[runtime.value, "compose"], [runtime.standalone_compose]]
        for cmd in candidates:
            if self.compose_works(cmd):
                logger.info("Detected compose command for %s: %s", runtime.value, " ".join(cmd))
                return cmd
        return None

    def validate_compose(self, compose: List[str], directory: str) -> None:
        with pushd(directory):
            self.runner.run([*compose, "config", "--quiet"])

    def _user_argv(self, runtime: ContainerRuntime, argv: List[str], as_user: Optional[str]) -> Tuple[List[str], bool]:
        if runtime.rootless and as_user and as_user != getpass.getuser():
            # Rootless images and containers belong to their owner.
            return ["sudo", "-n", "-u", as_user, *argv], False
        return argv, not runtime.rootless

    def pull_images(
        self,
        runtime: ContainerRuntime,
        compose: List[str],
        directory: str,
        *,
        as_user: Optional[str] = None,
    ) -> None:
        argv, sudo = self._user_argv(runtime, [*compose, "pull"], as_user)
        with pushd(directory):
            self.runner.run(argv, sudo=sudo)

    def list_container_names(
        self,
        runtime: ContainerRuntime,
        *,
        running_only: bool = True,
        as_user: Optional[str] = None,
    ) -> List[str]:
        argv = [runtime.value, "ps", "--format", "{{.Names}}"]
        if not running_only:
            argv.insert(2, "-a")
        argv, sudo = self._user_argv(runtime, argv, as_user)
        r = self.runner.run(argv, sudo=sudo)
        return [line.strip() for line in r.stdout.splitlines() if line.strip()]

    def logs(self, runtime: ContainerRuntime, container: str, *, tail: int = 50, as_user: Optional[str] = None) -> str:
        argv, sudo = self._user_argv(runtime, [runtime.value, "logs", "--tail", str(tail), container], as_user)
        r = self.runner.run(argv, check=False, sudo=sudo)
        return (r.stdout or "") + (r.stderr or "")

    def version(self, runtime: ContainerRuntime) -> Optional[str]:
        r = self.runner.run([runtime.value, "--version"], check=False)
        if r.returncode != 0:
            return None
        return r.stdout.strip() or None
