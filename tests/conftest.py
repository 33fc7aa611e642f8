from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from homelab_setup.context import SetupContext, SystemAdapters
from homelab_setup.errors import CommandNotFound
from homelab_setup.lib.command import CmdResult, CommandRunner
from homelab_setup.lib.containers import ContainerManager
from homelab_setup.lib.files import FileManager
from homelab_setup.lib.pkg import PackageManager
from homelab_setup.lib.services import ServiceManager
from homelab_setup.lib.storage import StorageManager
from homelab_setup.lib.users import UserManager
from homelab_setup.prompts import Prompter
from homelab_setup.state_store import StateStore

Response = Union[CmdResult, Tuple[int, str], Callable[[List[str]], CmdResult]]


class FakeRunner(CommandRunner):
    """Records argv and answers from a prefix table; unknown commands succeed silently."""

    def __init__(self, executables: Optional[Dict[str, str]] = None) -> None:
        super().__init__(dry_run=False, use_sudo=False)
        self.calls: List[List[str]] = []
        self.responses: List[Tuple[Tuple[str, ...], Response]] = []
        self.executables: Dict[str, str] = dict(executables or {})

    def respond(self, prefix: Sequence[str], response: Response) -> None:
        # Later registrations win.
        self.responses.insert(0, (tuple(prefix), response))

    def which(self, name: str) -> Optional[str]:
        return self.executables.get(name)

    def _execute(self, argv: List[str], *, cwd: Optional[str], input_text: Optional[str]) -> CmdResult:
        self.calls.append(list(argv))
        if self.executables and argv[0] not in self.executables:
            raise CommandNotFound(argv)
        for prefix, response in self.responses:
            if tuple(argv[: len(prefix)]) == prefix:
                if callable(response):
                    return response(argv)
                if isinstance(response, CmdResult):
                    return response
                code, out = response
                return CmdResult(argv=argv, returncode=code, stdout=out, stderr="")
        return CmdResult(argv=argv, returncode=0, stdout="", stderr="")

    def called(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]


DEFAULT_EXECUTABLES = {
    name: f"/usr/bin/{name}"
    for name in (
        "docker",
        "podman",
        "podman-compose",
        "systemctl",
        "findmnt",
        "loginctl",
        "mkdir",
        "chown",
        "chmod",
        "rpm",
        "rpm-ostree",
        "ping",
        "sudo",
        "mount",
        "showmount",
        "timedatectl",
        "wg",
        "useradd",
        "cp",
        "ln",
        "rm",
        "ip",
        "usermod",
    )
}


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(str(tmp_path / "home" / ".homelab-setup.conf"), str(tmp_path / "home" / "markers"))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(dict(DEFAULT_EXECUTABLES))


@pytest.fixture
def system(runner, tmp_path) -> SystemAdapters:
    unit_dir = tmp_path / "etc-systemd"
    image_dir = tmp_path / "usr-lib-systemd"
    unit_dir.mkdir()
    image_dir.mkdir()
    files = FileManager(runner)
    return SystemAdapters(
        runner=runner,
        files=files,
        services=ServiceManager(runner, files, search_paths=[str(unit_dir), str(image_dir)], unit_dir=str(unit_dir)),
        containers=ContainerManager(runner),
        storage=StorageManager(runner, files, unit_dir=str(unit_dir), fstab_path=str(tmp_path / "fstab")),
        users=UserManager(
            runner,
            runtime_dir_base=str(tmp_path / "run-user"),
            subuid_path=str(tmp_path / "subuid"),
            subgid_path=str(tmp_path / "subgid"),
        ),
        packages=PackageManager(runner),
    )


@pytest.fixture
def ctx(store, system) -> SetupContext:
    return SetupContext(store=store, system=system, prompter=Prompter(non_interactive=True))
