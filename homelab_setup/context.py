from __future__ import annotations

from dataclasses import dataclass, field

from .errors import SetupError
from .keys import CONTAINER_RUNTIME, HOMELAB_USER, SETUP_USER
from .lib.command import CommandRunner
from .lib.containers import ContainerManager, ContainerRuntime
from .lib.files import FileManager
from .lib.pkg import PackageManager
from .lib.services import ServiceManager
from .lib.storage import StorageManager
from .lib.users import UserManager
from .prompts import Prompter
from .state_store import StateStore


@dataclass
class SystemAdapters:
    runner: CommandRunner
    files: FileManager
    services: ServiceManager
    containers: ContainerManager
    storage: StorageManager
    users: UserManager
    packages: PackageManager

    @classmethod
    def create(cls, runner: CommandRunner, *, unit_dir: str = "/etc/systemd/system") -> "SystemAdapters":
        files = FileManager(runner)
        return cls(
            runner=runner,
            files=files,
            services=ServiceManager(runner, files),
            containers=ContainerManager(runner),
            storage=StorageManager(runner, files, unit_dir=unit_dir),
            users=UserManager(runner),
            packages=PackageManager(runner),
        )


@dataclass
class SetupContext:
    store: StateStore
    system: SystemAdapters
    prompter: Prompter = field(default_factory=Prompter)

    @property
    def runner(self) -> CommandRunner:
        return self.system.runner

    def runtime(self) -> ContainerRuntime:
        return ContainerRuntime.parse(self.store.get_or_default(CONTAINER_RUNTIME))

    def service_user(self) -> str:
        """The account stacks run as; HOMELAB_USER wins over the legacy SETUP_USER."""

        user = self.store.get(HOMELAB_USER) or self.store.get(SETUP_USER)
        if not user:
            raise SetupError("Service user not configured; run the user step first")
        return user
