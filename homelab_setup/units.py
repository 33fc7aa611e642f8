"""Systemd units for compose stacks.

For every selected stack a oneshot unit is generated that pulls, starts and
stops the stack through the runtime's compose command. Units found in the
image (no generated header) are never rewritten, only enabled and started.
Units this module wrote earlier are regenerated whenever their rendered text
changes, and the other runtime's generated unit for the same stack is retired.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from . import keys
from .context import SystemAdapters
from .errors import CommandError, SetupError, SynthesisError
from .lib.command import CommandRunner
from .lib.containers import ContainerManager, ContainerRuntime
from .lib.storage import mount_unit_name
from .lib.validation import validate_stack_name
from .state_store import StateStore

logger = logging.getLogger(__name__)


GENERATED_HEADER = "# Generated by homelab-setup"

NETWORK_TARGET = "network-online.target"
DOCKER_SERVICE = "docker.service"
START_TIMEOUT_SEC = 600
STOP_TIMEOUT_SEC = 120


@dataclass(frozen=True)
class ServiceInfo:
    name: str
    display_name: str
    directory: str
    unit_name: str


def resolve_service_info(store: StateStore, stack: str) -> ServiceInfo:
    validate_stack_name(stack)
    runtime = ContainerRuntime.parse(store.get_or_default(keys.CONTAINER_RUNTIME))
    base = store.get_or_default(keys.CONTAINERS_BASE).rstrip("/") or "/"
    return ServiceInfo(
        name=stack,
        display_name=stack.title(),
        directory=str(Path(base) / stack),
        unit_name=f"{runtime.unit_prefix}-{stack}.service",
    )


def is_generated(unit_text: Optional[str]) -> bool:
    return bool(unit_text) and unit_text.lstrip().startswith(GENERATED_HEADER)


def resolve_compose_command(store: StateStore, containers: ContainerManager, runtime: ContainerRuntime) -> List[str]:
    """Return the cached compose command for runtime, detecting and caching it if needed."""

    cached = (store.get(keys.COMPOSE_COMMAND) or "").strip()
    cached_runtime = store.get(keys.COMPOSE_COMMAND_RUNTIME)
    if cached:
        first = cached.split()[0]
        if cached_runtime == runtime.value or (cached_runtime is None and first.startswith(runtime.value)):
            return cached.split()
        logger.info(
            "Cached compose command %r does not belong to %s; detecting again",
            cached,
            runtime.value,
        )

    cmd = containers.detect_compose_command(runtime)
    if cmd is None:
        if runtime.rootless:
            hint = "install podman-compose or a podman build with 'podman compose'"
        else:
            hint = "install the docker compose plugin (docker-compose-plugin) or docker-compose"
        raise SynthesisError(f"No working compose command for {runtime.value}: {hint}")

    store.set(keys.COMPOSE_COMMAND, " ".join(cmd))
    store.set(keys.COMPOSE_COMMAND_RUNTIME, runtime.value)
    return cmd


def exec_command(runner: CommandRunner, compose: List[str]) -> str:
    """Compose command with an absolute executable, as systemd wants it."""

    exe = runner.which(compose[0]) or f"/usr/bin/{compose[0]}"
    return " ".join([exe, *compose[1:]])


@dataclass(frozen=True)
class ExecIdentity:
    user: str
    group: str
    uid: int
    runtime_dir: str


@dataclass
class UnitDefinition:
    info: ServiceInfo
    runtime: ContainerRuntime
    wants: List[str] = field(default_factory=list)
    after: List[str] = field(default_factory=list)
    requires: List[str] = field(default_factory=list)
    requires_mounts_for: List[str] = field(default_factory=list)
    identity: Optional[ExecIdentity] = None
    exec_start_pre: List[str] = field(default_factory=list)
    exec_start: str = ""
    exec_stop: str = ""

    def render(self) -> str:
        unit = [
            GENERATED_HEADER,
            f"# Stack: {self.info.name} ({self.runtime.value})",
            "",
            "[Unit]",
            f"Description=Homelab {self.info.display_name} Stack",
        ]
        if self.wants:
            unit.append("Wants=" + " ".join(self.wants))
        if self.after:
            unit.append("After=" + " ".join(self.after))
        if self.requires:
            unit.append("Requires=" + " ".join(self.requires))
        if self.requires_mounts_for:
            unit.append("RequiresMountsFor=" + " ".join(self.requires_mounts_for))

        service = [
            "",
            "[Service]",
            "Type=oneshot",
            "RemainAfterExit=yes",
            f"WorkingDirectory={self.info.directory}",
        ]
        if self.identity is not None:
            service += [
                f"User={self.identity.user}",
                f"Group={self.identity.group}",
                f'Environment="XDG_RUNTIME_DIR={self.identity.runtime_dir}"',
            ]
        service += [f"ExecStartPre={cmd}" for cmd in self.exec_start_pre]
        service += [
            f"ExecStart={self.exec_start}",
            f"ExecStop={self.exec_stop}",
            "Restart=on-failure",
            "RestartSec=10",
            f"TimeoutStartSec={START_TIMEOUT_SEC}",
            f"TimeoutStopSec={STOP_TIMEOUT_SEC}",
        ]

        install = ["", "[Install]", "WantedBy=multi-user.target"]
        return "\n".join(unit + service + install) + "\n"


def build_unit(
    info: ServiceInfo,
    runtime: ContainerRuntime,
    compose_exec: str,
    *,
    mount_point: Optional[str] = None,
    identity: Optional[ExecIdentity] = None,
    findmnt: str = "/usr/bin/findmnt",
) -> UnitDefinition:
    unit = UnitDefinition(info=info, runtime=runtime)
    unit.wants.append(NETWORK_TARGET)
    unit.after.append(NETWORK_TARGET)
    unit.requires_mounts_for.append(info.directory)

    if runtime.rootless:
        if identity is None:
            raise SynthesisError(f"{info.unit_name}: rootless runtime requires an execution identity")
        unit.identity = identity
        unit.exec_start_pre.append(f"{compose_exec} pull")
        unit.exec_start = f"{compose_exec} up -d"
        unit.exec_stop = f"{compose_exec} down"
        return unit

    unit.wants.append(DOCKER_SERVICE)
    unit.after.append(DOCKER_SERVICE)
    if mount_point:
        mount_unit = mount_unit_name(mount_point)
        unit.after.append(mount_unit)
        unit.requires.append(mount_unit)
        unit.requires_mounts_for.append(mount_point)
        unit.exec_start_pre.append(f"{findmnt} {mount_point}")
    unit.exec_start_pre.append(f"{compose_exec} pull --quiet")
    unit.exec_start = f"{compose_exec} up -d --remove-orphans"
    unit.exec_stop = f"{compose_exec} down --timeout 30"
    return unit


@dataclass
class DeployResult:
    info: ServiceInfo
    action: str  # written | unchanged | image-provided
    verified: bool
    retired: List[str] = field(default_factory=list)


class UnitSynthesizer:
    def __init__(self, store: StateStore, system: SystemAdapters) -> None:
        self.store = store
        self.system = system

    def runtime(self) -> ContainerRuntime:
        return ContainerRuntime.parse(self.store.get_or_default(keys.CONTAINER_RUNTIME))

    def service_user(self) -> str:
        user = self.store.get(keys.HOMELAB_USER) or self.store.get(keys.SETUP_USER)
        if not user:
            raise SynthesisError("Service user not configured (HOMELAB_USER)")
        return user

    def ensure_identity(self, user: str) -> ExecIdentity:
        users = self.system.users
        if not users.user_exists(user):
            raise SynthesisError(f"Service user {user} does not exist")
        if not users.linger_enabled(user):
            logger.info("Lingering disabled for %s; enabling", user)
            users.enable_linger(user)
        runtime_dir = users.ensure_runtime_dir(user)
        return ExecIdentity(
            user=user,
            group=users.primary_group(user),
            uid=users.uid(user),
            runtime_dir=runtime_dir,
        )

    def render(self, stack: str) -> str:
        """Unit text for stack under the current configuration (no side effects besides detection)."""

        return self._definition(resolve_service_info(self.store, stack)).render()

    def _definition(self, info: ServiceInfo) -> UnitDefinition:
        runtime = self.runtime()
        compose = resolve_compose_command(self.store, self.system.containers, runtime)
        compose_exec = exec_command(self.system.runner, compose)
        if runtime.rootless:
            identity = self.ensure_identity(self.service_user())
            return build_unit(info, runtime, compose_exec, identity=identity)
        findmnt = self.system.runner.which("findmnt") or "/usr/bin/findmnt"
        mount_point = (self.store.get(keys.NFS_MOUNT_POINT) or "").strip() or None
        return build_unit(info, runtime, compose_exec, mount_point=mount_point, findmnt=findmnt)

    def retire_other_runtime_units(self, stack: str) -> List[str]:
        """Remove units this tool generated for the same stack under another runtime."""

        current = self.runtime()
        services = self.system.services
        retired: List[str] = []
        for rt in ContainerRuntime:
            if rt is current:
                continue
            name = f"{rt.unit_prefix}-{stack}.service"
            path = Path(services.unit_path(name))
            if not path.exists():
                continue
            if not is_generated(services.files.read_file(str(path))):
                logger.warning("Leaving %s in place: not generated by homelab-setup", path)
                continue
            logger.info("Retiring %s (runtime is now %s)", name, current.value)
            try:
                if services.is_active(name):
                    services.stop(name)
                if services.is_enabled(name):
                    services.disable(name)
            except CommandError as e:
                logger.warning("Could not stop/disable %s: %s", name, e)
            services.remove_unit(name)
            retired.append(name)
        return retired

    def deploy(self, stack: str) -> DeployResult:
        info = resolve_service_info(self.store, stack)
        services = self.system.services

        if not Path(info.directory).is_dir() and not self.system.runner.dry_run:
            raise SynthesisError(f"Stack directory {info.directory} missing; run the container step first")

        retired = self.retire_other_runtime_units(stack)

        existing = services.read_unit(info.unit_name)
        if existing is not None and not is_generated(existing):
            logger.info("Unit %s provided by the image; enabling without changes", info.unit_name)
            action = "image-provided"
        else:
            text = self._definition(info).render()
            if existing == text:
                action = "unchanged"
            else:
                services.write_unit(info.unit_name, text)
                action = "written"

        if action == "written" or retired:
            services.daemon_reload()

        self.pull(info)

        services.enable(info.unit_name)
        if action == "written" and existing is not None and services.is_active(info.unit_name):
            # A running oneshot unit ignores start; restart picks up the new definition.
            services.restart(info.unit_name)
        else:
            services.start(info.unit_name)

        verified = self.verify(info)
        return DeployResult(info=info, action=action, verified=verified, retired=retired)

    def pull(self, info: ServiceInfo) -> bool:
        """Pull images up front so the first start does not time out. Failures only warn."""

        if not Path(info.directory).is_dir():
            logger.info("Would pull images for %s in %s", info.name, info.directory)
            return False
        runtime = self.runtime()
        as_user = self.store.get(keys.HOMELAB_USER) if runtime.rootless else None
        try:
            compose = resolve_compose_command(self.store, self.system.containers, runtime)
            self.system.containers.pull_images(runtime, compose, info.directory, as_user=as_user)
        except SetupError as e:
            logger.warning("Image pull for %s had issues: %s", info.name, e)
            return False
        return True

    def verify(self, info: ServiceInfo) -> bool:
        runtime = self.runtime()
        as_user = self.store.get(keys.HOMELAB_USER) if runtime.rootless else None
        try:
            names = self.system.containers.list_container_names(runtime, as_user=as_user)
        except CommandError as e:
            logger.warning("Could not list containers for %s: %s", info.name, e)
            return False
        matching = [n for n in names if info.name.lower() in n.lower()]
        if not matching:
            logger.warning("No running containers matching %s yet (the unit may still be starting)", info.name)
            return False
        logger.info("%s: %d container(s) running: %s", info.display_name, len(matching), ", ".join(matching))
        return True
