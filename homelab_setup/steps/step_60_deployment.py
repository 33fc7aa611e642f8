from __future__ import annotations

import logging
import os
from typing import Dict, List

from .. import keys
from ..context import SetupContext
from ..errors import CommandError, PrerequisiteError, SetupError
from ..units import DeployResult, UnitSynthesizer, resolve_compose_command

logger = logging.getLogger(__name__)


# Default host ports of the services shipped in the stack templates.
SERVICE_PORTS: Dict[str, Dict[str, int]] = {
    "media": {"Plex": 32400, "Jellyfin": 8096, "Tautulli": 8181},
    "web": {"Overseerr": 5055, "Wizarr": 5690, "Organizr": 9983, "Homepage": 3000},
    "cloud": {"Nextcloud": 8080, "Collabora": 9980, "Immich": 2283},
}


class DeploymentStep:
    step_id = "deployment"
    title = "Deploy stacks as systemd units"
    marker = "service-deployment-complete"
    legacy_markers = ("deployment-complete",)
    prerequisites = ("container-setup-complete",)
    optional = False

    def run(self, ctx: SetupContext) -> None:
        stacks = (ctx.store.get(keys.SELECTED_SERVICES) or "").split()
        if not stacks:
            raise SetupError("No stacks selected; run the container step first")

        self.check(ctx, stacks)

        synthesizer = UnitSynthesizer(ctx.store, ctx.system)
        deployed: List[DeployResult] = []
        failures: Dict[str, str] = {}
        for stack in stacks:
            try:
                result = synthesizer.deploy(stack)
            except SetupError as e:
                logger.error("Deployment of %s failed: %s", stack, e)
                failures[stack] = str(e)
                continue
            deployed.append(result)
            logger.info("%s: unit %s (%s)", stack, result.info.unit_name, result.action)

        self._summary(ctx, deployed)
        if failures:
            raise SetupError(
                "Failed to deploy: " + "; ".join(f"{name}: {reason}" for name, reason in failures.items())
            )

    def check(self, ctx: SetupContext, stacks: List[str]) -> None:
        """Runtime, compose files and storage must be usable before any unit is touched."""

        store = ctx.store
        system = ctx.system
        runtime = ctx.runtime()

        if not system.containers.daemon_active(runtime):
            raise PrerequisiteError("docker.service is not active (sudo systemctl enable --now docker.service)")

        compose = resolve_compose_command(store, system.containers, runtime)
        base = store.get_or_default(keys.CONTAINERS_BASE)
        for stack in stacks:
            directory = os.path.join(base, stack)
            if not os.path.isdir(directory):
                if ctx.runner.dry_run:
                    logger.info("Would validate %s once the container step has created it", directory)
                    continue
                raise PrerequisiteError(f"Stack directory {directory} is missing")
            try:
                system.containers.validate_compose(compose, directory)
            except CommandError as e:
                raise PrerequisiteError(f"Compose file for {stack} is invalid: {e}") from e

        mount_point = store.get(keys.NFS_MOUNT_POINT)
        if mount_point and not system.storage.is_mounted(mount_point):
            logger.warning("NFS mount %s is not mounted; units will wait for it", mount_point)

    def _summary(self, ctx: SetupContext, deployed: List[DeployResult]) -> None:
        if not deployed:
            return
        services = ctx.system.services
        logger.info("Deployed %d stack(s):", len(deployed))
        for r in deployed:
            state = "running" if r.verified else "starting"
            if not services.is_active(r.info.unit_name):
                state = "inactive"
            logger.info("  %-12s %s (%s)", r.info.name, r.info.unit_name, state)
            logger.info("    status: systemctl status %s", r.info.unit_name)
            logger.info("    logs:   journalctl -u %s -f", r.info.unit_name)
        for line in access_lines([r.info.name for r in deployed]):
            logger.info("%s", line)
        runtime = ctx.runtime().value
        logger.info("Services may take a few minutes to start; check with '%s ps' and '%s logs <container>'", runtime, runtime)


def access_lines(stacks: List[str]) -> List[str]:
    """Local URLs for the well-known services of each deployed stack."""

    lines: List[str] = []
    for stack in stacks:
        ports = SERVICE_PORTS.get(stack)
        if not ports:
            continue
        lines.append(f"{stack.title()} stack:")
        lines += [f"  - {name}: http://localhost:{port}" for name, port in ports.items()]
    return lines
