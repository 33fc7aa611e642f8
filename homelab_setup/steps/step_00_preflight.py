from __future__ import annotations

import logging
from typing import List, Optional

from .. import keys
from ..context import SetupContext
from ..errors import PrerequisiteError, SetupError, SynthesisError
from ..lib.containers import ContainerRuntime
from ..lib.net import default_gateway, ping
from ..units import resolve_compose_command

logger = logging.getLogger(__name__)


OPTIONAL_PACKAGES = ("nfs-utils", "wireguard-tools")


class PreflightStep:
    step_id = "preflight"
    title = "Pre-flight checks"
    marker = "preflight-complete"
    legacy_markers = ()
    prerequisites = ()
    optional = False

    def run(self, ctx: SetupContext) -> None:
        system = ctx.system
        store = ctx.store
        errors: List[str] = []

        if system.packages.is_rpm_ostree():
            logger.info("rpm-ostree host detected")
        else:
            errors.append("rpm-ostree not found: this tool targets rpm-ostree based systems")

        runtime = self._select_runtime(ctx, errors)

        if runtime is not None:
            logger.info("Runtime version: %s", system.containers.version(runtime) or "unknown")
            if not system.containers.daemon_active(runtime):
                errors.append("docker.service is not active (sudo systemctl enable --now docker.service)")
            try:
                compose = resolve_compose_command(store, system.containers, runtime)
                logger.info("Compose command: %s", " ".join(compose))
            except SynthesisError as e:
                errors.append(str(e))

        missing = [p for p, ok in system.packages.check_installed(OPTIONAL_PACKAGES).items() if not ok]
        if missing:
            logger.warning(
                "Optional packages missing: %s (install with: %s)",
                ", ".join(missing),
                system.packages.install_hint(missing),
            )

        if ctx.runner.use_sudo and ctx.runner.run(["sudo", "-n", "true"], check=False).returncode != 0:
            logger.warning("Passwordless sudo unavailable; privileged commands may prompt or fail")

        host = store.get_or_default(keys.NETWORK_TEST_HOST)
        timeout = int(store.get_or_default(keys.NETWORK_TEST_TIMEOUT))
        if ping(ctx.runner, host, timeout=timeout):
            logger.info("Network connectivity OK (%s)", host)
        else:
            gateway = default_gateway(ctx.runner)
            logger.warning(
                "Cannot reach %s (default gateway: %s); image pulls will fail without network access",
                host,
                gateway or "none",
            )

        if errors:
            raise PrerequisiteError("Pre-flight checks failed:\n- " + "\n- ".join(errors))

    def _select_runtime(self, ctx: SetupContext, errors: List[str]) -> Optional[ContainerRuntime]:
        containers = ctx.system.containers
        configured = ctx.store.get(keys.CONTAINER_RUNTIME)

        if configured:
            try:
                runtime = ContainerRuntime.parse(configured)
            except SetupError as e:
                errors.append(str(e))
                return None
            if not containers.runtime_available(runtime):
                errors.append(f"Configured runtime {runtime.value} is not installed")
                return None
            return runtime

        runtime = containers.detect_runtime()
        if runtime is None:
            errors.append("No container runtime found (install podman or docker)")
            return None
        logger.info("Detected container runtime: %s", runtime.value)
        ctx.store.set(keys.CONTAINER_RUNTIME, runtime.value)
        return runtime
