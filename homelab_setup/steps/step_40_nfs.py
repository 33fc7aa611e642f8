from __future__ import annotations

import logging
import os

from .. import keys
from ..context import SetupContext
from ..errors import CommandError, PrerequisiteError, SetupError
from ..lib.net import nfs_server_reachable
from ..lib.storage import FstabEntry, exports_include, merge_mount_options
from ..lib.validation import validate_host, validate_safe_path

logger = logging.getLogger(__name__)


class NFSStep:
    step_id = "nfs"
    title = "NFS network storage"
    marker = "nfs-setup-complete"
    legacy_markers = ("nfs-configured", "nfs-skipped")
    prerequisites = ("preflight-complete",)
    optional = False

    def run(self, ctx: SetupContext) -> None:
        store = ctx.store
        system = ctx.system

        if not ctx.prompter.yes_no("Mount NFS storage?", default=bool(store.get(keys.NFS_SERVER))):
            logger.info("NFS skipped")
            return

        if not system.packages.is_installed("nfs-utils"):
            raise PrerequisiteError("nfs-utils not installed (" + system.packages.install_hint(["nfs-utils"]) + ")")

        server = store.get(keys.NFS_SERVER) or ctx.prompter.text("NFS server", validator=validate_host)
        export = store.get(keys.NFS_EXPORT) or ctx.prompter.text(
            "Export path", default="/volume1/homelab", validator=validate_safe_path
        )
        mount_point = store.get(keys.NFS_MOUNT_POINT) or ctx.prompter.text(
            "Local mount point", default=store.get_or_default(keys.NFS_MOUNT_POINT), validator=validate_safe_path
        )
        try:
            validate_host(server)
            validate_safe_path(export)
            validate_safe_path(mount_point)
        except ValueError as e:
            raise SetupError(str(e)) from e

        timeout = int(store.get_or_default(keys.NETWORK_TEST_TIMEOUT))
        retries = int(store.get_or_default(keys.NETWORK_TEST_RETRIES))
        if not nfs_server_reachable(ctx.runner, server, timeout=timeout, retries=retries):
            raise SetupError(f"NFS server {server} is not reachable")

        try:
            exports = system.storage.list_exports(server)
        except CommandError as e:
            logger.warning("Could not list exports on %s: %s", server, e)
        else:
            if not exports_include(exports, export):
                logger.warning("Export %s not listed by %s (exports: %s)", export, server, ", ".join(exports) or "none")

        system.files.ensure_directory(mount_point)
        system.storage.remove_legacy_mount_units(mount_point)

        options = merge_mount_options(store.get(keys.NFS_MOUNT_OPTIONS) or "")
        entry = FstabEntry(spec=f"{server}:{export}", mountpoint=mount_point, fstype="nfs", options=options)
        if system.storage.write_fstab_entry(entry):
            logger.info("fstab updated: %s", entry.render())
            system.services.daemon_reload()
        else:
            logger.info("fstab already contains %s", entry.render())

        system.storage.validate_fstab()
        if not system.storage.is_mounted(mount_point):
            system.storage.mount_all()
            if not system.storage.is_mounted(mount_point) and not ctx.runner.dry_run:
                raise SetupError(f"{server}:{export} is not mounted at {mount_point} after mount -a")

        store.set(keys.NFS_SERVER, server)
        store.set(keys.NFS_EXPORT, export)
        store.set(keys.NFS_MOUNT_POINT, mount_point)
        store.set(keys.NFS_MOUNT_POINT_REAL, os.path.realpath(mount_point))
        store.set(keys.NFS_MOUNT_OPTIONS, options)
        logger.info("NFS %s:%s mounted at %s", server, export, mount_point)
