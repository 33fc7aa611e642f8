from __future__ import annotations

import logging
import os

from .. import keys
from ..context import SetupContext
from ..errors import SetupError
from ..lib.validation import validate_safe_path

logger = logging.getLogger(__name__)


BASE_SUBDIRS = ("config", "data", "compose", "services")


class DirectoryStep:
    step_id = "directory"
    title = "Directory layout"
    marker = "directory-setup-complete"
    legacy_markers = ("directories-created",)
    prerequisites = ("user-setup-complete",)
    optional = False

    def run(self, ctx: SetupContext) -> None:
        store = ctx.store
        files = ctx.system.files
        user = ctx.service_user()
        gid = store.get(keys.HOMELAB_GID)
        owner = f"{user}:{gid}" if gid else user

        base = store.get(keys.HOMELAB_BASE_DIR) or ctx.prompter.text(
            "Homelab base directory",
            default=store.get_or_default(keys.HOMELAB_BASE_DIR),
            validator=validate_safe_path,
        )
        containers_base = store.get_or_default(keys.CONTAINERS_BASE)
        appdata = store.get_or_default(keys.APPDATA_BASE)

        for path in (base, containers_base, appdata):
            try:
                validate_safe_path(path)
            except ValueError as e:
                raise SetupError(str(e)) from e

        files.ensure_directory(base, owner=owner, mode=0o755)
        for sub in BASE_SUBDIRS:
            files.ensure_directory(os.path.join(base, sub), owner=owner, mode=0o755)
        files.ensure_directory(containers_base, owner=owner, mode=0o755)
        files.ensure_directory(appdata, owner=owner, mode=0o755)

        store.set(keys.HOMELAB_BASE_DIR, base)
        store.set(keys.CONTAINERS_BASE, containers_base)
        store.set(keys.APPDATA_BASE, appdata)
        logger.info("Directory layout ready under %s (stacks in %s)", base, containers_base)
