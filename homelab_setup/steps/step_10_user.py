from __future__ import annotations

import getpass
import logging

from .. import keys
from ..context import SetupContext
from ..errors import CommandError, SetupError
from ..lib.containers import ContainerRuntime
from ..lib.validation import validate_username

logger = logging.getLogger(__name__)


ADMIN_GROUP = "wheel"


class UserStep:
    step_id = "user"
    title = "Service account"
    marker = "user-setup-complete"
    legacy_markers = ("user-configured",)
    prerequisites = ("preflight-complete",)
    optional = False

    def run(self, ctx: SetupContext) -> None:
        store = ctx.store
        users = ctx.system.users
        runtime = ctx.runtime()

        username = store.get(keys.HOMELAB_USER) or store.get(keys.SETUP_USER)
        if username:
            logger.info("Using configured service user %s", username)
        else:
            username = ctx.prompter.text(
                "Service account for containers",
                default=getpass.getuser(),
                validator=validate_username,
            )
        try:
            validate_username(username)
        except ValueError as e:
            raise SetupError(str(e)) from e

        created = False
        if not users.user_exists(username):
            if not ctx.prompter.yes_no(f"User {username} does not exist. Create it?", default=True):
                raise SetupError(f"User {username} does not exist and creation was declined")
            if runtime is ContainerRuntime.DOCKER:
                # Docker containers run as root; the account only owns files.
                users.create_system_user(username)
            else:
                users.create_user(username)
                created = True

        if runtime.rootless and not users.has_subid_range(username):
            logger.warning(
                "No subuid/subgid range for %s; rootless podman needs one "
                "(sudo usermod --add-subuids 100000-165535 --add-subgids 100000-165535 %s)",
                username,
                username,
            )

        if ctx.runner.dry_run and not users.user_exists(username):
            uid, gid = "1000", "1000"
        else:
            uid, gid = str(users.uid(username)), str(users.gid(username))
            self._check_admin_group(ctx, username, offer=created)

        tz = store.get(keys.HOMELAB_TIMEZONE) or users.timezone() or "UTC"

        store.set(keys.HOMELAB_USER, username)
        store.set(keys.HOMELAB_UID, uid)
        store.set(keys.HOMELAB_GID, gid)
        store.set(keys.PUID, uid)
        store.set(keys.PGID, gid)
        store.set(keys.HOMELAB_TIMEZONE, tz)
        store.set(keys.TZ, tz)
        logger.info("Service user %s (uid=%s gid=%s tz=%s)", username, uid, gid, tz)

    def _check_admin_group(self, ctx: SetupContext, username: str, *, offer: bool) -> None:
        users = ctx.system.users
        groups = users.groups(username)
        logger.info("User %s groups: %s", username, ", ".join(groups) or "none")
        if ADMIN_GROUP in groups:
            return
        if offer and ctx.prompter.yes_no(f"Add {username} to '{ADMIN_GROUP}' (sudo privileges)?", default=True):
            try:
                users.add_to_group(username, ADMIN_GROUP)
            except CommandError as e:
                logger.warning("Failed to add %s to %s: %s", username, ADMIN_GROUP, e)
            else:
                logger.info("Added %s to %s", username, ADMIN_GROUP)
            return
        logger.warning("User %s is not in the '%s' group", username, ADMIN_GROUP)
