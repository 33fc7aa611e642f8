from __future__ import annotations

import grp
import logging
import os
import pwd
import stat
from pathlib import Path
from typing import List, Optional

from ..errors import CommandError, SetupError
from .command import CommandRunner

logger = logging.getLogger(__name__)


NOLOGIN_SHELLS = ("/usr/sbin/nologin", "/sbin/nologin")


class UserManager:
    def __init__(
        self,
        runner: CommandRunner,
        *,
        runtime_dir_base: str = "/run/user",
        subuid_path: str = "/etc/subuid",
        subgid_path: str = "/etc/subgid",
    ) -> None:
        self.runner = runner
        self.runtime_dir_base = runtime_dir_base
        self.subuid_path = subuid_path
        self.subgid_path = subgid_path

    def user_exists(self, username: str) -> bool:
        try:
            pwd.getpwnam(username)
        except KeyError:
            return False
        return True

    def _entry(self, username: str) -> pwd.struct_passwd:
        try:
            return pwd.getpwnam(username)
        except KeyError as e:
            raise SetupError(f"User {username} does not exist") from e

    def uid(self, username: str) -> int:
        return self._entry(username).pw_uid

    def gid(self, username: str) -> int:
        return self._entry(username).pw_gid

    def primary_group(self, username: str) -> str:
        gid = self.gid(username)
        try:
            return grp.getgrgid(gid).gr_name
        except KeyError:
            return str(gid)

    def groups(self, username: str) -> List[str]:
        primary = self.gid(username)
        names = [g.gr_name for g in grp.getgrall() if username in g.gr_mem]
        try:
            names.insert(0, grp.getgrgid(primary).gr_name)
        except KeyError:
            pass
        return names

    def create_user(self, username: str, *, create_home: bool = True, shell: str = "/bin/bash") -> None:
        argv = ["useradd"]
        if create_home:
            argv.append("-m")
        argv += ["-s", shell, username]
        self.runner.run(argv, sudo=True)
        logger.info("Created user %s", username)

    def create_system_user(self, username: str, *, home: Optional[str] = None) -> None:
        shell = next((s for s in NOLOGIN_SHELLS if os.path.exists(s)), NOLOGIN_SHELLS[0])
        argv = ["useradd", "--system", "-s", shell]
        if home:
            argv += ["-d", home, "-M"]
        self.runner.run([*argv, username], sudo=True)
        logger.info("Created system user %s", username)

    def add_to_group(self, username: str, group: str) -> None:
        self.runner.run(["usermod", "-aG", group, username], sudo=True)

    def _has_subid(self, path: str, username: str) -> bool:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SetupError(f"Failed to read {path}: {e}") from e
        return any(line.split(":", 1)[0] == username for line in text.splitlines() if line.strip())

    def has_subid_range(self, username: str) -> bool:
        return self._has_subid(self.subuid_path, username) and self._has_subid(self.subgid_path, username)

    def linger_enabled(self, username: str) -> bool:
        r = self.runner.run(["loginctl", "show-user", username, "--property=Linger", "--value"], check=False)
        if r.returncode != 0:
            # loginctl fails for users without a session; fall back to the linger flag file.
            if Path("/var/lib/systemd/linger", username).exists():
                return True
            if "not logged in" in (r.stderr or "").lower() or "no such" in (r.stderr or "").lower():
                return False
            raise CommandError(r.argv, r.returncode, r.stdout, r.stderr)
        return r.stdout.strip().lower() == "yes"

    def enable_linger(self, username: str) -> None:
        self.runner.run(["loginctl", "enable-linger", username], sudo=True)
        logger.info("Enabled lingering for %s", username)

    def runtime_dir(self, username: str) -> str:
        return os.path.join(self.runtime_dir_base, str(self.uid(username)))

    def ensure_runtime_dir(self, username: str) -> str:
        """Make sure the XDG runtime directory exists, owned by the user, mode 0700."""

        uid = self.uid(username)
        gid = self.gid(username)
        path = self.runtime_dir(username)

        try:
            st: Optional[os.stat_result] = os.stat(path)
        except FileNotFoundError:
            st = None

        if st is None:
            logger.info("Creating runtime directory %s", path)
            self.runner.run(["mkdir", "-p", path], sudo=True)
            self.runner.run(["chown", f"{uid}:{gid}", path], sudo=True)
            self.runner.run(["chmod", "0700", path], sudo=True)
            return path

        if st.st_uid != uid or st.st_gid != gid:
            self.runner.run(["chown", f"{uid}:{gid}", path], sudo=True)
        if stat.S_IMODE(st.st_mode) != 0o700:
            self.runner.run(["chmod", "0700", path], sudo=True)
        return path

    def timezone(self) -> Optional[str]:
        r = self.runner.run(["timedatectl", "show", "--property=Timezone", "--value"], check=False)
        if r.returncode != 0:
            return None
        return r.stdout.strip() or None
