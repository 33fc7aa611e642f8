from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..errors import SetupError
from .command import CommandRunner

logger = logging.getLogger(__name__)


class FileManager:
    """Filesystem mutations that may need privilege escalation.

    Each operation is attempted directly first; on PermissionError it is
    retried through ``sudo`` via the command runner.
    """

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def ensure_directory(self, path: str, *, owner: Optional[str] = None, mode: Optional[int] = None) -> None:
        p = Path(path)
        if self.dry_run:
            logger.info("Would create directory %s", path)
            return
        if not p.is_dir():
            try:
                p.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                self.runner.run(["mkdir", "-p", path], sudo=True)
            except OSError as e:
                raise SetupError(f"Failed to create directory {path}: {e}") from e
            logger.info("Created directory %s", path)
        if owner:
            self.chown(path, owner)
        if mode is not None:
            self.chmod(path, mode)

    def chown(self, path: str, owner: str, *, recursive: bool = False) -> None:
        argv = ["chown"]
        if recursive:
            argv.append("-R")
        self.runner.run([*argv, owner, path], sudo=True)

    def chmod(self, path: str, mode: int) -> None:
        if self.dry_run:
            logger.info("Would chmod %o %s", mode, path)
            return
        try:
            os.chmod(path, mode)
        except PermissionError:
            self.runner.run(["chmod", format(mode, "o"), path], sudo=True)

    def write_file(self, path: str, contents: str, *, mode: int = 0o644) -> None:
        """Write atomically (temp file + rename in the target directory)."""

        if self.dry_run:
            logger.info("Would write %s", path)
            return

        p = Path(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
        except PermissionError:
            self._write_privileged(path, contents, mode)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(contents)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, p)
        except OSError as e:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise SetupError(f"Failed to write {path}: {e}") from e
        logger.info("Wrote %s", path)

    def _write_privileged(self, path: str, contents: str, mode: int) -> None:
        fd, tmp = tempfile.mkstemp(prefix="homelab-setup-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(contents)
            parent = str(Path(path).parent)
            self.runner.run(["mkdir", "-p", parent], sudo=True)
            self.runner.run(["install", "-m", format(mode, "o"), tmp, path], sudo=True)
        finally:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
        logger.info("Wrote %s (via sudo)", path)

    def read_file(self, path: str) -> str:
        """Read a text file; FileNotFoundError is left for callers that treat absence as empty."""

        try:
            return Path(path).read_text(encoding="utf-8")
        except PermissionError:
            return self.runner.run(["cat", path], sudo=True).stdout
        except FileNotFoundError:
            raise
        except OSError as e:
            raise SetupError(f"Failed to read {path}: {e}") from e

    def copy_file(self, src: str, dst: str) -> None:
        if self.dry_run:
            logger.info("Would copy %s -> %s", src, dst)
            return
        try:
            Path(dst).parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
        except PermissionError:
            self.runner.run(["cp", src, dst], sudo=True)
        except OSError as e:
            raise SetupError(f"Failed to copy {src} to {dst}: {e}") from e

    def symlink(self, target: str, link: str) -> None:
        """Point link at target, replacing an existing link."""

        if self.dry_run:
            logger.info("Would link %s -> %s", link, target)
            return
        lp = Path(link)
        try:
            if lp.is_symlink() and os.readlink(link) == target:
                return
            if lp.is_symlink() or lp.exists():
                lp.unlink()
            lp.symlink_to(target)
        except PermissionError:
            self.runner.run(["ln", "-sfn", target, link], sudo=True)
        except OSError as e:
            raise SetupError(f"Failed to link {link} -> {target}: {e}") from e

    def remove(self, path: str) -> None:
        if self.dry_run:
            logger.info("Would remove %s", path)
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except PermissionError:
            self.runner.run(["rm", "-f", path], sudo=True)
        except OSError as e:
            raise SetupError(f"Failed to remove {path}: {e}") from e
