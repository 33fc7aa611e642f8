from __future__ import annotations

import contextlib
import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Sequence

from ..errors import CommandError, CommandNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr.
    - A missing executable raises CommandNotFound, even with check=False.
    - dry_run logs but does not execute.
    """

    argv_list = list(argv)
    logger.info("CMD %s", _fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="")

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
        )
    except FileNotFoundError as e:
        raise CommandNotFound(argv_list) from e

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise CommandError(argv_list, p.returncode, p.stdout, p.stderr)

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


class CommandRunner:
    """The single seam through which adapters reach the OS.

    Tests substitute a subclass overriding ``_execute`` and ``which``.
    """

    def __init__(self, *, dry_run: bool = False, use_sudo: Optional[bool] = None) -> None:
        self.dry_run = dry_run
        self.use_sudo = (os.geteuid() != 0) if use_sudo is None else use_sudo

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        cwd: str | None = None,
        input_text: str | None = None,
        sudo: bool = False,
    ) -> CmdResult:
        argv_list = list(argv)
        if sudo and self.use_sudo:
            argv_list = ["sudo", "-n", *argv_list]
        result = self._execute(argv_list, cwd=cwd, input_text=input_text)
        if check and result.returncode != 0:
            raise CommandError(argv_list, result.returncode, result.stdout, result.stderr)
        return result

    def _execute(self, argv: list[str], *, cwd: str | None, input_text: str | None) -> CmdResult:
        return run_cmd(argv, check=False, cwd=cwd, input_text=input_text, dry_run=self.dry_run)

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def exists(self, name: str) -> bool:
        return self.which(name) is not None


@contextlib.contextmanager
def pushd(path: str) -> Iterator[str]:
    """chdir into path for the duration of the block; always restores."""

    previous = os.getcwd()
    os.chdir(path)
    try:
        yield path
    finally:
        os.chdir(previous)
