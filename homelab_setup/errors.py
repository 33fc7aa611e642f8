from __future__ import annotations

from typing import Sequence


class SetupError(RuntimeError):
    """Base class for failures a step reports instead of crashing the run."""


class ConfigIOError(SetupError):
    """Reading or writing persisted state failed."""


class CommandError(SetupError):
    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            message = f"Command failed ({returncode}): {' '.join(self.argv)}"
            detail = (stderr or stdout or "").strip()
            if detail:
                message += f"\n{detail}"
        super().__init__(message)


class CommandNotFound(CommandError):
    def __init__(self, argv: Sequence[str]) -> None:
        argv = list(argv)
        super().__init__(argv, 127, message=f"Command not found: {argv[0] if argv else '<empty>'}")


class PrerequisiteError(SetupError):
    pass


class SynthesisError(SetupError):
    """A stack's unit could not be generated or deployed."""


class PromptError(SetupError):
    pass
