from __future__ import annotations

import getpass
import logging
from typing import Callable, List, Optional, Sequence

from .errors import PromptError

logger = logging.getLogger(__name__)


Validator = Callable[[str], object]


class Prompter:
    """Operator questions. In non-interactive mode every question takes its default."""

    def __init__(
        self,
        *,
        non_interactive: bool = False,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
    ) -> None:
        self.non_interactive = non_interactive
        self._input = input_fn
        self._secret = secret_fn

    def yes_no(self, question: str, default: bool = False) -> bool:
        if self.non_interactive:
            logger.info("%s -> %s (non-interactive)", question, "yes" if default else "no")
            return default
        hint = "[Y/n]" if default else "[y/N]"
        while True:
            answer = self._input(f"{question} {hint} ").strip().lower()
            if not answer:
                return default
            if answer in {"y", "yes"}:
                return True
            if answer in {"n", "no"}:
                return False
            print("Please answer y or n.")

    def text(self, question: str, default: Optional[str] = None, *, validator: Optional[Validator] = None) -> str:
        if self.non_interactive:
            if default is None:
                raise PromptError(f"No value available for {question!r} in non-interactive mode")
            if validator is not None:
                try:
                    validator(default)
                except ValueError as e:
                    raise PromptError(f"Default for {question!r} is invalid: {e}") from e
            return default

        suffix = f" [{default}]" if default else ""
        while True:
            answer = self._input(f"{question}{suffix}: ").strip()
            if not answer and default is not None:
                answer = default
            if not answer:
                print("A value is required.")
                continue
            if validator is not None:
                try:
                    validator(answer)
                except ValueError as e:
                    print(f"Invalid value: {e}")
                    continue
            return answer

    def secret(self, question: str, default: Optional[str] = None) -> str:
        """Ask twice for a secret. An empty answer keeps the default when one exists."""

        if self.non_interactive:
            if default is None:
                raise PromptError(f"No value available for {question!r} in non-interactive mode")
            return default
        while True:
            first = self._secret(f"{question}: ")
            if not first and default is not None:
                return default
            if not first:
                print("A value is required.")
                continue
            if self._secret("Confirm: ") != first:
                print("Values do not match.")
                continue
            return first

    def multi_select(self, question: str, options: Sequence[str], defaults: Optional[Sequence[str]] = None) -> List[str]:
        chosen = list(defaults) if defaults is not None else list(options)
        if self.non_interactive:
            return chosen
        print(question)
        for i, opt in enumerate(options, start=1):
            mark = "*" if opt in chosen else " "
            print(f"  {i}) [{mark}] {opt}")
        while True:
            answer = self._input("Numbers separated by spaces (empty keeps marked): ").strip()
            if not answer:
                return chosen
            try:
                picked = [options[int(tok) - 1] for tok in answer.replace(",", " ").split()]
            except (ValueError, IndexError):
                print("Invalid selection.")
                continue
            if picked:
                return list(dict.fromkeys(picked))
