from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from .context import SetupContext
from .errors import SetupError
from .keys import SELECTED_STEPS
from .prompts import Prompter
from .state_store import StateStore

logger = logging.getLogger(__name__)


class Step(Protocol):
    """A single idempotent step."""

    step_id: str
    title: str
    marker: str
    legacy_markers: Tuple[str, ...]
    prerequisites: Tuple[str, ...]
    optional: bool

    def run(self, ctx: SetupContext) -> None:
        ...


@dataclass(frozen=True)
class StepDescriptor:
    index: int
    name: str
    title: str
    marker: str
    action: Callable[[SetupContext], None]
    legacy_markers: Tuple[str, ...] = ()
    prerequisites: Tuple[str, ...] = ()
    optional: bool = False


class StepStatus(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    step: str
    status: StepStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILED


FailurePolicy = Callable[[StepResult], bool]


def abort_on_failure(result: StepResult) -> bool:
    return False


def continue_on_failure(result: StepResult) -> bool:
    return True


def ask_operator(prompter: Prompter) -> FailurePolicy:
    def policy(result: StepResult) -> bool:
        return prompter.yes_no(f"Step {result.step} failed. Continue with the remaining steps?", default=False)

    return policy


@dataclass
class PipelineResult:
    results: List[StepResult] = field(default_factory=list)
    aborted: bool = False

    def _names(self, status: StepStatus) -> List[str]:
        return [r.step for r in self.results if r.status is status]

    @property
    def completed(self) -> List[str]:
        return self._names(StepStatus.COMPLETED)

    @property
    def skipped(self) -> List[str]:
        return self._names(StepStatus.SKIPPED)

    @property
    def failed(self) -> List[str]:
        return self._names(StepStatus.FAILED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.aborted


def select_steps(catalog: Sequence[StepDescriptor], targets: Iterable[str]) -> List[StepDescriptor]:
    """Resolve ``all``, ``quick``, step names and indexes into catalog order."""

    targets = [t.strip().lower() for t in targets if t.strip()]
    if not targets or "all" in targets:
        return list(catalog)

    wanted = set()
    for t in targets:
        if t == "quick":
            wanted.update(d.name for d in catalog if not d.optional)
            continue
        match = [d for d in catalog if d.name == t or str(d.index) == t]
        if not match:
            names = ", ".join(d.name for d in catalog)
            raise ValueError(f"Unknown step {t!r} (expected all, quick, an index or one of: {names})")
        wanted.add(match[0].name)
    return [d for d in catalog if d.name in wanted]


def persisted_selection(store: StateStore) -> List[str]:
    return (store.get(SELECTED_STEPS) or "").split()


def run_step(ctx: SetupContext, step: StepDescriptor, *, rerun: bool = False) -> StepResult:
    """Run one step with marker, prerequisite and failure handling."""

    markers = ctx.store.markers

    if rerun:
        logger.info("Re-run requested for %s; clearing its markers", step.name)
        markers.clear_marker(step.marker)
        for old in step.legacy_markers:
            markers.clear_marker(old)

    if markers.ensure_canonical_marker(step.marker, *step.legacy_markers):
        logger.info("Skipping step %s (already completed)", step.name)
        return StepResult(step.name, StepStatus.SKIPPED, "already complete")

    for prereq in step.prerequisites:
        if not markers.is_complete(prereq):
            reason = f"prerequisite {prereq} not complete"
            logger.error("Step %s blocked: %s", step.name, reason)
            return StepResult(step.name, StepStatus.FAILED, reason)

    logger.info("Running step %s (%s)", step.name, step.title)
    try:
        step.action(ctx)
        markers.mark_complete(step.marker)
    except (SetupError, OSError) as e:
        logger.error("Step %s failed: %s", step.name, e)
        return StepResult(step.name, StepStatus.FAILED, str(e))

    logger.info("Step %s completed", step.name)
    return StepResult(step.name, StepStatus.COMPLETED)


def run_pipeline(
    ctx: SetupContext,
    catalog: Sequence[StepDescriptor],
    *,
    targets: Optional[Sequence[str]] = None,
    rerun: bool = False,
    policy: FailurePolicy = abort_on_failure,
) -> PipelineResult:
    """Run the selected steps in catalog order with resume/idempotency semantics.

    ``targets`` of None reuses the persisted selection. Whatever is resolved
    is written back so an unattended re-run reproduces it.
    """

    if targets is None:
        targets = persisted_selection(ctx.store)
    selected = select_steps(catalog, targets)
    ctx.store.set(SELECTED_STEPS, " ".join(d.name for d in selected))

    result = PipelineResult()
    for step in selected:
        outcome = run_step(ctx, step, rerun=rerun)
        result.results.append(outcome)
        if outcome.status is StepStatus.FAILED and not policy(outcome):
            logger.error("Aborting run after %s failed", step.name)
            result.aborted = True
            break

    logger.info(
        "Run finished: completed=%s skipped=%s failed=%s",
        result.completed,
        result.skipped,
        result.failed,
    )
    return result


def step_status(store: StateStore, catalog: Sequence[StepDescriptor]) -> List[Tuple[StepDescriptor, bool]]:
    """Read-only completion view for status screens (legacy names count as complete)."""

    out: List[Tuple[StepDescriptor, bool]] = []
    for d in catalog:
        done = store.markers.is_complete(d.marker) or any(store.markers.is_complete(m) for m in d.legacy_markers)
        out.append((d, done))
    return out
