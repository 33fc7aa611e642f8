from typing import List

import pytest

from homelab_setup.errors import ConfigIOError, SetupError
from homelab_setup.main import build_steps
from homelab_setup.pipeline import (
    StepDescriptor,
    StepStatus,
    abort_on_failure,
    ask_operator,
    continue_on_failure,
    run_pipeline,
    run_step,
    select_steps,
    step_status,
)
from homelab_setup.prompts import Prompter


class Recorder:
    """Fake step actions that log invocations and can be told to fail."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.failing = set()

    def action(self, name):
        def run(ctx):
            self.calls.append(name)
            if name in self.failing:
                raise SetupError(f"{name} exploded")

        return run


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def catalog(recorder):
    """Same shape as the real catalog, with recording actions."""

    return tuple(
        StepDescriptor(
            index=d.index,
            name=d.name,
            title=d.title,
            marker=d.marker,
            action=recorder.action(d.name),
            legacy_markers=d.legacy_markers,
            prerequisites=d.prerequisites,
            optional=d.optional,
        )
        for d in build_steps()
    )


ALL = ["preflight", "user", "directory", "wireguard", "nfs", "container", "deployment"]


def test_catalog_order_and_markers():
    steps = build_steps()
    assert [d.name for d in steps] == ALL
    assert [d.index for d in steps] == list(range(7))
    assert [d.marker for d in steps] == [
        "preflight-complete",
        "user-setup-complete",
        "directory-setup-complete",
        "wireguard-setup-complete",
        "nfs-setup-complete",
        "container-setup-complete",
        "service-deployment-complete",
    ]
    assert [d.name for d in steps if d.optional] == ["wireguard"]
    by_name = {d.name: d for d in steps}
    assert by_name["nfs"].legacy_markers == ("nfs-configured", "nfs-skipped")
    assert by_name["deployment"].legacy_markers == ("deployment-complete",)
    assert by_name["wireguard"].legacy_markers == ("wireguard-configured", "wireguard-skipped")


def test_select_steps(catalog):
    assert [d.name for d in select_steps(catalog, [])] == ALL
    assert [d.name for d in select_steps(catalog, ["all"])] == ALL
    assert "wireguard" not in [d.name for d in select_steps(catalog, ["quick"])]
    assert [d.name for d in select_steps(catalog, ["4", "0"])] == ["preflight", "nfs"]
    assert [d.name for d in select_steps(catalog, ["deployment", "user"])] == ["user", "deployment"]
    with pytest.raises(ValueError):
        select_steps(catalog, ["bogus"])


def test_fresh_run_then_rerun_does_nothing(ctx, catalog, recorder, runner):
    result = run_pipeline(ctx, catalog, targets=["all"])

    assert result.ok
    assert recorder.calls == ALL
    assert result.completed == ALL
    for d in catalog:
        assert ctx.store.is_complete(d.marker)

    recorder.calls.clear()
    runner.calls.clear()
    again = run_pipeline(ctx, catalog, targets=["all"])

    assert again.ok
    assert recorder.calls == []
    assert runner.calls == []
    assert again.skipped == ALL


def test_partial_failure_and_resume(ctx, catalog, recorder):
    recorder.failing.add("nfs")

    first = run_pipeline(ctx, catalog, targets=["all"], policy=abort_on_failure)

    assert first.aborted
    assert first.completed == ["preflight", "user", "directory", "wireguard"]
    assert first.failed == ["nfs"]
    assert not ctx.store.is_complete("nfs-setup-complete")
    assert ctx.store.is_complete("directory-setup-complete")

    recorder.failing.clear()
    recorder.calls.clear()
    second = run_pipeline(ctx, catalog, targets=["all"])

    assert second.ok
    assert recorder.calls == ["nfs", "container", "deployment"]
    assert second.skipped == ["preflight", "user", "directory", "wireguard"]


def test_continue_policy_runs_remaining_steps(ctx, catalog, recorder):
    recorder.failing.add("wireguard")

    result = run_pipeline(ctx, catalog, targets=["all"], policy=continue_on_failure)

    assert not result.aborted
    assert not result.ok
    assert result.failed == ["wireguard"]
    assert recorder.calls == ALL


def test_operator_policy_asks(ctx, catalog, recorder):
    recorder.failing.add("user")
    asked = []
    prompter = Prompter(input_fn=lambda q: asked.append(q) or "y")

    result = run_pipeline(ctx, catalog, targets=["all"], policy=ask_operator(prompter))

    # Continued, but everything depending on the account is blocked.
    assert result.failed == ["user", "directory", "container", "deployment"]
    assert recorder.calls == ["preflight", "user", "wireguard", "nfs"]
    blocked = [r for r in result.results if r.step == "directory"][0]
    assert blocked.reason == "prerequisite user-setup-complete not complete"
    assert len(asked) == 4


def test_missing_prerequisite_blocks_action(ctx, catalog, recorder):
    deployment = [d for d in catalog if d.name == "deployment"][0]

    result = run_step(ctx, deployment)

    assert result.status is StepStatus.FAILED
    assert "container-setup-complete" in result.reason
    assert recorder.calls == []


def test_legacy_marker_counts_as_complete(ctx, catalog, recorder):
    ctx.store.markers.mark_complete("directories-created")
    directory = [d for d in catalog if d.name == "directory"][0]

    result = run_step(ctx, directory)

    assert result.status is StepStatus.SKIPPED
    assert recorder.calls == []
    assert ctx.store.is_complete("directory-setup-complete")
    assert not ctx.store.is_complete("directories-created")


def test_rerun_clears_marker_first(ctx, catalog, recorder):
    preflight = catalog[0]
    run_step(ctx, preflight)
    recorder.calls.clear()

    result = run_step(ctx, preflight, rerun=True)

    assert result.status is StepStatus.COMPLETED
    assert recorder.calls == ["preflight"]


def test_quick_selection_is_persisted(ctx, catalog, recorder):
    run_pipeline(ctx, catalog, targets=["quick"])
    assert ctx.store.get("SELECTED_STEPS") == "preflight user directory nfs container deployment"

    recorder.calls.clear()
    for d in catalog:
        ctx.store.markers.clear_marker(d.marker)
    run_pipeline(ctx, catalog)

    assert "wireguard" not in recorder.calls
    assert recorder.calls[0] == "preflight"


def test_marker_write_failure_fails_step(ctx, catalog, recorder, monkeypatch):
    def broken(name):
        raise ConfigIOError("disk full")

    monkeypatch.setattr(ctx.store.markers, "mark_complete", broken)

    result = run_step(ctx, catalog[0])

    assert result.status is StepStatus.FAILED
    assert "disk full" in result.reason


def test_unexpected_errors_propagate(ctx):
    def boom(ctx):
        raise KeyError("bug")

    step = StepDescriptor(index=0, name="x", title="x", marker="x-complete", action=boom)
    with pytest.raises(KeyError):
        run_pipeline(ctx, [step], targets=["x"])


def test_step_status_view(ctx, catalog):
    ctx.store.markers.mark_complete("nfs-skipped")
    view = {d.name: done for d, done in step_status(ctx.store, catalog)}
    assert view["nfs"] is True
    assert view["preflight"] is False
    # Reading status never migrates markers.
    assert ctx.store.is_complete("nfs-skipped")


@pytest.mark.parametrize("legacy", ["wireguard-configured", "wireguard-skipped"])
def test_legacy_vpn_markers_are_migrated(ctx, catalog, recorder, legacy):
    ctx.store.markers.mark_complete("preflight-complete")
    ctx.store.markers.mark_complete(legacy)
    wireguard = [d for d in catalog if d.name == "wireguard"][0]

    result = run_step(ctx, wireguard)

    assert result.status is StepStatus.SKIPPED
    assert recorder.calls == []
    assert ctx.store.is_complete("wireguard-setup-complete")


def test_os_errors_fail_the_step(ctx):
    def disk_gone(ctx):
        raise OSError(5, "Input/output error")

    step = StepDescriptor(index=0, name="x", title="x", marker="x-complete", action=disk_gone)
    result = run_step(ctx, step)

    assert result.status is StepStatus.FAILED
    assert "Input/output error" in result.reason
    assert not ctx.store.is_complete("x-complete")
