from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence, Tuple

from . import __version__, keys
from .answers import apply_answers, load_answers
from .context import SetupContext, SystemAdapters
from .errors import SetupError
from .lib.command import CommandRunner
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import (
    PipelineResult,
    Step,
    StepDescriptor,
    abort_on_failure,
    ask_operator,
    continue_on_failure,
    run_pipeline,
    step_status,
)
from .prompts import Prompter
from .state_store import StateStore, default_config_path, default_marker_dir
from .steps import (
    ContainerStep,
    DeploymentStep,
    DirectoryStep,
    NFSStep,
    PreflightStep,
    UserStep,
    WireGuardStep,
)

logger = logging.getLogger(__name__)


def build_steps() -> Tuple[StepDescriptor, ...]:
    steps: List[Step] = [
        PreflightStep(),
        UserStep(),
        DirectoryStep(),
        WireGuardStep(),
        NFSStep(),
        ContainerStep(),
        DeploymentStep(),
    ]
    return tuple(
        StepDescriptor(
            index=i,
            name=s.step_id,
            title=s.title,
            marker=s.marker,
            action=s.run,
            legacy_markers=tuple(s.legacy_markers),
            prerequisites=tuple(s.prerequisites),
            optional=s.optional,
        )
        for i, s in enumerate(steps)
    )


# CLI flag -> config key, applied before a run.
OVERRIDES = {
    "setup_user": keys.HOMELAB_USER,
    "nfs_server": keys.NFS_SERVER,
    "homelab_base_dir": keys.HOMELAB_BASE_DIR,
    "runtime": keys.CONTAINER_RUNTIME,
    "stacks": keys.SELECTED_SERVICES,
}


def run(
    ctx: SetupContext,
    *,
    targets: Optional[Sequence[str]] = None,
    rerun: bool = False,
    keep_going: Optional[bool] = None,
) -> PipelineResult:
    """Run the setup pipeline; markers make it resumable."""

    if keep_going is None:
        policy = abort_on_failure if ctx.prompter.non_interactive else ask_operator(ctx.prompter)
    else:
        policy = continue_on_failure if keep_going else abort_on_failure

    try:
        return run_pipeline(ctx, build_steps(), targets=targets, rerun=rerun, policy=policy)
    except Exception:
        logger.exception("Setup failed")
        raise


def print_status(store: StateStore) -> None:
    print(f"Config:  {store.config.path}")
    print(f"Markers: {store.markers.directory}")
    print()
    for d, done in step_status(store, build_steps()):
        flag = "x" if done else " "
        opt = " (optional)" if d.optional else ""
        print(f"  [{flag}] {d.index}. {d.name:<11} {d.title}{opt}")
    print()
    values = store.config.get_all()
    if not values:
        print("No configuration saved yet.")
        return
    for key in sorted(values):
        print(f"  {key}={values[key]}")


def reset(
    store: StateStore,
    prompter: Prompter,
    *,
    step: Optional[str] = None,
    remove_config: bool = False,
    force: bool = False,
) -> bool:
    """Clear markers (one step or all) and optionally the config file."""

    if step is not None:
        match = [d for d in build_steps() if d.name == step or str(d.index) == step]
        if not match:
            raise ValueError(f"Unknown step {step!r}")
        d = match[0]
        if not force and not prompter.yes_no(f"Clear completion markers for {d.name}?", default=False):
            return False
        for name in (d.marker, *d.legacy_markers):
            store.markers.clear_marker(name)
        logger.info("Cleared markers for %s", d.name)
        return True

    what = "all markers and the configuration file" if remove_config else "all markers"
    if not force and not prompter.yes_no(f"Really clear {what}?", default=False):
        return False
    store.markers.clear_all_markers()
    if remove_config:
        store.config.remove_file()
    logger.info("Cleared %s", what)
    return True


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="homelab-setup")
    p.add_argument("--config", default=default_config_path(), help="Path to the KEY=value config file")
    p.add_argument("--marker-dir", default=default_marker_dir(), help="Directory holding completion markers")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to the setup log")
    p.add_argument("--non-interactive", action="store_true", help="Never prompt; take defaults")
    p.add_argument("--dry-run", action="store_true", help="Log commands without executing them")

    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("run", help="Run setup steps")
    r.add_argument("targets", nargs="*", help="all, quick, step names or indexes (default: last selection)")
    r.add_argument("--answers", default=None, help="YAML file of config values to apply first")
    r.add_argument("--rerun", action="store_true", help="Clear the targeted steps' markers before running")
    g = r.add_mutually_exclusive_group()
    g.add_argument("--continue-on-error", dest="keep_going", action="store_true", default=None)
    g.add_argument("--abort-on-error", dest="keep_going", action="store_false")
    r.add_argument("--setup-user", default=None)
    r.add_argument("--nfs-server", default=None)
    r.add_argument("--homelab-base-dir", default=None)
    r.add_argument("--runtime", choices=["podman", "docker"], default=None)
    r.add_argument("--stacks", default=None, help="Space or comma separated stack names")
    r.add_argument("--skip-wireguard", action="store_true", help="Same as the 'quick' target")

    sub.add_parser("status", help="Show step and config status")

    rs = sub.add_parser("reset", help="Clear completion markers")
    scope = rs.add_mutually_exclusive_group()
    scope.add_argument("--step", default=None, help="Only clear this step's markers")
    scope.add_argument("--all", dest="all_steps", action="store_true", help="Clear every marker (default)")
    rs.add_argument("--config", dest="remove_config", action="store_true", help="Also remove the config file")
    rs.add_argument("--force", action="store_true", help="Do not ask for confirmation")

    c = sub.add_parser("config", help="Read or change config values")
    csub = c.add_subparsers(dest="config_command", required=True)
    cg = csub.add_parser("get")
    cg.add_argument("key")
    cs = csub.add_parser("set")
    cs.add_argument("key")
    cs.add_argument("value")
    cu = csub.add_parser("unset")
    cu.add_argument("key")
    csub.add_parser("list")

    sub.add_parser("version", help="Print the version")
    return p


def _apply_overrides(store: StateStore, args: argparse.Namespace) -> None:
    for attr, key in OVERRIDES.items():
        value = getattr(args, attr, None)
        if value is None:
            continue
        if attr == "stacks":
            value = " ".join(value.replace(",", " ").split())
        store.set(key, value)


def _targets(args: argparse.Namespace) -> Optional[List[str]]:
    targets = list(args.targets)
    if args.skip_wireguard:
        if targets and targets != ["all"]:
            raise ValueError("--skip-wireguard cannot be combined with explicit steps")
        targets = ["quick"]
    return targets or None


def main(argv: Optional[List[str]] = None) -> int:
    p = _build_parser()
    args = p.parse_args(argv)

    if args.command == "version":
        print(f"homelab-setup {__version__}")
        return 0

    store = StateStore(args.config, args.marker_dir)
    prompter = Prompter(non_interactive=args.non_interactive)

    try:
        if args.command == "status":
            print_status(store)
            return 0

        if args.command == "config":
            if args.config_command == "get":
                value = store.get(args.key)
                if value is None:
                    return 1
                print(value)
            elif args.config_command == "set":
                store.set(args.key, args.value)
            elif args.config_command == "unset":
                store.config.delete(args.key)
            else:
                for k, v in sorted(store.config.get_all().items()):
                    print(f"{k}={v}")
            return 0

        configure_logging(log_path=args.log)

        if args.command == "reset":
            return 0 if reset(store, prompter, step=args.step, remove_config=args.remove_config, force=args.force) else 1

        if args.answers:
            apply_answers(store, load_answers(args.answers))
        _apply_overrides(store, args)

        ctx = SetupContext(
            store=store,
            system=SystemAdapters.create(CommandRunner(dry_run=args.dry_run)),
            prompter=prompter,
        )
        result = run(ctx, targets=_targets(args), rerun=args.rerun, keep_going=args.keep_going)
    except (SetupError, ValueError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for r in result.results:
        line = f"{r.step}: {r.status.value}"
        if r.reason and r.status.value == "failed":
            line += f" ({r.reason})"
        print(line)
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
