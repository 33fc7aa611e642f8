from __future__ import annotations

import fnmatch
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import yaml

from .. import keys
from ..context import SetupContext
from ..errors import SetupError
from ..lib.validation import validate_stack_name

logger = logging.getLogger(__name__)


TEMPLATE_DIRS = ("~/setup/compose-setup", "/usr/share/compose-setup")
EXCLUDE_PATTERNS = (".*", "*.example", "README*", "*.md")

# Per-stack secrets written to .env; value is the prompt text.
STACK_SECRETS: Dict[str, Dict[str, str]] = {
    "web": {
        "DB_PASSWORD": "Database password for the web stack",
    },
    "cloud": {
        "NEXTCLOUD_ADMIN_PASSWORD": "Nextcloud admin password",
        "NEXTCLOUD_DB_PASSWORD": "Nextcloud database password",
        "POSTGRES_PASSWORD": "PostgreSQL password",
    },
}


@dataclass(frozen=True)
class StackTemplate:
    name: str
    path: str


def template_dirs(ctx: SetupContext) -> List[str]:
    dirs = []
    configured = ctx.store.get(keys.COMPOSE_TEMPLATE_DIR)
    if configured:
        dirs.append(configured)
    dirs += [os.path.expanduser(d) for d in TEMPLATE_DIRS]
    return dirs


def _excluded(filename: str) -> bool:
    return any(fnmatch.fnmatch(filename, pat) for pat in EXCLUDE_PATTERNS)


def load_compose_template(path: str) -> Dict:
    """Parse a compose file; it must be a mapping with a ``services`` mapping."""

    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("services"), dict):
        raise ValueError(f"{path}: not a compose file (no 'services' mapping)")
    return data


def discover_stacks(directory: str) -> List[StackTemplate]:
    found: Dict[str, StackTemplate] = {}
    for p in sorted(Path(directory).iterdir()):
        if not p.is_file() or p.suffix not in {".yml", ".yaml"} or _excluded(p.name):
            continue
        try:
            validate_stack_name(p.stem)
            load_compose_template(str(p))
        except ValueError as e:
            logger.warning("Skipping template %s: %s", p.name, e)
            continue
        found.setdefault(p.stem, StackTemplate(name=p.stem, path=str(p)))
    return list(found.values())


def render_env(values: Dict[str, str]) -> str:
    return "".join(f"{k}={v}\n" for k, v in values.items())


class ContainerStep:
    step_id = "container"
    title = "Compose stack configuration"
    marker = "container-setup-complete"
    legacy_markers = ()
    prerequisites = ("user-setup-complete", "directory-setup-complete")
    optional = False

    def run(self, ctx: SetupContext) -> None:
        store = ctx.store
        files = ctx.system.files

        template_dir = self._find_template_dir(ctx)
        templates = discover_stacks(template_dir)
        if not templates:
            raise SetupError(f"No compose templates found in {template_dir}")
        by_name = {t.name: t for t in templates}

        selected = self._select(ctx, sorted(by_name))
        store.set(keys.SELECTED_SERVICES, " ".join(selected))

        user = ctx.service_user()
        owner = f"{user}:{store.get(keys.PGID)}" if store.get(keys.PGID) else user
        base = store.get_or_default(keys.CONTAINERS_BASE)
        appdata = store.get_or_default(keys.APPDATA_BASE)
        common = {
            "PUID": store.get(keys.PUID) or "1000",
            "PGID": store.get(keys.PGID) or "1000",
            "TZ": store.get(keys.TZ) or "UTC",
        }

        for name in selected:
            stack_dir = os.path.join(base, name)
            files.ensure_directory(stack_dir, owner=owner, mode=0o755)
            compose_path = os.path.join(stack_dir, "compose.yml")
            files.copy_file(by_name[name].path, compose_path)
            files.symlink("compose.yml", os.path.join(stack_dir, "docker-compose.yml"))

            env = dict(common)
            env["APPDATA_PATH"] = os.path.join(appdata, name)
            env.update(self._stack_secrets(ctx, name, stack_dir))
            env_path = os.path.join(stack_dir, ".env")
            files.write_file(env_path, render_env(env), mode=0o600)
            files.chown(env_path, owner)
            files.chown(compose_path, owner)
            logger.info("Prepared stack %s in %s", name, stack_dir)

    def _find_template_dir(self, ctx: SetupContext) -> str:
        for d in template_dirs(ctx):
            if os.path.isdir(d):
                logger.info("Using compose templates from %s", d)
                return d
        raise SetupError("No compose template directory found (looked in: " + ", ".join(template_dirs(ctx)) + ")")

    def _select(self, ctx: SetupContext, available: Sequence[str]) -> List[str]:
        persisted = (ctx.store.get(keys.SELECTED_SERVICES) or "").split()
        if persisted and all(s in available for s in persisted):
            logger.info("Using persisted stack selection: %s", " ".join(persisted))
            return persisted
        if persisted:
            logger.warning("Persisted stack selection %s no longer matches templates; asking again", persisted)
        chosen = ctx.prompter.multi_select("Select stacks to deploy", list(available))
        if not chosen:
            raise SetupError("No stacks selected")
        return [s for s in available if s in chosen]

    def _stack_secrets(self, ctx: SetupContext, name: str, stack_dir: str) -> Dict[str, str]:
        wanted = STACK_SECRETS.get(name)
        if not wanted:
            return {}
        existing = _read_env(os.path.join(stack_dir, ".env"))
        out: Dict[str, str] = {}
        for key, question in wanted.items():
            current: Optional[str] = existing.get(key)
            if current:
                out[key] = current
                continue
            out[key] = ctx.prompter.secret(question, default=secrets.token_urlsafe(18))
        return out


def _read_env(path: str) -> Dict[str, str]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise SetupError(f"Failed to read {path}: {e}") from e
    out: Dict[str, str] = {}
    for line in text.splitlines():
        k, sep, v = line.partition("=")
        if sep and not k.strip().startswith("#"):
            out[k.strip()] = v.strip()
    return out
