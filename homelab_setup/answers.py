"""Answers file: a YAML mapping of config keys used to seed unattended runs.

Example::

    homelab_user: homelab
    container_runtime: podman
    selected_services: [media, web]
    nfs_server: 192.168.1.10
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

import yaml

from .state_store import StateStore

logger = logging.getLogger(__name__)


def _to_value(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    if isinstance(value, dict):
        raise ValueError(f"answers: value for {key} must be a scalar or a list")
    return str(value)


def load_answers(path: str) -> Dict[str, str]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("answers file must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("answers file must contain a mapping/object")

    out: Dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            continue
        name = str(key).strip().upper().replace("-", "_")
        out[name] = _to_value(name, value)
    return out


def apply_answers(store: StateStore, answers: Dict[str, str]) -> None:
    for key, value in sorted(answers.items()):
        store.set(key, value)
    logger.info("Applied %d answer(s) to %s", len(answers), store.config.path)
