from __future__ import annotations

import logging
from typing import Optional

from .command import CommandRunner

logger = logging.getLogger(__name__)


def ping(runner: CommandRunner, host: str, *, timeout: int = 2, count: int = 1) -> bool:
    """Best-effort reachability check."""

    if not runner.exists("ping"):
        logger.warning("ping not installed; cannot check reachability of %s", host)
        return False
    r = runner.run(["ping", "-c", str(count), "-W", str(timeout), host], check=False)
    return r.returncode == 0


def default_gateway(runner: CommandRunner) -> Optional[str]:
    if not runner.exists("ip"):
        return None
    r = runner.run(["ip", "route", "show", "default"], check=False)
    if r.returncode != 0:
        return None
    fields = r.stdout.split()
    if "via" in fields:
        idx = fields.index("via")
        if idx + 1 < len(fields):
            return fields[idx + 1]
    return None


def nfs_server_reachable(runner: CommandRunner, server: str, *, timeout: int = 10, retries: int = 1) -> bool:
    for attempt in range(1, max(retries, 1) + 1):
        if ping(runner, server, timeout=timeout):
            return True
        logger.info("NFS server %s not reachable (attempt %d/%d)", server, attempt, retries)
    return False
