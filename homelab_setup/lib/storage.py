from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from ..errors import CommandError
from .command import CommandRunner
from .files import FileManager

logger = logging.getLogger(__name__)


DEFAULT_NFS_OPTIONS = ("defaults", "nfsvers=4.2", "_netdev", "nofail")
REPLACED_COMMENT = "# Replaced by homelab-setup"

_VALID_CHARS = frozenset(b"0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ:_.")


def _escape_byte(b: int) -> str:
    return f"\\x{b:02x}"


def escape_path(path: str) -> str:
    """Escape a filesystem path the way ``systemd-escape --path`` does.

    >>> escape_path("/mnt/nas-media")
    'mnt-nas\\\\x2dmedia'
    """

    if not path.startswith("/"):
        raise ValueError(f"Path must be absolute: {path}")
    parts = [p for p in path.split("/") if p and p != "."]
    if any(p == ".." for p in parts):
        raise ValueError(f"Path must not contain '..': {path}")
    if not parts:
        return "-"

    raw = "/".join(parts).encode("utf-8")
    out: List[str] = []
    for i, b in enumerate(raw):
        if b == ord("/"):
            out.append("-")
        elif i == 0 and b == ord("."):
            out.append(_escape_byte(b))
        elif b in _VALID_CHARS:
            out.append(chr(b))
        else:
            out.append(_escape_byte(b))
    return "".join(out)


def unescape_path(name: str) -> str:
    """Inverse of escape_path; accepts an optional unit suffix."""

    for suffix in (".mount", ".automount"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    if name == "-":
        return "/"

    buf = bytearray()
    i = 0
    while i < len(name):
        c = name[i]
        if c == "-":
            buf.append(ord("/"))
            i += 1
        elif c == "\\":
            if name[i + 1 : i + 2] != "x" or len(name) < i + 4:
                raise ValueError(f"Bad escape sequence in {name!r}")
            buf.append(int(name[i + 2 : i + 4], 16))
            i += 4
        else:
            buf.append(ord(c))
            i += 1
    return "/" + buf.decode("utf-8")


def mount_unit_name(path: str) -> str:
    return escape_path(path) + ".mount"


def merge_mount_options(user_options: str = "") -> str:
    """Overlay user options onto the NFS defaults; keys (text before '=') win from the user."""

    merged: List[Tuple[str, str]] = [(opt.split("=", 1)[0], opt) for opt in DEFAULT_NFS_OPTIONS]
    for opt in (o.strip() for o in user_options.split(",")):
        if not opt:
            continue
        key = opt.split("=", 1)[0]
        for i, (k, _) in enumerate(merged):
            if k == key:
                merged[i] = (key, opt)
                break
        else:
            merged.append((key, opt))
    return ",".join(opt for _, opt in merged)


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str = "defaults"
    dump: int = 0
    passno: int = 0

    def render(self) -> str:
        return f"{self.spec} {self.mountpoint} {self.fstype} {self.options} {self.dump} {self.passno}"


def update_fstab(content: str, entry: FstabEntry) -> Tuple[str, bool]:
    """Return (new_content, changed).

    An identical entry leaves the file alone; a different entry for the same
    mount point is commented out and the new one appended.
    """

    wanted = entry.render().split()
    out: List[str] = []
    replaced = False
    for line in content.splitlines():
        stripped = line.strip()
        fields = stripped.split()
        if stripped and not stripped.startswith("#") and len(fields) >= 2 and fields[1] == entry.mountpoint:
            if fields == wanted:
                return content, False
            out.append(REPLACED_COMMENT)
            out.append(f"# {line}")
            replaced = True
            continue
        out.append(line)

    if replaced:
        logger.info("Commented out previous fstab entry for %s", entry.mountpoint)
    out.append(entry.render())
    return "\n".join(out) + "\n", True


def parse_exports(output: str) -> List[str]:
    """Parse ``showmount -e`` output into export paths."""

    exports: List[str] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.lower().startswith("export list"):
            continue
        exports.append(line.split()[0])
    return exports


class StorageManager:
    def __init__(
        self,
        runner: CommandRunner,
        files: FileManager,
        *,
        unit_dir: str = "/etc/systemd/system",
        fstab_path: str = "/etc/fstab",
    ) -> None:
        self.runner = runner
        self.files = files
        self.unit_dir = unit_dir
        self.fstab_path = fstab_path

    def is_mounted(self, path: str) -> bool:
        # findmnt exits 1 when nothing is mounted there.
        r = self.runner.run(["findmnt", "--mountpoint", path], check=False)
        if r.returncode == 0:
            return True
        if r.returncode == 1:
            return False
        raise CommandError(r.argv, r.returncode, r.stdout, r.stderr)

    def list_exports(self, server: str) -> List[str]:
        r = self.runner.run(["showmount", "-e", server])
        return parse_exports(r.stdout)

    def read_fstab(self) -> str:
        try:
            return self.files.read_file(self.fstab_path)
        except FileNotFoundError:
            return ""

    def write_fstab_entry(self, entry: FstabEntry) -> bool:
        content = self.read_fstab()
        updated, changed = update_fstab(content, entry)
        if changed:
            self.files.write_file(self.fstab_path, updated, mode=0o644)
        return changed

    def validate_fstab(self) -> None:
        self.runner.run(["mount", "-a", "--fake"], sudo=True)

    def mount_all(self) -> None:
        self.runner.run(["mount", "-a"], sudo=True)

    def remove_legacy_mount_units(self, mount_point: str) -> List[str]:
        """Drop hand-made .mount/.automount units that would fight the fstab entry."""

        base = escape_path(mount_point)
        removed: List[str] = []
        for unit in (f"{base}.automount", f"{base}.mount"):
            path = os.path.join(self.unit_dir, unit)
            if not os.path.exists(path):
                continue
            logger.info("Removing legacy unit %s", unit)
            self.runner.run(["systemctl", "disable", "--now", unit], check=False, sudo=True)
            self.files.remove(path)
            removed.append(unit)
        if removed:
            self.runner.run(["systemctl", "daemon-reload"], sudo=True)
        return removed


def exports_include(exports: Iterable[str], export: str) -> bool:
    want = export.rstrip("/") or "/"
    return any((e.rstrip("/") or "/") == want for e in exports)

