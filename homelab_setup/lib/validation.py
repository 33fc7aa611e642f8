from __future__ import annotations

import ipaddress
import re

_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_STACK_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_SHELL_META = set(";&|$`<>(){}[]*?!~'\"\\\n\r")


def validate_username(name: str) -> None:
    if not _USERNAME_RE.match(name or ""):
        raise ValueError(
            f"Invalid username {name!r}: must start with a lowercase letter or underscore "
            "and contain only lowercase letters, digits, '_' or '-' (max 32 chars)"
        )


def validate_path(path: str) -> None:
    if not path:
        raise ValueError("Path must not be empty")
    if not path.startswith("/"):
        raise ValueError(f"Path must be absolute: {path}")
    if "\x00" in path:
        raise ValueError("Path must not contain NUL bytes")


def validate_safe_path(path: str) -> None:
    """An absolute path that is also safe to embed in fstab and unit files."""

    validate_path(path)
    bad = sorted({c for c in path if c in _SHELL_META or c.isspace()})
    if bad:
        raise ValueError(f"Path {path!r} contains forbidden characters: {' '.join(repr(c) for c in bad)}")
    if any(part == ".." for part in path.split("/")):
        raise ValueError(f"Path must not contain '..': {path}")


def validate_ip(value: str) -> None:
    try:
        ipaddress.ip_address(value)
    except ValueError as e:
        raise ValueError(f"Invalid IP address: {value}") from e


def validate_host(value: str) -> None:
    """IP address or DNS name."""

    try:
        validate_ip(value)
        return
    except ValueError:
        pass
    labels = value.rstrip(".").split(".") if value else []
    if not labels or any(not re.match(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$", label) for label in labels):
        raise ValueError(f"Invalid host: {value!r}")


def validate_cidr(value: str) -> None:
    if "/" not in value:
        raise ValueError(f"Expected address/prefix, got {value!r}")
    try:
        ipaddress.ip_interface(value)
    except ValueError as e:
        raise ValueError(f"Invalid interface address: {value}") from e


def validate_port(value: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid port: {value!r}") from e
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


def validate_stack_name(name: str) -> None:
    if not _STACK_RE.match(name or ""):
        raise ValueError(f"Invalid stack name {name!r}")
