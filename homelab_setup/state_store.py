"""Persisted configuration values and step completion markers.

Configuration is a flat ``KEY=value`` text file rewritten atomically on every
``set``. Markers are empty files in a directory, one per completed step.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigIOError
from .keys import DEFAULTS

logger = logging.getLogger(__name__)


CONFIG_FILENAME = ".homelab-setup.conf"
MARKER_DIRNAME = ".local/homelab-setup"


def default_config_path() -> str:
    return str(Path.home() / CONFIG_FILENAME)


def default_marker_dir() -> str:
    return str(Path.home() / MARKER_DIRNAME)


def _validate_key(key: str) -> None:
    if not key or key != key.strip():
        raise ValueError(f"Invalid config key {key!r}")
    if key.startswith("#") or any(c in key for c in "=\n\r\t "):
        raise ValueError(f"Invalid config key {key!r}")


def _validate_value(value: str) -> None:
    if "\n" in value or "\r" in value:
        raise ValueError("Config values must be single-line")
    if value != value.strip():
        # The file format trims values on load.
        raise ValueError(f"Config values must not have surrounding whitespace: {value!r}")


class ConfigStore:
    def __init__(self, path: str) -> None:
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._loaded = False
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return str(self._path)

    def load(self) -> None:
        """(Re)read the file. A missing file is an empty configuration."""

        with self._lock:
            data: Dict[str, str] = {}
            try:
                text = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                text = ""
            except OSError as e:
                raise ConfigIOError(f"Failed to read config {self._path}: {e}") from e

            for raw in text.splitlines():
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                key, sep, value = line.partition("=")
                if not sep:
                    continue
                data[key.strip()] = value.strip()

            self._data = data
            self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def save(self) -> None:
        with self._lock:
            self._write(dict(self._data))

    def _write(self, data: Dict[str, str]) -> None:
        lines = [
            "# Homelab Setup Configuration",
            f"# Generated: {datetime.now().astimezone().isoformat(timespec='seconds')}",
            "",
        ]
        lines += [f"{k}={data[k]}" for k in sorted(data)]
        payload = "\n".join(lines) + "\n"

        directory = self._path.parent
        tmp_name: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=str(directory))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise ConfigIOError(f"Failed to write config {self._path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""

        with self._lock:
            self._ensure_loaded()
            return self._data.get(key)

    def get_or_default(self, key: str, default: str = "") -> str:
        value = self.get(key)
        if value is not None:
            return value
        return DEFAULTS.get(key, default)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def set(self, key: str, value: str) -> None:
        value = str(value)
        _validate_key(key)
        _validate_value(value)
        with self._lock:
            self._ensure_loaded()
            updated = dict(self._data)
            updated[key] = value
            # Only commit in memory once the file is durable.
            self._write(updated)
            self._data = updated
        logger.debug("Config %s set", key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._ensure_loaded()
            if key not in self._data:
                return
            updated = dict(self._data)
            del updated[key]
            self._write(updated)
            self._data = updated

    def get_all(self) -> Dict[str, str]:
        with self._lock:
            self._ensure_loaded()
            return dict(self._data)

    def remove_file(self) -> None:
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise ConfigIOError(f"Failed to remove config {self._path}: {e}") from e
            self._data = {}
            self._loaded = True


def _validate_marker_name(name: str) -> None:
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise ValueError(f"Invalid marker name {name!r}")


class MarkerStore:
    def __init__(self, directory: str) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> str:
        return str(self._dir)

    def _path(self, name: str) -> Path:
        _validate_marker_name(name)
        return self._dir / name

    def _ensure_dir(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigIOError(f"Failed to create marker directory {self._dir}: {e}") from e

    def mark_complete(self, name: str) -> None:
        p = self._path(name)
        self._ensure_dir()
        try:
            with open(p, "a", encoding="utf-8"):
                pass
        except OSError as e:
            raise ConfigIOError(f"Failed to create marker {name}: {e}") from e
        logger.debug("Marker %s set", name)

    def mark_complete_if_not_exists(self, name: str) -> bool:
        """Create the marker atomically; True only for the caller that created it."""

        p = self._path(name)
        self._ensure_dir()
        try:
            fd = os.open(str(p), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise ConfigIOError(f"Failed to create marker {name}: {e}") from e
        os.close(fd)
        return True

    def is_complete(self, name: str) -> bool:
        try:
            p = self._path(name)
        except ValueError:
            return False
        try:
            os.stat(p)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ConfigIOError(f"Failed to check marker {name}: {e}") from e
        return True

    def clear_marker(self, name: str) -> None:
        p = self._path(name)
        try:
            p.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise ConfigIOError(f"Failed to remove marker {name}: {e}") from e

    def clear_all_markers(self) -> None:
        for name in self.list_markers():
            self.clear_marker(name)

    def list_markers(self) -> List[str]:
        try:
            entries = list(self._dir.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise ConfigIOError(f"Failed to list markers in {self._dir}: {e}") from e
        return sorted(p.name for p in entries if p.is_file())

    def ensure_canonical_marker(self, canonical: str, *legacy: str) -> bool:
        """Return True when the step is complete under its canonical or any legacy name.

        A legacy hit creates the canonical marker exactly once; the winner of
        that creation removes the legacy marker.
        """

        if self.is_complete(canonical):
            return True

        for old in legacy:
            if not old or old == canonical:
                continue
            if not self.is_complete(old):
                continue
            created = self.mark_complete_if_not_exists(canonical)
            if created:
                logger.info("Migrated legacy marker %s -> %s", old, canonical)
                try:
                    self.clear_marker(old)
                except ConfigIOError as e:
                    logger.warning("Could not remove legacy marker %s: %s", old, e)
            return True

        return False


class StateStore:
    """Configuration plus markers; the handle every step receives."""

    def __init__(self, config_path: Optional[str] = None, marker_dir: Optional[str] = None) -> None:
        self.config = ConfigStore(config_path or default_config_path())
        self.markers = MarkerStore(marker_dir or default_marker_dir())

    # Shorthands used all over the steps.
    def get(self, key: str) -> Optional[str]:
        return self.config.get(key)

    def get_or_default(self, key: str, default: str = "") -> str:
        return self.config.get_or_default(key, default)

    def set(self, key: str, value: str) -> None:
        self.config.set(key, value)

    def is_complete(self, name: str) -> bool:
        return self.markers.is_complete(name)
