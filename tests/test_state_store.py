import multiprocessing
import os
import stat
from concurrent.futures import ThreadPoolExecutor

import pytest

from homelab_setup.errors import ConfigIOError
from homelab_setup.state_store import ConfigStore, MarkerStore, StateStore


def test_missing_key_differs_from_empty_value(store):
    assert store.get("NFS_SERVER") is None
    store.set("NFS_SERVER", "")
    assert store.get("NFS_SERVER") == ""
    assert store.config.exists("NFS_SERVER")


def test_values_survive_a_new_process(store):
    store.set("HOMELAB_USER", "homelab")
    store.set("SELECTED_SERVICES", "media web")

    reopened = StateStore(store.config.path, store.markers.directory)
    assert reopened.get("HOMELAB_USER") == "homelab"
    assert reopened.get("SELECTED_SERVICES") == "media web"


def test_file_format_and_permissions(store):
    store.set("B_KEY", "two")
    store.set("A_KEY", "one=with=equals")

    text = open(store.config.path, encoding="utf-8").read()
    assert text.startswith("# Homelab Setup Configuration\n# Generated: ")
    body = [line for line in text.splitlines() if line and not line.startswith("#")]
    assert body == ["A_KEY=one=with=equals", "B_KEY=two"]
    assert stat.S_IMODE(os.stat(store.config.path).st_mode) == 0o600


def test_load_skips_comments_and_junk(tmp_path):
    path = tmp_path / "conf"
    path.write_text("# comment\n\nNOEQUALS\n KEY = value \nOTHER=\n", encoding="utf-8")
    cfg = ConfigStore(str(path))
    assert cfg.get("KEY") == "value"
    assert cfg.get("OTHER") == ""
    assert cfg.get("NOEQUALS") is None


def test_get_or_default_uses_builtin_defaults(store):
    assert store.get_or_default("CONTAINERS_BASE") == "/srv/containers"
    assert store.get_or_default("UNKNOWN_KEY", "fallback") == "fallback"
    store.set("CONTAINERS_BASE", "/data/stacks")
    assert store.get_or_default("CONTAINERS_BASE") == "/data/stacks"


@pytest.mark.parametrize("key", ["", "A=B", "WITH SPACE", "#COMMENT", "LINE\nBREAK"])
def test_invalid_keys_rejected(store, key):
    with pytest.raises(ValueError):
        store.set(key, "x")


def test_multiline_value_rejected(store):
    with pytest.raises(ValueError):
        store.set("KEY", "a\nb")
    assert not os.path.exists(store.config.path)


@pytest.mark.parametrize("value", [" x", "x ", "\tx"])
def test_padded_value_rejected(store, value):
    with pytest.raises(ValueError):
        store.set("KEY", value)
    assert store.get("KEY") is None


def test_value_survives_reload(store):
    store.set("NFS_MOUNT_OPTIONS", "defaults,nfsvers=4.2")
    reloaded = StateStore(store.config.path, str(store.markers.directory))
    assert reloaded.get("NFS_MOUNT_OPTIONS") == store.get("NFS_MOUNT_OPTIONS")


def test_interrupted_write_keeps_committed_value(store, monkeypatch):
    store.set("CONTAINER_RUNTIME", "docker")

    def crash(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", crash)
    with pytest.raises(ConfigIOError):
        store.set("CONTAINER_RUNTIME", "podman")
    monkeypatch.undo()

    # In-memory view and file both still hold the committed value.
    assert store.get("CONTAINER_RUNTIME") == "docker"
    assert StateStore(store.config.path, store.markers.directory).get("CONTAINER_RUNTIME") == "docker"
    leftovers = [n for n in os.listdir(os.path.dirname(store.config.path)) if n.endswith(".tmp")]
    assert leftovers == []


def test_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    cfg = ConfigStore(str(blocker / "conf"))
    with pytest.raises(ConfigIOError):
        cfg.set("KEY", "value")


def test_delete_and_get_all(store):
    store.set("A", "1")
    store.set("B", "2")
    store.config.delete("A")
    store.config.delete("MISSING")
    assert store.config.get_all() == {"B": "2"}


def test_mark_complete_is_idempotent(store):
    store.markers.mark_complete("preflight-complete")
    store.markers.mark_complete("preflight-complete")
    assert store.is_complete("preflight-complete")
    assert store.markers.list_markers() == ["preflight-complete"]


def test_race_safe_create_true_then_false(store):
    assert store.markers.mark_complete_if_not_exists("nfs-setup-complete") is True
    assert store.is_complete("nfs-setup-complete")
    assert store.markers.mark_complete_if_not_exists("nfs-setup-complete") is False
    assert store.is_complete("nfs-setup-complete")


def test_concurrent_creators_threads(tmp_path):
    markers = MarkerStore(str(tmp_path / "markers"))
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: markers.mark_complete_if_not_exists("deploy"), range(32)))
    assert results.count(True) == 1
    assert results.count(False) == 31


def _create_marker(directory):
    return MarkerStore(directory).mark_complete_if_not_exists("deploy")


def test_concurrent_creators_processes(tmp_path):
    directory = str(tmp_path / "markers")
    os.makedirs(directory)
    mp = multiprocessing.get_context("fork")
    with mp.Pool(8) as pool:
        results = pool.map(_create_marker, [directory] * 24)
    assert results.count(True) == 1
    assert results.count(False) == 23


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\\b"])
def test_invalid_marker_names(store, name):
    with pytest.raises(ValueError):
        store.markers.mark_complete(name)
    assert store.is_complete(name) is False


def test_clear_marker_missing_ok(store):
    store.markers.clear_marker("never-created")
    store.markers.mark_complete("x")
    store.markers.mark_complete("y")
    store.markers.clear_all_markers()
    assert store.markers.list_markers() == []


def test_canonical_marker_present(store):
    store.markers.mark_complete("user-setup-complete")
    assert store.markers.ensure_canonical_marker("user-setup-complete", "user-configured") is True


def test_legacy_marker_migrates(store):
    store.markers.mark_complete("nfs-skipped")

    assert store.markers.ensure_canonical_marker("nfs-setup-complete", "nfs-configured", "nfs-skipped") is True
    assert store.is_complete("nfs-setup-complete")
    assert not store.is_complete("nfs-skipped")

    # Canonical marker stands on its own afterwards.
    store.markers.clear_marker("nfs-skipped")
    assert store.markers.ensure_canonical_marker("nfs-setup-complete", "nfs-skipped") is True


def test_no_markers_means_not_complete(store):
    assert store.markers.ensure_canonical_marker("directory-setup-complete", "directories-created", "") is False
    assert store.markers.list_markers() == []


def test_legacy_equal_to_canonical_is_ignored(store):
    assert store.markers.ensure_canonical_marker("x-complete", "x-complete") is False
