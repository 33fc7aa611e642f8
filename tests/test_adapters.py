import getpass

import pytest

from homelab_setup.lib.containers import ContainerRuntime
from homelab_setup.lib.net import default_gateway
from homelab_setup.lib.validation import validate_host, validate_ip


def test_service_state_queries(system, runner):
    runner.respond(["systemctl", "is-active", "--quiet", "a.service"], (3, ""))
    runner.respond(["systemctl", "is-enabled", "--quiet", "b.service"], (1, ""))

    assert system.services.is_active("a.service") is False
    assert system.services.is_active("b.service") is True
    assert system.services.is_enabled("a.service") is True
    assert system.services.is_enabled("b.service") is False


def test_unit_path_points_at_writable_dir(system, tmp_path):
    assert system.services.unit_path("x.service") == str(tmp_path / "etc-systemd" / "x.service")


def test_container_logs(system, runner):
    runner.respond(["docker", "logs"], (0, "ready\n"))

    out = system.containers.logs(ContainerRuntime.DOCKER, "media-jellyfin-1", tail=10)

    assert out == "ready\n"
    assert runner.calls[-1] == ["docker", "logs", "--tail", "10", "media-jellyfin-1"]


def test_rootless_logs_run_as_owner(system, runner):
    owner = "svc-" + getpass.getuser()

    system.containers.logs(ContainerRuntime.PODMAN, "web-nginx-1", as_user=owner)

    assert runner.calls[-1] == ["sudo", "-n", "-u", owner, "podman", "logs", "--tail", "50", "web-nginx-1"]


def test_rootless_logs_for_current_user_skip_sudo(system, runner):
    system.containers.logs(ContainerRuntime.PODMAN, "web-nginx-1", as_user=getpass.getuser())

    assert runner.calls[-1][0] == "podman"


def test_runtime_version(system, runner):
    runner.respond(["podman", "--version"], (0, "podman version 5.2.2\n"))
    runner.respond(["docker", "--version"], (127, ""))

    assert system.containers.version(ContainerRuntime.PODMAN) == "podman version 5.2.2"
    assert system.containers.version(ContainerRuntime.DOCKER) is None


def test_default_gateway(runner):
    runner.respond(["ip", "route"], (0, "default via 192.168.1.1 dev eth0 proto dhcp metric 100\n"))
    assert default_gateway(runner) == "192.168.1.1"

    runner.respond(["ip", "route"], (0, ""))
    assert default_gateway(runner) is None


def test_default_gateway_without_ip(runner):
    del runner.executables["ip"]
    assert default_gateway(runner) is None
    assert runner.calls == []


@pytest.mark.parametrize("value", ["192.168.1.10", "fd00::1", "nas", "nas.lan", "nas.example.com."])
def test_valid_hosts(value):
    validate_host(value)


@pytest.mark.parametrize("value", ["", "nas_1", "-nas", "bad host", "a..b"])
def test_invalid_hosts(value):
    with pytest.raises(ValueError):
        validate_host(value)


def test_validate_ip():
    validate_ip("10.0.0.1")
    with pytest.raises(ValueError):
        validate_ip("10.0.0.256")
