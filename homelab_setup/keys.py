"""Configuration keys understood by the setup steps, plus built-in defaults."""

from __future__ import annotations

from typing import Dict

# Account
HOMELAB_USER = "HOMELAB_USER"
HOMELAB_UID = "HOMELAB_UID"
HOMELAB_GID = "HOMELAB_GID"
HOMELAB_TIMEZONE = "HOMELAB_TIMEZONE"
SETUP_USER = "SETUP_USER"  # legacy name for HOMELAB_USER
PUID = "PUID"
PGID = "PGID"
TZ = "TZ"

# Layout
HOMELAB_BASE_DIR = "HOMELAB_BASE_DIR"
CONTAINERS_BASE = "CONTAINERS_BASE"
APPDATA_BASE = "APPDATA_BASE"
COMPOSE_TEMPLATE_DIR = "COMPOSE_TEMPLATE_DIR"

# Network storage
NFS_SERVER = "NFS_SERVER"
NFS_EXPORT = "NFS_EXPORT"
NFS_MOUNT_POINT = "NFS_MOUNT_POINT"
NFS_MOUNT_POINT_REAL = "NFS_MOUNT_POINT_REAL"
NFS_MOUNT_OPTIONS = "NFS_MOUNT_OPTIONS"

# VPN
WG_INTERFACE = "WG_INTERFACE"
WG_INTERFACE_IP = "WG_INTERFACE_IP"
WG_LISTEN_PORT = "WG_LISTEN_PORT"
WG_PUBLIC_KEY = "WG_PUBLIC_KEY"
WG_CONFIG_PATH = "WG_CONFIG_PATH"
WIREGUARD_CONFIG_DIR = "WIREGUARD_CONFIG_DIR"

# Containers
CONTAINER_RUNTIME = "CONTAINER_RUNTIME"
SELECTED_SERVICES = "SELECTED_SERVICES"
COMPOSE_COMMAND = "COMPOSE_COMMAND"
COMPOSE_COMMAND_RUNTIME = "COMPOSE_COMMAND_RUNTIME"

# Pipeline
SELECTED_STEPS = "SELECTED_STEPS"

# Misc
NETWORK_TEST_HOST = "NETWORK_TEST_HOST"
NETWORK_TEST_RETRIES = "NETWORK_TEST_RETRIES"
NETWORK_TEST_TIMEOUT = "NETWORK_TEST_TIMEOUT"
CONFIG_VERSION = "CONFIG_VERSION"


DEFAULTS: Dict[str, str] = {
    HOMELAB_BASE_DIR: "/var/lib/homelab",
    CONTAINERS_BASE: "/srv/containers",
    APPDATA_BASE: "/var/lib/containers/appdata",
    NFS_MOUNT_POINT: "/mnt/nas",
    WG_INTERFACE: "wg0",
    WG_LISTEN_PORT: "51820",
    WIREGUARD_CONFIG_DIR: "/etc/wireguard",
    CONTAINER_RUNTIME: "docker",
    NETWORK_TEST_HOST: "1.1.1.1",
    NETWORK_TEST_RETRIES: "5",
    NETWORK_TEST_TIMEOUT: "10",
    CONFIG_VERSION: "1",
}
