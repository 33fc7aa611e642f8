from __future__ import annotations

import ipaddress
import logging
import os
from typing import Tuple

from .. import keys
from ..context import SetupContext
from ..errors import PrerequisiteError, SetupError
from ..lib.validation import validate_cidr, validate_port

logger = logging.getLogger(__name__)


def render_interface_config(*, private_key: str, address: str, listen_port: int) -> str:
    return "\n".join(
        [
            "# Generated by homelab-setup",
            "[Interface]",
            f"Address = {address}",
            f"ListenPort = {listen_port}",
            f"PrivateKey = {private_key}",
            "",
            "# Add [Peer] sections below.",
            "",
        ]
    )


def next_address(cidr: str) -> str:
    """The address after the interface's own, e.g. for a first peer."""

    iface = ipaddress.ip_interface(cidr)
    nxt = iface.ip + 1
    if nxt not in iface.network or nxt == iface.network.broadcast_address:
        raise ValueError(f"No free address after {iface.ip} in {iface.network}")
    return str(nxt)


class WireGuardStep:
    step_id = "wireguard"
    title = "WireGuard VPN (optional)"
    marker = "wireguard-setup-complete"
    legacy_markers = ("wireguard-configured", "wireguard-skipped")
    prerequisites = ("preflight-complete",)
    optional = True

    def run(self, ctx: SetupContext) -> None:
        if not ctx.prompter.yes_no("Configure a WireGuard VPN interface?", default=False):
            logger.info("WireGuard skipped")
            return

        store = ctx.store
        system = ctx.system
        if not system.packages.is_installed("wireguard-tools"):
            raise PrerequisiteError(
                "wireguard-tools not installed (" + system.packages.install_hint(["wireguard-tools"]) + ")"
            )

        iface = ctx.prompter.text("Interface name", default=store.get_or_default(keys.WG_INTERFACE))
        address = ctx.prompter.text(
            "Interface address (CIDR)",
            default=store.get(keys.WG_INTERFACE_IP) or "10.253.0.1/24",
            validator=validate_cidr,
        )
        port_text = ctx.prompter.text(
            "Listen port",
            default=store.get_or_default(keys.WG_LISTEN_PORT),
            validator=validate_port,
        )
        try:
            validate_cidr(address)
            port = validate_port(port_text)
        except ValueError as e:
            raise SetupError(str(e)) from e

        config_dir = store.get_or_default(keys.WIREGUARD_CONFIG_DIR)
        config_path = os.path.join(config_dir, f"{iface}.conf")

        if os.path.exists(config_path) and not ctx.prompter.yes_no(
            f"{config_path} exists. Overwrite it?", default=False
        ):
            logger.info("Keeping existing %s", config_path)
        else:
            private_key, public_key = self._generate_keys(ctx)
            system.files.ensure_directory(config_dir, mode=0o700)
            system.files.write_file(
                config_path,
                render_interface_config(private_key=private_key, address=address, listen_port=port),
                mode=0o600,
            )
            store.set(keys.WG_PUBLIC_KEY, public_key)

        service = f"wg-quick@{iface}.service"
        system.services.enable(service, now=True)

        store.set(keys.WG_INTERFACE, iface)
        store.set(keys.WG_INTERFACE_IP, address)
        store.set(keys.WG_LISTEN_PORT, str(port))
        store.set(keys.WG_CONFIG_PATH, config_path)
        logger.info("WireGuard %s configured (%s, port %s)", iface, address, port)
        try:
            logger.info("Suggested address for the first peer: %s", next_address(address))
        except ValueError:
            pass

    def _generate_keys(self, ctx: SetupContext) -> Tuple[str, str]:
        private_key = ctx.runner.run(["wg", "genkey"]).stdout.strip()
        public_key = ctx.runner.run(["wg", "pubkey"], input_text=private_key + "\n").stdout.strip()
        if not private_key or not public_key:
            raise SetupError("wg did not produce a key pair")
        return private_key, public_key
