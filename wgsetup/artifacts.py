"""
Renders the WireGuard configs and installer scripts for a ``VpnPlan``.

Everything here is a pure function of its arguments; nothing touches disk.
"""

from __future__ import annotations

from typing import Dict, Sequence

from wgsetup.addressing import to_dotted_quad
from wgsetup.structures import KeyPair, RenderedArtifacts, VpnPlan

SERVER_CONFIG_FILE = "wg0_server.conf"
SERVER_INSTALL_FILE = "install_wg_server.sh"
CLIENT_INSTALL_FILE = "install_wg_client.sh"
CLIENT_INSTALL_BATCH = "install_wg_client.bat"
SERVER_ARCHIVE = "wg_server.tgz"


def client_config_file(index: int) -> str:
    return f"wg0_client{index}.conf"


def client_archive(index: int) -> str:
    return f"wg_client{index}.zip"


def endpoint_of(plan: VpnPlan) -> str:
    return f"{plan.endpoint}:{plan.port}"


def client_allowed_ips(plan: VpnPlan) -> str:
    return f"{to_dotted_quad(plan.server_address)}/32, {plan.remote_network}"


def build_server_conf(plan: VpnPlan, server_keys: KeyPair, client_keys: Sequence[KeyPair]) -> str:
    if len(client_keys) != plan.client_count:
        raise ValueError(f"Expected {plan.client_count} client key pairs, got {len(client_keys)}.")
    server_ip = to_dotted_quad(plan.server_address)
    lines = [
        "[Interface]",
        f"PrivateKey = {server_keys.private_key}",
        f"Address = {server_ip}/32",
        "SaveConfig = true",
        f"ListenPort = {plan.port}",
        "",
        "# Enable IP forwarding",
        "PostUp = sysctl -w net.ipv4.ip_forward=1",
        "PostDown = sysctl -w net.ipv4.ip_forward=0",
        "",
        "# Allow forwarded packets to/from VPN device",
        "PostUp = iptables -A FORWARD -i %i -j ACCEPT",
        "PostUp = iptables -A FORWARD -o %i -j ACCEPT",
        "PostDown = iptables -D FORWARD -i %i -j ACCEPT",
        "PostDown = iptables -D FORWARD -o %i -j ACCEPT",
        "",
        "# Configure firewall for wireguard",
        f"PostUp = iptables -A INPUT -p udp -m udp --dport {plan.port} -m state --state NEW -j ACCEPT",
        f"PostDown = iptables -D INPUT -p udp -m udp --dport {plan.port} -m state --state NEW -j ACCEPT",
        "",
        "# Allow through NAT router",
        f"PostUp = iptables -t nat -A POSTROUTING -o {plan.device} -j MASQUERADE",
        f"PostDown = iptables -t nat -D POSTROUTING -o {plan.device} -j MASQUERADE",
        "",
        "# For clients",
        "#[Peer]",
        f"#PublicKey = {server_keys.public_key}",
        f"#AllowedIPs = {client_allowed_ips(plan)}",
        f"#Endpoint = {endpoint_of(plan)}",
    ]
    for index, (address, keys) in enumerate(zip(plan.client_addresses, client_keys), start=1):
        lines += [
            "",
            "[Peer]",
            f"# Client # {index}",
            f"PublicKey = {keys.public_key}",
            f"AllowedIPs = {to_dotted_quad(address)}/32",
        ]
    return "\n".join(lines) + "\n"


def build_client_conf(plan: VpnPlan, index: int, client_keys: KeyPair, server_public_key: str) -> str:
    """Config for client ``index`` (1-based, in allocation order)."""
    address = plan.client_addresses[index - 1]
    return "\n".join(
        [
            "[Interface]",
            f"PrivateKey = {client_keys.private_key}",
            f"Address = {to_dotted_quad(address)}/{plan.vpn_subnet.prefix_length}",
            "",
            "[Peer]",
            f"PublicKey = {server_public_key}",
            f"AllowedIPs = {client_allowed_ips(plan)}",
            f"Endpoint = {endpoint_of(plan)}",
            "",
        ]
    )


def _linux_install_script(config_glob: str) -> str:
    return "\n".join(
        [
            "#!/bin/bash",
            "# Run as root",
            "",
            "# Install wireguard",
            "apt update",
            "apt install wireguard -y",
            "",
            "# Move config file",
            f"CONFIG=$(ls {config_glob} | tail -1)",
            "mv $CONFIG /etc/wireguard/wg0.conf",
            "chmod go= /etc/wireguard/wg0.conf",
            "",
            "# Enable wireguard on startup",
            "systemctl enable wg-quick@wg0.service",
            "",
            "# Start wireguard service",
            "systemctl start wg-quick@wg0.service",
            "",
        ]
    )


def build_server_install_script() -> str:
    return _linux_install_script(SERVER_CONFIG_FILE)


def build_client_install_script() -> str:
    return _linux_install_script("wg0_client*.conf")


def build_client_install_batch() -> str:
    lines = [
        "@ECHO OFF",
        "REM wireguard client install script",
        "REM Run as administrator",
        'SET CONFIG_DIR="C:\\Program Files\\WireGuard\\Data\\Configurations"',
        "mkdir %CONFIG_DIR%",
        "copy wg0_client*.conf %CONFIG_DIR%",
        "curl -s -o wg-installer.exe https://download.wireguard.com/windows-client/wireguard-installer.exe",
        "wg-installer",
        "",
    ]
    return "\r\n".join(lines)


def render_artifacts(plan: VpnPlan, server_keys: KeyPair, client_keys: Sequence[KeyPair]) -> RenderedArtifacts:
    rendered = RenderedArtifacts()
    rendered.server_files = {
        SERVER_CONFIG_FILE: build_server_conf(plan, server_keys, client_keys),
        SERVER_INSTALL_FILE: build_server_install_script(),
    }
    linux_script = build_client_install_script()
    windows_script = build_client_install_batch()
    for index, keys in enumerate(client_keys, start=1):
        files: Dict[str, str] = {
            CLIENT_INSTALL_FILE: linux_script,
            CLIENT_INSTALL_BATCH: windows_script,
            client_config_file(index): build_client_conf(plan, index, keys, server_keys.public_key),
        }
        rendered.client_files[index] = files
    return rendered
