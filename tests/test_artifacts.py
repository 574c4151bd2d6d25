from typing import List

import pytest

from wgsetup.addressing import build_plan, parse_subnet
from wgsetup.artifacts import (
    CLIENT_INSTALL_BATCH,
    CLIENT_INSTALL_FILE,
    SERVER_CONFIG_FILE,
    SERVER_INSTALL_FILE,
    build_client_conf,
    build_client_install_batch,
    build_client_install_script,
    build_server_conf,
    build_server_install_script,
    client_config_file,
    render_artifacts,
)
from wgsetup.structures import KeyPair

SERVER_KEYS = KeyPair(private_key="SERVER_PRIV", public_key="SERVER_PUB")
CLIENT_KEYS = [KeyPair(private_key=f"C{i}_PRIV", public_key=f"C{i}_PUB") for i in (1, 2, 3)]


@pytest.fixture
def plan():
    return build_plan(
        parse_subnet("10.10.0.0", 24),
        3,
        endpoint="vpn.example.org",
        port=53000,
        remote_network=parse_subnet("192.168.1.0", 24),
        device="eth0",
    )


def peer_values(conf: str, key: str) -> List[str]:
    """Values of ``key`` inside active [Peer] stanzas, in file order."""
    values = []
    in_peer = False
    for line in conf.splitlines():
        if line.startswith("["):
            in_peer = line == "[Peer]"
        elif in_peer and line.startswith(f"{key} = "):
            values.append(line.split(" = ", 1)[1])
    return values


def test_build_server_conf_interface(plan):
    conf = build_server_conf(plan, SERVER_KEYS, CLIENT_KEYS)
    assert conf.startswith("[Interface]\nPrivateKey = SERVER_PRIV\nAddress = 10.10.0.1/32\n")
    assert "ListenPort = 53000" in conf
    assert "SaveConfig = true" in conf
    assert "PostUp = iptables -A INPUT -p udp -m udp --dport 53000 -m state --state NEW -j ACCEPT" in conf
    assert "PostUp = iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE" in conf
    assert "PostDown = iptables -t nat -D POSTROUTING -o eth0 -j MASQUERADE" in conf
    assert "#Endpoint = vpn.example.org:53000" in conf


def test_build_server_conf_peers_in_allocation_order(plan):
    conf = build_server_conf(plan, SERVER_KEYS, CLIENT_KEYS)
    assert conf.count("\n[Peer]\n") == 3
    assert peer_values(conf, "PublicKey") == ["C1_PUB", "C2_PUB", "C3_PUB"]
    assert peer_values(conf, "AllowedIPs") == ["10.10.0.2/32", "10.10.0.3/32", "10.10.0.4/32"]
    assert "# Client # 3" in conf


def test_build_server_conf_requires_one_key_pair_per_client(plan):
    with pytest.raises(ValueError):
        build_server_conf(plan, SERVER_KEYS, CLIENT_KEYS[:2])


def test_build_client_conf(plan):
    conf = build_client_conf(plan, 2, CLIENT_KEYS[1], SERVER_KEYS.public_key)
    assert conf == (
        "[Interface]\n"
        "PrivateKey = C2_PRIV\n"
        "Address = 10.10.0.3/24\n"
        "\n"
        "[Peer]\n"
        "PublicKey = SERVER_PUB\n"
        "AllowedIPs = 10.10.0.1/32, 192.168.1.0/24\n"
        "Endpoint = vpn.example.org:53000\n"
    )


def test_install_scripts():
    server = build_server_install_script()
    assert server.startswith("#!/bin/bash\n")
    assert "CONFIG=$(ls wg0_server.conf | tail -1)" in server
    assert "systemctl enable wg-quick@wg0.service" in server
    client = build_client_install_script()
    assert "CONFIG=$(ls wg0_client*.conf | tail -1)" in client
    batch = build_client_install_batch()
    assert batch.startswith("@ECHO OFF\r\n")
    assert "copy wg0_client*.conf %CONFIG_DIR%" in batch


def test_render_artifacts_layout(plan):
    rendered = render_artifacts(plan, SERVER_KEYS, CLIENT_KEYS)
    assert set(rendered.server_files) == {SERVER_CONFIG_FILE, SERVER_INSTALL_FILE}
    assert sorted(rendered.client_files) == [1, 2, 3]
    for index, files in rendered.client_files.items():
        assert set(files) == {CLIENT_INSTALL_FILE, CLIENT_INSTALL_BATCH, client_config_file(index)}
        conf = files[client_config_file(index)]
        assert peer_values(conf, "PublicKey") == ["SERVER_PUB"]
        assert peer_values(conf, "Endpoint") == ["vpn.example.org:53000"]


def test_render_artifacts_is_deterministic(plan):
    first = render_artifacts(plan, SERVER_KEYS, CLIENT_KEYS)
    second = render_artifacts(plan, SERVER_KEYS, CLIENT_KEYS)
    assert first == second
