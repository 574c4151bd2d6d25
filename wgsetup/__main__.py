#!/usr/bin/env python3
"""
WireGuard server and client package generator.

Derives the VPN addressing for one server and N clients, renders the server
config (with iptables forwarding and NAT hooks), one config per client and
the installer scripts, then packs them into wg_server.tgz and
wg_client<N>.zip. With --install the server package is installed on this
machine instead of archived.

Run it as an unprivileged user to generate packages. Defaults for the LAN and
public endpoint are read from the machine it runs on.

Usage:
  python3 -m wgsetup -n 5
"""

from __future__ import annotations

import sys
from logging import getLogger
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from wgsetup.addressing import build_plan, check_capacity, format_addresses, parse_subnet, to_dotted_quad, to_number
from wgsetup.artifacts import endpoint_of, render_artifacts
from wgsetup.errors import ConfigurationError, MissingToolsError, SetupError, UnknownOption
from wgsetup.logs import configure_logging
from wgsetup.options import build_parser, options_from_args, parse_options
from wgsetup.packaging import package_all
from wgsetup.structures import HostNetwork, KeyPair, Options, Subnet, VpnPlan
from wgsetup.system import firewall_available, missing_tools, probe_host, wg_genkeypair

LOGGER = getLogger(__name__)

TASKS = (
    "Parse options",
    "Check for prerequisites",
    "Check for number of clients",
    "Check that the clients fit into the VPN subnet",
    "Detect the network device",
    "Detect the local network/netmask of the device",
    "Detect the endpoint address",
    "Resolve the remote network and netmask",
    "Allocate the VPN server address and check it is within the VPN subnet",
    "Allocate the VPN client addresses",
    "Create the server key pair",
    "Create a key pair per client",
    "Render server config, client configs and install scripts",
    "Create one zip package per client",
    "Install the server package or create the server tarball",
    "Clean up the loose files",
)


def resolve_remote_network(options: Options, host: HostNetwork) -> Subnet:
    """Uses --network/--netmask, falling back to the LAN the device sits in."""
    if options.network is not None:
        network = options.network
    elif host.local_subnet is not None:
        network = to_dotted_quad(host.local_subnet.base)
    else:
        raise ConfigurationError(
            "Missing remote network address; unable to identify local network. Provide with --network option.",
            exit_code=5,
        )
    LOGGER.debug("REMOTE_NETWORK=%s", network)

    if options.netmask is not None:
        netmask = options.netmask
    elif host.local_subnet is not None:
        netmask = host.local_subnet.prefix_length
    else:
        raise ConfigurationError(
            "Missing remote netmask; unable to identify local netmask. Provide with --netmask option.",
            exit_code=5,
        )
    LOGGER.debug("REMOTE_NETMASK=%s", netmask)

    return parse_subnet(network, netmask)


def plan_from_options(options: Options, host: HostNetwork, vpn_subnet: Subnet) -> VpnPlan:
    server_override = None if options.vpn_server is None else to_number(options.vpn_server)
    return build_plan(
        vpn_subnet,
        options.nclients,
        endpoint=host.public_endpoint,
        port=options.port,
        remote_network=resolve_remote_network(options, host),
        device=host.device,
        server_override=server_override,
    )


def run_setup(options: Options, *, keygen: Optional[Callable[[], KeyPair]] = None) -> List[Path]:
    """Runs the whole pipeline for validated ``options``; returns the packages written."""
    keygen = keygen or wg_genkeypair
    missing = missing_tools()
    if missing:
        raise MissingToolsError(f"Please install these utilities: {' '.join(missing)}")

    LOGGER.debug("NCLIENTS=%s", options.nclients)
    vpn_subnet = parse_subnet(options.vpn_base, options.vpn_mask)
    check_capacity(vpn_subnet, options.nclients)

    host = probe_host(options)
    LOGGER.debug("WG_PORT=%s", options.port)
    plan = plan_from_options(options, host, vpn_subnet)

    if not firewall_available():
        LOGGER.warning("No iptables found on this system; the server's PostUp firewall rules need it.")

    server_keys = keygen()
    client_keys = [keygen() for _ in plan.client_addresses]

    rendered = render_artifacts(plan, server_keys, client_keys)
    archives = package_all(
        rendered,
        Path(options.output_dir),
        install=options.install,
        development=options.development,
    )

    summary = [
        f"Endpoint:     {endpoint_of(plan)} (UDP)",
        f"Device:       {plan.device}",
        f"VPN subnet:   {plan.vpn_subnet}",
        f"Server IP:    {to_dotted_quad(plan.server_address)}",
        f"Client IPs:   {', '.join(format_addresses(plan.client_addresses))}",
        f"Remote LAN:   {plan.remote_network}",
        "Installed the server configuration." if options.install else "",
        *(f"Package:      {a}" for a in archives),
    ]
    print("\n".join(line for line in summary if line))
    return archives


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    try:
        args = parse_options(argv, parser)
        if getattr(args, "help", False):
            parser.print_help()
            return 0
        if getattr(args, "what", False):
            print("Sequence of tasks performed by wgsetup:")
            for number, task in enumerate(TASKS, start=1):
                print(f"## {number}. {task}")
            return 0
        configure_logging(verbose=getattr(args, "verbose", False))
        run_setup(options_from_args(args))
        return 0
    except UnknownOption as e:
        print(e)
        return e.exit_code
    except SetupError as e:
        print(f"\n    ERROR: {e}\n", file=sys.stderr)
        if e.advise:
            print("       Run this command with -h option.\n", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
