from __future__ import annotations

from argparse import SUPPRESS, ArgumentParser, Namespace, RawDescriptionHelpFormatter
from logging import getLogger
from typing import Callable, Optional, Sequence

from wgsetup.errors import ConfigurationError, UnknownOption
from wgsetup.structures import DEFAULT_PORT, DEFAULT_VPN_BASE, DEFAULT_VPN_MASK, Options
from wgsetup.validate import (
    validate_endpoint,
    validate_iface,
    validate_ip,
    validate_nclients,
    validate_port,
    validate_prefix,
)

LOGGER = getLogger(__name__)

DESCRIPTION = """\
Generates wireguard server and client install packages for windows and linux clients.
Since this obtains default parameters from the current network, it is safest and most
convenient to run it on the target server. Requires wg (from the wireguard-tools package).
"""

EPILOG = """\
examples:
  # Create server and 5 client packages using all defaults; assume we are installing on this machine.
  wgsetup -n 5

  # Create server and 5 client packages for a server elsewhere.
  wgsetup -n 5 --endpoint mynetwork.dyndns.org --port 53000 --network 192.168.1.0 --netmask 24

notes:
  One or more external clients connect to a simple "base" network behind a NAT firewall/router.
  Once connected, the clients can access any device on the base network LAN.
  The wireguard server is expected to be a linux server that runs as a LAN "client" on the base
  network. It must have the UDP port forwarded from the router's public IP to its LAN IP.
  IPv4 only.
"""


# A value flag given last, without its value, parses as "" and is then
# reported with that flag's own exit code.
VALUE = dict(nargs="?", const="")


class OptionParser(ArgumentParser):
    def error(self, message):
        raise ConfigurationError(message, exit_code=1)


def build_parser() -> ArgumentParser:
    parser = OptionParser(
        prog="wgsetup",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
        argument_default=SUPPRESS,
    )
    required = parser.add_argument_group("required parameter")
    required.add_argument("-n", "--nclients", **VALUE, help="number of client configurations to generate; no default")

    opt = parser.add_argument_group("optional parameters")
    opt.add_argument("--endpoint", "--server", dest="endpoint", **VALUE,
                     help="remote server endpoint, IP or DNS name (default: public IP of this machine)")
    opt.add_argument("--port", **VALUE, help=f"wireguard UDP port (default: {DEFAULT_PORT})")
    opt.add_argument("--network", **VALUE, help="remote network base address (default: LAN network of --device)")
    opt.add_argument("--netmask", **VALUE, help="remote network prefix length, e.g. 24 (default: LAN prefix of --device)")
    opt.add_argument("--device", **VALUE, help="LAN network device (default: default route device)")
    opt.add_argument("--vpnb", dest="vpn_base", **VALUE, help=f"IPv4 VPN network base address (default: {DEFAULT_VPN_BASE})")
    opt.add_argument("--vpnm", dest="vpn_mask", **VALUE, help=f"IPv4 VPN prefix length (default: {DEFAULT_VPN_MASK})")
    opt.add_argument("--vpns", dest="vpn_server", **VALUE, help="IPv4 VPN server address (default: VPN base address + 1)")
    opt.add_argument("-o", "--output-dir", dest="output_dir", help="directory for the generated packages (default: .)")
    opt.add_argument("--install", action="store_true", help="install the server configuration on this machine (uses sudo)")
    opt.add_argument("--what", action="store_true", help="list the sequence of tasks performed")
    opt.add_argument("-d", "--development", action="store_true", help="keep the loose generated files next to the packages")
    opt.add_argument("-v", "--verbose", action="store_true", help="log every resolved value")
    opt.add_argument("-h", "--help", action="store_true", help="show this help")
    return parser


def parse_options(argv: Sequence[str], parser: Optional[ArgumentParser] = None) -> Namespace:
    """Parses ``argv``; the first unrecognised flag raises ``UnknownOption`` unless help was asked for."""
    parser = parser or build_parser()
    args, rest = parser.parse_known_args(list(argv))
    if getattr(args, "help", False):
        return args
    for item in rest:
        if item.startswith("-"):
            raise UnknownOption(f"Unknown option {item}")
    if rest:
        LOGGER.debug("ignoring positional arguments: %s", " ".join(rest))
    return args


def _check(
    value: Optional[str],
    validator: Callable[[str], Optional[str]],
    missing: str,
    exit_code: int,
) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ConfigurationError(missing, exit_code=exit_code)
    err = validator(value)
    if err:
        raise ConfigurationError(f"{err} {missing.split('. ', 1)[-1]}", exit_code=exit_code)
    return value


def options_from_args(args: Namespace) -> Options:
    """Validates the parsed flags and turns them into an ``Options`` record."""
    raw = vars(args)

    nclients = _check(raw.get("nclients"), validate_nclients,
                      "Missing number of clients. Provide with the -n option.", 2)
    if nclients is None:
        raise ConfigurationError("Missing number of clients. Provide with the -n option.", exit_code=2)

    port = _check(raw.get("port", str(DEFAULT_PORT)), validate_port,
                  "Missing wireguard port. Provide with --port option.", 5)
    endpoint = _check(raw.get("endpoint"), validate_endpoint,
                      "Missing endpoint. Provide with --endpoint option.", 4)
    network = _check(raw.get("network"), validate_ip,
                     "Missing remote network address. Provide with --network option.", 5)
    netmask = _check(raw.get("netmask"), validate_prefix,
                     "Missing remote netmask. Provide with --netmask option.", 5)
    device = _check(raw.get("device"), validate_iface,
                    "Missing network device. Provide with --device option.", 5)
    vpn_base = _check(raw.get("vpn_base", DEFAULT_VPN_BASE), validate_ip,
                      "Missing VPN base network setting. Provide with --vpnb option.", 8)
    vpn_mask = _check(raw.get("vpn_mask", str(DEFAULT_VPN_MASK)), validate_prefix,
                      "Missing VPN network mask setting. Provide with --vpnm option.", 9)
    vpn_server = _check(raw.get("vpn_server"), validate_ip,
                        "Unable to set VPN Server address. Provide with --vpns option.", 10)

    return Options(
        nclients=int(nclients),
        endpoint=endpoint,
        port=int(port),
        network=network,
        netmask=None if netmask is None else int(netmask),
        device=device,
        vpn_base=vpn_base,
        vpn_mask=int(vpn_mask),
        vpn_server=vpn_server,
        install=raw.get("install", False),
        development=raw.get("development", False),
        verbose=raw.get("verbose", False),
        output_dir=raw.get("output_dir", "."),
    )
