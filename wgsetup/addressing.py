"""
IPv4 address arithmetic and VPN address allocation.

Addresses are plain ints in the range 0..2**32-1. Text is only accepted at the
boundary (``to_number``) where each octet is range checked.
"""

from __future__ import annotations

import re
from logging import getLogger
from typing import List, Optional, Sequence, Union

from wgsetup.errors import (
    InvalidPrefixLength,
    MalformedAddress,
    ServerAddressOutOfSubnet,
    SubnetExhausted,
    TooManyClients,
)
from wgsetup.structures import Subnet, VpnPlan

LOGGER = getLogger(__name__)

MAX_ADDRESS = 0xFFFFFFFF
OCTET_RE = re.compile(r"[0-9]{1,3}")
PREFIX_RE = re.compile(r"[0-9]+")


def to_number(dotted_quad: str) -> int:
    """Converts ``a.b.c.d`` to its 32-bit integer value."""
    text = str(dotted_quad).strip().strip('"')
    octets = text.split(".")
    if len(octets) != 4:
        raise MalformedAddress(f"{dotted_quad!r} is not a dotted-quad IPv4 address.")
    number = 0
    for octet in octets:
        if not OCTET_RE.fullmatch(octet):
            raise MalformedAddress(f"{dotted_quad!r} has a non-numeric octet {octet!r}.")
        value = int(octet)
        if value > 255:
            raise MalformedAddress(f"{dotted_quad!r} has an octet out of range: {value}.")
        number = (number << 8) | value
    return number


def to_dotted_quad(number: int) -> str:
    if not 0 <= number <= MAX_ADDRESS:
        raise MalformedAddress(f"{number} is not a 32-bit address.")
    return ".".join(str((number >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def subnet_mask(prefix_length: int) -> int:
    """Returns the 32-bit mask with ``prefix_length`` leading one bits."""
    if isinstance(prefix_length, bool) or not isinstance(prefix_length, int) or not 0 <= prefix_length <= 32:
        raise InvalidPrefixLength(f"Prefix length must be between 0 and 32, got {prefix_length!r}.")
    return (MAX_ADDRESS << (32 - prefix_length)) & MAX_ADDRESS


def parse_prefix_length(value: Union[int, str]) -> int:
    if isinstance(value, str):
        text = value.strip().lstrip("/")
        if not PREFIX_RE.fullmatch(text):
            raise InvalidPrefixLength(f"Prefix length must be numeric, got {value!r}.")
        value = int(text)
    subnet_mask(value)
    return value


def parse_subnet(base: Union[int, str], prefix_length: Union[int, str]) -> Subnet:
    number = to_number(base) if isinstance(base, str) else base
    to_dotted_quad(number)
    return Subnet(base=number, prefix_length=parse_prefix_length(prefix_length))


def parse_cidr(cidr: str) -> Subnet:
    """Parses ``a.b.c.d/p``."""
    if "/" not in cidr:
        raise MalformedAddress(f"{cidr!r} is missing a /prefix.")
    base, prefix = cidr.split("/", 1)
    return parse_subnet(base, prefix)


def has_host_bits(subnet: Subnet) -> bool:
    return subnet.base & ~subnet_mask(subnet.prefix_length) & MAX_ADDRESS != 0


def validate_membership(address: int, subnet: Subnet) -> bool:
    return subnet.base <= address <= subnet.last


def max_clients(subnet: Subnet) -> int:
    """
    Upper bound on the number of clients a VPN subnet can hold.

    Computed as mask(32) - mask(prefix) - 1, which equals capacity - 2:
    254 for a /24, 0 for a /31 and -1 for a /32.
    """
    return subnet_mask(32) - subnet_mask(subnet.prefix_length) - 1


def check_capacity(subnet: Subnet, count: int) -> None:
    if count > max_clients(subnet):
        raise TooManyClients(f"Too many clients for VPN subnet: {subnet}.")


def allocate_server_address(subnet: Subnet, override: Optional[int] = None) -> int:
    """
    Picks the server's VPN address.

    An explicit override is used as is when it lies inside the subnet, else
    the address right after the subnet base is taken.
    """
    address = subnet.base + 1 if override is None else override
    if address > MAX_ADDRESS or address == subnet.base or not validate_membership(address, subnet):
        shown = to_dotted_quad(address) if address <= MAX_ADDRESS else str(address)
        raise ServerAddressOutOfSubnet(f"{shown} not in subnet {subnet}. Fix server or network address.")
    return address


def allocate_client_addresses(subnet: Subnet, server_address: int, count: int) -> List[int]:
    """
    Hands out ``count`` consecutive addresses after the subnet base, skipping
    the server's address.

    The cursor only moves forward, so the result is strictly increasing.
    """
    limit = min(subnet.last, MAX_ADDRESS)
    addresses: List[int] = []
    cursor = subnet.base
    while len(addresses) < count:
        cursor += 1
        if cursor == server_address:
            cursor += 1
        if cursor > limit:
            raise SubnetExhausted(
                f"VPN subnet {subnet} exhausted after {len(addresses)} of {count} clients."
            )
        addresses.append(cursor)
    return addresses


def build_plan(
    vpn_subnet: Subnet,
    client_count: int,
    *,
    endpoint: str,
    port: int,
    remote_network: Subnet,
    device: str,
    server_override: Optional[int] = None,
) -> VpnPlan:
    if has_host_bits(vpn_subnet):
        LOGGER.warning("VPN base %s has host bits set for /%d", to_dotted_quad(vpn_subnet.base), vpn_subnet.prefix_length)
    check_capacity(vpn_subnet, client_count)
    server_address = allocate_server_address(vpn_subnet, server_override)
    LOGGER.debug("VPN_SERVER=%s", to_dotted_quad(server_address))
    clients = allocate_client_addresses(vpn_subnet, server_address, client_count)
    for address in clients:
        LOGGER.debug("VPN_CLIENT_ADDRESS=%s", to_dotted_quad(address))
    return VpnPlan(
        vpn_subnet=vpn_subnet,
        server_address=server_address,
        client_addresses=tuple(clients),
        endpoint=endpoint,
        port=port,
        remote_network=remote_network,
        device=device,
    )


def format_addresses(addresses: Sequence[int]) -> List[str]:
    return [to_dotted_quad(a) for a in addresses]
