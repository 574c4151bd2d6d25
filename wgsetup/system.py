"""
Calls into the host: the ``wg`` key tool, ``ip`` for network introspection and
an HTTP service for the public address.

Probes return a ``ToolResult`` so callers decide whether a failure is fatal.
"""

from __future__ import annotations

import json
import os
import shlex
import shutil
import subprocess
from logging import getLogger
from typing import Iterable, List, Optional, Sequence

import requests

from wgsetup.addressing import parse_cidr, to_dotted_quad, to_number
from wgsetup.errors import (
    CmdError,
    EnvironmentProbeError,
    EnvironmentProbeTimeout,
    KeyGenerationError,
    MalformedAddress,
)
from wgsetup.structures import HostNetwork, KeyPair, Options, Subnet, ToolResult

LOGGER = getLogger(__name__)

PUBLIC_IP_URL = os.getenv("WGSETUP_PUBLIC_IP_URL", "https://icanhazip.com")
PROBE_TIMEOUT = float(os.getenv("WGSETUP_PROBE_TIMEOUT", 10))
HTTP_TIMEOUT = float(os.getenv("WGSETUP_HTTP_TIMEOUT", 10))

REQUIRED_TOOLS = ("wg",)


def run_cmd(
    args: Sequence[str],
    *,
    check: bool = True,
    input: Optional[str] = None,
    timeout: Optional[float] = PROBE_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Runs a subprocess command with sane defaults."""
    try:
        return subprocess.run(
            list(args),
            check=check,
            input=input,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        stdout = e.stdout or ""
        stderr = e.stderr or ""
        raise CmdError(
            f"Command failed: {shlex.join(args)}\n--- stdout ---\n{stdout}\n--- stderr ---\n{stderr}"
        ) from e


def run_tool(args: Sequence[str], *, input: Optional[str] = None, timeout: Optional[float] = PROBE_TIMEOUT) -> ToolResult:
    """Runs a command, returning its stripped stdout or the reason it failed."""
    try:
        cp = run_cmd(args, input=input, timeout=timeout)
    except subprocess.TimeoutExpired:
        return ToolResult.failure(f"{shlex.join(args)} timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return ToolResult.failure(f"{args[0]} is not installed")
    except CmdError as e:
        return ToolResult.failure(str(e))
    return ToolResult.success((cp.stdout or "").strip())


def missing_tools(tools: Iterable[str] = REQUIRED_TOOLS) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def firewall_available() -> bool:
    return shutil.which("iptables") is not None


def detect_default_device() -> ToolResult:
    """Detects the default route interface."""
    result = run_tool(["ip", "route", "show", "default"])
    if not result.ok:
        return result
    for line in result.value.splitlines():
        parts = line.split()
        if "dev" in parts and parts.index("dev") + 1 < len(parts):
            return ToolResult.success(parts[parts.index("dev") + 1])
    return ToolResult.failure("no default route found")


def _load_json(result: ToolResult) -> ToolResult:
    if not result.ok:
        return result
    try:
        return ToolResult.success(json.loads(result.value or "[]"))
    except ValueError as e:
        return ToolResult.failure(f"unreadable ip output: {e}")


def find_local_address(interfaces: list, device: str) -> Optional[int]:
    """Picks the IPv4 address labelled with ``device`` from ``ip -j addr`` output."""
    for iface in interfaces:
        if iface.get("ifname") != device:
            continue
        for info in iface.get("addr_info", []):
            if info.get("family") == "inet" and info.get("label") == device and info.get("local"):
                return to_number(info["local"])
    return None


def find_local_subnet(routes: list, device: str, local_address: int) -> Optional[Subnet]:
    """Picks the on-link network of ``device`` from ``ip -j route`` output."""
    source = to_dotted_quad(local_address)
    for route in routes:
        dst = route.get("dst")
        if route.get("dev") != device or dst in (None, "default") or route.get("prefsrc") != source:
            continue
        return parse_cidr(dst if "/" in dst else f"{dst}/32")
    return None


def detect_local_network(device: str) -> ToolResult:
    """Returns ``(local_address, local_subnet)`` for ``device``."""
    addrs = _load_json(run_tool(["ip", "-j", "addr"]))
    if not addrs.ok:
        return addrs
    try:
        local_address = find_local_address(addrs.value, device)
    except MalformedAddress as e:
        return ToolResult.failure(str(e))
    if local_address is None:
        return ToolResult.failure(f"no IPv4 address on {device}")

    routes = _load_json(run_tool(["ip", "-j", "route"]))
    if not routes.ok:
        return routes
    try:
        subnet = find_local_subnet(routes.value, device, local_address)
    except MalformedAddress as e:
        return ToolResult.failure(str(e))
    if subnet is None:
        return ToolResult.failure(f"no local route for {device}")
    return ToolResult.success((local_address, subnet))


def fetch_public_ip(url: str = PUBLIC_IP_URL, timeout: float = HTTP_TIMEOUT) -> ToolResult:
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.Timeout:
        return ToolResult.failure(f"{url} did not answer within {timeout}s", timed_out=True)
    except requests.RequestException as e:
        return ToolResult.failure(f"{url} failed: {e}")
    if resp.status_code != 200:
        return ToolResult.failure(f"{url} returned HTTP {resp.status_code}")
    ip = resp.text.strip()
    try:
        to_number(ip)
    except MalformedAddress:
        return ToolResult.failure(f"{url} returned {ip!r}, not an IPv4 address")
    return ToolResult.success(ip)


def probe_host(options: Options) -> HostNetwork:
    """
    Fills in what the command line left open by looking at this machine.

    A missing device or public address is fatal; a missing local network only
    matters later, if --network or --netmask were not given either.
    """
    host = HostNetwork(device=options.device, public_endpoint=options.endpoint)

    if host.device is None:
        result = detect_default_device()
        if not result.ok:
            LOGGER.debug("default device probe failed: %s", result.reason)
            error = EnvironmentProbeTimeout if result.timed_out else EnvironmentProbeError
            raise error("Unable to obtain public interface. Provide with --device option.", exit_code=5)
        host.device = result.value
    LOGGER.debug("DEVICE=%s", host.device)

    if options.network is None or options.netmask is None:
        result = detect_local_network(host.device)
        if result.ok:
            host.local_address, host.local_subnet = result.value
            LOGGER.debug("MY_NETWORKMASK=%s", host.local_subnet)
        else:
            LOGGER.debug("local network probe failed: %s", result.reason)
            if result.timed_out:
                raise EnvironmentProbeTimeout(
                    f"Probing the local network timed out: {result.reason}. Provide with --network and --netmask options.",
                    exit_code=5,
                )

    if host.public_endpoint is None:
        result = fetch_public_ip()
        if not result.ok:
            LOGGER.debug("public IP fetch failed: %s", result.reason)
            error = EnvironmentProbeTimeout if result.timed_out else EnvironmentProbeError
            raise error("Unable to obtain public IP. Provide with --endpoint option.", exit_code=4)
        host.public_endpoint = result.value
    LOGGER.debug("ENDPOINT=%s", host.public_endpoint)

    return host


def wg_genkeypair() -> KeyPair:
    """Generates (private_key, public_key) using wg."""
    priv = run_tool(["wg", "genkey"])
    if not priv.ok or not priv.value:
        raise KeyGenerationError(f"wg genkey failed: {priv.reason or 'empty key'}")
    pub = run_tool(["wg", "pubkey"], input=priv.value + "\n")
    if not pub.ok or not pub.value:
        raise KeyGenerationError(f"wg pubkey failed: {pub.reason or 'empty key'}")
    return KeyPair(private_key=priv.value, public_key=pub.value)
