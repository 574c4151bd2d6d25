from __future__ import annotations

import re
from typing import Optional

IP_RE = re.compile(r"^[0-9]{1,3}(\.[0-9]{1,3}){3}$")
PORT_RE = re.compile(r"^[0-9]{1,5}$")
PREFIX_RE = re.compile(r"^[0-9]{1,2}$")
COUNT_RE = re.compile(r"^[0-9]+$")
HOST_RE = re.compile(r"^(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$")


def validate_iface(v: str) -> Optional[str]:
    if not v or not re.match(r"^[a-zA-Z0-9_.-]{1,15}$", v):
        return "Interface name looks invalid (try eth0)."
    return None


def validate_port(v: str) -> Optional[str]:
    if not PORT_RE.match(v):
        return "Port must be numeric."
    n = int(v)
    if not (1 <= n <= 65535):
        return "Port must be between 1 and 65535."
    return None


def validate_prefix(v: str) -> Optional[str]:
    if not PREFIX_RE.match(v):
        return "Netmask must use CIDR notation, e.g. 24 instead of 255.255.255.0."
    if int(v) > 32:
        return "Netmask must be between 0 and 32."
    return None


def validate_ip(v: str) -> Optional[str]:
    if not IP_RE.match(v):
        return "IP must look like 10.10.0.1"
    parts = [int(p) for p in v.split(".")]
    if any(p < 0 or p > 255 for p in parts):
        return "IP octets must be 0-255."
    return None


def validate_endpoint(v: str) -> Optional[str]:
    if IP_RE.match(v):
        return validate_ip(v)
    if not HOST_RE.match(v):
        return "Endpoint must be an IPv4 address or a DNS name."
    return None


def validate_nclients(v: str) -> Optional[str]:
    if not COUNT_RE.match(v):
        return "Number of clients must be a positive integer."
    if int(v) < 1:
        return "Number of clients must be at least 1."
    return None
