from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Tuple

DEFAULT_PORT = 51820
DEFAULT_VPN_BASE = "10.10.0.0"
DEFAULT_VPN_MASK = 24


class KeyPair(NamedTuple):
    private_key: str
    public_key: str


@dataclass(frozen=True)
class Subnet:
    """An IPv4 network given as a numeric base address and a prefix length."""
    base: int
    prefix_length: int

    @property
    def capacity(self) -> int:
        return 1 << (32 - self.prefix_length)

    @property
    def max_usable_offset(self) -> int:
        return self.capacity - 1

    @property
    def last(self) -> int:
        return self.base + self.max_usable_offset

    def __str__(self) -> str:
        # local import, addressing depends on this module
        from wgsetup.addressing import to_dotted_quad

        return f"{to_dotted_quad(self.base)}/{self.prefix_length}"


@dataclass(frozen=True)
class VpnPlan:
    """Fully resolved parameters of one generation run."""
    vpn_subnet: Subnet
    server_address: int
    client_addresses: Tuple[int, ...]
    endpoint: str
    port: int
    remote_network: Subnet
    device: str

    @property
    def client_count(self) -> int:
        return len(self.client_addresses)


@dataclass
class Options:
    """Configuration from the command line."""
    nclients: Optional[int] = None
    endpoint: Optional[str] = None
    port: Optional[int] = DEFAULT_PORT
    network: Optional[str] = None
    netmask: Optional[int] = None
    device: Optional[str] = None
    vpn_base: Optional[str] = DEFAULT_VPN_BASE
    vpn_mask: Optional[int] = DEFAULT_VPN_MASK
    vpn_server: Optional[str] = None
    install: bool = False
    development: bool = False
    verbose: bool = False
    output_dir: str = "."


@dataclass
class HostNetwork:
    """What the environment prober found out about this machine."""
    device: Optional[str] = None
    local_address: Optional[int] = None
    local_subnet: Optional[Subnet] = None
    public_endpoint: Optional[str] = None


@dataclass
class ToolResult:
    """Outcome of an external tool call: either a value or a failure reason."""
    ok: bool
    value: Any = None
    reason: str = ""
    timed_out: bool = False

    @classmethod
    def success(cls, value: Any) -> "ToolResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str, *, timed_out: bool = False) -> "ToolResult":
        return cls(ok=False, reason=reason, timed_out=timed_out)


@dataclass
class RenderedArtifacts:
    server_files: Dict[str, str] = field(default_factory=dict)
    client_files: Dict[int, Dict[str, str]] = field(default_factory=dict)
