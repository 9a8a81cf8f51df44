"""
CIDR validation and IPv4 subnet arithmetic.

Every place that needs mask/network/broadcast math goes through this module.
"""
import ipaddress
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ispnet.errors import InvalidCIDR

CIDR_EXAMPLE = "192.168.1.0/24"

_IPV4_CIDR_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})/(\d{1,2})$")
_IPV6_CIDR_RE = re.compile(r"^[0-9a-fA-F:.]+/\d{1,3}$")

MAX_IPV4 = 0xFFFFFFFF


@dataclass
class CIDRValidation:
    is_valid: bool
    normalized: Optional[str] = None
    error: Optional[str] = None
    corrected: Optional[str] = None
    ip_version: int = 4

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "normalizedCIDR": self.normalized,
            "error": self.error,
            "correctedCIDR": self.corrected,
            "ipVersion": self.ip_version,
        }


def ip_to_int(ip: str) -> int:
    return int(ipaddress.IPv4Address(ip))


def int_to_ip(value: int) -> str:
    return str(ipaddress.IPv4Address(value))


def prefix_mask(prefix: int) -> int:
    return (MAX_IPV4 << (32 - prefix)) & MAX_IPV4


def prefix_to_netmask(prefix: int) -> str:
    return int_to_ip(prefix_mask(prefix))


def network_bounds(network: ipaddress.IPv4Network) -> Tuple[int, int]:
    """(network, broadcast) as integers."""
    return int(network.network_address), int(network.broadcast_address)


def validate_cidr(
    value: str,
    min_prefix: int = 0,
    max_prefix: int = 32,
    allow_ipv6: bool = False,
) -> CIDRValidation:
    """Validate ``<ipv4>/<prefix>`` and compute its canonical network.

    If the address has bits set outside the mask the result is invalid and
    ``corrected`` holds the network the caller probably meant.
    """
    value = (value or "").strip()
    match = _IPV4_CIDR_RE.match(value)
    if not match:
        if allow_ipv6 and ":" in value and _IPV6_CIDR_RE.match(value):
            return _loose_ipv6(value)
        return CIDRValidation(
            is_valid=False,
            error=f"Invalid CIDR format. Use format: {CIDR_EXAMPLE}",
        )

    octets = [int(o) for o in match.groups()[:4]]
    prefix = int(match.group(5))

    if any(o > 255 for o in octets):
        return CIDRValidation(is_valid=False, error="IP address octets must be between 0 and 255")

    if prefix > 32:
        return CIDRValidation(is_valid=False, error="Prefix must be between 0 and 32")

    ip_num = (octets[0] << 24) | (octets[1] << 16) | (octets[2] << 8) | octets[3]
    network_num = ip_num & prefix_mask(prefix)
    canonical = f"{int_to_ip(network_num)}/{prefix}"

    if not (min_prefix <= prefix <= max_prefix):
        return CIDRValidation(
            is_valid=False,
            error=f"Prefix must be between {min_prefix} and {max_prefix} for valid subnets",
            corrected=canonical if ip_num == network_num else None,
        )

    if ip_num != network_num:
        return CIDRValidation(
            is_valid=False,
            error=f"Invalid network address for /{prefix} subnet. Did you mean {canonical}?",
            corrected=canonical,
        )

    return CIDRValidation(is_valid=True, normalized=canonical)


def _loose_ipv6(value: str) -> CIDRValidation:
    try:
        network = ipaddress.IPv6Network(value, strict=False)
    except ValueError as e:
        return CIDRValidation(is_valid=False, error=str(e), ip_version=6)
    return CIDRValidation(is_valid=True, normalized=str(network), ip_version=6)


def require_valid_cidr(value: str, min_prefix: int = 0, max_prefix: int = 32) -> ipaddress.IPv4Network:
    """Like validate_cidr but raises InvalidCIDR; returns the parsed network."""
    result = validate_cidr(value, min_prefix=min_prefix, max_prefix=max_prefix)
    if not result.is_valid:
        raise InvalidCIDR(result.error, suggestion=result.corrected or CIDR_EXAMPLE)
    return ipaddress.IPv4Network(result.normalized)


def parse_network(cidr: str) -> ipaddress.IPv4Network:
    """Parse an already-canonical CIDR stored in the database."""
    return ipaddress.IPv4Network(cidr)
