"""Rate limiting for the settlement API.

Uses trusted proxy configuration to prevent X-Forwarded-For spoofing.
Only trusts forwarded headers from the CIDRs in ``TRUSTED_PROXY_CIDRS``.
"""

import ipaddress
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("settlement.rate_limit")

# Verification fans out into several chain RPC calls per request
VERIFY_PAYMENT_LIMIT = "30/minute"
PAYMENT_OPTIONS_LIMIT = "120/minute"


def parse_cidrs(cidrs: list[str]) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning("Ignoring invalid trusted proxy CIDR: %s", cidr)
    return networks


@lru_cache
def _trusted_networks() -> tuple:
    return tuple(parse_cidrs(get_settings().trusted_proxy_cidrs))


def is_trusted_proxy(ip_str: str, networks=None) -> bool:
    """Check if an IP is in the trusted proxy list."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if networks is None:
        networks = _trusted_networks()
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies.

    If the direct connection is from a trusted proxy, the leftmost
    X-Forwarded-For entry (the original client) is used. Otherwise the
    direct connection IP is used.
    """
    direct_ip = get_remote_address(request)

    if is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip

    return direct_ip


# Create limiter using client IP address as the key
limiter = Limiter(key_func=get_client_ip)
