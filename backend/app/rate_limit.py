"""Per-client request limits for the /api endpoint.

Requests are bucketed by client address. Behind a load balancer the peer
is the proxy, so the forwarded address is used instead, but only when the
peer sits in one of the ``trusted_proxy_cidrs`` networks. Anyone else could
pick their own bucket by sending the header.
"""

import ipaddress
import logging
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger("foamsync.rate_limit")

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


@lru_cache(maxsize=8)
def parse_networks(cidrs: str) -> tuple[Network, ...]:
    """Parse a comma-separated CIDR list, skipping entries that don't parse."""
    networks = []
    for entry in cidrs.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {entry!r}")
    return tuple(networks)


def is_trusted_proxy(ip_str: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    networks = parse_networks(get_settings().trusted_proxy_cidrs)
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Rate-limit key for a request: forwarded client when proxied, else the peer."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer
    # Leftmost entry is the original client; proxies append to the right
    forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    return forwarded or peer


limiter = Limiter(key_func=get_client_ip)
