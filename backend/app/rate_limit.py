"""Rate limiting for the sync server.

Requests are keyed by client address. ``X-Forwarded-For`` is honored only
when the direct peer is one of the configured trusted proxies, so clients
cannot pick their own rate-limit bucket.
"""

import ipaddress
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("weave.rate_limit")


@lru_cache
def trusted_networks(cidrs: tuple[str, ...]) -> tuple:
    """Parse proxy CIDRs once per distinct configuration."""
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr.strip(), strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {cidr!r}")
    return tuple(networks)


def is_trusted_proxy(address: str) -> bool:
    try:
        addr = ipaddress.ip_address(address)
    except ValueError:
        return False
    networks = trusted_networks(tuple(get_settings().trusted_proxy_cidrs))
    return any(addr in network for network in networks)


def get_client_ip(request) -> str:
    """Resolve client IP, only honoring X-Forwarded-For from trusted proxies."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer

    # Leftmost entry is the originating client
    forwarded_for = request.headers.get("x-forwarded-for", "")
    client_ip = forwarded_for.split(",")[0].strip()
    return client_ip or peer


def create_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=get_client_ip,
        default_limits=[settings.rate_limit_default],
        enabled=settings.rate_limit_enabled,
    )


limiter = create_limiter()
