"""Request utility functions for handling common request operations."""

import ipaddress
import logging

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

# Same value the rate limiter uses for requests without a peer address
UNKNOWN_CLIENT = "unknown"


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: HTTPConnection, trusted_proxy_ips: set[str] | None = None) -> str:
    """Get the client address used as the rate-limit and violation key.

    X-Forwarded-For / X-Real-IP can be spoofed by clients, so they are only
    honoured when the direct peer is one of ``trusted_proxy_ips``. With no
    trusted proxies configured the headers are ignored entirely.
    """
    direct_ip = request.client.host if request.client else None
    trusted = trusted_proxy_ips or set()

    if trusted and direct_ip and direct_ip in trusted:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
            if _is_valid_ip(client_ip):
                return client_ip
            logger.warning(f"Invalid IP in X-Forwarded-For header: {client_ip}")

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            real_ip = real_ip.strip()
            if _is_valid_ip(real_ip):
                return real_ip
            logger.warning(f"Invalid IP in X-Real-IP header: {real_ip}")
    elif request.headers.get("X-Forwarded-For") and direct_ip:
        logger.debug(f"Ignoring X-Forwarded-For from untrusted source: {direct_ip}")

    return direct_ip or UNKNOWN_CLIENT
