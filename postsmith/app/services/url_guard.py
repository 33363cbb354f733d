from __future__ import annotations

import ipaddress
import re
import socket
from urllib.parse import urlsplit

from postsmith.app.services.errors import (
    DisallowedScheme,
    MalformedUrl,
    NonHtmlTarget,
    PrivateNetworkTarget,
    UrlValidationError,
)

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})
LOOPBACK_HOSTS: frozenset[str] = frozenset({"localhost", "127.0.0.1", "::1"})
PRIVATE_NETWORKS: tuple[ipaddress.IPv4Network, ...] = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)
# Matches dotted private prefixes on any hostname, including wildcard DNS names
# such as 10.0.0.1.nip.io.
PRIVATE_HOST_PREFIX_RE = re.compile(r"^(10\.|192\.168\.|172\.(1[6-9]|2\d|3[01])\.)")
NON_HTML_EXTENSIONS: tuple[str, ...] = (
    ".pdf",
    ".zip",
    ".exe",
    ".dmg",
    ".iso",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".mp4",
    ".mp3",
)


def validate_url(url: str) -> UrlValidationError | None:
    """Check a candidate URL before any network access.

    Returns the first failing check as an error value (never raises), or
    None when the URL may be fetched. Pure function of the input string.
    """
    candidate = url.strip() if isinstance(url, str) else ""
    if not candidate or any(ord(character) < 32 for character in candidate):
        return MalformedUrl("Invalid URL format.")
    try:
        parsed = urlsplit(candidate)
        hostname = parsed.hostname
    except ValueError:
        return MalformedUrl("Invalid URL format.")
    if not parsed.scheme:
        return MalformedUrl("Invalid URL format.")
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return DisallowedScheme("Invalid protocol. Only HTTP/HTTPS allowed.")
    if not parsed.netloc or not hostname:
        return MalformedUrl("Invalid URL format.")

    host = hostname.lower().rstrip(".")
    address = _parse_ipv4(host)
    if host in LOOPBACK_HOSTS or (address is not None and address.is_loopback):
        return PrivateNetworkTarget("Localhost not allowed.")
    if PRIVATE_HOST_PREFIX_RE.match(host) or _is_private_ipv4(address):
        return PrivateNetworkTarget("Private network IPs not allowed.")

    if parsed.path.lower().endswith(NON_HTML_EXTENSIONS):
        return NonHtmlTarget("Non-HTML endpoint detected (file extension).")
    return None


def ensure_valid_url(url: str) -> str:
    error = validate_url(url)
    if error is not None:
        raise error
    return url.strip()


def _parse_ipv4(host: str) -> ipaddress.IPv4Address | None:
    """Resolve a host literal to the IPv4 address a socket would connect to.

    Covers shorthand and integer forms (`10.1`, `167772161`, `0xa.1`) that
    inet_aton accepts, and IPv4-mapped IPv6 literals (`::ffff:10.0.0.1`).
    No DNS lookup is made.
    """
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        address = None
    if isinstance(address, ipaddress.IPv6Address):
        return address.ipv4_mapped
    if isinstance(address, ipaddress.IPv4Address):
        return address
    if not host or not all(part.isalnum() for part in host.split(".")):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def _is_private_ipv4(address: ipaddress.IPv4Address | None) -> bool:
    if address is None:
        return False
    if address.is_link_local or address.is_unspecified:
        return True
    return any(address in network for network in PRIVATE_NETWORKS)
