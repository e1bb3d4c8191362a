"""Preferred outbound IPv4 address of this host."""

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

PROBE_ADDRESS = ("1.1.1.1", 80)


def route_source_ipv4(probe: tuple = PROBE_ADDRESS) -> str | None:
    """Source address the kernel would use to reach *probe*.

    Connecting a UDP socket only selects a route; no packet is sent.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(probe)
            address = sock.getsockname()[0]
    except OSError as e:
        logger.debug("No route to %s: %s", probe[0], e)
        return None
    if address == "0.0.0.0":
        return None
    return address


def _is_global_scope(address: str) -> bool:
    ip = ipaddress.IPv4Address(address)
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified
                or ip.is_multicast)


def first_global_ipv4() -> str | None:
    """First non-loopback, non-link-local IPv4 on any interface."""
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and _is_global_scope(addr.address):
                return addr.address
    return None


def outbound_ipv4() -> str:
    """Preferred outbound IPv4, or "" when the host has none."""
    return route_source_ipv4() or first_global_ipv4() or ""
