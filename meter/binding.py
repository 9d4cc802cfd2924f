"""
Local network-interface binding.

Turns a user-supplied interface (``eth0``, ``wlan0`` or a literal IP
address) into the local address every outgoing connection is bound to.
"""
from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Optional, Tuple

import psutil

from .errors import TransportError, TransportErrorKind

logger = logging.getLogger(__name__)


def resolve_interface(interface: Optional[str]) -> Optional[str]:
    """Return the local IP address for *interface*, or ``None`` if unset.

    IPv4 addresses are preferred over IPv6 ones.  An unknown interface, or
    one with no usable address, raises ``TransportError`` with kind
    ``CONNECTION_REFUSED``.
    """
    if not interface:
        return None

    try:
        return str(ipaddress.ip_address(interface))
    except ValueError:
        pass

    addrs = psutil.net_if_addrs().get(interface)
    if not addrs:
        raise TransportError(
            TransportErrorKind.CONNECTION_REFUSED,
            f"network interface {interface!r} not found",
        )

    for family in (socket.AF_INET, socket.AF_INET6):
        for addr in addrs:
            if addr.family == family:
                # strip IPv6 zone ids ("fe80::1%eth0")
                address = addr.address.split("%", 1)[0]
                logger.debug("Interface %s resolved to %s", interface, address)
                return address

    raise TransportError(
        TransportErrorKind.CONNECTION_REFUSED,
        f"network interface {interface!r} has no IP address",
    )


def local_addr(interface: Optional[str]) -> Optional[Tuple[str, int]]:
    """``(address, 0)`` tuple for ``local_addr=`` arguments, or ``None``."""
    address = resolve_interface(interface)
    return (address, 0) if address else None
