"""Host address resolution and remote path helpers.

The address is resolved once at startup (``HostContext.resolve()``) and the
resulting context is passed to whoever needs it; nothing here caches.
"""

from __future__ import annotations

import ipaddress
import socket
import struct
import sys
from dataclasses import dataclass
from typing import Optional

from .errors import AddressUnavailable, PlatformUnsupported


DEFAULT_INTERFACE = "eth0"

_SIOCGIFADDR = 0x8915


def _usable(addr: Optional[str]) -> bool:
    if not addr:
        return False
    try:
        ip = ipaddress.IPv4Address(addr)
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_unspecified or ip.is_link_local)


def _interface_ipv4(interface: str) -> Optional[str]:
    if not sys.platform.startswith("linux"):
        return None
    import fcntl

    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        packed = struct.pack("256s", interface[:15].encode("utf-8"))
        res = fcntl.ioctl(s.fileno(), _SIOCGIFADDR, packed)
    except OSError:
        # no such interface, or it has no IPv4 address
        return None
    finally:
        s.close()
    return socket.inet_ntoa(res[20:24])


def _route_ipv4() -> Optional[str]:
    # connect() on UDP sends nothing; it only makes the kernel pick a source address.
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return None
    finally:
        s.close()


def resolve_ipv4_address(interface: str = DEFAULT_INTERFACE) -> str:
    """Return a usable (non-loopback) IPv4 address of this host."""

    for candidate in (_interface_ipv4(interface), _route_ipv4()):
        if _usable(candidate):
            return str(candidate)
    raise AddressUnavailable(f"no usable IPv4 address found (interface={interface!r})")


@dataclass(frozen=True)
class HostContext:
    ipv4_address: str

    @classmethod
    def resolve(cls, interface: str = DEFAULT_INTERFACE) -> "HostContext":
        return cls(ipv4_address=resolve_ipv4_address(interface))


def get_remote_tmp_dir(os_type: str) -> str:
    if os_type == "linux":
        return "/tmp"
    raise PlatformUnsupported(f"remote OS {os_type} not supported")
