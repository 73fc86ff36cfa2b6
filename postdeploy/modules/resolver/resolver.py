"""
Address resolution with home-stamp fallback.

Newly created sites can fail DNS resolution for a while after creation.
When that happens the request is sent to the address of the home stamp
hosting the site instead, with the original hostname in the Host header.
"""

import asyncio
import logging
import socket
from typing import Awaitable, Callable, List, Optional, Tuple

logger = logging.getLogger("postdeploy.resolver")

Lookup = Callable[[str], Awaitable[List[str]]]

# cloudapp.net is the default to make private stamp testing easy
DEFAULT_STAMP_SUFFIX = "cloudapp.net"

STAMP_SUFFIXES: Tuple[Tuple[str, str], ...] = (
    (".scm.azurewebsites.us", "usgovcloudapp.net"),
    (".scm.chinacloudsites.cn", "chinacloudapp.cn"),
    (".scm.azurewebsites.de", "azurecloudapp.de"),
)


async def system_lookup(host: str) -> List[str]:
    """Resolve a hostname through the event loop's resolver."""
    loop = asyncio.get_running_loop()
    results = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    # sockaddr[0] is the address for both IPv4 and IPv6
    addresses: List[str] = []
    for _family, _type, _proto, _canonname, sockaddr in results:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def _strip_port(host_or_authority: str) -> str:
    if host_or_authority.startswith("["):
        return host_or_authority[1:].split("]", 1)[0]
    if host_or_authority.count(":") == 1:
        return host_or_authority.split(":", 1)[0]
    return host_or_authority


def stamp_hostname(host: str, home_stamp: str) -> str:
    """Derive the home stamp hostname for a control-plane host."""
    lowered = host.lower()
    for domain, suffix in STAMP_SUFFIXES:
        if lowered.endswith(domain):
            return f"{home_stamp}.{suffix}"
    return f"{home_stamp}.{DEFAULT_STAMP_SUFFIX}"


class AddressResolver:
    """Resolves a host, falling back to the home stamp address on failure."""

    def __init__(
        self,
        home_stamp: Optional[str],
        lookup: Optional[Lookup] = None,
        tracer: Optional[logging.Logger] = None,
    ):
        """
        Initialize resolver.

        Args:
            home_stamp: Identifier of the stamp hosting the site, e.g. waws-prod-bay-001
            lookup: Coroutine returning the addresses of a hostname (raises on failure)
            tracer: Logger for verbose resolution traces
        """
        self.home_stamp = home_stamp
        self._lookup = lookup or system_lookup
        self.tracer = tracer or logger

    async def resolve(self, host: str, tracer: Optional[logging.Logger] = None) -> Optional[str]:
        """
        Resolve host and return an alternative address if it does not resolve.

        Returns:
            None when the hostname itself resolves (or nothing better is
            known), otherwise the first address of the home stamp.
        """
        tracer = tracer or self.tracer
        hostname = _strip_port(host)
        try:
            await self._lookup(hostname)
            return None
        except Exception as e:
            tracer.debug("Unable to dns resolve %s.  %s", hostname, e)

        return await self._resolve_home_stamp(hostname, tracer)

    async def _resolve_home_stamp(self, host: str, tracer: logging.Logger) -> Optional[str]:
        if not self.home_stamp:
            return None

        fallback = stamp_hostname(host, self.home_stamp)
        try:
            tracer.debug("Try to dns resolve stamp %s.", fallback)
            addresses = await self._lookup(fallback)
            if addresses:
                return addresses[0]
            tracer.debug("Stamp %s resolved to no addresses.", fallback)
        except Exception as e:
            tracer.debug("Unable to dns resolve stamp %s.  %s", fallback, e)

        return None
