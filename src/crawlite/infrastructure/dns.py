"""Cached hostname to IP address resolution."""

import asyncio
import logging
import socket
from typing import Dict

logger = logging.getLogger(__name__)


class HostIpCache:
    """
    Resolves hostnames through the event loop's resolver and caches hits.

    Failed lookups return an empty string and are not cached, so a later page
    on the same host gets another chance.
    """

    def __init__(self):
        self._ip_by_host: Dict[str, str] = {}

    def cached(self, host: str) -> str:
        """Return the cached address for ``host`` or an empty string."""
        return self._ip_by_host.get((host or "").lower(), "")

    async def lookup(self, host: str) -> str:
        """
        Resolve a hostname to its first address.

        Args:
            host: Hostname (case-insensitive)

        Returns:
            IP address string, or "" when resolution fails
        """
        key = (host or "").strip().lower()
        if not key:
            return ""
        if key in self._ip_by_host:
            return self._ip_by_host[key]

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(key, None, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError) as e:
            logger.debug(f"DNS lookup failed for {key}: {e}")
            return ""

        for _family, _type, _proto, _canon, sockaddr in infos:
            if sockaddr:
                address = str(sockaddr[0])
                self._ip_by_host[key] = address
                return address
        return ""
