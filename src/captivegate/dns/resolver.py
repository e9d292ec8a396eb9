"""Upstream resolver — relays raw DNS queries to the configured servers."""

from __future__ import annotations

import ipaddress
import logging
import socket
from collections.abc import Iterable
from pathlib import Path

from captivegate.errors import ResolverUnavailable

logger = logging.getLogger(__name__)

_MAX_UDP = 4096

RESOLV_CONF = Path("/etc/resolv.conf")


class UpstreamResolver:
    """Forwards a query to each upstream in turn until one answers."""

    def __init__(
        self,
        servers: tuple[str, ...] | list[str],
        timeout: float = 2.0,
        port: int = 53,
    ) -> None:
        if not servers:
            raise ValueError("UpstreamResolver needs at least one server")
        self._servers = tuple(servers)
        self._timeout = timeout
        self._port = port

    @property
    def servers(self) -> tuple[str, ...]:
        return self._servers

    def forward(self, query: bytes) -> bytes:
        """Return the first upstream answer whose ID matches the query."""
        for server in self._servers:
            try:
                return self._ask(server, query)
            except OSError as e:
                logger.debug("Upstream %s failed: %s", server, e)
        raise ResolverUnavailable(f"no answer from {', '.join(self._servers)}")

    def _ask(self, server: str, query: bytes) -> bytes:
        family = socket.AF_INET6 if ":" in server else socket.AF_INET
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            sock.settimeout(self._timeout)
            sock.sendto(query, (server, self._port))
            while True:
                # socket.timeout (an OSError) ends the wait
                data, _ = sock.recvfrom(_MAX_UDP)
                if data[:2] == query[:2]:
                    return data


def system_nameservers(
    path: str | Path = RESOLV_CONF,
    exclude: Iterable[str] = (),
) -> tuple[str, ...]:
    """Nameservers listed in resolv.conf, minus loopback stubs and ``exclude``.

    Loopback stubs such as systemd-resolved are never returned.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Could not read %s: %s", path, e)
        return ()

    skip = {str(ipaddress.ip_address(addr)) for addr in exclude}
    servers: list[str] = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 2 or fields[0] != "nameserver":
            continue
        try:
            addr = ipaddress.ip_address(fields[1])
        except ValueError:
            continue
        if addr.is_loopback or str(addr) in skip:
            continue
        servers.append(str(addr))
    return tuple(dict.fromkeys(servers))
