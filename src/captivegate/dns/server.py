"""Threaded UDP/TCP listeners for the DNS interceptor."""

from __future__ import annotations

import logging
import socketserver
import threading

from captivegate.dns.interceptor import DnsInterceptor

logger = logging.getLogger(__name__)


class _UdpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        data, sock = self.request
        reply = self.server.interceptor.handle(data, self.client_address[0])  # type: ignore[attr-defined]
        if reply is not None:
            sock.sendto(reply, self.client_address)


class _TcpHandler(socketserver.StreamRequestHandler):
    """DNS over TCP: each message is prefixed with a 2-byte length."""

    timeout = 10

    def handle(self) -> None:
        interceptor: DnsInterceptor = self.server.interceptor  # type: ignore[attr-defined]
        while True:
            try:
                header = self.rfile.read(2)
                if len(header) < 2:
                    return
                length = int.from_bytes(header, "big")
                data = self.rfile.read(length)
            except OSError:
                return
            if len(data) < length:
                return
            reply = interceptor.handle(data, self.client_address[0])
            if reply is None:
                return
            self.wfile.write(len(reply).to_bytes(2, "big") + reply)


class _UdpServer(socketserver.ThreadingUDPServer):
    daemon_threads = True
    allow_reuse_address = True


class _TcpServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class DnsServer:
    """Serves the interceptor on UDP and TCP at the same address."""

    def __init__(self, interceptor: DnsInterceptor, host: str, port: int = 53) -> None:
        self._interceptor = interceptor
        self._host = host
        self._port = port
        self._servers: list[socketserver.BaseServer] = []
        self._threads: list[threading.Thread] = []

    @property
    def udp_address(self) -> tuple[str, int] | None:
        for server in self._servers:
            if isinstance(server, _UdpServer):
                return server.server_address[:2]
        return None

    @property
    def tcp_address(self) -> tuple[str, int] | None:
        for server in self._servers:
            if isinstance(server, _TcpServer):
                return server.server_address[:2]
        return None

    def start(self) -> None:
        """Bind both listeners and serve them on daemon threads."""
        udp = _UdpServer((self._host, self._port), _UdpHandler)
        # Same port for TCP, which matters when port 0 picked an ephemeral one
        tcp = _TcpServer((self._host, udp.server_address[1]), _TcpHandler)
        for server in (udp, tcp):
            server.interceptor = self._interceptor  # type: ignore[attr-defined]
            thread = threading.Thread(
                target=server.serve_forever,
                name=f"dns-{type(server).__name__.strip('_').lower()}",
                daemon=True,
            )
            thread.start()
            self._servers.append(server)
            self._threads.append(thread)
        logger.info("DNS interception listening on %s:%d", self._host, udp.server_address[1])

    def stop(self) -> None:
        for server in self._servers:
            server.shutdown()
            server.server_close()
        for thread in self._threads:
            thread.join(timeout=2)
        self._servers.clear()
        self._threads.clear()
        logger.info("DNS interception stopped")
