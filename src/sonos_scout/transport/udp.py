"""
UDP multicast transport built on asyncio datagram endpoints.
"""
import asyncio
import socket
import struct
from collections.abc import Callable

import structlog

from ..exceptions import TransportUnavailableError

logger = structlog.get_logger(__name__)

Address = tuple[str, int]
DatagramConsumer = Callable[[bytes, Address], None]

SEARCH_MULTICAST_TTL = 2


class _ConsumerProtocol(asyncio.DatagramProtocol):
    """Hands every inbound datagram to a consumer callback."""

    def __init__(self, consumer: DatagramConsumer, log):
        self.consumer = consumer
        self.logger = log

    def datagram_received(self, data: bytes, addr: Address) -> None:
        try:
            self.consumer(data, addr)
        except Exception as e:
            self.logger.exception("Datagram consumer failed", remote=addr, error=str(e))

    def error_received(self, exc: Exception) -> None:
        self.logger.warning("UDP socket error", error=str(exc))


class DatagramHandle:
    """An open UDP socket. Sending on a closed handle is a logged no-op."""

    def __init__(self, transport: asyncio.DatagramTransport, sock: socket.socket,
                 membership: bytes | None = None, name: str = "udp"):
        self._transport = transport
        self._sock = sock
        self._membership = membership
        self._timer: asyncio.TimerHandle | None = None
        self.logger = logger.bind(socket=name)

    @property
    def is_closed(self) -> bool:
        return self._transport is None or self._transport.is_closing()

    def send(self, data: bytes, addr: Address) -> None:
        if self.is_closed:
            self.logger.debug("Dropping send on closed socket", remote=addr)
            return
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            self.logger.warning("UDP send failed", remote=addr, error=str(e))

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._transport is None:
            return
        if self._membership is not None:
            try:
                self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, self._membership)
            except OSError as e:
                self.logger.warning("Failed to leave multicast group", error=str(e))
            self._membership = None
        self._transport.close()
        self._transport = None
        self.logger.debug("Socket closed")

    def close_after(self, delay: float) -> None:
        """Schedule ``close`` on the running loop."""
        self._timer = asyncio.get_running_loop().call_later(delay, self.close)


class UdpTransport:
    """Opens the multicast listener and short-lived search sockets."""

    def __init__(self) -> None:
        self.logger = logger.bind(component="UdpTransport")

    @property
    def has_socket_support(self) -> bool:
        return all(hasattr(socket, name) for name in ("IP_ADD_MEMBERSHIP", "IP_DROP_MEMBERSHIP", "IP_MULTICAST_TTL"))

    async def open_multicast_socket(self, group: str, port: int, consumer: DatagramConsumer) -> DatagramHandle:
        """
        Bind ``port`` on all interfaces and join ``group``.

        Raises:
            TransportUnavailableError: if the socket cannot be bound or the group joined.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(("", port))
            membership = struct.pack("=4sI", socket.inet_aton(group), socket.INADDR_ANY)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
            sock.setblocking(False)
            loop = asyncio.get_running_loop()
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _ConsumerProtocol(consumer, self.logger), sock=sock
            )
        except OSError as e:
            sock.close()
            raise TransportUnavailableError(f"Cannot listen on {group}:{port}: {e}") from e
        self.logger.info("Listening for SSDP notifications", group=group, port=port)
        return DatagramHandle(transport, sock, membership=membership, name=f"multicast:{port}")

    async def open_search_socket(self, consumer: DatagramConsumer, timeout: float) -> DatagramHandle:
        """Open an ephemeral-port socket for M-SEARCH; it closes itself after ``timeout`` seconds."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, SEARCH_MULTICAST_TTL)
            sock.bind(("", 0))
            sock.setblocking(False)
            loop = asyncio.get_running_loop()
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _ConsumerProtocol(consumer, self.logger), sock=sock
            )
        except OSError as e:
            sock.close()
            raise TransportUnavailableError(f"Cannot open search socket: {e}") from e
        handle = DatagramHandle(transport, sock, name="search")
        handle.close_after(timeout)
        return handle
