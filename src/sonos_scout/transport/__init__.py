"""
Network adapters: UDP multicast sockets and an HTTP client for devices.
"""
from .http_client import DeviceHttpClient
from .udp import DatagramHandle, UdpTransport

__all__ = ["DatagramHandle", "DeviceHttpClient", "UdpTransport"]
