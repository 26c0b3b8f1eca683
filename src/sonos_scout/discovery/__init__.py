"""
SSDP discovery: the message codec, the device registry and the service that
drives both.
"""
from .discovery_service import DiscoveryService
from .registry import DeviceRegistry
from .ssdp import build_discovery_request, parse_notification, parse_response

__all__ = [
    "DeviceRegistry",
    "DiscoveryService",
    "build_discovery_request",
    "parse_notification",
    "parse_response",
]
