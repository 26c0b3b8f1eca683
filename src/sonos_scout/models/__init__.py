"""
Pydantic models and message records for sonos-scout.
"""
from .common import AdvertisementType, BasePydanticModel, ServiceState
from .device import Device, MediaInfo
from .ssdp import SsdpMessage, device_id_from_usn

__all__ = [
    "AdvertisementType",
    "BasePydanticModel",
    "Device",
    "MediaInfo",
    "ServiceState",
    "SsdpMessage",
    "device_id_from_usn",
]
