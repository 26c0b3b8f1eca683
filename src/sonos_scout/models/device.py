import time
from typing import Any
from urllib.parse import urljoin

import structlog
from pydantic import Field

from ..exceptions import DeviceDescriptionError, SoapResponseError, XmlDecodeError
from ..xmltree import XmlNode, decode_xml, parse, query
from .common import BasePydanticModel
from .ssdp import device_id_from_usn

logger = structlog.get_logger(__name__)

AV_TRANSPORT_SERVICE = ":service:AVTransport:"

# Description element name -> Device field
_DESCRIPTION_FIELDS = {
    "friendlyName": "friendly_name",
    "roomName": "room_name",
    "displayName": "display_name",
    "deviceType": "device_type",
    "manufacturer": "manufacturer",
    "modelName": "model_name",
    "modelNumber": "model_number",
    "serialNum": "serial_number",
    "softwareVersion": "software_version",
    "hardwareVersion": "hardware_version",
    "zoneType": "zone_type",
}


class Device(BasePydanticModel):
    id: str # e.g. "RINCON_000E58A0B2C401400", from the USN / UDN
    info_url: str # URL of the device description document
    media_state_url: str | None = None # AVTransport control URL
    last_updated: float = Field(default_factory=time.time)

    friendly_name: str | None = None
    room_name: str | None = None
    display_name: str | None = None
    device_type: str | None = None
    manufacturer: str | None = None
    model_name: str | None = None
    model_number: str | None = None
    serial_number: str | None = None
    software_version: str | None = None
    hardware_version: str | None = None
    zone_type: str | None = None
    services: list[str] = Field(default_factory=list)

    @classmethod
    def from_xml(cls, root: XmlNode, info_url: str, last_updated: float | None = None) -> "Device":
        """
        Build a Device from a parsed UPnP device description.

        Args:
            root: Root node returned by ``xmltree.parse``.
            info_url: URL the description was fetched from; relative service
                URLs are resolved against it.
            last_updated: Fetch time, defaults to now.

        Raises:
            DeviceDescriptionError: if the document has no usable UDN.
        """
        device_id = device_id_from_usn(root.find_text("/root/device/UDN"))
        if not device_id:
            raise DeviceDescriptionError(f"Description at {info_url} has no UDN")

        attributes: dict[str, Any] = {}
        for element, field_name in _DESCRIPTION_FIELDS.items():
            value = root.find_text(f"/root/device/{element}")
            if value is not None:
                attributes[field_name] = value.strip()

        service_nodes = query(root, "/root/device/serviceList/service") + query(
            root, "/root/device/deviceList/device/serviceList/service"
        )
        services: list[str] = []
        media_state_url = None
        for service in service_nodes:
            service_type = (service.find_text("serviceType") or "").strip()
            if service_type and service_type not in services:
                services.append(service_type)
            control_url = service.find_text("controlURL")
            if media_state_url is None and AV_TRANSPORT_SERVICE in service_type and control_url:
                media_state_url = urljoin(info_url, control_url.strip())

        return cls(
            id=device_id,
            info_url=info_url,
            media_state_url=media_state_url,
            last_updated=last_updated if last_updated is not None else time.time(),
            services=services,
            **attributes,
        )


class MediaInfo(BasePydanticModel):
    """What a player reports about its current track (GetPositionInfo / GetMediaInfo)."""
    device_id: str
    raw_fields: dict[str, str] = Field(default_factory=dict) # response element -> text
    track_uri: str | None = None
    track_duration: str | None = None
    rel_time: str | None = None
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_art_uri: str | None = None

    @classmethod
    def from_xml(cls, root: XmlNode, device_id: str, base_url: str | None = None) -> "MediaInfo":
        """
        Build MediaInfo from a parsed SOAP response envelope.

        Raises:
            SoapResponseError: for a SOAP fault or an empty body.
        """
        bodies = query(root, "/Envelope/Body")
        if not bodies or not bodies[0].children:
            raise SoapResponseError("SOAP envelope has no response element")
        response = bodies[0].children[0]
        if response.name == "Fault":
            raise SoapResponseError(
                response.find_text("faultstring") or "SOAP fault",
                fault_code=response.find_text("faultcode"),
            )

        fields = {child.name: child.text or "" for child in response.children if child.name}
        info: dict[str, Any] = {
            "track_uri": fields.get("TrackURI") or fields.get("CurrentURI") or None,
            "track_duration": fields.get("TrackDuration") or fields.get("MediaDuration") or None,
            "rel_time": fields.get("RelTime") or None,
        }
        metadata = fields.get("TrackMetaData") or fields.get("CurrentURIMetaData")
        item = _didl_item(metadata)
        if item is not None:
            info["title"] = item.find_text("title")
            info["artist"] = item.find_text("creator") or item.find_text("artist")
            info["album"] = item.find_text("album")
            art = item.find_text("albumArtURI")
            if art:
                info["album_art_uri"] = urljoin(base_url, art) if base_url else art

        return cls(device_id=device_id, raw_fields=fields, **info)


def _didl_item(metadata: str | None) -> XmlNode | None:
    """First <item> of a DIDL-Lite metadata blob, or None."""
    if not metadata or metadata == "NOT_IMPLEMENTED":
        return None
    if not metadata.lstrip().startswith("<"):
        # Still URL and entity encoded
        metadata = decode_xml(metadata)
    try:
        didl = parse(metadata)
    except XmlDecodeError as e:
        logger.debug("Unparseable DIDL-Lite metadata", error=str(e))
        return None
    items = query(didl, "/DIDL-Lite/item")
    return items[0] if items else None
