"""
SSDP message codec: builds M-SEARCH payloads and decodes the header-only
HTTP-style blocks that come back as search responses or NOTIFY announcements.

Parsing never raises for malformed datagrams; invalid messages are logged and
``None`` is returned so protocol noise on the multicast group stays harmless.
"""
import structlog
from multidict import CIMultiDict, CIMultiDictProxy

from ..models.common import AdvertisementType
from ..models.ssdp import SsdpMessage, device_id_from_usn

logger = structlog.get_logger(__name__)

SSDP_MULTICAST_GROUP = "239.255.255.250"
SSDP_PORT = 1900

_NTS_TYPES = {
    "ssdp:alive": AdvertisementType.ALIVE,
    "ssdp:update": AdvertisementType.UPDATE,
    "ssdp:byebye": AdvertisementType.GOODBYE,
}


def build_discovery_request(
    target_scope: str,
    max_wait_seconds: int,
    host: str = SSDP_MULTICAST_GROUP,
    port: int = SSDP_PORT,
) -> bytes:
    """
    Build an M-SEARCH request.

    Args:
        target_scope: Search target (ST), e.g. "urn:schemas-upnp-org:device:ZonePlayer:1".
        max_wait_seconds: MX, the longest a device may delay its answer.

    Raises:
        ValueError: for an empty target or an MX below 1.
    """
    if not target_scope:
        raise ValueError("target_scope must not be empty")
    if isinstance(max_wait_seconds, bool) or not isinstance(max_wait_seconds, int) or max_wait_seconds < 1:
        raise ValueError(f"max_wait_seconds must be an integer >= 1, got {max_wait_seconds!r}")
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {host}:{port}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {max_wait_seconds}\r\n"
        f"ST: {target_scope}\r\n"
        "\r\n"
    ).encode("utf-8")


def parse_headers(datagram: bytes | str) -> CIMultiDictProxy[str]:
    """Case-insensitive header map of an SSDP block. The start line is skipped."""
    text = datagram.decode("utf-8", errors="replace") if isinstance(datagram, bytes) else datagram
    headers: CIMultiDict[str] = CIMultiDict()
    for line in text.splitlines()[1:]:
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        headers.add(name.strip(), value.strip())
    return CIMultiDictProxy(headers)


def parse_response(datagram: bytes | str) -> SsdpMessage | None:
    """Decode an M-SEARCH response, or None when LOCATION or USN is missing."""
    headers = parse_headers(datagram)
    location = headers.get("LOCATION")
    device_id = device_id_from_usn(headers.get("USN"))
    if not location or not device_id:
        logger.debug("Discarding SSDP response without LOCATION or USN", headers=dict(headers))
        return None
    return SsdpMessage(headers=headers, location=location, id=device_id)


def parse_notification(datagram: bytes | str) -> SsdpMessage | None:
    """
    Decode a NOTIFY announcement.

    A byebye only needs a USN; its ``location`` is "" when the device left it
    out. Unknown or missing NTS values are logged as errors and dropped.
    """
    headers = parse_headers(datagram)
    nts = (headers.get("NTS") or "").strip().lower()
    advertisement_type = _NTS_TYPES.get(nts)
    if advertisement_type is None:
        logger.error("Unknown SSDP notification subtype", nts=headers.get("NTS"), usn=headers.get("USN"))
        return None

    device_id = device_id_from_usn(headers.get("USN"))
    location = headers.get("LOCATION") or ""
    if not device_id or (not location and advertisement_type is not AdvertisementType.GOODBYE):
        logger.debug("Discarding SSDP notification without LOCATION or USN", headers=dict(headers))
        return None
    return SsdpMessage(
        headers=headers,
        location=location,
        id=device_id,
        advertisement_type=advertisement_type,
    )


def is_notification(datagram: bytes | str) -> bool:
    """True when the start line is a NOTIFY request."""
    text = datagram.decode("utf-8", errors="replace") if isinstance(datagram, bytes) else datagram
    return text.lstrip().upper().startswith("NOTIFY")
