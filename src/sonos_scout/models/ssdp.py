from dataclasses import dataclass

from multidict import CIMultiDictProxy

from .common import AdvertisementType


def device_id_from_usn(usn: str | None) -> str | None:
    """
    Derive a stable device id from a USN or UDN.

    "uuid:RINCON_000E58A0B2C401400::urn:schemas-upnp-org:device:ZonePlayer:1"
    and "uuid:RINCON_000E58A0B2C401400" both give "RINCON_000E58A0B2C401400".
    """
    if not usn:
        return None
    device_part = usn.strip().split("::", 1)[0].strip()
    if device_part.lower().startswith("uuid:"):
        device_part = device_part[len("uuid:"):]
    return device_part or None


@dataclass(frozen=True)
class SsdpMessage:
    """A decoded discovery response or NOTIFY announcement."""

    headers: CIMultiDictProxy[str]
    location: str
    id: str
    advertisement_type: AdvertisementType | None = None # None for search responses

    @property
    def search_target(self) -> str | None:
        return self.headers.get("ST") or self.headers.get("NT")

    @property
    def server(self) -> str | None:
        return self.headers.get("SERVER")

    @property
    def max_age(self) -> int | None:
        """max-age from CACHE-CONTROL, in seconds."""
        cache_control = self.headers.get("CACHE-CONTROL", "")
        for directive in cache_control.split(","):
            key, _, value = directive.partition("=")
            if key.strip().lower() == "max-age":
                try:
                    return int(value.strip())
                except ValueError:
                    return None
        return None
