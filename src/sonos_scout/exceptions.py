"""
Custom exceptions for sonos-scout.
"""
from typing import Optional


class ScoutError(Exception):
    """Base class for all sonos-scout errors."""
    pass


class TransportUnavailableError(ScoutError):
    """Raised when the host cannot open or join the SSDP multicast group."""
    pass


class XmlDecodeError(ScoutError):
    """Raised when a document cannot be tokenized, even permissively."""
    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.offset = offset


class DeviceDescriptionError(ScoutError):
    """Raised when a description document parses but does not describe a device
    (e.g. no UDN to derive an id from)."""
    pass


class SoapResponseError(ScoutError):
    """Raised for a SOAP fault, or a SOAP body without a response element."""
    def __init__(self, message: str, fault_code: Optional[str] = None):
        super().__init__(message)
        self.fault_code = fault_code


class FetchError(ScoutError):
    """Raised when an HTTP request to a device fails."""
    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class FetchTimeoutError(FetchError):
    """Raised when an HTTP request to a device times out."""
    pass
