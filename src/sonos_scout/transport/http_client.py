"""
HTTP client for device descriptions and SOAP calls, using aiohttp.
"""
import aiohttp
import structlog

from ..config import HttpClientConfig
from ..exceptions import FetchError, FetchTimeoutError

logger = structlog.get_logger(__name__)


class DeviceHttpClient:
    """
    Thin aiohttp wrapper mapping transport failures onto FetchError.

    A session passed in by the caller is shared and never closed here; one
    created lazily by the client is closed by ``close``.
    """

    def __init__(self, config: HttpClientConfig | None = None, session: aiohttp.ClientSession | None = None):
        self.config = config or HttpClientConfig()
        self._session = session
        self._owns_session = session is None
        self.logger = logger.bind(component="DeviceHttpClient")

    def _headers(self) -> dict[str, str]:
        from .. import __version__
        return {"User-Agent": f"sonos-scout/{__version__}"}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self.logger.debug("Creating aiohttp session")
            timeout = aiohttp.ClientTimeout(
                total=self.config.request_timeout_seconds,
                connect=self.config.connect_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(timeout=timeout, headers=self._headers())
            self._owns_session = True
        return self._session

    async def get_text(self, url: str) -> str:
        """GET ``url`` and return the body."""
        return await self._request("GET", url)

    async def soap_request(self, url: str, soap_action: str, envelope: str) -> str:
        """POST a caller-built SOAP envelope and return the response body."""
        headers = {
            "Content-Type": 'text/xml; charset="utf-8"',
            "SOAPACTION": f'"{soap_action}"',
        }
        return await self._request("POST", url, data=envelope.encode("utf-8"), headers=headers)

    async def _request(self, method: str, url: str, **kwargs) -> str:
        session = await self._get_session()
        self.logger.debug("Sending HTTP request", method=method, url=url)
        try:
            async with session.request(method, url, **kwargs) as response:
                body = await response.text()
                if response.status >= 300:
                    self.logger.warning("HTTP error status received", url=url, status=response.status,
                                        reason=response.reason, response_body=body[:500])
                    raise FetchError(f"HTTP error {response.status} {response.reason} from {url}",
                                     url=url, status=response.status)
                return body
        except TimeoutError as e:
            self.logger.warning("Request timed out", url=url, timeout_total=self.config.request_timeout_seconds)
            raise FetchTimeoutError(f"Request to {url} timed out after {self.config.request_timeout_seconds}s",
                                    url=url) from e
        except aiohttp.ClientError as e:
            self.logger.warning("AIOHTTP client error", url=url, error_type=type(e).__name__, error_message=str(e))
            raise FetchError(f"HTTP client error for {url}: {e}", url=url) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self.logger.debug("aiohttp session closed")
        if self._owns_session:
            self._session = None
