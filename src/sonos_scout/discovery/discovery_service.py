"""
Service responsible for discovering Sonos players with SSDP and keeping the
device registry fresh.

Socket callbacks, fetch completions and sweep timers never touch the registry
directly. They put messages on one queue that a single processing task
drains, so every registry mutation happens in one place and only while the
service is running.
"""
import asyncio
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

import structlog

from ..config import Config
from ..events import EventBus, EventTopic
from ..exceptions import (
    DeviceDescriptionError,
    FetchError,
    SoapResponseError,
    TransportUnavailableError,
    XmlDecodeError,
)
from ..models.common import AdvertisementType, ServiceState
from ..models.device import Device, MediaInfo
from ..transport.http_client import DeviceHttpClient
from ..transport.udp import Address, DatagramHandle, UdpTransport
from ..xmltree import parse
from .registry import DeviceRegistry
from .ssdp import build_discovery_request, is_notification, parse_notification, parse_response

logger = structlog.get_logger(__name__)


@dataclass
class _DatagramReceived:
    data: bytes
    addr: Address


@dataclass
class _DetailsFetched:
    device: Device


@dataclass
class _SweepDue:
    pass


class DiscoveryService:
    """
    Owns the SSDP socket lifecycle and the device registry.

    States go STOPPED -> STARTING -> RUNNING -> STOPPED. ``start`` while not
    stopped and ``stop`` while stopped are no-ops.
    """

    def __init__(
        self,
        config: Config,
        transport: UdpTransport | None = None,
        http_client: DeviceHttpClient | None = None,
        event_bus: EventBus | None = None,
        registry: DeviceRegistry | None = None,
    ):
        self.config = config
        self.discovery_config = config.discovery
        self.transport = transport or UdpTransport()
        self._owns_http_client = http_client is None
        self.http_client = http_client or DeviceHttpClient(config.http)
        if registry is not None and event_bus is not None and registry.event_bus is not event_bus:
            raise ValueError("registry publishes on a different event bus than the one given")
        self.event_bus = event_bus or (registry.event_bus if registry else EventBus())
        self.registry = registry or DeviceRegistry(
            event_bus=self.event_bus,
            max_lifetime=self.discovery_config.device_max_lifetime_seconds,
        )
        self.logger = logger.bind(component="DiscoveryService")

        self.state = ServiceState.STOPPED
        self.last_error: str | None = None
        self._start_attempt = 0
        self._running = False
        self._queue: asyncio.Queue | None = None
        self._processor_task: asyncio.Task | None = None
        self._multicast: DatagramHandle | None = None
        self._search_handles: list[DatagramHandle] = []
        self._active_tasks: set[asyncio.Task] = set()
        self._timers: list[asyncio.TimerHandle] = []
        self._sweep_timer: asyncio.TimerHandle | None = None
        # description URL -> fetch task
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def devices(self) -> list[Device]:
        return self.registry.snapshot()

    async def start(self) -> None:
        """Join the multicast group and run the initial discovery bursts."""
        if self.state is not ServiceState.STOPPED:
            self.logger.debug("Start ignored, service not stopped", state=self.state.value)
            return
        self.state = ServiceState.STARTING
        self._start_attempt += 1
        attempt = self._start_attempt

        if not self.transport.has_socket_support:
            self._start_failed("UDP multicast sockets are not supported on this host")
            return
        try:
            multicast = await self.transport.open_multicast_socket(
                self.discovery_config.multicast_group,
                self.discovery_config.multicast_port,
                self._on_datagram,
            )
        except (TransportUnavailableError, OSError) as e:
            if self._is_current_start(attempt):
                self._start_failed(str(e))
            return
        if not self._is_current_start(attempt):
            # stop() ran while the socket was being opened
            multicast.close()
            self.logger.info("Start abandoned, service was stopped while starting")
            return
        self._multicast = multicast

        self.last_error = None
        self._running = True
        self._queue = asyncio.Queue()
        self._processor_task = asyncio.create_task(self._process_events(), name="sonos-scout-events")
        self.state = ServiceState.RUNNING
        self.logger.info("Discovery service started",
                         group=self.discovery_config.multicast_group, port=self.discovery_config.multicast_port)

        self.event_bus.publish(EventTopic.DEVICES, self.registry.snapshot())
        self.discover()
        loop = asyncio.get_running_loop()
        for delay in self.discovery_config.burst_delays_seconds:
            self._timers.append(loop.call_later(delay, self.discover))

    def _is_current_start(self, attempt: int) -> bool:
        return self.state is ServiceState.STARTING and attempt == self._start_attempt

    def _start_failed(self, reason: str) -> None:
        self.last_error = reason
        self.state = ServiceState.STOPPED
        self.logger.error("Discovery service could not start", error=reason)

    def discover(self) -> asyncio.Task | None:
        """Schedule one discovery burst. Returns its task, or None when not running."""
        if not self._running:
            return None
        return self._spawn(self._run_burst(), name="sonos-scout-burst")

    async def _run_burst(self) -> None:
        cfg = self.discovery_config
        try:
            handle = await self.transport.open_search_socket(self._on_datagram, cfg.search_socket_timeout_seconds)
        except (TransportUnavailableError, OSError) as e:
            self.logger.warning("Could not open search socket", error=str(e))
            return
        self._search_handles = [h for h in self._search_handles if not h.is_closed]
        self._search_handles.append(handle)

        payload = build_discovery_request(cfg.search_target, cfg.max_wait_seconds)
        target = (cfg.multicast_group, cfg.multicast_port)
        self.logger.debug("Sending discovery burst", search_target=cfg.search_target, count=cfg.burst_count)
        for attempt in range(cfg.burst_count):
            if not self._running:
                return
            handle.send(payload, target)
            if attempt < cfg.burst_count - 1:
                await asyncio.sleep(cfg.burst_interval_seconds)

    def request_device_details(self, info: str, refresh: bool = False) -> asyncio.Task | None:
        """
        Fetch and (re)register a device description.

        Args:
            info: A known device id or a description URL.
            refresh: Start a new fetch even when one for the same URL is
                still running. Announcements use this since the device may
                have changed after the running fetch read its description.

        Returns:
            The fetch task, an already running one for the same URL, or None
            when the service is not running.
        """
        if not self._running:
            return None
        known = self.registry.get(info)
        url = known.info_url if known is not None else info

        task = None if refresh else self._inflight.get(url)
        if task is None:
            task = self._spawn(self._fetch_details(url), name="sonos-scout-fetch")
            self._inflight[url] = task
        self._ensure_sweep(self.registry.max_lifetime)
        return task

    async def _fetch_details(self, url: str) -> None:
        log = self.logger.bind(info_url=url)
        try:
            body = await self.http_client.get_text(url)
            device = Device.from_xml(parse(body), url, last_updated=time.time())
            self._enqueue(_DetailsFetched(device))
        except (FetchError, XmlDecodeError, DeviceDescriptionError) as e:
            log.warning("Device details unavailable", error_type=type(e).__name__, error=str(e))
        finally:
            if self._inflight.get(url) is asyncio.current_task():
                del self._inflight[url]

    async def request_media_state(self, device_id: str, soap_action: str, envelope: str) -> MediaInfo | None:
        """
        POST a caller-built SOAP envelope to a device's AVTransport endpoint.

        The parsed result is published on ``EventTopic.MEDIA_INFO`` and returned.
        Unknown devices and failed requests give None.
        """
        log = self.logger.bind(device_id=device_id, soap_action=soap_action)
        device = self.registry.get(device_id)
        if device is None or not device.media_state_url:
            log.warning("No media state endpoint for device")
            return None
        try:
            body = await self.http_client.soap_request(device.media_state_url, soap_action, envelope)
            media_info = MediaInfo.from_xml(parse(body), device_id, base_url=device.info_url)
        except (FetchError, XmlDecodeError, SoapResponseError) as e:
            log.warning("Media state request failed", error_type=type(e).__name__, error=str(e))
            return None
        if self._running:
            self.event_bus.publish(EventTopic.MEDIA_INFO, media_info)
        return media_info

    def _on_datagram(self, data: bytes, addr: Address) -> None:
        if self._running:
            self._enqueue(_DatagramReceived(data, addr))

    def _enqueue(self, message: Any) -> None:
        if self._running and self._queue is not None:
            self._queue.put_nowait(message)

    async def _process_events(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if not self._running:
                    continue
                if isinstance(message, _DatagramReceived):
                    self._handle_datagram(message)
                elif isinstance(message, _DetailsFetched):
                    self.registry.upsert(message.device)
                elif isinstance(message, _SweepDue):
                    self._sweep()
            except Exception as e:
                self.logger.exception("Failed to process discovery event", event=type(message).__name__, error=str(e))
            finally:
                self._queue.task_done()

    def _handle_datagram(self, message: _DatagramReceived) -> None:
        if is_notification(message.data):
            notification = parse_notification(message.data)
            if notification is None:
                return
            if notification.advertisement_type == AdvertisementType.GOODBYE:
                self.registry.remove(notification.id)
            else:
                self.request_device_details(notification.location, refresh=True)
            return

        if not message.data.startswith(b"HTTP/"):
            # M-SEARCH from other control points on the group
            return
        response = parse_response(message.data)
        if response is None:
            return
        if response.id not in self.registry and response.location not in self._inflight:
            self.logger.debug("New device answered search", device_id=response.id, location=response.location)
            self.request_device_details(response.location)

    def _ensure_sweep(self, delay: float) -> None:
        if self._sweep_timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._sweep_timer = loop.call_later(delay, self._enqueue, _SweepDue())

    def _sweep(self) -> None:
        self._sweep_timer = None
        # last_updated is wall-clock; call_later only supplies the delay, and
        # expiry is always re-checked here against time.time().
        now = time.time()
        for device_id, info_url in self.registry.sweep_decayed(now):
            self.logger.info("Re-querying decayed device", device_id=device_id, info_url=info_url)
            self.request_device_details(info_url)
        if self._sweep_timer is None and len(self.registry):
            oldest = min(device.last_updated for device in self.registry.snapshot())
            self._ensure_sweep(max(oldest + self.registry.max_lifetime - now, 0.0))

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until in-flight bursts and fetches finish and their results are applied."""
        while self._running:
            pending = [task for task in self._active_tasks if not task.done()]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if self._queue is not None:
                await self._queue.join()
            if not any(not task.done() for task in self._active_tasks):
                return

    async def stop(self) -> None:
        """Leave the multicast group and cancel every background task."""
        if self.state is ServiceState.STOPPED:
            return
        self._running = False
        self.logger.info("Stopping discovery service.")

        if self._multicast is not None:
            self._multicast.close()
            self._multicast = None
        for handle in self._search_handles:
            handle.close()
        self._search_handles.clear()

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None

        tasks = list(self._active_tasks)
        if self._processor_task is not None:
            tasks.append(self._processor_task)
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._active_tasks.clear()
        self._inflight.clear()
        self._processor_task = None
        self._queue = None

        if self._owns_http_client:
            await self.http_client.close()
        self.state = ServiceState.STOPPED
        self.logger.info("Discovery service stopped.")
