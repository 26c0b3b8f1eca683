"""Tests for the discovery service, driven through fake transport and HTTP doubles."""

import asyncio
import time

import pytest

from sonos_scout.config import Config, DiscoveryConfig
from sonos_scout.discovery import DeviceRegistry, DiscoveryService
from sonos_scout.discovery.ssdp import build_discovery_request
from sonos_scout.events import EventBus, EventTopic
from sonos_scout.exceptions import FetchError, TransportUnavailableError
from sonos_scout.models import Device, MediaInfo, ServiceState

DEVICE_ADDR = ("192.168.1.20", 1900)


class FakeHandle:
    def __init__(self):
        self.sent = []
        self.closed = False

    @property
    def is_closed(self):
        return self.closed

    def send(self, data, addr):
        if self.closed:
            return
        self.sent.append((asyncio.get_running_loop().time(), data, addr))

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, has_socket_support=True, multicast_error=None):
        self.has_socket_support = has_socket_support
        self.multicast_error = multicast_error
        self.multicast = None
        self.multicast_consumer = None
        self.search_consumer = None
        self.search_handles = []
        self.multicast_opens = 0

    async def open_multicast_socket(self, group, port, consumer):
        self.multicast_opens += 1
        if self.multicast_error:
            raise self.multicast_error
        self.multicast_consumer = consumer
        # Both sockets hand datagrams to the same service callback
        self.search_consumer = consumer
        self.multicast = FakeHandle()
        return self.multicast

    async def open_search_socket(self, consumer, timeout):
        self.search_consumer = consumer
        handle = FakeHandle()
        self.search_handles.append(handle)
        return handle


class SlowJoinTransport(FakeTransport):
    def __init__(self):
        super().__init__()
        self.joined = asyncio.Event()

    async def open_multicast_socket(self, group, port, consumer):
        await self.joined.wait()
        return await super().open_multicast_socket(group, port, consumer)


class FakeHttpClient:
    def __init__(self, responses=None):
        self.responses = responses or {}
        self.requests = []
        self.soap_requests = []
        self.gate = None

    async def get_text(self, url):
        self.requests.append(url)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        return self._respond(url)

    async def soap_request(self, url, soap_action, envelope):
        self.soap_requests.append((url, soap_action, envelope))
        return self._respond(url)

    def _respond(self, url):
        response = self.responses.get(url)
        if response is None:
            raise FetchError(f"HTTP error 404 from {url}", url=url, status=404)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        pass


@pytest.fixture
def config():
    return Config(discovery=DiscoveryConfig(burst_interval_seconds=0.01, burst_delays_seconds=[]))


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def http_client(device_description, info_url):
    return FakeHttpClient({info_url: device_description})


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def rosters(event_bus):
    published = []
    event_bus.subscribe(EventTopic.DEVICES, lambda devices: published.append([d.id for d in devices]))
    return published


@pytest.fixture
async def service(config, transport, http_client, event_bus):
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)
    yield service
    await service.stop()


async def test_start_publishes_snapshot_and_runs_burst(service, transport, rosters):
    await service.start()
    await service.drain()

    assert service.state is ServiceState.RUNNING
    assert rosters == [[]]
    assert len(transport.search_handles) == 1
    sends = transport.search_handles[0].sent
    assert len(sends) == 4
    expected = build_discovery_request("urn:schemas-upnp-org:device:ZonePlayer:1", 5)
    assert all(data == expected and addr == ("239.255.255.250", 1900) for _, data, addr in sends)


async def test_burst_sends_four_times_half_a_second_apart(transport, http_client, event_bus):
    config = Config(discovery=DiscoveryConfig(burst_delays_seconds=[]))
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)
    try:
        await service.start()
        await service.drain()
    finally:
        await service.stop()

    times = [sent_at for sent_at, _, _ in transport.search_handles[0].sent]
    assert len(times) == 4
    gaps = [later - earlier for earlier, later in zip(times, times[1:])]
    assert all(0.45 <= gap < 0.8 for gap in gaps)


async def test_follow_up_bursts_are_scheduled(transport, http_client, event_bus):
    config = Config(discovery=DiscoveryConfig(burst_interval_seconds=0.01, burst_delays_seconds=[0.05, 0.1]))
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)
    try:
        await service.start()
        await asyncio.sleep(0.2)
        await service.drain()
        assert len(transport.search_handles) == 3
    finally:
        await service.stop()


async def test_discover_returns_none_when_stopped(service):
    assert service.discover() is None
    assert service.request_device_details("http://h/desc.xml") is None


async def test_search_response_fetches_new_device(service, transport, http_client, search_response, info_url, rosters):
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    assert http_client.requests == [info_url]
    assert rosters == [[], ["RINCON_000E58A0B2C401400"]]
    device = service.registry.get("RINCON_000E58A0B2C401400")
    assert device.info_url == info_url
    assert device.room_name == "Kitchen"


async def test_duplicate_responses_fetch_once(service, transport, http_client, search_response, info_url):
    await service.start()
    for _ in range(3):
        transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    assert http_client.requests == [info_url]


async def test_alive_notification_always_refetches(service, transport, http_client, search_response, notify, info_url, rosters):
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    transport.multicast_consumer(notify("ssdp:alive"), DEVICE_ADDR)
    await service.drain()
    transport.multicast_consumer(notify("ssdp:update"), DEVICE_ADDR)
    await service.drain()

    assert http_client.requests == [info_url, info_url, info_url]
    # Refreshing a known device does not republish the roster
    assert rosters == [[], ["RINCON_000E58A0B2C401400"]]


async def test_byebye_removes_known_device(service, transport, search_response, notify, rosters):
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    transport.multicast_consumer(notify("ssdp:byebye", location=None), DEVICE_ADDR)
    await service.drain()

    assert service.devices == []
    assert rosters == [[], ["RINCON_000E58A0B2C401400"], []]


async def test_byebye_for_unknown_device_is_noop(service, transport, notify, rosters, http_client):
    await service.start()
    transport.multicast_consumer(notify("ssdp:byebye", usn="uuid:RINCON_OTHER"), DEVICE_ADDR)
    await service.drain()

    assert rosters == [[]]
    assert http_client.requests == []


async def test_unknown_subtype_and_noise_are_dropped(service, transport, notify, http_client):
    await service.start()
    transport.multicast_consumer(notify("ssdp:propchange"), DEVICE_ADDR)
    transport.multicast_consumer(build_discovery_request("ssdp:all", 1), DEVICE_ADDR)
    transport.multicast_consumer(b"\x00\x01garbage", DEVICE_ADDR)
    await service.drain()

    assert http_client.requests == []
    assert service.is_running


@pytest.mark.parametrize("body", ["<root><device><friendlyName>x</friendlyName></device></root>", "<root><device"])
async def test_bad_description_is_not_upserted(service, transport, http_client, search_response, info_url, body):
    http_client.responses[info_url] = body
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()

    assert service.devices == []
    assert service.is_running


async def test_fetch_failure_is_isolated(service, transport, http_client, search_response, notify, info_url,
                                        device_description):
    http_client.responses[info_url] = FetchError("connection refused", url=info_url)
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await service.drain()
    assert service.devices == []

    # No retry on its own, but the next announcement recovers the device
    http_client.responses[info_url] = device_description
    transport.multicast_consumer(notify("ssdp:alive"), DEVICE_ADDR)
    await service.drain()
    assert [d.id for d in service.devices] == ["RINCON_000E58A0B2C401400"]


async def test_decay_sweep_requeries_device(transport, http_client, event_bus, rosters, search_response):
    config = Config(discovery=DiscoveryConfig(
        burst_interval_seconds=0.01, burst_delays_seconds=[], device_max_lifetime_seconds=0.2
    ))
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)
    try:
        await service.start()
        transport.search_consumer(search_response, DEVICE_ADDR)
        await service.drain()
        await asyncio.sleep(0.35)
        await service.drain()
    finally:
        await service.stop()

    device_id = "RINCON_000E58A0B2C401400"
    assert rosters[:4] == [[], [device_id], [], [device_id]]
    assert len(http_client.requests) >= 2


async def test_stop_discards_late_completions(service, transport, http_client, search_response):
    http_client.gate = asyncio.Event()
    await service.start()
    transport.search_consumer(search_response, DEVICE_ADDR)
    await asyncio.sleep(0.05)
    assert len(http_client.requests) == 1

    await service.stop()
    http_client.gate.set()
    await asyncio.sleep(0.01)

    assert service.state is ServiceState.STOPPED
    assert service.devices == []
    assert transport.multicast.closed
    assert all(handle.closed for handle in transport.search_handles)
    # Datagrams arriving after stop are ignored
    transport.search_consumer(search_response, DEVICE_ADDR)
    assert service.devices == []


async def test_start_and_stop_are_idempotent(service, transport):
    await service.stop()
    assert service.state is ServiceState.STOPPED

    await service.start()
    await service.start()
    assert transport.multicast_opens == 1

    await service.stop()
    await service.stop()
    assert service.state is ServiceState.STOPPED


async def test_start_without_socket_support(config, http_client, event_bus, rosters):
    service = DiscoveryService(config, transport=FakeTransport(has_socket_support=False),
                               http_client=http_client, event_bus=event_bus)

    await service.start()

    assert service.state is ServiceState.STOPPED
    assert service.last_error
    assert not service.is_running
    assert rosters == []


async def test_start_when_group_cannot_be_joined(config, http_client, event_bus):
    transport = FakeTransport(multicast_error=TransportUnavailableError("Address already in use"))
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)

    await service.start()

    assert service.state is ServiceState.STOPPED
    assert "Address already in use" in service.last_error

    # A later start may succeed
    transport.multicast_error = None
    await service.start()
    assert service.state is ServiceState.RUNNING
    assert service.last_error is None
    await service.stop()


async def test_request_media_state(config, transport, http_client, event_bus, position_info_response):
    control_url = "http://192.168.1.20:1400/MediaRenderer/AVTransport/Control"
    http_client.responses[control_url] = position_info_response
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)
    service.registry.upsert(Device(
        id="RINCON_1", info_url="http://192.168.1.20:1400/xml/device_description.xml", media_state_url=control_url
    ))
    published = []
    event_bus.subscribe(EventTopic.MEDIA_INFO, published.append)

    await service.start()
    try:
        info = await service.request_media_state("RINCON_1", "urn:schemas-upnp-org:service:AVTransport:1#GetPositionInfo", "<e/>")
    finally:
        await service.stop()

    assert isinstance(info, MediaInfo)
    assert info.title == "Teardrop"
    assert published == [info]
    assert http_client.soap_requests == [(control_url, "urn:schemas-upnp-org:service:AVTransport:1#GetPositionInfo", "<e/>")]


async def test_request_media_state_failures(service, http_client, soap_fault_response):
    control_url = "http://192.168.1.21:1400/MediaRenderer/AVTransport/Control"
    service.registry.upsert(Device(id="RINCON_2", info_url="http://192.168.1.21:1400/d.xml", media_state_url=control_url))
    service.registry.upsert(Device(id="RINCON_3", info_url="http://192.168.1.22:1400/d.xml"))
    await service.start()

    assert await service.request_media_state("RINCON_UNKNOWN", "a#b", "<e/>") is None
    assert await service.request_media_state("RINCON_3", "a#b", "<e/>") is None
    # 404 from the fake
    assert await service.request_media_state("RINCON_2", "a#b", "<e/>") is None

    http_client.responses[control_url] = soap_fault_response
    assert await service.request_media_state("RINCON_2", "a#b", "<e/>") is None


async def test_announcements_refetch_while_fetch_in_flight(service, transport, http_client, notify, info_url):
    http_client.gate = asyncio.Event()
    await service.start()

    transport.multicast_consumer(notify("ssdp:alive"), DEVICE_ADDR)
    await asyncio.sleep(0.05)
    transport.multicast_consumer(notify("ssdp:update"), DEVICE_ADDR)
    await asyncio.sleep(0.05)
    assert http_client.requests == [info_url, info_url]

    http_client.gate.set()
    await service.drain()
    assert [d.id for d in service.devices] == ["RINCON_000E58A0B2C401400"]
    assert service._inflight == {}


async def test_search_response_joins_fetch_in_flight(service, transport, http_client, search_response, info_url):
    http_client.gate = asyncio.Event()
    await service.start()

    transport.search_consumer(search_response, DEVICE_ADDR)
    await asyncio.sleep(0.05)
    transport.search_consumer(search_response, DEVICE_ADDR)
    await asyncio.sleep(0.05)
    assert http_client.requests == [info_url]

    http_client.gate.set()
    await service.drain()


async def test_stop_during_start_leaves_service_stopped(config, http_client, event_bus, rosters):
    transport = SlowJoinTransport()
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)

    starting = asyncio.create_task(service.start())
    await asyncio.sleep(0)
    assert service.state is ServiceState.STARTING

    await service.stop()
    transport.joined.set()
    await starting

    assert service.state is ServiceState.STOPPED
    assert not service.is_running
    assert transport.multicast.closed
    assert transport.search_handles == []
    assert rosters == []
    assert service.discover() is None


async def test_restart_during_start_keeps_only_latest_start(config, http_client, event_bus):
    transport = SlowJoinTransport()
    service = DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus)

    first = asyncio.create_task(service.start())
    await asyncio.sleep(0)
    await service.stop()
    second = asyncio.create_task(service.start())
    await asyncio.sleep(0)

    transport.joined.set()
    await asyncio.gather(first, second)
    try:
        assert service.state is ServiceState.RUNNING
        assert transport.multicast_opens == 2
        assert not service._multicast.closed
    finally:
        await service.stop()


async def test_early_sweep_reschedules_at_earliest_expiry(service):
    await service.start()
    service.registry.upsert(Device(id="RINCON_1", info_url="http://192.168.1.20:1400/d.xml", last_updated=time.time()))

    service._sweep()

    assert [d.id for d in service.devices] == ["RINCON_1"]
    assert service._sweep_timer is not None
    remaining = service._sweep_timer.when() - asyncio.get_running_loop().time()
    max_lifetime = service.registry.max_lifetime
    assert max_lifetime - 5 < remaining <= max_lifetime


def test_registry_and_event_bus_must_agree(config, transport, http_client, event_bus):
    registry = DeviceRegistry(event_bus=EventBus())
    with pytest.raises(ValueError):
        DiscoveryService(config, transport=transport, http_client=http_client, event_bus=event_bus, registry=registry)

    shared = DiscoveryService(config, transport=transport, http_client=http_client, registry=registry)
    assert shared.event_bus is registry.event_bus
    same = DiscoveryService(config, transport=transport, http_client=http_client,
                            event_bus=registry.event_bus, registry=registry)
    assert same.event_bus is registry.event_bus
