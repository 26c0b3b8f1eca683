"""
In-memory roster of known devices with decay.
"""
import structlog

from ..events import EventBus, EventTopic
from ..models.device import Device

logger = structlog.get_logger(__name__)

DEFAULT_MAX_LIFETIME_SECONDS = 300.0


class DeviceRegistry:
    """
    Single owner of device state, keyed by device id in insertion order.

    Consumers only ever receive copies. Every change to the set of known ids
    is published on ``EventTopic.DEVICES`` with the full roster; refreshing an
    already-known device is silent.
    """

    def __init__(self, event_bus: EventBus | None = None, max_lifetime: float = DEFAULT_MAX_LIFETIME_SECONDS):
        self.event_bus = event_bus or EventBus()
        self.max_lifetime = max_lifetime
        self._devices: dict[str, Device] = {}
        self.logger = logger.bind(component="DeviceRegistry")

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def get(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return device.model_copy(deep=True) if device is not None else None

    def snapshot(self) -> list[Device]:
        return [device.model_copy(deep=True) for device in self._devices.values()]

    def upsert(self, device: Device) -> bool:
        """
        Insert or refresh a device.

        Returns True only when the id was unseen. A known device is replaced
        unless the stored copy carries a newer ``last_updated``.
        """
        current = self._devices.get(device.id)
        if current is None:
            self._devices[device.id] = device.model_copy(deep=True)
            self.logger.info("Device added", device_id=device.id, room_name=device.room_name, info_url=device.info_url)
            self._publish()
            return True
        if device.last_updated < current.last_updated:
            self.logger.debug("Ignoring stale device details", device_id=device.id,
                              incoming=device.last_updated, stored=current.last_updated)
            return False
        self._devices[device.id] = device.model_copy(deep=True)
        return False

    def remove(self, device_id: str) -> bool:
        if self._devices.pop(device_id, None) is None:
            return False
        self.logger.info("Device removed", device_id=device_id)
        self._publish()
        return True

    def sweep_decayed(self, now: float) -> list[tuple[str, str]]:
        """
        Drop every device not refreshed within ``max_lifetime`` of ``now``.

        Returns (id, info_url) pairs so the caller can re-query them.
        """
        cutoff = now - self.max_lifetime
        expired = [(device.id, device.info_url) for device in self._devices.values() if device.last_updated <= cutoff]
        for device_id, _ in expired:
            self.logger.info("Device decayed", device_id=device_id)
            self.remove(device_id)
        return expired

    def clear(self) -> None:
        if not self._devices:
            return
        self._devices.clear()
        self._publish()

    def _publish(self) -> None:
        self.event_bus.publish(EventTopic.DEVICES, self.snapshot())
