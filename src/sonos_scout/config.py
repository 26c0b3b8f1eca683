"""Configuration management for sonos-scout."""

import json
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DiscoveryConfig(BaseModel):
    """Configuration for SSDP discovery and the device cache."""

    multicast_group: str = Field(default="239.255.255.250", description="SSDP multicast group address.")
    multicast_port: int = Field(default=1900, ge=1, le=65535, description="Well-known SSDP port.")
    search_target: str = Field(default="urn:schemas-upnp-org:device:ZonePlayer:1", description="SSDP search target (ST) used in M-SEARCH requests.")
    max_wait_seconds: int = Field(default=5, ge=1, le=120, description="MX value: how long devices may wait before answering a search.")

    burst_count: int = Field(default=4, ge=1, le=20, description="Number of times each M-SEARCH is sent in one discovery burst.")
    burst_interval_seconds: float = Field(default=0.5, gt=0, le=10, description="Delay between the sends of one burst.")
    burst_delays_seconds: List[float] = Field(default_factory=lambda: [3.0, 10.0], description="Extra bursts after start, in seconds from start.")
    search_socket_timeout_seconds: float = Field(default=30.0, gt=0, le=600, description="Lifetime of the socket that collects search responses.")

    device_max_lifetime_seconds: float = Field(default=300.0, gt=0, description="Devices not refreshed within this window are dropped and re-queried.")


class HttpClientConfig(BaseModel):
    """Configuration for HTTP requests to devices."""
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Total timeout for one request to a device.")
    connect_timeout_seconds: float = Field(default=5.0, gt=0, description="Timeout for establishing a connection to a device.")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format ('json' or 'console')")


class Config(BaseSettings):
    """Main configuration for sonos-scout. Loads from environment variables prefixed with SONOS_SCOUT_."""

    model_config = SettingsConfigDict(
        env_prefix='SONOS_SCOUT_',
        env_nested_delimiter='__', # e.g., SONOS_SCOUT_DISCOVERY__MAX_WAIT_SECONDS
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    http: HttpClientConfig = Field(default_factory=HttpClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        This does not layer with environment variables.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
