from enum import Enum

from pydantic import BaseModel


class BasePydanticModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "use_enum_values": True,
    }


class AdvertisementType(str, Enum):
    """NTS value of an SSDP NOTIFY message."""
    ALIVE = "ssdp:alive"
    UPDATE = "ssdp:update"
    GOODBYE = "ssdp:byebye"


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
