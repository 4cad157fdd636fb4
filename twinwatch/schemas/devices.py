from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from twinwatch.schemas.faults import Coordinates, SensorType, as_naive_utc


class DeviceType(str, Enum):
    SENSOR = "SENSOR"
    ACTUATOR = "ACTUATOR"
    GATEWAY = "GATEWAY"
    CAMERA = "CAMERA"
    WEATHER_STATION = "WEATHER_STATION"


class DeviceStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    ERROR = "ERROR"
    MAINTENANCE = "MAINTENANCE"


class DeviceIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())

    name: str = Field(..., examples=["Pump-Hall-A"])
    type: DeviceType
    model_id: Optional[str] = Field(None, examples=["M1"])
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeviceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    name: str
    type: str
    status: str
    model_id: Optional[str] = None
    last_seen: Optional[datetime] = None
    battery_level: Optional[int] = None
    signal_strength: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata", "attributes"))
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class SensorDataIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())

    device_id: str = Field(..., examples=["dev-01"])
    model_id: str = Field(..., examples=["M1"])
    sensor_type: SensorType
    value: float = Field(..., examples=[72.4])
    unit: str = Field("", examples=["°C"])
    timestamp: Optional[datetime] = None
    coordinates: Optional[Coordinates] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)
