from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FaultType(str, Enum):
    PERFORMANCE = "PERFORMANCE"
    STRUCTURAL = "STRUCTURAL"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    CONNECTIVITY = "CONNECTIVITY"
    DATA_QUALITY = "DATA_QUALITY"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FaultStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"


TERMINAL_STATUSES = {FaultStatus.RESOLVED.value, FaultStatus.FALSE_POSITIVE.value}


class SensorType(str, Enum):
    TEMPERATURE = "TEMPERATURE"
    HUMIDITY = "HUMIDITY"
    PRESSURE = "PRESSURE"
    VIBRATION = "VIBRATION"
    FLOW = "FLOW"
    POWER = "POWER"
    VOLTAGE = "VOLTAGE"
    CURRENT = "CURRENT"
    ACCELERATION = "ACCELERATION"
    GYROSCOPE = "GYROSCOPE"


class SensorStatus(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    OFFLINE = "OFFLINE"


class Operator(str, Enum):
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    NE = "ne"
    BETWEEN = "between"
    OUTSIDE = "outside"


RANGE_OPERATORS = {Operator.BETWEEN.value, Operator.OUTSIDE.value}


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; aware inputs get converted."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Coordinates(BaseModel):
    latitude: float
    longitude: float
    elevation: Optional[float] = None


class Condition(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    parameter: str = Field(..., description="Logical sensor parameter, e.g. 'temperature'")
    operator: Operator
    value: Union[float, Tuple[float, float]]
    duration: Optional[float] = Field(
        None,
        description="Reserved: sustained duration in seconds. Not evaluated yet.",
    )

    @model_validator(mode="after")
    def check_value_shape(self) -> "Condition":
        is_range = isinstance(self.value, tuple)
        if self.operator in RANGE_OPERATORS:
            if not is_range:
                raise ValueError(f"Operator '{self.operator}' needs a [low, high] pair")
            if self.value[0] > self.value[1]:
                raise ValueError("Range low bound must not exceed the high bound")
        elif is_range:
            raise ValueError(f"Operator '{self.operator}' needs a single number")
        return self


class FaultRule(BaseModel):
    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())

    id: str
    name: str
    description: str = ""
    model_id: Optional[str] = Field(None, description="Restricts the rule to one model; None applies to all")
    fault_type: FaultType
    severity: Severity
    conditions: list[Condition] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_triggered: Optional[datetime] = None


class SensorReading(BaseModel):
    model_config = ConfigDict(use_enum_values=True, from_attributes=True, validate_default=True, protected_namespaces=())

    id: Optional[str] = None
    model_id: str
    device_id: str
    sensor_type: SensorType
    value: float
    unit: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    status: SensorStatus = SensorStatus.NORMAL
    coordinates: Optional[Coordinates] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class RootCause(BaseModel):
    primary_cause: str
    contributing_factors: list[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)


class DiagnosticData(BaseModel):
    parameters: dict[str, float] = Field(default_factory=dict, description="Latest value per sensor type")
    trends: dict[str, list[float]] = Field(default_factory=dict, description="Values per sensor type, newest first")
    correlations: list[dict[str, Any]] = Field(default_factory=list)
    root_cause: RootCause
    resolution: Optional[str] = None


class DetectedFault(BaseModel):
    model_config = ConfigDict(use_enum_values=True, from_attributes=True, validate_default=True, protected_namespaces=())

    id: str
    rule_id: str
    model_id: str
    device_id: Optional[str] = None
    title: str
    description: str = ""
    severity: Severity
    type: FaultType
    status: FaultStatus = FaultStatus.ACTIVE
    detected_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    affected_components: list[str] = Field(default_factory=list)
    diagnostic_data: DiagnosticData
    recommended_actions: list[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump()


# ------ API inputs ------
class ManualFaultIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True, protected_namespaces=())

    model_id: str
    device_id: Optional[str] = None
    title: str
    description: str = ""
    severity: Severity
    type: FaultType
    coordinates: Optional[Coordinates] = None
    affected_components: list[str] = Field(default_factory=list)


class ResolveIn(BaseModel):
    resolution: Optional[str] = Field(None, description="Free-text resolution note")


class RulePatch(BaseModel):
    is_active: bool


class FaultStats(BaseModel):
    total: int
    by_status: dict[str, int]
    active: int
    system_health: int = Field(..., ge=0, le=100)
