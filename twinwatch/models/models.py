# twinwatch/models/models.py
from datetime import datetime
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON

Base = declarative_base()


class Device(Base):
    __tablename__ = "devices"
    __time_column__ = "last_seen"

    id              = Column(String, primary_key=True)
    name            = Column(String, nullable=False)
    type            = Column(String, nullable=False)                # SENSOR, GATEWAY, ...
    status          = Column(String, default="OFFLINE", index=True)
    model_id        = Column(String, index=True, nullable=True)
    last_seen       = Column(DateTime, default=datetime.utcnow, index=True)
    battery_level   = Column(Integer, nullable=True)                # %
    signal_strength = Column(Integer, nullable=True)                # %
    attributes      = Column(JSON, default=dict)
    created_by      = Column(String, nullable=True)
    created_at      = Column(DateTime, default=datetime.utcnow)


class SensorData(Base):
    """
    Single reading pushed by a device. Also the history source for fault diagnostics.
    """

    __tablename__ = "sensor_data"
    __time_column__ = "timestamp"

    id          = Column(String, primary_key=True)
    device_id   = Column(String, index=True, nullable=False)
    model_id    = Column(String, index=True, nullable=False)
    sensor_type = Column(String, index=True, nullable=False)     # TEMPERATURE, VIBRATION, ...
    value       = Column(Float, nullable=False)
    unit        = Column(String, nullable=False, default="")
    status      = Column(String, default="NORMAL")
    timestamp   = Column(DateTime, default=datetime.utcnow, index=True)
    coordinates = Column(JSON, nullable=True)


class Fault(Base):
    """
    Detected or manually reported fault with its lifecycle metadata.
    """

    __tablename__ = "faults"
    __time_column__ = "detected_at"

    id                  = Column(String, primary_key=True)
    rule_id             = Column(String, index=True, nullable=False)
    model_id            = Column(String, index=True, nullable=False)
    device_id           = Column(String, index=True, nullable=True)
    title               = Column(String, nullable=False)
    description         = Column(String, nullable=False, default="")
    severity            = Column(String, nullable=False)
    type                = Column(String, nullable=False)
    status              = Column(String, index=True, nullable=False, default="ACTIVE")
    detected_at         = Column(DateTime, default=datetime.utcnow, index=True)
    resolved_at         = Column(DateTime, nullable=True)
    acknowledged_at     = Column(DateTime, nullable=True)
    acknowledged_by     = Column(String, nullable=True)
    resolved_by         = Column(String, nullable=True)
    resolution          = Column(String, nullable=True)
    coordinates         = Column(JSON, nullable=True)
    affected_components = Column(JSON, default=list)
    diagnostic_data     = Column(JSON, default=dict)
    recommended_actions = Column(JSON, default=list)
    assigned_to         = Column(String, nullable=True)
    created_by          = Column(String, nullable=True)
