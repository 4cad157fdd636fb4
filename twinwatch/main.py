# twinwatch/main.py
import asyncio
import logging
from datetime import datetime
from typing import Optional, List

from fastapi import FastAPI, Depends, Header, HTTPException, Request, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from twinwatch.config import get_settings
from twinwatch.db.repository import DocumentRepository, RepositoryError
from twinwatch.db.session import AsyncSessionLocal, engine
from twinwatch.models.models import Base
from twinwatch.schemas.devices import DeviceIn, DeviceOut, SensorDataIn
from twinwatch.schemas.faults import (
    DetectedFault,
    FaultRule,
    FaultStats,
    FaultStatus,
    ManualFaultIn,
    ResolveIn,
    RulePatch,
    SensorReading,
)
from twinwatch.services.faults import FaultDetectionService, FaultPersistenceError
from twinwatch.services.notifications import FAULT_TOPIC, FaultBroker, FaultNotifier
from twinwatch.services.rules import RuleStore
from twinwatch.services.scheduler import FaultSweepScheduler
from twinwatch.services.sensor_data import SensorDataService

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("twinwatch.api")

# ------ Wiring ------
rule_store = RuleStore()
broker = FaultBroker()
repository = DocumentRepository(AsyncSessionLocal)
fault_service = FaultDetectionService(repository, rule_store, FaultNotifier(broker, settings), settings=settings)
sensor_service = SensorDataService(repository, fault_service, broker)
scheduler = FaultSweepScheduler(fault_service, settings.sweep_interval_minutes, settings.sweep_window_seconds)


def get_fault_service() -> FaultDetectionService:
    return fault_service


def get_sensor_service() -> SensorDataService:
    return sensor_service


def get_rule_store() -> RuleStore:
    return rule_store


def get_broker() -> FaultBroker:
    return broker


# ------ Security (simple header key) ------
async def require_key(request: Request):
    key = request.headers.get("x-api-key")
    if key != settings.api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")


# ------ App ------
app = FastAPI(title="TwinWatch")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FaultPersistenceError)
async def fault_persistence_error(request: Request, exc: FaultPersistenceError):
    logger.error("Fault processing failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Fault processing failed"})


@app.exception_handler(RepositoryError)
async def repository_error(request: Request, exc: RepositoryError):
    logger.error("Storage error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.on_event("startup")
async def on_startup():
    # create tables on first start
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.sweep_enabled:
        scheduler.start()


@app.on_event("shutdown")
async def on_shutdown():
    await scheduler.stop()


@app.get("/")
def root():
    return {"message": "TwinWatch backend is running"}


@app.get("/health")
async def health(service: FaultDetectionService = Depends(get_fault_service)):
    try:
        stats = await service.fault_stats()
    except RepositoryError as exc:
        logger.warning("Health check could not reach storage: %s", exc)
        return {"status": "degraded", "rules": len(service.rules)}
    return {
        "status": "ok",
        "rules": len(service.rules),
        "active_faults": stats.active,
        "system_health": stats.system_health,
        "sweep_running": scheduler.running,
    }


# ------ Schemas ------
class IngestResult(BaseModel):
    reading: SensorReading
    faults: List[DetectedFault]


class SweepResult(BaseModel):
    faults_detected: int


# ------ Devices & readings ------
@app.post("/devices", dependencies=[Depends(require_key)], response_model=DeviceOut, status_code=201)
async def create_device(
    payload: DeviceIn,
    actor_id: Optional[str] = Header(None, alias="x-user-id"),
    service: SensorDataService = Depends(get_sensor_service),
):
    return DeviceOut.model_validate(await service.create_device(payload, actor_id))


@app.get("/devices/{device_id}", dependencies=[Depends(require_key)], response_model=DeviceOut)
async def get_device(device_id: str, service: SensorDataService = Depends(get_sensor_service)):
    device = await service.get_device(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return DeviceOut.model_validate(device)


@app.get("/devices/{device_id}/sensor-data", dependencies=[Depends(require_key)], response_model=List[SensorReading])
async def device_sensor_data(
    device_id: str,
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    service: SensorDataService = Depends(get_sensor_service),
):
    """Latest reading per sensor type for one device."""
    return await service.latest_by_type(device_id, start, end)


@app.post("/sensor-data", dependencies=[Depends(require_key)], response_model=IngestResult, status_code=201)
async def add_sensor_data(payload: SensorDataIn, service: SensorDataService = Depends(get_sensor_service)):
    reading, faults = await service.ingest(payload)
    return IngestResult(reading=reading, faults=faults)


@app.post("/sensor-data/bulk", dependencies=[Depends(require_key)], response_model=List[IngestResult], status_code=201)
async def add_sensor_data_bulk(
    payloads: List[SensorDataIn],
    service: SensorDataService = Depends(get_sensor_service),
):
    results = await service.ingest_bulk(payloads)
    return [IngestResult(reading=reading, faults=faults) for reading, faults in results]


# ------ Faults ------
@app.get("/faults", dependencies=[Depends(require_key)], response_model=List[DetectedFault])
async def list_faults(
    limit: int = Query(default=settings.faults_page_limit, ge=1, le=500),
    offset: int = Query(0, ge=0),
    status: Optional[FaultStatus] = Query(None, description="ACTIVE, ACKNOWLEDGED, RESOLVED, FALSE_POSITIVE"),
    service: FaultDetectionService = Depends(get_fault_service),
):
    return await service.list_faults(limit, offset, status.value if status else None)


@app.get("/faults/stats", dependencies=[Depends(require_key)], response_model=FaultStats)
async def fault_stats(service: FaultDetectionService = Depends(get_fault_service)):
    return await service.fault_stats()


@app.get("/faults/model/{model_id}", dependencies=[Depends(require_key)], response_model=List[DetectedFault])
async def faults_by_model(model_id: str, service: FaultDetectionService = Depends(get_fault_service)):
    return await service.faults_by_model(model_id)


@app.get("/faults/device/{device_id}", dependencies=[Depends(require_key)], response_model=List[DetectedFault])
async def faults_by_device(device_id: str, service: FaultDetectionService = Depends(get_fault_service)):
    return await service.faults_by_device(device_id)


@app.get("/faults/{fault_id}", dependencies=[Depends(require_key)], response_model=DetectedFault)
async def get_fault(fault_id: str, service: FaultDetectionService = Depends(get_fault_service)):
    fault = await service.get_fault(fault_id)
    if fault is None:
        raise HTTPException(status_code=404, detail="Fault not found")
    return fault


@app.post("/faults", dependencies=[Depends(require_key)], response_model=DetectedFault, status_code=201)
async def create_fault(
    payload: ManualFaultIn,
    actor_id: Optional[str] = Header(None, alias="x-user-id"),
    service: FaultDetectionService = Depends(get_fault_service),
):
    return await service.create_manual_fault(payload, actor_id)


@app.post("/faults/check", dependencies=[Depends(require_key)], response_model=SweepResult)
async def run_fault_check(service: FaultDetectionService = Depends(get_fault_service)):
    """Runs the scheduled sweep right away."""
    return SweepResult(faults_detected=await service.run_scheduled_check())


@app.post("/faults/{fault_id}/acknowledge", dependencies=[Depends(require_key)], response_model=DetectedFault)
async def acknowledge_fault(
    fault_id: str,
    actor_id: Optional[str] = Header(None, alias="x-user-id"),
    service: FaultDetectionService = Depends(get_fault_service),
):
    fault = await service.acknowledge(fault_id, actor_id)
    if fault is None:
        raise HTTPException(status_code=404, detail="Fault not found")
    return fault


@app.post("/faults/{fault_id}/resolve", dependencies=[Depends(require_key)], response_model=DetectedFault)
async def resolve_fault(
    fault_id: str,
    payload: Optional[ResolveIn] = None,
    actor_id: Optional[str] = Header(None, alias="x-user-id"),
    service: FaultDetectionService = Depends(get_fault_service),
):
    resolution = payload.resolution if payload is not None else None
    fault = await service.resolve(fault_id, actor_id, resolution)
    if fault is None:
        raise HTTPException(status_code=404, detail="Fault not found")
    return fault


# ------ Rules ------
@app.get("/rules", dependencies=[Depends(require_key)], response_model=List[FaultRule])
async def list_rules(rules: RuleStore = Depends(get_rule_store)):
    return rules.all()


@app.patch("/rules/{rule_id}", dependencies=[Depends(require_key)], response_model=FaultRule)
async def update_rule(rule_id: str, patch: RulePatch, rules: RuleStore = Depends(get_rule_store)):
    rule = rules.set_active(rule_id, patch.is_active)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    logger.info("Rule %s is_active=%s", rule_id, patch.is_active)
    return rule


# ------ Subscriptions ------
async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@app.websocket("/ws/faults")
async def fault_feed(websocket: WebSocket, hub: FaultBroker = Depends(get_broker)):
    if websocket.query_params.get("key") != settings.api_key:
        await websocket.close(code=1008)
        return
    await websocket.accept()
    async with hub.subscription(FAULT_TOPIC) as queue:
        # watch the receive side so a closed client frees its queue right away
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            while True:
                next_message = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({next_message, disconnected}, return_when=asyncio.FIRST_COMPLETED)
                if disconnected in done:
                    next_message.cancel()
                    break
                await websocket.send_json(next_message.result())
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
    logger.info("Fault feed subscriber disconnected")
