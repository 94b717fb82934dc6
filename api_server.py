# FastAPI Web Server for Mission Launch
# File: api_server.py

"""
Run with: uvicorn api_server:app --port 8000

The vehicle link URL is taken from MISSION_LINK_URL
(default udp:127.0.0.1:14550).
"""

import asyncio
import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from mission.compiler import compile_mission, read_home_position, validate_waypoints
from mission.errors import (
    HomePositionUnavailable,
    InvalidCoordinate,
    InvalidMissionShape,
    NoActiveMission,
    VehicleLinkError,
)
from mission.loader import MissionService, WaypointRecord
from mission.models import Mission, Vehicle
from mission.sequencer import compile_and_launch
from monitoring import TelemetryReporter
from vehicle.mavlink_link import LinkConfig, init_sitl_vehicle

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mission Launch API",
    description="Compile waypoint missions and launch them on a MAVLink vehicle",
    version="1.0.0"
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Connected vehicle (initialized on startup)
vehicle: Optional[Vehicle] = None
reporter: Optional[TelemetryReporter] = None
mission_service = MissionService()

# One launch per vehicle at a time
launch_lock = asyncio.Lock()

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class MissionRequest(BaseModel):
    id: str
    waypoints: List[WaypointRecord]

class CompileRequest(BaseModel):
    waypoints: List[WaypointRecord]

class TakeoffRequest(BaseModel):
    altitude: float = Field(50.0, gt=0)

# ============================================================================
# LIFECYCLE EVENTS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Connect to the vehicle on startup"""
    global vehicle, reporter

    config = LinkConfig(
        connection_url=os.environ.get("MISSION_LINK_URL", LinkConfig.connection_url)
    )
    vehicle = await init_sitl_vehicle(config)
    vehicle.active_mission = mission_service.create_default_mission()

    reporter = TelemetryReporter(vehicle.link, interval=1.0)
    reporter.start()
    logger.info("✅ Mission Launch API Server Started")

@app.on_event("shutdown")
async def shutdown_event():
    """Stop telemetry and close the link"""
    if reporter:
        await reporter.stop()
    if vehicle:
        vehicle.link.close()
    logger.info("🛑 Mission Launch API Server Stopped")

# ============================================================================
# HELPERS
# ============================================================================

def _require_vehicle() -> Vehicle:
    if vehicle is None:
        raise HTTPException(status_code=503, detail="Vehicle not connected")
    return vehicle

def _mission_to_dict(mission: Optional[Mission]):
    if mission is None:
        return None
    return {
        "id": mission.id,
        "waypoints": [
            {"order": wp.order, "lat": wp.latitude, "lon": wp.longitude, "alt": wp.altitude}
            for wp in mission.waypoints
        ]
    }

def _to_waypoints(records: List[WaypointRecord]):
    try:
        return validate_waypoints([record.to_waypoint() for record in records])
    except (InvalidMissionShape, InvalidCoordinate) as e:
        raise HTTPException(status_code=422, detail=str(e))

async def _launch(**kwargs):
    current = _require_vehicle()
    if launch_lock.locked():
        raise HTTPException(status_code=409, detail="A launch is already in progress")

    async with launch_lock:
        try:
            result = await compile_and_launch(current, **kwargs)
        except (InvalidMissionShape, InvalidCoordinate) as e:
            raise HTTPException(status_code=422, detail=str(e))
        except NoActiveMission as e:
            raise HTTPException(status_code=409, detail=str(e))
        except HomePositionUnavailable as e:
            raise HTTPException(status_code=504, detail=str(e))

    if not result.success:
        raise HTTPException(status_code=502, detail={
            "step": result.step,
            "error": str(result.error),
            "states": [state.value for state in result.transitions]
        })

    return {
        "status": result.state.value,
        "items_uploaded": result.items_uploaded,
        "states": [state.value for state in result.transitions]
    }

# ============================================================================
# VEHICLE ENDPOINTS
# ============================================================================

@app.get("/api/vehicle")
async def get_vehicle():
    """Get connected vehicle and its active mission"""
    current = _require_vehicle()
    return {
        "id": current.id,
        "active_mission": _mission_to_dict(current.active_mission),
        "launch_in_progress": launch_lock.locked()
    }

@app.get("/api/vehicle/telemetry")
async def get_vehicle_telemetry():
    """Read one position sample from the vehicle"""
    current = _require_vehicle()
    try:
        pos = await read_home_position(current.link, timeout=5.0)
    except HomePositionUnavailable as e:
        raise HTTPException(status_code=504, detail=str(e))

    return {
        "vehicle_id": current.id,
        "position": {
            "latitude": pos.latitude_deg,
            "longitude": pos.longitude_deg,
            "altitude": pos.relative_altitude_m,
            "absolute_altitude": pos.absolute_altitude_m
        },
        "flight_mode": reporter.last_flight_mode if reporter else None
    }

@app.post("/api/vehicle/takeoff")
async def takeoff(request: TakeoffRequest):
    """Launch the patrol loop at the requested altitude"""
    return await _launch(altitude=request.altitude)

@app.post("/api/vehicle/land")
async def land():
    """Land at the current position"""
    current = _require_vehicle()
    try:
        await current.link.land()
    except VehicleLinkError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "landing"}

# ============================================================================
# MISSION ENDPOINTS
# ============================================================================

@app.post("/api/missions/default")
async def load_default_mission():
    """Make the bundled default mission the active mission"""
    current = _require_vehicle()
    current.active_mission = mission_service.create_default_mission()
    return _mission_to_dict(current.active_mission)

@app.put("/api/missions/active")
async def set_active_mission(request: MissionRequest):
    """Replace the vehicle's active mission"""
    current = _require_vehicle()
    current.active_mission = Mission(id=request.id, waypoints=_to_waypoints(request.waypoints))
    return _mission_to_dict(current.active_mission)

@app.post("/api/missions/compile")
async def compile_preview(request: CompileRequest):
    """Compile waypoints against the current position without uploading"""
    current = _require_vehicle()
    waypoints = _to_waypoints(request.waypoints)
    try:
        home = await read_home_position(current.link, timeout=5.0)
    except HomePositionUnavailable as e:
        raise HTTPException(status_code=504, detail=str(e))

    items = compile_mission(waypoints, home)
    return {"count": len(items), "items": [item.to_dict() for item in items]}

@app.post("/api/missions/launch")
async def launch_mission():
    """Compile and launch the vehicle's active mission"""
    return await _launch()

# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/")
async def root():
    """API root"""
    return {
        "name": "Mission Launch API",
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy" if vehicle is not None else "disconnected",
        "vehicle_id": vehicle.id if vehicle else None,
        "telemetry": reporter.running if reporter else False
    }
