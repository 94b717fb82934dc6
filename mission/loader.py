"""
loader.py

Waypoint source: reads missions from JSON documents of the form
[{"order": 1, "lat": ..., "lon": ..., "alt": ...}, ...]
"""

import logging
from pathlib import Path
from typing import List, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from mission.compiler import validate_waypoints
from mission.errors import InvalidMissionShape
from mission.models import Mission, Waypoint

logger = logging.getLogger(__name__)

DEFAULT_MISSION_FILE = Path(__file__).parent / "missions" / "default_mission_wps.json"
DEFAULT_MISSION_ID = "Mission-mock-id"


class WaypointRecord(BaseModel):
    order: int
    lat: float
    lon: float
    alt: float = 0.0

    def to_waypoint(self) -> Waypoint:
        return Waypoint(order=self.order, latitude=self.lat,
                        longitude=self.lon, altitude=self.alt)


_records = TypeAdapter(List[WaypointRecord])


def parse_waypoints(document: Union[str, bytes]) -> List[Waypoint]:
    """Parse and validate a waypoint document"""
    try:
        records = _records.validate_json(document)
    except ValidationError as e:
        raise InvalidMissionShape(f"Malformed waypoint document: {e}") from e

    return validate_waypoints([record.to_waypoint() for record in records])


def load_mission(path: Union[str, Path], mission_id: str) -> Mission:
    """Load a mission from a waypoint JSON file"""
    path = Path(path)
    waypoints = parse_waypoints(path.read_bytes())
    logger.info(f"Loaded mission {mission_id}: {len(waypoints)} waypoints from {path.name}")
    return Mission(id=mission_id, waypoints=waypoints)


class MissionService:
    """Supplies missions to the vehicle"""

    def __init__(self, default_file: Union[str, Path] = DEFAULT_MISSION_FILE):
        self.default_file = Path(default_file)

    def create_default_mission(self) -> Mission:
        return load_mission(self.default_file, DEFAULT_MISSION_ID)
