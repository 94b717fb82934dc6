"""
models.py

Core data models: waypoints, missions, compiled mission items and the
vehicle handle that borrows a link for the duration of a launch
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence, Union

from pymavlink import mavutil


# ============================================================================
# ENUMERATIONS
# ============================================================================

class MissionFrame(IntEnum):
    """Coordinate frame attached to a mission item"""
    GLOBAL = mavutil.mavlink.MAV_FRAME_GLOBAL  # unframed/misc commands
    GLOBAL_RELATIVE_ALT = mavutil.mavlink.MAV_FRAME_GLOBAL_RELATIVE_ALT_INT


class MissionCommand(IntEnum):
    """MAV_CMD code carried by a mission item"""
    WAYPOINT = mavutil.mavlink.MAV_CMD_NAV_WAYPOINT
    TAKEOFF = mavutil.mavlink.MAV_CMD_NAV_TAKEOFF
    LAND = mavutil.mavlink.MAV_CMD_NAV_LAND
    JUMP = mavutil.mavlink.MAV_CMD_DO_JUMP


class LaunchState(str, Enum):
    IDLE = "idle"
    CLEARING = "clearing"
    UPLOADING = "uploading"
    CONFIGURING = "configuring"
    SETTLING = "settling"
    ARMING = "arming"
    STARTING = "starting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


MISSION_TYPE_MISSION = mavutil.mavlink.MAV_MISSION_TYPE_MISSION


# ============================================================================
# MISSION DATA
# ============================================================================

@dataclass(frozen=True)
class Waypoint:
    order: int
    latitude: float
    longitude: float
    altitude: float  # meters, relative to home


@dataclass
class Mission:
    id: str
    waypoints: List[Waypoint] = field(default_factory=list)


@dataclass(frozen=True)
class Position:
    """Single telemetry position sample"""
    latitude_deg: float
    longitude_deg: float
    relative_altitude_m: float = 0.0
    absolute_altitude_m: float = 0.0


@dataclass(frozen=True)
class MissionItem:
    """Protocol-ready mission item (MISSION_ITEM_INT layout)"""
    sequence_index: int
    frame: MissionFrame
    command: MissionCommand
    is_current: bool
    autocontinue: bool
    param1: float
    param2: float
    param3: float
    param4: float
    latitude: int  # degrees * 1e7
    longitude: int  # degrees * 1e7
    altitude: float
    mission_type: int = MISSION_TYPE_MISSION

    def to_dict(self):
        """Convert to dictionary"""
        return {
            'seq': self.sequence_index,
            'frame': self.frame.name,
            'command': self.command.name,
            'current': self.is_current,
            'autocontinue': self.autocontinue,
            'params': [self.param1, self.param2, self.param3, self.param4],
            'x': self.latitude,
            'y': self.longitude,
            'z': self.altitude,
            'mission_type': self.mission_type
        }


# ============================================================================
# VEHICLE LINK
# ============================================================================

class VehicleLink(Protocol):
    """Asynchronous operations a launch borrows from the vehicle connection.

    Every operation reports a single terminal outcome: it returns on success
    and raises on failure.
    """

    async def read_position(self) -> Position: ...

    def position_stream(self) -> AsyncIterator[Position]: ...

    def flight_mode_stream(self) -> AsyncIterator[str]: ...

    async def clear_mission(self) -> None: ...

    async def upload_mission(self, items: Sequence[MissionItem]) -> None: ...

    async def set_parameter(self, name: str, value: Union[int, float]) -> None: ...

    async def arm(self) -> None: ...

    async def start_mission(self) -> None: ...

    async def land(self) -> None: ...


@dataclass
class Vehicle:
    id: str
    link: Any  # VehicleLink, owned by whoever connected it
    active_mission: Optional[Mission] = None
