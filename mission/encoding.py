"""
encoding.py

Numeric encoding and command/frame policy shared by the mission builders
"""

import math

from mission.errors import InvalidCoordinate, InvalidMissionShape
from mission.models import MissionCommand, MissionFrame

DEGREE_SCALE = 10_000_000
TAKEOFF_MIN_PITCH_DEG = 15.0


def encode_degrees(degrees: float) -> int:
    """Convert degrees to MAVLink fixed point (deg * 1e7), truncating toward zero"""
    if not math.isfinite(degrees):
        raise InvalidCoordinate(f"Coordinate must be finite, got {degrees}")
    return int(degrees * DEGREE_SCALE)


def validate_position(latitude: float, longitude: float, altitude: float = 0.0):
    """Reject coordinates that cannot be encoded"""
    for name, value in (('latitude', latitude), ('longitude', longitude),
                        ('altitude', altitude)):
        if value is None or not math.isfinite(value):
            raise InvalidCoordinate(f"{name} must be finite, got {value}")

    if not -90.0 <= latitude <= 90.0:
        raise InvalidCoordinate(f"latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidCoordinate(f"longitude out of range: {longitude}")


def command_for_order(order: int, count: int) -> MissionCommand:
    """Select the command code from a waypoint's position in the mission.

    The first waypoint takes off, the last one lands, everything in between
    is a plain waypoint. A single-waypoint mission resolves to TAKEOFF.
    """
    if order < 1 or order > count:
        raise InvalidMissionShape(f"Waypoint order {order} outside 1..{count}")

    if order == 1:
        return MissionCommand.TAKEOFF
    if order == count:
        return MissionCommand.LAND
    return MissionCommand.WAYPOINT


def frame_for_command(command: MissionCommand) -> MissionFrame:
    # DO_JUMP carries no position
    if command == MissionCommand.JUMP:
        return MissionFrame.GLOBAL
    return MissionFrame.GLOBAL_RELATIVE_ALT


def command_params(command: MissionCommand):
    """Return param1..param4 for a positional command"""
    if command == MissionCommand.TAKEOFF:
        return (TAKEOFF_MIN_PITCH_DEG, 0.0, 0.0, 0.0)
    return (0.0, 0.0, 0.0, 0.0)
