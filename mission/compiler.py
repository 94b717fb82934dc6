"""
compiler.py

Mission compiler: turns an ordered waypoint list (or a patrol altitude) into
the MAVLink mission items uploaded to the vehicle

Item 0 is always a synthetic home anchor built from a live position sample,
the autopilot treats sequence 0 as home and never flies it.
"""

import asyncio
import logging
from typing import List, Sequence

from mission.encoding import (
    TAKEOFF_MIN_PITCH_DEG,
    command_for_order,
    command_params,
    encode_degrees,
    frame_for_command,
    validate_position,
)
from mission.errors import HomePositionUnavailable, InvalidMissionShape
from mission.models import MissionCommand, MissionItem, Position, Waypoint

logger = logging.getLogger(__name__)

HOME_POSITION_TIMEOUT = 10.0  # seconds
PATROL_OFFSET_DEG = 0.001
PATROL_LOOP_TARGET = 2
REPEAT_FOREVER = -1


async def read_home_position(link, timeout: float = HOME_POSITION_TIMEOUT) -> Position:
    """Wait for exactly one position sample to anchor the home item"""
    logger.info("Waiting for home position...")
    try:
        position = await asyncio.wait_for(link.read_position(), timeout)
    except asyncio.TimeoutError:
        raise HomePositionUnavailable(
            f"No position sample within {timeout:g}s") from None
    except Exception as e:
        raise HomePositionUnavailable(f"Position read failed: {e}") from e

    logger.info(
        f"✓ Home position: Lat={position.latitude_deg:.6f}, "
        f"Lon={position.longitude_deg:.6f}"
    )
    return position


def validate_waypoints(waypoints: Sequence[Waypoint]) -> List[Waypoint]:
    """Check order invariants and return the waypoints sorted by order"""
    if not waypoints:
        raise InvalidMissionShape("Mission has no waypoints")

    ordered = sorted(waypoints, key=lambda wp: wp.order)
    orders = [wp.order for wp in ordered]
    expected = list(range(1, len(ordered) + 1))

    if orders != expected:
        raise InvalidMissionShape(
            f"Waypoint orders must be contiguous 1..{len(ordered)}, got {orders}")

    for wp in ordered:
        validate_position(wp.latitude, wp.longitude, wp.altitude)

    return ordered


def home_item(home: Position) -> MissionItem:
    validate_position(home.latitude_deg, home.longitude_deg)
    return MissionItem(
        sequence_index=0,
        frame=frame_for_command(MissionCommand.WAYPOINT),
        command=MissionCommand.WAYPOINT,
        is_current=False,
        autocontinue=True,
        param1=0.0, param2=0.0, param3=0.0, param4=0.0,
        latitude=encode_degrees(home.latitude_deg),
        longitude=encode_degrees(home.longitude_deg),
        altitude=0.0
    )


def compile_mission(waypoints: Sequence[Waypoint], home: Position) -> List[MissionItem]:
    """
    Compile waypoints into mission items

    Args:
        waypoints: Waypoints with contiguous orders 1..N (any input order)
        home: Position sampled from the vehicle just before compiling

    Returns:
        List[MissionItem]: N + 1 items, sequence 0 being the home anchor
    """
    ordered = validate_waypoints(waypoints)
    count = len(ordered)
    items = [home_item(home)]

    for wp in ordered:
        command = command_for_order(wp.order, count)
        param1, param2, param3, param4 = command_params(command)

        items.append(MissionItem(
            sequence_index=wp.order,
            frame=frame_for_command(command),
            command=command,
            # takeoff is the first item the vehicle executes
            is_current=command == MissionCommand.TAKEOFF,
            autocontinue=True,
            param1=param1, param2=param2, param3=param3, param4=param4,
            latitude=encode_degrees(wp.latitude),
            longitude=encode_degrees(wp.longitude),
            altitude=float(wp.altitude)
        ))

    logger.debug(f"Compiled {count} waypoints into {len(items)} mission items")
    return items


def build_patrol_mission(home: Position, altitude: float) -> List[MissionItem]:
    """
    Build the 4-item patrol loop: home, takeoff, one waypoint next to home,
    and a jump back to the waypoint that repeats forever

    Args:
        home: Position sampled from the vehicle
        altitude: Takeoff and patrol altitude in meters
    """
    validate_position(home.latitude_deg, home.longitude_deg, altitude)
    lat = home.latitude_deg
    lon = home.longitude_deg

    takeoff = MissionItem(
        sequence_index=1,
        frame=frame_for_command(MissionCommand.TAKEOFF),
        command=MissionCommand.TAKEOFF,
        is_current=True,
        autocontinue=True,
        param1=TAKEOFF_MIN_PITCH_DEG, param2=0.0, param3=0.0, param4=0.0,
        latitude=encode_degrees(lat),
        longitude=encode_degrees(lon),
        altitude=float(altitude)
    )
    waypoint = MissionItem(
        sequence_index=2,
        frame=frame_for_command(MissionCommand.WAYPOINT),
        command=MissionCommand.WAYPOINT,
        is_current=False,
        autocontinue=True,
        param1=0.0, param2=0.0, param3=0.0, param4=0.0,
        latitude=encode_degrees(lat + PATROL_OFFSET_DEG),
        longitude=encode_degrees(lon + PATROL_OFFSET_DEG),
        altitude=float(altitude)
    )
    jump = MissionItem(
        sequence_index=3,
        frame=frame_for_command(MissionCommand.JUMP),
        command=MissionCommand.JUMP,
        is_current=False,
        autocontinue=True,
        param1=float(PATROL_LOOP_TARGET),
        param2=float(REPEAT_FOREVER),
        param3=0.0, param4=0.0,
        latitude=0,
        longitude=0,
        altitude=0.0
    )

    return [home_item(home), takeoff, waypoint, jump]
