"""Tests for degree encoding and command/frame policy"""

import math

import pytest

from mission.encoding import (
    command_for_order,
    command_params,
    encode_degrees,
    frame_for_command,
    validate_position,
)
from mission.errors import InvalidCoordinate, InvalidMissionShape
from mission.models import MissionCommand, MissionFrame


def test_encode_truncates_toward_zero():
    assert encode_degrees(1.2345678) == 12345678
    assert encode_degrees(-1.2345678) == -12345678


def test_encode_does_not_round():
    # 12345678.9 -> 12345678, -12345678.9 -> -12345678
    assert encode_degrees(1.23456789) == 12345678
    assert encode_degrees(-1.23456789) == -12345678


def test_encode_zero_and_extremes():
    assert encode_degrees(0.0) == 0
    assert encode_degrees(180.0) == 1800000000
    assert encode_degrees(-90.0) == -900000000


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_encode_rejects_non_finite(value):
    with pytest.raises(InvalidCoordinate):
        encode_degrees(value)


@pytest.mark.parametrize("lat,lon,alt", [
    (91.0, 0.0, 0.0),
    (0.0, -180.5, 0.0),
    (0.0, 0.0, math.nan),
    (math.inf, 0.0, 0.0),
])
def test_validate_position_rejects_bad_input(lat, lon, alt):
    with pytest.raises(InvalidCoordinate):
        validate_position(lat, lon, alt)


def test_command_by_position():
    assert command_for_order(1, 5) == MissionCommand.TAKEOFF
    assert command_for_order(2, 5) == MissionCommand.WAYPOINT
    assert command_for_order(4, 5) == MissionCommand.WAYPOINT
    assert command_for_order(5, 5) == MissionCommand.LAND


def test_single_waypoint_resolves_to_takeoff():
    assert command_for_order(1, 1) == MissionCommand.TAKEOFF


@pytest.mark.parametrize("order", [0, -1, 4])
def test_command_rejects_order_outside_mission(order):
    with pytest.raises(InvalidMissionShape):
        command_for_order(order, 3)


def test_frame_by_command():
    assert frame_for_command(MissionCommand.TAKEOFF) == MissionFrame.GLOBAL_RELATIVE_ALT
    assert frame_for_command(MissionCommand.WAYPOINT) == MissionFrame.GLOBAL_RELATIVE_ALT
    assert frame_for_command(MissionCommand.LAND) == MissionFrame.GLOBAL_RELATIVE_ALT
    assert frame_for_command(MissionCommand.JUMP) == MissionFrame.GLOBAL


def test_takeoff_carries_min_pitch():
    assert command_params(MissionCommand.TAKEOFF) == (15.0, 0.0, 0.0, 0.0)
    assert command_params(MissionCommand.LAND) == (0.0, 0.0, 0.0, 0.0)


def test_protocol_codes():
    assert int(MissionFrame.GLOBAL_RELATIVE_ALT) == 6
    assert int(MissionFrame.GLOBAL) == 0
    assert int(MissionCommand.WAYPOINT) == 16
    assert int(MissionCommand.TAKEOFF) == 22
    assert int(MissionCommand.LAND) == 21
    assert int(MissionCommand.JUMP) == 177
