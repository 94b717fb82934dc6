"""Shared test doubles: an in-memory vehicle link that records every call"""

import asyncio
from typing import Dict, List, Optional

from mission.errors import VehicleLinkError
from mission.models import Position, Waypoint

HOME = Position(latitude_deg=10.0, longitude_deg=20.0,
                relative_altitude_m=0.0, absolute_altitude_m=584.0)


class FakeVehicleLink:
    """
    Vehicle link double

    Args:
        fail: operation name -> exception raised when it is called
        hang: operation names that never complete
        position: sample returned by read_position (None = never answers)
    """

    def __init__(self, fail: Optional[Dict[str, Exception]] = None,
                 hang=(), position: Optional[Position] = HOME,
                 positions=(), flight_modes=()):
        self.fail = fail or {}
        self.hang = set(hang)
        self.position = position
        self.positions = list(positions)
        self.flight_modes = list(flight_modes)
        self.calls: List[tuple] = []
        self.uploaded = None

    async def _operation(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.hang:
            await asyncio.Event().wait()
        if name in self.fail:
            raise self.fail[name]

    @property
    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def read_position(self) -> Position:
        await self._operation('read_position')
        if self.position is None:
            await asyncio.Event().wait()
        return self.position

    async def position_stream(self):
        for pos in self.positions:
            yield pos
            await asyncio.sleep(0)

    async def flight_mode_stream(self):
        for mode in self.flight_modes:
            yield mode
            await asyncio.sleep(0)

    async def clear_mission(self):
        await self._operation('clear_mission')

    async def upload_mission(self, items):
        await self._operation('upload_mission', len(items))
        self.uploaded = list(items)

    async def set_parameter(self, name, value):
        await self._operation('set_parameter', name, value)

    async def arm(self):
        await self._operation('arm')

    async def start_mission(self):
        await self._operation('start_mission')

    async def land(self):
        await self._operation('land')

    def close(self):
        self.calls.append(('close',))


def make_waypoints(count: int, altitude: float = 50.0) -> List[Waypoint]:
    return [
        Waypoint(order=i, latitude=10.0 + i * 0.001, longitude=20.0 + i * 0.001,
                 altitude=altitude)
        for i in range(1, count + 1)
    ]
