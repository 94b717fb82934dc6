"""Tests for telemetry reporting"""

import asyncio

from conftest import FakeVehicleLink
from mission.models import Position
from monitoring import TelemetryReporter, format_flight_mode, format_position


def test_format_position():
    pos = Position(latitude_deg=-35.3632611, longitude_deg=149.1652299,
                   relative_altitude_m=49.96)
    assert format_position(pos) == "Current pos: Lat=-35.363261; Lon=149.165230 Alt=50.0m"


def test_format_flight_mode():
    assert format_flight_mode("AUTO") == "Current FlightMode is AUTO"


def _run(reporter):
    async def scenario():
        reporter.start()
        await asyncio.gather(*reporter.tasks)
    asyncio.run(scenario())


def test_reports_both_streams():
    lines = []
    link = FakeVehicleLink(
        positions=[Position(latitude_deg=1.0, longitude_deg=2.0, relative_altitude_m=3.0)],
        flight_modes=["MANUAL"]
    )
    reporter = TelemetryReporter(link, interval=0.0, emit=lines.append)

    _run(reporter)

    assert "Current pos: Lat=1.000000; Lon=2.000000 Alt=3.0m" in lines
    assert "Current FlightMode is MANUAL" in lines
    assert reporter.last_flight_mode == "MANUAL"


def test_throttles_to_interval():
    lines = []
    positions = [Position(latitude_deg=float(i), longitude_deg=0.0) for i in range(20)]
    link = FakeVehicleLink(positions=positions)
    reporter = TelemetryReporter(link, interval=60.0, emit=lines.append)

    _run(reporter)

    # burst of samples inside one interval: only the first is reported
    assert len(lines) == 1
    assert reporter.last_position == positions[0]


def test_latest_held_sample_reported_when_interval_ends():
    first, stale, latest = (Position(latitude_deg=float(i), longitude_deg=0.0) for i in range(3))

    class BurstLink(FakeVehicleLink):
        async def position_stream(self):
            for pos in (first, stale, latest):
                yield pos
            # stay open past the interval so the held sample is flushed
            await asyncio.sleep(0.3)

    lines = []
    reporter = TelemetryReporter(BurstLink(), interval=0.05, emit=lines.append)

    _run(reporter)

    assert lines == [
        "Current pos: Lat=0.000000; Lon=0.000000 Alt=0.0m",
        "Current pos: Lat=2.000000; Lon=0.000000 Alt=0.0m",
    ]
    assert reporter.last_position == latest


def test_stop_cancels_reporting():
    class EndlessLink(FakeVehicleLink):
        async def position_stream(self):
            while True:
                yield Position(latitude_deg=0.0, longitude_deg=0.0)
                await asyncio.sleep(0.01)

    async def scenario():
        reporter = TelemetryReporter(EndlessLink(), interval=0.0, emit=lambda line: None)
        reporter.start()
        await asyncio.sleep(0.05)
        assert reporter.running
        await reporter.stop()
        assert not reporter.running

    asyncio.run(scenario())
