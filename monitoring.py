# Telemetry Reporting
# File: monitoring.py

"""
Continuous position / flight mode reporting for a connected vehicle
Runs beside mission launches on the same event loop and never waits on them
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional

from mission.models import Position

logger = logging.getLogger(__name__)

_NO_SAMPLE = object()


def format_position(pos: Position) -> str:
    return (f"Current pos: Lat={pos.latitude_deg:.6f}; Lon={pos.longitude_deg:.6f} "
            f"Alt={pos.relative_altitude_m:.1f}m")


def format_flight_mode(mode: str) -> str:
    return f"Current FlightMode is {mode}"


class TelemetryReporter:
    """Report the vehicle's position and flight mode at a fixed minimum interval"""

    def __init__(self, link, interval: float = 1.0,
                 emit: Optional[Callable[[str], None]] = None):
        """
        Initialize telemetry reporter

        Args:
            link: Vehicle link exposing position_stream() / flight_mode_stream()
            interval: Minimum seconds between two reports of the same stream
            emit: Report sink (defaults to logger.info)
        """
        self.link = link
        self.interval = interval
        self.emit = emit or logger.info
        self.tasks: List[asyncio.Task] = []
        self.last_position: Optional[Position] = None
        self.last_flight_mode: Optional[str] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self.tasks)

    def start(self):
        """Start reporting (must be called from the event loop)"""
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self.tasks = [
            loop.create_task(self._report(self.link.position_stream(),
                                          self._on_position)),
            loop.create_task(self._report(self.link.flight_mode_stream(),
                                          self._on_flight_mode)),
        ]
        logger.info(f"Telemetry reporting started (every {self.interval:g}s)")

    async def stop(self):
        """Stop reporting"""
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        logger.info("Telemetry reporting stopped")

    async def _report(self, stream: AsyncIterator, handler: Callable):
        """
        Report the first sample at once, then at most one per interval

        A sample arriving inside the interval is held back and the most
        recent held sample is reported when the interval ends.
        """
        loop = asyncio.get_running_loop()
        last_emit = None
        pending = _NO_SAMPLE
        flush_handle = None

        def report(sample):
            nonlocal last_emit
            last_emit = loop.time()
            handler(sample)

        def flush():
            nonlocal pending, flush_handle
            flush_handle = None
            sample, pending = pending, _NO_SAMPLE
            report(sample)

        try:
            async for sample in stream:
                if last_emit is None or loop.time() - last_emit >= self.interval:
                    if flush_handle is not None:
                        flush_handle.cancel()
                        flush_handle = None
                    pending = _NO_SAMPLE
                    report(sample)
                    continue

                pending = sample
                if flush_handle is None:
                    flush_handle = loop.call_at(last_emit + self.interval, flush)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Telemetry stream error: {e}")
        finally:
            if flush_handle is not None:
                flush_handle.cancel()
            await stream.aclose()

    def _on_position(self, pos: Position):
        self.last_position = pos
        self.emit(format_position(pos))

    def _on_flight_mode(self, mode: str):
        self.last_flight_mode = mode
        self.emit(format_flight_mode(mode))
