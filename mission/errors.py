"""
errors.py

Exception hierarchy for mission compilation and launch
"""

from typing import Optional


class MissionError(Exception):
    """Base class for every mission compile/launch failure"""


class InvalidMissionShape(MissionError, ValueError):
    """Waypoint orders are empty, duplicated, non-contiguous or negative"""


class InvalidCoordinate(MissionError, ValueError):
    """Latitude, longitude or altitude is not a usable number"""


class HomePositionUnavailable(MissionError):
    """No telemetry sample arrived in time to anchor the home item"""


class NoActiveMission(MissionError):
    """Mission launch requested on a vehicle without an active mission"""


class VehicleLinkError(MissionError):
    """The vehicle link refused or did not answer an operation"""


class LaunchStepError(MissionError):
    """A launch step failed; carries the step name"""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class StepTimeout(LaunchStepError):
    """Launch step did not complete within its bound"""

    def __init__(self, step: str, timeout: float):
        super().__init__(step, f"no response within {timeout:g}s")
        self.timeout = timeout


class StepRejected(LaunchStepError):
    """Vehicle link reported an explicit failure for a step"""

    def __init__(self, step: str, cause: Optional[BaseException]):
        if cause is None:
            message = "rejected"
        else:
            message = str(cause) or type(cause).__name__
        super().__init__(step, message)
        self.cause = cause
