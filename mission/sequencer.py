"""
sequencer.py

Launch sequencer: clear -> upload -> configure -> settle -> arm -> start,
executed one step at a time against a borrowed vehicle link

The first failing step aborts the launch. Completed steps are never rolled
back and nothing is retried here, partial upload/arm state may be unsafe to
re-run blindly so that decision stays with the caller.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from mission.compiler import (
    HOME_POSITION_TIMEOUT,
    build_patrol_mission,
    compile_mission,
    read_home_position,
    validate_waypoints,
)
from mission.errors import LaunchStepError, NoActiveMission, StepRejected, StepTimeout
from mission.models import LaunchState, MissionItem, Vehicle, Waypoint

logger = logging.getLogger(__name__)

# Throttle safety parameters ArduPlane needs before an auto takeoff without
# a hand launch
THROTTLE_SAFETY_PARAMETERS: Tuple[Tuple[str, Union[int, float]], ...] = (
    ("TKOFF_THR_MINACC", 0.0),
    ("TKOFF_THR_MINSPD", 0.0),
    ("TKOFF_THR_DELAY", 0),
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class StepTimeouts:
    """Per-step bounds in seconds (None = wait for the link indefinitely)"""
    clear: Optional[float] = None
    upload: Optional[float] = None
    parameter: Optional[float] = None  # applied to each parameter
    arm: Optional[float] = None
    start: Optional[float] = None


@dataclass(frozen=True)
class LaunchProfile:
    """How a launch is paced"""
    settle_delay: float = 1.0  # ESC / ground effect settling
    settle_after_arm: bool = False
    timeouts: StepTimeouts = field(default_factory=StepTimeouts)


MISSION_PROFILE = LaunchProfile()

PATROL_PROFILE = LaunchProfile(
    settle_delay=2.0,
    settle_after_arm=True,
    timeouts=StepTimeouts(clear=5.0, upload=10.0, parameter=3.0, arm=5.0, start=5.0)
)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class LaunchSucceeded:
    items_uploaded: int
    transitions: Tuple[LaunchState, ...]
    success: bool = field(default=True, init=False)

    @property
    def state(self) -> LaunchState:
        return LaunchState.SUCCEEDED


@dataclass(frozen=True)
class LaunchFailed:
    step: str
    error: LaunchStepError
    transitions: Tuple[LaunchState, ...]
    success: bool = field(default=False, init=False)

    @property
    def state(self) -> LaunchState:
        return LaunchState.FAILED


LaunchResult = Union[LaunchSucceeded, LaunchFailed]


# ============================================================================
# STATE MACHINE
# ============================================================================

class LaunchStateMachine:
    """Forward-only launch state tracker for one launch"""

    TERMINAL = (LaunchState.SUCCEEDED, LaunchState.FAILED)

    def __init__(self, path: Sequence[LaunchState]):
        # consecutive steps may share a state (one per parameter)
        self.path = [LaunchState.IDLE]
        for state in list(path) + [LaunchState.SUCCEEDED]:
            if state != self.path[-1]:
                self.path.append(state)
        self.state = LaunchState.IDLE
        self.transitions: List[LaunchState] = [LaunchState.IDLE]

    def advance(self, target: LaunchState):
        if self.state == target:
            return
        if self.state in self.TERMINAL:
            raise RuntimeError(f"Launch already finished ({self.state.value})")

        if target == LaunchState.FAILED:
            self._enter(target)
            return

        position = self.path.index(self.state)
        if self.path[position + 1] != target:
            raise RuntimeError(
                f"Illegal launch transition {self.state.value} -> {target.value}")
        self._enter(target)

    def _enter(self, target: LaunchState):
        logger.debug(f"Launch state: {self.state.value} -> {target.value}")
        self.state = target
        self.transitions.append(target)


@dataclass
class LaunchStep:
    name: str
    state: LaunchState
    handler: Callable[[], Awaitable]
    timeout: Optional[float] = None
    status: str = "pending"
    error: Optional[str] = None


# ============================================================================
# SEQUENCER
# ============================================================================

class LaunchSequencer:
    """Runs the launch choreography; holds no state between launches"""

    def __init__(self, profile: LaunchProfile = MISSION_PROFILE):
        self.profile = profile

    def build_steps(self, link, items: Sequence[MissionItem]) -> List[LaunchStep]:
        """Ordered launch steps for one mission upload"""
        timeouts = self.profile.timeouts
        items = list(items)

        steps = [
            LaunchStep('clear', LaunchState.CLEARING,
                       lambda: link.clear_mission(), timeouts.clear),
            LaunchStep('upload', LaunchState.UPLOADING,
                       lambda: link.upload_mission(items), timeouts.upload),
        ]
        for name, value in THROTTLE_SAFETY_PARAMETERS:
            steps.append(LaunchStep(
                f'configure:{name}', LaunchState.CONFIGURING,
                lambda name=name, value=value: link.set_parameter(name, value),
                timeouts.parameter
            ))

        settle = LaunchStep('settle', LaunchState.SETTLING,
                            lambda: asyncio.sleep(self.profile.settle_delay))
        arm = LaunchStep('arm', LaunchState.ARMING, lambda: link.arm(), timeouts.arm)

        if self.profile.settle_after_arm:
            steps.extend([arm, settle])
        else:
            steps.extend([settle, arm])

        steps.append(LaunchStep('start', LaunchState.STARTING,
                                lambda: link.start_mission(), timeouts.start))
        return steps

    async def launch(self, link, items: Sequence[MissionItem]) -> LaunchResult:
        """
        Clear, upload, configure, arm and start a mission

        Args:
            link: Vehicle link borrowed for the duration of the launch
            items: Compiled mission items

        Returns:
            LaunchResult: LaunchSucceeded once the start step has succeeded,
            otherwise LaunchFailed carrying the first failing step
        """
        steps = self.build_steps(link, items)
        machine = LaunchStateMachine([step.state for step in steps])
        logger.info(f"Launching mission with {len(items)} items ({len(steps)} steps)")

        for step in steps:
            machine.advance(step.state)
            try:
                await self._run_step(step)
            except LaunchStepError as e:
                step.status = "failed"
                step.error = str(e)
                machine.advance(LaunchState.FAILED)
                logger.error(f"✗ Launch aborted at '{step.name}': {e}")
                return LaunchFailed(step=step.name, error=e,
                                    transitions=tuple(machine.transitions))

        machine.advance(LaunchState.SUCCEEDED)
        logger.info("✓ Mission started")
        return LaunchSucceeded(items_uploaded=len(items),
                               transitions=tuple(machine.transitions))

    async def _run_step(self, step: LaunchStep):
        logger.info(f"Executing step: {step.name}")
        step.status = "running"
        started = time.monotonic()

        task = asyncio.ensure_future(step.handler())
        try:
            done, _ = await asyncio.wait({task}, timeout=step.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        # only an expired bound is a timeout; errors raised by the link are rejections
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise StepTimeout(step.name, step.timeout)

        try:
            task.result()
        except Exception as e:
            raise StepRejected(step.name, e) from e

        step.status = "completed"
        logger.info(f"✓ {step.name} ({time.monotonic() - started:.2f}s)")


# ============================================================================
# CALLER-FACING API
# ============================================================================

async def compile_and_launch(vehicle: Vehicle,
                             waypoints: Optional[Sequence[Waypoint]] = None,
                             altitude: Optional[float] = None,
                             sequencer: Optional[LaunchSequencer] = None,
                             home_timeout: float = HOME_POSITION_TIMEOUT) -> LaunchResult:
    """
    Compile a mission against the vehicle's live position and launch it

    Pass `altitude` for a patrol launch, `waypoints` for a waypoint mission,
    or neither to fly the vehicle's active mission.

    Raises:
        InvalidMissionShape, InvalidCoordinate: mission rejected before any
            link traffic
        HomePositionUnavailable: no position sample for the home item
        NoActiveMission: nothing to fly
    """
    if waypoints is not None and altitude is not None:
        raise ValueError("Pass either waypoints or a patrol altitude, not both")

    link = vehicle.link

    if altitude is not None:
        home = await read_home_position(link, home_timeout)
        items = build_patrol_mission(home, altitude)
        sequencer = sequencer or LaunchSequencer(PATROL_PROFILE)
    else:
        if waypoints is None:
            if vehicle.active_mission is None:
                raise NoActiveMission(f"Vehicle {vehicle.id} has no active mission")
            waypoints = vehicle.active_mission.waypoints
        validate_waypoints(waypoints)
        home = await read_home_position(link, home_timeout)
        items = compile_mission(waypoints, home)
        sequencer = sequencer or LaunchSequencer(MISSION_PROFILE)

    return await sequencer.launch(link, items)


def start_launch(vehicle: Vehicle,
                 waypoints: Optional[Sequence[Waypoint]] = None,
                 altitude: Optional[float] = None,
                 on_success: Optional[Callable[[LaunchSucceeded], None]] = None,
                 on_failure: Optional[Callable[[BaseException], None]] = None,
                 **kwargs) -> asyncio.Task:
    """Schedule compile_and_launch on the running loop and report the outcome
    through exactly one of the two callbacks"""
    task = asyncio.get_running_loop().create_task(
        compile_and_launch(vehicle, waypoints, altitude, **kwargs))

    def _report(done: asyncio.Task):
        if done.cancelled():
            error = asyncio.CancelledError()
        else:
            error = done.exception()

        if error is None:
            result = done.result()
            if result.success:
                if on_success:
                    on_success(result)
                return
            error = result.error

        if on_failure:
            on_failure(error)

    task.add_done_callback(_report)
    return task
