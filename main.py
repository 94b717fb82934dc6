# Mission Launch Console
# File: main.py

"""
Connects to a MAVLink vehicle (ArduPilot SITL by default), attaches the
active mission and offers an interactive command console.

Installation Requirements:
pip install pymavlink fastapi uvicorn pydantic

Usage:
    python3 main.py                        # console, default mission
    python3 main.py --mission wps.json     # console, mission from file
    python3 main.py --launch               # launch the mission right away
    python3 main.py patrol 80              # run one command, then console
"""

import argparse
import asyncio
import logging
import sys
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import List, Optional

from mission.errors import MissionError, VehicleLinkError
from mission.loader import MissionService, load_mission
from mission.models import Vehicle
from mission.sequencer import LaunchSucceeded, start_launch
from monitoring import TelemetryReporter
from vehicle.mavlink_link import LinkConfig, init_sitl_vehicle

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SAVED_POINT = (-35.36038425, 149.15558299, 800.0)
DEFAULT_PATROL_ALTITUDE = 50.0


class CLI:
    """Command Line Interface"""

    def __init__(self, vehicle: Vehicle, loop: asyncio.AbstractEventLoop):
        self.vehicle = vehicle
        self.loop = loop
        self.launch_task: Optional[asyncio.Task] = None
        self.commands = {
            'mission': self._mission_cmd,
            'patrol': self._patrol_cmd,
            'load': self._load_cmd,
            'arm': self._arm_cmd,
            'takeoff': self._takeoff_cmd,
            'goto': self._goto_cmd,
            'saved': self._saved_cmd,
            'land': self._land_cmd,
            'status': self._status_cmd,
            'help': self._help_cmd
        }

    def run(self, args: List[str]):
        """Run CLI command"""
        if not args:
            self._help_cmd([])
            return

        command = args[0]
        if command in self.commands:
            self.commands[command](args[1:])
        else:
            print(f"✗ Unknown command: {command}")
            self._help_cmd([])

    # ------------------------------------------------------------------
    # Launches
    # ------------------------------------------------------------------

    def _mission_cmd(self, args: List[str]):
        """Compile and launch the active mission"""
        mission = self.vehicle.active_mission
        if mission is None:
            print("✗ No active mission, use: load <file>")
            return
        print(f"Launching mission {mission.id} ({len(mission.waypoints)} waypoints)")
        self._submit(self._begin_launch(), "launch mission")

    def _patrol_cmd(self, args: List[str]):
        """Launch the patrol loop"""
        altitude = self._parse_floats(args, 1, "patrol <altitude>") if args else [DEFAULT_PATROL_ALTITUDE]
        if altitude is None:
            return
        print(f"Launching patrol at {altitude[0]:.1f}m")
        self._submit(self._begin_launch(altitude=altitude[0]), "launch patrol")

    async def _begin_launch(self, **kwargs):
        if self.launch_task is not None and not self.launch_task.done():
            print("✗ A launch is already in progress")
            return
        self.launch_task = start_launch(
            self.vehicle,
            on_success=self._launch_succeeded,
            on_failure=self._launch_failed,
            **kwargs
        )

    def _launch_succeeded(self, result: LaunchSucceeded):
        print(f"✓ Mission start command was sent successfully ({result.items_uploaded} items)")

    def _launch_failed(self, error: BaseException):
        print(f"✗ Can't start the mission, error occurred: {error}")

    # ------------------------------------------------------------------
    # Direct commands
    # ------------------------------------------------------------------

    def _load_cmd(self, args: List[str]):
        """Load a waypoint file as the active mission"""
        if not args:
            print("Usage: load <file.json>")
            return
        path = Path(args[0])
        try:
            self.vehicle.active_mission = load_mission(path, path.stem)
        except (OSError, MissionError) as e:
            print(f"✗ Can't load mission: {e}")
            return
        print(f"✓ Active mission: {path.stem}")

    def _arm_cmd(self, args: List[str]):
        print("Arming plane")
        self._submit(self.vehicle.link.arm(), "arm")

    def _takeoff_cmd(self, args: List[str]):
        values = self._parse_floats(args, 1, "takeoff <altitude>") if args else [DEFAULT_PATROL_ALTITUDE]
        if values is None:
            return
        print(f"Taking off to {values[0]:.1f}m Alt")
        self._submit(self.vehicle.link.takeoff(values[0]), "take off")

    def _goto_cmd(self, args: List[str]):
        values = self._parse_floats(args, 3, "goto <lat> <lon> <alt>")
        if values is None:
            return
        lat, lon, alt = values
        print(f"Sending command to fly to: Lat: {lat:.6f}, Lon: {lon:.6f}, Alt: {alt:.1f}m")
        self._submit(self.vehicle.link.goto_location(lat, lon, alt), "fly to point")

    def _saved_cmd(self, args: List[str]):
        print("Flying to saved point")
        self._submit(self.vehicle.link.goto_location(*SAVED_POINT), "fly to saved point")

    def _land_cmd(self, args: List[str]):
        print("Landing...")
        self._submit(self.vehicle.link.land(), "land")

    def _status_cmd(self, args: List[str]):
        mission = self.vehicle.active_mission
        launching = self.launch_task is not None and not self.launch_task.done()
        print(f"\n{'='*60}")
        print("VEHICLE STATUS")
        print(f"{'='*60}")
        print(f"Vehicle: {self.vehicle.id}")
        print(f"Flight mode: {getattr(self.vehicle.link, 'flight_mode', None) or 'UNKNOWN'}")
        print(f"Active mission: {mission.id if mission else 'None'}"
              f"{f' ({len(mission.waypoints)} waypoints)' if mission else ''}")
        print(f"Launch in progress: {'yes' if launching else 'no'}")
        print(f"{'='*60}\n")

    def _help_cmd(self, args: List[str]):
        print("""
Commands:
  mission               Compile and launch the active mission
  patrol [alt]          Launch the patrol loop (default 50m)
  load <file>           Load a waypoint JSON file as the active mission
  arm                   Arm the vehicle
  takeoff [alt]         Take off (default 50m)
  goto <lat> <lon> <alt>  Fly to a point
  saved                 Fly to the saved point
  land                  Land at the current position
  status                Show vehicle status
  help                  Show this help
  exit                  Quit
""")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_floats(self, args: List[str], count: int, usage: str) -> Optional[List[float]]:
        try:
            values = [float(arg) for arg in args[:count]]
        except ValueError:
            values = []
        if len(values) != count:
            print(f"Usage: {usage}")
            return None
        return values

    def _submit(self, coro, description: str) -> Future:
        """Run a coroutine on the vehicle loop and report its outcome when it ends"""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(lambda done: self._report(done, description))
        return future

    def _report(self, future: Future, description: str):
        if future.cancelled():
            print(f"✗ {description} cancelled")
            return
        error = future.exception()
        if error is not None:
            print(f"✗ Couldn't {description}: {error}")
        elif description not in ("launch mission", "launch patrol"):
            print(f"✓ {description} command sent successfully")


def main():
    parser = argparse.ArgumentParser(
        description='Mission launch console for MAVLink vehicles',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 main.py --url udp:127.0.0.1:14550
  python3 main.py --mission missions/survey.json --launch
        """
    )
    parser.add_argument('--url', default=LinkConfig.connection_url,
                        help=f'Connection URL (default: {LinkConfig.connection_url})')
    parser.add_argument('--mission', help='Waypoint JSON file (default: bundled mission)')
    parser.add_argument('--telemetry-interval', type=float, default=1.0,
                        help='Seconds between telemetry reports (default: 1.0)')
    parser.add_argument('--launch', action='store_true',
                        help='Launch the active mission after connecting')
    parser.add_argument('command', nargs=argparse.REMAINDER,
                        help='Console command to run after connecting')
    args = parser.parse_args()

    loop = asyncio.new_event_loop()
    loop_thread = threading.Thread(target=loop.run_forever, name="vehicle-loop", daemon=True)
    loop_thread.start()

    print("========== Plane commander ==========")
    print("======= Waiting for connection =======")

    try:
        config = LinkConfig(connection_url=args.url)
        vehicle = asyncio.run_coroutine_threadsafe(init_sitl_vehicle(config), loop).result()
    except VehicleLinkError as e:
        logger.error(f"✗ {e}")
        logger.error("Make sure ArduPilot SITL is running:")
        logger.error("  sim_vehicle.py -v ArduPlane --console --map")
        loop.call_soon_threadsafe(loop.stop)
        return 1

    if args.mission:
        vehicle.active_mission = load_mission(args.mission, Path(args.mission).stem)
    else:
        vehicle.active_mission = MissionService().create_default_mission()

    reporter = TelemetryReporter(vehicle.link, interval=args.telemetry_interval)
    loop.call_soon_threadsafe(reporter.start)

    cli = CLI(vehicle, loop)
    if args.launch:
        cli.run(['mission'])
    if args.command:
        cli.run(args.command)

    print("\nType 'help' for commands, 'exit' to quit\n")

    try:
        while True:
            try:
                command = input("GCS> ").strip()
            except (KeyboardInterrupt, EOFError):
                print()
                break

            if command.lower() in ['exit', 'quit']:
                break
            if command:
                cli.run(command.split())
    finally:
        asyncio.run_coroutine_threadsafe(reporter.stop(), loop).result(timeout=5)
        vehicle.link.close()
        loop.call_soon_threadsafe(loop.stop)
        loop_thread.join(timeout=5)
        print("Exiting...")

    return 0


if __name__ == "__main__":
    sys.exit(main())
