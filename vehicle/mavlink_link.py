"""
mavlink_link.py

MAVLink vehicle link using PyMAVLink
Exposes the asynchronous single-result operations the launch sequencer
borrows (clear, upload, set parameter, arm, start, land) plus continuous
position / flight mode streams

Usage:
    config = LinkConfig(connection_url="udp:127.0.0.1:14550")
    vehicle = await init_sitl_vehicle(config)
    result = await compile_and_launch(vehicle, altitude=50)
    vehicle.link.close()
"""

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from pymavlink import mavutil

from mission.errors import VehicleLinkError
from mission.models import MISSION_TYPE_MISSION, MissionItem, Position, Vehicle


@dataclass
class LinkConfig:
    """Configuration for the MAVLink connection"""
    connection_url: str = "udp:127.0.0.1:14550"  # Default ArduPilot SITL
    timeout_seconds: int = 60  # heartbeat / telemetry wait
    ack_timeout: float = 5.0  # wait for a single protocol answer
    heartbeat_interval: float = 1.0
    source_system: int = 255  # GCS system ID
    source_component: int = 0  # GCS component ID


@dataclass
class _Waiter:
    types: tuple
    predicate: Callable[[Any], bool]
    future: asyncio.Future


def _param_id(msg) -> str:
    param_id = msg.param_id
    if isinstance(param_id, bytes):
        param_id = param_id.decode('utf-8', errors='ignore')
    return param_id.rstrip('\x00')


def _enum_name(enum: str, value: int) -> str:
    entry = mavutil.mavlink.enums.get(enum, {}).get(value)
    return entry.name if entry else str(value)


def _to_position(msg) -> Position:
    return Position(
        latitude_deg=msg.lat / 1e7,
        longitude_deg=msg.lon / 1e7,
        relative_altitude_m=msg.relative_alt / 1000.0,
        absolute_altitude_m=msg.alt / 1000.0
    )


class MavlinkVehicleLink:
    """
    Vehicle link over a pymavlink connection

    A single reader thread owns recv_match; incoming messages are handed to
    the event loop which resolves pending protocol waits and feeds telemetry
    subscribers, so launch steps and telemetry reads can share the connection.
    """

    def __init__(self, config: LinkConfig, connection=None):
        """
        Initialize the link

        Args:
            config: LinkConfig with connection parameters
            connection: Already opened mavutil connection (optional)
        """
        self.config = config
        self.mav_connection = connection
        self.logger = logging.getLogger(__name__)
        self._is_connected = False
        self.target_system = 1
        self.target_component = 1

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._send_lock = threading.Lock()
        self._waiters: List[_Waiter] = []
        self._subscribers: Dict[str, List[asyncio.Queue]] = {'position': [], 'flight_mode': []}
        self._threads: List[threading.Thread] = []

        # Telemetry cache
        self._position = None
        self._heartbeat = None
        self._mission_count = 0

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """Open the connection and wait for the autopilot heartbeat"""
        self._loop = asyncio.get_running_loop()
        self.logger.info(f"Connecting to vehicle at {self.config.connection_url}")

        opened = False
        try:
            if self.mav_connection is None:
                self.mav_connection = mavutil.mavlink_connection(
                    self.config.connection_url,
                    source_system=self.config.source_system,
                    source_component=self.config.source_component
                )
                opened = True

            self.logger.info("Waiting for heartbeat...")
            heartbeat = await asyncio.to_thread(
                self.mav_connection.wait_heartbeat, timeout=self.config.timeout_seconds)
        except Exception as e:
            self._abandon_connection(opened)
            raise VehicleLinkError(f"Failed to connect: {e}") from e

        if not heartbeat:
            self._abandon_connection(opened)
            raise VehicleLinkError("No heartbeat received")

        self.target_system = self.mav_connection.target_system
        self.target_component = self.mav_connection.target_component
        self._heartbeat = heartbeat
        self._is_connected = True
        self.logger.info(f"✓ Heartbeat received from system {self.target_system}")
        self.logger.info(f"  Autopilot: {heartbeat.autopilot}, Vehicle: {heartbeat.type}")

        self._start_thread(self._read_loop, "mavlink-reader")
        # GCS heartbeats keep the autopilot's GCS failsafe quiet
        self._start_thread(self._heartbeat_loop, "gcs-heartbeat")

    def close(self):
        """Stop background threads and close the connection"""
        self._is_connected = False
        for thread in self._threads:
            thread.join(timeout=2)
        self._threads = []

        if self._loop is not None and not self._loop.is_closed():
            for waiter in self._waiters:
                self._loop.call_soon_threadsafe(waiter.future.cancel)
        self._waiters = []

        if self.mav_connection:
            self.mav_connection.close()
        self.logger.info("Disconnected from vehicle")

    def _abandon_connection(self, opened: bool):
        # a connection passed in by the caller stays theirs to close
        if opened and self.mav_connection is not None:
            self.mav_connection.close()
            self.mav_connection = None

    def _start_thread(self, target, name: str):
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def _heartbeat_loop(self):
        while self._is_connected:
            try:
                self._send(
                    self.mav_connection.mav.heartbeat_send,
                    mavutil.mavlink.MAV_TYPE_GCS,
                    mavutil.mavlink.MAV_AUTOPILOT_INVALID,
                    0, 0, 0
                )
            except Exception as e:
                self.logger.debug(f"Heartbeat send error: {e}")
            time.sleep(self.config.heartbeat_interval)

    def _read_loop(self):
        while self._is_connected:
            try:
                msg = self.mav_connection.recv_match(blocking=True, timeout=0.5)
            except Exception as e:
                if self._is_connected:
                    self.logger.error(f"Receive error: {e}")
                    time.sleep(0.1)
                continue

            if msg is None or msg.get_type() == 'BAD_DATA':
                continue
            try:
                self._loop.call_soon_threadsafe(self._dispatch, msg)
            except RuntimeError:
                # event loop closed underneath us
                break

    # ------------------------------------------------------------------
    # Message routing (event loop thread)
    # ------------------------------------------------------------------

    def _dispatch(self, msg):
        msg_type = msg.get_type()

        if msg_type == 'GLOBAL_POSITION_INT':
            self._position = msg
            self._publish('position', _to_position(msg))
        elif msg_type == 'HEARTBEAT' and msg.get_srcSystem() == self.target_system \
                and msg.type != mavutil.mavlink.MAV_TYPE_GCS:
            self._heartbeat = msg
            self._publish('flight_mode', mavutil.mode_string_v10(msg))

        for waiter in list(self._waiters):
            if waiter.future.done():
                self._waiters.remove(waiter)
            elif msg_type in waiter.types and waiter.predicate(msg):
                waiter.future.set_result(msg)
                self._waiters.remove(waiter)

    def _publish(self, topic: str, value):
        for queue in self._subscribers[topic]:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(value)

    async def _stream(self, topic: str):
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._subscribers[topic].append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[topic].remove(queue)

    def _expect(self, types: Sequence[str],
                predicate: Optional[Callable[[Any], bool]] = None) -> _Waiter:
        """Register interest in a message before sending the request for it"""
        self._require_connected()
        waiter = _Waiter(tuple(types), predicate or (lambda msg: True),
                         self._loop.create_future())
        self._waiters.append(waiter)
        return waiter

    async def _receive(self, waiter: _Waiter, description: str,
                       timeout: Optional[float] = None):
        try:
            return await asyncio.wait_for(waiter.future, timeout or self.config.ack_timeout)
        except asyncio.TimeoutError:
            raise VehicleLinkError(f"Timeout waiting for {description}") from None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def _send(self, send_fn, *args):
        with self._send_lock:
            send_fn(*args)

    def _require_connected(self):
        if not self._is_connected:
            raise VehicleLinkError("Not connected to vehicle")

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def read_position(self) -> Position:
        """Wait for the next GLOBAL_POSITION_INT sample"""
        waiter = self._expect(['GLOBAL_POSITION_INT'])
        msg = await self._receive(waiter, "GPS position", self.config.timeout_seconds)
        return _to_position(msg)

    def position_stream(self) -> AsyncIterator[Position]:
        return self._stream('position')

    def flight_mode_stream(self) -> AsyncIterator[str]:
        return self._stream('flight_mode')

    @property
    def flight_mode(self) -> Optional[str]:
        if self._heartbeat is None:
            return None
        return mavutil.mode_string_v10(self._heartbeat)

    async def identify(self) -> str:
        """Hardware UID of the autopilot, or sys-<id> when it does not report one"""
        waiter = self._expect(['AUTOPILOT_VERSION'])
        self._send(
            self.mav_connection.mav.command_long_send,
            self.target_system,
            self.target_component,
            mavutil.mavlink.MAV_CMD_REQUEST_MESSAGE,
            0,
            mavutil.mavlink.MAVLINK_MSG_ID_AUTOPILOT_VERSION,
            0, 0, 0, 0, 0, 0
        )
        try:
            msg = await self._receive(waiter, "autopilot version", timeout=3)
        except VehicleLinkError as e:
            self.logger.warning(f"Autopilot did not identify itself: {e}")
            return f"sys-{self.target_system}"

        if msg.uid:
            return f"{msg.uid:016X}"
        uid2 = bytes(msg.uid2) if msg.uid2 else b''
        if any(uid2):
            return uid2.hex().upper()
        return f"sys-{self.target_system}"

    # ------------------------------------------------------------------
    # Mission protocol
    # ------------------------------------------------------------------

    def _check_mission_ack(self, ack, action: str):
        if ack.type != mavutil.mavlink.MAV_MISSION_ACCEPTED:
            raise VehicleLinkError(
                f"{action} rejected: {_enum_name('MAV_MISSION_RESULT', ack.type)}")

    async def clear_mission(self):
        """Remove any mission stored on the vehicle"""
        self.logger.info("Clearing mission...")
        waiter = self._expect(['MISSION_ACK'])
        self._send(
            self.mav_connection.mav.mission_clear_all_send,
            self.target_system,
            self.target_component,
            MISSION_TYPE_MISSION
        )
        ack = await self._receive(waiter, "mission clear acknowledgement")
        self._check_mission_ack(ack, "Mission clear")
        self._mission_count = 0

    async def upload_mission(self, items: Sequence[MissionItem]):
        """Upload mission items using the MAVLink mission protocol"""
        num_items = len(items)
        by_seq = {item.sequence_index: item for item in items}
        self.logger.info(f"Uploading mission with {num_items} items...")

        request_types = ['MISSION_REQUEST', 'MISSION_REQUEST_INT', 'MISSION_ACK']
        waiter = self._expect(request_types)
        self._send(
            self.mav_connection.mav.mission_count_send,
            self.target_system,
            self.target_component,
            num_items,
            MISSION_TYPE_MISSION
        )

        while True:
            msg = await self._receive(waiter, "mission request")

            if msg.get_type() == 'MISSION_ACK':
                self._check_mission_ack(msg, "Mission upload")
                break

            item = by_seq.get(msg.seq)
            if item is None:
                raise VehicleLinkError(f"Vehicle requested unknown item {msg.seq}")

            waiter = self._expect(request_types)
            self._send(
                self.mav_connection.mav.mission_item_int_send,
                self.target_system,
                self.target_component,
                item.sequence_index,
                int(item.frame),
                int(item.command),
                int(item.is_current),
                int(item.autocontinue),
                item.param1, item.param2, item.param3, item.param4,
                item.latitude,
                item.longitude,
                item.altitude,
                item.mission_type
            )

        self._mission_count = num_items
        self.logger.info("✓ Mission uploaded successfully")

    # ------------------------------------------------------------------
    # Parameters and commands
    # ------------------------------------------------------------------

    async def set_parameter(self, name: str, value: Union[int, float]):
        """Set a parameter and wait for the autopilot to echo it back"""
        if isinstance(value, int) and not isinstance(value, bool):
            param_type = mavutil.mavlink.MAV_PARAM_TYPE_INT32
        else:
            param_type = mavutil.mavlink.MAV_PARAM_TYPE_REAL32

        self.logger.info(f"Setting {name} = {value}")
        waiter = self._expect(['PARAM_VALUE'], lambda msg: _param_id(msg) == name)
        self._send(
            self.mav_connection.mav.param_set_send,
            self.target_system,
            self.target_component,
            name.encode('utf-8'),
            float(value),
            param_type
        )
        msg = await self._receive(waiter, f"parameter {name}")

        if not math.isclose(msg.param_value, float(value), abs_tol=1e-6):
            raise VehicleLinkError(
                f"Parameter {name} reads back {msg.param_value}, expected {value}")

    async def _command(self, command: int, *params: float, description: str):
        params = list(params) + [0.0] * (7 - len(params))
        waiter = self._expect(['COMMAND_ACK'], lambda msg: msg.command == command)
        self._send(
            self.mav_connection.mav.command_long_send,
            self.target_system,
            self.target_component,
            command,
            0,  # confirmation
            *params
        )
        ack = await self._receive(waiter, f"{description} acknowledgement")
        self._check_command_ack(ack, description)

    def _check_command_ack(self, ack, description: str):
        if ack.result != mavutil.mavlink.MAV_RESULT_ACCEPTED:
            raise VehicleLinkError(
                f"{description} rejected: {_enum_name('MAV_RESULT', ack.result)}")
        self.logger.info(f"✓ {description} accepted")

    async def arm(self):
        self.logger.info("Arming vehicle...")
        await self._command(mavutil.mavlink.MAV_CMD_COMPONENT_ARM_DISARM, 1,
                            description="Arm")

    async def start_mission(self):
        self.logger.info("Starting mission...")
        await self._command(mavutil.mavlink.MAV_CMD_MISSION_START, 0, 0,
                            description="Mission start")

    async def land(self):
        self.logger.info("Landing...")
        await self._command(mavutil.mavlink.MAV_CMD_NAV_LAND, description="Land")

    async def takeoff(self, altitude: float):
        """Takeoff to specified altitude"""
        self.logger.info(f"Taking off to {altitude}m...")
        await self._command(mavutil.mavlink.MAV_CMD_NAV_TAKEOFF,
                            0, 0, 0, 0, 0, 0, altitude,
                            description="Takeoff")

    async def goto_location(self, latitude: float, longitude: float, altitude: float):
        """Reposition to a point (guided mode)"""
        self.logger.info(
            f"Flying to Lat={latitude:.6f}, Lon={longitude:.6f}, Alt={altitude:.1f}m")
        command = mavutil.mavlink.MAV_CMD_DO_REPOSITION
        waiter = self._expect(['COMMAND_ACK'], lambda msg: msg.command == command)
        self._send(
            self.mav_connection.mav.command_int_send,
            self.target_system,
            self.target_component,
            mavutil.mavlink.MAV_FRAME_GLOBAL_RELATIVE_ALT_INT,
            command,
            0, 0,
            -1,  # ground speed: default
            mavutil.mavlink.MAV_DO_REPOSITION_FLAGS_CHANGE_MODE,
            0, 0,
            int(latitude * 1e7),
            int(longitude * 1e7),
            altitude
        )
        ack = await self._receive(waiter, "reposition acknowledgement")
        self._check_command_ack(ack, "Reposition")


async def init_sitl_vehicle(config: LinkConfig) -> Vehicle:
    """Connect to the autopilot and wrap the link in a Vehicle"""
    link = MavlinkVehicleLink(config)
    await link.connect()
    vehicle_id = await link.identify()
    logging.getLogger(__name__).info(f"✓ Vehicle {vehicle_id} ready")
    return Vehicle(id=vehicle_id, link=link)
