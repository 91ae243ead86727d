#!/usr/bin/env python3
"""
WebSocket Client for Swerve Drivetrain Control

This module connects the drivetrain core to a simulator or hardware bridge
over a WebSocket. Each incoming sensor message drives exactly one control
cycle: module and heading readings are fed to the drivetrain, the cycle runs,
and the resulting actuator voltages are sent back together with the pose
estimate.

Messages received (JSON):
    {"message_type": "sensors", "timestamp": t,
     "heading": {"yaw": rad, "pitch": rad, "roll": rad},
     "modules": [{"angle": rad, "velocity": m/s, "timestamp": t}, ...],
     "command": {"mode": "field" | "body" | "stance" | "stop",
                 "forward": m/s, "lateral": m/s, "angular": rad/s}}
    {"message_type": "reset_pose", "x": m, "y": m, "heading": rad}
    {"message_type": "stop"}                        (answered with zero actuators)

Messages sent:
    {"message_type": "configure", "modules": [{"name", "drive_current_limit",
     "azimuth_current_limit"}, ...]}                      (once per connection)
    {"message_type": "actuators", "modules": [{"drive": V, "azimuth": V}, ...],
     "pose": {"x", "y", "heading"}, "faults": {name: reason}}

The "command" field is optional. Commands are not sticky: a sensor message
without one lets the drivetrain come to rest. A stop, whether requested or
caused by missing sensor data, is always answered with zero voltages.
"""

import asyncio
import json
import logging
import math
import signal
import time
from typing import Any, Dict, List, Optional, Union

import websockets

from swerve_control.config import (
    DEFAULT_CONFIG,
    TERM_BLUE,
    TERM_ORANGE,
    TERM_RESET,
    WS_MAX_RETRY_DELAY_SECONDS,
    WS_RETRY_DELAY_SECONDS,
    WS_TIMEOUT_SECONDS,
    WS_URI,
    DrivetrainConfig,
)
from swerve_control.drivetrain import Drivetrain
from swerve_control.geometry import ZERO_OUTPUT, HeadingReading, ModuleMeasurement, ModuleOutput, Pose2d
from swerve_control.safety import StopRegistry


class CustomFormatter(logging.Formatter):
    """Custom logging formatter that removes timestamps from INFO messages.

    This formatter provides clean console output by showing INFO messages without
    timestamps while preserving full context for WARNING, ERROR, and DEBUG messages.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record based on its level.

        Args:
            record: The log record to format.

        Returns:
            Formatted log message string.
        """
        if record.levelno == logging.INFO:
            return record.getMessage()
        else:
            return f"{self.formatTime(record, self.datefmt)} - {record.levelname} - {record.getMessage()}"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, show all levels with timestamps. If False, show INFO
                 without timestamps and WARNING/ERROR with timestamps.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        handler = logging.StreamHandler()
        formatter = CustomFormatter(datefmt="%Y-%m-%d %H:%M:%S")
        handler.setFormatter(formatter)
        logger = logging.getLogger()
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)


class BridgedModuleIO:
    """Module sensors and actuators mirrored from WebSocket messages.

    The latest reading is kept until a newer one arrives, so a module the
    bridge stops reporting goes stale by timestamp and faults.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.measurement: Optional[ModuleMeasurement] = None
        self.output: ModuleOutput = ZERO_OUTPUT
        self.drive_current_limit: Optional[float] = None
        self.azimuth_current_limit: Optional[float] = None

    def read(self) -> Optional[ModuleMeasurement]:
        return self.measurement

    def write(self, drive_volts: float, azimuth_volts: float) -> None:
        self.output = ModuleOutput(drive=drive_volts, azimuth=azimuth_volts)

    def configure_current_limits(self, drive_amps: float, azimuth_amps: float) -> None:
        self.drive_current_limit = drive_amps
        self.azimuth_current_limit = azimuth_amps


class BridgedHeadingSensor:
    """Heading sensor mirrored from WebSocket messages."""

    def __init__(self) -> None:
        self.reading = HeadingReading(yaw=0.0)

    def read(self) -> HeadingReading:
        return self.reading


class SwerveClient:
    """Swerve drivetrain control over a WebSocket connection.

    This class manages the complete control pipeline:
    - WebSocket connection to the simulator or hardware bridge
    - Sensor message parsing into module and heading readings
    - One drivetrain cycle per sensor message
    - Actuator replies with pose and fault telemetry
    - Emergency stop on signals, timeouts and disconnects

    Attributes:
        uri: WebSocket URI to connect to.
        drivetrain: The drivetrain being controlled.
        module_ios: Bridged module IO, one per module.
        heading_sensor: Bridged heading sensor.
        stop_registry: Subsystems stopped together on shutdown or stop request.
        should_stop: Flag indicating whether to stop the control loop.
    """

    def __init__(self, uri: str, config: DrivetrainConfig = DEFAULT_CONFIG) -> None:
        """Initialize the client.

        Args:
            uri: WebSocket URI to connect to (must start with ws:// or wss://).
            config: Drivetrain configuration.

        Raises:
            ValueError: If URI format is invalid.
            ConfigurationError: If the drivetrain configuration is invalid.
        """
        if not uri or not uri.startswith(("ws://", "wss://")):
            raise ValueError(f"Invalid WebSocket URI: {uri}. Must start with 'ws://' or 'wss://'")

        self.uri: str = uri
        self.should_stop: bool = False

        self.module_ios = [BridgedModuleIO(module.name) for module in config.modules]
        self.heading_sensor = BridgedHeadingSensor()
        self.drivetrain = Drivetrain(self.module_ios, self.heading_sensor, config=config)

        self.stop_registry = StopRegistry()
        self.stop_registry.register(self.drivetrain)

        # Cycle timing statistics
        self.cycle_count: int = 0
        self.overrun_count: int = 0

    def process_sensor_message(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a sensor message, run one control cycle, and build the reply.

        Args:
            data: Parsed JSON sensor message.

        Returns:
            Actuator message to send back.
        """
        timestamp = data.get("timestamp")
        now = float(timestamp) if timestamp is not None else time.monotonic()

        heading = data.get("heading")
        if isinstance(heading, dict) and heading.get("yaw") is not None:
            self.heading_sensor.reading = HeadingReading(
                yaw=float(heading["yaw"]),
                pitch=float(heading.get("pitch", 0.0)),
                roll=float(heading.get("roll", 0.0)),
            )

        modules = data.get("modules", [])
        if not isinstance(modules, list):
            logging.warning(f"Invalid modules data type: expected list, got {type(modules)}")
            modules = []

        for io, module_data in zip(self.module_ios, modules):
            if not isinstance(module_data, dict):
                continue
            angle = module_data.get("angle")
            velocity = module_data.get("velocity")
            if angle is None or velocity is None:
                continue
            # Module stamps are only comparable with a bridge-side cycle time
            sample_time = module_data.get("timestamp") if timestamp is not None else None
            if sample_time is None:
                sample_time = now
            io.measurement = ModuleMeasurement(
                angle=float(angle), velocity=float(velocity), timestamp=float(sample_time)
            )

        stop_requested = False
        command = data.get("command")
        if command is not None:
            stop_requested = self.apply_command(command)

        start = time.perf_counter()
        outputs = self.drivetrain.periodic(now=now)
        elapsed = time.perf_counter() - start

        if stop_requested:
            # The cycle still updates odometry, but the bridge must see zero
            self.stop_registry.stop_all()
            outputs = self.written_outputs()

        self.cycle_count += 1
        if elapsed > self.drivetrain.config.period:
            self.overrun_count += 1
            logging.warning(
                f"Control cycle took {elapsed * 1000.0:.1f} ms "
                f"(period {self.drivetrain.config.period * 1000.0:.1f} ms)"
            )

        return self.build_actuator_message(outputs)

    def apply_command(self, command: Dict[str, Any]) -> bool:
        """Forward a command from the bridge to the drivetrain.

        Args:
            command: Dictionary with "mode" and, for motion modes, "forward",
                "lateral" and "angular" velocities.

        Returns:
            True if the command was a stop request.
        """
        mode = command.get("mode")
        if mode in ("field", "body"):
            forward = float(command.get("forward", 0.0))
            lateral = float(command.get("lateral", 0.0))
            angular = float(command.get("angular", 0.0))
            if mode == "field":
                self.drivetrain.drive_field_relative(forward, lateral, angular)
            else:
                self.drivetrain.drive_body_relative(forward, lateral, angular)
        elif mode == "stance":
            self.drivetrain.to_stance_lock()
        elif mode == "stop":
            self.stop_registry.stop_all()
            return True
        else:
            logging.warning(f"Ignoring command with unknown mode: {mode!r}")
        return False

    def written_outputs(self) -> List[ModuleOutput]:
        """Voltages most recently written to each bridged module."""
        return [io.output for io in self.module_ios]

    def build_stop_message(self) -> Dict[str, Any]:
        """Stop every subsystem and build the zero-voltage reply for the bridge."""
        self.stop_registry.stop_all()
        return self.build_actuator_message(self.written_outputs())

    def process_reset_pose(self, data: Dict[str, Any]) -> None:
        """Re-seed the drivetrain odometry from a reset message."""
        pose = Pose2d(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            heading=float(data.get("heading", 0.0)),
        )
        self.drivetrain.reset_pose(pose)

    def build_actuator_message(self, outputs: List[ModuleOutput]) -> Dict[str, Any]:
        """Build the reply carrying actuator voltages and telemetry."""
        pose = self.drivetrain.get_pose()
        return {
            "message_type": "actuators",
            "modules": [{"drive": out.drive, "azimuth": out.azimuth} for out in outputs],
            "pose": {"x": pose.x, "y": pose.y, "heading": pose.heading},
            "faults": self.drivetrain.get_faults(),
        }

    def build_configure_message(self) -> Dict[str, Any]:
        """Build the message carrying actuator-side current limits."""
        return {
            "message_type": "configure",
            "modules": [
                {
                    "name": io.name,
                    "drive_current_limit": io.drive_current_limit,
                    "azimuth_current_limit": io.azimuth_current_limit,
                }
                for io in self.module_ios
            ],
        }

    def parse_and_route_message(self, message: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        """Parse incoming message and route to appropriate handler.

        Args:
            message: Raw JSON message string or bytes from WebSocket.

        Returns:
            Reply to send back, or None if the message needs no reply.
        """
        try:
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            data = json.loads(message)

            message_type = data.get("message_type")

            if message_type == "sensors":
                return self.process_sensor_message(data)
            elif message_type == "reset_pose":
                self.process_reset_pose(data)
            elif message_type == "stop":
                return self.build_stop_message()
            else:
                logging.debug(f"\nReceived unknown message: {json.dumps(data, indent=2)}\n")

        except json.JSONDecodeError as e:
            logging.error(f"Error parsing JSON: {e}")
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logging.error(f"Error processing message data: {e}")
        return None

    async def run_control_loop(self) -> None:
        """Connect to WebSocket and run the control loop.

        Maintains a connection to the WebSocket server with automatic retry logic
        and exponential backoff. The drivetrain is stopped whenever sensor
        messages stop arriving or the connection drops. Continues running until
        should_stop is set.
        """
        retry_delay = WS_RETRY_DELAY_SECONDS
        max_retry_delay = WS_MAX_RETRY_DELAY_SECONDS

        while not self.should_stop:
            try:
                async with websockets.connect(self.uri) as websocket:
                    logging.info(f"{TERM_BLUE}✓ Connected to {self.uri}{TERM_RESET}")
                    retry_delay = WS_RETRY_DELAY_SECONDS

                    await websocket.send(json.dumps(self.build_configure_message()))

                    while not self.should_stop:
                        try:
                            message = await asyncio.wait_for(
                                websocket.recv(), timeout=WS_TIMEOUT_SECONDS
                            )
                        except asyncio.TimeoutError:
                            logging.warning(
                                f"{TERM_ORANGE}No sensor data for {WS_TIMEOUT_SECONDS}s, "
                                f"stopping drivetrain{TERM_RESET}"
                            )
                            await websocket.send(json.dumps(self.build_stop_message()))
                            continue
                        except websockets.exceptions.ConnectionClosed:
                            logging.warning("Connection closed by server")
                            self.stop_registry.stop_all()
                            break

                        reply = self.parse_and_route_message(message)
                        if reply is not None:
                            await websocket.send(json.dumps(reply))

            except Exception as e:
                self.stop_registry.stop_all()
                if self.should_stop:
                    break
                logging.error(f"Connection error: {e}")
                logging.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, max_retry_delay)

    def stop(self) -> None:
        """Signal the client to stop and stop every registered subsystem."""
        self.should_stop = True
        self.stop_registry.stop_all()

    def __enter__(self) -> "SwerveClient":
        """Context manager entry point.

        Returns:
            Self reference for use in with statement.
        """
        self.drivetrain.configure()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit point - ensures the drivetrain is stopped.

        Args:
            exc_type: Exception type if an exception occurred.
            exc_val: Exception value if an exception occurred.
            exc_tb: Exception traceback if an exception occurred.
        """
        self.drivetrain.close()
        if self.cycle_count:
            pose = self.drivetrain.get_pose()
            logging.info(
                f"{TERM_BLUE}→ {self.cycle_count} cycles, {self.overrun_count} overruns, "
                f"final pose ({pose.x:.3f}, {pose.y:.3f}, {math.degrees(pose.heading):.1f}°){TERM_RESET}"
            )


async def main(uri: str = WS_URI) -> None:
    """Main entry point for the WebSocket client.

    Creates a SwerveClient instance, sets up signal handlers for graceful
    shutdown, and starts the control loop.

    Args:
        uri: WebSocket URI of the simulator or hardware bridge.
    """
    with SwerveClient(uri) as client:
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            """Handle shutdown signals (SIGINT, SIGTERM)."""
            logging.info("\nShutdown signal received...")
            client.stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        await client.run_control_loop()
