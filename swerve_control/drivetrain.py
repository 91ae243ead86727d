"""Swerve drivetrain orchestrator.

This module ties the control layers together and is the only surface other
subsystems talk to:

- Commands (drive field/body relative, stance lock, stop, pose reset) may come
  from any thread. Drive and stance commands only replace the stored desired
  command; they take effect at the start of the next cycle and are consumed by
  it. A command that is not re-issued every cycle lapses and the vehicle comes
  to rest.
- ``periodic`` runs one control cycle and is called by exactly one thread at
  the control rate:
      command -> clamp -> kinematics -> desaturate -> module controllers (x4)
      -> pose estimator -> actuator write
- ``stop`` writes zero to every actuator immediately and forces the actuator
  write of any cycle already in flight to zero as well.

One module failing (stale sensor, unexpected exception) zeroes that module for
the cycle; the other modules and the pose estimator still complete.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, TERM_ORANGE, TERM_RESET, DrivetrainConfig, validate_config
from .exceptions import ConfigurationError, SensorFault
from .geometry import (
    ZERO_OUTPUT,
    ChassisSpeeds,
    HeadingReading,
    ModuleMeasurement,
    ModuleOutput,
    ModuleState,
    Pose2d,
)
from .hardware import HeadingSensor, ModuleIO
from .localizer import SwervePoseEstimator
from .model import STANCE_ANGLES, SwerveKinematics, clamp_chassis_speeds, desaturate_module_speeds
from .motor_controller import SwerveModuleController


@dataclass(frozen=True)
class DriveCommand:
    """Desired motion for the next cycle.

    Attributes:
        speeds: Body-frame velocity (ignored when stance is set)
        stance: Lock the modules in the stance formation instead of moving
    """

    speeds: ChassisSpeeds = ChassisSpeeds()
    stance: bool = False


class Drivetrain:
    """Four-module swerve drivetrain with odometry.

    Attributes:
        config: Drivetrain configuration
        kinematics: Kinematic model of the module layout
        modules: Per-module controllers, in configuration order
        pose_estimator: Odometry fused with the heading sensor
        stance_states: Precomputed stance-lock module states
        cycle_count: Number of completed cycles
    """

    def __init__(
        self,
        module_ios: Sequence[ModuleIO],
        heading_sensor: HeadingSensor,
        config: DrivetrainConfig = DEFAULT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
        initial_pose: Optional[Pose2d] = None,
    ) -> None:
        """Build the drivetrain and stop all actuators.

        Args:
            module_ios: Sensor/actuator access for each module, in the same
                order as config.modules
            heading_sensor: Absolute heading sensor
            config: Geometry, gains and limits
            clock: Monotonic time source used when periodic() is not given a
                time explicitly
            initial_pose: Starting pose (defaults to the origin)

        Raises:
            ConfigurationError: If the configuration is invalid or the number
                of module IOs does not match it
        """
        validate_config(config)
        if len(module_ios) != len(config.modules):
            raise ConfigurationError(
                f"Expected {len(config.modules)} module IOs, got {len(module_ios)}"
            )

        self.config = config
        self.module_ios = list(module_ios)
        self.heading_sensor = heading_sensor
        self.clock = clock

        self.kinematics = SwerveKinematics(config.locations)
        self.modules = [SwerveModuleController.from_config(m, config) for m in config.modules]
        self.pose_estimator = SwervePoseEstimator(self.kinematics, initial_pose)
        self.stance_states = tuple(
            ModuleState(speed=0.0, angle=angle) for angle in STANCE_ANGLES
        )

        # Written by any thread, taken by the cycle
        self._command_lock = threading.Lock()
        self._desired: Optional[DriveCommand] = None
        self._default_command: Optional[Callable[["Drivetrain"], None]] = None

        # Serializes stop() against the cycle's actuator write
        self._output_lock = threading.Lock()
        self._cycle_active = False
        self._stop_pending = False

        # Cycle-boundary snapshots for telemetry
        self._last_cycle_time: Optional[float] = None
        self._desired_speeds = ChassisSpeeds()
        self._measured_states: Tuple[ModuleState, ...] = tuple(ModuleState() for _ in self.modules)
        self._commanded_states: Tuple[ModuleState, ...] = tuple(ModuleState() for _ in self.modules)
        self._outputs: Tuple[ModuleOutput, ...] = tuple(ZERO_OUTPUT for _ in self.modules)
        self._orientation: Optional[HeadingReading] = None
        self._faults: Dict[str, str] = {}
        self.cycle_count = 0

        with self._output_lock:
            self._write_zero()

    # ------------------------------------------------------------------
    # Command surface
    # ------------------------------------------------------------------

    def drive(self, speeds: ChassisSpeeds) -> None:
        """Drive with a body-relative velocity. Must be called every cycle."""
        self._set_command(DriveCommand(speeds=speeds))

    def drive_body_relative(self, forward: float, lateral: float, angular: float) -> None:
        """Drive with body-relative velocities. Must be called every cycle.

        Args:
            forward: Forward speed (m/s)
            lateral: Leftward speed (m/s)
            angular: Counter-clockwise speed (rad/s)
        """
        self.drive(ChassisSpeeds(vx=forward, vy=lateral, omega=angular))

    def drive_field_relative(self, forward: float, lateral: float, angular: float) -> None:
        """Drive with field-relative velocities. Must be called every cycle.

        The command is rotated into the body frame with the current pose
        heading at the time of the call.

        Args:
            forward: Speed away from the driver station, along field +x (m/s)
            lateral: Speed along field +y (m/s)
            angular: Counter-clockwise speed (rad/s)
        """
        heading = self.pose_estimator.pose.heading
        self.drive(ChassisSpeeds.from_field_relative(forward, lateral, angular, heading))

    def to_stance_lock(self) -> None:
        """Lock the modules in the stance formation. Must be called every cycle."""
        self._set_command(DriveCommand(stance=True))

    def reset_pose(self, pose: Pose2d) -> None:
        """Re-seed the odometry, e.g. at the start of an autonomous routine."""
        self.pose_estimator.reset(pose)

    def set_default_command(self, command: Optional[Callable[["Drivetrain"], None]]) -> None:
        """Set the command run on cycles where nothing else issued one.

        The callable receives the drivetrain and should issue a drive or
        stance command. With no default command an idle cycle brings the
        vehicle to rest.
        """
        self._default_command = command

    def stop(self) -> None:
        """Zero every actuator now and on the in-flight cycle's write.

        Safe to call from any thread. Any queued drive or stance command is
        discarded. A later command resumes motion on the following cycle.
        """
        self._set_command(None)
        with self._output_lock:
            if self._cycle_active:
                self._stop_pending = True
            self._write_zero()

    def _write_zero(self) -> None:
        # Caller holds _output_lock
        for module, io in zip(self.modules, self.module_ios):
            try:
                io.write(0.0, 0.0)
            except Exception as e:
                logging.error(f"{module.name}: failed to write stop output: {e}", exc_info=True)

    def configure(self) -> None:
        """Push current limits to the actuator layer. Call once at startup."""
        for module, io in zip(self.modules, self.module_ios):
            io.configure_current_limits(
                self.config.drive_current_limit, self.config.azimuth_current_limit
            )
            logging.debug(f"{module.name}: current limits configured")

    def close(self) -> None:
        """Stop the drivetrain for shutdown."""
        self.stop()
        logging.info("Drivetrain stopped")

    # ------------------------------------------------------------------
    # Control cycle
    # ------------------------------------------------------------------

    def periodic(self, now: Optional[float] = None) -> List[ModuleOutput]:
        """Run one control cycle.

        Never raises: failures are contained per module (zero output for that
        module) or per stage (pose held).

        Args:
            now: Cycle time on the same clock as measurement timestamps.
                Defaults to the drivetrain clock.

        Returns:
            The outputs actually written to the actuators
        """
        if now is None:
            now = self.clock()
        dt = now - self._last_cycle_time if self._last_cycle_time is not None else self.config.period
        self._last_cycle_time = now

        with self._output_lock:
            self._cycle_active = True
            self._stop_pending = False

        command = self._take_command()

        measurements = [self._read_module(i) for i in range(len(self.modules))]
        heading = self._read_heading()

        try:
            targets, desired_speeds = self._compute_targets(command, measurements)
        except Exception as e:
            logging.error(f"Target computation failed, holding modules: {e}", exc_info=True)
            targets = [ModuleState(speed=0.0, angle=module.last_target.angle) for module in self.modules]
            desired_speeds = ChassisSpeeds()

        outputs: List[ModuleOutput] = []
        faults: Dict[str, str] = {}
        for i, module in enumerate(self.modules):
            try:
                outputs.append(module.update(targets[i], measurements[i], now, dt))
            except SensorFault as e:
                faults[module.name] = e.reason
                outputs.append(module.hold(e.reason))
                measurements[i] = None
            except Exception as e:
                logging.error(f"{module.name}: control update failed: {e}", exc_info=True)
                faults[module.name] = f"control error: {e}"
                outputs.append(module.hold(str(e)))
                measurements[i] = None

        self._report_fault_changes(faults)

        if heading is not None:
            try:
                self.pose_estimator.update(measurements, heading, dt)
            except Exception as e:
                logging.error(f"Pose update failed, holding pose: {e}", exc_info=True)

        written = self._write_outputs(outputs)

        self._desired_speeds = desired_speeds
        self._measured_states = tuple(
            m.as_state() if m is not None else ModuleState() for m in measurements
        )
        self._commanded_states = tuple(module.last_target for module in self.modules)
        self._outputs = tuple(written)
        self._faults = faults
        self.cycle_count += 1
        return written

    def _set_command(self, command: Optional[DriveCommand]) -> None:
        with self._command_lock:
            self._desired = command

    def _swap_command(self) -> Optional[DriveCommand]:
        with self._command_lock:
            command, self._desired = self._desired, None
        return command

    def _take_command(self) -> Optional[DriveCommand]:
        command = self._swap_command()
        if command is None and self._default_command is not None:
            try:
                self._default_command(self)
            except Exception as e:
                logging.error(f"Default command failed: {e}", exc_info=True)
            command = self._swap_command()
        return command

    def _read_module(self, index: int) -> Optional[ModuleMeasurement]:
        try:
            return self.module_ios[index].read()
        except Exception as e:
            logging.error(f"{self.modules[index].name}: sensor read failed: {e}", exc_info=True)
            return None

    def _read_heading(self) -> Optional[HeadingReading]:
        try:
            reading = self.heading_sensor.read()
        except Exception as e:
            logging.error(f"Heading sensor read failed, holding pose: {e}", exc_info=True)
            return None
        self._orientation = reading
        return reading

    def _compute_targets(
        self,
        command: Optional[DriveCommand],
        measurements: Sequence[Optional[ModuleMeasurement]],
    ) -> Tuple[List[ModuleState], ChassisSpeeds]:
        if command is not None and command.stance:
            return list(self.stance_states), ChassisSpeeds()

        speeds = command.speeds if command is not None else ChassisSpeeds()
        speeds = clamp_chassis_speeds(
            speeds, self.config.max_linear_velocity, self.config.max_angular_velocity
        )

        current_angles = [
            m.angle if m is not None and m.is_finite() else module.last_target.angle
            for m, module in zip(measurements, self.modules)
        ]
        targets = self.kinematics.to_module_states(speeds, current_angles)
        return desaturate_module_speeds(targets, self.config.max_module_speed), speeds

    def _write_outputs(self, outputs: List[ModuleOutput]) -> List[ModuleOutput]:
        with self._output_lock:
            if self._stop_pending:
                self._stop_pending = False
                outputs = [module.hold(module.fault) for module in self.modules]

            for module, io, output in zip(self.modules, self.module_ios, outputs):
                try:
                    io.write(output.drive, output.azimuth)
                except Exception as e:
                    logging.error(f"{module.name}: actuator write failed: {e}", exc_info=True)
            self._cycle_active = False
        return outputs

    def _report_fault_changes(self, faults: Dict[str, str]) -> None:
        for name, reason in faults.items():
            if name not in self._faults:
                logging.warning(f"{TERM_ORANGE}{name}: sensor fault, output zeroed ({reason}){TERM_RESET}")
        for name in self._faults:
            if name not in faults:
                logging.info(f"{name}: fault cleared")

    # ------------------------------------------------------------------
    # Telemetry surface (snapshots taken at cycle boundaries)
    # ------------------------------------------------------------------

    def get_pose(self) -> Pose2d:
        """The vehicle's estimated pose."""
        return self.pose_estimator.pose

    def get_orientation(self) -> Optional[HeadingReading]:
        """Last full orientation reading from the heading sensor."""
        return self._orientation

    def get_measured_module_states(self) -> Tuple[ModuleState, ...]:
        """Module states measured during the last cycle (zero for faulted modules)."""
        return self._measured_states

    def get_commanded_module_states(self) -> Tuple[ModuleState, ...]:
        """Optimized module states commanded during the last cycle."""
        return self._commanded_states

    def get_module_outputs(self) -> Tuple[ModuleOutput, ...]:
        """Voltages written during the last cycle."""
        return self._outputs

    def get_measured_speeds(self) -> ChassisSpeeds:
        """Body velocity recovered from the module measurements."""
        return self.pose_estimator.last_speeds

    def get_desired_speeds(self) -> ChassisSpeeds:
        """Body velocity commanded during the last cycle, after clamping."""
        return self._desired_speeds

    def get_faults(self) -> Dict[str, str]:
        """Modules that faulted during the last cycle, with the reason."""
        return dict(self._faults)

    def get_diagnostics(self) -> Dict[str, Dict[str, float]]:
        """Per-module controller diagnostics plus odometry diagnostics."""
        diagnostics = {module.name: module.get_diagnostics() for module in self.modules}
        diagnostics["odometry"] = self.pose_estimator.get_diagnostics()
        return diagnostics
