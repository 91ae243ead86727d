"""Per-module closed-loop control for a swerve drivetrain.

Each module has two actuators: a drive motor that spins the wheel and an
azimuth motor that steers it. Every cycle the controller turns a target
(speed, angle) and the module's measured (angle, velocity) into a voltage for
each motor.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .config import DrivetrainConfig, SwerveModuleConstants
from .exceptions import ConfigurationError, SensorFault
from .geometry import (
    ZERO_OUTPUT,
    ModuleMeasurement,
    ModuleOutput,
    ModuleState,
    angle_difference,
    normalize_angle,
)

# Errors within this distance of 90 degrees count as exactly 90 degrees
TIE_TOLERANCE = 1e-9


def optimize_module_state(target: ModuleState, current_angle: float) -> Tuple[ModuleState, float]:
    """Choose the shorter of the two ways to realize a module target.

    A wheel pointing at angle a moving at speed s is the same motion as the
    wheel pointing at a + 180 deg moving at -s. Whenever the target is more
    than 90 deg away, the flipped version is less than 90 deg away, so the
    module never has to rotate further than a quarter turn.

    An error of exactly +/-90 deg is not flipped.

    Args:
        target: Desired module state from the kinematics
        current_angle: Measured azimuth (radians)

    Returns:
        Tuple of (optimized state, azimuth error to it in [-pi/2, pi/2])
    """
    error = angle_difference(target.angle, current_angle)
    if abs(error) > math.pi / 2 + TIE_TOLERANCE:
        flipped = ModuleState(speed=-target.speed, angle=normalize_angle(target.angle + math.pi))
        return flipped, angle_difference(flipped.angle, current_angle)
    return ModuleState(speed=target.speed, angle=normalize_angle(target.angle)), error


@dataclass(frozen=True)
class ModuleGains:
    """Control gains for one module.

    Attributes:
        drive_ks: Drive static friction voltage (V)
        drive_kv: Drive velocity feedforward (V per m/s)
        drive_kp: Drive speed error gain (V per m/s)
        azimuth_ks: Azimuth static friction voltage (V)
        azimuth_kp: Azimuth angle error gain (V per rad)
        azimuth_kd: Azimuth error rate gain (V per rad/s)
        azimuth_deadband: Error below which azimuth_ks is skipped (rad)
        cosine_compensation: Scale drive speed by cos(azimuth error)
    """

    drive_ks: float
    drive_kv: float
    drive_kp: float
    azimuth_ks: float
    azimuth_kp: float
    azimuth_kd: float
    azimuth_deadband: float = 0.0
    cosine_compensation: bool = True

    @classmethod
    def from_config(cls, module: SwerveModuleConstants, config: DrivetrainConfig) -> "ModuleGains":
        return cls(
            drive_ks=config.drive_ks,
            drive_kv=config.drive_kv,
            drive_kp=config.drive_kp,
            azimuth_ks=module.azimuth_ks,
            azimuth_kp=module.azimuth_kp,
            azimuth_kd=module.azimuth_kd,
            azimuth_deadband=config.azimuth_deadband,
            cosine_compensation=config.cosine_compensation,
        )


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def _sign(value: float) -> float:
    if value > 0:
        return 1.0
    if value < 0:
        return -1.0
    return 0.0


class SwerveModuleController:
    """Closed-loop controller for one swerve module.

    Control law:
        (target, e) = optimize(target, measured_angle)
        azimuth_V = kS_a * sign(e) + kP_a * e + kD_a * de/dt
        v = target.speed * cos(e)                       (cosine compensation)
        drive_V   = kS_d * sign(v) + kV_d * v + kP_d * (v - measured_velocity)

    Both voltages are clamped to their configured maxima. The static friction
    azimuth term is skipped inside the deadband so the module settles.

    Attributes:
        name: Module label for logs and telemetry
        gains: Control gains
        max_drive_voltage: Drive output clamp (V)
        max_azimuth_voltage: Azimuth output clamp (V)
        stale_timeout: Maximum age of a measurement before it is a fault (s)
    """

    def __init__(
        self,
        name: str,
        gains: ModuleGains,
        max_drive_voltage: float,
        max_azimuth_voltage: float,
        stale_timeout: float,
    ):
        """Initialize the module controller.

        Raises:
            ConfigurationError: If a voltage limit or the stale timeout is not
                positive
        """
        if max_drive_voltage <= 0 or max_azimuth_voltage <= 0:
            raise ConfigurationError(f"{name}: voltage limits must be positive")
        if stale_timeout <= 0:
            raise ConfigurationError(f"{name}: stale timeout must be positive")

        self.name = name
        self.gains = gains
        self.max_drive_voltage = max_drive_voltage
        self.max_azimuth_voltage = max_azimuth_voltage
        self.stale_timeout = stale_timeout

        # Previous azimuth error for the derivative term
        self.prev_azimuth_error: Optional[float] = None

        # Latest values, read by telemetry
        self.last_measurement: Optional[ModuleMeasurement] = None
        self.last_target: ModuleState = ModuleState()
        self.last_output: ModuleOutput = ZERO_OUTPUT
        self.last_azimuth_error: float = 0.0
        self.fault: Optional[str] = None

    @classmethod
    def from_config(
        cls, module: SwerveModuleConstants, config: DrivetrainConfig
    ) -> "SwerveModuleController":
        return cls(
            name=module.name,
            gains=ModuleGains.from_config(module, config),
            max_drive_voltage=config.max_drive_voltage,
            max_azimuth_voltage=config.max_azimuth_voltage,
            stale_timeout=config.stale_timeout,
        )

    def check_measurement(self, measurement: Optional[ModuleMeasurement], now: float) -> ModuleMeasurement:
        """Reject measurements that must not be acted on.

        Raises:
            SensorFault: If the measurement is missing, non-finite, or older
                than the stale timeout
        """
        if measurement is None:
            raise SensorFault(self.name, "no measurement available")
        if not measurement.is_finite():
            raise SensorFault(self.name, f"non-finite measurement {measurement}")
        if measurement.timestamp is not None:
            age = now - measurement.timestamp
            if age > self.stale_timeout:
                raise SensorFault(
                    self.name, f"measurement is {age * 1000.0:.1f} ms old "
                    f"(limit {self.stale_timeout * 1000.0:.1f} ms)"
                )
        return measurement

    def update(
        self,
        target: ModuleState,
        measurement: Optional[ModuleMeasurement],
        now: float,
        dt: float,
    ) -> ModuleOutput:
        """Compute actuator voltages for one cycle.

        Args:
            target: Desired module state (any angle, signed speed)
            measurement: This cycle's sensor reading
            now: Cycle time, on the same clock as measurement timestamps (s)
            dt: Time since the previous cycle (s)

        Returns:
            Clamped drive and azimuth voltages

        Raises:
            SensorFault: If the measurement cannot be used this cycle
        """
        measurement = self.check_measurement(measurement, now)
        self.last_measurement = measurement

        optimized, error = optimize_module_state(target, measurement.angle)

        # Azimuth: PD on the wrapped error plus static friction
        if self.prev_azimuth_error is not None and dt > 0:
            error_rate = (error - self.prev_azimuth_error) / dt
        else:
            error_rate = 0.0
        self.prev_azimuth_error = error

        azimuth = self.gains.azimuth_kp * error + self.gains.azimuth_kd * error_rate
        if abs(error) > self.gains.azimuth_deadband:
            azimuth += self.gains.azimuth_ks * _sign(error)

        # Drive: feedforward plus proportional speed correction
        speed = optimized.speed
        if self.gains.cosine_compensation:
            speed *= math.cos(error)

        drive = (
            self.gains.drive_ks * _sign(speed)
            + self.gains.drive_kv * speed
            + self.gains.drive_kp * (speed - measurement.velocity)
        )

        output = ModuleOutput(
            drive=_clamp(drive, self.max_drive_voltage),
            azimuth=_clamp(azimuth, self.max_azimuth_voltage),
        )

        self.last_target = optimized
        self.last_azimuth_error = error
        self.last_output = output
        self.fault = None
        return output

    def hold(self, reason: Optional[str] = None) -> ModuleOutput:
        """Zero both actuators for this cycle.

        Used for sensor faults and stops. The commanded state becomes zero
        speed at the last known angle, and derivative history is cleared so
        the next good cycle does not see a jump.

        Args:
            reason: Fault description for telemetry, None for a plain stop
        """
        angle = self.last_measurement.angle if self.last_measurement is not None else self.last_target.angle
        self.last_target = ModuleState(speed=0.0, angle=angle)
        self.last_output = ZERO_OUTPUT
        self.prev_azimuth_error = None
        self.fault = reason
        return ZERO_OUTPUT

    def reset(self) -> None:
        """Clear derivative history and fault state."""
        self.prev_azimuth_error = None
        self.fault = None

    def get_diagnostics(self) -> Dict[str, float]:
        """Get diagnostic information for logging and debugging.

        Returns:
            Dictionary containing the latest target, measurement, error and
            output values
        """
        measured_angle = self.last_measurement.angle if self.last_measurement else float("nan")
        measured_velocity = self.last_measurement.velocity if self.last_measurement else float("nan")
        return {
            "target_speed": self.last_target.speed,
            "target_angle": self.last_target.angle,
            "measured_angle": measured_angle,
            "measured_velocity": measured_velocity,
            "azimuth_error": self.last_azimuth_error,
            "drive_voltage": self.last_output.drive,
            "azimuth_voltage": self.last_output.azimuth,
            "faulted": 1.0 if self.fault else 0.0,
        }
