"""Configuration parameters for the swerve drivetrain.

This module centralizes all configuration parameters including:
- Physical motor, gearbox and wheel parameters
- Module geometry and per-module azimuth gains
- Drive velocity gains
- Velocity, voltage and current limits
- Control loop timing
- WebSocket connection parameters

Everything is loaded once at startup and never re-validated at runtime.
Derived limits are computed from the physical constants so that a gearbox or
wheel change only has to be made in one place.
"""

import math
from dataclasses import dataclass
from typing import List, Tuple

from .exceptions import ConfigurationError
from .geometry import Translation2d

# ============================================================================
# Physical Parameters
# ============================================================================

MOTOR_NOMINAL_VOLTAGE = 12.0
"""Nominal supply voltage of the module motors (volts)."""

MOTOR_FREE_SPEED_RPS = 5680.0 / 60.0
"""Empirical free speed of the drive motor (rotations per second)."""

DRIVE_GEAR_RATIO = 1.0 / 5.355
"""Drive gearbox reduction, output rotations per motor rotation."""

WHEEL_CIRCUMFERENCE = 0.099 * math.pi
"""Drive wheel circumference (meters)."""

DRIVE_FREE_SPEED = MOTOR_FREE_SPEED_RPS * DRIVE_GEAR_RATIO * WHEEL_CIRCUMFERENCE
"""Theoretical wheel surface speed at nominal voltage (m/s), about 5.5 m/s."""


# ============================================================================
# Module Geometry
# ============================================================================


@dataclass(frozen=True)
class SwerveModuleConstants:
    """Fixed description of one swerve module.

    Attributes:
        name: Label used in logs and telemetry
        location: Offset from the rotation center (meters, +x forward, +y left)
        azimuth_ks: Static friction voltage for the azimuth motor (volts)
        azimuth_kp: Proportional azimuth gain (volts per radian of error)
        azimuth_kd: Derivative azimuth gain (volts per radian/second)
    """

    name: str
    location: Translation2d
    azimuth_ks: float
    azimuth_kp: float
    azimuth_kd: float


# Azimuth gains were tuned per module in volts per degree; math.degrees()
# converts them to volts per radian.
MODULE_FRONT_LEFT = SwerveModuleConstants(
    name="SwerveFL",
    location=Translation2d(0.14605, 0.24765),
    azimuth_ks=0.1,
    azimuth_kp=math.degrees(0.095),
    azimuth_kd=math.degrees(0.0006),
)

MODULE_FRONT_RIGHT = SwerveModuleConstants(
    name="SwerveFR",
    location=Translation2d(0.14605, -0.24765),
    azimuth_ks=0.092,
    azimuth_kp=math.degrees(0.1),
    azimuth_kd=math.degrees(0.00065),
)

MODULE_BACK_LEFT = SwerveModuleConstants(
    name="SwerveBL",
    location=Translation2d(-0.24765, 0.24765),
    azimuth_ks=0.08,
    azimuth_kp=math.degrees(0.105),
    azimuth_kd=math.degrees(0.0004),
)

MODULE_BACK_RIGHT = SwerveModuleConstants(
    name="SwerveBR",
    location=Translation2d(-0.24765, -0.24765),
    azimuth_ks=0.092,
    azimuth_kp=math.degrees(0.09),
    azimuth_kd=math.degrees(0.00065),
)

MODULES = (MODULE_FRONT_LEFT, MODULE_FRONT_RIGHT, MODULE_BACK_LEFT, MODULE_BACK_RIGHT)
"""Module order used everywhere: front-left, front-right, back-left, back-right."""

DRIVE_BASE_RADIUS = max(module.location.norm() for module in MODULES)
"""Distance from the rotation center to the farthest module (meters).
Used to convert the linear speed limit into an angular one."""


# ============================================================================
# Velocity Limits
# ============================================================================

MAX_LINEAR_VELOCITY = DRIVE_FREE_SPEED * 0.75
"""Maximum commanded body linear speed (m/s).

75% of theoretical free speed leaves voltage headroom for the velocity
feedback term under battery sag.
"""

MAX_ANGULAR_VELOCITY = MAX_LINEAR_VELOCITY / DRIVE_BASE_RADIUS
"""Maximum commanded body angular speed (rad/s): omega = v / r."""

MAX_MODULE_SPEED = MAX_LINEAR_VELOCITY
"""Module speed above which all module targets are scaled down together (m/s)."""


# ============================================================================
# Drive Control Parameters (feedforward + P)
# ============================================================================

DRIVE_KS = 0.1
"""Static friction feedforward for drive motors (volts).
Added in the direction of the commanded speed."""

DRIVE_KV = MOTOR_NOMINAL_VOLTAGE / DRIVE_FREE_SPEED
"""Velocity feedforward (volts per m/s).
Nominal voltage divided by free speed, about 2.2 V/(m/s)."""

DRIVE_KP = 2.0
"""Proportional gain on wheel speed error (volts per m/s)."""

COSINE_COMPENSATION = True
"""Scale drive speed by cos(azimuth error) while a module is still turning."""


# ============================================================================
# Azimuth Control Parameters
# ============================================================================

AZIMUTH_DEADBAND = math.radians(0.25)
"""Azimuth error below which the static friction term is not applied (rad).
Prevents kS from chattering the module around its setpoint."""


# ============================================================================
# Actuator Limits
# ============================================================================

MAX_DRIVE_VOLTAGE = 0.95 * MOTOR_NOMINAL_VOLTAGE
"""Drive output clamp (volts). Leaves margin to avoid brownouts."""

MAX_AZIMUTH_VOLTAGE = 0.65 * MOTOR_NOMINAL_VOLTAGE
"""Azimuth output clamp (volts)."""

DRIVE_CURRENT_LIMIT = 40.0
"""Drive motor current limit enforced by the actuator layer (amps)."""

AZIMUTH_CURRENT_LIMIT = 30.0
"""Azimuth motor current limit enforced by the actuator layer (amps)."""


# ============================================================================
# Timing
# ============================================================================

CONTROL_PERIOD = 0.010
"""Control loop period (seconds). 8-64 ms suits the motor hall sensors."""

SENSOR_STALE_TIMEOUT = 5 * CONTROL_PERIOD
"""Age after which a module measurement is treated as a sensor fault (seconds)."""


# ============================================================================
# Terminal Colors
# ============================================================================

TERM_ORANGE = "\033[38;2;247;72;35m"
"""Terminal color code for warnings and faults."""

TERM_BLUE = "\033[38;2;35;116;247m"
"""Terminal color code for status messages."""

TERM_RESET = "\033[0m"
"""Terminal color reset code."""


# ============================================================================
# WebSocket Configuration
# ============================================================================

WS_URI = "ws://localhost:8765"
"""WebSocket URI of the simulator or hardware bridge."""

WS_RETRY_DELAY_SECONDS = 1
"""Initial retry delay for failed WebSocket connections (seconds)."""

WS_MAX_RETRY_DELAY_SECONDS = 60
"""Maximum retry delay with exponential backoff (seconds)."""

WS_TIMEOUT_SECONDS = 0.5
"""Timeout for WebSocket message reception (seconds)."""


# ============================================================================
# Aggregated Configuration
# ============================================================================


@dataclass(frozen=True)
class DrivetrainConfig:
    """Everything the drivetrain needs at construction time."""

    modules: Tuple[SwerveModuleConstants, ...] = MODULES
    drive_ks: float = DRIVE_KS
    drive_kv: float = DRIVE_KV
    drive_kp: float = DRIVE_KP
    cosine_compensation: bool = COSINE_COMPENSATION
    azimuth_deadband: float = AZIMUTH_DEADBAND
    max_linear_velocity: float = MAX_LINEAR_VELOCITY
    max_angular_velocity: float = MAX_ANGULAR_VELOCITY
    max_module_speed: float = MAX_MODULE_SPEED
    max_drive_voltage: float = MAX_DRIVE_VOLTAGE
    max_azimuth_voltage: float = MAX_AZIMUTH_VOLTAGE
    drive_current_limit: float = DRIVE_CURRENT_LIMIT
    azimuth_current_limit: float = AZIMUTH_CURRENT_LIMIT
    period: float = CONTROL_PERIOD
    stale_timeout: float = SENSOR_STALE_TIMEOUT

    @property
    def locations(self) -> List[Translation2d]:
        return [module.location for module in self.modules]


DEFAULT_CONFIG = DrivetrainConfig()


def validate_config(config: DrivetrainConfig, raise_on_error: bool = True) -> List[Tuple[str, str]]:
    """Check a drivetrain configuration for values that cannot work.

    Every problem is collected before raising so a single run reports all of
    them.

    Args:
        config: Configuration to check
        raise_on_error: Raise ConfigurationError if any problem is found

    Returns:
        List of (field, message) pairs, empty when the configuration is valid

    Raises:
        ConfigurationError: If problems were found and raise_on_error is True
    """
    errors: List[Tuple[str, str]] = []

    if len(config.modules) != 4:
        errors.append(("modules", f"expected 4 modules, got {len(config.modules)}"))

    names = [module.name for module in config.modules]
    if len(set(names)) != len(names):
        errors.append(("modules", f"module names must be unique: {names}"))

    for module in config.modules:
        for gain in ("azimuth_ks", "azimuth_kp", "azimuth_kd"):
            value = getattr(module, gain)
            if not math.isfinite(value) or value < 0:
                errors.append((f"{module.name}.{gain}", f"must be finite and >= 0, got {value}"))
        if module.azimuth_kp == 0:
            errors.append((f"{module.name}.azimuth_kp", "must be > 0"))

    for gain in ("drive_ks", "drive_kv", "drive_kp", "azimuth_deadband"):
        value = getattr(config, gain)
        if not math.isfinite(value) or value < 0:
            errors.append((gain, f"must be finite and >= 0, got {value}"))

    for limit in (
        "max_linear_velocity",
        "max_angular_velocity",
        "max_module_speed",
        "max_drive_voltage",
        "max_azimuth_voltage",
        "drive_current_limit",
        "azimuth_current_limit",
        "period",
        "stale_timeout",
    ):
        value = getattr(config, limit)
        if not math.isfinite(value) or value <= 0:
            errors.append((limit, f"must be finite and > 0, got {value}"))

    if config.stale_timeout < config.period:
        errors.append(("stale_timeout", "must be at least one control period"))

    if errors and raise_on_error:
        details = "; ".join(f"{key}: {message}" for key, message in errors)
        raise ConfigurationError(f"Invalid drivetrain configuration: {details}")

    return errors
