"""Planar geometry and module state types for the swerve drivetrain.

All angles are radians, counter-clockwise positive. Distances are meters and
velocities meters per second. The body frame has +x forward and +y left.
"""

import math
from dataclasses import dataclass
from typing import Optional


def normalize_angle(angle: float) -> float:
    """Wrap an angle into the half-open interval (-pi, pi].

    Args:
        angle: Angle in radians (any range)

    Returns:
        Equivalent angle in (-pi, pi]
    """
    wrapped = math.fmod(angle + math.pi, 2.0 * math.pi)
    if wrapped <= 0.0:
        wrapped += 2.0 * math.pi
    return wrapped - math.pi


def angle_difference(target: float, current: float) -> float:
    """Shortest signed rotation from ``current`` to ``target``, in (-pi, pi]."""
    return normalize_angle(target - current)


@dataclass(frozen=True)
class Translation2d:
    """Offset of a point in the plane (meters)."""

    x: float = 0.0
    y: float = 0.0

    def norm(self) -> float:
        return math.hypot(self.x, self.y)

    def angle(self) -> float:
        return math.atan2(self.y, self.x)

    def rotate_by(self, angle: float) -> "Translation2d":
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)
        return Translation2d(self.x * cos_a - self.y * sin_a, self.x * sin_a + self.y * cos_a)

    def distance(self, other: "Translation2d") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class Pose2d:
    """Planar pose: position (x, y) in the field frame plus heading."""

    x: float = 0.0
    y: float = 0.0
    heading: float = 0.0

    @property
    def translation(self) -> Translation2d:
        return Translation2d(self.x, self.y)

    def exp(self, dx: float, dy: float, dtheta: float) -> "Pose2d":
        """Apply a body-frame twist, integrating along a constant-curvature arc.

        Args:
            dx: Forward displacement over the step (meters)
            dy: Leftward displacement over the step (meters)
            dtheta: Heading change over the step (radians)

        Returns:
            New pose with heading ``self.heading + dtheta`` (wrapped)
        """
        if abs(dtheta) < 1e-9:
            # Taylor expansion of sin(t)/t and (1 - cos(t))/t
            s = 1.0 - dtheta * dtheta / 6.0
            c = 0.5 * dtheta
        else:
            s = math.sin(dtheta) / dtheta
            c = (1.0 - math.cos(dtheta)) / dtheta

        # Displacement in the frame of the starting pose
        local_x = dx * s - dy * c
        local_y = dx * c + dy * s

        cos_h = math.cos(self.heading)
        sin_h = math.sin(self.heading)
        return Pose2d(
            x=self.x + local_x * cos_h - local_y * sin_h,
            y=self.y + local_x * sin_h + local_y * cos_h,
            heading=normalize_angle(self.heading + dtheta),
        )


@dataclass(frozen=True)
class ChassisSpeeds:
    """Body-frame velocity of the vehicle.

    Attributes:
        vx: Forward velocity (m/s)
        vy: Leftward velocity (m/s)
        omega: Counter-clockwise angular velocity (rad/s)
    """

    vx: float = 0.0
    vy: float = 0.0
    omega: float = 0.0

    @classmethod
    def from_field_relative(
        cls, vx: float, vy: float, omega: float, heading: float
    ) -> "ChassisSpeeds":
        """Rotate a field-frame velocity into the body frame.

        Args:
            vx: Velocity along the field x axis (m/s)
            vy: Velocity along the field y axis (m/s)
            omega: Angular velocity (rad/s), identical in both frames
            heading: Current vehicle heading in the field frame (radians)
        """
        cos_h = math.cos(heading)
        sin_h = math.sin(heading)
        return cls(
            vx=vx * cos_h + vy * sin_h,
            vy=-vx * sin_h + vy * cos_h,
            omega=omega,
        )

    def linear_speed(self) -> float:
        return math.hypot(self.vx, self.vy)


@dataclass(frozen=True)
class ModuleState:
    """Speed and wheel direction of one module (commanded or measured)."""

    speed: float = 0.0
    angle: float = 0.0


@dataclass(frozen=True)
class ModuleMeasurement:
    """Raw per-cycle reading from one module's sensors.

    Attributes:
        angle: Measured azimuth (radians)
        velocity: Measured drive wheel surface velocity (m/s)
        timestamp: Time the sample was taken (seconds, monotonic clock)
    """

    angle: float
    velocity: float
    timestamp: Optional[float] = None

    def is_finite(self) -> bool:
        return math.isfinite(self.angle) and math.isfinite(self.velocity)

    def as_state(self) -> ModuleState:
        return ModuleState(speed=self.velocity, angle=self.angle)


@dataclass(frozen=True)
class ModuleOutput:
    """Electrical command for one module's two actuators (volts)."""

    drive: float = 0.0
    azimuth: float = 0.0


ZERO_OUTPUT = ModuleOutput()


@dataclass(frozen=True)
class HeadingReading:
    """Absolute orientation from the heading sensor (radians)."""

    yaw: float
    pitch: float = 0.0
    roll: float = 0.0
