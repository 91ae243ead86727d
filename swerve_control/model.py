"""
Swerve drive kinematic model.

This module converts between a single body-frame velocity and the per-module
(speed, angle) targets of a swerve drivetrain, and back again.

For a module at offset r = (x, y) from the rotation center, the wheel must
move with the vehicle's linear velocity plus the tangential velocity due to
rotation (omega x r):
    v_module_x = vx - omega * y
    v_module_y = vy + omega * x

Stacking these two rows for every module gives an over-determined linear map
A (2N x 3) from (vx, vy, omega) to module velocities. The inverse direction is
solved in the least-squares sense, which averages out wheel slip and sensor
noise instead of trusting any one module.
"""

import logging
import math
from typing import List, Optional, Sequence

import numpy as np
import numpy.typing as npt

from .exceptions import CommandOutOfRange, ConfigurationError
from .geometry import ChassisSpeeds, ModuleState, Translation2d

# Below this speed (m/s) a module target has no meaningful direction
ZERO_SPEED_EPSILON = 1e-6


class SwerveKinematics:
    """Forward and inverse kinematics for a rigid set of swerve modules.

    Attributes:
        locations: Module offsets from the rotation center (meters)
        forward_matrix: (2N x 3) map from chassis speeds to module velocities
        inverse_matrix: (3 x 2N) Moore-Penrose pseudo-inverse of forward_matrix
    """

    def __init__(self, locations: Sequence[Translation2d]):
        """Validate the module layout and precompute the kinematic matrices.

        Args:
            locations: Offset of each module from the rotation center

        Raises:
            ConfigurationError: If the layout cannot decompose angular velocity
        """
        self.locations = tuple(locations)
        validate_geometry(self.locations)

        rows = []
        for location in self.locations:
            rows.append([1.0, 0.0, -location.y])
            rows.append([0.0, 1.0, location.x])
        self.forward_matrix: npt.NDArray[np.float64] = np.array(rows, dtype=float)
        self.inverse_matrix: npt.NDArray[np.float64] = np.linalg.pinv(self.forward_matrix)

    @property
    def num_modules(self) -> int:
        return len(self.locations)

    def to_module_states(
        self,
        speeds: ChassisSpeeds,
        current_angles: Optional[Sequence[float]] = None,
    ) -> List[ModuleState]:
        """Compute the target state of every module for a body velocity.

        Args:
            speeds: Desired body-frame velocity
            current_angles: Measured azimuth of each module (radians). Used as
                the target angle of any module asked to stand still, so that
                stopping never rotates a wheel. Defaults to 0.0 when unknown.

        Returns:
            One ModuleState per module, in layout order
        """
        chassis = np.array([speeds.vx, speeds.vy, speeds.omega])
        module_velocities = (self.forward_matrix @ chassis).reshape(-1, 2)

        states = []
        for i, (vx, vy) in enumerate(module_velocities):
            speed = math.hypot(vx, vy)
            if speed < ZERO_SPEED_EPSILON:
                angle = current_angles[i] if current_angles is not None else 0.0
                states.append(ModuleState(speed=0.0, angle=angle))
            else:
                states.append(ModuleState(speed=speed, angle=math.atan2(vy, vx)))
        return states

    def to_chassis_speeds(self, states: Sequence[Optional[ModuleState]]) -> ChassisSpeeds:
        """Recover the body velocity that best explains the module states.

        Args:
            states: Measured state of every module, in layout order. A None
                entry excludes that module (for example one whose sensors
                faulted this cycle).

        Returns:
            Least-squares body-frame velocity

        Raises:
            ValueError: If the number of states does not match the layout, or
                fewer than two modules remain
        """
        if len(states) != self.num_modules:
            raise ValueError(f"Expected {self.num_modules} module states, got {len(states)}")

        mask = [state is not None for state in states]
        if sum(mask) < 2:
            raise ValueError("At least two modules are needed to solve for body velocity")

        module_velocities = np.array(
            [
                [s.speed * math.cos(s.angle), s.speed * math.sin(s.angle)] if s is not None else [0.0, 0.0]
                for s in states
            ]
        ).reshape(-1)

        if all(mask):
            chassis = self.inverse_matrix @ module_velocities
        else:
            rows = np.repeat(np.asarray(mask, dtype=bool), 2)
            chassis, *_ = np.linalg.lstsq(
                self.forward_matrix[rows], module_velocities[rows], rcond=None
            )

        return ChassisSpeeds(vx=float(chassis[0]), vy=float(chassis[1]), omega=float(chassis[2]))


def validate_geometry(locations: Sequence[Translation2d]) -> None:
    """Check that a module layout can realize arbitrary body velocities.

    Raises:
        ConfigurationError: On fewer than two modules, non-finite offsets,
            coincident modules, or a layout with every module at the center
    """
    if len(locations) < 2:
        raise ConfigurationError(f"At least two modules are required, got {len(locations)}")

    for i, location in enumerate(locations):
        if not (math.isfinite(location.x) and math.isfinite(location.y)):
            raise ConfigurationError(f"Module {i} has a non-finite location: {location}")

    for i in range(len(locations)):
        for j in range(i + 1, len(locations)):
            if locations[i].distance(locations[j]) < 1e-9:
                raise ConfigurationError(
                    f"Modules {i} and {j} share the same location {locations[i]}"
                )

    if all(location.norm() < 1e-9 for location in locations):
        raise ConfigurationError("At least one module must be offset from the rotation center")


def desaturate_module_speeds(states: Sequence[ModuleState], max_speed: float) -> List[ModuleState]:
    """Scale all module speeds down together so none exceeds ``max_speed``.

    Scaling every module by the same factor keeps the ratio between
    translation and rotation, so the vehicle still moves in the commanded
    direction, only slower.

    Args:
        states: Module targets from the forward kinematics
        max_speed: Largest speed any single module may be commanded (m/s)

    Returns:
        Module targets with the same angles and scaled speeds
    """
    fastest = max((abs(state.speed) for state in states), default=0.0)
    if fastest <= max_speed:
        return list(states)

    scale = max_speed / fastest
    return [ModuleState(speed=state.speed * scale, angle=state.angle) for state in states]


def clamp_chassis_speeds(
    speeds: ChassisSpeeds,
    max_linear: float,
    max_angular: float,
    strict: bool = False,
) -> ChassisSpeeds:
    """Limit a body velocity command to the configured maxima.

    The linear part is scaled as a vector (direction preserved), the angular
    part is clamped symmetrically.

    Args:
        speeds: Requested body velocity
        max_linear: Maximum linear speed (m/s)
        max_angular: Maximum angular speed (rad/s)
        strict: Raise instead of clamping

    Returns:
        The command, clamped into range

    Raises:
        CommandOutOfRange: If strict is True and the command exceeds a limit
    """
    values = (speeds.vx, speeds.vy, speeds.omega)
    if not all(math.isfinite(v) for v in values):
        if strict:
            raise CommandOutOfRange(f"Non-finite velocity command: {speeds}")
        logging.warning(f"Discarding non-finite velocity command: {speeds}")
        return ChassisSpeeds()

    linear = speeds.linear_speed()
    over_linear = linear > max_linear
    over_angular = abs(speeds.omega) > max_angular

    if not (over_linear or over_angular):
        return speeds

    if strict:
        raise CommandOutOfRange(
            f"Command {speeds} exceeds limits (linear {max_linear:.3f} m/s, "
            f"angular {max_angular:.3f} rad/s)"
        )

    vx, vy = speeds.vx, speeds.vy
    if over_linear:
        scale = max_linear / linear
        vx *= scale
        vy *= scale
    omega = max(-max_angular, min(max_angular, speeds.omega))

    logging.debug(f"Clamped velocity command {speeds} -> ({vx:.3f}, {vy:.3f}, {omega:.3f})")
    return ChassisSpeeds(vx=vx, vy=vy, omega=omega)


STANCE_ANGLES = (
    math.radians(45.0),
    math.radians(-45.0),
    math.radians(-45.0),
    math.radians(45.0),
)
"""Stance lock ("X" formation) wheel angles for front-left, front-right,
back-left and back-right. The wheels point along the two diagonals, so no push
or torque can be taken up by rolling alone."""
