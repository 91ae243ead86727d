"""Localization module for swerve drivetrain pose estimation.

This module keeps a running planar pose by fusing:
- Module measurements (azimuth + wheel velocity) at the control rate, solved
  through the inverse kinematics into a body velocity and integrated into
  position
- An absolute heading sensor, used directly as the heading instead of
  integrating wheel-derived angular velocity (wheel odometry heading drifts
  quickly under scrub; the heading sensor does not)
"""

import logging
import math
import threading
from typing import Dict, Optional, Sequence

from .geometry import ChassisSpeeds, HeadingReading, ModuleMeasurement, Pose2d, angle_difference, normalize_angle
from .model import SwerveKinematics


class SwervePoseEstimator:
    """Wheel odometry with heading taken from an absolute heading sensor.

    Each update:
        heading_new = yaw + heading_offset
        (vx, vy)    = least-squares body velocity of the valid modules
        pose        = pose.exp(vx * dt, vy * dt, heading_new - heading_old)

    The exponential integrates along a constant-curvature arc, so the
    position change never exceeds |v| * dt.

    ``reset`` re-seeds the pose. The heading offset is recomputed against the
    latest sensor yaw so that the reported heading equals the reset heading
    without touching the sensor itself. A single lock serializes update, reset
    and reads, so a reset from another thread never interleaves with an update.
    """

    def __init__(self, kinematics: SwerveKinematics, initial_pose: Optional[Pose2d] = None):
        """Initialize the pose estimator.

        Args:
            kinematics: Kinematic model of the module layout
            initial_pose: Starting pose. Defaults to the origin facing +x.
        """
        self.kinematics = kinematics
        self._lock = threading.Lock()

        self._pose = initial_pose if initial_pose is not None else Pose2d()

        # Offset from raw sensor yaw to field heading, set on the first reading
        self._heading_offset: Optional[float] = None
        self._last_raw_yaw: Optional[float] = None

        # Diagnostics
        self.last_speeds = ChassisSpeeds()
        self.last_valid_modules = 0
        self.update_count = 0
        self.skipped_translations = 0

    @property
    def pose(self) -> Pose2d:
        with self._lock:
            return self._pose

    def update(
        self,
        measurements: Sequence[Optional[ModuleMeasurement]],
        heading: HeadingReading,
        dt: float,
    ) -> Pose2d:
        """Advance the pose estimate by one control cycle.

        Args:
            measurements: This cycle's reading of every module, None for a
                module whose sensors faulted
            heading: Absolute heading sensor reading
            dt: Time since the previous update (seconds)

        Returns:
            Updated pose estimate
        """
        states = [m.as_state() if m is not None else None for m in measurements]
        valid = sum(state is not None for state in states)

        with self._lock:
            if self._heading_offset is None:
                self._heading_offset = self._pose.heading - heading.yaw
            self._last_raw_yaw = heading.yaw

            new_heading = normalize_angle(heading.yaw + self._heading_offset)
            dtheta = angle_difference(new_heading, self._pose.heading)

            speeds = ChassisSpeeds(omega=dtheta / dt if dt > 0 else 0.0)
            if valid >= 2 and dt > 0:
                body = self.kinematics.to_chassis_speeds(states)
                speeds = ChassisSpeeds(vx=body.vx, vy=body.vy, omega=speeds.omega)
                moved = self._pose.exp(speeds.vx * dt, speeds.vy * dt, dtheta)
            else:
                if valid < 2:
                    self.skipped_translations += 1
                    logging.warning(
                        f"Only {valid} module measurement(s) valid, holding position this cycle"
                    )
                moved = self._pose

            self._pose = Pose2d(x=moved.x, y=moved.y, heading=new_heading)
            self.last_speeds = speeds
            self.last_valid_modules = valid
            self.update_count += 1
            return self._pose

    def reset(self, pose: Pose2d) -> None:
        """Replace the pose estimate.

        Args:
            pose: New pose in the field frame. Its heading becomes the
                reported heading for the current sensor yaw.
        """
        with self._lock:
            self._pose = pose
            if self._last_raw_yaw is not None:
                self._heading_offset = pose.heading - self._last_raw_yaw
            else:
                self._heading_offset = None
            self.last_speeds = ChassisSpeeds()
        logging.info(
            f"Pose reset to x={pose.x:.3f} m, y={pose.y:.3f} m, "
            f"heading={math.degrees(pose.heading):.1f} deg"
        )

    def get_state(self) -> Dict[str, float]:
        """Get current state estimate.

        Returns:
            Dictionary containing:
                - x: Position x-coordinate (m)
                - y: Position y-coordinate (m)
                - heading: Heading angle (rad)
                - vx: Body-frame forward velocity (m/s)
                - vy: Body-frame leftward velocity (m/s)
                - omega: Angular velocity from the heading sensor (rad/s)
        """
        with self._lock:
            pose = self._pose
            speeds = self.last_speeds
        return {
            "x": pose.x,
            "y": pose.y,
            "heading": pose.heading,
            "vx": speeds.vx,
            "vy": speeds.vy,
            "omega": speeds.omega,
        }

    def get_diagnostics(self) -> Dict[str, float]:
        """Get odometry diagnostic information for monitoring."""
        return {
            "update_count": self.update_count,
            "valid_modules": self.last_valid_modules,
            "skipped_translations": self.skipped_translations,
            "heading_offset": self._heading_offset if self._heading_offset is not None else 0.0,
        }
