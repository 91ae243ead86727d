"""Swerve Control - Drivetrain Core for a Four-Module Swerve Vehicle

Computes, once per control period, how four independently steered and driven
wheel modules must move to realize a commanded body velocity, and fuses module
and heading-sensor measurements into a running pose estimate.

## Architecture Overview

The system is built from four layers, composed bottom-up:

### Layer 1: Kinematics (model.py)
Transforms between one body-frame velocity and per-module (speed, angle) targets.
- Forward: module velocity = v + omega x r for each module offset r
- Inverse: least-squares body velocity from all module measurements
- Zero-speed targets keep the module's current angle
- Output: Module targets, desaturated to the module speed limit

### Layer 2: Module Control (motor_controller.py)
Closed-loop control of each module's drive and azimuth motors.
- Azimuth optimization: never rotate more than 90 deg, reverse the wheel instead
- Azimuth: static friction + PD on the wrapped angle error
- Drive: static friction + velocity feedforward + P on wheel speed error
- Output: Clamped drive and azimuth voltages

### Layer 3: Pose Estimation (localizer.py)
Wheel odometry with heading taken from an absolute heading sensor.
- Translation integrated from the inverse kinematics body velocity
- Heading read directly from the sensor (no wheel-derived heading drift)
- Output: Estimated pose (x, y, heading)

### Layer 4: Drivetrain (drivetrain.py)
Public control surface and the per-cycle update.
- Field- and body-relative driving, stance lock, pose reset
- Non-sticky commands: the vehicle rests unless commanded every cycle
- stop() overrides everything, including a cycle already in flight
- Faulted modules are zeroed without disturbing the others

## Modules

- `config.py` - Centralized configuration parameters with documentation
- `geometry.py` - Poses, chassis speeds, module states and angle helpers
- `exceptions.py` - ConfigurationError, SensorFault, CommandOutOfRange
- `model.py` - Swerve kinematics
- `motor_controller.py` - Per-module closed-loop control
- `localizer.py` - Pose estimation
- `hardware.py` - Sensor/actuator boundary protocols
- `safety.py` - Stoppable capability and stop registry
- `drivetrain.py` - Drivetrain orchestrator
- `client.py` - WebSocket bridge and control loop

## Quick Start

```python
from swerve_control import Drivetrain

drivetrain = Drivetrain(module_ios, heading_sensor)
drivetrain.configure()

# Every control period:
drivetrain.drive_field_relative(1.0, 0.0, 0.0)
drivetrain.periodic()
```

Or bridge to a simulator over WebSocket:
```bash
python -m swerve_control --uri ws://localhost:8765
```

## Version

0.1.0 - Initial implementation
"""

__version__ = "0.1.0"

from .config import DEFAULT_CONFIG, DrivetrainConfig, SwerveModuleConstants, validate_config
from .drivetrain import Drivetrain
from .exceptions import CommandOutOfRange, ConfigurationError, SensorFault
from .geometry import ChassisSpeeds, HeadingReading, ModuleMeasurement, ModuleOutput, ModuleState, Pose2d, Translation2d
from .localizer import SwervePoseEstimator
from .model import SwerveKinematics
from .motor_controller import SwerveModuleController
from .safety import Stoppable, StopRegistry

__all__ = [
    "DEFAULT_CONFIG",
    "DrivetrainConfig",
    "SwerveModuleConstants",
    "validate_config",
    "Drivetrain",
    "CommandOutOfRange",
    "ConfigurationError",
    "SensorFault",
    "ChassisSpeeds",
    "HeadingReading",
    "ModuleMeasurement",
    "ModuleOutput",
    "ModuleState",
    "Pose2d",
    "Translation2d",
    "SwervePoseEstimator",
    "SwerveKinematics",
    "SwerveModuleController",
    "Stoppable",
    "StopRegistry",
]
