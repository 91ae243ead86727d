"""Shared fixtures: in-memory module IO, heading sensor and clock."""

import dataclasses
import math
from typing import List, Optional

import pytest

from swerve_control.config import DEFAULT_CONFIG, DrivetrainConfig, SwerveModuleConstants
from swerve_control.drivetrain import Drivetrain
from swerve_control.geometry import HeadingReading, ModuleMeasurement, ModuleOutput, Translation2d


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def tick(self, dt: float) -> float:
        self.now += dt
        return self.now


class FakeModuleIO:
    """Module IO that reports a settable angle/velocity stamped with the clock."""

    def __init__(self, clock: FakeClock, angle: float = 0.0, velocity: float = 0.0) -> None:
        self.clock = clock
        self.angle = angle
        self.velocity = velocity
        self.stale = False
        self.missing = False
        self.on_read = None
        self.writes: List[ModuleOutput] = []
        self.current_limits = None

    def read(self) -> Optional[ModuleMeasurement]:
        if self.on_read is not None:
            self.on_read()
        if self.missing:
            return None
        timestamp = self.clock.now - 1.0 if self.stale else self.clock.now
        return ModuleMeasurement(angle=self.angle, velocity=self.velocity, timestamp=timestamp)

    def write(self, drive_volts: float, azimuth_volts: float) -> None:
        self.writes.append(ModuleOutput(drive=drive_volts, azimuth=azimuth_volts))

    def configure_current_limits(self, drive_amps: float, azimuth_amps: float) -> None:
        self.current_limits = (drive_amps, azimuth_amps)

    @property
    def last_write(self) -> ModuleOutput:
        return self.writes[-1]


class FakeHeadingSensor:
    def __init__(self, yaw: float = 0.0) -> None:
        self.yaw = yaw
        self.fail = False

    def read(self) -> HeadingReading:
        if self.fail:
            raise OSError("heading sensor disconnected")
        return HeadingReading(yaw=self.yaw, pitch=0.01, roll=-0.02)


SQUARE_HALF_WIDTH = 0.3


def square_modules() -> tuple:
    """Square layout, front-left / front-right / back-left / back-right."""
    h = SQUARE_HALF_WIDTH
    offsets = [("FL", h, h), ("FR", h, -h), ("BL", -h, h), ("BR", -h, -h)]
    return tuple(
        SwerveModuleConstants(
            name=name,
            location=Translation2d(x, y),
            azimuth_ks=0.1,
            azimuth_kp=math.degrees(0.1),
            azimuth_kd=math.degrees(0.0005),
        )
        for name, x, y in offsets
    )


@pytest.fixture
def square_config() -> DrivetrainConfig:
    return dataclasses.replace(DEFAULT_CONFIG, modules=square_modules())


@pytest.fixture
def square_locations(square_config) -> List[Translation2d]:
    return square_config.locations


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_drivetrain(square_config, clock):
    """Factory returning (drivetrain, module_ios, heading_sensor)."""

    def _make(config: DrivetrainConfig = square_config):
        ios = [FakeModuleIO(clock) for _ in config.modules]
        gyro = FakeHeadingSensor()
        drivetrain = Drivetrain(ios, gyro, config=config, clock=clock)
        return drivetrain, ios, gyro

    return _make
