"""Boundary interfaces between the drivetrain core and its sensors/actuators.

The core never talks to devices directly. Anything that can read a module's
azimuth and wheel velocity and accept two voltages is a ``ModuleIO``; anything
that reports an absolute heading is a ``HeadingSensor``. ``client.py`` provides
implementations bridged over a WebSocket, tests provide in-memory fakes.
"""

from typing import Optional, Protocol, runtime_checkable

from .geometry import HeadingReading, ModuleMeasurement


@runtime_checkable
class ModuleIO(Protocol):
    """Sensors and actuators of one swerve module."""

    def read(self) -> Optional[ModuleMeasurement]:
        """Latest measurement, or None if the sensors have nothing to offer."""
        ...

    def write(self, drive_volts: float, azimuth_volts: float) -> None:
        """Apply voltages to the drive and azimuth motors."""
        ...

    def configure_current_limits(self, drive_amps: float, azimuth_amps: float) -> None:
        """Set the current limits the motor controllers enforce on their own."""
        ...


@runtime_checkable
class HeadingSensor(Protocol):
    """Absolute orientation sensor, treated as ground truth for heading."""

    def read(self) -> HeadingReading:
        ...
