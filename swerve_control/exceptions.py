"""Error types raised by the swerve drivetrain core."""


class ConfigurationError(ValueError):
    """Invalid geometry, gains or limits detected at startup.

    Fatal: the drivetrain refuses to initialize.
    """


class SensorFault(RuntimeError):
    """A module measurement is missing, non-finite or stale for this cycle.

    Recovered by zeroing the affected module for the cycle.
    """

    def __init__(self, module: str, reason: str) -> None:
        super().__init__(f"{module}: {reason}")
        self.module = module
        self.reason = reason


class CommandOutOfRange(ValueError):
    """A requested velocity exceeds the configured maxima.

    Only raised when strict validation is requested; the control loop clamps.
    """
