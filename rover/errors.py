"""Exception types shared by the rover core and its drivers."""


class RoverError(Exception):
    """Base class for all rover errors."""


class SensorError(RoverError):
    """A sensor could not produce a reading (bus error, echo timeout...)."""


class ActuatorError(RoverError):
    """Writing a speed, angle or reset to the actuator failed."""


class ArbiterClosedError(RoverError):
    """The actuator arbiter is not running and cannot apply commands."""


class CommandError(RoverError):
    """An externally supplied command or value was rejected."""
