"""
ports.py

Contracts between the motion-control core and the hardware it drives.
Sensor ports are plain blocking queries; the actuator port is only ever
called from the ActuatorArbiter's writer task.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Protocol


class HeadingSource(Protocol):
    def read(self) -> float:
        """Return the current compass bearing in degrees, [0, 360)."""
        ...


class RangeSource(Protocol):
    def read(self) -> float:
        """Return the distance to the nearest obstacle in sensor units."""
        ...


class ActuatorPort(Protocol):
    def apply_speed(self, value: int) -> None: ...

    def apply_angle(self, value: int) -> None: ...

    def reset(self) -> None: ...


class Priority(IntEnum):
    """Admission class of a DriveCommand. Lower values are applied first."""

    SAFETY = 0
    AUTONOMOUS = 1
    MANUAL = 2


@dataclass(frozen=True)
class DriveCommand:
    """
    A single actuator command. ``None`` leaves that axis untouched, so a
    steering-only correction does not disturb the current speed.
    """

    speed: Optional[int] = None
    angle: Optional[int] = None
    reset: bool = False

    @classmethod
    def stop(cls) -> "DriveCommand":
        return cls(speed=0)

    @classmethod
    def steer(cls, angle: int) -> "DriveCommand":
        return cls(angle=angle)

    @classmethod
    def reset_request(cls) -> "DriveCommand":
        return cls(reset=True)


@dataclass(frozen=True)
class ActuatorState:
    """Last speed and angle applied to the actuator."""

    speed: int = 0
    angle: int = 90

    def as_dict(self) -> dict:
        return {"speed": self.speed, "angle": self.angle}


def normalize_heading(value: float) -> float:
    """Wrap any bearing into [0, 360)."""
    return value % 360.0


def heading_delta(current: float, target: float) -> float:
    """Signed shortest difference ``current - target`` in (-180, 180]."""
    delta = (current - target) % 360.0
    if delta > 180.0:
        delta -= 360.0
    return delta
