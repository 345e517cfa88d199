"""
navigation.py

Implements HeadingController, the closed-loop "turn to compass heading"
manoeuvre. The vehicle is given a forward momentum pulse, then steered in
one-degree steps inside a narrow deadband around centre until the compass
reports a heading within tolerance of the target.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import SensorError
from .ports import DriveCommand, HeadingSource, Priority, heading_delta, normalize_heading

log = logging.getLogger(__name__)


def turn_direction(start: float, target: float) -> int:
    """
    Pick the steering direction (-1 or +1) for turning from *start* to
    *target*. ``swing`` is the raw difference; the boundary cases
    swing == -180, 0 and 180 all resolve to -1.
    """
    swing = start - target
    if swing <= -180 or 0 <= swing <= 180:
        return -1
    return 1


class TurnStatus(Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    SENSOR_FAILURE = "sensor_failure"
    CANCELLED = "cancelled"


@dataclass
class TurnResult:
    status: TurnStatus
    target: float
    heading: Optional[float] = None
    iterations: int = 0
    elapsed: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status is TurnStatus.COMPLETED

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "target": self.target,
            "heading": self.heading,
            "iterations": self.iterations,
            "elapsed": round(self.elapsed, 3),
        }


@dataclass
class TurnState:
    """Private state of one in-flight turn."""

    target: float
    direction: int
    angle: int
    compensated: bool = False
    iterations: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class HeadingController:
    """
    Bang-bang heading correction.

    All commands go through the ActuatorArbiter with AUTONOMOUS priority, so a
    safety stop always wins. Waits are plain asyncio sleeps and never hold
    the arbiter.
    """

    def __init__(self, heading_source: HeadingSource, arbiter, turn_cfg, steering_center: int = 90):
        self.heading_source = heading_source
        self.arbiter = arbiter
        self.cfg = turn_cfg
        self.center = steering_center

    def in_tolerance(self, heading: float, target: float) -> bool:
        return abs(heading_delta(heading, target)) <= self.cfg.tolerance

    async def run(self, target: float) -> TurnResult:
        """
        Turn the vehicle until it faces *target* degrees.

        Returns a TurnResult with COMPLETED, TIMED_OUT (iteration or duration
        cap reached) or SENSOR_FAILURE. Cancellation propagates to the caller
        without issuing further commands.
        """
        cfg = self.cfg
        target = normalize_heading(target)
        started = time.monotonic()

        try:
            start = await self._read_heading()
        except SensorError as e:
            log.error(f"[Heading] Cannot read start heading, turn aborted: {e}")
            return TurnResult(TurnStatus.SENSOR_FAILURE, target, elapsed=time.monotonic() - started)

        state = TurnState(
            target=target,
            direction=turn_direction(start, target),
            angle=self.center,
            started_at=started,
        )
        log.info(f"[Heading] Turning from {start:.1f} to {target:.1f}, direction {state.direction:+d}")

        try:
            await self._command(DriveCommand.stop())
            await self._command(DriveCommand.steer(self.center))

            await self._command(DriveCommand(speed=cfg.pulse_speed))
            await asyncio.sleep(cfg.pulse_duration)

            while True:
                capped = cfg.max_iterations is not None and state.iterations >= cfg.max_iterations
                if capped or state.elapsed >= cfg.max_duration:
                    log.warning(
                        f"[Heading] Turn to {target:.1f} not completed after "
                        f"{state.iterations} iterations / {state.elapsed:.1f}s"
                    )
                    await self._finish()
                    return self._result(TurnStatus.TIMED_OUT, state, None)
                state.iterations += 1

                try:
                    heading = await self._read_heading()
                except SensorError as e:
                    log.error(f"[Heading] Heading lost during turn, aborting: {e}")
                    await self._finish()
                    return self._result(TurnStatus.SENSOR_FAILURE, state, None)

                if self.in_tolerance(heading, target):
                    await self._finish()
                    log.info(f"[Heading] Reached {heading:.1f} (target {target:.1f})")
                    return self._result(TurnStatus.COMPLETED, state, heading)

                stepped = cfg.deadband_low < state.angle < cfg.deadband_high
                if stepped:
                    state.angle += state.direction
                    await self._command(DriveCommand.steer(state.angle))

                if not state.compensated and (
                    state.angle < cfg.compensation_low or state.angle > cfg.compensation_high
                ):
                    log.debug(f"[Heading] Momentum compensation at angle {state.angle}")
                    await self._command(DriveCommand(speed=cfg.compensation_speed))
                    state.compensated = True

                # held steering polls at compass rate
                await asyncio.sleep(cfg.step_delay if stepped else cfg.poll_interval)
        except asyncio.CancelledError:
            log.info(f"[Heading] Turn to {target:.1f} cancelled after {state.iterations} iterations")
            raise

    async def _command(self, command: DriveCommand):
        return await self.arbiter.apply(command, Priority.AUTONOMOUS)

    async def _finish(self):
        await self._command(DriveCommand.stop())
        await self._command(DriveCommand.steer(self.center))

    async def _read_heading(self) -> float:
        attempt = 0
        while True:
            try:
                return float(await asyncio.to_thread(self.heading_source.read))
            except (SensorError, OSError, RuntimeError) as e:
                attempt += 1
                if attempt > self.cfg.read_retries:
                    raise SensorError(f"heading read failed {attempt} times: {e}") from e
                log.warning(f"[Heading] Heading read failed (attempt {attempt}): {e}")
                await asyncio.sleep(self.cfg.retry_backoff * attempt)

    @staticmethod
    def _result(status: TurnStatus, state: TurnState, heading: Optional[float]) -> TurnResult:
        return TurnResult(
            status=status,
            target=state.target,
            heading=heading,
            iterations=state.iterations,
            elapsed=state.elapsed,
        )
