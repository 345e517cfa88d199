"""
vehicle.py

Implements Vehicle, the motion-control core the control server talks to.
Owns the ActuatorArbiter, the SafetyMonitor and the in-flight heading turn,
and exposes manual drive, turn-to-heading, reset and sensor pass-through
entry points.
"""

import asyncio
import logging
from typing import Optional

from .arbiter import ActuatorArbiter
from .navigation import HeadingController, TurnResult, TurnStatus
from .ports import ActuatorPort, ActuatorState, DriveCommand, HeadingSource, Priority, RangeSource
from .safety import SafetyMonitor

log = logging.getLogger(__name__)


class Vehicle:
    """
    Core facade.

    - Manual commands enter with MANUAL priority, turns run with AUTONOMOUS
      priority and the safety monitor uses SAFETY priority.
    - Only one turn runs at a time; a new turn cancels the previous one.
    - With safety.cancel_turn_on_obstacle, an obstacle stop also cancels the
      in-flight turn so it cannot re-override the stop.
    """

    def __init__(
        self,
        car: ActuatorPort,
        compass: HeadingSource,
        range_finder: RangeSource,
        config,
    ):
        self.config = config
        self.compass = compass
        self.range_finder = range_finder
        self.arbiter = ActuatorArbiter(car, config.drive)
        self.safety = SafetyMonitor(range_finder, self.arbiter, config.safety)
        self.heading_controller = HeadingController(
            compass, self.arbiter, config.turn, steering_center=config.drive.steering_center
        )
        self.turn_task: Optional[asyncio.Task] = None
        self.last_turn: Optional[TurnResult] = None
        self.last_turn_error: Optional[str] = None
        self._turn_target: Optional[float] = None

        if config.safety.cancel_turn_on_obstacle:
            self.safety.add_obstacle_listener(self._on_obstacle)

    async def start(self):
        self.arbiter.start()
        self.safety.start()
        log.info("Vehicle core started")

    async def stop(self):
        """Cancel any turn, stop the car and shut the core down."""
        await self.cancel_turn()
        await self.safety.stop()
        if self.arbiter.running:
            try:
                await self.arbiter.apply(DriveCommand(speed=0, angle=self.config.drive.steering_center), Priority.SAFETY)
            except Exception as e:
                log.error(f"Final stop failed: {e}")
        await self.arbiter.stop()
        log.info("Vehicle core stopped")

    async def submit_manual(self, speed: int, angle: int) -> ActuatorState:
        """Apply an operator (speed, angle) pair as one MANUAL command."""
        log.info(f"Received orientation {angle}, {speed}")
        return await self.arbiter.apply(DriveCommand(speed=speed, angle=angle), Priority.MANUAL)

    async def emergency_stop(self) -> ActuatorState:
        await self.cancel_turn()
        log.warning("Emergency stop requested.")
        return await self.arbiter.apply(DriveCommand.stop(), Priority.SAFETY)

    async def request_reset(self) -> ActuatorState:
        log.info("Resetting...")
        return await self.arbiter.apply(DriveCommand.reset_request(), Priority.MANUAL)

    def begin_turn_to(self, heading: float) -> asyncio.Task:
        """Start turning towards *heading*; any previous turn is cancelled."""
        if self.turning:
            log.info("Replacing in-flight turn")
            self.turn_task.cancel()
        self._turn_target = heading % 360.0
        self.last_turn_error = None
        task = asyncio.create_task(self.heading_controller.run(heading), name="heading-turn")
        task.add_done_callback(self._turn_done)
        self.turn_task = task
        return task

    async def cancel_turn(self):
        task = self.turn_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            pass  # already recorded by _turn_done

    @property
    def turning(self) -> bool:
        return self.turn_task is not None and not self.turn_task.done()

    def _on_obstacle(self, distance):
        if self.turning:
            log.warning("Obstacle stop: cancelling autonomous turn.")
            self.turn_task.cancel()

    def _turn_done(self, task: asyncio.Task):
        if task is not self.turn_task:
            return
        if task.cancelled():
            self.last_turn = TurnResult(TurnStatus.CANCELLED, self._turn_target)
            return
        error = task.exception()
        if error is not None:
            log.error(f"Turn to {self._turn_target} failed: {error}")
            self.last_turn = None
            self.last_turn_error = str(error)
            return
        self.last_turn = task.result()
        log.info(f"Turn finished: {self.last_turn.status.value}")

    async def heading(self) -> float:
        return float(await asyncio.to_thread(self.compass.read))

    async def distance(self) -> float:
        return float(await asyncio.to_thread(self.range_finder.read))

    def get_telemetry(self) -> dict:
        if self.turning:
            turn = {"status": "running", "target": self._turn_target}
        elif self.last_turn is not None:
            turn = self.last_turn.as_dict()
        elif self.last_turn_error is not None:
            turn = {"status": "failed", "target": self._turn_target, "error": self.last_turn_error}
        else:
            turn = {"status": "idle"}
        telemetry = {"turn": turn}
        telemetry.update(self.arbiter.get_telemetry())
        telemetry.update(self.safety.get_telemetry())
        return telemetry
