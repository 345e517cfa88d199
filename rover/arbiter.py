"""
arbiter.py

Implements ActuatorArbiter, the single owner of the rover's actuator port.
Every producer (safety monitor, heading controller, manual commands) submits
DriveCommands here; one writer task applies them in priority order so two
producers can never interleave writes to the hardware.
"""

import asyncio
import itertools
import logging
from typing import Optional

from .errors import ArbiterClosedError
from .ports import ActuatorPort, ActuatorState, DriveCommand, Priority

log = logging.getLogger(__name__)


class ActuatorArbiter:
    """
    Serializes actuator commands from concurrent producers.

    - Commands are admitted by priority (SAFETY < AUTONOMOUS < MANUAL), FIFO
      within a class.
    - Exactly one command is applied at a time, from a single writer task.
    - Port I/O runs in a worker thread, so a slow write never blocks
      submissions or the other tasks on the event loop.
    - A failed write is reported on that command's future only.
    """

    def __init__(self, port: ActuatorPort, drive_cfg):
        """
        Args:
            port: Actuator port (PCA9685Car, NullCar or a test double).
            drive_cfg: DriveSettings with steering_min/max/center.
        """
        self.port = port
        self.steering_min = drive_cfg.steering_min
        self.steering_max = drive_cfg.steering_max
        self.steering_center = drive_cfg.steering_center
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._state = ActuatorState(speed=0, angle=self.steering_center)
        self.applied_count = 0
        self.failed_count = 0

    @property
    def state(self) -> ActuatorState:
        """Snapshot of the last fully applied command."""
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the writer task on the running event loop."""
        if self.running:
            return
        self._closed = False
        self._task = asyncio.create_task(self._writer_loop(), name="actuator-arbiter")
        log.info("Actuator arbiter started")

    async def stop(self):
        """Stop the writer and fail every command still waiting."""
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        while not self._queue.empty():
            *_, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(ArbiterClosedError("arbiter stopped"))
        log.info("Actuator arbiter stopped")

    def clamp_angle(self, angle: int) -> int:
        return max(self.steering_min, min(self.steering_max, int(angle)))

    def submit(self, command: DriveCommand, priority: Priority = Priority.MANUAL) -> asyncio.Future:
        """
        Queue *command* and return a future resolved with the resulting
        ActuatorState once it has been applied (or with the port's error).
        Never waits on the port itself.
        """
        if self._closed:
            raise ArbiterClosedError("arbiter is not accepting commands")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((int(priority), next(self._seq), command, future))
        log.debug(f"[Arbiter] Queued {command} as {Priority(priority).name}")
        return future

    async def apply(self, command: DriveCommand, priority: Priority = Priority.MANUAL) -> ActuatorState:
        """Submit *command* and wait until it has been applied."""
        return await self.submit(command, priority)

    async def _writer_loop(self):
        while True:
            priority, _, command, future = await self._queue.get()
            if future.cancelled():
                log.debug(f"[Arbiter] Dropping cancelled {command}")
                continue
            try:
                state = await asyncio.to_thread(self._apply, command)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(ArbiterClosedError("arbiter stopped"))
                raise
            except Exception as e:
                self.failed_count += 1
                log.error(
                    f"[Arbiter] Failed to apply {command} ({Priority(priority).name}): {e}"
                )
                if not future.done():
                    future.set_exception(e)
            else:
                self.applied_count += 1
                if not future.done():
                    future.set_result(state)

    def _apply(self, command: DriveCommand) -> ActuatorState:
        """Write one command to the port. Runs in a worker thread."""
        if command.reset:
            self.port.reset()
            self._state = ActuatorState(speed=0, angle=self.steering_center)
            return self._state

        speed, angle = self._state.speed, self._state.angle
        if command.speed is not None:
            self.port.apply_speed(int(command.speed))
            speed = int(command.speed)
        if command.angle is not None:
            clamped = self.clamp_angle(command.angle)
            try:
                self.port.apply_angle(clamped)
            except Exception:
                self._state = ActuatorState(speed=speed, angle=angle)
                raise
            angle = clamped
        self._state = ActuatorState(speed=speed, angle=angle)
        return self._state

    def get_telemetry(self) -> dict:
        return {
            "actuator": self._state.as_dict(),
            "pending_commands": self._queue.qsize(),
            "applied_commands": self.applied_count,
            "failed_commands": self.failed_count,
        }
