"""
safety.py

Implements the collision-avoidance SafetyMonitor.
Samples the range finder at a fixed cadence and asserts a SAFETY-priority
stop through the ActuatorArbiter on every tick the clearance is violated.
Range read failures are retried with backoff; if they persist the monitor
holds the vehicle stopped in a degraded state instead of exiting.
"""

import asyncio
import logging
from typing import Callable, Optional

from .errors import SensorError
from .ports import DriveCommand, Priority, RangeSource

log = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_OBSTACLE = "obstacle"
STATUS_DEGRADED = "degraded"


class SafetyMonitor:
    """
    Long-running range watchdog.

    - Reads the RangeSource once per tick (poll_interval seconds).
    - distance <= min_clearance -> stop submitted with SAFETY priority, and
      registered obstacle listeners are notified. No hysteresis: the stop is
      re-asserted on every tick below the threshold, unless the previous
      stop is still waiting in the arbiter queue.
    - Retries failed reads read_retries times with exponential backoff, then
      enters degraded mode (stop asserted, alarm logged) and keeps polling.
    """

    def __init__(self, range_source: RangeSource, arbiter, safety_cfg):
        """
        Args:
            range_source: Any object with a blocking read() -> float.
            arbiter: ActuatorArbiter that owns the drive actuator.
            safety_cfg: SafetySettings (min_clearance, poll_interval,
                read_retries, retry_backoff).
        """
        self.range_source = range_source
        self.arbiter = arbiter
        self.min_clearance = safety_cfg.min_clearance
        self.poll_interval = safety_cfg.poll_interval
        self.read_retries = safety_cfg.read_retries
        self.retry_backoff = safety_cfg.retry_backoff
        self.last_distance: Optional[float] = None
        self.status = STATUS_OK
        self.stop_count = 0
        self._listeners: list[Callable[[float], None]] = []
        self._task: Optional[asyncio.Task] = None
        self._pending_stop: Optional[asyncio.Future] = None

    def add_obstacle_listener(self, callback: Callable[[float], None]):
        """Register *callback(distance)* to run whenever a stop is asserted."""
        self._listeners.append(callback)

    @property
    def degraded(self) -> bool:
        return self.status == STATUS_DEGRADED

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="safety-monitor")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self):
        """Poll forever; only cancellation ends the loop."""
        log.info(
            f"Safety monitor running (clearance={self.min_clearance}, "
            f"period={self.poll_interval}s)"
        )
        while True:
            await self.tick()
            await asyncio.sleep(self.poll_interval)

    async def tick(self) -> Optional[float]:
        """Run one monitoring cycle and return the distance read, if any."""
        try:
            distance = await self._read_with_retry()
        except SensorError as e:
            if self.status != STATUS_DEGRADED:
                log.critical(
                    f"[SafetyMonitor] Range sensor unavailable, holding vehicle stopped: {e}"
                )
            self.status = STATUS_DEGRADED
            self.last_distance = None
            self._assert_stop(None)
            return None

        if self.status == STATUS_DEGRADED:
            log.warning("[SafetyMonitor] Range sensor recovered.")
        self.last_distance = distance
        log.debug(f"Distance: {distance:.1f}")

        if distance <= self.min_clearance:
            if self.status != STATUS_OBSTACLE:
                log.warning(
                    f"[SafetyMonitor] Obstacle at {distance:.1f} (<= {self.min_clearance}); stopping."
                )
            self.status = STATUS_OBSTACLE
            self._assert_stop(distance)
        else:
            self.status = STATUS_OK
        return distance

    async def _read_with_retry(self) -> float:
        attempt = 0
        while True:
            try:
                return float(await asyncio.to_thread(self.range_source.read))
            except (SensorError, OSError, RuntimeError) as e:
                attempt += 1
                if attempt > self.read_retries:
                    raise SensorError(f"range read failed {attempt} times: {e}") from e
                delay = self.retry_backoff * (2 ** (attempt - 1))
                log.warning(
                    f"[SafetyMonitor] Range read failed (attempt {attempt}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

    def _assert_stop(self, distance: Optional[float]):
        self.stop_count += 1
        # one queued safety stop at a time; a stalled writer must not grow the queue
        if self._pending_stop is None or self._pending_stop.done():
            self._pending_stop = self.arbiter.submit(DriveCommand.stop(), Priority.SAFETY)
            self._pending_stop.add_done_callback(self._report_stop)
        for callback in self._listeners:
            try:
                callback(distance)
            except Exception as e:
                log.error(f"[SafetyMonitor] Obstacle listener failed: {e}")

    def _report_stop(self, future: asyncio.Future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            log.error(f"[SafetyMonitor] Safety stop could not be applied: {error}")

    def get_telemetry(self) -> dict:
        return {
            "distance": self.last_distance,
            "safety_status": self.status,
            "safety_stops": self.stop_count,
        }
