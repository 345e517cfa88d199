import threading
import time

import pytest

from config import Settings
from rover.arbiter import ActuatorArbiter
from rover.errors import ActuatorError


class RecordingCar:
    """Actuator port double that records every write and checks exclusion."""

    def __init__(self, write_delay=0.0, fail_speeds=()):
        self.calls = []
        self.write_delay = write_delay
        self.fail_speeds = set(fail_speeds)
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _write(self, name, value):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.write_delay:
                time.sleep(self.write_delay)
            if name == "speed" and value in self.fail_speeds:
                raise ActuatorError(f"bus error writing speed {value}")
            with self._lock:
                self.calls.append((name, value))
        finally:
            with self._lock:
                self.active -= 1

    def apply_speed(self, value):
        self._write("speed", value)

    def apply_angle(self, value):
        self._write("angle", value)

    def reset(self):
        self._write("reset", None)

    def speeds(self):
        return [v for name, v in self.calls if name == "speed"]

    def angles(self):
        return [v for name, v in self.calls if name == "angle"]


class FeedSource:
    """
    Sensor double replaying a list of readings; the last one repeats.
    Exception instances in the feed are raised instead of returned.
    """

    def __init__(self, values):
        self.values = list(values)
        self.reads = 0
        self._lock = threading.Lock()

    def read(self):
        with self._lock:
            index = min(self.reads, len(self.values) - 1)
            self.reads += 1
            value = self.values[index]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def settings():
    cfg = Settings()
    cfg.safety.poll_interval = 0.01
    cfg.safety.retry_backoff = 0.0
    cfg.turn.pulse_duration = 0.0
    cfg.turn.step_delay = 0.0
    cfg.turn.poll_interval = 0.0
    cfg.turn.retry_backoff = 0.0
    cfg.turn.max_duration = 10.0
    return cfg


@pytest.fixture
def car():
    return RecordingCar()


@pytest.fixture
async def arbiter(car, settings):
    arb = ActuatorArbiter(car, settings.drive)
    arb.start()
    yield arb
    await arb.stop()
