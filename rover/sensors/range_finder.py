"""
range_finder.py

HC-SR04 ultrasonic range finder driven through the pigpio daemon.
A 10 us trigger pulse starts a measurement; the echo pulse width, timed by
pigpio edge callbacks, gives the distance in centimetres.
"""

import logging
import threading

import pigpio

from ..errors import SensorError

log = logging.getLogger(__name__)

# Round trip at ~343 m/s: 58 us per centimetre.
US_PER_CM = 58.0


def echo_to_cm(pulse_us: int) -> float:
    return pulse_us / US_PER_CM


class RangeFinder:
    def __init__(self, echo_pin: int, trigger_pin: int, echo_timeout: float = 0.05, pi=None):
        """
        Args:
            echo_pin (int): GPIO connected to the echo pad.
            trigger_pin (int): GPIO connected to the trigger pad.
            echo_timeout (float): Seconds to wait for a complete echo pulse.
            pi: Optional pigpio.pi connection to share.
        """
        self._owns_pi = pi is None
        self.pi = pi or pigpio.pi()
        if not self.pi.connected:
            raise RuntimeError("Could not connect to pigpio daemon")
        self.echo_pin = echo_pin
        self.trigger_pin = trigger_pin
        self.echo_timeout = echo_timeout
        self._lock = threading.Lock()
        self._rise_tick = None
        self._pulse_us = None
        self._done = threading.Event()

        self.pi.set_mode(self.trigger_pin, pigpio.OUTPUT)
        self.pi.write(self.trigger_pin, 0)
        self.pi.set_mode(self.echo_pin, pigpio.INPUT)
        self._callback = self.pi.callback(self.echo_pin, pigpio.EITHER_EDGE, self._on_edge)

    def _on_edge(self, gpio, level, tick):
        if level == 1:
            self._rise_tick = tick
        elif level == 0 and self._rise_tick is not None:
            self._pulse_us = pigpio.tickDiff(self._rise_tick, tick)
            self._rise_tick = None
            self._done.set()

    def read(self) -> float:
        """Trigger one measurement and return the distance in centimetres."""
        with self._lock:
            self._done.clear()
            self._pulse_us = None
            self._rise_tick = None
            self.pi.gpio_trigger(self.trigger_pin, 10, 1)
            if not self._done.wait(timeout=self.echo_timeout):
                raise SensorError(f"no echo on GPIO{self.echo_pin} within {self.echo_timeout}s")
            return echo_to_cm(self._pulse_us)

    def close(self):
        self._callback.cancel()
        if self._owns_pi:
            self.pi.stop()
