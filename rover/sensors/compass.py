import logging
import math
import struct
import threading
import time

from adafruit_bus_device.i2c_device import I2CDevice

from ..errors import SensorError
from ..ports import normalize_heading

log = logging.getLogger(__name__)

_REG_CONFIG_A = 0x00
_REG_CONFIG_B = 0x01
_REG_MODE = 0x02
_REG_DATA = 0x03
_OVERFLOW = -4096


def heading_from_field(x: float, y: float, declination: float = 0.0) -> float:
    """Compass bearing in degrees for a horizontal field vector."""
    return normalize_heading(math.degrees(math.atan2(y, x)) + declination)


class Compass:
    """
    HMC5883L magnetometer on I2C, polled from a background thread.

    read() returns the latest bearing without touching the bus, so the
    safety monitor and the heading controller can query it as often as they
    like. A reading older than ``stale_after`` seconds counts as a failure.
    """

    def __init__(self, i2c, address=0x1E, polling_interval=0.05, declination=0.0, stale_after=1.0):
        self.device = I2CDevice(i2c, address)
        self.polling_interval = polling_interval
        self.declination = declination
        self.stale_after = stale_after
        self._heading = None
        self._stamp = 0.0
        self._error = None
        self._lock = threading.Lock()
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self._poll_loop, daemon=True)

    def start(self):
        """Configure the chip and start the polling thread."""
        log.info("Starting compass thread...")
        self._write_register(_REG_CONFIG_A, 0x70)  # 8-sample average, 15 Hz
        self._write_register(_REG_CONFIG_B, 0x20)  # +/-1.3 Ga
        self._write_register(_REG_MODE, 0x00)  # continuous measurement
        self.thread.start()

    def stop(self):
        self.stop_event.set()
        if self.thread.is_alive():
            self.thread.join()

    def read(self) -> float:
        with self._lock:
            heading, stamp, error = self._heading, self._stamp, self._error
        if heading is None:
            raise SensorError(f"no compass reading yet ({error})")
        if time.monotonic() - stamp > self.stale_after:
            raise SensorError(f"compass reading stale ({error})")
        return heading

    def _write_register(self, register, value):
        with self.device as i2c:
            i2c.write(bytes([register, value]))

    def _sample(self) -> float:
        buf = bytearray(6)
        with self.device as i2c:
            i2c.write_then_readinto(bytes([_REG_DATA]), buf)
        x, z, y = struct.unpack(">hhh", buf)
        if _OVERFLOW in (x, y, z):
            raise SensorError("magnetometer overflow")
        return heading_from_field(x, y, self.declination)

    def _poll_loop(self):
        while not self.stop_event.is_set():
            try:
                heading = self._sample()
                with self._lock:
                    self._heading = heading
                    self._stamp = time.monotonic()
                    self._error = None
            except (OSError, SensorError) as e:
                log.warning(f"[Compass] Read failed (recoverable): {e}")
                with self._lock:
                    self._error = e
            self.stop_event.wait(timeout=self.polling_interval)
