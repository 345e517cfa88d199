"""
controller.py

Actuator port implementations for the rover chassis.
PCA9685Car drives the throttle ESC and the steering servo from a PCA9685 PWM
hat; NullCar stands in when the car is faked (no hardware attached).
Neither class is thread-safe on its own: the ActuatorArbiter is their only
caller.
"""

import logging
import time

from .errors import ActuatorError

# Configure logging
log = logging.getLogger(__name__)


class PCA9685Car:
    """
    Drives the rover through a PCA9685:
      - throttle channel: ESC pulse, speed -speed_max..speed_max around neutral
      - steering channel: servo pulse, angle steering_min..steering_max
    """

    def __init__(self, pwm_driver, drive_cfg):
        """
        Args:
            pwm_driver: adafruit_pca9685.PCA9685 instance.
            drive_cfg: DriveSettings (channels, pulse widths, ranges).
        """
        self.pwm = pwm_driver
        self.cfg = drive_cfg
        self.pwm_freq = drive_cfg.pwm_freq
        self.pwm_min = drive_cfg.pwm_min
        self.pwm_max = drive_cfg.pwm_max
        self.pwm_neutral = drive_cfg.pwm_neutral
        self.speed = 0
        self.angle = drive_cfg.steering_center

        self.pwm.frequency = self.pwm_freq
        self.reset()
        time.sleep(1.0)  # ESC arming at neutral

    def _speed_to_us(self, speed: int) -> int:
        """Convert a signed speed (-speed_max..speed_max) to a pulse width in microseconds."""
        limit = self.cfg.speed_max
        speed = max(min(speed, limit), -limit)
        if speed == 0:
            return self.pwm_neutral
        elif speed > 0:
            return int(self.pwm_neutral + (self.pwm_max - self.pwm_neutral) * speed / limit)
        else:
            return int(self.pwm_neutral - (self.pwm_neutral - self.pwm_min) * abs(speed) / limit)

    def _angle_to_us(self, angle: int) -> int:
        """Convert a steering position to a servo pulse width in microseconds."""
        lo, hi = self.cfg.steering_min, self.cfg.steering_max
        angle = max(min(angle, hi), lo)
        span_us = self.cfg.servo_max_us - self.cfg.servo_min_us
        return int(self.cfg.servo_min_us + span_us * (angle - lo) / (hi - lo))

    def _us_to_pwm(self, microseconds: int) -> int:
        """Convert microseconds to a 16-bit duty cycle for PCA9685."""
        period_us = 1_000_000 / self.pwm_freq
        return int((microseconds / period_us) * 65535)

    def _write(self, channel: int, microseconds: int):
        try:
            self.pwm.channels[channel].duty_cycle = self._us_to_pwm(microseconds)
        except (OSError, ValueError) as e:
            raise ActuatorError(f"PCA9685 channel {channel} write failed: {e}") from e

    def apply_speed(self, value: int):
        self._write(self.cfg.throttle_channel, self._speed_to_us(value))
        self.speed = value
        log.debug(f"[Car] speed={value}")

    def apply_angle(self, value: int):
        self._write(self.cfg.steering_channel, self._angle_to_us(value))
        self.angle = value
        log.debug(f"[Car] angle={value}")

    def reset(self):
        """Neutral throttle and centred steering."""
        self.apply_speed(0)
        self.apply_angle(self.cfg.steering_center)

    def close(self):
        try:
            self.reset()
        except ActuatorError as e:
            log.warning(f"Exception during close: {e}")
        self.pwm.deinit()


class NullCar:
    """Actuator port that only logs; used with --fake-car."""

    def __init__(self, steering_center: int = 90):
        self.speed = 0
        self.angle = steering_center
        self.steering_center = steering_center

    def apply_speed(self, value: int):
        log.info(f"[NullCar] speed={value}")
        self.speed = value

    def apply_angle(self, value: int):
        log.info(f"[NullCar] angle={value}")
        self.angle = value

    def reset(self):
        log.info("[NullCar] reset")
        self.speed = 0
        self.angle = self.steering_center

    def close(self):
        pass
