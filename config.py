import json, pathlib
from pydantic import BaseModel, Field
from typing import Optional


class DriveSettings(BaseModel):
    pca9685_address: int = 0x40
    throttle_channel: int = 0
    steering_channel: int = 1
    pwm_freq: int = 50
    pwm_min: int = 1100
    pwm_neutral: int = 1500
    pwm_max: int = 1900
    speed_max: int = 255
    servo_min_us: int = 1000
    servo_max_us: int = 2000
    steering_min: int = 0
    steering_max: int = 180
    steering_center: int = 90


class SafetySettings(BaseModel):
    min_clearance: float = 25.0
    poll_interval: float = 0.1
    read_retries: int = 3
    retry_backoff: float = 0.02
    cancel_turn_on_obstacle: bool = True


class TurnSettings(BaseModel):
    tolerance: float = 5.0
    deadband_low: int = 75
    deadband_high: int = 105
    compensation_low: int = 83
    compensation_high: int = 97
    pulse_speed: int = 130
    pulse_duration: float = 1.0
    compensation_speed: int = 150
    step_delay: float = 0.01
    poll_interval: float = 0.02
    max_iterations: Optional[int] = None
    max_duration: float = 30.0
    read_retries: int = 3
    retry_backoff: float = 0.05


class SensorPins(BaseModel):
    compass_address: int = 0x1E
    compass_poll_interval: float = 0.05
    declination: float = 0.0
    echo_pin: int = 10
    trigger_pin: int = 9
    echo_timeout: float = 0.05


class CameraSettings(BaseModel):
    port: int = 8000
    resolution: tuple[int, int] = (640, 480)
    fps: int = 1


class Settings(BaseModel):
    trusted_clients: list[str] = ["10.0.0.", "127.0.0.1", "192.168.8."]
    host: str = "0.0.0.0"
    port: int = 9000
    telemetry_interval: float = 0.2
    fake_car: bool = False
    fake_camera: bool = False
    log_file_path: str = "rover.log"
    drive: DriveSettings = Field(default_factory=DriveSettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    turn: TurnSettings = Field(default_factory=TurnSettings)
    sensors: SensorPins = Field(default_factory=SensorPins)
    camera: CameraSettings = Field(default_factory=CameraSettings)


def load_config(path="config.json") -> Settings:
    """Load settings from *path*; a missing file yields the defaults."""
    cfg_file = pathlib.Path(path)
    if not cfg_file.exists():
        return Settings()
    raw = json.loads(cfg_file.read_text())
    return Settings(**raw)
