"""
main.py

Main entry point for the rover onboard controller. Initializes hardware
interfaces, starts the motion-control core (actuator arbiter, safety monitor)
and runs the async network loop that accepts operator commands and streams
telemetry.

Usage:
    python -m rover.main [--config config.json] [--fake-car] [--fake-camera]
"""

import argparse
import asyncio
import logging
import time

from config import load_config
from logging_setup import setup_logging

from .commands import handle_command
from .communication import CommunicationManager
from .controller import NullCar
from .errors import RoverError, SensorError
from .vehicle import Vehicle

logger = logging.getLogger(__name__)


async def async_network_loop(comm, vehicle, telemetry_interval=0.2):
    """
    Main asyncio loop for handling incoming commands and sending telemetry.

    - Accepts JSONL commands (or "speed,angle" lines) from the operator.
    - Replies to each command; invalid values get an error reply.
    - Periodically sends telemetry (heading, distance, actuator, safety,
      turn status) to the connected client.
    """
    log = logging.getLogger(__name__)
    await comm.start_server()
    await vehicle.start()
    log.info("Async network loop running")

    last_telemetry_time = 0.0

    try:
        while True:
            try:
                command = await comm.handle_connection()
                if command is not None:
                    reply = await handle_command(vehicle, command)
                    if reply:
                        await comm.send_telemetry(reply)

                now = time.monotonic()
                if comm.connected and now - last_telemetry_time >= telemetry_interval:
                    telemetry = vehicle.get_telemetry()
                    telemetry["heading"] = _safe_heading(vehicle)
                    await comm.send_telemetry(telemetry)
                    last_telemetry_time = now

                await asyncio.sleep(0.01)

            except (ConnectionResetError, BrokenPipeError):
                log.error("Connection lost. Stopping vehicle and waiting for new connection.")
                await _recovery_stop(vehicle)
            except Exception as e:
                log.error(f"Unexpected error in async network loop: {e}")
                await _recovery_stop(vehicle)
    finally:
        await vehicle.stop()
        await comm.close()


async def _recovery_stop(vehicle):
    """Stop the vehicle after a loop error; a failed stop is logged, not raised."""
    try:
        await vehicle.emergency_stop()
    except RoverError as e:
        logger.critical(f"Recovery stop failed, vehicle may still be moving: {e}")


def _safe_heading(vehicle):
    try:
        return vehicle.compass.read()
    except SensorError as e:
        logger.debug(f"Heading unavailable for telemetry: {e}")
        return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rover onboard controller")
    parser.add_argument("--config", default="config.json", help="path to config.json")
    parser.add_argument("--fake-car", action="store_true", default=None, help="fake the car")
    parser.add_argument("--fake-camera", action="store_true", default=None, help="fake the camera")
    parser.add_argument("--addr", type=lambda s: int(s, 0), help="PCA9685 i2c address, e.g. 0x40")
    parser.add_argument("--echo-pin", type=int, help="GPIO pin connected to the echo pad")
    parser.add_argument("--trigger-pin", type=int, help="GPIO pin connected to the trigger pad")
    parser.add_argument("--min-clearance", type=float, help="stop distance for the safety monitor")
    parser.add_argument("--port", type=int, help="control server TCP port")
    parser.add_argument("--camw", type=int, help="width of the captured camera image")
    parser.add_argument("--camh", type=int, help="height of the captured camera image")
    parser.add_argument("--fps", type=int, help="fps for camera")
    return parser


def apply_overrides(config, args):
    """Command-line values win over the config file."""
    if args.fake_car is not None:
        config.fake_car = args.fake_car
    if args.fake_camera is not None:
        config.fake_camera = args.fake_camera
    if args.echo_pin is not None:
        config.sensors.echo_pin = args.echo_pin
    if args.trigger_pin is not None:
        config.sensors.trigger_pin = args.trigger_pin
    if args.min_clearance is not None:
        config.safety.min_clearance = args.min_clearance
    if args.port is not None:
        config.port = args.port
    if args.addr is not None:
        config.drive.pca9685_address = args.addr
    if args.camw is not None or args.camh is not None:
        width, height = config.camera.resolution
        config.camera.resolution = (args.camw or width, args.camh or height)
    if args.fps is not None:
        config.camera.fps = args.fps
    return config


def main(argv=None):
    """
    Initialize all hardware and the motion-control core, then run the async
    network loop. Releases hardware on exit.
    """
    args = build_parser().parse_args(argv)
    config = apply_overrides(load_config(args.config), args)
    setup_logging(logfile=config.log_file_path)
    logger.info("Hey! Starting up...")

    import board
    import busio
    from .sensors.compass import Compass
    from .sensors.range_finder import RangeFinder

    i2c = busio.I2C(board.SCL, board.SDA)

    if config.fake_car:
        car = NullCar(config.drive.steering_center)
    else:
        from adafruit_pca9685 import PCA9685
        from .controller import PCA9685Car

        pwm_driver = PCA9685(i2c, address=config.drive.pca9685_address)
        car = PCA9685Car(pwm_driver, config.drive)

    compass = Compass(
        i2c,
        address=config.sensors.compass_address,
        polling_interval=config.sensors.compass_poll_interval,
        declination=config.sensors.declination,
    )
    compass.start()
    range_finder = RangeFinder(
        config.sensors.echo_pin, config.sensors.trigger_pin, config.sensors.echo_timeout
    )

    camera = None
    if not config.fake_camera:
        from .camera_streamer import CameraStreamer

        camera = CameraStreamer(config.camera)
        camera.start()

    vehicle = Vehicle(car, compass, range_finder, config)
    comm = CommunicationManager(config.host, config.port, config.trusted_clients)

    try:
        asyncio.run(async_network_loop(comm, vehicle, config.telemetry_interval))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    finally:
        if camera is not None:
            camera.stop()
        compass.stop()
        range_finder.close()
        car.close()
        logger.info("All done")


if __name__ == "__main__":
    main()
