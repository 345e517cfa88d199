import asyncio

import pytest

from rover.navigation import TurnStatus
from rover.ports import ActuatorState, DriveCommand, Priority
from rover.vehicle import Vehicle

from conftest import FeedSource


@pytest.fixture
async def vehicle_factory(car, settings):
    created = []

    def make(headings=(0,), distances=(100,)):
        vehicle = Vehicle(car, FeedSource(headings), FeedSource(distances), settings)
        vehicle.arbiter.start()
        created.append(vehicle)
        return vehicle

    yield make
    for vehicle in created:
        await vehicle.stop()


async def test_submit_manual_applies_pair(vehicle_factory, car):
    vehicle = vehicle_factory()
    state = await vehicle.submit_manual(120, 60)
    assert state == ActuatorState(speed=120, angle=60)
    assert car.calls == [("speed", 120), ("angle", 60)]


async def test_request_reset_forwards_to_port(vehicle_factory, car):
    vehicle = vehicle_factory()
    await vehicle.request_reset()
    assert car.calls == [("reset", None)]


async def test_sensor_pass_through(vehicle_factory):
    vehicle = vehicle_factory(headings=[123.5], distances=[42])
    assert await vehicle.heading() == 123.5
    assert await vehicle.distance() == 42


async def test_turn_completes(vehicle_factory):
    vehicle = vehicle_factory(headings=[0, 20, 45, 88])
    task = vehicle.begin_turn_to(90)
    result = await task
    assert result.status is TurnStatus.COMPLETED
    assert vehicle.last_turn.status is TurnStatus.COMPLETED
    assert vehicle.get_telemetry()["turn"]["status"] == "completed"


async def test_new_turn_replaces_running_turn(vehicle_factory, settings):
    settings.turn.step_delay = 0.001
    vehicle = vehicle_factory(headings=[0])
    first = vehicle.begin_turn_to(180)
    await asyncio.sleep(0.01)
    second = vehicle.begin_turn_to(270)
    await asyncio.sleep(0.01)

    assert first.cancelled()
    assert vehicle.turning
    assert vehicle.get_telemetry()["turn"] == {"status": "running", "target": 270}
    await vehicle.cancel_turn()
    assert second.cancelled()
    assert vehicle.last_turn.status is TurnStatus.CANCELLED


async def test_obstacle_cancels_turn(vehicle_factory, car, settings):
    settings.turn.step_delay = 0.001
    vehicle = vehicle_factory(headings=[0], distances=[10])
    task = vehicle.begin_turn_to(180)
    await asyncio.sleep(0.01)

    await vehicle.safety.tick()
    await asyncio.gather(task, return_exceptions=True)
    await vehicle.arbiter.apply(DriveCommand(), Priority.MANUAL)

    assert task.cancelled()
    assert vehicle.last_turn.status is TurnStatus.CANCELLED
    assert vehicle.arbiter.state.speed == 0


async def test_obstacle_only_overrides_when_cancel_disabled(vehicle_factory, settings):
    settings.turn.step_delay = 0.001
    settings.safety.cancel_turn_on_obstacle = False
    vehicle = vehicle_factory(headings=[0], distances=[10])
    task = vehicle.begin_turn_to(180)
    await asyncio.sleep(0.01)

    await vehicle.safety.tick()
    await asyncio.sleep(0.01)

    assert not task.done()
    await vehicle.cancel_turn()


async def test_emergency_stop_cancels_turn(vehicle_factory, settings):
    settings.turn.step_delay = 0.001
    vehicle = vehicle_factory(headings=[0])
    task = vehicle.begin_turn_to(180)
    await asyncio.sleep(0.01)

    state = await vehicle.emergency_stop()

    assert task.cancelled()
    assert state.speed == 0


async def test_start_and_stop_core(car, settings):
    vehicle = Vehicle(car, FeedSource([0]), FeedSource([100]), settings)
    await vehicle.start()
    await asyncio.sleep(0.03)
    assert vehicle.arbiter.running
    assert vehicle.safety.last_distance == 100
    await vehicle.stop()
    assert not vehicle.arbiter.running
    assert car.calls[-2:] == [("speed", 0), ("angle", 90)]


async def test_telemetry_shape(vehicle_factory):
    vehicle = vehicle_factory()
    telemetry = vehicle.get_telemetry()
    assert telemetry["turn"] == {"status": "idle"}
    assert telemetry["actuator"] == {"speed": 0, "angle": 90}
    assert telemetry["safety_status"] == "ok"
