import asyncio

from rover.errors import SensorError
from rover.ports import DriveCommand, Priority
from rover.safety import STATUS_DEGRADED, STATUS_OBSTACLE, STATUS_OK, SafetyMonitor

from conftest import FeedSource


async def drain(arbiter):
    await arbiter.apply(DriveCommand(), Priority.MANUAL)


async def test_stop_starts_at_threshold_tick(arbiter, car, settings):
    monitor = SafetyMonitor(FeedSource([40, 30, 20, 10]), arbiter, settings.safety)
    stops_after_tick = []

    for _ in range(4):
        await monitor.tick()
        await drain(arbiter)
        stops_after_tick.append(len(car.speeds()))

    assert stops_after_tick == [0, 0, 1, 2]
    assert car.speeds() == [0, 0]
    assert monitor.status == STATUS_OBSTACLE


async def test_running_monitor_sequence(arbiter, settings):
    monitor = SafetyMonitor(FeedSource([40, 30, 20, 10]), arbiter, settings.safety)
    stopped_at = []
    monitor.add_obstacle_listener(stopped_at.append)

    monitor.start()
    await asyncio.sleep(0.1)
    await monitor.stop()

    assert stopped_at[:2] == [20, 10]
    assert 40 not in stopped_at and 30 not in stopped_at
    # no hysteresis: every tick below the threshold re-asserts the stop
    assert len(stopped_at) > 2


async def test_exact_threshold_stops(arbiter, car, settings):
    monitor = SafetyMonitor(FeedSource([25]), arbiter, settings.safety)
    await monitor.tick()
    await drain(arbiter)
    assert car.speeds() == [0]


async def test_clear_path_issues_nothing(arbiter, car, settings):
    monitor = SafetyMonitor(FeedSource([100]), arbiter, settings.safety)
    for _ in range(3):
        await monitor.tick()
    await drain(arbiter)
    assert car.calls == []
    assert monitor.status == STATUS_OK
    assert monitor.last_distance == 100


async def test_safety_stop_beats_queued_manual(car, settings):
    from rover.arbiter import ActuatorArbiter

    arb = ActuatorArbiter(car, settings.drive)
    manual = arb.submit(DriveCommand(speed=200, angle=90), Priority.MANUAL)
    monitor = SafetyMonitor(FeedSource([5]), arb, settings.safety)
    await monitor.tick()

    arb.start()
    await manual
    await arb.stop()
    assert car.calls[0] == ("speed", 0)


async def test_stalled_writer_keeps_one_queued_stop(car, settings):
    from rover.arbiter import ActuatorArbiter

    arb = ActuatorArbiter(car, settings.drive)
    monitor = SafetyMonitor(FeedSource([10]), arb, settings.safety)
    stopped_at = []
    monitor.add_obstacle_listener(stopped_at.append)
    for _ in range(5):
        await monitor.tick()

    assert arb.get_telemetry()["pending_commands"] == 1
    assert stopped_at == [10] * 5
    assert monitor.stop_count == 5

    arb.start()
    await drain(arb)
    assert car.speeds() == [0]
    # once applied, the next tick queues a fresh stop
    await monitor.tick()
    await drain(arb)
    assert car.speeds() == [0, 0]
    await arb.stop()


async def test_transient_read_error_is_retried(arbiter, car, settings):
    source = FeedSource([SensorError("echo lost"), 60])
    monitor = SafetyMonitor(source, arbiter, settings.safety)

    distance = await monitor.tick()

    assert distance == 60
    assert source.reads == 2
    assert monitor.status == STATUS_OK


async def test_persistent_failure_degrades_and_keeps_running(arbiter, car, settings):
    settings.safety.read_retries = 2
    source = FeedSource([SensorError("echo lost")] * 6 + [80])
    monitor = SafetyMonitor(source, arbiter, settings.safety)

    assert await monitor.tick() is None
    await drain(arbiter)
    assert monitor.status == STATUS_DEGRADED
    assert monitor.degraded
    assert car.speeds() == [0]
    assert source.reads == 3

    assert await monitor.tick() is None
    assert await monitor.tick() == 80
    assert monitor.status == STATUS_OK


async def test_loop_survives_sensor_failures(arbiter, settings):
    monitor = SafetyMonitor(FeedSource([SensorError("dead")]), arbiter, settings.safety)
    monitor.start()
    await asyncio.sleep(0.05)
    assert not monitor._task.done()
    await monitor.stop()
    assert monitor.degraded


async def test_listener_errors_do_not_block_stop(arbiter, car, settings):
    monitor = SafetyMonitor(FeedSource([10]), arbiter, settings.safety)

    def broken(distance):
        raise RuntimeError("listener bug")

    monitor.add_obstacle_listener(broken)
    await monitor.tick()
    await drain(arbiter)
    assert car.speeds() == [0]


async def test_telemetry(arbiter, settings):
    monitor = SafetyMonitor(FeedSource([12]), arbiter, settings.safety)
    await monitor.tick()
    assert monitor.get_telemetry() == {
        "distance": 12,
        "safety_status": STATUS_OBSTACLE,
        "safety_stops": 1,
    }
