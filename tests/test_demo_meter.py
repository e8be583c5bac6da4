import pytest

from langgol_client import (
    DEMO_RECORD_MAX_AGE,
    DEMO_USER_KEY,
    DemoExpired,
    DemoLimits,
    DemoSessionMeter,
    DemoUsage,
    FileStorage,
    MemoryStorage,
    MeterState,
)


@pytest.fixture
def storage(clock):
    return MemoryStorage(clock)


@pytest.fixture
def meter(storage, clock):
    m = DemoSessionMeter(storage, clock=clock)
    m.start()
    return m


def test_start_writes_a_zeroed_record(meter, storage):
    assert meter.state is MeterState.ACTIVE
    assert storage.get(DEMO_USER_KEY) == {"requests": 0, "talkTime": 0}


def test_five_single_requests_expire(meter):
    states = [meter.record_usage(1, 0) for _ in range(5)]
    assert states == [MeterState.ACTIVE] * 4 + [MeterState.EXPIRED]


def test_one_batch_of_five_requests_expires(meter):
    assert meter.record_usage(5, 0) is MeterState.EXPIRED


def test_talk_time_threshold(storage, clock):
    meter = DemoSessionMeter(storage, clock=clock)
    meter.start()
    assert meter.record_usage(0, 119) is MeterState.ACTIVE

    storage.delete(DEMO_USER_KEY)
    meter = DemoSessionMeter(storage, clock=clock)
    meter.start()
    assert meter.record_usage(0, 120) is MeterState.EXPIRED


def test_start_refused_after_exhaustion(meter, storage, clock):
    meter.record_usage(5, 0)

    again = DemoSessionMeter(storage, clock=clock)
    with pytest.raises(DemoExpired):
        again.start()
    assert again.state is MeterState.EXPIRED


def test_exhausted_record_is_forgotten_after_thirty_days(meter, storage, clock):
    meter.record_usage(0, 120)
    clock.advance(DEMO_RECORD_MAX_AGE + 1)

    again = DemoSessionMeter(storage, clock=clock)
    assert again.start() == DemoUsage()


def test_start_resets_unexhausted_usage(meter, storage, clock):
    meter.record_usage(3, 60)
    again = DemoSessionMeter(storage, clock=clock)
    assert again.start() == DemoUsage()


def test_usage_after_expiry_is_ignored(meter):
    meter.record_usage(5, 0)
    assert meter.record_usage(1, 1) is MeterState.EXPIRED
    assert meter.usage == DemoUsage(requests=5, talk_time=0)


def test_configurable_limits(storage, clock):
    meter = DemoSessionMeter(storage, DemoLimits(requests=2, talk_time=10), clock=clock)
    meter.start()
    assert meter.record_usage(1, 0) is MeterState.ACTIVE
    assert meter.record_usage(1, 0) is MeterState.EXPIRED


def test_expiry_callback(storage, clock):
    expired = []
    meter = DemoSessionMeter(storage, clock=clock, on_expired=expired.append)
    meter.start()
    meter.record_usage(0, 200)
    assert expired == [DemoUsage(requests=0, talk_time=200)]


def test_tick_accrues_whole_seconds(meter, clock):
    clock.advance(3.5)
    meter.tick()
    assert meter.usage.talk_time == 3

    clock.advance(0.5)
    meter.tick()
    assert meter.usage.talk_time == 4


def test_tick_does_not_accrue_while_hidden(meter, clock):
    clock.advance(2)
    meter.tick()

    meter.tick(visible=False)
    clock.advance(30)
    meter.tick(visible=False)
    clock.advance(30)
    meter.tick(visible=True)
    assert meter.usage.talk_time == 2

    clock.advance(5)
    meter.tick()
    assert meter.usage.talk_time == 7


def test_tick_stops_at_the_quota(meter, clock):
    clock.advance(500)
    assert meter.tick() is MeterState.EXPIRED
    assert meter.usage.talk_time == 120

    clock.advance(10)
    meter.tick()
    assert meter.usage.talk_time == 120


def test_stop_erases_the_record(meter, storage):
    meter.record_usage(2, 0)
    meter.stop()
    assert meter.state is MeterState.INACTIVE
    assert storage.get(DEMO_USER_KEY) is None
    assert meter.record_usage(1, 0) is MeterState.INACTIVE


def test_remaining_usage():
    usage = DemoUsage(requests=2, talk_time=130)
    assert usage.remaining(DemoLimits()) == DemoUsage(requests=3, talk_time=0)


def test_file_storage_survives_a_reload(tmp_path, clock):
    path = str(tmp_path / "session.json")
    meter = DemoSessionMeter(FileStorage(path, clock), clock=clock)
    meter.start()
    meter.record_usage(5, 0)

    reloaded = DemoSessionMeter(FileStorage(path, clock), clock=clock)
    assert reloaded.usage == DemoUsage(requests=5, talk_time=0)
    with pytest.raises(DemoExpired):
        reloaded.start()


def test_resume_keeps_the_stored_counters(meter, storage, clock):
    meter.record_usage(4, 30)

    reloaded = DemoSessionMeter(storage, clock=clock)
    assert reloaded.resume() == DemoUsage(requests=4, talk_time=30)
    assert reloaded.state is MeterState.ACTIVE
    assert reloaded.record_usage(1, 0) is MeterState.EXPIRED


def test_resume_of_an_exhausted_record(meter, storage, clock):
    meter.record_usage(0, 120)

    reloaded = DemoSessionMeter(storage, clock=clock)
    assert reloaded.resume() == DemoUsage(requests=0, talk_time=120)
    assert reloaded.state is MeterState.EXPIRED


def test_resume_without_a_record(storage, clock):
    meter = DemoSessionMeter(storage, clock=clock)
    assert meter.resume() is None
    assert meter.state is MeterState.INACTIVE


def test_corrupt_session_file_starts_empty(tmp_path, clock):
    path = tmp_path / "session.json"
    path.write_text('{"langgol-demoUser": {"value"', encoding="utf-8")

    storage = FileStorage(str(path), clock)
    assert storage.get(DEMO_USER_KEY) is None
    assert DemoSessionMeter(storage, clock=clock).start() == DemoUsage()
