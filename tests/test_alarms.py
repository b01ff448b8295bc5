from alarms import AlarmService
from config import MINUTE_MS
from storage import Storage


def test_create_with_delay(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    alarm = alarms.create("tick", delay_minutes=5)
    assert alarm.when == clock() + 5 * MINUTE_MS
    assert alarms.get("tick") == alarm


def test_create_replaces_same_name(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    alarms.create("tick", when=clock() + 1000)
    alarms.create("tick", when=clock() + 2000)
    assert [a.when for a in alarms.get_all()] == [clock() + 2000]


def test_clear(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    alarms.create("tick", when=clock() + 1000)
    assert alarms.clear("tick")
    assert not alarms.clear("tick")
    assert alarms.get("tick") is None


def test_fire_due_removes_one_shot_alarms(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    fired = []
    alarms.add_listener(fired.append)
    alarms.create("soon", when=clock() + 1000)
    alarms.create("later", when=clock() + 5000)

    assert alarms.fire_due() == []
    clock.advance(1000)
    assert alarms.fire_due() == ["soon"]
    assert fired == ["soon"]
    assert alarms.get("soon") is None
    assert alarms.get("later") is not None


def test_periodic_alarm_is_rescheduled(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    alarms.create("cleanup", period_minutes=1)
    clock.advance(MINUTE_MS)
    assert alarms.fire_due() == ["cleanup"]
    assert alarms.get("cleanup").when == clock() + MINUTE_MS


def test_failing_listener_does_not_refire(storage, clock):
    alarms = AlarmService(storage, clock=clock)
    seen = []

    def broken(name):
        raise RuntimeError("boom")

    alarms.add_listener(broken)
    alarms.add_listener(seen.append)
    alarms.create("once", when=clock())
    assert alarms.fire_due() == ["once"]
    assert alarms.fire_due() == []
    assert seen == ["once"]


def test_alarms_survive_restart(tmp_path, clock):
    AlarmService(Storage.open(tmp_path), clock=clock).create("reroll-reset", when=clock() + 10)
    restarted = AlarmService(Storage.open(tmp_path), clock=clock)
    assert restarted.get("reroll-reset").when == clock() + 10


def test_malformed_alarms_are_dropped(storage, clock):
    storage.local.set("alarms", [{"name": "ok", "when": 5}, {"when": 3}, "junk"])
    assert [a.name for a in AlarmService(storage, clock=clock).get_all()] == ["ok"]
