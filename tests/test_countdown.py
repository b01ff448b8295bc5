import countdown
from countdown import INACTIVE, Paused, Running

END = "end"
PAUSED = "paused"


def test_start_runs_from_now():
    assert countdown.start(5000, 1000) == Running(ends_at=6000)


def test_pause_keeps_remaining_time():
    assert countdown.pause(Running(ends_at=6000), 2000) == Paused(remaining=4000)


def test_pause_after_end_keeps_zero():
    assert countdown.pause(Running(ends_at=6000), 9000) == Paused(remaining=0)


def test_resume_restarts_from_now():
    assert countdown.resume(Paused(remaining=4000), 10_000) == Running(ends_at=14_000)


def test_pause_and_resume_ignore_other_states():
    assert countdown.pause(INACTIVE, 1) is INACTIVE
    assert countdown.resume(INACTIVE, 1) is INACTIVE
    assert countdown.pause(Paused(10), 1) == Paused(10)
    assert countdown.resume(Running(10), 1) == Running(10)


def test_cancel():
    assert countdown.cancel(Running(10)) is INACTIVE
    assert not countdown.is_active(countdown.cancel(Paused(10)))


def test_is_expired_only_for_running():
    assert countdown.is_expired(Running(10), 10)
    assert not countdown.is_expired(Running(10), 9)
    assert not countdown.is_expired(Paused(0), 100)
    assert not countdown.is_expired(INACTIVE, 100)


def test_remaining():
    assert countdown.remaining(Running(100), 40) == 60
    assert countdown.remaining(Paused(25), 40) == 25
    assert countdown.remaining(INACTIVE, 40) is None


def test_fields_never_both_set():
    for value in (INACTIVE, Running(50), Paused(20)):
        fields = countdown.to_fields(value, END, PAUSED)
        assert fields[END] is None or fields[PAUSED] is None
        assert countdown.from_fields(fields, END, PAUSED) == value


def test_paused_wins_when_both_persisted():
    assert countdown.from_fields({END: 100, PAUSED: 30}, END, PAUSED) == Paused(30)


def test_garbage_fields_decode_inactive():
    assert countdown.from_fields({END: "soon", PAUSED: True}, END, PAUSED) is INACTIVE
    assert countdown.from_fields({}, END, PAUSED) is INACTIVE
