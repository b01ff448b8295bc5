import random
from datetime import datetime, timedelta

import pytest

from scheduler import (
    BlockWindow,
    is_within_any_window,
    next_boundary_after,
    to_datetime,
    to_minutes,
    to_ms,
    weekday,
)

# 2024-01-01 is a Monday
MONDAY = datetime(2024, 1, 1)
WORKDAY = BlockWindow(day=1, start="09:00", end="17:00")
LATE_NIGHT = BlockWindow(day=1, start="22:00", end="02:00")


def at(days=0, hour=0, minute=0):
    return MONDAY + timedelta(days=days, hours=hour, minutes=minute)


def test_to_minutes():
    assert to_minutes("00:00") == 0
    assert to_minutes("09:30") == 570
    assert to_minutes("23:59") == 1439


@pytest.mark.parametrize("value", ["24:00", "9", "12:60", "ab:cd", "", None])
def test_to_minutes_rejects_garbage(value):
    with pytest.raises(ValueError):
        to_minutes(value)


def test_window_rejects_bad_weekday():
    with pytest.raises(ValueError):
        BlockWindow(day=7, start="09:00", end="10:00")


def test_weekday_counts_from_sunday():
    assert weekday(at(0)) == 1
    assert weekday(at(6)) == 0


def test_same_day_window_is_half_open():
    windows = [WORKDAY]
    assert not is_within_any_window(at(hour=8, minute=59), windows)
    assert is_within_any_window(at(hour=9), windows)
    assert is_within_any_window(at(hour=16, minute=59), windows)
    assert not is_within_any_window(at(hour=17), windows)


def test_window_only_applies_on_its_weekday():
    assert not is_within_any_window(at(days=1, hour=10), [WORKDAY])


def test_overnight_window():
    windows = [LATE_NIGHT]
    assert is_within_any_window(at(hour=23), windows)
    assert is_within_any_window(at(hour=1, minute=59), windows)
    assert not is_within_any_window(at(hour=2), windows)
    assert not is_within_any_window(at(hour=21, minute=59), windows)
    # Tuesday early morning belongs to Tuesday, which has no window
    assert not is_within_any_window(at(days=1, hour=1), windows)


def test_no_windows_never_blocks():
    assert not is_within_any_window(at(hour=10), [])


def test_next_boundary_is_end_of_current_window():
    assert next_boundary_after(at(hour=10), [WORKDAY]) == at(hour=17)


def test_next_boundary_is_strictly_after_now():
    assert next_boundary_after(at(hour=9), [WORKDAY]) == at(hour=17)


def test_next_boundary_before_window():
    assert next_boundary_after(at(hour=8), [WORKDAY]) == at(hour=9)


def test_next_boundary_a_week_away():
    assert next_boundary_after(at(hour=18), [WORKDAY]) == at(days=7, hour=9)


def test_next_boundary_skips_to_next_working_day():
    weekdays = [BlockWindow(day=d, start="09:00", end="17:00") for d in range(1, 6)]
    friday_evening = at(days=4, hour=18)
    assert next_boundary_after(friday_evening, weekdays) == at(days=7, hour=9)


def test_next_boundary_overnight_includes_midnight():
    assert next_boundary_after(at(hour=23), [LATE_NIGHT]) == at(days=1)


def test_next_boundary_without_windows_falls_back_to_a_day():
    now = at(hour=10, minute=15)
    assert next_boundary_after(now, []) == now + timedelta(days=1)


def test_ms_round_trip():
    moment = at(hour=10, minute=30)
    assert to_datetime(to_ms(moment)) == moment


def _random_windows(rng):
    windows = []
    for _ in range(rng.randint(1, 4)):
        start = rng.randint(0, 1439)
        end = rng.randint(0, 1439)
        windows.append(
            BlockWindow(
                day=rng.randint(0, 6),
                start=f"{start // 60:02d}:{start % 60:02d}",
                end=f"{end // 60:02d}:{end % 60:02d}",
            )
        )
    return windows


def test_schedule_is_constant_until_next_boundary():
    rng = random.Random(99)
    for _ in range(15):
        windows = _random_windows(rng)
        now = at(days=rng.randint(0, 6), minute=rng.randint(0, 1439))
        boundary = next_boundary_after(now, windows)
        assert boundary > now

        state = is_within_any_window(now, windows)
        moment = now + timedelta(minutes=1)
        while moment < boundary:
            assert is_within_any_window(moment, windows) == state
            moment += timedelta(minutes=1)
