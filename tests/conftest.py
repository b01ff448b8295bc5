import random
from datetime import datetime

import pytest

from background import Background
from contexts import InMemoryContextHost
from scheduler import to_ms
from storage import Storage


def local_ms(year, month, day, hour=0, minute=0):
    return to_ms(datetime(year, month, day, hour, minute))


# 2024-01-01 is a Monday
MONDAY_10AM = local_ms(2024, 1, 1, 10, 0)


class FakeClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock(MONDAY_10AM)


@pytest.fixture
def storage():
    return Storage.in_memory()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def contexts():
    return InMemoryContextHost()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def background(storage, contexts, rng, clock, sleep):
    return Background(storage, contexts=contexts, rng=rng, clock=clock, sleep=sleep)
