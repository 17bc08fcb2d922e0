"""Pytest configuration and fixtures for named-lock tests"""

import time

import pytest

from named_lock.core.constants import ENV_VAR_MAPPING, MICROS_PER_SECOND
from named_lock.core.locks import MemoryLockStore, SQLLockStore, close_shared_stores

START_MICROS = 1_700_000_000 * MICROS_PER_SECOND


class FakeClock:
    """Wall clock in epoch microseconds that only moves when told to."""

    def __init__(self, start: int = START_MICROS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 0, micros: int = 0) -> None:
        self.now += seconds * MICROS_PER_SECOND + micros


class FakeTimer:
    """Stands in for time.monotonic/time.sleep; sleeping also moves `clock`."""

    def __init__(self, clock: FakeClock | None = None):
        self.now = 1000.0
        self.clock = clock
        self.sleeps: list[float] = []
        self.on_sleep = None

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.clock is not None:
            self.clock.advance(micros=round(seconds * MICROS_PER_SECOND))
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


@pytest.fixture(autouse=True)
def clean_named_lock_env(monkeypatch):
    """Keep NAMED_LOCK_* settings from the developer's shell out of the tests"""
    for env_name in ENV_VAR_MAPPING.values():
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture(autouse=True)
def fresh_shared_stores():
    """Stores built by get_lock() without an explicit store do not outlive a test"""
    yield
    close_shared_stores()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_timer(monkeypatch, clock):
    timer = FakeTimer(clock)
    monkeypatch.setattr(time, "monotonic", timer.monotonic)
    monkeypatch.setattr(time, "sleep", timer.sleep)
    return timer


@pytest.fixture
def memory_store():
    return MemoryLockStore()


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'locks.db'}"


@pytest.fixture
def sql_store(sqlite_url):
    store = SQLLockStore(sqlite_url)
    store.create_schema()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Each store backend in turn"""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")
