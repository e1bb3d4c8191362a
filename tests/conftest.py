"""Shared fakes and fixtures: in-memory systemd, journal, clock, and live servers."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from healthnode.aggregate import Aggregator, PeerClient
from healthnode.error_cache import ErrorCache
from healthnode.health import HealthChecker
from healthnode.models import UnitState
from healthnode.proxy import Forwarder
from healthnode.router import Router
from healthnode.server import HealthServer

T0 = datetime(2024, 1, 11, 10, 0, 0, tzinfo=timezone.utc)
HOST_IP = "10.0.0.5"


@pytest.fixture(autouse=True)
def utc_local_time(monkeypatch):
    """Journal headers carry no zone and are read as local time; pin it to UTC."""
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()


class FakeUnits:
    """Stands in for systemctl: unit name -> UnitState."""

    def __init__(self):
        self.units: dict[str, UnitState] = {}
        self.state_calls = 0

    def add(self, name, active_state="active", sub_state="running",
            active_enter=T0, state_change=None, load_state="loaded"):
        self.units[name] = UnitState(
            load_state=load_state,
            active_state=active_state,
            sub_state=sub_state,
            active_enter_timestamp=active_enter,
            state_change_timestamp=state_change,
        )

    def state(self, name):
        self.state_calls += 1
        return self.units.get(name, UnitState("not-found", "inactive", "dead"))

    def is_registered(self, name):
        return self.state(name).registered

    def activation_start(self, name):
        return self.state(name).active_enter_timestamp


class FakeJournal:
    """Stands in for journalctl: timestamped message lines per unit."""

    def __init__(self):
        self.entries: dict[str, list[tuple[datetime, str]]] = {}
        self.calls: list[tuple[str, datetime]] = []

    def log(self, name, ts, text):
        for line in text.split("\n"):
            self.entries.setdefault(name, []).append((ts, line))

    def read_since(self, name, since):
        self.calls.append((name, since))
        lines = [text for ts, text in self.entries.get(name, []) if ts >= since]
        return "\n".join(lines) + ("\n" if lines else "")


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def units():
    return FakeUnits()


@pytest.fixture
def journal():
    return FakeJournal()


@pytest.fixture
def clock():
    return FakeClock(T0 + timedelta(minutes=5))


@pytest.fixture
def cache(tmp_path, units, journal, clock):
    return ErrorCache(str(tmp_path / "cache"), units, journal, clock=clock,
                      lock_wait_seconds=0.5, lock_poll_interval=0.01)


@pytest.fixture
def checker(units, cache):
    return HealthChecker(units, cache, lambda: HOST_IP)


def build_router(tmp_path, units, journal, node_id="node-a",
                 services=None, monitors=None, host=HOST_IP, timeout=5.0):
    """Router over fakes. *services*/*monitors* are lists read on every call."""
    services = services if services is not None else []
    monitors = monitors if monitors is not None else []
    cache = ErrorCache(str(tmp_path / node_id / "cache"), units, journal,
                       lock_wait_seconds=0.5, lock_poll_interval=0.01)
    checker = HealthChecker(units, cache, lambda: host)
    aggregator = Aggregator(node_id, checker, lambda: list(services),
                            lambda: list(monitors), PeerClient(timeout=timeout))
    return Router(checker, aggregator, Forwarder(timeout=timeout),
                  lambda: list(services), lambda: list(monitors),
                  index_file=str(tmp_path / node_id / "index.html"))


class RunningServer:
    def __init__(self, router):
        self.shutdown = threading.Event()
        self.server = HealthServer("127.0.0.1", 0, router, self.shutdown)
        self.thread = threading.Thread(target=self.server.start, daemon=True)
        self.thread.start()
        for _ in range(100):
            if self.server.server_address is not None:
                break
            time.sleep(0.05)
        else:
            raise RuntimeError("Server failed to bind")

    @property
    def url(self):
        return self.server.base_url

    def stop(self):
        self.server.stop()
        self.thread.join(timeout=5)


@pytest.fixture
def start_server():
    """Start HealthServer instances on OS-assigned ports; stopped after the test."""
    servers = []

    def _start(router):
        running = RunningServer(router)
        servers.append(running)
        return running

    yield _start
    for running in servers:
        running.stop()
