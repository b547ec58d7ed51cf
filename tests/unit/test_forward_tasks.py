# tests/unit/test_forward_tasks.py
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import problem
from forwarder.application.services.forwarding_service import ForwardingEngine
from forwarder.core.config import parse_config
from forwarder.core.errors import UpstreamError
from forwarder.workers.celery_app import celery
from forwarder.workers.scheduler.beat_schedule import build_beat_schedule, configured_interval
from forwarder.workers.tasks import forward_tasks

pytestmark = pytest.mark.unit


class _Upstream:
    def __init__(self, *batches):
        self.batches = list(batches)
        self.fetches = 0

    def fetch_problems(self):
        self.fetches += 1
        item = self.batches.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _SharedLock:
    """Verrou non bloquant partagé, comme un lock Redis vu par plusieurs process."""

    def __init__(self, held: dict, name: str, fail: Exception | None = None):
        self.held = held
        self.name = name
        self.fail = fail
        self.acquired = False

    def acquire(self, blocking=None):
        if self.fail is not None:
            raise self.fail
        if self.held.get(self.name):
            return False
        self.held[self.name] = True
        self.acquired = True
        return True

    def release(self):
        self.held[self.name] = False


@pytest.fixture
def held_locks(monkeypatch):
    held: dict = {}
    issued: list[_SharedLock] = []

    def factory(interval_seconds):
        lock = _SharedLock(held, forward_tasks.CYCLE_LOCK_NAME)
        issued.append(lock)
        return lock

    monkeypatch.setattr(forward_tasks, "cycle_lock", factory)
    held["issued"] = issued
    return held


@pytest.fixture
def upstream():
    return _Upstream([problem("P-1")], [problem("P-1")], UpstreamError("down"))


@pytest.fixture
def wired(monkeypatch, base_config_dict, sql_store, fake_clock, upstream, held_locks):
    cfg = parse_config(base_config_dict, env={})

    monkeypatch.setattr(forward_tasks, "load_config", lambda: cfg)
    monkeypatch.setattr(
        forward_tasks,
        "ForwardingEngine",
        lambda c: ForwardingEngine(c, store=sql_store, upstream=upstream, clock=fake_clock),
    )
    forward_tasks.reset_scheduler()
    yield
    forward_tasks.reset_scheduler()


def test_forward_cycle_task_runs_one_cycle(wired, transport, held_locks):
    first = forward_tasks.forward_cycle.delay().get()
    assert first["ran"] is True
    assert first["created"] == 1
    assert first["success"] == 2

    second = forward_tasks.forward_cycle.delay().get()
    assert second["skipped"] == 1

    third = forward_tasks.forward_cycle.delay().get()
    assert third == {"ran": True, "upstream_error": True}

    # verrou relâché après chaque cycle
    assert held_locks[forward_tasks.CYCLE_LOCK_NAME] is False
    assert all(lock.acquired for lock in held_locks["issued"])


def test_cycle_skipped_while_another_worker_holds_the_lock(wired, transport, held_locks, upstream):
    held_locks[forward_tasks.CYCLE_LOCK_NAME] = True  # cycle en cours dans un autre process

    out = forward_tasks.run_forward_cycle()

    assert out == {"ran": False}
    assert upstream.fetches == 0
    assert transport.calls == []
    assert forward_tasks.get_scheduler().ticks_run == 0

    held_locks[forward_tasks.CYCLE_LOCK_NAME] = False
    assert forward_tasks.run_forward_cycle()["created"] == 1


def test_cycle_skipped_when_lock_backend_is_down(wired, monkeypatch, upstream):
    monkeypatch.setattr(
        forward_tasks,
        "cycle_lock",
        lambda interval: _SharedLock({}, forward_tasks.CYCLE_LOCK_NAME, fail=RedisConnectionError("refused")),
    )

    assert forward_tasks.run_forward_cycle() == {"ran": False}
    assert upstream.fetches == 0


def test_cycle_lock_expires_after_a_multiple_of_the_interval(monkeypatch):
    captured = {}

    class _Client:
        def lock(self, name, timeout, blocking):
            captured.update(name=name, timeout=timeout, blocking=blocking)
            return object()

    monkeypatch.setattr(forward_tasks.redis.Redis, "from_url", classmethod(lambda cls, url, **kw: _Client()))

    forward_tasks.cycle_lock(120)
    assert captured == {"name": "forwarder:forward-cycle", "timeout": 1200, "blocking": False}

    forward_tasks.cycle_lock(5)
    assert captured["timeout"] == forward_tasks.CYCLE_LOCK_MIN_TIMEOUT


def test_worker_runs_a_single_process():
    assert celery.conf.worker_concurrency == 1
    assert celery.conf.worker_prefetch_multiplier == 1


def test_scheduler_is_built_once_per_process(wired):
    assert forward_tasks.get_scheduler() is forward_tasks.get_scheduler()
    assert forward_tasks.get_scheduler().interval == 30


def test_beat_schedule_uses_polling_interval():
    sched = build_beat_schedule(45)
    assert sched["forward-cycle"]["task"] == "tasks.forward_cycle"
    assert sched["forward-cycle"]["schedule"] == 45.0


def test_beat_interval_defaults_without_config():
    # CONFIG_PATH pointe vers un fichier absent (conftest)
    assert configured_interval() == 60.0
