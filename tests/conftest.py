# tests/conftest.py
"""
Conftest global.

Points clés :
- ENV sûres posées AVANT les imports forwarder.* (Settings() lit l'ENV à l'import) :
  DATABASE_URL SQLite in-memory, pas de config YAML réelle, pas de token Dynatrace.
- Pour les tests @unit :
  - Celery en mode "eager".
  - DB SQLite in-memory partagée (StaticPool) + Base.metadata.create_all,
    purge des tables après chaque test.
- Horloge factice (aucune attente réelle) et faux transport HTTP pour les connecteurs.
"""

import os
import threading
from types import SimpleNamespace

import pytest


def pytest_configure(config) -> None:
    os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
    os.environ["CONFIG_PATH"] = os.path.join(os.path.dirname(__file__), "missing-config.yaml")
    os.environ.pop("DYNATRACE_API_TOKEN", None)


# ============================================================================
# Helpers
# ============================================================================
def _is_unit(request: pytest.FixtureRequest) -> bool:
    return request.node.get_closest_marker("unit") is not None


class FakeClock:
    """Horloge déterministe : sleep/wait avancent le temps sans bloquer."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = float(start)
        self.sleeps: list[float] = []

    def now(self) -> int:
        return int(self._now)

    def monotonic(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += max(seconds, 0)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        if event.is_set():
            return True
        self._now += max(seconds, 0)
        return event.is_set()


def resp(status_code: int = 200, text: str = "") -> SimpleNamespace:
    return SimpleNamespace(status_code=status_code, text=text)


class FakeTransport:
    """
    Remplace `dispatcher.http_send`. Réponses scriptées par URL :
    chaque appel consomme l'élément suivant (le dernier est répété).
    Un élément Exception est levé au lieu d'être renvoyé.
    """

    def __init__(self):
        self.scripts: dict[str, list] = {}
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def script(self, url: str, *responses) -> None:
        self.scripts[url] = list(responses)

    def calls_to(self, url: str) -> list[dict]:
        return [c for c in self.calls if c["url"] == url]

    def __call__(self, method, url, *, headers, json, timeout, verify=True):
        with self._lock:
            self.calls.append(
                {"method": method, "url": url, "headers": dict(headers), "json": json,
                 "timeout": timeout, "verify": verify}
            )
            queue = self.scripts.get(url) or [resp(200)]
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


def problem(problem_id: str = "P-1", status: str = "OPEN", **extra) -> dict:
    """Problème brut au format Dynatrace."""
    data = {
        "problemId": problem_id,
        "displayId": problem_id,
        "title": extra.pop("title", f"Problem {problem_id}"),
        "status": status,
        "severityLevel": extra.pop("severity", "AVAILABILITY"),
        "impactLevel": "SERVICES",
    }
    data.update(extra)
    return data


def connector(name: str = "alpha", **kw):
    from forwarder.core.config import ConnectorConfig

    kw.setdefault("url", f"http://{name}.example.test/hook")
    return ConnectorConfig(name=name, **kw)


# ============================================================================
# Fixtures génériques
# ============================================================================
@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport(monkeypatch) -> FakeTransport:
    from forwarder.infrastructure.connectors import dispatcher as dispatcher_mod

    fake = FakeTransport()
    monkeypatch.setattr(dispatcher_mod, "http_send", fake, raising=True)
    return fake


@pytest.fixture
def base_config_dict() -> dict:
    return {
        "dynatrace": {"base_url": "https://dt.example.test", "tenant": "abc123"},
        "polling": {"interval_seconds": 30},
        "connectors": [
            {"name": "alpha", "url": "http://alpha.example.test/hook", "retry_attempts": 1},
            {"name": "beta", "url": "http://beta.example.test/hook", "retry_attempts": 1},
        ],
    }


# ============================================================================
# UNIT-ONLY: Celery en mode "eager"
# ============================================================================
@pytest.fixture(autouse=True)
def celery_eager(request):
    """⚠️ Fixture générateur : doit toujours 'yield', même hors unit."""
    if not _is_unit(request):
        yield
        return

    from forwarder.workers.celery_app import celery

    prev_always = celery.conf.task_always_eager
    prev_propag = celery.conf.task_eager_propagates
    celery.conf.task_always_eager = True
    celery.conf.task_eager_propagates = True
    try:
        yield
    finally:
        celery.conf.task_always_eager = prev_always
        celery.conf.task_eager_propagates = prev_propag


# ============================================================================
# UNIT-ONLY: DB SQLite in-memory partagée + Base.metadata.create_all
# ============================================================================
@pytest.fixture(scope="session")
def _sqlite_engine_unit():
    from forwarder.infrastructure.persistence.database.base import Base
    from forwarder.infrastructure.persistence.database.session import make_engine

    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="session")
def _Session_unit(_sqlite_engine_unit):
    from forwarder.infrastructure.persistence.database.session import make_sessionmaker

    return make_sessionmaker(_sqlite_engine_unit)


@pytest.fixture
def Session(request, _Session_unit):
    if not _is_unit(request):
        pytest.skip("Session fixture is only available for unit tests")
    return _Session_unit


@pytest.fixture(autouse=True)
def _clear_db_between_unit_tests(request, _Session_unit):
    """
    Après chaque test unitaire, on supprime le contenu de toutes les tables.
    ⚠️ Générateur : doit 'yield' aussi hors unit.
    """
    yield
    if not _is_unit(request):
        return
    from forwarder.infrastructure.persistence.database.base import Base

    with _Session_unit() as s:
        for table in reversed(Base.metadata.sorted_tables):
            s.execute(table.delete())
        s.commit()


@pytest.fixture
def sql_store(Session, fake_clock):
    from forwarder.infrastructure.persistence.store import SqlStateStore

    return SqlStateStore(Session, clock=fake_clock)


@pytest.fixture
def memory_store(fake_clock):
    from forwarder.infrastructure.persistence.store import InMemoryStateStore

    return InMemoryStateStore(clock=fake_clock)
