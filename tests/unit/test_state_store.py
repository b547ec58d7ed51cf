# tests/unit/test_state_store.py
# -------------------------------------------------------------------
# Contrat du State Store, exécuté sur les deux implémentations
# (SQLAlchemy / SQLite in-memory et mémoire).
# -------------------------------------------------------------------
import pytest
from sqlalchemy.exc import OperationalError

from forwarder.core.errors import StoreError
from forwarder.domain.models import AttemptOutcome, ForwardAttempt, ProblemRecord
from forwarder.infrastructure.persistence.store import LAST_SUCCESSFUL_POLL_KEY, SqlStateStore

pytestmark = pytest.mark.unit


@pytest.fixture(params=["sql", "memory"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


def REC(problem_id="P-1", status="OPEN", count=1, ts=100, **kw):
    return ProblemRecord(
        problem_id=problem_id,
        status=status,
        severity=kw.get("severity", "AVAILABILITY"),
        title=kw.get("title", "Service down"),
        first_seen_at=kw.get("first_seen_at", ts),
        last_forwarded_at=ts,
        last_status_change_at=ts,
        forward_count=count,
        created_at=kw.get("created_at", ts),
        updated_at=ts,
    )


def ATT(outcome, problem_id="P-1", connector="alpha", code=None, err=None):
    return ForwardAttempt(
        problem_id=problem_id,
        connector_name=connector,
        outcome=outcome,
        attempted_at=123,
        response_code=code,
        error_message=err,
    )


def test_get_unknown_problem_returns_none(store):
    assert store.get_problem("nope") is None


def test_upsert_then_get(store):
    store.upsert_problem(REC())
    got = store.get_problem("P-1")
    assert got is not None
    assert got.status == "OPEN"
    assert got.forward_count == 1
    assert got.severity == "AVAILABILITY"


def test_upsert_never_rewrites_first_seen(store):
    store.upsert_problem(REC(ts=100))
    store.upsert_problem(REC(status="CLOSED", count=2, ts=200, first_seen_at=999, created_at=999))
    got = store.get_problem("P-1")
    assert got.status == "CLOSED"
    assert got.forward_count == 2
    assert got.first_seen_at == 100
    assert got.created_at == 100
    assert got.last_status_change_at == 200


def test_attempts_are_append_only_and_ordered(store):
    store.append_attempt(ATT(AttemptOutcome.RETRYING, code=500, err="HTTP 500"))
    store.append_attempt(ATT(AttemptOutcome.FAILED, code=500, err="HTTP 500"))
    store.append_attempt(ATT(AttemptOutcome.SUCCESS, connector="beta", code=200))

    alpha = store.list_attempts(problem_id="P-1", connector_name="alpha")
    assert [a.outcome for a in alpha] == [AttemptOutcome.RETRYING, AttemptOutcome.FAILED]
    assert alpha[0].id < alpha[1].id
    assert len(store.list_attempts()) == 3


def test_app_state_last_write_wins(store):
    assert store.get_app_state("k") is None
    store.set_app_state("k", "1")
    store.set_app_state("k", "2")
    assert store.get_app_state("k") == "2"


def test_clear_problems_keeps_history(store):
    store.upsert_problem(REC("P-1"))
    store.upsert_problem(REC("P-2"))
    store.append_attempt(ATT(AttemptOutcome.SUCCESS, code=200))

    assert store.clear_problems() == 2
    assert store.get_problem("P-1") is None
    assert len(store.list_attempts()) == 1


def test_stats(store):
    store.upsert_problem(REC("P-1", "OPEN"))
    store.upsert_problem(REC("P-2", "OPEN"))
    store.upsert_problem(REC("P-3", "CLOSED"))
    store.append_attempt(ATT(AttemptOutcome.SUCCESS, code=200))
    store.append_attempt(ATT(AttemptOutcome.RETRYING, code=503))
    store.append_attempt(ATT(AttemptOutcome.FAILED, code=503))
    store.set_app_state(LAST_SUCCESSFUL_POLL_KEY, "1700000000")

    s = store.stats()
    assert s.total_problems == 3
    assert s.open_problems == 2
    assert s.closed_problems == 1
    assert s.by_status == {"OPEN": 2, "CLOSED": 1}
    assert s.total_forwards == 3
    assert (s.successful_forwards, s.retrying_forwards, s.failed_forwards) == (1, 1, 1)
    assert s.last_successful_poll_at == 1700000000


def test_stats_on_empty_store(store):
    s = store.stats()
    assert s.total_problems == 0
    assert s.last_successful_poll_at is None


def test_long_error_messages_are_truncated(sql_store):
    from forwarder.infrastructure.persistence.repositories.forward_history_repository import MAX_ERROR_LEN

    sql_store.append_attempt(ATT(AttemptOutcome.FAILED, err="x" * (MAX_ERROR_LEN + 50)))
    (row,) = sql_store.list_attempts()
    assert len(row.error_message) == MAX_ERROR_LEN


def test_sqlalchemy_errors_become_store_error(sql_store, monkeypatch):
    from forwarder.infrastructure.persistence.repositories import problem_repository

    def boom(self, problem_id):  # noqa: ARG001
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(problem_repository.ProblemRepository, "get", boom)
    with pytest.raises(StoreError):
        sql_store.get_problem("P-1")


def test_from_url_on_sqlite_file_creates_parent_dir(tmp_path):
    db = tmp_path / "nested" / "forwarder.db"
    store = SqlStateStore.from_url(f"sqlite+pysqlite:///{db}")
    store.init_schema()
    store.upsert_problem(REC())
    assert db.exists()
    assert store.get_problem("P-1").status == "OPEN"
