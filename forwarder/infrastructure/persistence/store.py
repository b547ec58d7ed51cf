from __future__ import annotations

"""forwarder/infrastructure/persistence/store.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
State Store : interface unique au-dessus des trois tables.

- `StateStore` : capacités utilisées par le moteur (get/upsert problème,
  append d'audit, app_state, clear, stats).
- `SqlStateStore` : implémentation SQLAlchemy. Une session courte par opération,
  commit immédiat ; toute `SQLAlchemyError` devient `StoreError`.
- `InMemoryStateStore` : même contrat, en mémoire (tests, dry-run).

Les écritures passent par un verrou : un seul écrivain à la fois, y compris
quand les dispatchs de connecteurs tournent dans des threads.
"""

import abc
import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from forwarder.core.clock import Clock, system_clock
from forwarder.core.errors import StoreError
from forwarder.domain.models import AttemptOutcome, ForwardAttempt, ProblemRecord, StoreStats
from forwarder.infrastructure.persistence.database.base import Base
from forwarder.infrastructure.persistence.database.session import (
    init_sessionmaker,
    make_engine,
    make_sessionmaker,
)
from forwarder.infrastructure.persistence.repositories.app_state_repository import AppStateRepository
from forwarder.infrastructure.persistence.repositories.forward_history_repository import (
    ForwardHistoryRepository,
)
from forwarder.infrastructure.persistence.repositories.problem_repository import ProblemRepository

logger = logging.getLogger(__name__)

LAST_SUCCESSFUL_POLL_KEY = "last_successful_poll_at"
LAST_CYCLE_SUMMARY_KEY = "last_cycle_summary"
OPEN_STATUS = "OPEN"


def _build_stats(by_status: dict[str, int], by_outcome: dict[str, int], last_poll: Optional[str]) -> StoreStats:
    total = sum(by_status.values())
    open_n = by_status.get(OPEN_STATUS, 0)
    try:
        last_poll_at = int(last_poll) if last_poll else None
    except ValueError:
        last_poll_at = None
    return StoreStats(
        total_problems=total,
        open_problems=open_n,
        closed_problems=total - open_n,
        by_status=dict(by_status),
        total_forwards=sum(by_outcome.values()),
        successful_forwards=by_outcome.get(AttemptOutcome.SUCCESS.value, 0),
        failed_forwards=by_outcome.get(AttemptOutcome.FAILED.value, 0),
        retrying_forwards=by_outcome.get(AttemptOutcome.RETRYING.value, 0),
        last_successful_poll_at=last_poll_at,
    )


class StateStore(abc.ABC):
    @abc.abstractmethod
    def init_schema(self) -> None: ...

    @abc.abstractmethod
    def get_problem(self, problem_id: str) -> Optional[ProblemRecord]: ...

    @abc.abstractmethod
    def upsert_problem(self, record: ProblemRecord) -> ProblemRecord: ...

    @abc.abstractmethod
    def append_attempt(self, attempt: ForwardAttempt) -> ForwardAttempt: ...

    @abc.abstractmethod
    def list_attempts(
        self, *, problem_id: Optional[str] = None, connector_name: Optional[str] = None
    ) -> list[ForwardAttempt]: ...

    @abc.abstractmethod
    def get_app_state(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    def set_app_state(self, key: str, value: str) -> None: ...

    @abc.abstractmethod
    def clear_problems(self) -> int: ...

    @abc.abstractmethod
    def stats(self) -> StoreStats: ...


# ──────────────────────────────────────────────────────────────────────────────
# SQLAlchemy
# ──────────────────────────────────────────────────────────────────────────────

class SqlStateStore(StateStore):
    def __init__(self, session_factory: sessionmaker | None = None, *, clock: Clock | None = None):
        self._sessions = session_factory or init_sessionmaker()
        self._clock = clock or system_clock
        self._lock = threading.RLock()

    @classmethod
    def from_url(cls, database_url: str, *, clock: Clock | None = None) -> "SqlStateStore":
        return cls(make_sessionmaker(make_engine(database_url)), clock=clock)

    @contextmanager
    def _unit(self, *, write: bool = False) -> Iterator[Session]:
        with self._lock:
            s = self._sessions()
            try:
                yield s
                if write:
                    s.commit()
            except SQLAlchemyError as exc:
                s.rollback()
                logger.error("store operation failed: %s", exc, exc_info=True)
                raise StoreError(f"store operation failed: {exc}") from exc
            except Exception:
                s.rollback()
                raise
            finally:
                s.close()

    def init_schema(self) -> None:
        engine = self._sessions.kw.get("bind")
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"schema initialisation failed: {exc}") from exc

    def get_problem(self, problem_id: str) -> Optional[ProblemRecord]:
        with self._unit() as s:
            return ProblemRepository(s).get(problem_id)

    def upsert_problem(self, record: ProblemRecord) -> ProblemRecord:
        with self._unit(write=True) as s:
            return ProblemRepository(s).upsert(record)

    def append_attempt(self, attempt: ForwardAttempt) -> ForwardAttempt:
        with self._unit(write=True) as s:
            return ForwardHistoryRepository(s).add(attempt)

    def list_attempts(
        self, *, problem_id: Optional[str] = None, connector_name: Optional[str] = None
    ) -> list[ForwardAttempt]:
        with self._unit() as s:
            return ForwardHistoryRepository(s).list_attempts(
                problem_id=problem_id, connector_name=connector_name
            )

    def get_app_state(self, key: str) -> Optional[str]:
        with self._unit() as s:
            return AppStateRepository(s).get(key)

    def set_app_state(self, key: str, value: str) -> None:
        with self._unit(write=True) as s:
            AppStateRepository(s).set(key, value, now=self._clock.now())

    def clear_problems(self) -> int:
        with self._unit(write=True) as s:
            return ProblemRepository(s).delete_all()

    def stats(self) -> StoreStats:
        with self._unit() as s:
            return _build_stats(
                ProblemRepository(s).count_by_status(),
                ForwardHistoryRepository(s).count_by_outcome(),
                AppStateRepository(s).get(LAST_SUCCESSFUL_POLL_KEY),
            )


# ──────────────────────────────────────────────────────────────────────────────
# En mémoire
# ──────────────────────────────────────────────────────────────────────────────

class InMemoryStateStore(StateStore):
    def __init__(self, *, clock: Clock | None = None):
        self._clock = clock or system_clock
        self._lock = threading.RLock()
        self._problems: dict[str, ProblemRecord] = {}
        self._attempts: list[ForwardAttempt] = []
        self._app_state: dict[str, tuple[str, int]] = {}
        self._ids = itertools.count(1)

    def init_schema(self) -> None:
        return None

    def get_problem(self, problem_id: str) -> Optional[ProblemRecord]:
        with self._lock:
            return self._problems.get(problem_id)

    def upsert_problem(self, record: ProblemRecord) -> ProblemRecord:
        with self._lock:
            prior = self._problems.get(record.problem_id)
            if prior is not None:
                record = replace(record, first_seen_at=prior.first_seen_at, created_at=prior.created_at)
            self._problems[record.problem_id] = record
            return record

    def append_attempt(self, attempt: ForwardAttempt) -> ForwardAttempt:
        with self._lock:
            stored = replace(attempt, id=next(self._ids))
            self._attempts.append(stored)
            return stored

    def list_attempts(
        self, *, problem_id: Optional[str] = None, connector_name: Optional[str] = None
    ) -> list[ForwardAttempt]:
        with self._lock:
            return [
                a for a in self._attempts
                if (problem_id is None or a.problem_id == problem_id)
                and (connector_name is None or a.connector_name == connector_name)
            ]

    def get_app_state(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._app_state.get(key)
            return item[0] if item else None

    def set_app_state(self, key: str, value: str) -> None:
        with self._lock:
            self._app_state[key] = (value, self._clock.now())

    def clear_problems(self) -> int:
        with self._lock:
            n = len(self._problems)
            self._problems.clear()
            return n

    def stats(self) -> StoreStats:
        with self._lock:
            by_status: dict[str, int] = {}
            for rec in self._problems.values():
                by_status[rec.status] = by_status.get(rec.status, 0) + 1
            by_outcome: dict[str, int] = {}
            for a in self._attempts:
                by_outcome[a.outcome.value] = by_outcome.get(a.outcome.value, 0) + 1
            return _build_stats(by_status, by_outcome, self.get_app_state(LAST_SUCCESSFUL_POLL_KEY))
