from __future__ import annotations

"""forwarder/infrastructure/persistence/repositories/problem_repository.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Repository de la table forwarded_problems.

Principes :
- Le repo **reçoit** une Session SQLAlchemy gérée par l'appelant (le store).
- Il ne crée ni ne ferme la session, et **ne commit pas**.
- Méthodes fournies :
  - `get(problem_id)` : ProblemRecord ou None.
  - `upsert(record)` : insère ou met à jour la ligne de `record.problem_id`
    (first_seen_at / created_at ne sont jamais réécrits).
  - `delete_all()` : vide la table (clear-cache), retourne le nombre de lignes.
  - `count_by_status()` : {status: n}.
"""

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from forwarder.domain.models import ProblemRecord
from forwarder.infrastructure.persistence.database.models.forwarded_problem import ForwardedProblem


def _to_record(row: ForwardedProblem) -> ProblemRecord:
    return ProblemRecord(
        problem_id=row.problem_id,
        status=row.status,
        severity=row.severity_level,
        title=row.title,
        first_seen_at=row.first_seen_at,
        last_forwarded_at=row.last_forwarded_at,
        last_status_change_at=row.last_status_change_at,
        forward_count=row.forward_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ProblemRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _row(self, problem_id: str) -> Optional[ForwardedProblem]:
        return self.db.execute(
            select(ForwardedProblem).where(ForwardedProblem.problem_id == problem_id).limit(1)
        ).scalar_one_or_none()

    def get(self, problem_id: str) -> Optional[ProblemRecord]:
        row = self._row(problem_id)
        return _to_record(row) if row is not None else None

    def upsert(self, record: ProblemRecord) -> ProblemRecord:
        row = self._row(record.problem_id)
        if row is None:
            row = ForwardedProblem(
                problem_id=record.problem_id,
                first_seen_at=record.first_seen_at,
                created_at=record.created_at,
            )
            self.db.add(row)

        row.status = record.status
        row.severity_level = record.severity
        row.title = record.title
        row.last_forwarded_at = record.last_forwarded_at
        row.last_status_change_at = record.last_status_change_at
        row.forward_count = record.forward_count
        row.updated_at = record.updated_at
        self.db.flush()
        return _to_record(row)

    def delete_all(self) -> int:
        result = self.db.execute(delete(ForwardedProblem))
        return int(result.rowcount or 0)

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute(
            select(ForwardedProblem.status, func.count()).group_by(ForwardedProblem.status)
        ).all()
        return {status: int(n) for status, n in rows}
