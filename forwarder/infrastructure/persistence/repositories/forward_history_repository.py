# forwarder/infrastructure/persistence/repositories/forward_history_repository.py

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from forwarder.domain.models import AttemptOutcome, ForwardAttempt
from forwarder.infrastructure.persistence.database.models.forward_history import ForwardHistory

MAX_ERROR_LEN = 10000


class ForwardHistoryRepository:
    """
    Repository pour la table forward_history (append-only).

    Principes :
    - Ne gère PAS les commit/rollback : c'est à la charge de l'appelant.
    - add(...) tronque les messages d'erreur pour éviter les blobs énormes.
    - Aucune méthode de mise à jour ni de suppression : une ligne écrite est définitive.
    """

    def __init__(self, db: Session):
        self.db = db

    def add(self, attempt: ForwardAttempt) -> ForwardAttempt:
        row = ForwardHistory(
            problem_id=attempt.problem_id,
            connector_name=attempt.connector_name,
            status=attempt.outcome.value,
            response_code=attempt.response_code,
            error_message=(attempt.error_message[:MAX_ERROR_LEN] if attempt.error_message else None),
            forwarded_at=attempt.attempted_at,
        )
        self.db.add(row)
        self.db.flush()
        return _to_attempt(row)

    def list_attempts(
        self,
        *,
        problem_id: Optional[str] = None,
        connector_name: Optional[str] = None,
    ) -> list[ForwardAttempt]:
        """Lignes d'audit dans l'ordre d'écriture (id croissant)."""
        stmt = select(ForwardHistory).order_by(ForwardHistory.id.asc())
        if problem_id is not None:
            stmt = stmt.where(ForwardHistory.problem_id == problem_id)
        if connector_name is not None:
            stmt = stmt.where(ForwardHistory.connector_name == connector_name)
        return [_to_attempt(r) for r in self.db.scalars(stmt)]

    def count_by_outcome(self) -> dict[str, int]:
        rows = self.db.execute(
            select(ForwardHistory.status, func.count()).group_by(ForwardHistory.status)
        ).all()
        return {status: int(n) for status, n in rows}


def _to_attempt(row: ForwardHistory) -> ForwardAttempt:
    return ForwardAttempt(
        id=row.id,
        problem_id=row.problem_id,
        connector_name=row.connector_name,
        outcome=AttemptOutcome(row.status),
        response_code=row.response_code,
        error_message=row.error_message,
        attempted_at=row.forwarded_at,
    )
