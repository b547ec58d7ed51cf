from __future__ import annotations
"""forwarder/infrastructure/persistence/repositories/app_state_repository.py
~~~~~~~~~~~~~~~~~~~~~~~~
Repository app_state (clé/valeur, last-write-wins). Pas de commit ici.
"""
from typing import Optional

from sqlalchemy.orm import Session

from forwarder.infrastructure.persistence.database.models.app_state import AppState


class AppStateRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, key: str) -> Optional[str]:
        row = self.db.get(AppState, key)
        return row.value if row is not None else None

    def set(self, key: str, value: str, *, now: int) -> None:
        row = self.db.get(AppState, key)
        if row is None:
            self.db.add(AppState(key=key, value=value, updated_at=now))
        else:
            row.value = value
            row.updated_at = now
        self.db.flush()
