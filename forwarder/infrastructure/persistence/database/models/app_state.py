from __future__ import annotations
"""forwarder/infrastructure/persistence/database/models/app_state.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table app_state (clé → valeur, last-write-wins).
"""
from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from forwarder.infrastructure.persistence.database.base import Base


class AppState(Base):
    __tablename__ = "app_state"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
