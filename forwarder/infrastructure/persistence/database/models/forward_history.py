from __future__ import annotations
"""forwarder/infrastructure/persistence/database/models/forward_history.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table forward_history : audit append-only, une ligne par tentative d'envoi.
`problem_id` n'a pas de contrainte FK : l'historique survit à un clear-cache.
"""
from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from forwarder.infrastructure.persistence.database.base import Base


class ForwardHistory(Base):
    __tablename__ = "forward_history"
    __table_args__ = (
        Index("idx_forward_history_problem_id", "problem_id"),
        Index("idx_forward_history_connector", "connector_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    problem_id: Mapped[str] = mapped_column(String(255), nullable=False)
    connector_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success | failed | retrying
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    forwarded_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
