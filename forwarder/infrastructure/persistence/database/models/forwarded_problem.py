from __future__ import annotations
"""forwarder/infrastructure/persistence/database/models/forwarded_problem.py
~~~~~~~~~~~~~~~~~~~~~~~~
Table forwarded_problems (un enregistrement par problem_id).
Horodatages en secondes epoch.
"""
from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from forwarder.infrastructure.persistence.database.base import Base


class ForwardedProblem(Base):
    __tablename__ = "forwarded_problems"
    __table_args__ = (
        Index("idx_problem_id", "problem_id"),
        Index("idx_status", "status"),
        Index("idx_last_forwarded_at", "last_forwarded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    problem_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(64), nullable=False)
    severity_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    first_seen_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_forwarded_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_status_change_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    forward_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ForwardedProblem {self.problem_id} status={self.status} count={self.forward_count}>"
