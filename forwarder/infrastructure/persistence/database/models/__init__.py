from __future__ import annotations
"""forwarder/infrastructure/persistence/database/models/__init__.py
~~~~~~~~~~~~~~~~~~~~~~~~
Modèles ORM (register for Alembic / create_all).
"""

from .forwarded_problem import ForwardedProblem
from .forward_history import ForwardHistory
from .app_state import AppState

__all__ = ["ForwardedProblem", "ForwardHistory", "AppState"]
