from __future__ import annotations
"""forwarder/infrastructure/persistence/database/base.py
~~~~~~~~~~~~~~~~~~~~~~~~
Base ORM du forwarder ; importer ce module enregistre les trois tables
(forwarded_problems, forward_history, app_state) dans `Base.metadata`.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


from forwarder.infrastructure.persistence.database.models import *  # noqa: F403,F401,E402

__all__ = ["Base"]
