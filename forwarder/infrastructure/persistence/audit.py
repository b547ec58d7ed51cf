from __future__ import annotations
"""forwarder/infrastructure/persistence/audit.py
~~~~~~~~~~~~~~~~~~~~~~~~
Audit Log : une ligne forward_history par tentative d'envoi.
Append-only ; les écritures concurrentes (un thread par connecteur) sont
sérialisées, donc les tentatives d'un couple (problème, connecteur) restent
dans l'ordre où elles ont eu lieu.
"""

import logging
import threading
from typing import Optional

from forwarder.core.clock import Clock, system_clock
from forwarder.domain.models import AttemptOutcome, ForwardAttempt
from forwarder.infrastructure.persistence.store import StateStore

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, store: StateStore, *, clock: Clock | None = None):
        self.store = store
        self._clock = clock or system_clock
        self._lock = threading.Lock()

    def record(
        self,
        *,
        problem_id: str,
        connector_name: str,
        outcome: AttemptOutcome,
        response_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> ForwardAttempt:
        attempt = ForwardAttempt(
            problem_id=problem_id,
            connector_name=connector_name,
            outcome=outcome,
            response_code=response_code,
            error_message=error_message,
            attempted_at=self._clock.now(),
        )
        with self._lock:
            stored = self.store.append_attempt(attempt)
        logger.debug(
            "forward attempt recorded",
            extra={"problem_id": problem_id, "connector": connector_name, "outcome": outcome.value},
        )
        return stored
