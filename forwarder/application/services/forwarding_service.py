from __future__ import annotations

"""forwarder/application/services/forwarding_service.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
ForwardingEngine : assemble store, audit, dispatcher, orchestrateur et client
Dynatrace à partir d'une `ForwarderConfig`, et expose `poll_and_forward()`
(fetch → cycle → bookkeeping app_state).

Notes :
- Les connecteurs sont figés à la construction : un rechargement de config
  passe par un nouvel engine, donc prend effet au cycle suivant.
- Le client Dynatrace est créé à la demande : `stats` / `clear-cache` n'ont pas
  besoin du token API.
"""

import json
import logging
from typing import Optional

from forwarder.application.services.orchestrator import ForwardOrchestrator
from forwarder.core.clock import Clock, system_clock
from forwarder.core.config import ForwarderConfig
from forwarder.core.errors import StoreError, UpstreamError
from forwarder.domain.models import CycleSummary
from forwarder.infrastructure.connectors.dispatcher import ConnectorDispatcher, log_insecure_connectors
from forwarder.infrastructure.dynatrace.client import DynatraceClient
from forwarder.infrastructure.persistence.audit import AuditLog
from forwarder.infrastructure.persistence.store import (
    LAST_CYCLE_SUMMARY_KEY,
    LAST_SUCCESSFUL_POLL_KEY,
    SqlStateStore,
    StateStore,
)

logger = logging.getLogger(__name__)


class ForwardingEngine:
    def __init__(
        self,
        config: ForwarderConfig,
        *,
        store: StateStore | None = None,
        upstream: DynatraceClient | None = None,
        clock: Clock | None = None,
    ):
        self.config = config
        self._clock = clock or system_clock
        self.store = store or SqlStateStore.from_url(config.database_url(), clock=self._clock)
        self.store.init_schema()

        self.connectors = tuple(config.connectors)
        log_insecure_connectors(self.connectors)

        self.audit = AuditLog(self.store, clock=self._clock)
        self.dispatcher = ConnectorDispatcher(self.audit, clock=self._clock)
        self.orchestrator = ForwardOrchestrator(
            self.store, self.dispatcher, self.connectors, clock=self._clock
        )
        self._upstream = upstream

    @property
    def upstream(self) -> DynatraceClient:
        if self._upstream is None:
            self._upstream = DynatraceClient(self.config.dynatrace)
        return self._upstream

    def poll_and_forward(self) -> Optional[CycleSummary]:
        """
        Un cycle complet. Retourne None si la récupération amont échoue
        (rien n'est touché côté store dans ce cas).
        """
        logger.info("Polling Dynatrace for problems...")
        try:
            problems = self.upstream.fetch_problems()
        except UpstreamError as exc:
            logger.error("Error fetching problems, cycle skipped: %s", exc)
            return None

        logger.info("Found %d problems to process", len(problems))
        summary = self.orchestrator.process_cycle(problems)

        if summary.aborted:
            return summary
        try:
            self.store.set_app_state(LAST_SUCCESSFUL_POLL_KEY, str(self._clock.now()))
            self.store.set_app_state(LAST_CYCLE_SUMMARY_KEY, json.dumps(summary.as_dict()))
        except StoreError as exc:
            summary.aborted = True
            summary.error = str(exc)
            logger.error("Failed to record cycle bookkeeping: %s", exc)
        return summary
