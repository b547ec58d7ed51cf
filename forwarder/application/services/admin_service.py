from __future__ import annotations
"""forwarder/application/services/admin_service.py
~~~~~~~~~~~~~~~~~~~~~~~~
Opérations d'administration (utilisées par la CLI) :
- clear_state()      : vide forwarded_problems → re-forward complet au cycle suivant
- statistics()       : compteurs par statut / par issue d'envoi
- test_connectors()  : un envoi synthétique par connecteur (sans store, sans audit)
- test_dynatrace()   : connectivité amont
"""
import logging
from datetime import datetime, timezone

from forwarder.application.services.forwarding_service import ForwardingEngine
from forwarder.domain.models import DispatchOutcome, StoreStats
from forwarder.infrastructure.connectors.dispatcher import ConnectorDispatcher

log = logging.getLogger(__name__)

TEST_PROBLEM_ID = "TEST-12345"


def build_test_payload() -> dict:
    """Problème factice au format Dynatrace."""
    return {
        "problemId": TEST_PROBLEM_ID,
        "displayId": "P-TEST",
        "title": "Test problem from problem-forwarder",
        "impactLevel": "INFRASTRUCTURE",
        "severityLevel": "CUSTOM_ALERT",
        "status": "OPEN",
        "affectedEntities": [],
        "impactedEntities": [],
        "rootCauseEntity": None,
        "managementZones": [],
        "entityTags": [],
        "problemFilters": [],
        "startTime": int(datetime.now(timezone.utc).timestamp() * 1000),
        "endTime": -1,
    }


def clear_state(engine: ForwardingEngine) -> int:
    n = engine.store.clear_problems()
    log.info("Cleared %d problems from cache", n)
    return n


def statistics(engine: ForwardingEngine) -> StoreStats:
    return engine.store.stats()


def test_connectors(engine: ForwardingEngine) -> list[DispatchOutcome]:
    dispatcher = ConnectorDispatcher(audit=None)
    payload = build_test_payload()
    results = []
    for connector in engine.connectors:
        log.info("Testing connector '%s'...", connector.name)
        outcome = dispatcher.send(connector, payload, problem_id=TEST_PROBLEM_ID)
        results.append(outcome)
    return results


def test_dynatrace(engine: ForwardingEngine) -> int:
    return engine.upstream.test_connection()
