from __future__ import annotations

"""forwarder/application/services/orchestrator.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Forward Orchestrator : exécute UN cycle sur une liste de snapshots déjà récupérés.

Pour chaque snapshot, dans l'ordre reçu :
  1. validation (snapshot invalide → compté `invalid`, on continue)
  2. lecture de l'état antérieur dans le store
  3. classification (CREATE / UPDATE / NOOP) ; NOOP → rien d'autre
  4. envoi du payload brut à TOUS les connecteurs, en parallèle (pool de threads) ;
     l'échec d'un connecteur n'empêche jamais les autres
  5. commit de l'enregistrement APRÈS la fin de tous les envois, quel que soit
     leur résultat (la clé de dédup est le changement de statut, pas la livraison)

Les problèmes sont traités séquentiellement : deux occurrences du même id dans
un batch voient l'une après l'autre l'état commité. Une `StoreError` interrompt
le cycle sans commit partiel pour le problème en cours ; elle est rapportée dans
le `CycleSummary`, jamais levée.
"""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from forwarder.core.clock import Clock, system_clock
from forwarder.core.config import ConnectorConfig, settings
from forwarder.core.errors import StoreError
from forwarder.domain.models import Action, ConnectorTally, CycleSummary, DispatchOutcome, ProblemSnapshot
from forwarder.domain.policies import apply_action, classify
from forwarder.infrastructure.connectors.dispatcher import ConnectorDispatcher
from forwarder.infrastructure.persistence.store import StateStore

logger = logging.getLogger(__name__)


def _raw_problem_id(raw: Any) -> Optional[str]:
    if isinstance(raw, Mapping):
        pid = raw.get("problemId", raw.get("problem_id"))
        return pid if isinstance(pid, str) and pid else None
    return None


class ForwardOrchestrator:
    def __init__(
        self,
        store: StateStore,
        dispatcher: ConnectorDispatcher,
        connectors: Sequence[ConnectorConfig],
        *,
        clock: Clock | None = None,
        max_workers: int | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.connectors: tuple[ConnectorConfig, ...] = tuple(connectors)
        self._clock = clock or system_clock
        self._max_workers = max(1, max_workers or settings.DISPATCH_MAX_WORKERS)

    # --- Étapes ---------------------------------------------------------------

    def _validate(self, raw: Any, summary: CycleSummary) -> Optional[ProblemSnapshot]:
        if isinstance(raw, ProblemSnapshot):
            return raw
        try:
            if not isinstance(raw, Mapping):
                raise TypeError(f"expected a mapping, got {type(raw).__name__}")
            return ProblemSnapshot.from_payload(raw)
        except (ValidationError, TypeError) as exc:
            summary.invalid += 1
            pid = _raw_problem_id(raw)
            if pid:
                summary.invalid_ids.append(pid)
            logger.warning("Skipping invalid problem snapshot %s: %s", pid or "<unknown>", exc)
            return None

    def _dispatch_all(self, pool: Executor, snapshot: ProblemSnapshot) -> list[DispatchOutcome]:
        futures = [
            pool.submit(self.dispatcher.send, connector, snapshot.body, problem_id=snapshot.problem_id)
            for connector in self.connectors
        ]
        # result() relance une éventuelle StoreError (audit) ; le pool attend les autres envois.
        return [f.result() for f in futures]

    def _process_one(self, pool: Executor, raw: Any, summary: CycleSummary) -> Optional[Action]:
        snapshot = self._validate(raw, summary)
        if snapshot is None:
            return None

        prior = self.store.get_problem(snapshot.problem_id)
        action = classify(snapshot, prior)

        if action is Action.NOOP:
            summary.skipped += 1
            logger.debug("Problem %s unchanged, skipping", snapshot.problem_id)
            return action

        if action is Action.CREATE:
            logger.info("New problem detected: %s", snapshot.summary())
        else:
            logger.info(
                "Status change detected for %s: %s -> %s",
                snapshot.problem_id, prior.status, snapshot.status,
            )

        outcomes = self._dispatch_all(pool, snapshot)
        for outcome in outcomes:
            summary.record_outcome(outcome)

        record = apply_action(action, snapshot, prior, self._clock.now())
        self.store.upsert_problem(record)

        if action is Action.CREATE:
            summary.created += 1
        else:
            summary.updated += 1
        return action

    # --- API principale -------------------------------------------------------

    def process_cycle(self, fetched: Iterable[Any]) -> CycleSummary:
        summary = CycleSummary()
        for connector in self.connectors:
            summary.connectors.setdefault(connector.name, ConnectorTally())

        workers = min(self._max_workers, max(1, len(self.connectors)))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as pool:
                for raw in fetched:
                    self._process_one(pool, raw, summary)
        except StoreError as exc:
            summary.aborted = True
            summary.error = str(exc)
            logger.error("Cycle aborted on store failure: %s", exc)

        logger.info(
            "Poll complete: %d new, %d status changes, %d skipped, %d invalid; forwards %d ok / %d failed",
            summary.created, summary.updated, summary.skipped, summary.invalid,
            summary.success_count, summary.failure_count,
            extra={"cycle": summary.as_dict()},
        )
        return summary
