from __future__ import annotations

"""forwarder/infrastructure/connectors/dispatcher.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Connector Dispatcher : envoie UN payload vers UN connecteur.

- une requête HTTP par tentative (via le wrapper patchable `http_send`)
- échec = erreur réseau, timeout ou réponse non-2xx
- retry borné (RetryState) avec backoff exponentiel plafonné, attente via l'horloge
- une ligne d'audit par tentative, écrite AVANT la tentative suivante :
  `retrying` tant qu'il reste du budget, puis `failed` ; `success` sur 2xx
- aucune mutation du store : c'est l'orchestrateur qui commit

Les erreurs réseau ne remontent jamais à l'appelant : elles deviennent un
`DispatchOutcome(failed)`. Seule une erreur du store (écriture d'audit) remonte.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

import httpx

from forwarder.core.clock import Clock, system_clock
from forwarder.core.config import ConnectorConfig, settings
from forwarder.domain.models import AttemptOutcome, DispatchOutcome
from forwarder.domain.retry import RetryPolicy, RetryState
from forwarder.infrastructure.persistence.audit import AuditLog

logger = logging.getLogger(__name__)

MAX_ERROR_BODY = 500

__all__ = [
    "ConnectorDispatcher",
    "http_send",  # ← exposé pour les tests (monkeypatch)
    "log_insecure_connectors",
]


# ──────────────────────────────────────────────────────────────────────────────
# Wrapper HTTP patchable par les tests
# ──────────────────────────────────────────────────────────────────────────────

def http_send(
    method: str,
    url: str,
    *,
    headers: Mapping[str, str],
    json: Any,
    timeout: float,
    verify: bool = True,
):
    """Effectue la requête et renvoie un objet possédant au minimum `.status_code` et `.text`."""
    with httpx.Client(timeout=timeout, verify=verify, follow_redirects=True) as client:
        return client.request(method, url, headers=dict(headers), json=json)


def log_insecure_connectors(connectors: Iterable[ConnectorConfig]) -> None:
    for c in connectors:
        if not c.verify_ssl:
            logger.warning(
                "SSL verification disabled for connector '%s'. This should only be used for testing!",
                c.name,
            )


def _is_success(status: Optional[int]) -> bool:
    return status is not None and 200 <= status < 300


class ConnectorDispatcher:
    def __init__(
        self,
        audit: AuditLog | None = None,
        *,
        clock: Clock | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
    ):
        self.audit = audit
        self._clock = clock or system_clock
        self._base_delay = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._max_delay = settings.RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay

    def policy_for(self, connector: ConnectorConfig) -> RetryPolicy:
        return RetryPolicy.from_retry_attempts(
            connector.retry_attempts, base_delay=self._base_delay, max_delay=self._max_delay
        )

    # --- Une tentative --------------------------------------------------------

    def _attempt(
        self, connector: ConnectorConfig, payload: Mapping[str, Any]
    ) -> tuple[Optional[int], Optional[str]]:
        """Retourne (status_code | None, error_message | None)."""
        try:
            resp = http_send(
                connector.method,
                connector.url,
                headers=connector.headers,
                json=dict(payload),
                timeout=connector.timeout_seconds,
                verify=connector.verify_ssl,
            )
        except Exception as exc:  # noqa: BLE001
            return None, f"{type(exc).__name__}: {exc}"

        status = getattr(resp, "status_code", None)
        if _is_success(status):
            return status, None
        body = (getattr(resp, "text", "") or "")[:MAX_ERROR_BODY]
        return status, (f"HTTP {status}: {body}" if body else f"HTTP {status}")

    def _record(self, problem_id: str, connector: ConnectorConfig, outcome: AttemptOutcome,
                code: Optional[int], err: Optional[str]) -> None:
        if self.audit is None:
            return
        self.audit.record(
            problem_id=problem_id,
            connector_name=connector.name,
            outcome=outcome,
            response_code=code,
            error_message=err,
        )

    # --- API principale -------------------------------------------------------

    def send(
        self,
        connector: ConnectorConfig,
        payload: Mapping[str, Any],
        *,
        problem_id: str,
    ) -> DispatchOutcome:
        policy = self.policy_for(connector)
        state = RetryState(policy)

        while True:
            code, err = self._attempt(connector, payload)

            if err is None:
                state = state.on_success()
                self._record(problem_id, connector, AttemptOutcome.SUCCESS, code, None)
                if state.attempt > 1:
                    logger.debug(
                        "forward %s -> '%s' succeeded on attempt %d/%d",
                        problem_id, connector.name, state.attempt, policy.max_attempts,
                    )
                return DispatchOutcome(
                    connector_name=connector.name,
                    outcome=AttemptOutcome.SUCCESS,
                    attempts=state.attempt,
                    response_code=code,
                )

            nxt = state.on_failure()
            if nxt.done:
                self._record(problem_id, connector, AttemptOutcome.FAILED, code, err)
                logger.error(
                    "forward %s -> '%s' failed after %d attempt(s): %s",
                    problem_id, connector.name, state.attempt, err,
                )
                return DispatchOutcome(
                    connector_name=connector.name,
                    outcome=AttemptOutcome.FAILED,
                    attempts=state.attempt,
                    response_code=code,
                    error_message=err,
                )

            self._record(problem_id, connector, AttemptOutcome.RETRYING, code, err)
            delay = policy.next_delay(state.attempt)
            logger.warning(
                "forward %s -> '%s' failed (attempt %d/%d), retrying in %.1fs: %s",
                problem_id, connector.name, state.attempt, policy.max_attempts, delay, err,
            )
            self._clock.sleep(delay)
            state = nxt
