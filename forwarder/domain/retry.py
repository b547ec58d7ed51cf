from __future__ import annotations
"""forwarder/domain/retry.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~
Retry borné, modélisé comme une petite machine à états :

    ATTEMPTING(n) --succès--> SUCCEEDED
    ATTEMPTING(n) --échec, n < max--> ATTEMPTING(n+1)   (après next_delay(n))
    ATTEMPTING(n) --échec, n == max--> FAILED_EXHAUSTED

Aucun sleep ici : l'appelant attend via une horloge injectable.
"""

import enum
from dataclasses import dataclass, replace


class RetryPhase(str, enum.Enum):
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED_EXHAUSTED = "failed_exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    @classmethod
    def from_retry_attempts(cls, retry_attempts: int, **kw) -> "RetryPolicy":
        # `retry_attempts` est le budget total de tentatives ; au moins une.
        return cls(max_attempts=max(1, int(retry_attempts)), **kw)

    def next_delay(self, attempt: int) -> float:
        """Délai après l'échec de la tentative `attempt` (1-based) : 1s, 2s, 4s… plafonné."""
        exp = max(attempt - 1, 0)
        return min(self.base_delay * (2 ** exp), self.max_delay)


@dataclass(frozen=True)
class RetryState:
    policy: RetryPolicy
    attempt: int = 1
    phase: RetryPhase = RetryPhase.ATTEMPTING

    @property
    def done(self) -> bool:
        return self.phase is not RetryPhase.ATTEMPTING

    @property
    def has_budget(self) -> bool:
        return self.attempt < self.policy.max_attempts

    def on_success(self) -> "RetryState":
        self._require_attempting()
        return replace(self, phase=RetryPhase.SUCCEEDED)

    def on_failure(self) -> "RetryState":
        self._require_attempting()
        if self.has_budget:
            return replace(self, attempt=self.attempt + 1)
        return replace(self, phase=RetryPhase.FAILED_EXHAUSTED)

    def _require_attempting(self) -> None:
        if self.done:
            raise RuntimeError(f"retry state already terminal ({self.phase.value})")
