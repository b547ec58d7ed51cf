from __future__ import annotations
"""forwarder/domain/models.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Types du domaine, indépendants de l'ORM :
- `ProblemSnapshot` : problème tel que reçu de l'amont (payload brut conservé)
- `ProblemRecord`   : état persisté d'un problème
- `ForwardAttempt`  : ligne d'audit (une par tentative)
- `DispatchOutcome` / `CycleSummary` / `StoreStats` : résultats explicites
"""

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Action(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"


class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class ProblemSnapshot(BaseModel):
    """
    Snapshot amont. Accepte les clés Dynatrace (camelCase) ou snake_case.
    Seuls id/status/severity/title sont interprétés ; `payload` est transmis tel quel.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    problem_id: str = Field(min_length=1, validation_alias=AliasChoices("problemId", "problem_id"))
    status: str = Field(min_length=1)
    severity: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("severityLevel", "severity_level", "severity")
    )
    title: str
    payload: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "ProblemSnapshot":
        fields = {k: v for k, v in raw.items() if k != "payload"}
        snap = cls.model_validate(fields)
        return snap.model_copy(update={"payload": dict(raw)})

    @property
    def body(self) -> Dict[str, Any]:
        """Corps JSON transmis aux connecteurs : le payload amont verbatim."""
        return dict(self.payload) if self.payload else self.model_dump()

    def summary(self) -> str:
        return f"[{self.problem_id}] {self.title} - {self.status} ({self.severity or '-'})"


@dataclass(frozen=True)
class ProblemRecord:
    problem_id: str
    status: str
    severity: Optional[str]
    title: str
    first_seen_at: int
    last_forwarded_at: int
    last_status_change_at: int
    forward_count: int = 1
    created_at: int = 0
    updated_at: int = 0


@dataclass(frozen=True)
class ForwardAttempt:
    problem_id: str
    connector_name: str
    outcome: AttemptOutcome
    attempted_at: int
    response_code: Optional[int] = None
    error_message: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class DispatchOutcome:
    """Issue terminale d'un envoi vers un connecteur (après retries)."""

    connector_name: str
    outcome: AttemptOutcome
    attempts: int
    response_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


@dataclass
class ConnectorTally:
    success: int = 0
    failed: int = 0


@dataclass
class CycleSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    invalid: int = 0
    invalid_ids: List[str] = field(default_factory=list)
    connectors: Dict[str, ConnectorTally] = field(default_factory=dict)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def forwarded(self) -> int:
        return self.created + self.updated

    @property
    def success_count(self) -> int:
        return sum(t.success for t in self.connectors.values())

    @property
    def failure_count(self) -> int:
        return sum(t.failed for t in self.connectors.values())

    def record_outcome(self, outcome: DispatchOutcome) -> None:
        tally = self.connectors.setdefault(outcome.connector_name, ConnectorTally())
        if outcome.ok:
            tally.success += 1
        else:
            tally.failed += 1

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success_count
        data["failed"] = self.failure_count
        return data


@dataclass(frozen=True)
class StoreStats:
    total_problems: int
    open_problems: int
    closed_problems: int
    by_status: Dict[str, int]
    total_forwards: int
    successful_forwards: int
    failed_forwards: int
    retrying_forwards: int
    last_successful_poll_at: Optional[int] = None
