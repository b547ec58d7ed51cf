# forwarder/domain/policies.py

from __future__ import annotations
"""
Règles de déduplication (Change Classifier).

Fonctions principales :
    classify(snapshot, prior) -> Action
    apply_action(action, snapshot, prior, now) -> ProblemRecord | None

Seul un changement de `status` déclenche un envoi : une dérive de
titre/sévérité à statut identique est ignorée. La comparaison est une égalité
exacte de chaînes (sensible à la casse) : un statut inconnu est donc un UPDATE.
"""

from typing import Optional

from forwarder.domain.models import Action, ProblemRecord, ProblemSnapshot


def classify(snapshot: ProblemSnapshot, prior: Optional[ProblemRecord]) -> Action:
    if prior is None:
        return Action.CREATE
    if prior.status != snapshot.status:
        return Action.UPDATE
    return Action.NOOP


def apply_action(
    action: Action,
    snapshot: ProblemSnapshot,
    prior: Optional[ProblemRecord],
    now: int,
) -> Optional[ProblemRecord]:
    """Calcule l'enregistrement à persister après envoi (None pour NOOP)."""
    if action is Action.NOOP:
        return None

    if action is Action.CREATE:
        return ProblemRecord(
            problem_id=snapshot.problem_id,
            status=snapshot.status,
            severity=snapshot.severity,
            title=snapshot.title,
            first_seen_at=now,
            last_forwarded_at=now,
            last_status_change_at=now,
            forward_count=1,
            created_at=now,
            updated_at=now,
        )

    if prior is None:
        raise ValueError(f"UPDATE requires a prior record for {snapshot.problem_id}")

    return ProblemRecord(
        problem_id=prior.problem_id,
        status=snapshot.status,
        severity=snapshot.severity,
        title=snapshot.title,
        first_seen_at=prior.first_seen_at,
        last_forwarded_at=now,
        last_status_change_at=now,
        forward_count=prior.forward_count + 1,
        created_at=prior.created_at,
        updated_at=now,
    )
