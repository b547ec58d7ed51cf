from __future__ import annotations
"""forwarder/workers/scheduler/beat_schedule.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Planification périodique (Celery Beat) : un cycle toutes les
`polling.interval_seconds` secondes.
"""
import logging

from forwarder.core.config import load_config
from forwarder.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


def build_beat_schedule(interval_seconds: float = DEFAULT_INTERVAL_SECONDS) -> dict:
    return {
        "forward-cycle": {
            "task": "tasks.forward_cycle",
            "schedule": float(interval_seconds),
            # un cycle en retard est inutile : le suivant refait un fetch complet
            "options": {"expires": float(interval_seconds)},
        },
    }


def configured_interval() -> float:
    """Intervalle lu dans le fichier YAML ; défaut 60 s s'il est illisible."""
    try:
        return float(load_config().polling.interval_seconds)
    except ConfigError as exc:
        logger.warning("beat: using default interval (%.0fs): %s", DEFAULT_INTERVAL_SECONDS, exc)
        return DEFAULT_INTERVAL_SECONDS
