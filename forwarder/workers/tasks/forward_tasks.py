from __future__ import annotations
"""forwarder/workers/tasks/forward_tasks.py
~~~~~~~~~~~~~~~~~~~~~~~~
Tâche périodique : un cycle fetch → classify → dispatch → commit.

Le moteur et le scheduler sont construits une fois par process worker ;
`tick()` garantit qu'un process n'exécute jamais deux cycles en même temps.
Entre process (prefork, plusieurs workers), un verrou Redis non bloquant
(`forwarder:forward-cycle`) est pris autour du tick : un cycle qui le trouve
occupé est sauté.
Pas d'autoretry : le tick suivant fait office de nouvelle tentative.
"""
from typing import Any, Optional

import redis
from celery.utils.log import get_task_logger
from redis.exceptions import LockError, RedisError

from forwarder.application.services.forwarding_service import ForwardingEngine
from forwarder.application.services.scheduler import CycleScheduler
from forwarder.core.config import load_config, settings
from forwarder.workers.celery_app import celery

logger = get_task_logger(__name__)

CYCLE_LOCK_NAME = "forwarder:forward-cycle"
# expiration du verrou si le worker meurt en plein cycle
CYCLE_LOCK_MIN_TIMEOUT = 600

_scheduler: Optional[CycleScheduler] = None


def get_scheduler() -> CycleScheduler:
    global _scheduler
    if _scheduler is None:
        cfg = load_config()
        engine = ForwardingEngine(cfg)
        _scheduler = CycleScheduler(engine.poll_and_forward, cfg.polling.interval_seconds)
    return _scheduler


def reset_scheduler() -> None:
    """Force la reconstruction (nouvelle config) au prochain tick."""
    global _scheduler
    _scheduler = None


def cycle_lock(interval_seconds: float):
    """Verrou partagé par tous les workers (même REDIS_URL que le broker)."""
    client = redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
    timeout = max(CYCLE_LOCK_MIN_TIMEOUT, int(interval_seconds * 10))
    return client.lock(CYCLE_LOCK_NAME, timeout=timeout, blocking=False)


def run_forward_cycle() -> dict[str, Any]:
    scheduler = get_scheduler()
    lock = cycle_lock(scheduler.interval)
    try:
        acquired = lock.acquire(blocking=False)
    except RedisError as exc:
        logger.warning("forward_cycle: cycle lock unavailable (%s), tick skipped", exc)
        return {"ran": False}
    if not acquired:
        logger.warning("forward_cycle: another worker is running a cycle, tick skipped")
        return {"ran": False}

    try:
        result = scheduler.tick()
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("forward_cycle: cycle lock expired before release")

    if not result.ran:
        return {"ran": False}
    if result.error is not None:
        return {"ran": True, "error": result.error}
    if result.result is None:
        # échec amont : cycle sauté, store intact
        return {"ran": True, "upstream_error": True}
    return {"ran": True, **result.result.as_dict()}


@celery.task(name="tasks.forward_cycle", acks_late=True)
def forward_cycle() -> dict[str, Any]:
    out = run_forward_cycle()
    logger.info("forward_cycle: %s", out)
    return out
