from __future__ import annotations
"""forwarder/workers/celery_app.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Celery app + routage + import des modules de tâches + beat schedule.

Lancement :
    celery -A forwarder.workers.celery_app worker -Q forward
    celery -A forwarder.workers.celery_app beat
"""
from celery import Celery

from forwarder.core.config import settings
from forwarder.workers.scheduler.beat_schedule import build_beat_schedule, configured_interval

celery = Celery("forwarder", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery.conf.task_routes = {
    "tasks.forward_cycle": {"queue": "forward"},
}

celery.conf.update(
    imports=[
        "forwarder.workers.tasks.forward_tasks",
    ],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    timezone="UTC",
    enable_utc=True,
)

celery.conf.beat_schedule = build_beat_schedule(configured_interval())
