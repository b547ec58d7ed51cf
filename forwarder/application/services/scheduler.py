from __future__ import annotations

"""forwarder/application/services/scheduler.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
CycleScheduler : émet des commandes « run cycle » à intervalle fixe.

- `tick()` : lance un cycle, ou le SAUTE si un cycle est déjà en cours
  (verrou non bloquant) : jamais deux cycles qui se chevauchent.
- `run_forever(stop)` : boucle au premier plan sur une grille monotone ;
  les échéances tombées pendant un cycle trop long sont sautées, pas rejouées.

Utilisé par la commande `run` (premier plan) et par la tâche Celery
`tasks.forward_cycle` (beat).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from forwarder.core.clock import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    ran: bool
    result: Any = None
    error: Optional[str] = None


class CycleScheduler:
    def __init__(self, run_cycle: Callable[[], Any], interval_seconds: float, *, clock: Clock | None = None):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")
        self._run_cycle = run_cycle
        self.interval = float(interval_seconds)
        self._clock = clock or system_clock
        self._lock = threading.Lock()
        self.ticks_run = 0
        self.ticks_skipped = 0

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def tick(self) -> TickResult:
        if not self._lock.acquire(blocking=False):
            self.ticks_skipped += 1
            logger.warning("Previous cycle still in flight, tick skipped")
            return TickResult(ran=False)
        try:
            self.ticks_run += 1
            return TickResult(ran=True, result=self._run_cycle())
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error in polling cycle")
            return TickResult(ran=True, error=str(exc))
        finally:
            self._lock.release()

    def run_forever(self, stop: threading.Event, *, max_ticks: int | None = None) -> None:
        logger.info("Scheduler started (interval %.0fs)", self.interval)
        next_due = self._clock.monotonic()
        fired = 0

        while not stop.is_set():
            now = self._clock.monotonic()
            if now < next_due:
                if self._clock.wait(stop, next_due - now):
                    break
                continue

            self.tick()
            fired += 1
            if max_ticks is not None and fired >= max_ticks:
                break

            next_due += self.interval
            now = self._clock.monotonic()
            if now >= next_due:
                missed = int((now - next_due) // self.interval) + 1
                self.ticks_skipped += missed
                next_due += missed * self.interval
                logger.warning("Cycle overran its interval, %d tick(s) skipped", missed)
            logger.debug("Sleeping %.1fs until next poll...", max(next_due - now, 0))

        logger.info("Scheduler stopped")
