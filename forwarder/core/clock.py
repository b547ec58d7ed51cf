from __future__ import annotations
"""forwarder/core/clock.py
~~~~~~~~~~~~~~~~~~~~~~~~~
Horloge injectable : temps epoch (secondes), monotonic, sleep et attente
interruptible. Les tests remplacent `SystemClock` par une horloge factice
(aucune attente réelle).
"""

import threading
import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...

    def wait(self, event: threading.Event, seconds: float) -> bool: ...


class SystemClock:
    def now(self) -> int:
        return int(datetime.now(timezone.utc).timestamp())

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        """Attend `seconds` ou jusqu'à ce que `event` soit levé ; retourne event.is_set()."""
        return event.wait(max(seconds, 0))


system_clock = SystemClock()
