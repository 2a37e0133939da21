"""
ConcurrencyGate — caps how many playbook runs are in flight per process.

When more schedules are eligible than there are free slots, admission is
a fair random pick (shuffle), so no schedule is systematically starved
and none is systematically preferred.
"""

from __future__ import annotations

import logging
import random
from typing import Sequence

from dbagent.monitoring.models import Schedule

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    """
    Usage:
        gate = ConcurrencyGate(max_parallel_runs=20)
        admitted = gate.admit(eligible)
        ...
        gate.release(schedule.id)   # when each run finishes
    """

    def __init__(self, max_parallel_runs: int, rng: random.Random | None = None) -> None:
        if max_parallel_runs < 1:
            raise ValueError("max_parallel_runs must be at least 1")
        self._max = max_parallel_runs
        self._rng = rng or random.Random()
        self._in_flight: set[str] = set()

    def admit(self, eligible: Sequence[Schedule]) -> list[Schedule]:
        """
        Pick which eligible schedules may start now, and mark them in flight.

        Schedules already running in this process are skipped.
        """
        candidates = [s for s in eligible if s.id not in self._in_flight]
        self._rng.shuffle(candidates)

        slots = max(0, self._max - len(self._in_flight))
        admitted = candidates[:slots]
        for schedule in admitted:
            self._in_flight.add(schedule.id)

        deferred = len(candidates) - len(admitted)
        if deferred:
            logger.info(
                f"{len(admitted)} schedule(s) admitted, {deferred} deferred "
                f"(max_parallel_runs={self._max}, in flight={len(self._in_flight)})"
            )
        return admitted

    def release(self, schedule_id: str) -> None:
        self._in_flight.discard(schedule_id)

    def is_in_flight(self, schedule_id: str) -> bool:
        return schedule_id in self._in_flight

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def capacity(self) -> int:
        return self._max
