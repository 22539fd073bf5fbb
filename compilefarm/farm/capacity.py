from __future__ import annotations

from typing import TYPE_CHECKING

from compilefarm.models import LOCAL, Worker

if TYPE_CHECKING:
    from .registry import WorkerRegistry


class CapacityTracker:
    """
    Execution slot accounting derived from the registry.

    Nothing is cached: every query reads current worker state, so
    workers that became Active or were dropped are reflected at once.
    """

    def __init__(self, registry: WorkerRegistry) -> None:
        self._registry = registry

    @property
    def local_parallelism(self) -> int:
        return self._registry.local_parallelism

    def total_capacity(self) -> int:
        """Local parallelism plus the slots of every Active worker."""
        return self._registry.local_parallelism + self.remote_capacity()

    def remote_capacity(self) -> int:
        return sum(worker.slots for worker in self._registry.active_workers())

    def outstanding(self) -> int:
        return sum(worker.outstanding for worker in self._registry.active_workers())

    def free_remote_slots(self) -> int:
        return sum(worker.free_slots for worker in self._registry.active_workers())

    def worker_free_slots(self, host: str) -> int:
        worker = self._registry.get(host)
        if worker is None:
            return 0

        return worker.free_slots

    def select_worker(self) -> Worker | None:
        """
        Active worker with the fewest outstanding jobs among those with a
        free slot. Ties go to the worker declared first.
        """
        candidates = [
            worker
            for worker in self._registry.active_workers()
            if worker.has_free_slot
        ]

        if len(candidates) == 0:
            return None

        return min(
            candidates,
            key=lambda worker: (worker.outstanding, worker.order),
        )

    def placement(self) -> str:
        """Host the next remote dispatch would use, or LOCAL if none is free."""
        worker = self.select_worker()
        if worker is None:
            return LOCAL

        return worker.host
