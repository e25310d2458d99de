"""
Resource Manager: gates every tool invocation against configured limits.

Before a step is dispatched the executor obtains a :class:`Reservation` for
the step's estimated :class:`ResourceUsage`.  A reservation that would push
any dimension over its limit is rejected and the step never starts.  When the
step finishes the reservation is released and the measured usage (if any) is
folded into ``measured_total``.

The check is in-memory arithmetic under a plain lock.  The lock is never held
across an ``await`` so it is safe to call from coroutines and worker threads.
"""
from __future__ import annotations

import copy
import itertools
import math
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from core.exceptions import ReservationRejected
from core.logging_utils import log_json
from core.types import ResourceLimits, ResourceState, ResourceUsage


def _invalid_dimension(usage: ResourceUsage) -> Optional[str]:
    for dim in ResourceUsage.DIMENSIONS:
        value = getattr(usage, dim)
        if not math.isfinite(value) or value < 0:
            return dim
    return None


@dataclass(frozen=True)
class Reservation:
    id: int
    usage: ResourceUsage


class ResourceManager:
    def __init__(self, limits: Optional[ResourceLimits] = None):
        self.limits = limits or ResourceLimits()
        self._current = ResourceUsage()
        self._measured_total = ResourceUsage()
        self._active: Dict[int, Reservation] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reservation API
    # ------------------------------------------------------------------

    def reserve(self, usage: ResourceUsage) -> Reservation:
        """Reserve *usage* or raise :class:`ReservationRejected`.

        Negative or non-finite estimates are rejected outright.
        """
        bad = _invalid_dimension(usage)
        if bad:
            raise ReservationRejected(
                f"Invalid {bad} estimate: {getattr(usage, bad)!r}", dimension=bad)
        with self._lock:
            projected = self._current + usage
            for dim in ResourceUsage.DIMENSIONS:
                if getattr(projected, dim) > getattr(self.limits, dim):
                    raise ReservationRejected(
                        f"Reservation would exceed {dim} limit "
                        f"({getattr(projected, dim):.2f} > {getattr(self.limits, dim):.2f})",
                        dimension=dim,
                    )
            reservation = Reservation(id=next(self._ids), usage=usage)
            self._active[reservation.id] = reservation
            self._current = projected
            return reservation

    def try_reserve(self, usage: ResourceUsage) -> Optional[Reservation]:
        """Like :meth:`reserve` but returns ``None`` on rejection."""
        try:
            return self.reserve(usage)
        except ReservationRejected as exc:
            log_json("WARN", "resource_reservation_rejected",
                     details={"dimension": exc.dimension, "reason": str(exc)})
            return None

    def release(self, reservation: Reservation, actual: Optional[ResourceUsage] = None) -> None:
        """Return a reservation's estimate to the pool and record the measured usage.

        Releasing an unknown or already-released reservation is a no-op.
        """
        with self._lock:
            if self._active.pop(reservation.id, None) is None:
                return
            self._current = self._current - reservation.usage
            if actual is None or _invalid_dimension(actual):
                actual = reservation.usage
            self._measured_total = self._measured_total + actual

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def check_availability(self) -> bool:
        """True when every dimension is strictly below its limit."""
        with self._lock:
            return all(
                getattr(self._current, dim) < getattr(self.limits, dim)
                for dim in ResourceUsage.DIMENSIONS
            )

    def get_state(self) -> ResourceState:
        with self._lock:
            return ResourceState(
                current=copy.copy(self._current),
                limits=copy.copy(self.limits),
                active_reservations=len(self._active),
                measured_total=copy.copy(self._measured_total),
            )
