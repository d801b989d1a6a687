"""Reconciliation engine module for per-backend request rates.

Matches backends across successive snapshots, turns counter deltas into
requests-per-second, detects counter resets and reports which backends
disappeared. The pure reconcile() function has no I/O; the Reconciler
class owns the previous snapshot between cycles.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

BackendKey = Tuple[str, str]


@dataclass(frozen=True)
class BackendSnapshot:
    """One upstream backend's counter at a point in time."""
    group: str
    server: str
    request_counter: int

    @property
    def key(self) -> BackendKey:
        return (self.group, self.server)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation.

    Attributes:
        updates: Rate (requests/second) to publish per (group, server)
        retirals: Keys whose exposed metric must be removed
        bootstrapped: True if the call only seeded the baseline
    """
    updates: Dict[BackendKey, float] = field(default_factory=dict)
    retirals: Set[BackendKey] = field(default_factory=set)
    bootstrapped: bool = False


def index_snapshot(snapshot: Iterable[BackendSnapshot]) -> Dict[BackendKey, BackendSnapshot]:
    """Index a snapshot by (group, server). Later duplicates win."""
    return {backend.key: backend for backend in snapshot}


def reconcile(
    previous: List[BackendSnapshot],
    current: List[BackendSnapshot],
    elapsed_seconds: float,
) -> ReconcileResult:
    """Compute per-backend rates between two snapshots.

    A backend whose counter went down is treated as restarted: it stays
    live but gets no rate this cycle. Backends that only exist in current
    have no baseline yet and get no rate either. When elapsed_seconds is
    not positive no rate can be computed, so nothing is emitted.

    Args:
        previous: Snapshot from the last successful cycle
        current: Newly decoded snapshot
        elapsed_seconds: Seconds between the two snapshots

    Returns:
        ReconcileResult with rate updates and retirals

    Example:
        >>> old = [BackendSnapshot("A", "s1", 100)]
        >>> new = [BackendSnapshot("A", "s1", 150)]
        >>> reconcile(old, new, 10).updates
        {('A', 's1'): 5.0}
    """
    result = ReconcileResult()

    if not previous:
        result.bootstrapped = bool(current)
        return result

    current_by_key = index_snapshot(current)

    for key, old in index_snapshot(previous).items():
        new = current_by_key.get(key)
        if new is None:
            result.retirals.add(key)
            continue

        if new.request_counter < old.request_counter:
            logger.debug(
                f"Counter reset for upstream={key[0]} server={key[1]}: "
                f"{old.request_counter} -> {new.request_counter}"
            )
            continue

        if elapsed_seconds <= 0:
            continue

        delta = new.request_counter - old.request_counter
        result.updates[key] = delta / elapsed_seconds

    return result


def find_duplicate_keys(snapshot: Iterable[BackendSnapshot]) -> Set[BackendKey]:
    """Return keys that appear more than once in a snapshot."""
    seen: Set[BackendKey] = set()
    duplicates: Set[BackendKey] = set()
    for backend in snapshot:
        if backend.key in seen:
            duplicates.add(backend.key)
        seen.add(backend.key)
    return duplicates


class Reconciler:
    """Owner of the reconciliation state between polling cycles.

    Holds the previous snapshot and the timestamp of the last successful
    reconciliation. All access goes through a lock so two reconciliations
    never run against the same state at once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._previous: List[BackendSnapshot] = []
        self._last_cycle_at: Optional[float] = None

    def reconcile(self, current: List[BackendSnapshot], now: float) -> ReconcileResult:
        """Reconcile a new snapshot against the stored one and replace it.

        Args:
            current: Newly decoded snapshot
            now: Timestamp of this cycle, from the same clock as earlier calls

        Returns:
            ReconcileResult for the caller to apply to the gauges
        """
        duplicates = find_duplicate_keys(current)
        if duplicates:
            logger.warning(
                f"Snapshot contains {len(duplicates)} duplicate backend(s), "
                f"keeping the last occurrence: {sorted(duplicates)}"
            )

        with self._lock:
            if self._last_cycle_at is None:
                elapsed = 0.0
            else:
                elapsed = now - self._last_cycle_at

            if self._previous and elapsed <= 0:
                logger.warning(
                    f"Non-positive interval since last cycle ({elapsed:.3f}s), "
                    "skipping rate emission"
                )

            result = reconcile(self._previous, current, elapsed)

            self._previous = list(current)
            self._last_cycle_at = now

        if result.bootstrapped:
            logger.info(f"Baseline seeded with {len(current)} backend(s)")

        return result

    @property
    def previous(self) -> List[BackendSnapshot]:
        """Copy of the stored snapshot."""
        with self._lock:
            return list(self._previous)

    @property
    def last_cycle_at(self) -> Optional[float]:
        with self._lock:
            return self._last_cycle_at

    def live_keys(self) -> Set[BackendKey]:
        """Keys of the backends in the stored snapshot."""
        with self._lock:
            return {backend.key for backend in self._previous}
