"""
In-memory store for the experimentation core.

One ExperimentStore is constructed per process (or per test) and passed to
every operation. Counters are guarded by striped per-key locks so unrelated
experiments and variants never serialize on a single global lock.
"""

import threading
import uuid
from collections import defaultdict
from typing import Dict, Hashable, List, Optional, Set, Tuple

import numpy as np

from .config import EngineConfig
from .errors import NotFound
from .schema import (
    Allocator,
    ArmStat,
    Assignment,
    Event,
    Experiment,
    VariantAggregate,
)

VariantKey = Tuple[str, str]  # (experiment_id, variant_id)
VisitorKey = Tuple[str, str]  # (experiment_id, visitor_id)


def new_id(prefix: str) -> str:
    """Generate a collision-free identifier, e.g. ``exp_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class StripedLock:
    """
    Fixed pool of locks addressed by key hash.

    The same key always maps to the same lock; distinct keys share a lock
    only on hash collision. Memory stays bounded however many visitors
    arrive.
    """

    def __init__(self, stripes: int = 64):
        self._locks = [threading.Lock() for _ in range(stripes)]

    def for_key(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def __iter__(self):
        return iter(self._locks)


class ExperimentStore:
    """Holds all experimentation state for one process or test."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

        self.experiments: Dict[str, Experiment] = {}
        self.events: Dict[VariantKey, List[Event]] = defaultdict(list)
        self.aggregates: Dict[VariantKey, VariantAggregate] = {}
        self.visitors: Dict[VariantKey, Set[str]] = defaultdict(set)
        self.arm_stats: Dict[VariantKey, ArmStat] = {}
        self.allocators: Dict[str, Allocator] = {}
        self.assignments: Dict[VisitorKey, Assignment] = {}
        self.round_robin: Dict[str, int] = defaultdict(int)

        # Experiment-level structure (create/update/delete, status)
        self.experiment_lock = threading.RLock()
        # Aggregate / arm-stat / round-robin counters
        self.counter_locks = StripedLock(self.config.lock_stripes)
        # Insert-if-absent on the assignment table
        self.assignment_locks = StripedLock(self.config.lock_stripes)

        self._seed_lock = threading.Lock()
        self._seed_seq = np.random.SeedSequence(self.config.random_seed)

    def spawn_rng(self) -> np.random.Generator:
        """Independent generator per caller; numpy Generators are not thread-safe."""
        with self._seed_lock:
            child = self._seed_seq.spawn(1)[0]
        return np.random.default_rng(child)

    def require_experiment(self, experiment_id: str) -> None:
        """Writers call this under their key lock before touching a table."""
        if experiment_id not in self.experiments:
            raise NotFound(f"Experiment {experiment_id} not found")

    def purge_experiment(self, experiment_id: str) -> None:
        """
        Drop every entity owned by an experiment.

        The experiment is unregistered first, then every key lock is cycled
        once: a writer that saw the experiment under its key lock has
        finished, and any later writer fails ``require_experiment``. Only
        then are the tables cleared.
        """
        with self.experiment_lock:
            self.experiments.pop(experiment_id, None)
            self.allocators.pop(experiment_id, None)

        for lock in list(self.counter_locks) + list(self.assignment_locks):
            with lock:
                pass

        with self.experiment_lock:
            self.round_robin.pop(experiment_id, None)
            for table in (self.events, self.aggregates, self.visitors,
                          self.arm_stats, self.assignments):
                for key in [k for k in list(table) if k[0] == experiment_id]:
                    table.pop(key, None)
