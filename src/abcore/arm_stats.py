"""
Arm statistics for bandit allocation.

Per (experiment, variant) selections, pulls, rewards and reward sums.
Selections count assignments; pulls count impressions and are the
denominator of the average reward. Every read-modify-write runs under
the key's lock and refuses a deleted experiment; readers get copies.
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from .schema import ArmStat, utcnow
from .store import ExperimentStore

logger = logging.getLogger(__name__)


def _get_or_init(store: ExperimentStore, experiment_id: str, variant_id: str) -> ArmStat:
    # caller holds the key's lock
    store.require_experiment(experiment_id)
    key = (experiment_id, variant_id)
    stat = store.arm_stats.get(key)
    if stat is None:
        stat = ArmStat(experiment_id=experiment_id, variant_id=variant_id)
        store.arm_stats[key] = stat
    return stat


def get_arm_stat(store: ExperimentStore, experiment_id: str, variant_id: str) -> ArmStat:
    """Consistent snapshot of one arm; an arm never touched reads as zeros."""
    with store.counter_locks.for_key(("arm", experiment_id, variant_id)):
        stat = store.arm_stats.get((experiment_id, variant_id))
        if stat is None:
            return ArmStat(experiment_id=experiment_id, variant_id=variant_id)
        return replace(stat)


def record_pull(store: ExperimentStore, experiment_id: str, variant_id: str) -> ArmStat:
    """Count one impression shown for the arm."""
    with store.counter_locks.for_key(("arm", experiment_id, variant_id)):
        stat = _get_or_init(store, experiment_id, variant_id)
        stat.pulls += 1
        stat.last_pulled = utcnow()
        return replace(stat)


def record_selection(store: ExperimentStore, experiment_id: str, variant_id: str) -> ArmStat:
    """Count one new visitor assigned to the arm."""
    with store.counter_locks.for_key(("arm", experiment_id, variant_id)):
        stat = _get_or_init(store, experiment_id, variant_id)
        stat.selections += 1
        return replace(stat)


def record_reward(
    store: ExperimentStore,
    experiment_id: str,
    variant_id: str,
    reward: float = 1.0,
) -> ArmStat:
    """
    Record a reward for the arm.

    A positive reward counts as a success (alpha += 1); the value is added
    to the running reward sum used for the average reward.
    """
    with store.counter_locks.for_key(("arm", experiment_id, variant_id)):
        stat = _get_or_init(store, experiment_id, variant_id)
        if reward > 0:
            stat.rewards += 1
        stat.reward_sum += reward
        return replace(stat)


def add_reward_value(
    store: ExperimentStore,
    experiment_id: str,
    variant_id: str,
    value: float,
) -> ArmStat:
    """Accumulate a continuous reward (e.g. revenue) without counting a success."""
    with store.counter_locks.for_key(("arm", experiment_id, variant_id)):
        stat = _get_or_init(store, experiment_id, variant_id)
        stat.reward_sum += value
        return replace(stat)


def experiment_arm_stats(
    store: ExperimentStore,
    experiment_id: str,
    variant_ids: Iterable[str],
) -> List[ArmStat]:
    """Snapshots for the given arms, in the given order."""
    return [get_arm_stat(store, experiment_id, vid) for vid in variant_ids]


def reset_arm_stats(
    store: ExperimentStore,
    experiment_id: str,
    variant_id: Optional[str] = None,
) -> int:
    """
    Reset one arm, or every arm of the experiment.

    Returns:
        Number of arms reset
    """
    if variant_id is not None:
        keys = [(experiment_id, variant_id)]
    else:
        keys = [k for k in list(store.arm_stats) if k[0] == experiment_id]

    for exp_id, var_id in keys:
        with store.counter_locks.for_key(("arm", exp_id, var_id)):
            store.require_experiment(exp_id)
            store.arm_stats[(exp_id, var_id)] = ArmStat(experiment_id=exp_id, variant_id=var_id)
    logger.info(f"Reset {len(keys)} arm(s) for experiment {experiment_id}")
    return len(keys)
