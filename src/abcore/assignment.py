"""
Traffic allocation and sticky experiment assignment.

One allocator per experiment selects a variant for each new visitor using a
fixed policy (round-robin, weighted hash, modulo hash) or an adaptive bandit
policy over arm statistics. Once a visitor is assigned the mapping never
changes for the lifetime of the experiment, whatever the policy does later.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from . import bandits
from .arm_stats import experiment_arm_stats, record_selection
from .errors import InvalidConfiguration, NotFound
from .lifecycle import (
    allocation_weights,
    check_allocation,
    get_experiment,
    require_active,
    to_allocator_config,
)
from .schema import (
    AllocationMethod,
    Allocator,
    AllocatorConfig,
    AllocatorType,
    Assignment,
    Experiment,
    Variant,
    utcnow,
)
from .store import ExperimentStore

logger = logging.getLogger(__name__)

ConfigInput = Union[AllocatorConfig, Mapping[str, Any], None]


def create_allocator(store: ExperimentStore, experiment_id: str, config: ConfigInput = None) -> Allocator:
    """
    Create (or replace) the allocator of an experiment.

    Args:
        store: Experiment store
        experiment_id: Experiment identifier
        config: AllocatorConfig or mapping with type, method, parameters

    Returns:
        The stored Allocator
    """
    experiment = get_experiment(store, experiment_id)
    cfg = to_allocator_config(config)
    check_allocation(cfg, experiment.variants)

    allocator = Allocator(experiment_id=experiment_id, config=cfg)
    with store.experiment_lock:
        store.allocators[experiment_id] = allocator
    logger.info(
        f"Allocator for {experiment_id}: {cfg.type.value}/{cfg.method.value} "
        f"params={cfg.parameters}"
    )
    return allocator


def ensure_allocator(store: ExperimentStore, experiment_id: str) -> Allocator:
    """Return the allocator, creating it from the experiment's allocation config if missing."""
    allocator = store.allocators.get(experiment_id)
    if allocator is not None:
        return allocator
    return create_allocator(store, experiment_id, get_experiment(store, experiment_id).allocation)


def get_allocator(store: ExperimentStore, experiment_id: str) -> Allocator:
    allocator = store.allocators.get(experiment_id)
    if allocator is None:
        raise NotFound(f"Allocator for experiment {experiment_id} not found")
    return allocator


def update_allocator(store: ExperimentStore, experiment_id: str, config: ConfigInput) -> Allocator:
    """
    Swap type/method/parameters of an existing allocator.

    Arm statistics and existing assignments are kept; only visitors not yet
    assigned are affected.
    """
    allocator = get_allocator(store, experiment_id)
    experiment = get_experiment(store, experiment_id)
    cfg = to_allocator_config(config)
    check_allocation(cfg, experiment.variants)

    with store.experiment_lock:
        allocator.config = cfg
        experiment.allocation = cfg
        allocator.updated_at = utcnow()
    logger.info(f"Allocator for {experiment_id} switched to {cfg.type.value}/{cfg.method.value}")
    return allocator


def _next_round_robin(store: ExperimentStore, experiment_id: str) -> int:
    with store.counter_locks.for_key(("rr", experiment_id)):
        store.require_experiment(experiment_id)
        counter = store.round_robin[experiment_id]
        store.round_robin[experiment_id] = counter + 1
    return counter


def _select(
    store: ExperimentStore,
    experiment: Experiment,
    cfg: AllocatorConfig,
    visitor_id: str,
    context: Mapping[str, Any],
) -> Variant:
    variants = experiment.variants
    exp_id = experiment.experiment_id
    method = cfg.method
    params = cfg.parameters

    if method == AllocationMethod.ROUND_ROBIN:
        idx = bandits.round_robin_index(_next_round_robin(store, exp_id), len(variants))
    elif method == AllocationMethod.WEIGHTED:
        idx = bandits.weighted_index(visitor_id, exp_id, allocation_weights(variants))
    elif method == AllocationMethod.HASH:
        idx = bandits.hash_index(visitor_id, exp_id, len(variants))
    else:
        arms = experiment_arm_stats(store, exp_id, [v.variant_id for v in variants])
        if method == AllocationMethod.UCB1:
            rate = float(params.get("exploration_rate", store.config.default_exploration_rate))
            idx = bandits.ucb1(arms, rate)
        elif method == AllocationMethod.EPSILON_GREEDY:
            epsilon = float(params.get("epsilon", store.config.default_epsilon))
            idx = bandits.epsilon_greedy(arms, epsilon, store.spawn_rng())
        elif cfg.type == AllocatorType.CONTEXTUAL:
            idx = bandits.contextual_thompson(
                arms, context, params.get("context_bonuses"), store.spawn_rng()
            )
        else:
            idx = bandits.thompson_sampling(arms, store.spawn_rng())
    return variants[idx]


def assign(
    store: ExperimentStore,
    experiment_id: str,
    visitor_id: str,
    context: Optional[Mapping[str, Any]] = None,
) -> Assignment:
    """
    Assign a visitor to a variant.

    Returns the existing assignment if the visitor was already assigned.
    Otherwise a variant is selected and inserted only if no concurrent caller
    got there first; every caller observes the same winning assignment.
    A winning insert counts as a selection of its arm, so bandit policies
    explore every arm even before impressions come back.

    Raises:
        NotFound: unknown experiment or no allocator
        ExperimentNotActive: experiment is stopped
        InvalidConfiguration: experiment has no variants
    """
    experiment = get_experiment(store, experiment_id)
    require_active(experiment)

    key = (experiment_id, visitor_id)
    existing = store.assignments.get(key)
    if existing is not None:
        return existing

    allocator = get_allocator(store, experiment_id)
    if not experiment.variants:
        raise InvalidConfiguration(f"Experiment {experiment_id} has no variants")

    context = dict(context or {})
    # Selection runs outside the assignment lock so lock acquisition never nests
    variant = _select(store, experiment, allocator.config, visitor_id, context)
    candidate = Assignment(
        experiment_id=experiment_id,
        visitor_id=visitor_id,
        variant_id=variant.variant_id,
        variant_name=variant.name,
        method=allocator.config.method.value,
        context=context,
    )

    with store.assignment_locks.for_key(key):
        store.require_experiment(experiment_id)
        winner = store.assignments.get(key)
        if winner is None:
            store.assignments[key] = candidate
            winner = candidate

    if winner is candidate:
        record_selection(store, experiment_id, winner.variant_id)
    logger.debug(f"Visitor {visitor_id} -> {winner.variant_id} ({winner.method})")
    return winner


def get_assignment(store: ExperimentStore, experiment_id: str, visitor_id: str) -> Optional[Assignment]:
    return store.assignments.get((experiment_id, visitor_id))


def get_experiment_assignments(store: ExperimentStore, experiment_id: str) -> List[Assignment]:
    get_experiment(store, experiment_id)
    return [a for (exp_id, _), a in list(store.assignments.items()) if exp_id == experiment_id]


def get_distribution(store: ExperimentStore, experiment_id: str) -> Dict[str, Any]:
    """
    Traffic distribution across variants.

    Returns:
        Dict with per-variant pulls, selections, rewards, avg_reward, assigned visitors
        and share of pulls (percentage), plus totals
    """
    experiment = get_experiment(store, experiment_id)
    variant_ids = [v.variant_id for v in experiment.variants]
    arms = experiment_arm_stats(store, experiment_id, variant_ids)

    assigned = {vid: 0 for vid in variant_ids}
    for a in get_experiment_assignments(store, experiment_id):
        if a.variant_id in assigned:
            assigned[a.variant_id] += 1

    total_pulls = sum(a.pulls for a in arms)
    distribution = [
        {
            "variant_id": v.variant_id,
            "variant_name": v.name,
            "pulls": arm.pulls,
            "selections": arm.selections,
            "rewards": arm.rewards,
            "avg_reward": arm.avg_reward,
            "assigned": assigned[v.variant_id],
            "percentage": arm.pulls / total_pulls * 100 if total_pulls > 0 else 0.0,
        }
        for v, arm in zip(experiment.variants, arms)
    ]
    return {
        "experiment_id": experiment_id,
        "distribution": distribution,
        "total_pulls": total_pulls,
        "total_assigned": sum(assigned.values()),
    }


def get_regret(store: ExperimentStore, experiment_id: str) -> Dict[str, Any]:
    """
    Cumulative regret against the best observed arm.

    total_regret = sum over arms of (best_avg_reward - avg_reward) * pulls.
    The best arm is an estimate from data seen so far, not ground truth.
    """
    experiment = get_experiment(store, experiment_id)
    if not experiment.variants:
        return {
            "experiment_id": experiment_id,
            "total_regret": 0.0,
            "best_variant_id": None,
            "best_reward": None,
            "per_arm_regret": {},
            "total_pulls": 0,
            "regret_rate": 0.0,
        }

    arms = experiment_arm_stats(store, experiment_id, [v.variant_id for v in experiment.variants])
    best = arms[bandits.greedy_index(arms)]
    per_arm = {a.variant_id: (best.avg_reward - a.avg_reward) * a.pulls for a in arms}
    total_pulls = sum(a.pulls for a in arms)
    total_regret = sum(per_arm.values())
    return {
        "experiment_id": experiment_id,
        "total_regret": total_regret,
        "best_variant_id": best.variant_id,
        "best_reward": best.avg_reward,
        "per_arm_regret": per_arm,
        "total_pulls": total_pulls,
        "regret_rate": total_regret / total_pulls if total_pulls > 0 else 0.0,
    }
