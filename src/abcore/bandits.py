"""
Variant selection policies.

Pure functions over ordered arm snapshots. Each returns the index of the
selected arm in the list it was given.

Fixed policies: round-robin, weighted hash buckets, modulo hash.
Bandit policies: Thompson sampling, UCB1, epsilon-greedy, and a contextual
Thompson variant that scales draws by per-context bonuses.
"""

import hashlib
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .schema import ArmStat

BUCKET_RESOLUTION = 10000  # hash buckets per 100% of traffic


def _digest(visitor_id: str, experiment_id: str) -> int:
    key = f"{visitor_id}:{experiment_id}"
    return int(hashlib.sha256(key.encode()).hexdigest()[:15], 16)


def hash_to_bucket(visitor_id: str, experiment_id: str) -> float:
    """
    Deterministic hash of a visitor into [0, 100).

    Same visitor + experiment always maps to the same value.
    """
    return (_digest(visitor_id, experiment_id) % BUCKET_RESOLUTION) * 100.0 / BUCKET_RESOLUTION


def weighted_index(visitor_id: str, experiment_id: str, weights: Sequence[float]) -> int:
    """First arm whose cumulative weight exceeds the visitor's bucket."""
    bucket = hash_to_bucket(visitor_id, experiment_id)
    cumulative = 0.0
    for i, w in enumerate(weights):
        cumulative += w
        if bucket < cumulative:
            return i
    # Floating point slack on the last boundary
    return len(weights) - 1


def hash_index(visitor_id: str, experiment_id: str, n_arms: int) -> int:
    return _digest(visitor_id, experiment_id) % n_arms


def round_robin_index(counter: int, n_arms: int) -> int:
    return counter % n_arms


def _unpulled(arms: Sequence[ArmStat]) -> List[int]:
    return [i for i, a in enumerate(arms) if a.exposures == 0]


def thompson_sampling(arms: Sequence[ArmStat], rng: np.random.Generator) -> int:
    """
    Draw from Beta(alpha, beta) per arm and take the highest draw.

    Arms never selected are Beta(1, 1) and are served before any other
    arm, so every arm is explored at least once.
    """
    candidates = _unpulled(arms) or list(range(len(arms)))
    alphas = np.array([arms[i].alpha for i in candidates], dtype=float)
    betas = np.array([arms[i].beta for i in candidates], dtype=float)
    draws = rng.beta(alphas, betas)
    return candidates[int(np.argmax(draws))]


def ucb1(arms: Sequence[ArmStat], exploration_rate: float = 2.0) -> int:
    """
    UCB1: avg_reward + c * sqrt(ln(total_exposures) / exposures).

    An arm never selected has infinite score; the first such arm in
    declared order is chosen. Exposures include assignments whose
    impression is still pending.
    """
    unpulled = _unpulled(arms)
    if unpulled:
        return unpulled[0]

    total = sum(a.exposures for a in arms)
    log_total = math.log(total)
    scores = [a.avg_reward + exploration_rate * math.sqrt(log_total / a.exposures) for a in arms]
    return int(np.argmax(scores))


def greedy_index(arms: Sequence[ArmStat]) -> int:
    """Highest average reward; ties go to the lowest variant id."""
    return min(range(len(arms)), key=lambda i: (-arms[i].avg_reward, arms[i].variant_id))


def epsilon_greedy(arms: Sequence[ArmStat], epsilon: float, rng: np.random.Generator) -> int:
    """Explore uniformly with probability epsilon, otherwise exploit."""
    if rng.random() < epsilon:
        return int(rng.integers(len(arms)))
    return greedy_index(arms)


def context_bonus(
    variant_id: str,
    context: Mapping[str, Any],
    bonuses: Mapping[str, Mapping[str, Mapping[str, float]]],
) -> float:
    """
    Sum the bonuses configured for this variant that match the context.

    ``bonuses`` is ``{variant_id: {feature: {value: bonus}}}``, e.g.
    ``{"v2": {"device": {"mobile": 0.2}}}``.
    """
    total = 0.0
    for feature, by_value in bonuses.get(variant_id, {}).items():
        if feature in context:
            total += float(by_value.get(str(context[feature]), 0.0))
    return total


def contextual_thompson(
    arms: Sequence[ArmStat],
    context: Optional[Mapping[str, Any]],
    bonuses: Optional[Dict[str, Dict[str, Dict[str, float]]]],
    rng: np.random.Generator,
) -> int:
    """Thompson draw scaled by (1 + context bonus); unpulled arms first."""
    candidates = _unpulled(arms) or list(range(len(arms)))
    context = context or {}
    bonuses = bonuses or {}
    scores = []
    for i in candidates:
        draw = rng.beta(arms[i].alpha, arms[i].beta)
        scores.append(draw * (1.0 + context_bonus(arms[i].variant_id, context, bonuses)))
    return candidates[int(np.argmax(scores))]
