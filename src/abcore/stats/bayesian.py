"""
Beta-Binomial Bayesian analysis.

Posterior Beta(prior_alpha + conversions, prior_beta + non-conversions) per
variant. Probability-to-be-best, expected loss and credible intervals are
all estimated from one matrix of joint posterior draws.
"""

from typing import Dict, Sequence, Tuple

import numpy as np


def beta_posterior(
    conversions: int,
    impressions: int,
    prior_alpha: float = 1.0,
    prior_beta: float = 1.0,
) -> Tuple[float, float]:
    """Posterior shape parameters; failures are floored at zero."""
    failures = max(impressions - conversions, 0)
    return prior_alpha + conversions, prior_beta + failures


def beta_moments(alpha: float, beta: float) -> Tuple[float, float]:
    """Mean and variance of Beta(alpha, beta)."""
    total = alpha + beta
    return alpha / total, (alpha * beta) / (total ** 2 * (total + 1))


def sample_posteriors(
    params: Sequence[Tuple[float, float]],
    num_samples: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Joint posterior draws.

    Returns:
        Array of shape (num_samples, n_variants)
    """
    alphas = np.array([p[0] for p in params], dtype=float)
    betas = np.array([p[1] for p in params], dtype=float)
    return rng.beta(alphas, betas, size=(num_samples, len(params)))


def probability_best(samples: np.ndarray, variant_ids: Sequence[str]) -> Dict[str, float]:
    """Share of joint draws in which each variant has the highest rate."""
    winners = np.argmax(samples, axis=1)
    counts = np.bincount(winners, minlength=len(variant_ids))
    return {vid: float(c / len(samples)) for vid, c in zip(variant_ids, counts)}


def expected_loss(samples: np.ndarray, variant_ids: Sequence[str]) -> Dict[str, float]:
    """Mean shortfall versus the best draw if each variant were chosen."""
    best = samples.max(axis=1, keepdims=True)
    losses = (best - samples).mean(axis=0)
    return {vid: float(loss) for vid, loss in zip(variant_ids, losses)}


def credible_interval(draws: np.ndarray, level: float = 0.95) -> Tuple[float, float]:
    """Equal-tailed interval from sampled quantiles."""
    tail = (1 - level) / 2
    lower, upper = np.quantile(draws, [tail, 1 - tail])
    return float(lower), float(upper)


def monte_carlo_comparison(
    alpha_a: float,
    beta_a: float,
    alpha_b: float,
    beta_b: float,
    num_samples: int,
    rng: np.random.Generator,
) -> Tuple[float, float]:
    """
    Monte Carlo estimate that arm B beats arm A.

    Returns:
        Tuple of (probability_b_beats_a, expected relative lift of B over A)
    """
    a = rng.beta(alpha_a, beta_a, size=num_samples)
    b = rng.beta(alpha_b, beta_b, size=num_samples)
    prob = float(np.mean(b > a))
    with np.errstate(divide="ignore", invalid="ignore"):
        lift = np.where(a > 0, (b - a) / a, 0.0)
    return min(max(prob, 0.0), 1.0), float(np.mean(lift))
