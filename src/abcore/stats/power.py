"""
Power analysis and MDE (Minimum Detectable Effect) calculator.

Two-proportion formulas for conversion-rate experiments. Effects are
relative lifts over the baseline rate (0.20 = +20%).
"""

import numpy as np
from scipy import stats

from ..errors import InvalidConfiguration


def _check_rates(baseline: float, mde_relative: float) -> float:
    if not 0 < baseline < 1:
        raise InvalidConfiguration("baseline rate must be in (0, 1)")
    if mde_relative <= 0:
        raise InvalidConfiguration("minimum detectable effect must be positive")
    variant = baseline * (1 + mde_relative)
    if variant >= 1:
        raise InvalidConfiguration("baseline * (1 + mde) must stay below 1")
    return variant


def _check_error_rates(alpha: float, power: float) -> None:
    if not 0 < alpha < 1:
        raise InvalidConfiguration("alpha must be in (0, 1)")
    if not 0 < power < 1:
        raise InvalidConfiguration("power must be in (0, 1)")


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Sample size per variant for a two-proportion test.

        n = (z_{alpha/2} + z_{power})^2 * 2 * p_avg * (1 - p_avg) / (p2 - p1)^2

    Args:
        baseline: Baseline conversion rate (e.g. 0.10)
        mde_relative: Minimum detectable effect as relative lift (e.g. 0.20)
        alpha: Type I error rate
        power: Statistical power (1 - Type II)

    Returns:
        Required sample size per variant
    """
    _check_error_rates(alpha, power)
    p1 = baseline
    p2 = _check_rates(baseline, mde_relative)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_avg = (p1 + p2) / 2
    n_per_arm = (z_alpha + z_beta) ** 2 * 2 * p_avg * (1 - p_avg) / (p2 - p1) ** 2
    return int(np.ceil(n_per_arm))


def power_proportion(
    baseline: float,
    mde_relative: float,
    n_per_arm: int,
    alpha: float = 0.05,
) -> float:
    """
    Achieved power for a given relative effect and per-variant sample size.

    Returns:
        Statistical power (0-1)
    """
    if n_per_arm <= 0:
        raise InvalidConfiguration("sample size must be positive")
    if not 0 < alpha < 1:
        raise InvalidConfiguration("alpha must be in (0, 1)")
    p1 = baseline
    p2 = _check_rates(baseline, mde_relative)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    se = np.sqrt(p1 * (1 - p1) / n_per_arm + p2 * (1 - p2) / n_per_arm)
    z_effect = abs(p2 - p1) / se
    power = stats.norm.cdf(z_effect - z_alpha) + stats.norm.cdf(-z_effect - z_alpha)
    return float(np.clip(power, 0, 1))


def mde_proportion(
    baseline: float,
    n_per_arm: int,
    alpha: float = 0.05,
    power: float = 0.8,
) -> float:
    """
    Minimum detectable effect (relative) for a per-variant sample size.

    Returns:
        MDE as relative lift (e.g. 0.10 = +10% detectable)
    """
    if not 0 < baseline < 1:
        raise InvalidConfiguration("baseline rate must be in (0, 1)")
    if n_per_arm <= 0:
        raise InvalidConfiguration("sample size must be positive")
    _check_error_rates(alpha, power)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)
    se_approx = np.sqrt(2 * baseline * (1 - baseline) / n_per_arm)
    return float((z_alpha + z_beta) * se_approx / baseline)
