"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if the observed traffic split deviates significantly from the
configured variant weights.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import stats


def srm_chi_square(
    observed: Sequence[int],
    expected_fractions: Sequence[float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit for the traffic split.

    H0: observed counts follow expected_fractions
    H1: they do not

    Args:
        observed: Impressions per variant
        expected_fractions: Expected share per variant (normalised here)

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    obs = np.asarray(observed, dtype=float)
    n_total = obs.sum()
    if n_total == 0 or len(obs) < 2:
        return 0.0, 1.0

    frac = np.asarray(expected_fractions, dtype=float)
    frac = frac / frac.sum()
    expected = n_total * frac

    # Avoid division by zero
    expected = np.where(expected == 0, 1e-10, expected)

    chi2 = float(np.sum((obs - expected) ** 2 / expected))
    p_value = float(stats.chi2.sf(chi2, df=len(obs) - 1))
    return chi2, p_value


def check_srm(
    observed: Sequence[int],
    expected_fractions: Sequence[float],
    alpha: float = 0.01,
) -> Tuple[bool, float, float]:
    """
    Check for sample ratio mismatch.

    Returns:
        Tuple of (srm_passed, chi2_statistic, p_value)
    """
    chi2, p_value = srm_chi_square(observed, expected_fractions)
    return p_value >= alpha, chi2, p_value
