"""
Sequential analysis: alpha-spending boundaries, conditional power and
repeated-peeking warnings.

Spending functions (Lan-DeMets family) give the cumulative alpha that may be
spent at information fraction t. O'Brien-Fleming is strict early and relaxes
to the nominal alpha at t = 1.
"""

import math
from typing import Tuple

from scipy import stats

from ..errors import InvalidConfiguration

SPENDING_METHODS = ("obrien-fleming", "pocock", "linear")


def alpha_spending(information_fraction: float, alpha: float, method: str = "obrien-fleming") -> float:
    """
    Cumulative alpha available at an information fraction.

    Args:
        information_fraction: Proportion of planned sample observed
        alpha: Overall two-sided Type I error
        method: obrien-fleming, pocock or linear

    Returns:
        Alpha spent so far (0 at t <= 0, alpha at t >= 1)
    """
    if method not in SPENDING_METHODS:
        raise InvalidConfiguration(
            f"Unknown alpha spending method '{method}' (expected one of: {', '.join(SPENDING_METHODS)})"
        )
    t = information_fraction
    if t <= 0:
        return 0.0
    if t >= 1:
        return alpha

    if method == "obrien-fleming":
        z_alpha = stats.norm.ppf(1 - alpha / 2)
        return float(2 * stats.norm.sf(z_alpha / math.sqrt(t)))
    if method == "pocock":
        return float(alpha * math.log(1 + (math.e - 1) * t))
    return float(alpha * t)


def z_boundary(spent_alpha: float) -> float:
    """Two-sided z threshold matching a nominal p-value threshold."""
    if spent_alpha <= 0:
        return math.inf
    return float(stats.norm.isf(spent_alpha / 2))


def conditional_power(z_current: float, information_fraction: float, alpha: float) -> float:
    """
    Conditional power under the current trend, in the direction of improvement.

    Projects the observed drift to the final analysis:
        CP = 1 - Phi((z_{alpha/2} - z_t / sqrt(t)) / sqrt(1 - t))

    A negative z (variant trailing control) yields low conditional power.

    Returns 1.0 / 0.0 at t >= 1 depending on whether the final test is
    already significant.
    """
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z = z_current
    t = information_fraction
    if t >= 1:
        return 1.0 if z >= z_alpha else 0.0
    if t <= 0:
        return 0.0
    return float(stats.norm.sf((z_alpha - z / math.sqrt(t)) / math.sqrt(1 - t)))


def repeated_peek_warning(
    n_planned: int,
    n_observed: int,
    n_analyses: int = 1,
) -> Tuple[bool, str]:
    """
    Warning for repeated peeking / early stopping.

    Args:
        n_planned: Planned total sample size
        n_observed: Currently observed sample size
        n_analyses: Number of times results have been analyzed

    Returns:
        Tuple of (is_warning, message)
    """
    if n_observed >= n_planned and n_analyses <= 1:
        return False, "Single analysis at planned sample size."

    msg_parts = []

    if n_observed < n_planned:
        pct = 100 * n_observed / n_planned
        msg_parts.append(
            f"Early analysis: only {pct:.0f}% of planned sample. "
            "Decisions use alpha-spending boundaries, not the nominal alpha."
        )

    if n_analyses > 1:
        msg_parts.append(
            f"Multiple analyses ({n_analyses}) performed. "
            "Stop only when a sequential boundary is crossed."
        )

    return len(msg_parts) > 0, " ".join(msg_parts)
