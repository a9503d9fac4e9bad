"""
Frequentist hypothesis tests for experiment analysis.

Pooled two-proportion z-test for conversion rates, Welch t-test for
continuous metrics. Degenerate inputs return an insufficient-data result
instead of dividing by zero.
"""

from typing import Sequence

import numpy as np
from scipy import stats

from ..schema import AnalysisStatus, ConfidenceInterval, TTestResult, ZTestResult


def _z_crit(confidence_level: float) -> float:
    return float(stats.norm.ppf(1 - (1 - confidence_level) / 2))


def proportions_z_test(
    c1: int,
    n1: int,
    c2: int,
    n2: int,
    confidence_level: float = 0.95,
) -> ZTestResult:
    """
    Two-proportion z-test (group A vs group B).

    Args:
        c1: Conversions in A (e.g. control)
        n1: Sample size of A
        c2: Conversions in B
        n2: Sample size of B
        confidence_level: Confidence level for CI and significance

    Returns:
        ZTestResult with z-score (B - A), two-tailed p-value and CI of the difference
    """
    if n1 <= 0 or n2 <= 0:
        return ZTestResult(
            status=AnalysisStatus.INSUFFICIENT_DATA,
            reason="Both groups need at least one observation",
        )

    p1 = c1 / n1
    p2 = c2 / n2
    p_pool = (c1 + c2) / (n1 + n2)
    se = float(np.sqrt(p_pool * (1 - p_pool) * (1 / n1 + 1 / n2)))

    diff = p2 - p1
    if se > 0:
        z = diff / se
        p_value = float(2 * stats.norm.sf(abs(z)))
    else:
        # All-or-nothing conversions in both groups: no evidence of a difference
        z = 0.0
        p_value = 1.0

    z_crit = _z_crit(confidence_level)
    se_diff = float(np.sqrt(p1 * (1 - p1) / n1 + p2 * (1 - p2) / n2))

    return ZTestResult(
        z_score=float(z),
        p_value=p_value,
        standard_error=se,
        rate_a=p1,
        rate_b=p2,
        difference=diff,
        confidence_interval=ConfidenceInterval(
            lower=diff - z_crit * se_diff,
            upper=diff + z_crit * se_diff,
            level=confidence_level,
        ),
        is_significant=p_value < (1 - confidence_level),
    )


def continuous_t_test(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
    confidence_level: float = 0.95,
) -> TTestResult:
    """
    Welch two-sample t-test for a continuous metric (B - A).

    Args:
        sample_a: Values of group A (e.g. control revenue per visitor)
        sample_b: Values of group B
        confidence_level: Confidence level

    Returns:
        TTestResult with t-statistic, Welch-Satterthwaite degrees of freedom,
        two-tailed p-value and CI of the mean difference
    """
    a = np.asarray(sample_a, dtype=float)
    b = np.asarray(sample_b, dtype=float)
    n_a, n_b = len(a), len(b)
    if n_a < 2 or n_b < 2:
        return TTestResult(
            status=AnalysisStatus.INSUFFICIENT_DATA,
            reason="Each sample needs at least two observations",
        )
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        return TTestResult(
            status=AnalysisStatus.INSUFFICIENT_DATA,
            reason="Samples contain non-finite values",
        )

    m_a, m_b = float(np.mean(a)), float(np.mean(b))
    v_a, v_b = float(np.var(a, ddof=1)), float(np.var(b, ddof=1))
    se_a, se_b = v_a / n_a, v_b / n_b
    se = float(np.sqrt(se_a + se_b))
    diff = m_b - m_a

    if se > 0:
        t_stat = diff / se
        df = (se_a + se_b) ** 2 / (se_a ** 2 / (n_a - 1) + se_b ** 2 / (n_b - 1))
        p_value = float(2 * stats.t.sf(abs(t_stat), df))
        t_crit = float(stats.t.ppf(1 - (1 - confidence_level) / 2, df))
    else:
        # Both samples constant
        df = float(n_a + n_b - 2)
        t_stat = 0.0 if diff == 0 else float(np.copysign(np.inf, diff))
        p_value = 1.0 if diff == 0 else 0.0
        t_crit = 0.0

    return TTestResult(
        t_statistic=float(t_stat),
        degrees_of_freedom=float(df),
        p_value=p_value,
        mean_a=m_a,
        mean_b=m_b,
        mean_difference=diff,
        standard_error=se,
        confidence_interval=ConfidenceInterval(
            lower=diff - t_crit * se,
            upper=diff + t_crit * se,
            level=confidence_level,
        ),
        is_significant=p_value < (1 - confidence_level),
    )
